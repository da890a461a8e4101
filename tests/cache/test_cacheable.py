import asyncio

import pytest

from conftest import FakeClock, FakeSearchClient, make_config
from stretch.builders.multi import MultiQueryBuilder
from stretch.builders.query import QueryBuilder
from stretch.cache.cacheable import Cacheable, CacheOptions, CachedSearch
from stretch.cache.stores import MemoryCacheStore, register_cache_store
from stretch.config.general import CacheSettings
from stretch.errors import UnknownCacheStoreError
from stretch.types.general import SearchParams, SearchResponse


class EchoingClient(FakeSearchClient):
    """Answers with the offset that was requested."""

    async def search(self, params: SearchParams) -> SearchResponse:
        self.searches.append(params)
        await asyncio.sleep(0)
        return {"from": params.get("body", {}).get("from")}


def test_same_calls_give_the_same_key() -> None:
    """Test that structurally identical builders share a cache key."""
    first = QueryBuilder().index("posts").match("title", "x", {"operator": "and", "boost": 2})
    second = QueryBuilder().index("posts").match("title", "x", {"boost": 2, "operator": "and"})

    assert first.cache_key() == second.cache_key()


def test_different_values_give_different_keys() -> None:
    first = QueryBuilder().index("posts").term("status", "a")
    second = QueryBuilder().index("posts").term("status", "b")

    assert first.cache_key() != second.cache_key()


def test_clause_order_is_part_of_the_key() -> None:
    first = QueryBuilder().match("a", "x").term("b", 1)
    second = QueryBuilder().term("b", 1).match("a", "x")

    assert first.cache_key() != second.cache_key()


def test_key_layout() -> None:
    posts = QueryBuilder().index("posts").term("a", 1)
    users = QueryBuilder().index("users").term("a", 1)

    digest = posts.cache_key().removeprefix("stretch:posts")

    assert len(digest) == 40
    assert users.cache_key() == f"stretch:users{digest}"


def test_key_without_index() -> None:
    key = QueryBuilder().cache_key()

    assert key.count(":") == 1
    assert len(key.removeprefix("stretch:")) == 40


def test_multi_key_uses_every_index() -> None:
    multi = (
        MultiQueryBuilder()
        .add("a", lambda q: q.index("users"))
        .add("b", lambda q: q.index(["posts", "users"]))
    )

    key = multi.cache_key()

    assert key.startswith("stretch:posts:users")
    assert len(key.removeprefix("stretch:posts:users")) == 40


def test_options_inherit_from_settings() -> None:
    config = make_config(enabled=True, ttl=60, prefix="app:", store="redis")
    query = QueryBuilder(config=config)

    assert query.is_cache_enabled()
    assert query.cache_ttl() == 60
    assert query.cache_prefix() == "app:"
    assert query.cache_store() == "redis"
    assert not query.cache_clear()


def test_options_override_settings() -> None:
    config = make_config(enabled=True, ttl=60)
    query = (
        QueryBuilder(config=config)
        .cache(False)
        .clear_cache()
        .set_cache_ttl([10, 20])
        .set_cache_prefix("mine:")
        .set_cache_store("other")
    )

    assert query.cache_options == CacheOptions(
        enabled=False, clear=True, ttl=(10, 20), prefix="mine:", store="other"
    )
    assert query.cache_key().startswith("mine:")
    assert not query.is_cache_enabled()


def test_options_are_per_builder() -> None:
    cached = QueryBuilder().cache()

    assert cached.is_cache_enabled()
    assert not QueryBuilder().is_cache_enabled()


@pytest.mark.parametrize("ttl", [0, -5, [10, 5], [1, 2, 3]])
def test_bad_ttl_is_rejected(ttl) -> None:
    with pytest.raises(ValueError):
        QueryBuilder().set_cache_ttl(ttl)


def test_resolve_fills_only_unset_values() -> None:
    settings = CacheSettings(enabled=True, ttl=30, prefix="p:", store="memory")
    resolved = CacheOptions(ttl=(1, 2)).resolve(settings)

    assert resolved.enabled
    assert resolved.ttl == (1, 2)
    assert resolved.prefix == "p:"


@pytest.mark.asyncio
async def test_disabled_cache_always_hits_the_backend(client: FakeSearchClient) -> None:
    query = QueryBuilder(client, config=make_config(enabled=False)).term("a", 1)

    await query.execute()
    await query.execute()

    assert len(client.searches) == 2


@pytest.mark.asyncio
async def test_enabled_cache_remembers(
    client: FakeSearchClient, memory_store: MemoryCacheStore
) -> None:
    query = QueryBuilder(client).index("posts").term("a", 1).cache().set_cache_ttl(60)

    first = await query.execute()
    second = await query.execute()

    assert first == second == client.search_response
    assert len(client.searches) == 1
    assert await memory_store.get(query.cache_key()) == client.search_response


@pytest.mark.asyncio
async def test_single_ttl_expires(
    client: FakeSearchClient, memory_store: MemoryCacheStore, clock: FakeClock
) -> None:
    query = QueryBuilder(client).term("a", 1).cache().set_cache_ttl(60)

    await query.execute()
    clock.advance(61)
    await query.execute()

    assert len(client.searches) == 2


@pytest.mark.asyncio
async def test_clear_cache_forgets_before_reading(
    client: FakeSearchClient, memory_store: MemoryCacheStore
) -> None:
    query = QueryBuilder(client).term("a", 1).cache().set_cache_ttl(60)
    await memory_store.put(query.cache_key(), {"stale": True}, 60)

    result = await query.clear_cache().execute()

    assert result == client.search_response
    assert len(client.searches) == 1


@pytest.mark.asyncio
async def test_flexible_ttl_serves_stale_and_refreshes(
    memory_store: MemoryCacheStore, clock: FakeClock
) -> None:
    """Test stale-while-revalidate through a builder."""
    client = FakeSearchClient(search_response={"version": 1})
    query = QueryBuilder(client).term("a", 1).cache().set_cache_ttl((10, 100))

    assert await query.execute() == {"version": 1}

    client.search_response = {"version": 2}
    clock.advance(5)
    assert await query.execute() == {"version": 1}
    assert len(client.searches) == 1

    clock.advance(10)
    assert await query.execute() == {"version": 1}
    await asyncio.gather(*memory_store.tasks)

    assert len(client.searches) == 2
    assert await query.execute() == {"version": 2}


@pytest.mark.asyncio
async def test_multi_search_is_cached(memory_store: MemoryCacheStore) -> None:
    client = FakeSearchClient(msearch_response={"responses": ["R0"]})
    multi = MultiQueryBuilder(client).add("a", lambda q: q.index("i")).cache().set_cache_ttl(30)

    first = await multi.execute()
    second = await multi.execute()

    assert first == second == {"responses": {"a": "R0"}}
    assert len(client.msearches) == 1


@pytest.mark.asyncio
async def test_cached_search_uses_the_builders_store(client: FakeSearchClient) -> None:
    custom = MemoryCacheStore()
    register_cache_store("custom", custom)
    query = QueryBuilder(client).term("a", 1).cache().set_cache_store("custom").set_cache_ttl(60)

    await CachedSearch(query).execute()

    assert await custom.get(query.cache_key()) == client.search_response


@pytest.mark.asyncio
async def test_unknown_store_fails(client: FakeSearchClient) -> None:
    query = QueryBuilder(client).term("a", 1).cache().set_cache_store("nope")

    with pytest.raises(UnknownCacheStoreError, match="nope"):
        await query.execute()
    assert client.searches == []


@pytest.mark.asyncio
async def test_backend_errors_propagate_through_the_cache(
    memory_store: MemoryCacheStore,
) -> None:
    class FailingClient(FakeSearchClient):
        async def search(self, params):
            raise RuntimeError("backend down")

    query = QueryBuilder(FailingClient()).term("a", 1).cache().set_cache_ttl(60)

    with pytest.raises(RuntimeError, match="backend down"):
        await query.execute()
    assert memory_store.entries == {}


def test_cacheable_requires_build_and_indexes() -> None:
    with pytest.raises(TypeError):
        Cacheable()  # pyright:ignore[reportAbstractUsage]


@pytest.mark.asyncio
async def test_background_refresh_runs_the_keyed_request(
    memory_store: MemoryCacheStore, clock: FakeClock
) -> None:
    """Test that changing a builder after a stale read doesn't leak into the refresh."""
    client = EchoingClient()
    query = QueryBuilder(client).index("posts").from_(0).cache().set_cache_ttl((10, 100))
    first_page_key = query.cache_key()

    assert await query.execute() == {"from": 0}
    clock.advance(20)
    assert await query.execute() == {"from": 0}

    assert await query.from_(10).execute() == {"from": 10}
    await asyncio.gather(*memory_store.tasks)

    assert await memory_store.get(first_page_key) == {"from": 0}
    assert await memory_store.get(query.cache_key()) == {"from": 10}


@pytest.mark.asyncio
async def test_multi_refresh_ignores_later_entry_changes(
    memory_store: MemoryCacheStore, clock: FakeClock
) -> None:
    client = FakeSearchClient(msearch_response={"responses": ["R0"]})
    entry = QueryBuilder().index("posts").term("a", 1)
    multi = MultiQueryBuilder(client).add("a", entry).cache().set_cache_ttl((10, 100))
    key = multi.cache_key()

    await multi.execute()
    clock.advance(20)
    await multi.execute()
    entry.term("b", 2)
    await asyncio.gather(*memory_store.tasks)

    assert client.msearches[1] == client.msearches[0]
    assert client.msearches[1]["body"][1] == {"query": {"term": {"a": 1}}}
    assert await memory_store.get(key) == {"responses": {"a": "R0"}}


def test_snapshot_is_independent(client: FakeSearchClient) -> None:
    query = QueryBuilder(client).index("posts").term("a", 1).cache().set_cache_prefix("p:")

    snapshot = query.snapshot()
    query.term("b", 2).index("users")

    assert snapshot.client is client
    assert snapshot.build() == {"query": {"term": {"a": 1}}}
    assert snapshot.indexes() == ["posts"]
    assert snapshot.cache_prefix() == "p:"
