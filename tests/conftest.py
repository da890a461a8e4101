"""
Fakes and fixtures shared by the stretch tests
"""

from collections.abc import Iterator
from typing import Any

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from stretch.cache.stores import CACHE_STORES, MemoryCacheStore, register_cache_store
from stretch.config.general import CacheSettings, GeneralConfig
from stretch.types.general import (
    MultiSearchParams,
    MultiSearchResponse,
    SearchParams,
    SearchResponse,
)


class FakeSearchClient:
    """Records every call and answers with canned responses."""

    def __init__(
        self,
        search_response: SearchResponse | None = None,
        msearch_response: MultiSearchResponse | None = None,
    ) -> None:
        self.search_response: SearchResponse = search_response or {
            "hits": {"total": {"value": 0}, "hits": []}
        }
        self.msearch_response: MultiSearchResponse = msearch_response or {
            "responses": []
        }
        self.searches: list[SearchParams] = []
        self.msearches: list[MultiSearchParams] = []

    async def search(self, params: SearchParams) -> SearchResponse:
        self.searches.append(params)
        return self.search_response

    async def msearch(self, params: MultiSearchParams) -> MultiSearchResponse:
        self.msearches.append(params)
        return self.msearch_response


class FakeRedis:
    """Just enough of redis.asyncio.Redis for the cache store."""

    def __init__(self, reachable: bool = True) -> None:
        self.data: dict[str, bytes] = {}
        self.expiries: dict[str, int | None] = {}
        self.reachable: bool = reachable
        self.initialized: bool = False
        self.pinged: bool = False
        self.closed: bool = False

    async def initialize(self) -> "FakeRedis":
        self.initialized = True
        return self

    async def ping(self) -> bool:
        if not self.reachable:
            raise RedisConnectionError("Error 111 connecting to localhost:6379.")
        self.pinged = True
        return True

    async def get(self, key: str) -> bytes | None:
        return self.data.get(key)

    async def set(
        self, key: str, value: bytes, ex: int | None = None, nx: bool = False
    ) -> bool | None:
        if nx and key in self.data:
            return None
        self.data[key] = value
        self.expiries[key] = ex
        return True

    async def delete(self, key: str) -> int:
        self.expiries.pop(key, None)
        return 1 if self.data.pop(key, None) is not None else 0

    async def aclose(self) -> None:
        self.closed = True


class FakeClock:
    """A clock that only moves when told to."""

    def __init__(self, now: float = 1_000.0) -> None:
        self.now: float = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_config(**cache: Any) -> GeneralConfig:
    """Settings with explicit cache defaults, independent of the environment."""
    return GeneralConfig(cache=CacheSettings(**cache))


@pytest.fixture
def client() -> FakeSearchClient:
    return FakeSearchClient()


@pytest.fixture
def config() -> GeneralConfig:
    return make_config()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_store(clock: FakeClock) -> Iterator[MemoryCacheStore]:
    """A memory store on a fake clock, installed as the `memory` store."""
    store = MemoryCacheStore(clock=clock)
    register_cache_store("memory", store)
    yield store
    CACHE_STORES.clear()


@pytest.fixture(autouse=True)
def reset_cache_stores() -> Iterator[None]:
    yield
    CACHE_STORES.clear()
