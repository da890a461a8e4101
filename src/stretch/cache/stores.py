import asyncio
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, override

import ormsgpack
import redis.asyncio as redis
import zstandard
from loguru import logger as log
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError as RedisConnectionError

from stretch.config.general import CONFIG, GeneralConfig, RedisSettings
from stretch.errors import UnknownCacheStoreError

# Required to avoid CROSSSLOT errors: https://redis.io/docs/latest/operate/oss_and_stack/reference/cluster-spec/#hash-tags
PREFIX = "{Stretch}:"

ZSTD_COMPRESSOR = zstandard.ZstdCompressor()
ZSTD_DECOMPRESSOR = zstandard.ZstdDecompressor()

Recompute = Callable[[], Awaitable[Any]]


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """A cached value and the moment it stops being fresh."""

    value: Any
    fresh_until: float

    def is_fresh(self, now: float) -> bool:
        """Whether the entry may be served without a refresh."""
        return now < self.fresh_until


class CacheStore(ABC):
    """A keyed cache with TTLs and a stale-while-revalidate read.

    Drivers only provide raw byte storage and a refresh lock; packing,
    freshness bookkeeping and background refreshes live here.
    """

    refresh_lock_ttl: int = 30

    def __init__(
        self, compress: bool = False, clock: Callable[[], float] = time.time
    ) -> None:
        """Instantiate a store; `clock` returns the current time in seconds."""
        self.compress: bool = compress
        self.clock: Callable[[], float] = clock
        self.tasks: set[asyncio.Task[None]] = set()

    async def initialize(self) -> None:
        """Check the backend is reachable. Nothing to do for local stores."""

    @abstractmethod
    async def read(self, key: str) -> bytes | None:
        """Get the raw bytes stored under a key, if present and unexpired."""

    @abstractmethod
    async def write(self, key: str, data: bytes, ttl: int) -> None:
        """Store raw bytes under a key for `ttl` seconds."""

    @abstractmethod
    async def forget(self, key: str) -> bool:
        """Delete a key, returning whether it existed."""

    @abstractmethod
    async def acquire_lock(self, key: str, ttl: int) -> bool:
        """Take the refresh lock of a key, returning False if someone else holds it."""

    @abstractmethod
    async def release_lock(self, key: str) -> None:
        """Release the refresh lock of a key."""

    def pack(self, entry: CacheEntry) -> bytes:
        """Serialize an entry for storage."""
        data = ormsgpack.packb({"value": entry.value, "fresh_until": entry.fresh_until})
        if self.compress:
            data = ZSTD_COMPRESSOR.compress(data)
        return data

    def unpack(self, data: bytes) -> CacheEntry:
        """Deserialize a stored entry."""
        if self.compress:
            data = ZSTD_DECOMPRESSOR.decompress(data)
        raw = ormsgpack.unpackb(data)
        return CacheEntry(value=raw["value"], fresh_until=raw["fresh_until"])

    async def get_entry(self, key: str) -> CacheEntry | None:
        """Get the entry stored under a key."""
        data = await self.read(key)
        if data is None:
            return None
        return self.unpack(data)

    async def get(self, key: str) -> Any | None:
        """Get the value stored under a key."""
        entry = await self.get_entry(key)
        return entry.value if entry is not None else None

    async def put(
        self, key: str, value: Any, ttl: int, fresh_for: int | None = None
    ) -> None:
        """Store a value for `ttl` seconds, considered fresh for `fresh_for` of them."""
        fresh_until = self.clock() + (ttl if fresh_for is None else fresh_for)
        await self.write(key, self.pack(CacheEntry(value, fresh_until)), ttl)

    async def remember(self, key: str, ttl: int, callback: Recompute) -> Any:
        """Get a cached value, or compute, store and return it."""
        entry = await self.get_entry(key)
        if entry is not None:
            log.trace(f"Cache hit for {key}")
            return entry.value

        log.trace(f"Cache miss for {key}")
        value = await callback()
        await self.put(key, value, ttl)
        return value

    async def flexible(
        self, key: str, ttl: tuple[int, int], callback: Recompute
    ) -> Any:
        """Stale-while-revalidate read.

        Values younger than `fresh` seconds are returned as they are. Older ones,
        up to `stale` seconds, are returned while a refresh runs in the background.
        Past that the entry has expired and is recomputed inline.
        """
        fresh, stale = ttl
        entry = await self.get_entry(key)

        if entry is not None:
            if entry.is_fresh(self.clock()):
                log.trace(f"Cache hit for {key}")
                return entry.value
            log.trace(f"Stale cache hit for {key}, refreshing in background")
            self.defer_refresh(key, ttl, callback)
            return entry.value

        log.trace(f"Cache miss for {key}")
        value = await callback()
        await self.put(key, value, stale, fresh_for=fresh)
        return value

    def defer_refresh(
        self, key: str, ttl: tuple[int, int], callback: Recompute
    ) -> asyncio.Task[None]:
        """Schedule a background recompute of a stale entry."""
        fresh, stale = ttl

        async def refresh() -> None:
            if not await self.acquire_lock(key, self.refresh_lock_ttl):
                return
            try:
                value = await callback()
                await self.put(key, value, stale, fresh_for=fresh)
            except Exception:
                # Nobody awaits this task; the stale entry stays in place
                log.exception(f"Background refresh of cache entry {key} failed")
            finally:
                await self.release_lock(key)

        task = asyncio.create_task(refresh(), name=f"stretch_cache_refresh:{key}")
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)
        return task

    async def close(self) -> None:
        """Cancel pending background refreshes."""
        for task in list(self.tasks):
            task.cancel()
        await asyncio.gather(*self.tasks, return_exceptions=True)
        self.tasks.clear()


class MemoryCacheStore(CacheStore):
    """A process-local cache store."""

    def __init__(
        self, compress: bool = False, clock: Callable[[], float] = time.time
    ) -> None:
        """Instantiate an empty store."""
        super().__init__(compress=compress, clock=clock)
        self.entries: dict[str, tuple[bytes, float]] = {}
        self.locks: dict[str, float] = {}

    @override
    async def read(self, key: str) -> bytes | None:
        stored = self.entries.get(key)
        if stored is None:
            return None
        data, expires_at = stored
        if self.clock() >= expires_at:
            del self.entries[key]
            return None
        return data

    @override
    async def write(self, key: str, data: bytes, ttl: int) -> None:
        self.entries[key] = (data, self.clock() + ttl)

    @override
    async def forget(self, key: str) -> bool:
        return self.entries.pop(key, None) is not None

    @override
    async def acquire_lock(self, key: str, ttl: int) -> bool:
        now = self.clock()
        held_until = self.locks.get(key)
        if held_until is not None and now < held_until:
            return False
        self.locks[key] = now + ttl
        return True

    @override
    async def release_lock(self, key: str) -> None:
        self.locks.pop(key, None)


class RedisCacheStore(CacheStore):
    """A cache store backed by redis."""

    def __init__(
        self,
        settings: RedisSettings | None = None,
        client: redis.Redis | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Instantiate a store without initializing the Redis connection."""
        settings = settings or CONFIG.redis
        super().__init__(compress=settings.compress, clock=clock)

        if client is None:
            retry = Retry(ExponentialBackoff(), settings.attempts)
            client = redis.Redis(
                host=settings.host,
                port=settings.port,
                db=settings.db,
                password=settings.password.get_secret_value()
                if settings.password
                else None,
                ssl=settings.ssl_enabled,
                socket_timeout=settings.timeout,
                retry=retry,
            )
        self.client: redis.Redis = client

    @override
    async def initialize(self) -> None:
        """Open the redis connection pool and ping the server."""
        try:
            await self.client.initialize()
            await self.client.ping()  # pyright: ignore[reportUnknownMemberType] redis uses unknowns :/
        except RedisConnectionError:
            log.critical(
                "Redis cache store unreachable. Check the redis settings or switch the cache store to memory."
            )
            raise
        log.success("Redis cache store connected.")

    @override
    async def read(self, key: str) -> bytes | None:
        return await self.client.get(f"{PREFIX}{key}")

    @override
    async def write(self, key: str, data: bytes, ttl: int) -> None:
        await self.client.set(f"{PREFIX}{key}", data, ex=ttl if ttl > 0 else None)

    @override
    async def forget(self, key: str) -> bool:
        return bool(await self.client.delete(f"{PREFIX}{key}"))

    @override
    async def acquire_lock(self, key: str, ttl: int) -> bool:
        return bool(
            await self.client.set(f"{PREFIX}{key}:refresh_lock", b"1", nx=True, ex=ttl)
        )

    @override
    async def release_lock(self, key: str) -> None:
        await self.client.delete(f"{PREFIX}{key}:refresh_lock")

    @override
    async def close(self) -> None:
        """Cancel background refreshes and close redis connections."""
        await super().close()
        await self.client.aclose()


CACHE_STORE_FACTORIES = dict[str, Callable[[GeneralConfig], CacheStore]](
    memory=lambda _config: MemoryCacheStore(),
    redis=lambda config: RedisCacheStore(config.redis),
)

CACHE_STORES: dict[str, CacheStore] = {}


def register_cache_store(name: str, store: CacheStore) -> None:
    """Install a store instance under a name, replacing any existing one."""
    CACHE_STORES[name] = store


def get_cache_store(name: str, config: GeneralConfig | None = None) -> CacheStore:
    """Get the store registered under a name, creating a built-in one on first use."""
    if name not in CACHE_STORES:
        factory = CACHE_STORE_FACTORIES.get(name)
        if factory is None:
            supported = ", ".join(sorted({*CACHE_STORE_FACTORIES, *CACHE_STORES}))
            raise UnknownCacheStoreError(name, supported)
        CACHE_STORES[name] = factory(config or CONFIG)
    return CACHE_STORES[name]


async def close_cache_stores() -> None:
    """Close and forget every store created so far."""
    for name in list(CACHE_STORES):
        await CACHE_STORES.pop(name).close()
