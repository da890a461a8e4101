import hashlib
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Any, Protocol, Self

import orjson
from loguru import logger as log

from stretch.cache.stores import get_cache_store
from stretch.config.general import CacheSettings, GeneralConfig, validate_ttl
from stretch.types.general import CacheTTL


@dataclass(frozen=True, slots=True)
class CacheOptions:
    """Per-builder cache overrides. `None` means inherit from the settings."""

    enabled: bool | None = None
    clear: bool | None = None
    ttl: CacheTTL | None = None
    prefix: str | None = None
    store: str | None = None

    def resolve(self, settings: CacheSettings) -> "ResolvedCacheOptions":
        """Fill every unset override from the package settings."""
        return ResolvedCacheOptions(
            enabled=settings.enabled if self.enabled is None else self.enabled,
            clear=settings.clear if self.clear is None else self.clear,
            ttl=settings.ttl if self.ttl is None else self.ttl,
            prefix=settings.prefix if self.prefix is None else self.prefix,
            store=settings.store if self.store is None else self.store,
        )


@dataclass(frozen=True, slots=True)
class ResolvedCacheOptions:
    """Cache options with every value decided."""

    enabled: bool
    clear: bool
    ttl: CacheTTL
    prefix: str
    store: str


class Cacheable(ABC):
    """Cache configuration and key derivation shared by the search builders.

    Owners provide `config`, `build()`, `indexes()` and `run()`; execution
    through the cache is done by `CachedSearch`.
    """

    config: GeneralConfig
    cache_options: CacheOptions = CacheOptions()

    @abstractmethod
    def build(self) -> Any:
        """Build the request body the cache key is derived from."""

    @abstractmethod
    def indexes(self) -> list[str]:
        """Sorted unique index names this request touches."""

    def cache(self, enabled: bool = True) -> Self:
        """Enable (or disable) caching for this builder."""
        self.cache_options = replace(self.cache_options, enabled=enabled)
        return self

    def clear_cache(self, clear: bool = True) -> Self:
        """Forget the cached entry before reading it, forcing a fresh result."""
        self.cache_options = replace(self.cache_options, clear=clear)
        return self

    def set_cache_ttl(self, ttl: CacheTTL | list[int]) -> Self:
        """Set a single ttl, or a [fresh, stale] pair for stale-while-revalidate."""
        if not isinstance(ttl, int):
            if len(ttl) != 2:  # noqa: PLR2004
                raise ValueError("Cache ttl pair must have exactly two values.")
            ttl = (ttl[0], ttl[1])
        self.cache_options = replace(self.cache_options, ttl=validate_ttl(ttl))
        return self

    def set_cache_prefix(self, prefix: str) -> Self:
        """Set the prefix of this builder's cache keys."""
        self.cache_options = replace(self.cache_options, prefix=prefix)
        return self

    def set_cache_store(self, store: str) -> Self:
        """Use a different registered cache store for this builder."""
        self.cache_options = replace(self.cache_options, store=store)
        return self

    def resolved_cache_options(self) -> ResolvedCacheOptions:
        """Cache options with the package settings filled in."""
        return self.cache_options.resolve(self.config.cache)

    def is_cache_enabled(self) -> bool:
        """Whether executing this builder goes through the cache."""
        return self.resolved_cache_options().enabled

    def cache_clear(self) -> bool:
        """Whether the cached entry is forgotten before it is read."""
        return self.resolved_cache_options().clear

    def cache_ttl(self) -> CacheTTL:
        """The ttl cached results are kept for."""
        return self.resolved_cache_options().ttl

    def cache_prefix(self) -> str:
        """The prefix of this builder's cache keys."""
        return self.resolved_cache_options().prefix

    def cache_store(self) -> str:
        """Name of the cache store this builder uses."""
        return self.resolved_cache_options().store

    def cache_key(self) -> str:
        """Derive a deterministic cache key from the built request.

        The key is the prefix, then the colon-joined index names, then the
        SHA-1 of the body. Mapping keys are sorted recursively before hashing,
        so insertion order of options doesn't matter. Clause order still
        does: it is part of the request.
        """
        serialized = orjson.dumps(self.build(), option=orjson.OPT_SORT_KEYS)
        digest = hashlib.sha1(serialized, usedforsecurity=False).hexdigest()
        return self.cache_prefix() + ":".join(self.indexes()) + digest


class CacheableSearch(Protocol):
    """A builder that can be executed through the cache."""

    def resolved_cache_options(self) -> ResolvedCacheOptions: ...

    def cache_key(self) -> str: ...

    def snapshot(self) -> "CacheableSearch": ...

    async def run(self) -> Any: ...

    @property
    def config(self) -> GeneralConfig: ...


class CachedSearch:
    """Applies a builder's cache policy around its execution."""

    def __init__(self, builder: CacheableSearch) -> None:
        """Wrap a builder."""
        self.builder: CacheableSearch = builder

    async def execute(self) -> Any:
        """Execute the builder, consulting the cache if it is enabled."""
        options = self.builder.resolved_cache_options()
        if not options.enabled:
            return await self.builder.run()

        store = get_cache_store(options.store, self.builder.config)
        # Background refreshes run the request as it was when keyed
        snapshot = self.builder.snapshot()
        key = snapshot.cache_key()

        if options.clear:
            log.debug(f"Clearing cache entry {key}")
            await store.forget(key)

        if isinstance(options.ttl, int):
            return await store.remember(key, options.ttl, snapshot.run)
        return await store.flexible(key, options.ttl, snapshot.run)
