from abc import abstractmethod
from typing import Any, Self, override

from stretch.cache.cacheable import Cacheable, CachedSearch
from stretch.config.general import CONFIG, GeneralConfig
from stretch.connections.client import SearchClient
from stretch.connections.manager import ConnectionManager
from stretch.errors import MissingClientError, MissingManagerError


class SearchBuilder(Cacheable):
    """A request builder which can be executed against a search client.

    The builder owns its accumulated state exclusively. Settings are injected
    at construction and fall back to the package-wide `CONFIG`.
    """

    def __init__(
        self,
        client: SearchClient | None = None,
        manager: ConnectionManager | None = None,
        config: GeneralConfig | None = None,
    ) -> None:
        """Bind a builder to an optional client, connection manager and settings."""
        self.client: SearchClient | None = client
        self.manager: ConnectionManager | None = manager
        self.config: GeneralConfig = config or CONFIG

    @override
    @abstractmethod
    def build(self) -> Any:
        """Assemble the request body from the accumulated state."""

    @override
    @abstractmethod
    def indexes(self) -> list[str]:
        """Sorted unique index names this request touches."""

    @abstractmethod
    async def run(self) -> Any:
        """Send the built request to the client, bypassing the cache."""

    def to_array(self) -> Any:
        """Alias for build(), for inspecting the request."""
        return self.build()

    def require_client(self) -> SearchClient:
        """Get the bound client, failing if there is none."""
        if self.client is None:
            raise MissingClientError
        return self.client

    def resolve_client(self, name: str) -> SearchClient:
        """Resolve the client of a named connection through the manager."""
        if self.manager is None:
            raise MissingManagerError
        return self.manager.resolve(name)

    def fresh(self, client: SearchClient | None = None) -> Self:
        """A new, empty builder sharing this one's manager and settings."""
        return type(self)(
            client if client is not None else self.client, self.manager, self.config
        )

    def with_connection(self, name: str) -> Self:
        """A new, empty builder bound to a named connection.

        Nothing accumulated on this builder carries over; use
        `clone_with_connection` to keep it.
        """
        return self.fresh(self.resolve_client(name))

    def connection(self, name: str) -> Self:
        """Alias for `with_connection`."""
        return self.with_connection(name)

    @abstractmethod
    def clone_with_connection(self, name: str) -> Self:
        """A copy of this builder, state included, bound to a named connection."""

    @abstractmethod
    def snapshot(self) -> Self:
        """An independent copy of this builder, state and client included."""

    async def execute(self) -> Any:
        """Execute the request, going through the cache when it is enabled."""
        self.require_client()
        return await CachedSearch(self).execute()
