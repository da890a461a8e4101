from collections.abc import Iterable

from loguru import logger as log

from stretch.builders.multi import MultiQueryBuilder
from stretch.builders.query import QueryBuilder
from stretch.cache.stores import close_cache_stores, get_cache_store
from stretch.config.general import CONFIG, GeneralConfig
from stretch.connections.client import SearchClient
from stretch.connections.manager import ConnectionManager


class Stretch:
    """Entry point handing out builders bound to a connection manager.

    Example:
        >>> stretch = Stretch()
        >>> await stretch.index("posts").match("title", "Laravel").execute()
    """

    def __init__(
        self,
        config: GeneralConfig | None = None,
        manager: ConnectionManager | None = None,
    ) -> None:
        self.config: GeneralConfig = config or CONFIG
        self.manager: ConnectionManager = manager or ConnectionManager(self.config)

    def client(self, name: str | None = None) -> SearchClient:
        """The search client of a named connection, or of the default one."""
        return self.manager.resolve(name)

    def query(self) -> QueryBuilder:
        """A new query builder on the default connection."""
        return QueryBuilder(self.client(), self.manager, self.config)

    def index(self, selector: str | Iterable[str]) -> QueryBuilder:
        """A new query builder on the default connection, searching `selector`."""
        return self.query().index(selector)

    def multi(self) -> MultiQueryBuilder:
        """A new multi-search builder on the default connection."""
        return MultiQueryBuilder(self.client(), self.manager, self.config)

    def connection(self, name: str) -> QueryBuilder:
        """A new query builder on a named connection."""
        return QueryBuilder(self.client(name), self.manager, self.config)

    async def initialize(self) -> None:
        """Connect the configured cache store, failing early if it is unreachable."""
        store = get_cache_store(self.config.cache.store, self.config)
        log.info(f"Initializing {self.config.cache.store} cache store...")
        await store.initialize()

    async def close(self) -> None:
        """Close every Elasticsearch connection and cache store."""
        log.info("Closing stretch connections...")
        await self.manager.disconnect()
        await close_cache_stores()
