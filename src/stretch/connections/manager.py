from typing import Any

from elasticsearch import AsyncElasticsearch
from loguru import logger as log

from stretch.config.general import CONFIG, ConnectionSettings, GeneralConfig
from stretch.connections.client import ElasticsearchClient, SearchClient
from stretch.errors import UnknownConnectionError


class ConnectionManager:
    """Lazily creates and caches one AsyncElasticsearch client per named connection."""

    def __init__(self, config: GeneralConfig | None = None) -> None:
        """Create a manager over the configured connections without connecting."""
        self.config: GeneralConfig = config or CONFIG
        self.connections: dict[str, AsyncElasticsearch] = {}

    @property
    def default_connection(self) -> str:
        """Name of the connection used when none is given."""
        return self.config.default_connection

    def connection_names(self) -> list[str]:
        """Names of every configured connection."""
        return list(self.config.connections)

    def connection(self, name: str | None = None) -> AsyncElasticsearch:
        """Get the client for a named connection, creating it on first use."""
        name = name or self.default_connection

        if name not in self.connections:
            self.connections[name] = self.make_connection(name)

        return self.connections[name]

    def resolve(self, name: str | None = None) -> SearchClient:
        """Get a SearchClient bound to a named connection."""
        name = name or self.default_connection
        return ElasticsearchClient(self.connection(name), self.config, name=name)

    def connection_config(self, name: str) -> ConnectionSettings:
        """Get the settings of a named connection."""
        try:
            return self.config.connections[name]
        except KeyError as e:
            raise UnknownConnectionError(name) from e

    def make_connection(self, name: str) -> AsyncElasticsearch:
        """Build an AsyncElasticsearch client from a connection's settings."""
        settings = self.connection_config(name)
        kwargs: dict[str, Any] = {
            "verify_certs": settings.ssl_verification,
            "request_timeout": settings.request_timeout,
            "max_retries": settings.max_retries,
            "retry_on_timeout": settings.max_retries > 0,
        }

        if settings.cloud_id:
            kwargs["cloud_id"] = settings.cloud_id
        else:
            kwargs["hosts"] = settings.hosts

        if settings.username and settings.password:
            kwargs["basic_auth"] = (
                settings.username,
                settings.password.get_secret_value(),
            )

        if settings.api_key:
            kwargs["api_key"] = settings.api_key.get_secret_value()

        log.debug(f"Creating Elasticsearch connection [{name}]")
        return AsyncElasticsearch(**kwargs)

    async def purge(self, name: str) -> None:
        """Close and forget a connection, so it is recreated on next access."""
        es_connection = self.connections.pop(name, None)
        if es_connection is not None:
            await es_connection.close()

    async def disconnect(self) -> None:
        """Close and forget every cached connection."""
        for name in list(self.connections):
            await self.purge(name)
