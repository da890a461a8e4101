import time
from collections.abc import Mapping
from typing import Any, Protocol

import orjson
from elasticsearch import AsyncElasticsearch
from elasticsearch import exceptions as es_exceptions
from loguru import logger as log
from opentelemetry import trace

from stretch.config.general import CONFIG, GeneralConfig
from stretch.types.general import (
    MultiSearchParams,
    MultiSearchResponse,
    SearchParams,
    SearchResponse,
)

tracer = trace.get_tracer("stretch.search.tracer")


class SearchClient(Protocol):
    """What the builders need from a search backend."""

    async def search(self, params: SearchParams) -> SearchResponse:
        """Run a single `_search` request and return the raw response."""
        ...

    async def msearch(self, params: MultiSearchParams) -> MultiSearchResponse:
        """Run a batched `_msearch` request and return the raw response."""
        ...


def to_plain(response: Any) -> dict[str, Any]:
    """Unwrap an elastic-transport response object into a plain dict."""
    body = getattr(response, "body", response)
    if isinstance(body, Mapping):
        return dict(body)  # pyright:ignore[reportUnknownArgumentType]
    raise TypeError(f"Unexpected Elasticsearch response type {type(response)!r}")


class ElasticsearchClient:
    """Adapts an AsyncElasticsearch connection to the SearchClient interface.

    Backend failures are logged and re-raised untouched; retries are the
    business of the underlying transport.
    """

    def __init__(
        self,
        es_connection: AsyncElasticsearch,
        config: GeneralConfig | None = None,
        name: str = "default",
    ) -> None:
        """Wrap a connection, using the given settings for query logging."""
        self.es_connection: AsyncElasticsearch = es_connection
        self.config: GeneralConfig = config or CONFIG
        self.name: str = name

    async def search(self, params: SearchParams) -> SearchResponse:
        """Use the ES async client to execute a query via the `_search` endpoint."""
        body = params.get("body")
        with tracer.start_as_current_span("elasticsearch_search"):
            self._trace_body(body)
            started = time.perf_counter()
            try:
                response = await self.es_connection.search(
                    index=params.get("index"),
                    body=dict(body) if body else None,
                )
            except es_exceptions.ApiError:
                log.exception("Elasticsearch query returned non-200 HTTP status")
                raise
            except es_exceptions.TransportError:
                log.exception("Elasticsearch query encountered a transport error")
                raise
            self._log_query("search", body, started)

        return to_plain(response)

    async def msearch(self, params: MultiSearchParams) -> MultiSearchResponse:
        """Use the ES async client to execute a batch via the `_msearch` endpoint."""
        body = params["body"]
        with tracer.start_as_current_span("elasticsearch_msearch"):
            self._trace_body(body)
            started = time.perf_counter()
            try:
                response = await self.es_connection.msearch(body=list(body))
            except es_exceptions.ApiError:
                log.exception("Elasticsearch multi-search returned non-200 HTTP status")
                raise
            except es_exceptions.TransportError:
                log.exception("Elasticsearch multi-search encountered a transport error")
                raise
            self._log_query("msearch", body, started)

        return to_plain(response)

    def _trace_body(self, body: Any) -> None:
        otel_span = trace.get_current_span()
        if otel_span.is_recording():
            otel_span.add_event(
                "elasticsearch_query_start",
                attributes={
                    "connection": self.name,
                    "query_body": orjson.dumps(body).decode(),
                },
            )

    def _log_query(self, operation: str, body: Any, started: float) -> None:
        elapsed_ms = (time.perf_counter() - started) * 1000
        settings = self.config.log

        if settings.log_queries:
            log.debug(
                f"[{self.name}] {operation} took {elapsed_ms:.1f}ms: {orjson.dumps(body).decode()}"
            )
        if settings.log_slow_queries and elapsed_ms > settings.slow_query_threshold:
            log.warning(
                f"[{self.name}] slow {operation} took {elapsed_ms:.1f}ms (threshold {settings.slow_query_threshold}ms)"
            )
