import copy
from dataclasses import dataclass
from typing import Any, Self, override

from loguru import logger as log

from stretch.builders.base import SearchBuilder
from stretch.builders.query import QueryBuilder, index_names, index_param
from stretch.types.general import (
    IndexSelector,
    MultiSearchHeader,
    MultiSearchParams,
    MultiSearchResponse,
    QueryCallback,
    SearchBody,
)


@dataclass(frozen=True, slots=True)
class MultiQueryEntry:
    """A named search within a batch.

    The index is fixed when the entry is added; the builder is referenced, so
    clauses added to it afterwards still show up in the batch.
    """

    index: IndexSelector | None
    query: QueryBuilder


class MultiQueryBuilder(SearchBuilder):
    """Batches several named searches into one `_msearch` request.

    Entries are emitted, and responses matched back to names, in ascending name
    order regardless of the order they were added in.
    """

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        """Create an empty batch; see SearchBuilder for the arguments."""
        super().__init__(*args, **kwargs)
        self.queries: dict[str, MultiQueryEntry] = {}

    def add(self, name: str, query: QueryCallback | QueryBuilder) -> Self:
        """Add a named search, replacing any entry with the same name.

        `query` is either a ready builder, or a callback that fills a fresh one
        bound to this batch's client.
        """
        if isinstance(query, QueryBuilder):
            builder = query
        elif callable(query):
            builder = QueryBuilder(self.client, self.manager, self.config)
            query(builder)
        else:
            raise TypeError(
                f"Expected a QueryBuilder or a callback, got {type(query).__name__}."
            )

        self.queries[name] = MultiQueryEntry(index=builder.get_index(), query=builder)
        return self

    def sorted_names(self) -> list[str]:
        """Entry names in batch order."""
        return sorted(self.queries)

    @override
    def build(self) -> list[MultiSearchHeader | SearchBody]:
        body: list[MultiSearchHeader | SearchBody] = []
        for name in self.sorted_names():
            entry = self.queries[name]
            header: MultiSearchHeader = {}
            if (index := index_param(entry.index)) is not None:
                header["index"] = index
            body.append(header)
            body.append(entry.query.build())
        return body

    @override
    def indexes(self) -> list[str]:
        names: set[str] = set()
        for entry in self.queries.values():
            names.update(index_names(entry.index))
        return sorted(names)

    @override
    async def run(self) -> MultiSearchResponse:
        client = self.require_client()
        if not self.queries:
            return {"responses": []}

        names = self.sorted_names()
        params: MultiSearchParams = {"body": self.build()}
        response = await client.msearch(params)

        responses = response.get("responses") or []
        if len(responses) != len(names):
            log.warning(
                f"Multi-search returned {len(responses)} responses for {len(names)} queries."
            )
        result = dict(response)
        result["responses"] = {
            name: responses[i] if i < len(responses) else None
            for i, name in enumerate(names)
        }
        return result

    @override
    def snapshot(self) -> Self:
        clone = self.fresh()
        clone.queries = {
            name: MultiQueryEntry(index=entry.index, query=entry.query.snapshot())
            for name, entry in self.queries.items()
        }
        clone.cache_options = self.cache_options
        return clone

    def count(self) -> int:
        """Number of searches in the batch."""
        return len(self.queries)

    def __len__(self) -> int:
        return self.count()

    @override
    def clone_with_connection(self, name: str) -> Self:
        clone = self.with_connection(name)
        clone.queries = copy.copy(self.queries)
        clone.cache_options = self.cache_options
        return clone
