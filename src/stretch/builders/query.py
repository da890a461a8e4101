import copy
from collections.abc import Iterable, Mapping, Sequence
from typing import Any, Self, overload, override

from loguru import logger as log

from stretch.builders.aggregation import AggregationBuilder
from stretch.builders.base import SearchBuilder
from stretch.builders.bool import BoolQueryBuilder
from stretch.builders.range import RangeQueryBuilder
from stretch.pagination import Page
from stretch.types.general import (
    AggregationCallback,
    BoolCallback,
    IndexSelector,
    QueryCallback,
    QueryClause,
    SearchBody,
    SearchParams,
    SearchResponse,
    SortDirection,
    SourceSpec,
)

MATCH_ALL: QueryClause = {"match_all": {}}


def normalize_index(selector: str | Iterable[str]) -> IndexSelector:
    """Turn an index selector into a name or an ordered list of names."""
    if isinstance(selector, str):
        return selector
    if isinstance(selector, set | frozenset):
        return sorted(selector)
    return list(selector)


def index_names(selector: IndexSelector | None) -> list[str]:
    """Every index name in a selector, sorted and unique."""
    if selector is None:
        return []
    if isinstance(selector, str):
        return [selector]
    return sorted(set(selector))


def index_param(selector: IndexSelector | None) -> str | None:
    """Render a selector the way the search API expects it."""
    if selector is None:
        return None
    if isinstance(selector, str):
        return selector
    return ",".join(selector) or None


class QueryBuilder(SearchBuilder):
    """Fluent builder for a single Elasticsearch `_search` request.

    Clause-adding calls append to the top-level query in call order. The body
    is assembled by `build()`, which never mutates the builder:

    - no clauses and no filters: no `query` at all
    - filters present: `{"bool": {"must": ..., "filter": [...]}}`
    - one clause: the clause itself
    - several clauses: `{"bool": {"must": [...]}}`

    Example:
        >>> QueryBuilder().index("posts").match("title", "Laravel").size(10).build()
        {'query': {'match': {'title': {'query': 'Laravel'}}}, 'size': 10}
    """

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        """Create an empty builder; see SearchBuilder for the arguments."""
        super().__init__(*args, **kwargs)
        self._queries: list[QueryClause] = []
        self._filters: list[QueryClause] = []
        self._aggregations: dict[str, dict[str, Any]] = {}
        self._sort: list[dict[str, Any]] = []
        self._source: SourceSpec | None = None
        self._highlight: dict[str, Any] = {}
        self._index: IndexSelector | None = None
        self._size: int | None = None
        self._from: int | None = None

    def index(self, selector: str | Iterable[str]) -> Self:
        """Set the index, or indices, to search."""
        self._index = normalize_index(selector)
        return self

    def get_index(self) -> IndexSelector | None:
        """The index selector, if one was set."""
        return copy.copy(self._index)

    @override
    def indexes(self) -> list[str]:
        return index_names(self._index)

    # Leaf queries

    def match(
        self, field: str, value: Any, options: Mapping[str, Any] | None = None
    ) -> Self:
        """Add a full-text match query; options (fuzziness, operator...) are merged in."""
        return self.add_query({"match": {field: {"query": value, **(options or {})}}})

    def match_phrase(
        self, field: str, value: Any, options: Mapping[str, Any] | None = None
    ) -> Self:
        """Add a match_phrase query; options (slop...) are merged in."""
        return self.add_query(
            {"match_phrase": {field: {"query": value, **(options or {})}}}
        )

    def term(self, field: str, value: Any) -> Self:
        """Add an exact-value term query."""
        return self.add_query({"term": {field: value}})

    def terms(self, field: str, values: Iterable[Any]) -> Self:
        """Add a terms query matching any of the values."""
        return self.add_query({"terms": {field: list(values)}})

    def wildcard(self, field: str, value: str) -> Self:
        """Add a wildcard pattern query (`*` and `?`)."""
        return self.add_query({"wildcard": {field: value}})

    def fuzzy(
        self, field: str, value: Any, options: Mapping[str, Any] | None = None
    ) -> Self:
        """Add a fuzzy query; options (fuzziness, prefix_length...) are merged in."""
        return self.add_query({"fuzzy": {field: {"value": value, **(options or {})}}})

    def exists(self, field: str) -> Self:
        """Add a query matching documents that have a value for the field."""
        return self.add_query({"exists": {"field": field}})

    # Compound queries

    def range(self, field: str) -> RangeQueryBuilder:
        """Start a range query on a field; the clause is added by the first comparator."""
        return RangeQueryBuilder(self, field)

    @overload
    def bool(self, callback: BoolCallback) -> Self: ...

    @overload
    def bool(self, callback: None = None) -> BoolQueryBuilder: ...

    def bool(self, callback: BoolCallback | None = None) -> Self | BoolQueryBuilder:
        """Compose a bool query.

        With a callback, the callback fills the bool builder and the result is
        added straight away. Without one, the bool builder is returned and the
        caller adds it with `add_query(bool_builder.build())`.
        """
        bool_builder = BoolQueryBuilder(self)
        if callback is None:
            return bool_builder

        callback(bool_builder)
        return self.add_query(bool_builder.build())

    def nested(self, path: str, callback: QueryCallback) -> Self:
        """Add a nested query; the callback builds the query scoped to `path`."""
        nested_query = self.fresh()
        callback(nested_query)
        return self.add_query(
            {"nested": {"path": path, "query": nested_query.query_portion()}}
        )

    def filter(self, callback: QueryCallback) -> Self:
        """Add a filter-context clause (must match, doesn't score)."""
        filter_query = self.fresh()
        callback(filter_query)
        self._filters.append(filter_query.query_portion())
        return self

    def add_query(self, clause: QueryClause) -> Self:
        """Append a raw clause to the top-level query."""
        self._queries.append(clause)
        return self

    def last_range_query(self, field: str) -> QueryClause | None:
        """The last range clause added for a field, if any."""
        for clause in reversed(self._queries):
            if field in clause.get("range", {}):
                return clause
        return None

    def update_last_range_query(self, field: str, clause: QueryClause) -> Self:
        """Replace the last range clause for a field, keeping its position."""
        for i in range(len(self._queries) - 1, -1, -1):
            if field in self._queries[i].get("range", {}):
                self._queries[i] = clause
                break
        return self

    def query_portion(self) -> QueryClause:
        """The `query` part of the built body, `match_all` when nothing was added."""
        return self.build().get("query", copy.deepcopy(MATCH_ALL))

    # Request options

    def size(self, size: int) -> Self:
        """Set the maximum number of hits to return."""
        if size < 0:
            raise ValueError(f"Size must not be negative, got {size}.")
        max_size = self.config.query.max_size
        if size > max_size:
            log.warning(f"Requested size {size} exceeds {max_size}, clamping.")
            size = max_size
        self._size = size
        return self

    def from_(self, offset: int) -> Self:
        """Set the number of hits to skip."""
        if offset < 0:
            raise ValueError(f"From must not be negative, got {offset}.")
        self._from = offset
        return self

    def sort(
        self, field: str | Mapping[str, Any], direction: SortDirection = "asc"
    ) -> Self:
        """Add a sort criterion; the first one added is the primary sort key."""
        if isinstance(field, str):
            normalized = direction.lower()
            if normalized not in ("asc", "desc"):
                raise ValueError(f"Sort direction must be asc or desc, got {direction}.")
            self._sort.append({field: {"order": normalized}})
        else:
            self._sort.append(copy.deepcopy(dict(field)))
        return self

    def source(self, source: SourceSpec | Sequence[str]) -> Self:
        """Filter the returned `_source`: field list, single field, False, or includes/excludes."""
        if isinstance(source, bool | str):
            self._source = source
        elif isinstance(source, Mapping):
            self._source = {
                key: value if isinstance(value, str) else list(value)
                for key, value in source.items()
            }
        else:
            self._source = list(source)
        return self

    def highlight(
        self,
        fields: Mapping[str, Any] | Sequence[Any],
        options: Mapping[str, Any] | None = None,
    ) -> Self:
        """Highlight matches in the given fields, with global options such as pre_tags."""
        self._highlight = {
            **copy.deepcopy(dict(options or {})),
            "fields": copy.deepcopy(
                dict(fields) if isinstance(fields, Mapping) else list(fields)
            ),
        }
        return self

    def aggregation(self, name: str, callback: AggregationCallback) -> Self:
        """Add a named aggregation built by the callback, replacing one of the same name."""
        aggregation_builder = AggregationBuilder(self.config)
        callback(aggregation_builder)
        self._aggregations[name] = aggregation_builder.build()
        return self

    @override
    def build(self) -> SearchBody:
        body: SearchBody = {}

        if self._filters:
            bool_query: dict[str, Any] = {}
            if len(self._queries) == 1:
                bool_query["must"] = self._queries[0]
            elif self._queries:
                bool_query["must"] = self._queries
            bool_query["filter"] = self._filters
            body["query"] = {"bool": bool_query}
        elif len(self._queries) == 1:
            body["query"] = self._queries[0]
        elif self._queries:
            body["query"] = {"bool": {"must": self._queries}}

        if self._size is not None:
            body["size"] = self._size

        if self._from is not None:
            body["from"] = self._from

        if self._sort:
            body["sort"] = self._sort

        # False is meaningful here: no source at all
        if self._source is not None:
            body["_source"] = self._source

        if self._highlight:
            body["highlight"] = self._highlight

        if self._aggregations:
            body["aggs"] = self._aggregations

        return copy.deepcopy(body)

    @override
    async def run(self) -> SearchResponse:
        client = self.require_client()
        body = self.build()
        params: SearchParams = {}

        if (index := index_param(self._index)) is not None:
            params["index"] = index

        if body:
            params["body"] = body

        return await client.search(params)

    @override
    def clone_with_connection(self, name: str) -> Self:
        clone = self.with_connection(name)
        clone.copy_state(self)
        return clone

    @override
    def snapshot(self) -> Self:
        return self.fresh().copy_state(self)

    def copy_state(self, other: "QueryBuilder") -> Self:
        """Take a deep copy of another builder's query and cache state."""
        self._queries = copy.deepcopy(other._queries)
        self._filters = copy.deepcopy(other._filters)
        self._aggregations = copy.deepcopy(other._aggregations)
        self._sort = copy.deepcopy(other._sort)
        self._source = copy.deepcopy(other._source)
        self._highlight = copy.deepcopy(other._highlight)
        self._index = copy.copy(other._index)
        self._size = other._size
        self._from = other._from
        self.cache_options = other.cache_options
        return self

    async def paginate(self, per_page: int | None = None, page: int = 1) -> Page:
        """Execute one page of results.

        Sets `size` and `from_` on this builder from the page arithmetic.
        """
        if page < 1:
            raise ValueError(f"Page must be at least 1, got {page}.")
        self.size(per_page or self.config.query.default_size)
        # size() may have clamped it
        per_page = self._size or self.config.query.default_size
        self.from_((page - 1) * per_page)
        results = await self.execute()
        return Page.from_results(results, per_page=per_page, current_page=page)
