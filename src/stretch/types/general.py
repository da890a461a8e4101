from collections.abc import Callable
from typing import TYPE_CHECKING, Annotated, Any, Literal, TypedDict

from pydantic import BeforeValidator

if TYPE_CHECKING:
    from stretch.builders.aggregation import AggregationBuilder
    from stretch.builders.bool import BoolQueryBuilder
    from stretch.builders.query import QueryBuilder

LogLevel = Annotated[
    Literal[
        "TRACE",
        "DEBUG",
        "INFO",
        "SUCCESS",
        "WARNING",
        "ERROR",
        "CRITICAL",
    ],
    BeforeValidator(lambda a: str(a).upper()),
]

# One leaf or composite query expression, e.g. {"match": {"title": {"query": "x"}}}
QueryClause = dict[str, Any]

IndexSelector = str | list[str]

SortDirection = Literal["asc", "desc"]

SourceSpec = list[str] | str | bool | dict[str, list[str] | str]

RangeComparator = Literal["gt", "gte", "lt", "lte"]

# Either a single duration, or a [fresh, stale] pair for stale-while-revalidate
CacheTTL = int | tuple[int, int]

QueryCallback = Callable[["QueryBuilder"], Any]
BoolCallback = Callable[["BoolQueryBuilder"], Any]
AggregationCallback = Callable[["AggregationBuilder"], Any]

# `from` is a keyword, so the functional syntax is required here
SearchBody = TypedDict(
    "SearchBody",
    {
        "query": QueryClause,
        "size": int,
        "from": int,
        "sort": list[dict[str, Any]],
        "_source": SourceSpec,
        "highlight": dict[str, Any],
        "aggs": dict[str, dict[str, Any]],
    },
    total=False,
)


class SearchParams(TypedDict, total=False):
    """Parameters for a single `_search` call."""

    index: str
    body: SearchBody


class MultiSearchHeader(TypedDict, total=False):
    """Header line preceding each body in an `_msearch` request."""

    index: str


class MultiSearchParams(TypedDict):
    """Parameters for a batched `_msearch` call."""

    body: list[MultiSearchHeader | SearchBody]


SearchResponse = dict[str, Any]


# `responses` is positional from the backend, keyed by entry name once remapped
MultiSearchResponse = dict[str, Any]
