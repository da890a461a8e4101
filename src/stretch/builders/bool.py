from collections.abc import Sequence
from typing import TYPE_CHECKING, Literal, Self

from stretch.types.general import QueryCallback, QueryClause

if TYPE_CHECKING:
    from stretch.builders.query import QueryBuilder

Occurrence = Literal["must", "should", "filter", "must_not"]


class BoolQueryBuilder:
    """Composes must/should/filter/must_not clause groups.

    Each group takes callbacks receiving a fresh QueryBuilder; the query part
    of what they build becomes one clause of the group.
    """

    def __init__(self, owner: "QueryBuilder") -> None:
        """Bind to the builder that will receive the bool clause."""
        self.owner: QueryBuilder = owner
        self.clauses: dict[Occurrence, list[QueryClause]] = {
            "must": [],
            "should": [],
            "filter": [],
            "must_not": [],
        }
        self._minimum_should_match: int | str | None = None

    def must(self, callbacks: QueryCallback | Sequence[QueryCallback]) -> Self:
        """Clauses that must match and contribute to the score."""
        return self.add("must", callbacks)

    def should(self, callbacks: QueryCallback | Sequence[QueryCallback]) -> Self:
        """Clauses that should match."""
        return self.add("should", callbacks)

    def filter(self, callbacks: QueryCallback | Sequence[QueryCallback]) -> Self:
        """Clauses that must match, without scoring."""
        return self.add("filter", callbacks)

    def must_not(self, callbacks: QueryCallback | Sequence[QueryCallback]) -> Self:
        """Clauses that must not match."""
        return self.add("must_not", callbacks)

    def add(
        self,
        occurrence: Occurrence,
        callbacks: QueryCallback | Sequence[QueryCallback],
    ) -> Self:
        """Run each callback against a fresh builder and add its query to a group."""
        for callback in [callbacks] if callable(callbacks) else callbacks:
            query = self.owner.fresh()
            callback(query)
            self.clauses[occurrence].append(query.query_portion())
        return self

    def minimum_should_match(self, value: int | str) -> Self:
        """How many should clauses must match (a count or a percentage string)."""
        self._minimum_should_match = value
        return self

    def build(self) -> QueryClause:
        """The bool clause.

        must, should and must_not collapse to a bare clause when they hold one
        entry; filter is always a list, like the top-level filter context.
        """
        bool_query: dict[str, object] = {}
        for occurrence, clauses in self.clauses.items():
            if not clauses:
                continue
            if len(clauses) == 1 and occurrence != "filter":
                bool_query[occurrence] = clauses[0]
            else:
                bool_query[occurrence] = list(clauses)

        if self._minimum_should_match is not None:
            bool_query["minimum_should_match"] = self._minimum_should_match

        return {"bool": bool_query}
