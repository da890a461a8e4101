from typing import TYPE_CHECKING, Any, Self

from stretch.types.general import QueryClause, RangeComparator

if TYPE_CHECKING:
    from stretch.builders.query import QueryBuilder

COMPARATORS: tuple[RangeComparator, ...] = ("gt", "gte", "lt", "lte")


class RangeQueryBuilder:
    """Builds one field's range clause and writes it back to its owner.

    The first comparator appends the clause; later ones replace it in place.
    Starting a new range on a field that already has one picks up that
    clause's bounds, so `range("x").gte(2)` only moves the lower bound.
    """

    def __init__(self, owner: "QueryBuilder", field: str) -> None:
        """Bind to the owning builder and a field."""
        self.owner: QueryBuilder = owner
        self.field: str = field

        existing = owner.last_range_query(field)
        self.params: dict[str, Any] = (
            dict(existing["range"][field]) if existing is not None else {}
        )
        self.emitted: bool = existing is not None

    def gt(self, value: Any) -> Self:
        """Greater than."""
        return self.set("gt", value)

    def gte(self, value: Any) -> Self:
        """Greater than or equal to."""
        return self.set("gte", value)

    def lt(self, value: Any) -> Self:
        """Less than."""
        return self.set("lt", value)

    def lte(self, value: Any) -> Self:
        """Less than or equal to."""
        return self.set("lte", value)

    def format(self, date_format: str) -> Self:
        """Date format used to parse the bounds."""
        return self.set("format", date_format)

    def time_zone(self, time_zone: str) -> Self:
        """Time zone applied to date bounds."""
        return self.set("time_zone", time_zone)

    def boost(self, boost: float) -> Self:
        """Relevance boost of the clause."""
        return self.set("boost", boost)

    def set(self, key: str, value: Any) -> Self:
        """Set a range parameter, then sync the owner's clause once it has a bound."""
        self.params[key] = value

        if not any(comparator in self.params for comparator in COMPARATORS):
            return self

        if self.emitted:
            self.owner.update_last_range_query(self.field, self.build())
        else:
            self.owner.add_query(self.build())
            self.emitted = True
        return self

    def build(self) -> QueryClause:
        """The range clause for the current parameters."""
        return {"range": {self.field: dict(self.params)}}
