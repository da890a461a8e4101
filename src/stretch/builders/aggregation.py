import copy
from collections.abc import Mapping, Sequence
from typing import Any, Self

from loguru import logger as log

from stretch.config.general import CONFIG, GeneralConfig
from stretch.types.general import AggregationCallback

BUCKET_KINDS = ("terms", "date_histogram", "range", "histogram")


class AggregationBuilder:
    """Builds one named aggregation: a bucket or metric definition plus sub-aggregations.

    Calling a kind method replaces the previous definition; sub-aggregations
    are kept.
    """

    def __init__(self, config: GeneralConfig | None = None) -> None:
        """Create an empty aggregation."""
        self.config: GeneralConfig = config or CONFIG
        self.kind: str | None = None
        self.params: dict[str, Any] = {}
        self.sub_aggregations: dict[str, dict[str, Any]] = {}

    def define(
        self, kind: str, field: str, options: Mapping[str, Any] | None = None, **params: Any
    ) -> Self:
        """Set the aggregation definition to `{kind: {"field": field, ...}}`."""
        self.kind = kind
        self.params = {"field": field, **params, **(options or {})}
        return self

    # Buckets

    def terms(
        self,
        field: str,
        size: int | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> Self:
        """Bucket by distinct field values."""
        self.define("terms", field, options)
        if size is not None:
            self.size(size)
        return self

    def date_histogram(
        self, field: str, interval: str, options: Mapping[str, Any] | None = None
    ) -> Self:
        """Bucket dates by a calendar interval (`day`, `1M`...)."""
        return self.define("date_histogram", field, options, calendar_interval=interval)

    def histogram(
        self, field: str, interval: float, options: Mapping[str, Any] | None = None
    ) -> Self:
        """Bucket numbers by a fixed interval."""
        return self.define("histogram", field, options, interval=interval)

    def range(
        self,
        field: str,
        ranges: Sequence[Mapping[str, Any]],
        options: Mapping[str, Any] | None = None,
    ) -> Self:
        """Bucket by explicit `{"from": ..., "to": ...}` ranges."""
        return self.define(
            "range", field, options, ranges=[dict(bucket) for bucket in ranges]
        )

    # Metrics

    def avg(self, field: str, options: Mapping[str, Any] | None = None) -> Self:
        """Average of a numeric field."""
        return self.define("avg", field, options)

    def sum(self, field: str, options: Mapping[str, Any] | None = None) -> Self:
        """Sum of a numeric field."""
        return self.define("sum", field, options)

    def min(self, field: str, options: Mapping[str, Any] | None = None) -> Self:
        """Minimum of a numeric field."""
        return self.define("min", field, options)

    def max(self, field: str, options: Mapping[str, Any] | None = None) -> Self:
        """Maximum of a numeric field."""
        return self.define("max", field, options)

    def count(self, field: str, options: Mapping[str, Any] | None = None) -> Self:
        """Number of values of a field."""
        return self.define("value_count", field, options)

    def cardinality(self, field: str, options: Mapping[str, Any] | None = None) -> Self:
        """Approximate number of distinct values of a field."""
        return self.define("cardinality", field, options)

    def size(self, size: int) -> Self:
        """Number of buckets to return."""
        if self.kind not in BUCKET_KINDS:
            raise ValueError("Size can only be set on a bucket aggregation.")
        if size < 0:
            raise ValueError(f"Size must not be negative, got {size}.")
        max_buckets = self.config.aggregations.max_buckets
        if size > max_buckets:
            log.warning(f"Requested {size} buckets exceeds {max_buckets}, clamping.")
            size = max_buckets
        self.params["size"] = size
        return self

    def sub_aggregation(self, name: str, callback: AggregationCallback) -> Self:
        """Nest an aggregation under this one's buckets."""
        sub_builder = AggregationBuilder(self.config)
        callback(sub_builder)
        self.sub_aggregations[name] = sub_builder.build()
        return self

    def build(self) -> dict[str, Any]:
        """The aggregation definition; empty if nothing was defined."""
        definition: dict[str, Any] = {}
        if self.kind is not None:
            definition[self.kind] = copy.deepcopy(self.params)
        if self.sub_aggregations:
            definition["aggs"] = copy.deepcopy(self.sub_aggregations)
        return definition
