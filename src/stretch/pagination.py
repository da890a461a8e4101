import math
from dataclasses import dataclass
from typing import Any

from stretch.types.general import SearchResponse


@dataclass(frozen=True, slots=True)
class Page:
    """One page of search hits with the arithmetic to find the others."""

    items: list[dict[str, Any]]
    total: int
    per_page: int
    current_page: int = 1

    @property
    def last_page(self) -> int:
        """Number of the last page, at least 1."""
        return max(1, math.ceil(self.total / self.per_page))

    @property
    def has_more_pages(self) -> bool:
        """Whether there are pages after this one."""
        return self.current_page < self.last_page

    @classmethod
    def from_results(
        cls, results: SearchResponse, per_page: int, current_page: int = 1
    ) -> "Page":
        """Read hits and their total out of a `_search` response."""
        hits = results.get("hits", {})
        total = hits.get("total", 0)
        # Older clusters, or track_total_hits=false, report a bare number
        if isinstance(total, dict):
            total = total.get("value", 0)
        return cls(
            items=list(hits.get("hits", [])),
            total=int(total),
            per_page=per_page,
            current_page=current_page,
        )
