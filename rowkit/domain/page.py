"""
Pagination result model.

A `Page` carries one slice of Records together with the counts needed to
render pagination controls.
"""
from __future__ import annotations

import math
from typing import Any, Dict, List

from pydantic import BaseModel, Field, computed_field

from rowkit.domain.record import Record


class Page(BaseModel):
    """
    One page of a paginated query.
    """

    records: List[Record] = Field(default_factory=list, description="Rows on this page.")
    page: int = Field(..., ge=1, description="1-based page number.")
    page_size: int = Field(..., ge=1, description="Requested rows per page.")
    total_row: int = Field(..., ge=0, description="Rows matching the query across all pages.")

    model_config = {
        "frozen": True,
        "arbitrary_types_allowed": True,
    }

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_page(self) -> int:
        return math.ceil(self.total_row / self.page_size) if self.total_row else 0

    @property
    def is_first_page(self) -> bool:
        return self.page == 1

    @property
    def is_last_page(self) -> bool:
        return self.page >= self.total_page

    def to_dict(self) -> Dict[str, Any]:
        """Plain-dict view with records flattened, suitable for JSON encoding."""
        return {
            "records": [record.to_dict() for record in self.records],
            "page": self.page,
            "page_size": self.page_size,
            "total_row": self.total_row,
            "total_page": self.total_page,
        }


__all__ = ["Page"]
