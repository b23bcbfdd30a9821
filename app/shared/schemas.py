"""Shared Pydantic schemas for API responses."""

import math

from pydantic import BaseModel, Field


class PaginationParams(BaseModel):
    """Pagination query parameters."""

    page: int = Field(1, ge=1, description="Page number (1-indexed)")
    page_size: int = Field(20, ge=1, le=100, description="Items per page")

    @property
    def offset(self) -> int:
        """Calculate SQL offset from page number."""
        return (self.page - 1) * self.page_size

    @property
    def limit(self) -> int:
        """Return page size as SQL limit."""
        return self.page_size

    def page_count(self, total: int) -> int:
        """Number of pages needed for ``total`` items."""
        return math.ceil(total / self.page_size) if total > 0 else 0
