"""Pagination helpers for list endpoints."""

from typing import Sequence, TypeVar

from fastapi import Query
from pydantic import BaseModel

T = TypeVar("T")


class PaginationParams:
    """FastAPI dependency for `?page=1&limit=20&sort=createdAt&order=desc`."""

    def __init__(
        self,
        page: int = Query(default=1, ge=1, description="Page number (1-based)"),
        limit: int = Query(default=20, ge=1, le=200, description="Items per page"),
        sort: str = Query(
            default="createdAt", pattern="^(createdAt|updatedAt)$", description="Sort field"
        ),
        order: str = Query(default="desc", pattern="^(asc|desc)$", description="Sort order"),
    ):
        self.page = page
        self.limit = limit
        self.sort = "updated_at" if sort == "updatedAt" else "created_at"
        self.order = order

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    def apply(self, items: Sequence[T]) -> list[T]:
        """Order *items* by the sort field and cut out the requested page."""
        ordered = sorted(items, key=lambda i: getattr(i, self.sort), reverse=self.order == "desc")
        return ordered[self.offset:self.offset + self.limit]


class PageMeta(BaseModel):
    total: int
    page: int
    limit: int
    pages: int

    model_config = {"populate_by_name": True}
