"""Shared pagination schemas for list endpoints."""

from pydantic import BaseModel


class PaginatedResponse(BaseModel):
    """Standard paginated response: items + total + cursor info."""

    items: list
    total: int
    limit: int
    offset: int
    has_more: bool
