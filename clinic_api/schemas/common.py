"""Response envelope shared by all endpoints."""

from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """Standard success envelope: ``{success, data, message}``."""

    success: bool = True
    data: T | None = None
    message: str | None = None


class PageInfo(BaseModel):
    """Pagination details for list responses."""

    total: int
    page: int
    page_size: int
