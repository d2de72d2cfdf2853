from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field

from storefront.models import get_datetime_utc

T = TypeVar("T")


def build_meta(**extra: Any) -> dict[str, Any]:
    return {"timestamp": get_datetime_utc().isoformat(), **extra}


class Pagination(BaseModel):
    current_page: int
    page_size: int
    total_items: int
    total_pages: int
    has_next_page: bool
    has_previous_page: bool

    @classmethod
    def build(cls, *, page: int, limit: int, total: int) -> "Pagination":
        total_pages = -(-total // limit)
        return cls(
            current_page=page,
            page_size=limit,
            total_items=total,
            total_pages=total_pages,
            has_next_page=page < total_pages,
            has_previous_page=page > 1,
        )


class ApiResponse(BaseModel, Generic[T]):
    success: bool = True
    message: str | None = None
    data: T
    meta: dict[str, Any] = Field(default_factory=build_meta)


class PaginatedResponse(ApiResponse[list[T]], Generic[T]):
    pagination: Pagination
    filters: dict[str, Any] = Field(default_factory=dict)
    sorting: dict[str, Any] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    code: str
    details: Any = None
    status_code: int
