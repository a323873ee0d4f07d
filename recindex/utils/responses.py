"""Generic response models for consistent API responses."""

from datetime import datetime, timezone
from typing import Any, Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field

from recindex.config.settings import settings

T = TypeVar("T")


class ResponseMetadata(BaseModel):
    """Metadata included in all API responses."""

    app_name: str = Field(default=settings.APP_NAME)
    app_version: str = Field(default=settings.APP_VERSION)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {
        "json_schema_extra": {
            "example": {
                "app_name": "Recording Index",
                "app_version": "1.0.0",
                "timestamp": "2025-11-03T15:58:36Z",
            }
        }
    }


class SuccessResponse(BaseModel, Generic[T]):
    """Generic success response with data and metadata."""

    success: bool = Field(default=True)
    message: str = Field(default="Operation completed successfully")
    data: T
    metadata: ResponseMetadata = Field(default_factory=ResponseMetadata)


class ErrorResponse(BaseModel):
    """Standard error response structure."""

    success: bool = Field(default=False)
    error: str
    detail: Optional[str] = None
    metadata: ResponseMetadata = Field(default_factory=ResponseMetadata)


class PaginationMeta(BaseModel):
    """Offset/cursor pagination metadata."""

    limit: int = Field(ge=1, description="Items per page")
    offset: int = Field(ge=0, description="Offset of the first item (0 when paging by cursor)")
    total: Optional[int] = Field(default=None, ge=0, description="Total number of matching items")
    has_more: bool = Field(description="Whether another page follows")
    next_cursor: Optional[str] = Field(default=None, description="Cursor for the next page")


class PaginatedResponse(BaseModel, Generic[T]):
    """Paginated response with data and pagination metadata."""

    success: bool = Field(default=True)
    message: str = Field(default="Items retrieved successfully")
    data: List[T]
    pagination: PaginationMeta
    metadata: ResponseMetadata = Field(default_factory=ResponseMetadata)

    model_config = {
        "json_schema_extra": {
            "example": {
                "success": True,
                "message": "Items retrieved successfully",
                "data": [],
                "pagination": {
                    "limit": 50,
                    "offset": 0,
                    "total": 120,
                    "has_more": True,
                    "next_cursor": "eyJyIjogIjIwMjQtMDEtMDFUMTI6MDA6MDArMDA6MDAiLCAiaSI6ICIuLi4ifQ",
                },
                "metadata": {
                    "app_name": "Recording Index",
                    "app_version": "1.0.0",
                    "timestamp": "2025-11-03T15:58:36Z",
                },
            }
        }
    }


# Helper functions to create responses
def success_response(
    data: T,
    message: str = "Operation completed successfully",
    **kwargs: Any
) -> SuccessResponse[T]:
    """Create a success response."""
    return SuccessResponse(
        success=True,
        message=message,
        data=data,
        metadata=ResponseMetadata(**kwargs) if kwargs else ResponseMetadata()
    )


def error_response(
    error: str,
    detail: Optional[str] = None,
    **kwargs: Any
) -> ErrorResponse:
    """Create an error response."""
    return ErrorResponse(
        success=False,
        error=error,
        detail=detail,
        metadata=ResponseMetadata(**kwargs) if kwargs else ResponseMetadata()
    )


def paginated_response(
    data: List[T],
    limit: int,
    offset: int,
    total: Optional[int],
    has_more: bool,
    next_cursor: Optional[str] = None,
    message: str = "Items retrieved successfully",
    **kwargs: Any
) -> PaginatedResponse[T]:
    """Create a paginated response."""
    return PaginatedResponse(
        success=True,
        message=message,
        data=data,
        pagination=PaginationMeta(
            limit=limit,
            offset=offset,
            total=total,
            has_more=has_more,
            next_cursor=next_cursor,
        ),
        metadata=ResponseMetadata(**kwargs) if kwargs else ResponseMetadata()
    )
