"""
Envelopes for subscription, entitlement and catalog responses.

Every body carries ``success``, ``message``, ``timestamp`` and ``data``;
failures add ``error_code`` and ``details`` and always send ``data: null``.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field, field_serializer

T = TypeVar("T")


class BaseResponse(BaseModel, Generic[T]):
    success: bool
    message: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    data: T | None = None

    @field_serializer("timestamp")
    def serialize_timestamp(self, value: datetime) -> str:
        # Clients parse a trailing Z, not +00:00
        return value.astimezone(UTC).isoformat().replace("+00:00", "Z")


class SuccessResponse(BaseResponse[T], Generic[T]):
    success: bool = True
    message: str = "OK"
    data: T


class ErrorResponse(BaseResponse[None]):
    """Rendered by the exception handlers for every failed request."""

    success: bool = False
    data: None = None
    error_code: str = Field(..., description="e.g. INVALID_TRANSITION, ENTITLEMENT_DENIED")
    details: dict[str, Any] | None = Field(
        None, description="Context such as the resource id or the gate that denied access"
    )


class ValidationErrorDetail(BaseModel):
    field: str = Field(..., description="Dotted location, e.g. body.planId")
    message: str
    value: Any = None


class ValidationErrorResponse(ErrorResponse):
    error_code: str = "VALIDATION_ERROR"
    details: dict[str, Any]
    validation_errors: list[ValidationErrorDetail]


class PaginationMeta(BaseModel):
    """Page window of an admin subscription listing."""

    page: int
    size: int
    total: int
    pages: int
    has_next: bool
    has_prev: bool

    @classmethod
    def build(cls, page: int, size: int, total: int) -> PaginationMeta:
        pages = (total + size - 1) // size if size else 0
        return cls(
            page=page,
            size=size,
            total=total,
            pages=pages,
            has_next=page < pages,
            has_prev=page > 1,
        )


class PaginatedResponse(BaseResponse[list[T]], Generic[T]):
    success: bool = True
    message: str = "Subscriptions retrieved"
    data: list[T]
    pagination: PaginationMeta
