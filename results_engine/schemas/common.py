"""Schema base class and the error envelope."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

ErrorCode = Literal[
    "NOT_FOUND",
    "VALIDATION_ERROR",
    "FETCH_FAILED",
    "SAVE_FAILED",
    "STORE_FAILED",
    "INTERNAL_ERROR",
]


class BaseSchema(BaseModel):
    """Base schema with common configuration."""

    model_config = ConfigDict(
        populate_by_name=True,
        str_strip_whitespace=True,
    )


class ErrorDetail(BaseSchema):
    code: ErrorCode
    message: str
    details: dict[str, Any] = {}


class ErrorResponse(BaseSchema):
    """Body of every error response, whatever raised it."""

    success: Literal[False] = False
    error: ErrorDetail
