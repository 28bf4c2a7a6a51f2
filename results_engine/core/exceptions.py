"""Engine exceptions and the error envelope they render to."""

from typing import Any

from fastapi import HTTPException, status


class AppException(HTTPException):
    """Base application exception.

    ``detail`` holds the full response body so the handler in ``main`` can
    return it as-is.
    """

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(status_code=status_code, detail=self.body())

    def body(self) -> dict[str, Any]:
        return {
            "success": False,
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
            },
        }


class ValidationError(AppException):
    """Request makes no sense for the current session state or exam."""

    def __init__(
        self,
        message: str = "Validation error",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            code="VALIDATION_ERROR",
            message=message,
            details=details,
        )


class NotFoundError(AppException):
    """Exam, student or dashboard session does not exist."""

    def __init__(
        self,
        resource: str = "Resource",
        identifier: int | str | None = None,
    ):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            code="NOT_FOUND",
            message=f"{resource} not found",
            details={"identifier": str(identifier)} if identifier is not None else None,
        )


# ==========================================
# Store failures
# ==========================================

class StoreError(AppException):
    """A call to the store of record failed; ``reason`` is the underlying error."""

    error_code = "STORE_FAILED"
    default_message = "Store of record failed"

    def __init__(self, reason: str, message: str | None = None):
        self.reason = reason
        super().__init__(
            status_code=status.HTTP_502_BAD_GATEWAY,
            code=self.error_code,
            message=message or self.default_message,
            details={"reason": reason},
        )


class FetchError(StoreError):
    """Loading roster, results or configuration failed.

    Existing drafts are left untouched; the caller may retry.
    """

    error_code = "FETCH_FAILED"
    default_message = "Failed to load exam data"


class SaveError(StoreError):
    """Persisting results or conduct failed. The draft is retained."""

    error_code = "SAVE_FAILED"
    default_message = "Failed to save exam results"


class InternalError(AppException):
    """Unhandled failure."""

    def __init__(self, message: str = "Internal server error"):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            code="INTERNAL_ERROR",
            message=message,
        )


class MarkParseError(ValueError):
    """A typed or pasted value is not a usable mark.

    Recovered locally: the cell is skipped and nothing is shown to the user.
    """
