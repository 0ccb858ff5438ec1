from typing import Any

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse


class AppError(Exception):
    """Base application error with consistent schema.

    ``retryable`` tells the client whether repeating the same request can
    succeed (concurrency/internal) or never will (validation/business rule).
    """

    retryable: bool = False

    def __init__(
        self,
        message: str,
        code: str = "ERROR",
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class UnauthorizedError(AppError):
    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, code="UNAUTHORIZED", status_code=status.HTTP_401_UNAUTHORIZED)


class ForbiddenError(AppError):
    def __init__(self, message: str = "Forbidden"):
        super().__init__(message, code="FORBIDDEN", status_code=status.HTTP_403_FORBIDDEN)


class NotFoundError(AppError):
    def __init__(self, message: str = "Not found"):
        super().__init__(message, code="NOT_FOUND", status_code=status.HTTP_404_NOT_FOUND)


class InvalidParametersError(AppError):
    def __init__(self, message: str = "Invalid parameters", details: dict[str, Any] | None = None):
        super().__init__(
            message,
            code="INVALID_PARAMETERS",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details,
        )


class InvalidStateError(AppError):
    def __init__(self, message: str = "Invalid state", details: dict[str, Any] | None = None):
        super().__init__(message, code="INVALID_STATE", status_code=status.HTTP_409_CONFLICT, details=details)


# Ledger / business rules


class InsufficientFundsError(AppError):
    def __init__(self, balance: int, required: int):
        super().__init__(
            f"Insufficient coins. Required: {required}, available: {balance}",
            code="INSUFFICIENT_FUNDS",
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            details={"balance": balance, "required": required},
        )
        self.balance = balance
        self.required = required


class SelfViewNotAllowedError(AppError):
    def __init__(self, message: str = "Cannot earn coins from your own promotion"):
        super().__init__(message, code="SELF_VIEW_NOT_ALLOWED", status_code=status.HTTP_403_FORBIDDEN)


class PromotionUnavailableError(AppError):
    def __init__(self, promotion_status: str):
        super().__init__(
            "Promotion is not available for viewing",
            code="PROMOTION_UNAVAILABLE",
            status_code=status.HTTP_409_CONFLICT,
            details={"status": promotion_status},
        )


class TargetReachedError(AppError):
    def __init__(self, views_count: int, target_views: int):
        super().__init__(
            "Promotion already reached its target views",
            code="TARGET_REACHED",
            status_code=status.HTTP_409_CONFLICT,
            details={"views_count": views_count, "target_views": target_views},
        )


class AlreadyCompletedError(AppError):
    def __init__(self, message: str = "Reward already claimed for this promotion"):
        super().__init__(message, code="ALREADY_COMPLETED", status_code=status.HTTP_409_CONFLICT)


class InsufficientWatchTimeError(AppError):
    def __init__(self, watched_seconds: int, required_seconds: int):
        super().__init__(
            f"Watch at least {required_seconds} seconds to earn the reward",
            code="INSUFFICIENT_WATCH_TIME",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"watched_seconds": watched_seconds, "required_seconds": required_seconds},
        )


class ConcurrencyConflictError(AppError):
    retryable = True

    def __init__(self, message: str = "Concurrent update, try again"):
        super().__init__(message, code="CONCURRENCY_CONFLICT", status_code=status.HTTP_503_SERVICE_UNAVAILABLE)


def _body(request: Request, message: str, code: str, details: dict[str, Any], retryable: bool) -> dict[str, Any]:
    body = {
        "error": {
            "message": message,
            "code": code,
            "details": details,
            "retryable": retryable,
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return body


def error_response(request: Request, exc: AppError) -> ORJSONResponse:
    body = _body(request, exc.message, exc.code, exc.details, exc.retryable)
    return ORJSONResponse(status_code=exc.status_code, content=body)


async def app_exception_handler(request: Request, exc: AppError) -> ORJSONResponse:
    return error_response(request, exc)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> ORJSONResponse:
    body = _body(request, "Validation error", "VALIDATION_ERROR", {"errors": exc.errors()}, False)
    return ORJSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=body,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
    from viewswap.core.logging import get_logger
    get_logger(__name__).exception("unhandled_exception", exc_info=exc)
    body = _body(request, "Internal server error", "INTERNAL_ERROR", {}, True)
    return ORJSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=body,
    )
