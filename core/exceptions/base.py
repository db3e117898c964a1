from typing import Any, Dict, Optional


class CustomException(Exception):
    """Base exception class for all custom exceptions."""

    code: int = 500
    error_code: str = "INTERNAL_SERVER_ERROR"
    message: str = "An unexpected error occurred"
    data: Optional[Dict[str, Any]] = None

    def __init__(
        self,
        message: str = None,
        code: int = None,
        error_code: str = None,
        data: Dict[str, Any] = None
    ):
        self.message = message or self.message
        self.code = code or self.code
        self.error_code = error_code or self.error_code
        self.data = data or {}
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code}, error_code={self.error_code}, message={self.message})"


class BadRequestException(CustomException):
    """Exception for bad request errors (400)."""

    code = 400
    error_code = "BAD_REQUEST"
    message = "Bad request"


class ValidationException(CustomException):
    """Malformed or missing input detected by domain validation (400)."""

    code = 400
    error_code = "VALIDATION_ERROR"
    message = "Validation error"


class UnauthorizedException(CustomException):
    """Exception for unauthorized access (401)."""

    code = 401
    error_code = "UNAUTHORIZED"
    message = "Unauthorized"


class ForbiddenException(CustomException):
    """Exception for forbidden access (403)."""

    code = 403
    error_code = "FORBIDDEN"
    message = "Access forbidden"


class NotFoundException(CustomException):
    """Exception for resource not found (404)."""

    code = 404
    error_code = "NOT_FOUND"
    message = "Resource not found"


class ConflictException(CustomException):
    """Exception for resource conflicts (409)."""

    code = 409
    error_code = "CONFLICT"
    message = "Resource conflict"


class CapacityUnavailableException(ConflictException):
    """A seat pool had nothing left to reserve."""

    error_code = "CAPACITY_UNAVAILABLE"
    message = "No available slots"


class DiscountCodeNotFoundException(NotFoundException):
    error_code = "DISCOUNT_CODE_NOT_FOUND"
    message = "Invalid discount code"


class DiscountCodeExpiredException(BadRequestException):
    error_code = "DISCOUNT_CODE_EXPIRED"
    message = "Discount code has expired"


class DiscountCodeExhaustedException(ConflictException):
    error_code = "DISCOUNT_CODE_EXHAUSTED"
    message = "Discount code has no remaining uses"


class PaymentFailedException(CustomException):
    """A payment gateway rejected the request or could not be reached.

    ``retryable`` is True for timeouts and connection errors, where the same
    request may succeed later, and False for declines and invalid requests.
    """

    code = 500
    error_code = "PAYMENT_FAILED"
    message = "Payment processing failed"

    def __init__(
        self,
        message: str = None,
        retryable: bool = False,
        processor: str = None,
        data: Dict[str, Any] = None,
    ):
        payload = dict(data or {})
        payload["retryable"] = retryable
        if processor:
            payload["processor"] = processor
        super().__init__(message=message, data=payload)
        self.retryable = retryable
        self.processor = processor


class TransactionAbortedException(CustomException):
    """A database transaction was rolled back."""

    code = 500
    error_code = "TRANSACTION_ABORTED"
    message = "The operation could not be completed and was rolled back"
