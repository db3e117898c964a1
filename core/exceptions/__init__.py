from core.exceptions.base import (
    CustomException,
    BadRequestException,
    ValidationException,
    UnauthorizedException,
    ForbiddenException,
    NotFoundException,
    ConflictException,
    CapacityUnavailableException,
    DiscountCodeNotFoundException,
    DiscountCodeExpiredException,
    DiscountCodeExhaustedException,
    PaymentFailedException,
    TransactionAbortedException,
)

__all__ = [
    "CustomException",
    "BadRequestException",
    "ValidationException",
    "UnauthorizedException",
    "ForbiddenException",
    "NotFoundException",
    "ConflictException",
    "CapacityUnavailableException",
    "DiscountCodeNotFoundException",
    "DiscountCodeExpiredException",
    "DiscountCodeExhaustedException",
    "PaymentFailedException",
    "TransactionAbortedException",
]
