# backend/bookbeauty/core/exceptions.py
"""
Domain-specific exceptions for the BookBeauty platform.

These exceptions provide clear, business-focused error messages
that can be caught and handled appropriately at the API layer.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status

from .constants import UPSTREAM_ERROR_MAX_LENGTH

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        """Convert to an HTTPException using the class status code."""
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when input is missing or malformed."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, code or "InvalidInput", details)


class UnauthorizedException(DomainException):
    """Raised when the identity token is missing or invalid."""

    status_code = status.HTTP_401_UNAUTHORIZED


class ForbiddenException(DomainException):
    """Raised when the caller is authenticated but not permitted."""

    status_code = status.HTTP_403_FORBIDDEN


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """Raised when the current state does not allow the action."""

    status_code = status.HTTP_409_CONFLICT


class GoneException(DomainException):
    """Raised when a time-limited credential has expired."""

    status_code = status.HTTP_410_GONE


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    status_code = HTTP_422_UNPROCESSABLE


class UpstreamFailureException(DomainException):
    """Raised when a payment provider call fails."""

    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(truncate_message(message), code or "UpstreamFailure", details)


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            message or "An error occurred processing your request",
            code or "InternalError",
            details,
        )


class RepositoryException(Exception):
    """Raised when a data access operation fails."""


# Specific business exceptions


class AlreadyPaidException(ConflictException):
    """Raised when a payment is requested for a booking that is already paid."""

    def __init__(self, booking_id: str) -> None:
        super().__init__(
            "Booking is already paid",
            code="AlreadyPaid",
            details={"booking_id": booking_id},
        )


class BookingConflictException(ConflictException):
    """Raised when a booking would exceed the slot capacity."""

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            message or "This time slot is no longer available",
            code="SlotUnavailable",
            details=details,
        )


class MerchantNotLinkedException(ConflictException):
    """Raised when a salon has no usable Mollie connection; re-onboarding required."""

    def __init__(self, company_id: str, message: Optional[str] = None) -> None:
        super().__init__(
            message or "Mollie account is not linked for this salon",
            code="MerchantNotLinked",
            details={"company_id": company_id},
        )


def truncate_message(message: Optional[str], limit: int = UPSTREAM_ERROR_MAX_LENGTH) -> str:
    """Clamp provider error text to a safe length for API responses."""
    text = str(message or "").strip() or "Payment action failed"
    return text[:limit]
