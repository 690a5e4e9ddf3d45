from enum import Enum
from typing import Any, Optional

from fastapi import status
from pydantic import BaseModel


class ErrorCode(Enum):
    # Ledger
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    SUBSCRIPTION_INACTIVE = "SUBSCRIPTION_INACTIVE"
    USAGE_ALREADY_CORRECTED = "USAGE_ALREADY_CORRECTED"

    # Invoice lifecycle
    INVOICE_NOT_DRAFT = "INVOICE_NOT_DRAFT"
    INVOICE_ALREADY_ISSUED = "INVOICE_ALREADY_ISSUED"
    ACK_NOT_ISSUED = "ACK_NOT_ISSUED"
    INVALID_STATUS_TRANSITION = "INVALID_STATUS_TRANSITION"
    ORDER_STATUS_NOT_ALLOWED = "ORDER_STATUS_NOT_ALLOWED"
    SUBSCRIPTION_NOT_PAID = "SUBSCRIPTION_NOT_PAID"

    # Subscription purchase
    PLAN_ALREADY_REDEEMED = "PLAN_ALREADY_REDEEMED"
    ACTIVE_SUBSCRIPTION_SAME_PLAN = "ACTIVE_SUBSCRIPTION_SAME_PLAN"

    # Generic
    VALIDATION = "VALIDATION"
    NOT_FOUND = "NOT_FOUND"


class StandardErrorResponse(BaseModel):
    success: bool = False
    error_code: str
    message: str
    details: Optional[dict[str, Any]] = None


class DomainError(Exception):
    code: ErrorCode = ErrorCode.VALIDATION
    http_status: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_response(self) -> StandardErrorResponse:
        return StandardErrorResponse(
            error_code=self.code.value,
            message=self.message,
            details=self.details,
        )


class InsufficientBalanceError(DomainError):
    code = ErrorCode.INSUFFICIENT_BALANCE
    http_status = status.HTTP_409_CONFLICT


class SubscriptionInactiveError(DomainError):
    code = ErrorCode.SUBSCRIPTION_INACTIVE
    http_status = status.HTTP_409_CONFLICT


class UsageAlreadyCorrectedError(DomainError):
    code = ErrorCode.USAGE_ALREADY_CORRECTED
    http_status = status.HTTP_409_CONFLICT


class InvoiceNotDraftError(DomainError):
    code = ErrorCode.INVOICE_NOT_DRAFT
    http_status = status.HTTP_409_CONFLICT


class InvoiceAlreadyIssuedError(DomainError):
    code = ErrorCode.INVOICE_ALREADY_ISSUED
    http_status = status.HTTP_409_CONFLICT


class AckNotIssuedError(DomainError):
    code = ErrorCode.ACK_NOT_ISSUED
    http_status = status.HTTP_409_CONFLICT


class InvalidStatusTransitionError(DomainError):
    code = ErrorCode.INVALID_STATUS_TRANSITION
    http_status = status.HTTP_409_CONFLICT


class OrderStatusNotAllowedError(DomainError):
    code = ErrorCode.ORDER_STATUS_NOT_ALLOWED
    http_status = status.HTTP_409_CONFLICT


class SubscriptionNotPaidError(DomainError):
    code = ErrorCode.SUBSCRIPTION_NOT_PAID
    http_status = status.HTTP_409_CONFLICT


class PlanAlreadyRedeemedError(DomainError):
    code = ErrorCode.PLAN_ALREADY_REDEEMED
    http_status = status.HTTP_409_CONFLICT


class ActiveSubscriptionSamePlanError(DomainError):
    code = ErrorCode.ACTIVE_SUBSCRIPTION_SAME_PLAN
    http_status = status.HTTP_409_CONFLICT


class DraftValidationError(DomainError):
    code = ErrorCode.VALIDATION
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY


class NotFoundError(DomainError):
    code = ErrorCode.NOT_FOUND
    http_status = status.HTTP_404_NOT_FOUND
