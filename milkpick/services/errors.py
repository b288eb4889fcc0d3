# milkpick/services/errors.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Optional


class ServiceError(Exception):
    """A rejected single-item operation. Rendered as JSON by the errors blueprint."""
    status_code = 400

    def __init__(self, message: str | None = None):
        super().__init__(message or self.__class__.__doc__ or "Request rejected")
        self.message = str(self.args[0])


class ProductNotFound(ServiceError):
    """Product not found"""
    status_code = 404


class ProductUnavailable(ServiceError):
    """Product is not currently available"""


class NotConfirmable(ServiceError):
    """Order cannot be confirmed in its current status"""
    status_code = 409


class PickupTooEarly(ServiceError):
    """Pickup cannot be confirmed before the scheduled date"""


class InvalidQrCode(ServiceError):
    """Invalid QR code"""
    status_code = 404


class OrderNotEditable(ServiceError):
    """Only pending, upcoming orders can be changed"""
    status_code = 409


class OrderConflict(ServiceError):
    """An order already exists for that date"""
    status_code = 409


class PaymentRejected(ServiceError):
    """Payment could not be processed"""

    def __init__(self, message: str | None = None, reason: str | None = None):
        super().__init__(message)
        self.reason = reason


class GatewayUnavailable(ServiceError):
    """Payment gateway error"""
    status_code = 502


@dataclass
class TaskResult:
    """Outcome of a best-effort side effect: ok, skipped or failed (and ignored)."""
    status: str
    reason: Optional[str] = None

    @classmethod
    def ok(cls):
        return cls("ok")

    @classmethod
    def skipped(cls, reason: str):
        return cls("skipped", reason)

    @classmethod
    def failed(cls, reason: str):
        return cls("failed", reason)
