from __future__ import annotations


class CheckoutError(ValueError):
    """Checkout request cannot proceed (empty cart, unknown order, mixed currencies)."""

    def __init__(self, message: str, *, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


class DiscountValidationError(ValueError):
    """Discount code was rejected. The message is safe to show to the buyer."""


class DiscountCodeError(RuntimeError):
    """Recording a redemption would break a usage limit."""


class ReconciliationError(RuntimeError):
    """Captured amount or currency does not match what the order expected."""


class CaptureDeclinedError(RuntimeError):
    def __init__(self, message: str, *, provider_status: str = ""):
        super().__init__(message)
        self.provider_status = provider_status


class SubscriptionError(RuntimeError):
    def __init__(self, message: str, *, status_code: int = 409):
        super().__init__(message)
        self.status_code = status_code
