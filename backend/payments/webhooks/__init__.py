from .handlers import (
    EVENT_HANDLERS,
    handle_capture_completed,
    handle_capture_refunded,
    handle_sale_completed,
    handle_subscription_activated,
    handle_subscription_cancelled,
    handle_subscription_expired,
    handle_subscription_suspended,
)
from .receiver import PaymentWebhookView
from .verification import WebhookVerificationError, _verify_webhook

__all__ = [
    "PaymentWebhookView",
    "EVENT_HANDLERS",
    "WebhookVerificationError",
    "_verify_webhook",
    "handle_capture_completed",
    "handle_capture_refunded",
    "handle_subscription_activated",
    "handle_subscription_cancelled",
    "handle_subscription_suspended",
    "handle_subscription_expired",
    "handle_sale_completed",
]
