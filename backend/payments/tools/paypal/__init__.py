from .client import (
    ORDER_ALREADY_CAPTURED,
    WEBHOOK_HEADER_NAMES,
    CaptureSummary,
    PayPalClient,
    PayPalConfigurationError,
    PayPalError,
    amount_to_cents,
    build_billing_cycles,
    build_price_override,
    cents_to_amount,
    find_link,
    get_paypal_client,
    summarize_order_captures,
)

__all__ = [
    "ORDER_ALREADY_CAPTURED",
    "WEBHOOK_HEADER_NAMES",
    "CaptureSummary",
    "PayPalClient",
    "PayPalConfigurationError",
    "PayPalError",
    "amount_to_cents",
    "build_billing_cycles",
    "build_price_override",
    "cents_to_amount",
    "find_link",
    "get_paypal_client",
    "summarize_order_captures",
]
