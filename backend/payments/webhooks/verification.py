from __future__ import annotations

import json
from typing import Any

from ..tools.paypal import PayPalClient, PayPalConfigurationError, PayPalError, get_paypal_client


class WebhookVerificationError(RuntimeError):
    pass


def _verify_webhook(
    payload: bytes,
    headers: dict[str, str],
    client: PayPalClient | None = None,
) -> dict[str, Any]:
    """Verify the PayPal transmission signature and return the parsed event payload."""
    missing = [name for name, value in headers.items() if not value]
    if missing:
        raise WebhookVerificationError(f"Missing webhook headers: {', '.join(sorted(missing))}.")

    try:
        event = json.loads(payload.decode("utf-8") or "{}")
    except (UnicodeDecodeError, ValueError) as exc:
        raise WebhookVerificationError("Webhook body is not valid JSON.") from exc
    if not isinstance(event, dict):
        raise WebhookVerificationError("Webhook body must be a JSON object.")

    client = client or get_paypal_client()
    try:
        verified = client.verify_webhook_signature(headers, event)
    except PayPalConfigurationError as exc:
        raise WebhookVerificationError(str(exc)) from exc
    except PayPalError as exc:
        raise WebhookVerificationError(f"Webhook signature verification failed: {exc}") from exc

    if not verified:
        raise WebhookVerificationError("Webhook signature verification failed.")
    return event
