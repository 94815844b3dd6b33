from __future__ import annotations

import logging
from typing import Any

from ..billing import (
    ReconciliationError,
    SubscriptionManager,
    apply_status,
    complete_order,
    reconcile_capture,
    refund_order,
)
from ..billing.helpers import _normalize_text
from ..models import Purchase, Subscription
from ..tools.paypal import CaptureSummary
from .helpers import (
    _extract_amount,
    _extract_linked_capture_id,
    _extract_payer_email,
    _extract_related_order_id,
    _extract_subscription_id,
)

logger = logging.getLogger(__name__)


def handle_capture_completed(data: dict[str, Any]) -> None:
    order_id = _extract_related_order_id(data)
    if not order_id:
        logger.warning("Cannot settle capture %s without a related order id.", data.get("id"))
        return

    pending = list(Purchase.objects.filter(provider_order_id=order_id, status=Purchase.Status.PENDING))
    amount = _extract_amount(data)
    if pending and amount is not None:
        total_cents, currency = amount
        try:
            reconcile_capture(
                CaptureSummary(status="COMPLETED", total_cents=total_cents, currencies={currency}),
                expected_total_cents=sum(purchase.price_paid_cents for purchase in pending),
                currency=pending[0].currency,
                line_count=len(pending),
            )
        except ReconciliationError:
            logger.error("Capture webhook for order %s does not reconcile; leaving it pending.", order_id, exc_info=True)
            return

    _, newly_completed = complete_order(
        order_id,
        capture_id=_normalize_text(data.get("id")),
        payer_email=_extract_payer_email(data),
    )
    logger.info("Capture webhook for order %s processed (newly completed: %s).", order_id, newly_completed)


def handle_capture_refunded(data: dict[str, Any]) -> None:
    order_id = _extract_related_order_id(data)
    capture_id = _extract_linked_capture_id(data)
    if not order_id and not capture_id:
        logger.warning("Cannot apply refund %s without an order or capture reference.", data.get("id"))
        return
    refund_order(order_id, capture_id=capture_id)


def handle_subscription_activated(data: dict[str, Any]) -> None:
    SubscriptionManager().sync_activation(data)


def _apply_subscription_status(data: dict[str, Any], status: str) -> None:
    subscription_id = _normalize_text(data.get("id"))
    if not subscription_id:
        logger.warning("Cannot apply %s without a subscription id.", status)
        return
    apply_status(subscription_id, status)


def handle_subscription_cancelled(data: dict[str, Any]) -> None:
    _apply_subscription_status(data, Subscription.Status.CANCELED)


def handle_subscription_suspended(data: dict[str, Any]) -> None:
    _apply_subscription_status(data, Subscription.Status.PAST_DUE)


def handle_subscription_expired(data: dict[str, Any]) -> None:
    _apply_subscription_status(data, Subscription.Status.EXPIRED)


def handle_sale_completed(data: dict[str, Any]) -> None:
    if not data.get("billing_agreement_id"):
        logger.debug("Ignoring sale %s that is not tied to a subscription.", data.get("id"))
        return
    SubscriptionManager().refresh_subscription(_extract_subscription_id(data))


EVENT_HANDLERS: dict[str, Any] = {
    "PAYMENT.CAPTURE.COMPLETED": handle_capture_completed,
    "PAYMENT.CAPTURE.REFUNDED": handle_capture_refunded,
    "BILLING.SUBSCRIPTION.ACTIVATED": handle_subscription_activated,
    "BILLING.SUBSCRIPTION.RE-ACTIVATED": handle_subscription_activated,
    "BILLING.SUBSCRIPTION.CANCELLED": handle_subscription_cancelled,
    "BILLING.SUBSCRIPTION.SUSPENDED": handle_subscription_suspended,
    "BILLING.SUBSCRIPTION.PAYMENT.FAILED": handle_subscription_suspended,
    "BILLING.SUBSCRIPTION.EXPIRED": handle_subscription_expired,
    "PAYMENT.SALE.COMPLETED": handle_sale_completed,
}
