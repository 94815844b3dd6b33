from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from django.conf import settings
from django.db import transaction
from django.utils import timezone as django_timezone

from ..models import Profile, Purchase
from ..tools.invoicing import issue_purchase_invoice
from ..tools.paypal import (
    ORDER_ALREADY_CAPTURED,
    CaptureSummary,
    PayPalError,
    find_link,
    get_paypal_client,
    summarize_order_captures,
)
from . import cart
from .context import CheckoutContextStore, PendingCheckoutContext, checkout_contexts
from .discounts import (
    allocate_discount,
    claim_discount_reservation,
    compute_discount,
    normalize_code,
    record_discount_usage,
    release_discount_reservation,
    require_discount_code,
    reserve_discount_usage,
)
from .exceptions import (
    CaptureDeclinedError,
    CheckoutError,
    DiscountValidationError,
    ReconciliationError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AppliedDiscount:
    code: str
    discount_cents: int
    original_total_cents: int
    final_total_cents: int

    def as_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "discount_cents": self.discount_cents,
            "original_total_cents": self.original_total_cents,
            "final_total_cents": self.final_total_cents,
        }


@dataclass(frozen=True)
class CreatedOrder:
    provider_order_id: str
    approval_url: str
    currency: str
    total_cents: int
    applied_discount: AppliedDiscount | None = None


@dataclass(frozen=True)
class CaptureResult:
    success: bool
    purchase_ids: list[int]
    already_completed: bool = False


@dataclass(frozen=True)
class DiscountApplication:
    """Discount to settle an order with; ``line_discounts`` follows purchase line order."""

    discount_code_id: int | None
    line_discounts: list[int]


def _frontend_url(path: str) -> str:
    base = str(getattr(settings, "FRONTEND_APP_URL", "") or "").rstrip("/")
    return f"{base}{path}"


def reconciliation_tolerance(line_count: int) -> int:
    """Allowed drift in cents: one cent per line for provider-side rounding."""
    return int(line_count)


def reconcile_capture(
    summary: CaptureSummary,
    *,
    expected_total_cents: int,
    currency: str,
    line_count: int,
) -> None:
    currency = currency.upper()
    if summary.currencies != {currency}:
        raise ReconciliationError(
            f"Captured currency {sorted(summary.currencies) or 'none'} does not match order currency {currency}."
        )
    drift = abs(summary.total_cents - expected_total_cents)
    if drift > reconciliation_tolerance(line_count):
        raise ReconciliationError(
            f"Captured {summary.total_cents} cents but expected {expected_total_cents} cents."
        )


def _pending_lines(provider_order_id: str, *, lock: bool = False):
    queryset = Purchase.objects.select_related("user", "content_item")
    if lock:
        queryset = queryset.select_for_update()
    return list(
        queryset.filter(provider_order_id=provider_order_id, status=Purchase.Status.PENDING).order_by(
            "line_number", "id"
        )
    )


def _completed_lines(provider_order_id: str, user: Profile | None = None) -> list[Purchase]:
    queryset = Purchase.objects.filter(provider_order_id=provider_order_id, status=Purchase.Status.COMPLETED)
    if user is not None:
        queryset = queryset.filter(user=user)
    return list(queryset.order_by("line_number", "id"))


def complete_order(
    provider_order_id: str,
    *,
    capture_id: str = "",
    payer_email: str = "",
    discount: DiscountApplication | None = None,
    now: datetime | None = None,
) -> tuple[list[Purchase], bool]:
    """Mark every PENDING line of ``provider_order_id`` COMPLETED, at most once.

    Shared by the synchronous capture path and the capture webhook. Returns the
    completed purchases and whether this call performed the transition. Only the
    winning call settles the discount redemption, clears the cart, and queues the
    invoice; replays return the existing purchases untouched.

    The redemption reserved before capture is linked to the first line. Without a
    reservation it is recorded here, and a usage limit breach raises
    ``DiscountCodeError`` and rolls the whole settlement back.
    """
    now = now or django_timezone.now()

    with transaction.atomic():
        pending = _pending_lines(provider_order_id, lock=True)
        if not pending:
            return _completed_lines(provider_order_id), False

        user = pending[0].user
        if discount is None:
            discount = DiscountApplication(
                discount_code_id=pending[0].discount_code_id,
                line_discounts=[purchase.discount_cents for purchase in pending],
            )
        if len(discount.line_discounts) != len(pending):
            raise ValueError("Line discounts must match the number of pending purchase lines.")

        transitioned = 0
        for purchase, share in zip(pending, discount.line_discounts):
            transitioned += Purchase.objects.filter(pk=purchase.pk, status=Purchase.Status.PENDING).update(
                status=Purchase.Status.COMPLETED,
                discount_cents=share,
                price_paid_cents=purchase.list_price_cents - share,
                discount_code_id=discount.discount_code_id,
                provider_capture_id=capture_id or purchase.provider_capture_id,
                payer_email=payer_email or purchase.payer_email,
                purchased_at=now,
                updated_at=now,
            )

        if not transitioned:
            return _completed_lines(provider_order_id), False

        if discount.discount_code_id:
            discount_total = sum(discount.line_discounts)
            claimed = claim_discount_reservation(
                provider_order_id,
                discount.discount_code_id,
                purchase=pending[0],
                amount_cents=discount_total,
            )
            if claimed is None:
                record_discount_usage(
                    discount.discount_code_id,
                    user,
                    discount_total,
                    purchase=pending[0],
                    provider_reference=provider_order_id,
                )

        cart.clear(user, [purchase.content_item_id for purchase in pending])

        purchase_ids = [purchase.pk for purchase in pending]
        transaction.on_commit(lambda: issue_purchase_invoice(purchase_ids))

    logger.info("Completed order %s with %s purchase line(s).", provider_order_id, len(pending))
    return _completed_lines(provider_order_id), True


def fail_pending_order(provider_order_id: str, *, user: Profile | None = None) -> int:
    queryset = Purchase.objects.filter(provider_order_id=provider_order_id, status=Purchase.Status.PENDING)
    if user is not None:
        queryset = queryset.filter(user=user)
    with transaction.atomic():
        failed = queryset.update(status=Purchase.Status.FAILED, updated_at=django_timezone.now())
        if failed:
            release_discount_reservation(provider_order_id)
    return failed


def refund_order(provider_order_id: str = "", *, capture_id: str = "") -> int:
    queryset = Purchase.objects.filter(status=Purchase.Status.COMPLETED)
    if provider_order_id:
        queryset = queryset.filter(provider_order_id=provider_order_id)
    elif capture_id:
        queryset = queryset.filter(provider_capture_id=capture_id)
    else:
        return 0

    refunded = queryset.update(status=Purchase.Status.REFUNDED, updated_at=django_timezone.now())
    logger.info("Marked %s purchase line(s) refunded (order=%s capture=%s).", refunded, provider_order_id, capture_id)
    return refunded


class CheckoutOrchestrator:
    """Drive a cart from provider order creation through capture and settlement."""

    def __init__(self, provider=None, contexts: CheckoutContextStore | None = None):
        self.provider = provider or get_paypal_client()
        self.contexts = contexts or checkout_contexts

    def create_order(self, user: Profile, discount_code: str | None = None) -> CreatedOrder:
        self.contexts.clear(user.pk)

        owned_ids = set(
            Purchase.objects.filter(user=user, status=Purchase.Status.COMPLETED).values_list(
                "content_item_id", flat=True
            )
        )
        lines = [
            item
            for item in cart.get_items(user)
            if not item.content_item.is_effectively_free and item.content_item_id not in owned_ids
        ]
        if not lines:
            raise CheckoutError("Your cart is empty.")

        currencies = {item.content_item.currency for item in lines}
        if len(currencies) > 1:
            raise CheckoutError("All items in the cart must use the same currency.")
        currency = currencies.pop()

        prices = [item.content_item.price_cents for item in lines]
        original_total = sum(prices)

        code_row = None
        discount_cents = 0
        if normalize_code(discount_code):
            code_row = require_discount_code(discount_code, user, original_total, for_subscription=False)
            discount_cents = compute_discount(code_row, original_total)
        shares = allocate_discount(discount_cents, prices)
        final_total = original_total - discount_cents

        order = self.provider.create_order(
            currency=currency,
            items=[
                {"name": item.content_item.title, "unit_amount_cents": price}
                for item, price in zip(lines, prices)
            ],
            discount_cents=discount_cents,
            return_url=_frontend_url("/library?purchase=success"),
            cancel_url=_frontend_url("/cart?purchase=cancelled"),
            reference_id=f"user-{user.pk}",
        )
        provider_order_id = str(order.get("id") or "").strip()
        if not provider_order_id:
            raise PayPalError("PayPal did not return an order id.")

        with transaction.atomic():
            for index, (item, price, share) in enumerate(zip(lines, prices, shares)):
                Purchase.objects.create(
                    user=user,
                    content_item=item.content_item,
                    status=Purchase.Status.PENDING,
                    list_price_cents=price,
                    discount_cents=share,
                    price_paid_cents=price - share,
                    currency=currency,
                    discount_code=code_row,
                    provider_order_id=provider_order_id,
                    line_number=index,
                )

        self.contexts.put(
            user.pk,
            PendingCheckoutContext(
                kind=PendingCheckoutContext.ORDER,
                provider_reference=provider_order_id,
                currency=currency,
                original_total_cents=original_total,
                final_total_cents=final_total,
                line_count=len(lines),
                discount_code_id=code_row.pk if code_row else None,
                discount_code=code_row.code if code_row else "",
                discount_amount_cents=discount_cents,
            ),
        )
        logger.info(
            "Created PayPal order %s for user %s (%s line(s), %s %s cents, discount %s).",
            provider_order_id,
            user.external_id,
            len(lines),
            final_total,
            currency,
            discount_cents,
        )

        applied = None
        if code_row is not None:
            applied = AppliedDiscount(
                code=code_row.code,
                discount_cents=discount_cents,
                original_total_cents=original_total,
                final_total_cents=final_total,
            )
        return CreatedOrder(
            provider_order_id=provider_order_id,
            approval_url=find_link(order, "approve", "payer-action"),
            currency=currency,
            total_cents=final_total,
            applied_discount=applied,
        )

    def _fail(self, user: Profile, provider_order_id: str, reason: str) -> None:
        self.contexts.clear(user.pk)
        failed = fail_pending_order(provider_order_id, user=user)
        logger.warning("Checkout %s failed for user %s (%s line(s)): %s", provider_order_id, user.external_id, failed, reason)

    def _capture(self, provider_order_id: str) -> dict[str, Any]:
        try:
            return self.provider.capture_order(provider_order_id)
        except PayPalError as exc:
            if exc.issue != ORDER_ALREADY_CAPTURED:
                raise
        logger.info("PayPal order %s was already captured; reading its current state.", provider_order_id)
        return self.provider.get_order(provider_order_id)

    def capture_order(self, user: Profile, provider_order_id: str) -> CaptureResult:
        provider_order_id = str(provider_order_id or "").strip()
        if not provider_order_id:
            raise CheckoutError("Order id is required.")

        completed = _completed_lines(provider_order_id, user=user)
        if completed:
            return CaptureResult(
                success=True,
                purchase_ids=[purchase.pk for purchase in completed],
                already_completed=True,
            )

        pending = [purchase for purchase in _pending_lines(provider_order_id) if purchase.user_id == user.pk]
        if not pending:
            raise CheckoutError("Order not found.", status_code=404)

        context = self.contexts.get_matching(
            user.pk,
            kind=PendingCheckoutContext.ORDER,
            provider_reference=provider_order_id,
        )
        line_prices = [purchase.list_price_cents for purchase in pending]
        currency = pending[0].currency

        if context is not None and context.discount_code_id:
            try:
                reserve_discount_usage(
                    context.discount_code_id,
                    user,
                    context.original_total_cents,
                    context.discount_amount_cents,
                    provider_reference=provider_order_id,
                )
            except DiscountValidationError as exc:
                self._fail(user, provider_order_id, str(exc))
                raise

        try:
            order = self._capture(provider_order_id)
        except PayPalError:
            # The capture may still have gone through, so the reservation stays with the pending rows.
            logger.warning("PayPal capture for order %s did not complete; leaving it pending.", provider_order_id)
            raise

        summary = summarize_order_captures(order)
        if summary.status != "COMPLETED":
            self._fail(user, provider_order_id, f"provider status {summary.status or 'unknown'}")
            raise CaptureDeclinedError("Payment was not completed.", provider_status=summary.status)

        expected_total = context.final_total_cents if context is not None else sum(line_prices)
        try:
            reconcile_capture(
                summary,
                expected_total_cents=expected_total,
                currency=currency,
                line_count=len(pending),
            )
        except ReconciliationError as exc:
            self._fail(user, provider_order_id, str(exc))
            raise

        discount_cents = context.discount_amount_cents if context is not None else 0
        purchases, newly_completed = complete_order(
            provider_order_id,
            capture_id=summary.capture_id,
            payer_email=summary.payer_email,
            discount=DiscountApplication(
                discount_code_id=context.discount_code_id if context is not None else None,
                line_discounts=allocate_discount(discount_cents, line_prices),
            ),
        )
        self.contexts.clear(user.pk)
        return CaptureResult(
            success=True,
            purchase_ids=[purchase.pk for purchase in purchases],
            already_completed=not newly_completed,
        )
