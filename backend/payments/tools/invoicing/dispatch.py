from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Union

from django.conf import settings
from django.utils.module_loading import import_string

from ...models import CustomerAccount, Profile, Purchase, Subscription

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InvoiceLine:
    description: str
    list_price_cents: int
    discount_cents: int
    amount_cents: int


@dataclass(frozen=True)
class BillingDetails:
    email: str
    full_name: str
    company_name: str = ""
    country: str = ""
    tax_id: str = ""
    address: str = ""


@dataclass(frozen=True)
class PurchaseInvoice:
    provider_order_id: str
    currency: str
    issued_at: datetime
    billing: BillingDetails
    lines: list[InvoiceLine] = field(default_factory=list)
    discount_code: str = ""
    kind: str = "purchase"

    @property
    def total_cents(self) -> int:
        return sum(line.amount_cents for line in self.lines)


@dataclass(frozen=True)
class SubscriptionInvoice:
    provider_subscription_id: str
    plan_name: str
    currency: str
    amount_cents: int
    issued_at: datetime
    billing: BillingDetails
    period_start: datetime | None = None
    period_end: datetime | None = None
    discount_code: str = ""
    kind: str = "subscription"


Invoice = Union[PurchaseInvoice, SubscriptionInvoice]


def _billing_details(profile: Profile, payer_email: str = "") -> BillingDetails:
    account = CustomerAccount.objects.filter(profile=profile).first()
    if account is None:
        return BillingDetails(email=payer_email or profile.email, full_name=profile.display_name)
    return BillingDetails(
        email=account.billing_email or payer_email or profile.email,
        full_name=account.full_name or profile.display_name,
        company_name=account.company_name,
        country=account.country,
        tax_id=account.tax_id,
        address=account.address,
    )


def build_purchase_invoice(purchases: list[Purchase]) -> PurchaseInvoice:
    first = purchases[0]
    return PurchaseInvoice(
        provider_order_id=first.provider_order_id,
        currency=first.currency,
        issued_at=first.purchased_at or first.updated_at,
        billing=_billing_details(first.user, first.payer_email),
        lines=[
            InvoiceLine(
                description=purchase.content_item.title,
                list_price_cents=purchase.list_price_cents,
                discount_cents=purchase.discount_cents,
                amount_cents=purchase.price_paid_cents,
            )
            for purchase in purchases
        ],
        discount_code=first.discount_code.code if first.discount_code_id else "",
    )


def build_subscription_invoice(subscription: Subscription, amount_cents: int) -> SubscriptionInvoice:
    plan = subscription.plan
    return SubscriptionInvoice(
        provider_subscription_id=subscription.provider_subscription_id,
        plan_name=plan.name if plan else "",
        currency=plan.currency if plan else "USD",
        amount_cents=amount_cents,
        issued_at=subscription.current_period_start or subscription.created_at,
        billing=_billing_details(subscription.user),
        period_start=subscription.current_period_start,
        period_end=subscription.current_period_end,
        discount_code=subscription.discount_code.code if subscription.discount_code_id else "",
    )


def _resolve_generator() -> Callable[[Invoice], object] | None:
    dotted_path = str(getattr(settings, "INVOICE_GENERATOR", "") or "").strip()
    if not dotted_path:
        return None
    return import_string(dotted_path)


def issue_invoice(invoice: Invoice) -> bool:
    """Hand ``invoice`` to the configured generator.

    Best-effort: the purchase or subscription that triggered it is already
    committed, so generator failures are logged and reported as ``False``.
    """
    try:
        generator = _resolve_generator()
    except ImportError:
        logger.exception("INVOICE_GENERATOR could not be imported.")
        return False

    if generator is None:
        logger.debug("Skipping %s invoice because INVOICE_GENERATOR is not configured.", invoice.kind)
        return False

    try:
        generator(invoice)
    except Exception:
        logger.exception("Invoice generation failed for %s invoice.", invoice.kind)
        return False
    return True


def issue_purchase_invoice(purchase_ids: list[int]) -> bool:
    purchases = list(
        Purchase.objects.select_related("user", "content_item", "discount_code")
        .filter(pk__in=purchase_ids)
        .order_by("line_number", "id")
    )
    if not purchases:
        return False
    return issue_invoice(build_purchase_invoice(purchases))


def issue_subscription_invoice(subscription_id: int, amount_cents: int) -> bool:
    subscription = (
        Subscription.objects.select_related("user", "plan", "discount_code")
        .filter(pk=subscription_id)
        .first()
    )
    if subscription is None:
        return False
    return issue_invoice(build_subscription_invoice(subscription, amount_cents))
