from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from django.conf import settings
from django.db import transaction
from django.utils import timezone as django_timezone

from ..models import DiscountCodeUsage, Profile, Subscription, SubscriptionPlan
from ..tools.invoicing import issue_subscription_invoice
from ..tools.paypal import build_price_override, find_link, get_paypal_client
from .checkout import AppliedDiscount
from .context import CheckoutContextStore, PendingCheckoutContext, checkout_contexts
from .discounts import (
    claim_discount_reservation,
    compute_discount,
    normalize_code,
    release_discount_reservation,
    require_discount_code,
    reserve_discount_usage,
)
from .entitlements import has_active_subscription
from .exceptions import SubscriptionError
from .helpers import _normalize_text, _safe_datetime, _safe_dict, add_months

logger = logging.getLogger(__name__)

Status = Subscription.Status

ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    Status.ACTIVE: {Status.PAST_DUE, Status.CANCELED, Status.EXPIRED},
    Status.PAST_DUE: {Status.ACTIVE, Status.CANCELED, Status.EXPIRED},
    Status.CANCELED: {Status.EXPIRED},
    Status.EXPIRED: set(),
}

PROVIDER_STATUS_MAP = {
    "ACTIVE": Status.ACTIVE,
    "SUSPENDED": Status.PAST_DUE,
    "CANCELLED": Status.CANCELED,
    "EXPIRED": Status.EXPIRED,
}


@dataclass(frozen=True)
class CreatedSubscription:
    provider_subscription_id: str
    approval_url: str
    applied_discount: AppliedDiscount | None = None


def map_provider_status(raw_status: object) -> str | None:
    return PROVIDER_STATUS_MAP.get(_normalize_text(raw_status).upper())


def provider_period(resource: dict[str, Any], interval_months: int, *, now: datetime | None = None):
    """Return ``(start, end)`` of the current billing period from a PayPal subscription."""
    billing_info = _safe_dict(resource.get("billing_info"))
    last_payment = _safe_dict(billing_info.get("last_payment"))

    start = (
        _safe_datetime(last_payment.get("time"))
        or _safe_datetime(resource.get("start_time"))
        or now
        or django_timezone.now()
    )
    end = _safe_datetime(billing_info.get("next_billing_time"))
    if end is None or end <= start:
        end = add_months(start, interval_months)
    return start, end


def apply_status(
    provider_subscription_id: str,
    new_status: str,
    *,
    at: datetime | None = None,
) -> Subscription | None:
    """Move a subscription to ``new_status`` when the transition is allowed.

    Same-state updates are replays and do nothing. Disallowed transitions, such
    as reviving an expired subscription, are logged and ignored.
    """
    at = at or django_timezone.now()
    with transaction.atomic():
        subscription = (
            Subscription.objects.select_for_update()
            .filter(provider_subscription_id=provider_subscription_id)
            .first()
        )
        if subscription is None:
            logger.warning("Ignoring %s for unknown subscription %s.", new_status, provider_subscription_id)
            return None

        current = subscription.status
        if current == new_status:
            return subscription
        if new_status not in ALLOWED_TRANSITIONS.get(current, set()):
            logger.warning(
                "Ignoring subscription %s transition %s -> %s.",
                provider_subscription_id,
                current,
                new_status,
            )
            return subscription

        updates: dict[str, Any] = {"status": new_status, "updated_at": at}
        if new_status == Status.CANCELED:
            updates["canceled_at"] = subscription.canceled_at or at
        Subscription.objects.filter(pk=subscription.pk, status=current).update(**updates)

    subscription.refresh_from_db()
    logger.info("Subscription %s moved %s -> %s.", provider_subscription_id, current, subscription.status)
    return subscription


def expire_lapsed_subscriptions(now: datetime | None = None) -> int:
    now = now or django_timezone.now()
    expired = Subscription.objects.filter(
        status=Status.CANCELED,
        current_period_end__lte=now,
    ).update(status=Status.EXPIRED, updated_at=now)
    if expired:
        logger.info("Expired %s lapsed canceled subscription(s).", expired)
    return expired


class SubscriptionManager:
    """Create, activate, and cancel recurring subscriptions against PayPal."""

    def __init__(self, provider=None, contexts: CheckoutContextStore | None = None):
        self.provider = provider or get_paypal_client()
        self.contexts = contexts or checkout_contexts

    def create_subscription(
        self,
        user: Profile,
        plan: SubscriptionPlan,
        discount_code: str | None = None,
    ) -> CreatedSubscription:
        if not plan.is_active or not plan.provider_plan_id:
            raise SubscriptionError("This plan is not available.", status_code=400)
        if has_active_subscription(user):
            raise SubscriptionError("You already have an active subscription.")

        self._release_superseded_attempt(user)
        self.contexts.clear(user.pk)

        code_row = None
        discount_cents = 0
        plan_override = None
        if normalize_code(discount_code):
            code_row = require_discount_code(discount_code, user, plan.price_cents, for_subscription=True)
            discount_cents = compute_discount(code_row, plan.price_cents)
            if discount_cents:
                plan_override = build_price_override(
                    price_cents=plan.price_cents - discount_cents,
                    currency=plan.currency,
                    trial_days=plan.trial_days,
                )

        base_url = str(getattr(settings, "FRONTEND_APP_URL", "") or "").rstrip("/")
        resource = self.provider.create_subscription(
            plan_id=plan.provider_plan_id,
            custom_id=user.external_id,
            return_url=f"{base_url}/library?subscription=success",
            cancel_url=f"{base_url}/subscriptions?subscription=cancelled",
            plan_override=plan_override,
        )
        provider_subscription_id = _normalize_text(resource.get("id"))
        if not provider_subscription_id:
            raise SubscriptionError("PayPal did not return a subscription id.", status_code=502)

        if code_row is not None:
            # Held until activation links it or a newer attempt releases it.
            reserve_discount_usage(
                code_row.pk,
                user,
                plan.price_cents,
                discount_cents,
                provider_reference=provider_subscription_id,
                for_subscription=True,
            )

        final_total = plan.price_cents - discount_cents
        self.contexts.put(
            user.pk,
            PendingCheckoutContext(
                kind=PendingCheckoutContext.SUBSCRIPTION,
                provider_reference=provider_subscription_id,
                currency=plan.currency,
                original_total_cents=plan.price_cents,
                final_total_cents=final_total,
                line_count=1,
                discount_code_id=code_row.pk if code_row else None,
                discount_code=code_row.code if code_row else "",
                discount_amount_cents=discount_cents,
            ),
        )
        logger.info(
            "Created PayPal subscription %s for user %s on plan %s (discount %s).",
            provider_subscription_id,
            user.external_id,
            plan.pk,
            discount_cents,
        )

        applied = None
        if code_row is not None:
            applied = AppliedDiscount(
                code=code_row.code,
                discount_cents=discount_cents,
                original_total_cents=plan.price_cents,
                final_total_cents=final_total,
            )
        return CreatedSubscription(
            provider_subscription_id=provider_subscription_id,
            approval_url=find_link(resource, "approve"),
            applied_discount=applied,
        )

    def _release_superseded_attempt(self, user: Profile) -> None:
        previous = self.contexts.get(user.pk)
        if previous is None or previous.kind != PendingCheckoutContext.SUBSCRIPTION:
            return
        if Subscription.objects.filter(provider_subscription_id=previous.provider_reference).exists():
            return
        release_discount_reservation(previous.provider_reference)

    def _attach_reserved_discount(self, subscription: Subscription) -> DiscountCodeUsage | None:
        """Link the redemption held at creation to ``subscription``, exactly once."""
        with transaction.atomic():
            usage = claim_discount_reservation(subscription.provider_subscription_id, subscription=subscription)
            if usage is None:
                return None
            Subscription.objects.filter(pk=subscription.pk, discount_code__isnull=True).update(
                discount_code_id=usage.discount_code_id,
                updated_at=django_timezone.now(),
            )
        subscription.refresh_from_db(fields=["discount_code", "updated_at"])
        logger.info(
            "Linked discount redemption %s to subscription %s.",
            usage.pk,
            subscription.provider_subscription_id,
        )
        return usage

    def _upsert_active(
        self,
        user: Profile,
        plan: SubscriptionPlan,
        resource: dict[str, Any],
    ) -> tuple[Subscription, bool, DiscountCodeUsage | None]:
        provider_subscription_id = _normalize_text(resource.get("id"))
        start, end = provider_period(resource, plan.interval_months)
        with transaction.atomic():
            subscription, created = Subscription.objects.get_or_create(
                provider_subscription_id=provider_subscription_id,
                defaults={
                    "user": user,
                    "plan": plan,
                    "status": Status.ACTIVE,
                    "current_period_start": start,
                    "current_period_end": end,
                },
            )
            usage = self._attach_reserved_discount(subscription)
        return subscription, created, usage

    def activate_subscription(self, user: Profile, provider_subscription_id: str) -> tuple[Subscription, bool]:
        provider_subscription_id = _normalize_text(provider_subscription_id)
        existing = Subscription.objects.filter(provider_subscription_id=provider_subscription_id).first()
        if existing is not None:
            if existing.user_id != user.pk:
                raise SubscriptionError("This subscription belongs to another account.", status_code=403)
            self._attach_reserved_discount(existing)
            self.contexts.clear(user.pk)
            return existing, False

        resource = self.provider.get_subscription(provider_subscription_id)
        custom_id = _normalize_text(resource.get("custom_id"))
        if custom_id and custom_id != user.external_id:
            raise SubscriptionError("This subscription belongs to another account.", status_code=403)

        provider_status = _normalize_text(resource.get("status")).upper()
        if provider_status != "ACTIVE":
            raise SubscriptionError(f"Subscription is not active yet (status {provider_status or 'unknown'}).")

        plan = SubscriptionPlan.objects.filter(provider_plan_id=_normalize_text(resource.get("plan_id"))).first()
        if plan is None:
            raise SubscriptionError("Subscription plan is not recognised.", status_code=400)

        subscription, created, usage = self._upsert_active(user, plan, resource)
        amount_cents = plan.price_cents - (usage.discount_amount_cents if usage is not None else 0)
        self.contexts.clear(user.pk)

        if created:
            logger.info("Activated subscription %s for user %s.", provider_subscription_id, user.external_id)
            subscription_pk = subscription.pk
            transaction.on_commit(lambda: issue_subscription_invoice(subscription_pk, amount_cents))
        return subscription, created

    def sync_activation(self, resource: dict[str, Any]) -> Subscription | None:
        """Webhook-side activation: upsert from the event resource when unknown locally."""
        provider_subscription_id = _normalize_text(resource.get("id"))
        if not provider_subscription_id:
            return None

        if Subscription.objects.filter(provider_subscription_id=provider_subscription_id).exists():
            return apply_status(provider_subscription_id, Status.ACTIVE)

        user = Profile.objects.filter(external_id=_normalize_text(resource.get("custom_id"))).first()
        plan = SubscriptionPlan.objects.filter(provider_plan_id=_normalize_text(resource.get("plan_id"))).first()
        if user is None or plan is None:
            logger.warning(
                "Skipping activation of subscription %s: unknown user or plan.",
                provider_subscription_id,
            )
            return None

        subscription, created, _ = self._upsert_active(user, plan, resource)
        if created:
            logger.info("Activated subscription %s from webhook.", provider_subscription_id)
        return subscription

    def cancel_subscription(
        self,
        user: Profile,
        provider_subscription_id: str,
        reason: str = "",
    ) -> Subscription:
        subscription = Subscription.objects.filter(
            provider_subscription_id=_normalize_text(provider_subscription_id),
            user=user,
        ).first()
        if subscription is None:
            raise SubscriptionError("Subscription not found.", status_code=404)
        if subscription.status in {Status.CANCELED, Status.EXPIRED}:
            return subscription

        self.provider.cancel_subscription(subscription.provider_subscription_id, reason)
        return apply_status(subscription.provider_subscription_id, Status.CANCELED) or subscription

    def refresh_subscription(self, provider_subscription_id: str) -> Subscription | None:
        """Re-read billing period boundaries from PayPal after a renewal payment."""
        subscription = (
            Subscription.objects.select_related("plan")
            .filter(provider_subscription_id=provider_subscription_id)
            .first()
        )
        if subscription is None:
            logger.warning("Ignoring refresh for unknown subscription %s.", provider_subscription_id)
            return None

        resource = self.provider.get_subscription(provider_subscription_id)
        interval = subscription.plan.interval_months if subscription.plan else 1
        start, end = provider_period(resource, interval)
        if subscription.current_period_end is None or end > subscription.current_period_end:
            Subscription.objects.filter(pk=subscription.pk).update(
                current_period_start=start,
                current_period_end=end,
                updated_at=django_timezone.now(),
            )

        mapped = map_provider_status(resource.get("status"))
        if mapped is not None:
            apply_status(provider_subscription_id, mapped)

        subscription.refresh_from_db()
        return subscription
