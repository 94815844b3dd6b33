from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Sequence

from django.db import transaction
from django.db.models import F
from django.utils import timezone as django_timezone

from ..models import DiscountCode, DiscountCodeUsage, Profile, Purchase, Subscription
from .exceptions import DiscountCodeError, DiscountValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiscountValidation:
    valid: bool
    discount_code: DiscountCode | None = None
    error: str = ""


def normalize_code(code: object) -> str:
    return str(code or "").strip().upper()


def _format_cents(cents: int) -> str:
    return f"{int(cents or 0) / 100:,.2f}"


def _round_half_up_div(numerator: int, denominator: int) -> int:
    return (2 * numerator + denominator) // (2 * denominator)


def user_usage_count(discount_code: DiscountCode, user: Profile) -> int:
    return DiscountCodeUsage.objects.filter(discount_code=discount_code, user=user).count()


def check_discount_code(
    discount_code: DiscountCode,
    user: Profile,
    cart_total_cents: int,
    *,
    for_subscription: bool = False,
    now: datetime | None = None,
) -> str:
    """Return the first failing rule as a buyer-facing message, or an empty string."""
    now = now or django_timezone.now()

    if not discount_code.is_active:
        return "This discount code is no longer active."
    if discount_code.valid_from and now < discount_code.valid_from:
        return "This discount code is not valid yet."
    if discount_code.valid_until and now > discount_code.valid_until:
        return "This discount code has expired."
    if discount_code.max_uses_total is not None and discount_code.used_count >= discount_code.max_uses_total:
        return "This discount code has reached its usage limit."
    if for_subscription and not discount_code.applies_to_subscriptions:
        return "This discount code cannot be applied to subscriptions."
    if not for_subscription and not discount_code.applies_to_purchases:
        return "This discount code cannot be applied to purchases."
    if cart_total_cents < discount_code.min_purchase_cents:
        return f"A minimum purchase of {_format_cents(discount_code.min_purchase_cents)} is required for this code."
    if (
        discount_code.max_uses_per_user is not None
        and user_usage_count(discount_code, user) >= discount_code.max_uses_per_user
    ):
        return "You have already used this discount code the maximum number of times."
    return ""


def validate_discount_code(
    code: str,
    user: Profile,
    cart_total_cents: int,
    *,
    for_subscription: bool = False,
    now: datetime | None = None,
) -> DiscountValidation:
    normalized = normalize_code(code)
    discount_code = DiscountCode.objects.filter(code=normalized).first() if normalized else None
    if discount_code is None:
        return DiscountValidation(valid=False, error="Invalid discount code.")

    error = check_discount_code(
        discount_code,
        user,
        cart_total_cents,
        for_subscription=for_subscription,
        now=now,
    )
    if error:
        return DiscountValidation(valid=False, discount_code=discount_code, error=error)
    return DiscountValidation(valid=True, discount_code=discount_code)


def require_discount_code(
    code: str,
    user: Profile,
    cart_total_cents: int,
    *,
    for_subscription: bool = False,
) -> DiscountCode:
    result = validate_discount_code(code, user, cart_total_cents, for_subscription=for_subscription)
    if not result.valid:
        raise DiscountValidationError(result.error)
    return result.discount_code


def _create_usage(
    discount_code: DiscountCode,
    user: Profile,
    amount_cents: int,
    *,
    provider_reference: str = "",
    purchase: Purchase | None = None,
    subscription: Subscription | None = None,
) -> DiscountCodeUsage:
    usage = DiscountCodeUsage.objects.create(
        discount_code=discount_code,
        user=user,
        purchase=purchase,
        subscription=subscription,
        provider_reference=provider_reference,
        discount_amount_cents=max(int(amount_cents or 0), 0),
    )
    DiscountCode.objects.filter(pk=discount_code.pk).update(
        used_count=F("used_count") + 1,
        updated_at=django_timezone.now(),
    )
    return usage


def _reserved_usages(provider_reference: str):
    return DiscountCodeUsage.objects.filter(
        provider_reference=provider_reference,
        purchase__isnull=True,
        subscription__isnull=True,
    )


def reserve_discount_usage(
    discount_code_id: int,
    user: Profile,
    cart_total_cents: int,
    amount_cents: int,
    *,
    provider_reference: str,
    for_subscription: bool = False,
) -> DiscountCodeUsage:
    """Re-validate a previously accepted code and hold one redemption for ``provider_reference``.

    Runs under the code's row lock, so concurrent buyers cannot both take the
    last use. The held redemption already counts against both limits; it is
    linked to the purchase or subscription on settlement, or released when the
    attempt fails. Repeated calls for the same reference return the held row.
    """
    with transaction.atomic():
        discount_code = DiscountCode.objects.select_for_update().filter(pk=discount_code_id).first()
        if discount_code is None:
            raise DiscountValidationError("Invalid discount code.")

        held = _reserved_usages(provider_reference).filter(discount_code=discount_code, user=user).first()
        if held is not None:
            return held

        error = check_discount_code(
            discount_code,
            user,
            cart_total_cents,
            for_subscription=for_subscription,
        )
        if error:
            raise DiscountValidationError(error)
        usage = _create_usage(discount_code, user, amount_cents, provider_reference=provider_reference)

    logger.info(
        "Reserved discount %s for user %s on %s (%s cents).",
        discount_code.code,
        user.external_id,
        provider_reference,
        amount_cents,
    )
    return usage


def release_discount_reservation(provider_reference: str) -> int:
    """Give back redemptions held for an attempt that will never settle."""
    if not provider_reference:
        return 0
    released = 0
    with transaction.atomic():
        for usage in _reserved_usages(provider_reference).select_for_update():
            DiscountCode.objects.filter(pk=usage.discount_code_id, used_count__gt=0).update(
                used_count=F("used_count") - 1,
                updated_at=django_timezone.now(),
            )
            usage.delete()
            released += 1
    if released:
        logger.info("Released %s discount reservation(s) held for %s.", released, provider_reference)
    return released


def claim_discount_reservation(
    provider_reference: str,
    discount_code_id: int | None = None,
    *,
    purchase: Purchase | None = None,
    subscription: Subscription | None = None,
    amount_cents: int | None = None,
) -> DiscountCodeUsage | None:
    """Link the redemption held for ``provider_reference`` to what it paid for."""
    with transaction.atomic():
        queryset = _reserved_usages(provider_reference).select_for_update()
        if discount_code_id is not None:
            queryset = queryset.filter(discount_code_id=discount_code_id)
        usage = queryset.first()
        if usage is None:
            return None

        usage.purchase = purchase
        usage.subscription = subscription
        update_fields = ["purchase", "subscription"]
        if amount_cents is not None:
            usage.discount_amount_cents = max(int(amount_cents), 0)
            update_fields.append("discount_amount_cents")
        usage.save(update_fields=update_fields)
    return usage


def compute_discount(discount_code: DiscountCode, amount_cents: int) -> int:
    amount_cents = max(int(amount_cents or 0), 0)
    if discount_code.discount_type == DiscountCode.DiscountType.PERCENTAGE:
        discount = _round_half_up_div(amount_cents * int(discount_code.value), 100)
    else:
        discount = int(discount_code.value)
    return min(max(discount, 0), amount_cents)


def allocate_discount(discount_cents: int, line_prices: Sequence[int]) -> list[int]:
    """Split an order-level discount across lines, proportional to price.

    Shares are rounded half-up and the last line absorbs the remainder. When that
    remainder falls outside ``[0, price]`` the overflow is pushed back onto earlier
    lines, so every share stays within its line price and the sum is exact.
    """
    prices = [max(int(price), 0) for price in line_prices]
    total = sum(prices)
    discount = min(max(int(discount_cents or 0), 0), total)
    if not prices or discount == 0:
        return [0 for _ in prices]

    shares = [_round_half_up_div(discount * price, total) for price in prices[:-1]]
    remainder = discount - sum(shares)
    last_price = prices[-1]

    if remainder < 0:
        deficit = -remainder
        shares.append(0)
        for index in range(len(shares) - 2, -1, -1):
            if not deficit:
                break
            taken = min(shares[index], deficit)
            shares[index] -= taken
            deficit -= taken
    elif remainder > last_price:
        excess = remainder - last_price
        shares.append(last_price)
        for index in range(len(shares) - 2, -1, -1):
            if not excess:
                break
            added = min(prices[index] - shares[index], excess)
            shares[index] += added
            excess -= added
    else:
        shares.append(remainder)

    return shares


def record_discount_usage(
    discount_code_id: int,
    user: Profile,
    amount_cents: int,
    *,
    purchase: Purchase | None = None,
    subscription: Subscription | None = None,
    provider_reference: str = "",
) -> DiscountCodeUsage:
    with transaction.atomic():
        discount_code = DiscountCode.objects.select_for_update().get(pk=discount_code_id)
        if discount_code.max_uses_total is not None and discount_code.used_count >= discount_code.max_uses_total:
            raise DiscountCodeError(f"Discount code {discount_code.code} reached its total usage limit.")
        if (
            discount_code.max_uses_per_user is not None
            and user_usage_count(discount_code, user) >= discount_code.max_uses_per_user
        ):
            raise DiscountCodeError(f"Discount code {discount_code.code} reached its per-user limit.")

        usage = _create_usage(
            discount_code,
            user,
            amount_cents,
            provider_reference=provider_reference,
            purchase=purchase,
            subscription=subscription,
        )

    logger.info(
        "Recorded discount %s usage for user %s (%s cents).",
        discount_code.code,
        user.external_id,
        amount_cents,
    )
    return usage
