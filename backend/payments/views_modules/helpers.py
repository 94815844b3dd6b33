from __future__ import annotations

import logging
from typing import Any

from rest_framework.exceptions import PermissionDenied, ValidationError
from rest_framework.response import Response

from ..billing import (
    CaptureDeclinedError,
    CheckoutError,
    DiscountCodeError,
    DiscountValidationError,
    ReconciliationError,
    SubscriptionError,
)
from ..models import CustomerAccount, Profile
from ..tools.paypal import PayPalConfigurationError, PayPalError

logger = logging.getLogger(__name__)

BILLING_ERRORS = (
    CaptureDeclinedError,
    CheckoutError,
    DiscountCodeError,
    DiscountValidationError,
    ReconciliationError,
    SubscriptionError,
    PayPalConfigurationError,
    PayPalError,
)


def _safe_str(value: Any) -> str:
    return str(value).strip() if value else ""


def sync_profile_from_claims(claims: dict[str, Any]) -> Profile | None:
    external_id = _safe_str(claims.get("sub"))
    if not external_id:
        return None

    defaults = {
        "email": _safe_str(claims.get("email")),
        "first_name": _safe_str(claims.get("given_name") or claims.get("first_name")),
        "last_name": _safe_str(claims.get("family_name") or claims.get("last_name")),
    }
    profile, created = Profile.objects.get_or_create(external_id=external_id, defaults=defaults)

    if not created:
        changed_fields: list[str] = []
        for field_name, field_value in defaults.items():
            if field_value and getattr(profile, field_name) != field_value:
                setattr(profile, field_name, field_value)
                changed_fields.append(field_name)
        if changed_fields:
            profile.save(update_fields=[*changed_fields, "updated_at"])

    return profile


def get_request_claims(request) -> dict[str, Any]:
    claims = getattr(request, "auth_claims", request.auth or {})
    return claims if isinstance(claims, dict) else {}


def get_request_profile(request) -> Profile:
    cached_profile = getattr(request, "_cached_profile", None)
    if cached_profile is not None:
        return cached_profile

    profile = sync_profile_from_claims(get_request_claims(request))
    if profile is None:
        raise ValidationError("Missing user identity in token claims.")
    if not profile.is_active:
        raise PermissionDenied("This account has been deactivated.")

    request._cached_profile = profile
    return profile


def get_optional_request_profile(request) -> Profile | None:
    if not getattr(request.user, "is_authenticated", False):
        return None
    profile = sync_profile_from_claims(get_request_claims(request))
    return profile if profile is not None and profile.is_active else None


def get_request_customer_account(request) -> CustomerAccount:
    cached_account = getattr(request, "_cached_customer_account", None)
    if cached_account is not None:
        return cached_account

    profile = get_request_profile(request)
    account, _ = CustomerAccount.objects.get_or_create(
        profile=profile,
        defaults={
            "billing_email": profile.email,
            "full_name": profile.display_name,
        },
    )
    request._cached_customer_account = account
    return account


def billing_error_response(exc: Exception) -> Response:
    if isinstance(exc, DiscountValidationError):
        return Response({"detail": str(exc), "code": "invalid_discount"}, status=400)
    if isinstance(exc, CheckoutError):
        return Response({"detail": str(exc)}, status=exc.status_code)
    if isinstance(exc, ReconciliationError):
        return Response(
            {"detail": "Payment amount did not match the order. No purchase was recorded.", "code": "reconciliation"},
            status=409,
        )
    if isinstance(exc, DiscountCodeError):
        logger.error("Discount redemption could not be settled: %s", exc)
        return Response(
            {"detail": "This discount code has reached its usage limit.", "code": "invalid_discount"},
            status=409,
        )
    if isinstance(exc, CaptureDeclinedError):
        return Response(
            {"detail": "Payment was not completed.", "provider_status": exc.provider_status},
            status=402,
        )
    if isinstance(exc, SubscriptionError):
        return Response({"detail": str(exc)}, status=exc.status_code)
    if isinstance(exc, PayPalConfigurationError):
        logger.error("Payment provider is not configured: %s", exc)
        return Response({"detail": "Payments are temporarily unavailable."}, status=503)
    if isinstance(exc, PayPalError):
        return Response(
            {"detail": "Payment provider request failed. Please retry.", "retryable": exc.retryable},
            status=502,
        )
    raise exc
