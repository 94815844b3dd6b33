from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from django.conf import settings
from django.core.cache import cache

logger = logging.getLogger(__name__)

LIVE_API_BASE = "https://api-m.paypal.com"
SANDBOX_API_BASE = "https://api-m.sandbox.paypal.com"
TOKEN_CACHE_PREFIX = "paypal:access_token"
TOKEN_EXPIRY_MARGIN_SECONDS = 60
ORDER_ALREADY_CAPTURED = "ORDER_ALREADY_CAPTURED"
WEBHOOK_HEADER_NAMES = (
    "paypal-auth-algo",
    "paypal-cert-url",
    "paypal-transmission-id",
    "paypal-transmission-sig",
    "paypal-transmission-time",
)


class PayPalConfigurationError(RuntimeError):
    pass


class PayPalError(RuntimeError):
    """Transport failure, timeout, or non-2xx answer from the PayPal REST API."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        issue: str = "",
        payload: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.issue = issue
        self.payload = payload or {}

    @property
    def retryable(self) -> bool:
        return self.status_code is None or self.status_code >= 500 or self.status_code == 429


def _normalize_text(value: object) -> str:
    return str(value or "").strip()


def cents_to_amount(cents: int) -> str:
    return str((Decimal(int(cents or 0)) / Decimal(100)).quantize(Decimal("0.01")))


def amount_to_cents(value: object) -> int:
    try:
        amount = Decimal(_normalize_text(value) or "0")
    except InvalidOperation as exc:
        raise PayPalError(f"Unparseable amount from PayPal: {value!r}") from exc
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _money(cents: int, currency: str) -> dict[str, str]:
    return {"currency_code": currency, "value": cents_to_amount(cents)}


def _parse_error_body(raw: str) -> tuple[str, dict[str, Any]]:
    try:
        body = json.loads(raw) if raw else {}
    except ValueError:
        return "", {"raw": raw}
    if not isinstance(body, dict):
        return "", {"raw": raw}

    details = body.get("details")
    if isinstance(details, list):
        for detail in details:
            if isinstance(detail, dict) and detail.get("issue"):
                return _normalize_text(detail["issue"]), body
    return _normalize_text(body.get("name") or body.get("error")), body


def find_link(resource: dict[str, Any], *relations: str) -> str:
    links = resource.get("links") if isinstance(resource, dict) else None
    if not isinstance(links, list):
        return ""
    for relation in relations:
        for link in links:
            if isinstance(link, dict) and link.get("rel") == relation and link.get("href"):
                return str(link["href"])
    return ""


@dataclass
class CaptureSummary:
    status: str
    total_cents: int = 0
    currencies: set[str] = field(default_factory=set)
    capture_ids: list[str] = field(default_factory=list)
    payer_email: str = ""

    @property
    def capture_id(self) -> str:
        return self.capture_ids[0] if self.capture_ids else ""


def summarize_order_captures(order: dict[str, Any]) -> CaptureSummary:
    """Sum every capture across every purchase unit of a PayPal order payload."""
    summary = CaptureSummary(status=_normalize_text(order.get("status")).upper())

    payer = order.get("payer")
    if isinstance(payer, dict):
        summary.payer_email = _normalize_text(payer.get("email_address"))

    units = order.get("purchase_units")
    for unit in units if isinstance(units, list) else []:
        payments = unit.get("payments") if isinstance(unit, dict) else None
        captures = payments.get("captures") if isinstance(payments, dict) else None
        for capture in captures if isinstance(captures, list) else []:
            if not isinstance(capture, dict):
                continue
            if _normalize_text(capture.get("status")).upper() not in {"COMPLETED", "PENDING"}:
                continue
            amount = capture.get("amount") if isinstance(capture.get("amount"), dict) else {}
            summary.total_cents += amount_to_cents(amount.get("value"))
            summary.currencies.add(_normalize_text(amount.get("currency_code")).upper())
            if capture.get("id"):
                summary.capture_ids.append(str(capture["id"]))
    return summary


class PayPalClient:
    def __init__(
        self,
        client_id: str,
        client_secret: str,
        *,
        environment: str = "sandbox",
        webhook_id: str = "",
        timeout: int = 15,
        brand_name: str = "",
    ):
        self.client_id = _normalize_text(client_id)
        self.client_secret = _normalize_text(client_secret)
        self.environment = _normalize_text(environment).lower() or "sandbox"
        self.webhook_id = _normalize_text(webhook_id)
        self.timeout = int(timeout)
        self.brand_name = _normalize_text(brand_name)

    @classmethod
    def from_settings(cls) -> "PayPalClient":
        return cls(
            getattr(settings, "PAYPAL_CLIENT_ID", ""),
            getattr(settings, "PAYPAL_CLIENT_SECRET", ""),
            environment=getattr(settings, "PAYPAL_ENVIRONMENT", "sandbox"),
            webhook_id=getattr(settings, "PAYPAL_WEBHOOK_ID", ""),
            timeout=getattr(settings, "PAYPAL_TIMEOUT_SECONDS", 15),
            brand_name=getattr(settings, "PAYPAL_BRAND_NAME", ""),
        )

    @property
    def base_url(self) -> str:
        return LIVE_API_BASE if self.environment == "live" else SANDBOX_API_BASE

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def _token_cache_key(self) -> str:
        return f"{TOKEN_CACHE_PREFIX}:{self.environment}:{self.client_id}"

    def _send(
        self,
        method: str,
        url: str,
        *,
        body: bytes | None,
        headers: dict[str, str],
    ) -> dict[str, Any]:
        request = Request(url, data=body, headers=headers, method=method)
        try:
            with urlopen(request, timeout=self.timeout) as response:
                raw = response.read().decode("utf-8", errors="ignore")
        except HTTPError as exc:
            error_body = exc.read().decode("utf-8", errors="ignore")
            issue, payload = _parse_error_body(error_body)
            logger.warning("PayPal %s %s failed with status %s (%s).", method, url, exc.code, issue or "no issue")
            raise PayPalError(
                f"PayPal request failed with status {exc.code}.",
                status_code=exc.code,
                issue=issue,
                payload=payload,
            ) from exc
        except URLError as exc:
            logger.warning("PayPal %s %s failed: %s", method, url, exc.reason)
            raise PayPalError(f"PayPal request failed: {exc.reason}") from exc
        except TimeoutError as exc:
            logger.warning("PayPal %s %s timed out after %ss.", method, url, self.timeout)
            raise PayPalError("PayPal request timed out.") from exc

        if not raw:
            return {}
        try:
            parsed = json.loads(raw)
        except ValueError as exc:
            raise PayPalError("PayPal returned a non-JSON response.") from exc
        return parsed if isinstance(parsed, dict) else {"items": parsed}

    def get_access_token(self) -> str:
        if not self.is_configured:
            raise PayPalConfigurationError("PAYPAL_CLIENT_ID and PAYPAL_CLIENT_SECRET must be configured.")

        cache_key = self._token_cache_key()
        cached = cache.get(cache_key)
        if cached:
            return cached

        credentials = base64.b64encode(f"{self.client_id}:{self.client_secret}".encode("utf-8")).decode("ascii")
        payload = self._send(
            "POST",
            f"{self.base_url}/v1/oauth2/token",
            body=urlencode({"grant_type": "client_credentials"}).encode("utf-8"),
            headers={
                "Authorization": f"Basic {credentials}",
                "Content-Type": "application/x-www-form-urlencoded",
                "Accept": "application/json",
            },
        )
        token = _normalize_text(payload.get("access_token"))
        if not token:
            raise PayPalError("PayPal token response did not include an access token.")

        expires_in = int(payload.get("expires_in") or 0)
        ttl = expires_in - TOKEN_EXPIRY_MARGIN_SECONDS
        if ttl > 0:
            cache.set(cache_key, token, timeout=ttl)
        return token

    def request(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None = None,
        *,
        request_id: str = "",
    ) -> dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self.get_access_token()}",
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Prefer": "return=representation",
        }
        if request_id:
            headers["PayPal-Request-Id"] = request_id
        body = json.dumps(payload).encode("utf-8") if payload is not None else None
        return self._send(method, f"{self.base_url}{path}", body=body, headers=headers)

    def _application_context(self, *, return_url: str, cancel_url: str, user_action: str) -> dict[str, str]:
        context = {
            "return_url": return_url,
            "cancel_url": cancel_url,
            "user_action": user_action,
            "shipping_preference": "NO_SHIPPING",
        }
        if self.brand_name:
            context["brand_name"] = self.brand_name
        return context

    def create_order(
        self,
        *,
        currency: str,
        items: list[dict[str, Any]],
        discount_cents: int,
        return_url: str,
        cancel_url: str,
        reference_id: str = "",
    ) -> dict[str, Any]:
        """Create a CAPTURE-intent order with an ``item_total``/``discount`` breakdown.

        ``items`` carries ``name`` and ``unit_amount_cents`` per line; quantity is
        always one.
        """
        item_total = sum(int(item["unit_amount_cents"]) for item in items)
        breakdown: dict[str, Any] = {"item_total": _money(item_total, currency)}
        if discount_cents:
            breakdown["discount"] = _money(discount_cents, currency)

        unit: dict[str, Any] = {
            "amount": {
                **_money(item_total - discount_cents, currency),
                "breakdown": breakdown,
            },
            "items": [
                {
                    "name": _normalize_text(item.get("name"))[:127] or "Item",
                    "quantity": "1",
                    "unit_amount": _money(item["unit_amount_cents"], currency),
                    "category": "DIGITAL_GOODS",
                }
                for item in items
            ],
        }
        if reference_id:
            unit["reference_id"] = reference_id

        return self.request(
            "POST",
            "/v2/checkout/orders",
            {
                "intent": "CAPTURE",
                "purchase_units": [unit],
                "application_context": self._application_context(
                    return_url=return_url,
                    cancel_url=cancel_url,
                    user_action="PAY_NOW",
                ),
            },
        )

    def capture_order(self, order_id: str) -> dict[str, Any]:
        return self.request(
            "POST",
            f"/v2/checkout/orders/{order_id}/capture",
            {},
            request_id=f"capture-{order_id}",
        )

    def get_order(self, order_id: str) -> dict[str, Any]:
        return self.request("GET", f"/v2/checkout/orders/{order_id}")

    def create_subscription(
        self,
        *,
        plan_id: str,
        custom_id: str,
        return_url: str,
        cancel_url: str,
        plan_override: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "plan_id": plan_id,
            "custom_id": custom_id,
            "application_context": self._application_context(
                return_url=return_url,
                cancel_url=cancel_url,
                user_action="SUBSCRIBE_NOW",
            ),
        }
        if plan_override:
            payload["plan"] = plan_override
        return self.request("POST", "/v1/billing/subscriptions", payload)

    def get_subscription(self, subscription_id: str) -> dict[str, Any]:
        return self.request("GET", f"/v1/billing/subscriptions/{subscription_id}")

    def cancel_subscription(self, subscription_id: str, reason: str) -> None:
        self.request(
            "POST",
            f"/v1/billing/subscriptions/{subscription_id}/cancel",
            {"reason": _normalize_text(reason)[:127] or "Canceled by subscriber"},
        )

    def verify_webhook_signature(self, headers: dict[str, str], event: dict[str, Any]) -> bool:
        if not self.webhook_id:
            raise PayPalConfigurationError("PAYPAL_WEBHOOK_ID is not configured.")

        result = self.request(
            "POST",
            "/v1/notifications/verify-webhook-signature",
            {
                "auth_algo": headers.get("paypal-auth-algo", ""),
                "cert_url": headers.get("paypal-cert-url", ""),
                "transmission_id": headers.get("paypal-transmission-id", ""),
                "transmission_sig": headers.get("paypal-transmission-sig", ""),
                "transmission_time": headers.get("paypal-transmission-time", ""),
                "webhook_id": self.webhook_id,
                "webhook_event": event,
            },
        )
        return _normalize_text(result.get("verification_status")).upper() == "SUCCESS"

    def create_product(self, name: str, description: str = "") -> dict[str, Any]:
        return self.request(
            "POST",
            "/v1/catalogs/products",
            {
                "name": name,
                "description": description or name,
                "type": "SERVICE",
                "category": "DIGITAL_MEDIA_BOOKS_MOVIES_MUSIC",
            },
        )

    def create_plan(
        self,
        *,
        product_id: str,
        name: str,
        description: str,
        price_cents: int,
        currency: str,
        interval_months: int,
        trial_days: int = 0,
    ) -> dict[str, Any]:
        return self.request(
            "POST",
            "/v1/billing/plans",
            {
                "product_id": product_id,
                "name": name,
                "description": description or name,
                "billing_cycles": build_billing_cycles(
                    price_cents=price_cents,
                    currency=currency,
                    interval_months=interval_months,
                    trial_days=trial_days,
                ),
                "payment_preferences": {
                    "auto_bill_outstanding": True,
                    "payment_failure_threshold": 3,
                },
            },
        )


def regular_cycle_sequence(trial_days: int) -> int:
    return 2 if trial_days > 0 else 1


def build_billing_cycles(
    *,
    price_cents: int,
    currency: str,
    interval_months: int,
    trial_days: int = 0,
) -> list[dict[str, Any]]:
    cycles: list[dict[str, Any]] = []
    if trial_days > 0:
        cycles.append(
            {
                "frequency": {"interval_unit": "DAY", "interval_count": trial_days},
                "tenure_type": "TRIAL",
                "sequence": 1,
                "total_cycles": 1,
                "pricing_scheme": {"fixed_price": _money(0, currency)},
            }
        )
    cycles.append(
        {
            "frequency": {"interval_unit": "MONTH", "interval_count": interval_months},
            "tenure_type": "REGULAR",
            "sequence": regular_cycle_sequence(trial_days),
            "total_cycles": 0,
            "pricing_scheme": {"fixed_price": _money(price_cents, currency)},
        }
    )
    return cycles


def build_price_override(*, price_cents: int, currency: str, trial_days: int = 0) -> dict[str, Any]:
    """Plan override replacing the regular cycle's price, used for subscription discounts."""
    return {
        "billing_cycles": [
            {
                "sequence": regular_cycle_sequence(trial_days),
                "total_cycles": 0,
                "pricing_scheme": {"fixed_price": _money(price_cents, currency)},
            }
        ]
    }


def get_paypal_client() -> PayPalClient:
    return PayPalClient.from_settings()
