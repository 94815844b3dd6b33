from __future__ import annotations

from typing import Any

from ..billing.helpers import _normalize_text, _safe_dict
from ..tools.paypal import amount_to_cents


def _resource(event: dict[str, Any]) -> dict[str, Any]:
    return _safe_dict(event.get("resource"))


def _extract_related_order_id(resource: dict[str, Any]) -> str:
    supplementary = _safe_dict(resource.get("supplementary_data"))
    related_ids = _safe_dict(supplementary.get("related_ids"))
    return _normalize_text(related_ids.get("order_id"))


def _extract_linked_capture_id(resource: dict[str, Any]) -> str:
    links = resource.get("links")
    for link in links if isinstance(links, list) else []:
        if not isinstance(link, dict) or link.get("rel") != "up":
            continue
        href = _normalize_text(link.get("href"))
        if "/captures/" in href:
            return href.rstrip("/").rsplit("/", 1)[-1]
    return ""


def _extract_payer_email(resource: dict[str, Any]) -> str:
    payer = _safe_dict(resource.get("payer"))
    return _normalize_text(payer.get("email_address"))


def _extract_amount(resource: dict[str, Any]) -> tuple[int, str] | None:
    amount = _safe_dict(resource.get("amount"))
    if not amount.get("value"):
        return None
    return amount_to_cents(amount.get("value")), _normalize_text(amount.get("currency_code")).upper()


def _extract_subscription_id(resource: dict[str, Any]) -> str:
    """Sale resources reference their subscription through ``billing_agreement_id``."""
    return _normalize_text(resource.get("billing_agreement_id") or resource.get("id"))
