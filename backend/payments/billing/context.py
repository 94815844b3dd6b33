from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

from django.conf import settings
from django.core.cache import cache

CONTEXT_KEY_PREFIX = "checkout:context"


@dataclass(frozen=True)
class PendingCheckoutContext:
    """Snapshot of an in-flight checkout, read back at capture time."""

    kind: str
    provider_reference: str
    currency: str
    original_total_cents: int
    final_total_cents: int
    line_count: int = 1
    discount_code_id: int | None = None
    discount_code: str = ""
    discount_amount_cents: int = 0

    ORDER = "order"
    SUBSCRIPTION = "subscription"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PendingCheckoutContext":
        return cls(
            kind=str(data.get("kind") or cls.ORDER),
            provider_reference=str(data.get("provider_reference") or ""),
            currency=str(data.get("currency") or ""),
            original_total_cents=int(data.get("original_total_cents") or 0),
            final_total_cents=int(data.get("final_total_cents") or 0),
            line_count=int(data.get("line_count") or 1),
            discount_code_id=data.get("discount_code_id"),
            discount_code=str(data.get("discount_code") or ""),
            discount_amount_cents=int(data.get("discount_amount_cents") or 0),
        )

    def matches(self, kind: str, provider_reference: str) -> bool:
        return self.kind == kind and self.provider_reference == provider_reference


def _context_key(owner_id: object) -> str:
    return f"{CONTEXT_KEY_PREFIX}:{owner_id}"


def _context_ttl() -> int:
    return int(getattr(settings, "CHECKOUT_CONTEXT_TTL_SECONDS", 3600))


class CheckoutContextStore:
    """Expiring per-owner context map. A new ``put`` always replaces the previous entry."""

    def __init__(self, backend=None):
        self.backend = backend or cache

    def put(self, owner_id: object, context: PendingCheckoutContext) -> None:
        self.backend.set(_context_key(owner_id), asdict(context), timeout=_context_ttl())

    def get(self, owner_id: object) -> PendingCheckoutContext | None:
        raw = self.backend.get(_context_key(owner_id))
        if not isinstance(raw, dict):
            return None
        return PendingCheckoutContext.from_dict(raw)

    def get_matching(
        self,
        owner_id: object,
        *,
        kind: str,
        provider_reference: str,
    ) -> PendingCheckoutContext | None:
        context = self.get(owner_id)
        if context is None or not context.matches(kind, provider_reference):
            return None
        return context

    def clear(self, owner_id: object) -> None:
        self.backend.delete(_context_key(owner_id))


checkout_contexts = CheckoutContextStore()
