from .checkout import (
    AppliedDiscount,
    CaptureResult,
    CheckoutOrchestrator,
    CreatedOrder,
    DiscountApplication,
    complete_order,
    fail_pending_order,
    reconcile_capture,
    refund_order,
)
from .context import CheckoutContextStore, PendingCheckoutContext, checkout_contexts
from .discounts import (
    DiscountValidation,
    allocate_discount,
    compute_discount,
    record_discount_usage,
    validate_discount_code,
)
from .entitlements import (
    AccessDecision,
    AccessReason,
    has_active_subscription,
    resolve_access,
    resolve_chapter_access,
)
from .exceptions import (
    CaptureDeclinedError,
    CheckoutError,
    DiscountCodeError,
    DiscountValidationError,
    ReconciliationError,
    SubscriptionError,
)
from .subscriptions import (
    CreatedSubscription,
    SubscriptionManager,
    apply_status,
    expire_lapsed_subscriptions,
    map_provider_status,
)

__all__ = [
    "AccessDecision",
    "AccessReason",
    "AppliedDiscount",
    "CaptureDeclinedError",
    "CaptureResult",
    "CheckoutContextStore",
    "CheckoutError",
    "CheckoutOrchestrator",
    "CreatedOrder",
    "CreatedSubscription",
    "DiscountApplication",
    "DiscountCodeError",
    "DiscountValidation",
    "DiscountValidationError",
    "PendingCheckoutContext",
    "ReconciliationError",
    "SubscriptionError",
    "SubscriptionManager",
    "allocate_discount",
    "apply_status",
    "checkout_contexts",
    "complete_order",
    "compute_discount",
    "expire_lapsed_subscriptions",
    "fail_pending_order",
    "has_active_subscription",
    "map_provider_status",
    "reconcile_capture",
    "record_discount_usage",
    "refund_order",
    "resolve_access",
    "resolve_chapter_access",
    "validate_discount_code",
]
