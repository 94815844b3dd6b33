from .accounts import CustomerAccount, Profile
from .catalog import Chapter, ContentItem, SubscriptionPlan
from .commerce import (
    CartItem,
    DiscountCode,
    DiscountCodeUsage,
    Purchase,
    Subscription,
    WebhookEvent,
)

__all__ = [
    "Profile",
    "CustomerAccount",
    "ContentItem",
    "Chapter",
    "SubscriptionPlan",
    "CartItem",
    "DiscountCode",
    "DiscountCodeUsage",
    "Purchase",
    "Subscription",
    "WebhookEvent",
]
