from .catalog import ChapterSerializer, ContentItemSerializer, SubscriptionPlanSerializer
from .commerce import (
    CartAddSerializer,
    CartItemSerializer,
    CheckoutCaptureSerializer,
    CheckoutOrderSerializer,
    DiscountValidateSerializer,
    PurchaseSerializer,
    SubscriptionCancelSerializer,
    SubscriptionCreateSerializer,
    SubscriptionSerializer,
)
from .common import CustomerAccountSerializer, ProfileSerializer

__all__ = [
    "CartAddSerializer",
    "CartItemSerializer",
    "ChapterSerializer",
    "CheckoutCaptureSerializer",
    "CheckoutOrderSerializer",
    "ContentItemSerializer",
    "CustomerAccountSerializer",
    "DiscountValidateSerializer",
    "ProfileSerializer",
    "PurchaseSerializer",
    "SubscriptionCancelSerializer",
    "SubscriptionCreateSerializer",
    "SubscriptionPlanSerializer",
    "SubscriptionSerializer",
]
