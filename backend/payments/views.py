from .views_modules.access import ChapterAccessView, ContentAccessView
from .views_modules.checkout import (
    CartItemView,
    CartView,
    CheckoutCaptureView,
    CheckoutOrderView,
    DiscountValidateView,
    PurchaseListView,
)
from .views_modules.common import BillingProfileView, HealthView, MeView
from .views_modules.subscriptions import (
    SubscriptionActivateView,
    SubscriptionCancelView,
    SubscriptionListCreateView,
    SubscriptionPlanListView,
)

__all__ = [
    "BillingProfileView",
    "CartItemView",
    "CartView",
    "ChapterAccessView",
    "CheckoutCaptureView",
    "CheckoutOrderView",
    "ContentAccessView",
    "DiscountValidateView",
    "HealthView",
    "MeView",
    "PurchaseListView",
    "SubscriptionActivateView",
    "SubscriptionCancelView",
    "SubscriptionListCreateView",
    "SubscriptionPlanListView",
]
