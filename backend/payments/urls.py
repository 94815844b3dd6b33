from django.urls import path

from .views import (
    BillingProfileView,
    CartItemView,
    CartView,
    ChapterAccessView,
    CheckoutCaptureView,
    CheckoutOrderView,
    ContentAccessView,
    DiscountValidateView,
    HealthView,
    MeView,
    PurchaseListView,
    SubscriptionActivateView,
    SubscriptionCancelView,
    SubscriptionListCreateView,
    SubscriptionPlanListView,
)
from .webhooks import PaymentWebhookView

urlpatterns = [
    path("health/", HealthView.as_view(), name="health"),
    path("me/", MeView.as_view(), name="me"),
    path("me/billing-profile/", BillingProfileView.as_view(), name="billing-profile"),
    path("cart/", CartView.as_view(), name="cart"),
    path("cart/<int:content_item_id>/", CartItemView.as_view(), name="cart-item"),
    path("discount-codes/validate/", DiscountValidateView.as_view(), name="discount-validate"),
    path("checkout/order/", CheckoutOrderView.as_view(), name="checkout-order"),
    path("checkout/capture/", CheckoutCaptureView.as_view(), name="checkout-capture"),
    path("purchases/", PurchaseListView.as_view(), name="purchase-list"),
    path("content/<int:pk>/access/", ContentAccessView.as_view(), name="content-access"),
    path("chapters/<int:pk>/access/", ChapterAccessView.as_view(), name="chapter-access"),
    path("subscription-plans/", SubscriptionPlanListView.as_view(), name="subscription-plan-list"),
    path("subscriptions/", SubscriptionListCreateView.as_view(), name="subscription-list"),
    path(
        "subscriptions/<str:provider_subscription_id>/activate/",
        SubscriptionActivateView.as_view(),
        name="subscription-activate",
    ),
    path(
        "subscriptions/<str:provider_subscription_id>/cancel/",
        SubscriptionCancelView.as_view(),
        name="subscription-cancel",
    ),
    path("webhooks/payment/", PaymentWebhookView.as_view(), name="payment-webhook"),
]
