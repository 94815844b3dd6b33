from django.contrib import admin, messages

from .billing import SubscriptionError
from .billing.plans import publish_plan
from .models import (
    CartItem,
    Chapter,
    ContentItem,
    CustomerAccount,
    DiscountCode,
    DiscountCodeUsage,
    Profile,
    Purchase,
    Subscription,
    SubscriptionPlan,
    WebhookEvent,
)
from .tools.paypal import PayPalConfigurationError, PayPalError


@admin.register(Profile)
class ProfileAdmin(admin.ModelAdmin):
    list_display = ("external_id", "email", "role", "is_active", "updated_at")
    search_fields = ("external_id", "email", "first_name", "last_name")
    list_filter = ("role", "is_active")


@admin.register(CustomerAccount)
class CustomerAccountAdmin(admin.ModelAdmin):
    list_display = ("profile", "billing_email", "full_name", "country", "updated_at")
    search_fields = ("profile__external_id", "billing_email", "full_name", "tax_id")


class ChapterInline(admin.TabularInline):
    model = Chapter
    extra = 0


@admin.register(ContentItem)
class ContentItemAdmin(admin.ModelAdmin):
    list_display = ("title", "owner", "price_cents", "currency", "is_free", "is_published")
    search_fields = ("title", "author", "owner__email")
    list_filter = ("is_free", "is_published", "currency")
    inlines = [ChapterInline]


@admin.register(SubscriptionPlan)
class SubscriptionPlanAdmin(admin.ModelAdmin):
    list_display = ("name", "price_cents", "currency", "interval_months", "trial_days", "provider_plan_id", "is_active")
    list_filter = ("is_active", "currency")
    actions = ["publish_to_paypal"]

    @admin.action(description="Create PayPal billing plan")
    def publish_to_paypal(self, request, queryset):
        for plan in queryset:
            try:
                publish_plan(plan)
            except (PayPalConfigurationError, PayPalError, SubscriptionError) as exc:
                self.message_user(request, f"{plan.name}: {exc}", level=messages.ERROR)
                continue
            self.message_user(request, f"{plan.name}: published as {plan.provider_plan_id}.")


@admin.register(CartItem)
class CartItemAdmin(admin.ModelAdmin):
    list_display = ("user", "content_item", "created_at")
    search_fields = ("user__email", "content_item__title")


@admin.register(DiscountCode)
class DiscountCodeAdmin(admin.ModelAdmin):
    list_display = (
        "code",
        "discount_type",
        "value",
        "used_count",
        "max_uses_total",
        "max_uses_per_user",
        "valid_until",
        "is_active",
    )
    search_fields = ("code", "description")
    list_filter = ("discount_type", "is_active", "applies_to_purchases", "applies_to_subscriptions")
    readonly_fields = ("used_count",)


@admin.register(DiscountCodeUsage)
class DiscountCodeUsageAdmin(admin.ModelAdmin):
    list_display = (
        "discount_code",
        "user",
        "provider_reference",
        "purchase",
        "subscription",
        "discount_amount_cents",
        "created_at",
    )
    search_fields = ("discount_code__code", "user__email", "provider_reference")


@admin.register(Purchase)
class PurchaseAdmin(admin.ModelAdmin):
    list_display = (
        "provider_order_id",
        "user",
        "content_item",
        "status",
        "price_paid_cents",
        "currency",
        "purchased_at",
    )
    search_fields = ("provider_order_id", "provider_capture_id", "user__email", "payer_email")
    list_filter = ("status", "currency")


@admin.register(Subscription)
class SubscriptionAdmin(admin.ModelAdmin):
    list_display = ("provider_subscription_id", "user", "plan", "status", "current_period_end", "updated_at")
    search_fields = ("provider_subscription_id", "user__email")
    list_filter = ("status",)


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    list_display = ("provider", "event_id", "event_type", "status", "received_at", "processed_at")
    search_fields = ("event_id", "event_type")
    list_filter = ("provider", "status")
