from __future__ import annotations

from datetime import datetime

from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import F, Q
from django.utils import timezone


class CartItem(models.Model):
    user = models.ForeignKey("Profile", on_delete=models.CASCADE, related_name="cart_items")
    content_item = models.ForeignKey("ContentItem", on_delete=models.CASCADE, related_name="cart_items")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ("created_at", "id")
        constraints = [
            models.UniqueConstraint(fields=("user", "content_item"), name="cart_user_item_unique"),
        ]

    def __str__(self) -> str:
        return f"{self.user_id}:{self.content_item_id}"


class DiscountCode(models.Model):
    class DiscountType(models.TextChoices):
        PERCENTAGE = "percentage", "Percentage"
        FIXED = "fixed", "Fixed amount"

    code = models.CharField(max_length=64, unique=True, db_index=True)
    description = models.CharField(max_length=240, blank=True)
    discount_type = models.CharField(
        max_length=16,
        choices=DiscountType.choices,
        default=DiscountType.PERCENTAGE,
    )
    value = models.PositiveIntegerField(default=0)
    min_purchase_cents = models.PositiveIntegerField(default=0)
    max_uses_total = models.PositiveIntegerField(null=True, blank=True)
    max_uses_per_user = models.PositiveIntegerField(null=True, blank=True, default=1)
    valid_from = models.DateTimeField(null=True, blank=True)
    valid_until = models.DateTimeField(null=True, blank=True)
    applies_to_purchases = models.BooleanField(default=True)
    applies_to_subscriptions = models.BooleanField(default=False)
    used_count = models.PositiveIntegerField(default=0)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("-created_at",)
        constraints = [
            models.CheckConstraint(
                condition=Q(max_uses_total__isnull=True) | Q(used_count__lte=F("max_uses_total")),
                name="discount_used_within_total",
            ),
            models.CheckConstraint(
                condition=~Q(discount_type="percentage") | Q(value__lte=100),
                name="discount_percentage_bounded",
            ),
        ]

    def clean(self) -> None:
        self.code = (self.code or "").strip().upper()
        self.description = (self.description or "").strip()
        if not self.code:
            raise ValidationError({"code": "Code is required."})
        if self.discount_type == self.DiscountType.PERCENTAGE and self.value > 100:
            raise ValidationError({"value": "Percentage discounts cannot exceed 100."})
        if self.valid_from and self.valid_until and self.valid_until <= self.valid_from:
            raise ValidationError({"valid_until": "Must be after valid_from."})
        if not self.applies_to_purchases and not self.applies_to_subscriptions:
            raise ValidationError("Code must apply to purchases, subscriptions, or both.")

    def save(self, *args, **kwargs):
        self.full_clean()
        return super().save(*args, **kwargs)

    def __str__(self) -> str:
        return self.code


class Purchase(models.Model):
    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        COMPLETED = "completed", "Completed"
        REFUNDED = "refunded", "Refunded"
        FAILED = "failed", "Failed"

    user = models.ForeignKey("Profile", on_delete=models.CASCADE, related_name="purchases")
    content_item = models.ForeignKey("ContentItem", on_delete=models.PROTECT, related_name="purchases")
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    list_price_cents = models.PositiveIntegerField(default=0)
    discount_cents = models.PositiveIntegerField(default=0)
    price_paid_cents = models.PositiveIntegerField(default=0)
    currency = models.CharField(max_length=3, default="USD")
    discount_code = models.ForeignKey(
        "DiscountCode",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="purchases",
    )
    provider_order_id = models.CharField(max_length=64, blank=True, db_index=True)
    provider_capture_id = models.CharField(max_length=64, blank=True)
    payer_email = models.EmailField(blank=True)
    line_number = models.PositiveIntegerField(default=0)
    purchased_at = models.DateTimeField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("-created_at", "line_number")
        indexes = [
            models.Index(fields=("user", "status"), name="purchase_user_status_idx"),
            models.Index(fields=("provider_order_id", "status"), name="purchase_order_status_idx"),
            models.Index(fields=("content_item", "status"), name="purchase_item_status_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(discount_cents__lte=F("list_price_cents")),
                name="purchase_discount_within_price",
            ),
        ]

    def clean(self) -> None:
        self.currency = (self.currency or "USD").strip().upper()
        self.provider_order_id = (self.provider_order_id or "").strip()
        self.provider_capture_id = (self.provider_capture_id or "").strip()
        if len(self.currency) != 3:
            raise ValidationError({"currency": "Currency must be a 3-letter code."})
        if self.discount_cents > self.list_price_cents:
            raise ValidationError({"discount_cents": "Discount cannot exceed the list price."})
        if self.price_paid_cents != self.list_price_cents - self.discount_cents:
            raise ValidationError({"price_paid_cents": "Price paid must match list price - discount."})

    def save(self, *args, **kwargs):
        self.full_clean()
        return super().save(*args, **kwargs)

    def __str__(self) -> str:
        return f"{self.provider_order_id or 'local'}#{self.line_number} ({self.status})"


class Subscription(models.Model):
    class Status(models.TextChoices):
        ACTIVE = "active", "Active"
        PAST_DUE = "past_due", "Past due"
        CANCELED = "canceled", "Canceled"
        EXPIRED = "expired", "Expired"

    user = models.ForeignKey("Profile", on_delete=models.CASCADE, related_name="subscriptions")
    plan = models.ForeignKey(
        "SubscriptionPlan",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="subscriptions",
    )
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.ACTIVE)
    provider_subscription_id = models.CharField(max_length=64, unique=True)
    discount_code = models.ForeignKey(
        "DiscountCode",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="subscriptions",
    )
    current_period_start = models.DateTimeField(blank=True, null=True)
    current_period_end = models.DateTimeField(blank=True, null=True)
    canceled_at = models.DateTimeField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("-updated_at",)
        indexes = [
            models.Index(fields=("user", "status"), name="sub_user_status_idx"),
        ]

    ACCESS_STATUSES = ("active", "canceled")

    def grants_access(self, now: datetime | None = None) -> bool:
        if self.status not in self.ACCESS_STATUSES:
            return False
        if self.current_period_end is None:
            return False
        return self.current_period_end > (now or timezone.now())

    def clean(self) -> None:
        self.provider_subscription_id = (self.provider_subscription_id or "").strip()
        if not self.provider_subscription_id:
            raise ValidationError({"provider_subscription_id": "Provider subscription id is required."})
        if (
            self.current_period_start
            and self.current_period_end
            and self.current_period_end <= self.current_period_start
        ):
            raise ValidationError({"current_period_end": "Must be after current_period_start."})

    def save(self, *args, **kwargs):
        self.full_clean()
        return super().save(*args, **kwargs)

    def __str__(self) -> str:
        return self.provider_subscription_id


class DiscountCodeUsage(models.Model):
    discount_code = models.ForeignKey("DiscountCode", on_delete=models.CASCADE, related_name="usages")
    user = models.ForeignKey("Profile", on_delete=models.CASCADE, related_name="discount_usages")
    purchase = models.ForeignKey(
        "Purchase",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="discount_usages",
    )
    subscription = models.ForeignKey(
        "Subscription",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="discount_usages",
    )
    discount_amount_cents = models.PositiveIntegerField(default=0)
    # PayPal order or subscription id the redemption was reserved for.
    provider_reference = models.CharField(max_length=128, blank=True, default="", db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ("-created_at",)
        indexes = [
            models.Index(fields=("discount_code", "user"), name="usage_code_user_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.discount_code_id}:{self.user_id}"


class WebhookEvent(models.Model):
    class Provider(models.TextChoices):
        PAYPAL = "paypal", "PayPal"
        OTHER = "other", "Other"

    class Status(models.TextChoices):
        RECEIVED = "received", "Received"
        PROCESSED = "processed", "Processed"
        FAILED = "failed", "Failed"
        IGNORED = "ignored", "Ignored"

    provider = models.CharField(max_length=24, choices=Provider.choices, default=Provider.PAYPAL)
    event_id = models.CharField(max_length=191)
    event_type = models.CharField(max_length=191)
    payload = models.JSONField(default=dict, blank=True)
    status = models.CharField(max_length=24, choices=Status.choices, default=Status.RECEIVED)
    error_message = models.TextField(blank=True)
    received_at = models.DateTimeField(auto_now_add=True)
    processed_at = models.DateTimeField(blank=True, null=True)

    class Meta:
        ordering = ("-received_at",)
        constraints = [
            models.UniqueConstraint(fields=("provider", "event_id"), name="webhook_provider_event_unique"),
        ]
        indexes = [
            models.Index(fields=("status", "received_at"), name="webhook_status_received_idx"),
        ]

    def clean(self) -> None:
        self.event_id = (self.event_id or "").strip()
        self.event_type = (self.event_type or "").strip()
        self.error_message = (self.error_message or "").strip()

        if not self.event_id:
            raise ValidationError({"event_id": "Event id is required."})
        if not self.event_type:
            raise ValidationError({"event_type": "Event type is required."})

    def save(self, *args, **kwargs):
        self.full_clean()
        return super().save(*args, **kwargs)

    def __str__(self) -> str:
        return f"{self.provider}:{self.event_id}"
