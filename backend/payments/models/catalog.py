from __future__ import annotations

from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import Q


class ContentItem(models.Model):
    owner = models.ForeignKey(
        "Profile",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="content_items",
    )
    title = models.CharField(max_length=240)
    author = models.CharField(max_length=180, blank=True)
    description = models.TextField(blank=True)
    price_cents = models.PositiveIntegerField(default=0)
    currency = models.CharField(max_length=3, default="USD")
    is_free = models.BooleanField(default=False)
    is_published = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("title",)
        indexes = [
            models.Index(fields=("owner", "is_published"), name="content_owner_published_idx"),
        ]

    @property
    def is_effectively_free(self) -> bool:
        return bool(self.is_free or not self.price_cents)

    def clean(self) -> None:
        self.title = (self.title or "").strip()
        self.currency = (self.currency or "USD").strip().upper()
        if not self.title:
            raise ValidationError({"title": "Title is required."})
        if len(self.currency) != 3:
            raise ValidationError({"currency": "Currency must be a 3-letter code."})

    def save(self, *args, **kwargs):
        self.full_clean()
        return super().save(*args, **kwargs)

    def __str__(self) -> str:
        return self.title


class Chapter(models.Model):
    content_item = models.ForeignKey("ContentItem", on_delete=models.CASCADE, related_name="chapters")
    title = models.CharField(max_length=240)
    position = models.PositiveIntegerField(default=0)
    duration_seconds = models.PositiveIntegerField(default=0)
    is_sample = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("content_item", "position", "id")

    def __str__(self) -> str:
        return f"{self.content_item_id}:{self.position} {self.title}"


class SubscriptionPlan(models.Model):
    name = models.CharField(max_length=160)
    description = models.TextField(blank=True)
    price_cents = models.PositiveIntegerField(default=0)
    currency = models.CharField(max_length=3, default="USD")
    interval_months = models.PositiveIntegerField(default=1)
    trial_days = models.PositiveIntegerField(default=0)
    provider_product_id = models.CharField(max_length=64, blank=True)
    provider_plan_id = models.CharField(max_length=64, null=True, blank=True, unique=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("price_cents", "name")
        constraints = [
            models.CheckConstraint(
                condition=Q(interval_months__gte=1),
                name="plan_interval_positive",
            ),
        ]

    def clean(self) -> None:
        self.name = (self.name or "").strip()
        self.currency = (self.currency or "USD").strip().upper()
        self.provider_product_id = (self.provider_product_id or "").strip()
        self.provider_plan_id = (self.provider_plan_id or "").strip() or None
        if not self.name:
            raise ValidationError({"name": "Plan name is required."})
        if len(self.currency) != 3:
            raise ValidationError({"currency": "Currency must be a 3-letter code."})
        if self.interval_months < 1:
            raise ValidationError({"interval_months": "Interval must be at least one month."})

    def save(self, *args, **kwargs):
        self.full_clean()
        return super().save(*args, **kwargs)

    def __str__(self) -> str:
        return self.name
