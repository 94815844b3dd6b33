from __future__ import annotations

from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import Q


class Profile(models.Model):
    class Role(models.TextChoices):
        LISTENER = "listener", "Listener"
        CREATOR = "creator", "Creator"
        ADMIN = "admin", "Admin"

    external_id = models.CharField(max_length=64, unique=True, db_index=True)
    email = models.EmailField(blank=True)
    first_name = models.CharField(max_length=150, blank=True)
    last_name = models.CharField(max_length=150, blank=True)
    role = models.CharField(max_length=24, choices=Role.choices, default=Role.LISTENER)
    is_active = models.BooleanField(default=True)
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("-updated_at",)
        indexes = [
            models.Index(fields=("role", "is_active"), name="profile_role_active_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(role__in=("listener", "creator", "admin")),
                name="profile_role_valid",
            ),
        ]

    @property
    def display_name(self) -> str:
        full_name = f"{self.first_name} {self.last_name}".strip()
        return full_name or self.email or self.external_id

    @property
    def is_admin(self) -> bool:
        return self.role == self.Role.ADMIN

    def __str__(self) -> str:
        return self.email or self.external_id


class CustomerAccount(models.Model):
    """Billing profile handed to the invoice generator."""

    profile = models.OneToOneField(Profile, on_delete=models.CASCADE, related_name="customer_account")
    billing_email = models.EmailField(blank=True)
    full_name = models.CharField(max_length=180, blank=True)
    company_name = models.CharField(max_length=180, blank=True)
    country = models.CharField(max_length=2, blank=True)
    tax_id = models.CharField(max_length=64, blank=True)
    address = models.TextField(blank=True)
    provider_payer_id = models.CharField(max_length=64, blank=True, db_index=True)
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("-updated_at",)

    def clean(self) -> None:
        self.billing_email = (self.billing_email or "").strip().lower()
        self.full_name = (self.full_name or "").strip()
        self.company_name = (self.company_name or "").strip()
        self.country = (self.country or "").strip().upper()
        self.tax_id = (self.tax_id or "").strip()
        self.provider_payer_id = (self.provider_payer_id or "").strip()

        if self.country and len(self.country) != 2:
            raise ValidationError({"country": "Country must be a 2-letter ISO code."})

    def save(self, *args, **kwargs):
        self.full_clean()
        return super().save(*args, **kwargs)

    def __str__(self) -> str:
        return self.billing_email or self.profile.external_id
