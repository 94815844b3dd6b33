from __future__ import annotations

from rest_framework import serializers

from ..models import CustomerAccount, Profile


class ProfileSerializer(serializers.ModelSerializer):
    class Meta:
        model = Profile
        fields = (
            "id",
            "external_id",
            "email",
            "first_name",
            "last_name",
            "role",
            "is_active",
            "created_at",
            "updated_at",
        )
        read_only_fields = fields


class CustomerAccountSerializer(serializers.ModelSerializer):
    profile = ProfileSerializer(read_only=True)

    class Meta:
        model = CustomerAccount
        fields = (
            "id",
            "profile",
            "billing_email",
            "full_name",
            "company_name",
            "country",
            "tax_id",
            "address",
            "created_at",
            "updated_at",
        )
        read_only_fields = ("id", "profile", "created_at", "updated_at")

    def validate_country(self, value: str) -> str:
        normalized = (value or "").strip().upper()
        if normalized and len(normalized) != 2:
            raise serializers.ValidationError("Country must be a 2-letter ISO code.")
        return normalized
