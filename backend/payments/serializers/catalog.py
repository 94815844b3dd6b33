from __future__ import annotations

from rest_framework import serializers

from ..models import Chapter, ContentItem, SubscriptionPlan


class ContentItemSerializer(serializers.ModelSerializer):
    price = serializers.SerializerMethodField()
    is_free = serializers.BooleanField(source="is_effectively_free", read_only=True)

    class Meta:
        model = ContentItem
        fields = (
            "id",
            "title",
            "author",
            "price_cents",
            "price",
            "currency",
            "is_free",
        )
        read_only_fields = fields

    def get_price(self, obj: ContentItem) -> str:
        return f"{obj.price_cents / 100:.2f}"


class ChapterSerializer(serializers.ModelSerializer):
    class Meta:
        model = Chapter
        fields = ("id", "content_item", "title", "position", "duration_seconds", "is_sample")
        read_only_fields = fields


class SubscriptionPlanSerializer(serializers.ModelSerializer):
    class Meta:
        model = SubscriptionPlan
        fields = (
            "id",
            "name",
            "description",
            "price_cents",
            "currency",
            "interval_months",
            "trial_days",
        )
        read_only_fields = fields
