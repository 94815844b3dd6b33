from __future__ import annotations

from rest_framework import serializers

from ..models import CartItem, Purchase, Subscription
from .catalog import ContentItemSerializer, SubscriptionPlanSerializer


class CartItemSerializer(serializers.ModelSerializer):
    content_item = ContentItemSerializer(read_only=True)

    class Meta:
        model = CartItem
        fields = ("id", "content_item", "created_at")
        read_only_fields = fields


class CartAddSerializer(serializers.Serializer):
    content_item_id = serializers.IntegerField(min_value=1)


class PurchaseSerializer(serializers.ModelSerializer):
    content_item = ContentItemSerializer(read_only=True)
    discount_code = serializers.CharField(source="discount_code.code", read_only=True, default="")

    class Meta:
        model = Purchase
        fields = (
            "id",
            "content_item",
            "status",
            "list_price_cents",
            "discount_cents",
            "price_paid_cents",
            "currency",
            "discount_code",
            "provider_order_id",
            "purchased_at",
            "created_at",
        )
        read_only_fields = fields


class SubscriptionSerializer(serializers.ModelSerializer):
    plan = SubscriptionPlanSerializer(read_only=True)
    grants_access = serializers.SerializerMethodField()

    class Meta:
        model = Subscription
        fields = (
            "id",
            "plan",
            "status",
            "provider_subscription_id",
            "current_period_start",
            "current_period_end",
            "canceled_at",
            "grants_access",
            "created_at",
            "updated_at",
        )
        read_only_fields = fields

    def get_grants_access(self, obj: Subscription) -> bool:
        return obj.grants_access()


class CheckoutOrderSerializer(serializers.Serializer):
    discount_code = serializers.CharField(required=False, allow_blank=True, max_length=64)


class CheckoutCaptureSerializer(serializers.Serializer):
    provider_order_id = serializers.CharField(max_length=64)


class DiscountValidateSerializer(serializers.Serializer):
    code = serializers.CharField(max_length=64)
    for_subscription = serializers.BooleanField(default=False)
    plan_id = serializers.IntegerField(required=False, min_value=1)

    def validate(self, attrs):
        if attrs.get("for_subscription") and not attrs.get("plan_id"):
            raise serializers.ValidationError({"plan_id": "A plan is required for subscription discounts."})
        return attrs


class SubscriptionCreateSerializer(serializers.Serializer):
    plan_id = serializers.IntegerField(min_value=1)
    discount_code = serializers.CharField(required=False, allow_blank=True, max_length=64)


class SubscriptionCancelSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, max_length=127)
