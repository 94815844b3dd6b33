from __future__ import annotations

import logging

from django.shortcuts import get_object_or_404
from rest_framework import generics
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from ..billing import CheckoutOrchestrator, cart, compute_discount, validate_discount_code
from ..billing.catalog import get_content_item
from ..models import Purchase, SubscriptionPlan
from ..serializers import (
    CartAddSerializer,
    CartItemSerializer,
    CheckoutCaptureSerializer,
    CheckoutOrderSerializer,
    DiscountValidateSerializer,
    PurchaseSerializer,
)
from .helpers import BILLING_ERRORS, billing_error_response, get_request_profile

logger = logging.getLogger(__name__)


def _cart_payload(profile) -> dict:
    items = cart.get_items(profile)
    return {
        "items": CartItemSerializer(items, many=True).data,
        "total_cents": sum(item.content_item.price_cents for item in items),
    }


class CartView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        return Response(_cart_payload(get_request_profile(request)))

    def post(self, request):
        profile = get_request_profile(request)
        serializer = CartAddSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        content_item = get_content_item(serializer.validated_data["content_item_id"], published_only=True)
        try:
            _, created = cart.add_item(profile, content_item)
        except ValueError as exc:
            return Response({"detail": str(exc)}, status=400)
        return Response(_cart_payload(profile), status=201 if created else 200)


class CartItemView(APIView):
    permission_classes = [IsAuthenticated]

    def delete(self, request, content_item_id: int):
        profile = get_request_profile(request)
        cart.remove_item(profile, content_item_id)
        return Response(_cart_payload(profile))


class DiscountValidateView(APIView):
    permission_classes = [IsAuthenticated]
    throttle_scope = "discount_validate"

    def post(self, request):
        profile = get_request_profile(request)
        serializer = DiscountValidateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        for_subscription = serializer.validated_data["for_subscription"]

        if for_subscription:
            plan = get_object_or_404(
                SubscriptionPlan,
                pk=serializer.validated_data.get("plan_id"),
                is_active=True,
            )
            amount_cents = plan.price_cents
        else:
            amount_cents = sum(item.content_item.price_cents for item in cart.get_items(profile))

        result = validate_discount_code(
            serializer.validated_data["code"],
            profile,
            amount_cents,
            for_subscription=for_subscription,
        )
        if not result.valid:
            return Response({"valid": False, "detail": result.error}, status=400)

        discount_cents = compute_discount(result.discount_code, amount_cents)
        return Response(
            {
                "valid": True,
                "code": result.discount_code.code,
                "description": result.discount_code.description,
                "discount_cents": discount_cents,
                "original_total_cents": amount_cents,
                "final_total_cents": amount_cents - discount_cents,
            }
        )


class CheckoutOrderView(APIView):
    permission_classes = [IsAuthenticated]
    throttle_scope = "checkout_create"

    def post(self, request):
        profile = get_request_profile(request)
        serializer = CheckoutOrderSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            created = CheckoutOrchestrator().create_order(
                profile,
                discount_code=serializer.validated_data.get("discount_code") or None,
            )
        except BILLING_ERRORS as exc:
            return billing_error_response(exc)

        return Response(
            {
                "provider_order_id": created.provider_order_id,
                "approval_url": created.approval_url,
                "currency": created.currency,
                "total_cents": created.total_cents,
                "applied_discount": created.applied_discount.as_dict() if created.applied_discount else None,
            },
            status=201,
        )


class CheckoutCaptureView(APIView):
    permission_classes = [IsAuthenticated]
    throttle_scope = "checkout_capture"

    def post(self, request):
        profile = get_request_profile(request)
        serializer = CheckoutCaptureSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            result = CheckoutOrchestrator().capture_order(
                profile,
                serializer.validated_data["provider_order_id"],
            )
        except BILLING_ERRORS as exc:
            return billing_error_response(exc)

        return Response(
            {
                "success": result.success,
                "purchase_ids": result.purchase_ids,
                "already_completed": result.already_completed,
            }
        )


class PurchaseListView(generics.ListAPIView):
    permission_classes = [IsAuthenticated]
    serializer_class = PurchaseSerializer

    def get_queryset(self):
        profile = get_request_profile(self.request)
        return (
            Purchase.objects.filter(user=profile)
            .exclude(status=Purchase.Status.PENDING)
            .select_related("content_item", "discount_code")
            .order_by("-created_at", "line_number")
        )
