from __future__ import annotations

from django.shortcuts import get_object_or_404
from rest_framework import generics
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from ..billing import SubscriptionManager
from ..models import Subscription, SubscriptionPlan
from ..serializers import (
    SubscriptionCancelSerializer,
    SubscriptionCreateSerializer,
    SubscriptionPlanSerializer,
    SubscriptionSerializer,
)
from .helpers import BILLING_ERRORS, billing_error_response, get_request_profile


class SubscriptionPlanListView(generics.ListAPIView):
    authentication_classes = []
    permission_classes = [AllowAny]
    serializer_class = SubscriptionPlanSerializer

    def get_queryset(self):
        return SubscriptionPlan.objects.filter(is_active=True).exclude(provider_plan_id__isnull=True)


class SubscriptionListCreateView(APIView):
    permission_classes = [IsAuthenticated]
    throttle_scope = "subscription_manage"

    def get(self, request):
        profile = get_request_profile(request)
        subscriptions = Subscription.objects.filter(user=profile).select_related("plan").order_by("-created_at")
        return Response(SubscriptionSerializer(subscriptions, many=True).data)

    def post(self, request):
        profile = get_request_profile(request)
        serializer = SubscriptionCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        plan = get_object_or_404(SubscriptionPlan, pk=serializer.validated_data["plan_id"], is_active=True)

        try:
            created = SubscriptionManager().create_subscription(
                profile,
                plan,
                discount_code=serializer.validated_data.get("discount_code") or None,
            )
        except BILLING_ERRORS as exc:
            return billing_error_response(exc)

        return Response(
            {
                "provider_subscription_id": created.provider_subscription_id,
                "approval_url": created.approval_url,
                "applied_discount": created.applied_discount.as_dict() if created.applied_discount else None,
            },
            status=201,
        )


class SubscriptionActivateView(APIView):
    permission_classes = [IsAuthenticated]
    throttle_scope = "subscription_manage"

    def post(self, request, provider_subscription_id: str):
        profile = get_request_profile(request)
        try:
            subscription, created = SubscriptionManager().activate_subscription(profile, provider_subscription_id)
        except BILLING_ERRORS as exc:
            return billing_error_response(exc)

        return Response(
            {
                "subscription": SubscriptionSerializer(subscription).data,
                "already_active": not created,
            },
            status=201 if created else 200,
        )


class SubscriptionCancelView(APIView):
    permission_classes = [IsAuthenticated]
    throttle_scope = "subscription_manage"

    def post(self, request, provider_subscription_id: str):
        profile = get_request_profile(request)
        serializer = SubscriptionCancelSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            subscription = SubscriptionManager().cancel_subscription(
                profile,
                provider_subscription_id,
                reason=serializer.validated_data.get("reason", ""),
            )
        except BILLING_ERRORS as exc:
            return billing_error_response(exc)

        return Response({"subscription": SubscriptionSerializer(subscription).data})
