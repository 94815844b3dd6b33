from __future__ import annotations

from datetime import datetime, timezone

from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from ..serializers import CustomerAccountSerializer, ProfileSerializer
from .helpers import get_request_customer_account, get_request_profile


class HealthView(APIView):
    authentication_classes = []
    permission_classes = [AllowAny]

    def get(self, request):
        return Response(
            {
                "status": "ok",
                "timestamp": datetime.now(tz=timezone.utc).isoformat(),
            }
        )


class MeView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        return Response(ProfileSerializer(get_request_profile(request)).data)


class BillingProfileView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        account = get_request_customer_account(request)
        return Response(CustomerAccountSerializer(account).data)

    def patch(self, request):
        account = get_request_customer_account(request)
        serializer = CustomerAccountSerializer(account, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        serializer.save()
        return Response(serializer.data)
