from __future__ import annotations

import logging

from django.http import HttpRequest, JsonResponse
from django.utils import timezone as django_timezone
from django.utils.decorators import method_decorator
from django.views import View
from django.views.decorators.csrf import csrf_exempt

from ..models import WebhookEvent
from ..tools.paypal import WEBHOOK_HEADER_NAMES
from .handlers import EVENT_HANDLERS
from .helpers import _resource
from .verification import WebhookVerificationError, _verify_webhook

logger = logging.getLogger(__name__)


@method_decorator(csrf_exempt, name="dispatch")
class PaymentWebhookView(View):
    """Receive and process PayPal webhook events."""

    def _mark(self, webhook_event: WebhookEvent, status: str, error_message: str = "") -> None:
        webhook_event.status = status
        webhook_event.processed_at = django_timezone.now()
        webhook_event.error_message = error_message
        webhook_event.save(update_fields=["status", "processed_at", "error_message"])

    def post(self, request: HttpRequest) -> JsonResponse:
        paypal_headers = {name: request.headers.get(name, "") for name in WEBHOOK_HEADER_NAMES}

        try:
            event = _verify_webhook(request.body, paypal_headers)
        except WebhookVerificationError as exc:
            logger.warning("Webhook verification failed: %s", exc)
            return JsonResponse({"error": "Invalid webhook signature."}, status=401)

        event_id = str(event.get("id") or paypal_headers.get("paypal-transmission-id") or "").strip()
        event_type = str(event.get("event_type") or "").strip()
        data = _resource(event)
        if not event_id:
            return JsonResponse({"error": "Webhook event id is missing."}, status=400)

        webhook_event, created = WebhookEvent.objects.get_or_create(
            provider=WebhookEvent.Provider.PAYPAL,
            event_id=event_id,
            defaults={
                "event_type": event_type or "unknown",
                "payload": event,
                "status": WebhookEvent.Status.RECEIVED,
            },
        )
        if not created and webhook_event.status in {
            WebhookEvent.Status.PROCESSED,
            WebhookEvent.Status.IGNORED,
        }:
            logger.debug("Skipping replayed webhook event %s.", event_id)
            return JsonResponse({"status": "ok", "deduplicated": True})

        handler = EVENT_HANDLERS.get(event_type)
        if handler is None:
            logger.debug("Unhandled PayPal webhook event type: %s", event_type)
            self._mark(webhook_event, WebhookEvent.Status.IGNORED)
            return JsonResponse({"status": "ok"})

        try:
            handler(data)
        except Exception as exc:
            logger.exception("Error processing webhook event: %s", event_type)
            self._mark(webhook_event, WebhookEvent.Status.FAILED, str(exc))
            return JsonResponse({"error": "Internal handler error"}, status=500)

        self._mark(webhook_event, WebhookEvent.Status.PROCESSED)
        return JsonResponse({"status": "ok"})
