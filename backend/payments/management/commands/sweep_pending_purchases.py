from datetime import timedelta

from django.conf import settings
from django.core.management.base import BaseCommand
from django.utils import timezone

from payments.billing import fail_pending_order
from payments.models import Purchase


class Command(BaseCommand):
    help = "Mark abandoned PENDING purchase lines as FAILED and release their discount reservations."

    def add_arguments(self, parser):
        parser.add_argument(
            "--older-than-hours",
            type=int,
            default=getattr(settings, "CHECKOUT_PENDING_SWEEP_HOURS", 24),
        )

    def handle(self, *args, **options):
        cutoff = timezone.now() - timedelta(hours=options["older_than_hours"])
        order_ids = (
            Purchase.objects.filter(status=Purchase.Status.PENDING, created_at__lt=cutoff)
            .order_by()
            .values_list("provider_order_id", flat=True)
            .distinct()
        )
        swept = sum(fail_pending_order(order_id) for order_id in list(order_ids))
        self.stdout.write(self.style.SUCCESS(f"Marked {swept} abandoned purchase line(s) as failed."))
