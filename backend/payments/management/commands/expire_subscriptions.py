from django.core.management.base import BaseCommand

from payments.billing import expire_lapsed_subscriptions


class Command(BaseCommand):
    help = "Expire canceled subscriptions whose paid period has ended."

    def handle(self, *args, **options):
        expired = expire_lapsed_subscriptions()
        self.stdout.write(self.style.SUCCESS(f"Expired {expired} subscription(s)."))
