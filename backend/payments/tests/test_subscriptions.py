from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from django.core.cache import cache
from django.core.management import call_command
from django.test import SimpleTestCase, TestCase
from django.utils import timezone as django_timezone

from payments.billing import (
    SubscriptionError,
    SubscriptionManager,
    apply_status,
    checkout_contexts,
    expire_lapsed_subscriptions,
    map_provider_status,
)
from payments.billing.discounts import validate_discount_code
from payments.billing.exceptions import DiscountValidationError
from payments.billing.helpers import add_months
from payments.billing.plans import publish_plan
from payments.billing.subscriptions import provider_period
from payments.models import DiscountCode, DiscountCodeUsage, Profile, Subscription, SubscriptionPlan
from payments.webhooks import handle_subscription_activated

from .fakes import FakePayPal


class SubscriptionHelpersTests(SimpleTestCase):
    def test_maps_provider_statuses(self):
        self.assertEqual(map_provider_status("ACTIVE"), Subscription.Status.ACTIVE)
        self.assertEqual(map_provider_status("suspended"), Subscription.Status.PAST_DUE)
        self.assertEqual(map_provider_status("CANCELLED"), Subscription.Status.CANCELED)
        self.assertEqual(map_provider_status("EXPIRED"), Subscription.Status.EXPIRED)
        self.assertIsNone(map_provider_status("APPROVAL_PENDING"))

    def test_add_months_clamps_to_month_end(self):
        start = datetime(2024, 1, 31, 12, 0, tzinfo=timezone.utc)
        self.assertEqual(add_months(start, 1), datetime(2024, 2, 29, 12, 0, tzinfo=timezone.utc))
        self.assertEqual(add_months(start, 12), datetime(2025, 1, 31, 12, 0, tzinfo=timezone.utc))

    def test_provider_period_prefers_billing_info(self):
        start, end = provider_period(
            {
                "start_time": "2024-03-01T00:00:00Z",
                "billing_info": {
                    "last_payment": {"time": "2024-04-01T10:00:00Z"},
                    "next_billing_time": "2024-05-01T10:00:00Z",
                },
            },
            1,
        )
        self.assertEqual(start, datetime(2024, 4, 1, 10, 0, tzinfo=timezone.utc))
        self.assertEqual(end, datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc))

    def test_provider_period_falls_back_to_plan_interval(self):
        start, end = provider_period({"start_time": "2024-03-15T00:00:00Z"}, 3)
        self.assertEqual(start, datetime(2024, 3, 15, tzinfo=timezone.utc))
        self.assertEqual(end, datetime(2024, 6, 15, tzinfo=timezone.utc))


class SubscriptionStatusTests(TestCase):
    def setUp(self):
        self.user = Profile.objects.create(external_id="sub_user")
        self.plan = SubscriptionPlan.objects.create(name="Monthly", price_cents=999, provider_plan_id="P-1")
        now = django_timezone.now()
        self.subscription = Subscription.objects.create(
            user=self.user,
            plan=self.plan,
            provider_subscription_id="I-STATUS",
            current_period_start=now - timedelta(days=5),
            current_period_end=now + timedelta(days=25),
        )

    def _status(self):
        self.subscription.refresh_from_db()
        return self.subscription.status

    def test_past_due_can_recover(self):
        apply_status("I-STATUS", Subscription.Status.PAST_DUE)
        self.assertEqual(self._status(), Subscription.Status.PAST_DUE)
        apply_status("I-STATUS", Subscription.Status.ACTIVE)
        self.assertEqual(self._status(), Subscription.Status.ACTIVE)

    def test_cancel_records_timestamp_and_keeps_access(self):
        apply_status("I-STATUS", Subscription.Status.CANCELED)

        self.assertEqual(self._status(), Subscription.Status.CANCELED)
        self.assertIsNotNone(self.subscription.canceled_at)
        self.assertTrue(self.subscription.grants_access())

    def test_canceled_cannot_be_reactivated(self):
        apply_status("I-STATUS", Subscription.Status.CANCELED)
        apply_status("I-STATUS", Subscription.Status.ACTIVE)
        self.assertEqual(self._status(), Subscription.Status.CANCELED)

    def test_expired_is_terminal(self):
        apply_status("I-STATUS", Subscription.Status.EXPIRED)
        for status in (Subscription.Status.ACTIVE, Subscription.Status.PAST_DUE, Subscription.Status.CANCELED):
            apply_status("I-STATUS", status)
        self.assertEqual(self._status(), Subscription.Status.EXPIRED)

    def test_unknown_subscription_is_ignored(self):
        self.assertIsNone(apply_status("I-UNKNOWN", Subscription.Status.CANCELED))

    def test_expire_lapsed_subscriptions_only_touches_ended_cancellations(self):
        apply_status("I-STATUS", Subscription.Status.CANCELED)
        self.assertEqual(expire_lapsed_subscriptions(), 0)

        later = django_timezone.now() + timedelta(days=30)
        self.assertEqual(expire_lapsed_subscriptions(now=later), 1)
        self.assertEqual(self._status(), Subscription.Status.EXPIRED)

    def test_expire_command(self):
        Subscription.objects.filter(pk=self.subscription.pk).update(
            status=Subscription.Status.CANCELED,
            current_period_end=django_timezone.now() - timedelta(minutes=1),
        )
        call_command("expire_subscriptions", verbosity=0)
        self.assertEqual(self._status(), Subscription.Status.EXPIRED)


class SubscriptionManagerTests(TestCase):
    def setUp(self):
        cache.clear()
        self.provider = FakePayPal()
        self.manager = SubscriptionManager(provider=self.provider)
        self.user = Profile.objects.create(external_id="subscriber_1", email="s@example.com")
        self.plan = SubscriptionPlan.objects.create(
            name="Unlimited",
            price_cents=1500,
            interval_months=1,
            provider_plan_id="P-UNLIMITED",
        )
        self.code = DiscountCode.objects.create(
            code="SUBHALF",
            discount_type=DiscountCode.DiscountType.PERCENTAGE,
            value=50,
            applies_to_purchases=False,
            applies_to_subscriptions=True,
        )

    def _approve(self, subscription_id):
        self.provider.subscriptions[subscription_id].update(
            {
                "status": "ACTIVE",
                "start_time": "2024-06-01T00:00:00Z",
                "billing_info": {"next_billing_time": "2099-07-01T00:00:00Z"},
            }
        )

    def test_create_subscription_with_discount_overrides_price(self):
        created = self.manager.create_subscription(self.user, self.plan, discount_code="subhalf")

        self.assertEqual(created.applied_discount.final_total_cents, 750)
        stored = self.provider.subscriptions[created.provider_subscription_id]
        self.assertEqual(stored["custom_id"], "subscriber_1")
        price = stored["plan_override"]["billing_cycles"][0]["pricing_scheme"]["fixed_price"]
        self.assertEqual(price, {"currency_code": "USD", "value": "7.50"})

        context = checkout_contexts.get(self.user.pk)
        self.assertEqual(context.kind, "subscription")
        self.assertEqual(context.discount_amount_cents, 750)

    def test_purchase_only_code_is_rejected_for_subscriptions(self):
        DiscountCode.objects.create(code="BOOKS", discount_type=DiscountCode.DiscountType.FIXED, value=100)
        with self.assertRaisesMessage(DiscountValidationError, "cannot be applied to subscriptions"):
            self.manager.create_subscription(self.user, self.plan, discount_code="BOOKS")

    def test_plan_without_provider_id_is_unavailable(self):
        plan = SubscriptionPlan.objects.create(name="Draft", price_cents=100)
        with self.assertRaises(SubscriptionError) as ctx:
            self.manager.create_subscription(self.user, plan)
        self.assertEqual(ctx.exception.status_code, 400)

    def test_activation_is_idempotent_and_records_discount_once(self):
        created = self.manager.create_subscription(self.user, self.plan, discount_code="SUBHALF")
        self._approve(created.provider_subscription_id)

        with patch("payments.billing.subscriptions.issue_subscription_invoice") as issue_invoice:
            with self.captureOnCommitCallbacks(execute=True):
                subscription, was_created = self.manager.activate_subscription(
                    self.user, created.provider_subscription_id
                )

        self.assertTrue(was_created)
        self.assertEqual(subscription.status, Subscription.Status.ACTIVE)
        self.assertEqual(subscription.discount_code_id, self.code.pk)
        self.assertTrue(subscription.grants_access())
        issue_invoice.assert_called_once_with(subscription.pk, 750)

        again, was_created = self.manager.activate_subscription(self.user, created.provider_subscription_id)
        self.assertFalse(was_created)
        self.assertEqual(again.pk, subscription.pk)
        self.assertEqual(DiscountCodeUsage.objects.filter(subscription=subscription).count(), 1)
        self.assertIsNone(checkout_contexts.get(self.user.pk))

    def test_activation_requires_active_provider_status(self):
        created = self.manager.create_subscription(self.user, self.plan)
        with self.assertRaises(SubscriptionError) as ctx:
            self.manager.activate_subscription(self.user, created.provider_subscription_id)
        self.assertEqual(ctx.exception.status_code, 409)
        self.assertFalse(Subscription.objects.exists())

    def test_activation_by_another_user_is_forbidden(self):
        created = self.manager.create_subscription(self.user, self.plan)
        self._approve(created.provider_subscription_id)
        other = Profile.objects.create(external_id="someone_else")

        with self.assertRaises(SubscriptionError) as ctx:
            self.manager.activate_subscription(other, created.provider_subscription_id)
        self.assertEqual(ctx.exception.status_code, 403)

    def test_second_subscription_is_rejected_while_active(self):
        created = self.manager.create_subscription(self.user, self.plan)
        self._approve(created.provider_subscription_id)
        self.manager.activate_subscription(self.user, created.provider_subscription_id)

        with self.assertRaises(SubscriptionError) as ctx:
            self.manager.create_subscription(self.user, self.plan)
        self.assertEqual(ctx.exception.status_code, 409)

    def test_cancel_is_soft_and_idempotent(self):
        created = self.manager.create_subscription(self.user, self.plan)
        self._approve(created.provider_subscription_id)
        self.manager.activate_subscription(self.user, created.provider_subscription_id)

        subscription = self.manager.cancel_subscription(self.user, created.provider_subscription_id, "Too busy")
        self.manager.cancel_subscription(self.user, created.provider_subscription_id)

        self.assertEqual(subscription.status, Subscription.Status.CANCELED)
        self.assertTrue(subscription.grants_access())
        self.assertEqual(self.provider.canceled, [(created.provider_subscription_id, "Too busy")])

    def test_cancel_unknown_subscription(self):
        with self.assertRaises(SubscriptionError) as ctx:
            self.manager.cancel_subscription(self.user, "I-NOPE")
        self.assertEqual(ctx.exception.status_code, 404)

    def test_sync_activation_creates_subscription_from_webhook_resource(self):
        subscription = self.manager.sync_activation(
            {
                "id": "I-WEBHOOK",
                "status": "ACTIVE",
                "plan_id": "P-UNLIMITED",
                "custom_id": "subscriber_1",
                "start_time": "2024-06-01T00:00:00Z",
                "billing_info": {"next_billing_time": "2099-07-01T00:00:00Z"},
            }
        )
        self.assertEqual(subscription.user, self.user)
        self.assertEqual(subscription.status, Subscription.Status.ACTIVE)

    def test_discount_is_held_when_subscription_is_created(self):
        created = self.manager.create_subscription(self.user, self.plan, discount_code="SUBHALF")

        held = DiscountCodeUsage.objects.get()
        self.assertEqual(held.provider_reference, created.provider_subscription_id)
        self.assertIsNone(held.subscription)
        self.code.refresh_from_db()
        self.assertEqual(self.code.used_count, 1)

    def test_webhook_activation_before_return_still_redeems_discount(self):
        DiscountCode.objects.filter(pk=self.code.pk).update(max_uses_per_user=1)
        created = self.manager.create_subscription(self.user, self.plan, discount_code="SUBHALF")
        self._approve(created.provider_subscription_id)

        with patch("payments.billing.subscriptions.get_paypal_client", return_value=self.provider):
            handle_subscription_activated(self.provider.subscriptions[created.provider_subscription_id])
        subscription, was_created = self.manager.activate_subscription(self.user, created.provider_subscription_id)

        self.assertFalse(was_created)
        self.assertEqual(subscription.discount_code_id, self.code.pk)
        usage = DiscountCodeUsage.objects.get()
        self.assertEqual(usage.subscription, subscription)
        self.assertEqual(usage.discount_amount_cents, 750)
        self.code.refresh_from_db()
        self.assertEqual(self.code.used_count, 1)
        self.assertFalse(validate_discount_code("SUBHALF", self.user, 1500, for_subscription=True).valid)

    def test_new_attempt_releases_unapproved_discount_hold(self):
        DiscountCode.objects.filter(pk=self.code.pk).update(max_uses_per_user=1)
        abandoned = self.manager.create_subscription(self.user, self.plan, discount_code="SUBHALF")

        retry = self.manager.create_subscription(self.user, self.plan, discount_code="SUBHALF")

        held = DiscountCodeUsage.objects.get()
        self.assertEqual(held.provider_reference, retry.provider_subscription_id)
        self.assertNotEqual(held.provider_reference, abandoned.provider_subscription_id)
        self.code.refresh_from_db()
        self.assertEqual(self.code.used_count, 1)

    def test_last_use_is_held_by_first_subscriber(self):
        DiscountCode.objects.filter(pk=self.code.pk).update(max_uses_total=1)
        rival = Profile.objects.create(external_id="subscriber_2")
        self.manager.create_subscription(self.user, self.plan, discount_code="SUBHALF")

        with self.assertRaisesMessage(DiscountValidationError, "reached its usage limit"):
            self.manager.create_subscription(rival, self.plan, discount_code="SUBHALF")
        self.assertEqual(DiscountCodeUsage.objects.count(), 1)

    def test_refresh_extends_period_after_renewal(self):
        created = self.manager.create_subscription(self.user, self.plan)
        self._approve(created.provider_subscription_id)
        subscription, _ = self.manager.activate_subscription(self.user, created.provider_subscription_id)
        self.provider.subscriptions[created.provider_subscription_id]["billing_info"] = {
            "last_payment": {"time": "2099-07-01T00:00:00Z"},
            "next_billing_time": "2099-08-01T00:00:00Z",
        }

        refreshed = self.manager.refresh_subscription(created.provider_subscription_id)

        self.assertGreater(refreshed.current_period_end, subscription.current_period_end)
        self.assertEqual(refreshed.current_period_end, datetime(2099, 8, 1, tzinfo=timezone.utc))


class PublishPlanTests(TestCase):
    def test_creates_product_and_plan(self):
        client = FakePayPal()
        client.create_product = lambda name, description="": {"id": "PROD-1"}
        client.create_plan = lambda **kwargs: {"id": "P-NEW", "kwargs": kwargs}
        plan = SubscriptionPlan.objects.create(name="Annual", price_cents=9900, interval_months=12)

        publish_plan(plan, client=client)

        plan.refresh_from_db()
        self.assertEqual(plan.provider_product_id, "PROD-1")
        self.assertEqual(plan.provider_plan_id, "P-NEW")
