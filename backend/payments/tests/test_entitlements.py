from datetime import timedelta

from django.http import Http404
from django.test import TestCase
from django.utils import timezone

from payments.billing import AccessReason, has_active_subscription, resolve_access, resolve_chapter_access
from payments.billing.catalog import get_chapter, get_content_item
from payments.models import Chapter, ContentItem, Profile, Purchase, Subscription, SubscriptionPlan


class ResolveAccessTests(TestCase):
    def setUp(self):
        self.now = timezone.now()
        self.creator = Profile.objects.create(external_id="creator_1", role=Profile.Role.CREATOR)
        self.listener = Profile.objects.create(external_id="listener_1")
        self.item = ContentItem.objects.create(owner=self.creator, title="Deep Work", price_cents=1299)
        self.plan = SubscriptionPlan.objects.create(name="Monthly", price_cents=999, provider_plan_id="P-MONTHLY")

    def _subscribe(self, status, period_end):
        return Subscription.objects.create(
            user=self.listener,
            plan=self.plan,
            status=status,
            provider_subscription_id=f"I-{status}-{Subscription.objects.count()}",
            current_period_start=period_end - timedelta(days=30),
            current_period_end=period_end,
        )

    def test_free_item_is_open_to_anonymous_users(self):
        free_item = ContentItem.objects.create(title="Free Sampler", is_free=True, price_cents=500)
        decision = resolve_access(None, free_item)
        self.assertTrue(decision.has_access)
        self.assertEqual(decision.reason, AccessReason.FREE)

    def test_zero_price_item_counts_as_free(self):
        item = ContentItem.objects.create(title="Zero", price_cents=0)
        self.assertEqual(resolve_access(self.listener, item).reason, AccessReason.FREE)

    def test_anonymous_user_is_denied_paid_item(self):
        decision = resolve_access(None, self.item)
        self.assertFalse(decision.has_access)
        self.assertEqual(decision.reason, AccessReason.NONE)

    def test_owner_has_access(self):
        self.assertEqual(resolve_access(self.creator, self.item).reason, AccessReason.OWNER)

    def test_admin_has_access(self):
        admin = Profile.objects.create(external_id="admin_1", role=Profile.Role.ADMIN)
        self.assertEqual(resolve_access(admin, self.item).reason, AccessReason.ADMIN)

    def test_completed_purchase_grants_access(self):
        Purchase.objects.create(
            user=self.listener,
            content_item=self.item,
            status=Purchase.Status.COMPLETED,
            list_price_cents=1299,
            price_paid_cents=1299,
            provider_order_id="ORDER-OWNED",
        )
        self.assertEqual(resolve_access(self.listener, self.item).reason, AccessReason.PURCHASED)

    def test_pending_and_refunded_purchases_do_not_grant_access(self):
        for status in (Purchase.Status.PENDING, Purchase.Status.REFUNDED, Purchase.Status.FAILED):
            Purchase.objects.create(
                user=self.listener,
                content_item=self.item,
                status=status,
                list_price_cents=1299,
                price_paid_cents=1299,
                provider_order_id=f"ORDER-{status}",
            )
        self.assertFalse(resolve_access(self.listener, self.item).has_access)

    def test_active_subscription_grants_access(self):
        self._subscribe(Subscription.Status.ACTIVE, self.now + timedelta(days=10))
        decision = resolve_access(self.listener, self.item, now=self.now)
        self.assertTrue(decision.has_access)
        self.assertEqual(decision.reason, AccessReason.SUBSCRIBER)

    def test_canceled_subscription_keeps_access_until_period_end(self):
        self._subscribe(Subscription.Status.CANCELED, self.now + timedelta(days=3))
        self.assertTrue(resolve_access(self.listener, self.item, now=self.now).has_access)
        self.assertFalse(resolve_access(self.listener, self.item, now=self.now + timedelta(days=4)).has_access)

    def test_past_due_and_expired_subscriptions_do_not_grant_access(self):
        self._subscribe(Subscription.Status.PAST_DUE, self.now + timedelta(days=10))
        self._subscribe(Subscription.Status.EXPIRED, self.now + timedelta(days=10))
        self.assertFalse(has_active_subscription(self.listener, now=self.now))
        self.assertFalse(resolve_access(self.listener, self.item, now=self.now).has_access)

    def test_deactivated_user_only_sees_free_items(self):
        self.creator.is_active = False
        self.creator.save()
        self.assertFalse(resolve_access(self.creator, self.item).has_access)

    def test_sample_chapter_is_open(self):
        sample = Chapter.objects.create(content_item=self.item, title="Intro", position=0, is_sample=True)
        locked = Chapter.objects.create(content_item=self.item, title="Chapter 1", position=1)

        self.assertEqual(resolve_chapter_access(None, sample).reason, AccessReason.SAMPLE)
        self.assertFalse(resolve_chapter_access(self.listener, locked).has_access)
        self.assertEqual(resolve_chapter_access(self.creator, locked).reason, AccessReason.OWNER)


class CatalogAccessorTests(TestCase):
    def setUp(self):
        self.creator = Profile.objects.create(external_id="creator_catalog", role=Profile.Role.CREATOR)
        self.item = ContentItem.objects.create(owner=self.creator, title="Field Notes", price_cents=800)

    def test_get_content_item_loads_owner(self):
        item = get_content_item(self.item.pk)

        self.assertEqual(item, self.item)
        with self.assertNumQueries(0):
            self.assertEqual(item.owner, self.creator)

    def test_unpublished_item_is_hidden_when_requested(self):
        ContentItem.objects.filter(pk=self.item.pk).update(is_published=False)

        self.assertEqual(get_content_item(self.item.pk), self.item)
        with self.assertRaises(Http404):
            get_content_item(self.item.pk, published_only=True)

    def test_get_chapter(self):
        chapter = Chapter.objects.create(content_item=self.item, title="Intro", is_sample=True)

        self.assertEqual(get_chapter(chapter.pk), chapter)
        with self.assertRaises(Http404):
            get_chapter(chapter.pk + 100)
