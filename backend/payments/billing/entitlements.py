from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from django.utils import timezone as django_timezone

from ..models import Chapter, ContentItem, Profile, Purchase, Subscription


class AccessReason:
    FREE = "free"
    SAMPLE = "sample"
    OWNER = "owner"
    ADMIN = "admin"
    PURCHASED = "purchased"
    SUBSCRIBER = "subscriber"
    NONE = "none"


@dataclass(frozen=True)
class AccessDecision:
    has_access: bool
    reason: str

    def as_dict(self) -> dict[str, object]:
        return {"has_access": self.has_access, "reason": self.reason}


DENIED = AccessDecision(has_access=False, reason=AccessReason.NONE)


def has_active_subscription(user: Profile, now: datetime | None = None) -> bool:
    now = now or django_timezone.now()
    return Subscription.objects.filter(
        user=user,
        status__in=Subscription.ACCESS_STATUSES,
        current_period_end__gt=now,
    ).exists()


def has_completed_purchase(user: Profile, content_item: ContentItem) -> bool:
    return Purchase.objects.filter(
        user=user,
        content_item=content_item,
        status=Purchase.Status.COMPLETED,
    ).exists()


def resolve_access(
    user: Profile | None,
    content_item: ContentItem,
    now: datetime | None = None,
) -> AccessDecision:
    """Decide whether ``user`` may consume ``content_item``.

    Rules are evaluated in order and the first match wins: free item, owner,
    admin role, completed purchase, access-granting subscription. An anonymous
    or deactivated user only ever sees free items.
    """
    if content_item.is_effectively_free:
        return AccessDecision(has_access=True, reason=AccessReason.FREE)

    if user is None or not user.is_active:
        return DENIED

    if content_item.owner_id is not None and content_item.owner_id == user.pk:
        return AccessDecision(has_access=True, reason=AccessReason.OWNER)

    if user.is_admin:
        return AccessDecision(has_access=True, reason=AccessReason.ADMIN)

    if has_completed_purchase(user, content_item):
        return AccessDecision(has_access=True, reason=AccessReason.PURCHASED)

    if has_active_subscription(user, now=now):
        return AccessDecision(has_access=True, reason=AccessReason.SUBSCRIBER)

    return DENIED


def resolve_chapter_access(
    user: Profile | None,
    chapter: Chapter,
    now: datetime | None = None,
) -> AccessDecision:
    if chapter.is_sample:
        return AccessDecision(has_access=True, reason=AccessReason.SAMPLE)
    return resolve_access(user, chapter.content_item, now=now)
