from __future__ import annotations

from typing import Iterable

from ..models import CartItem, ContentItem, Profile, Purchase


def get_items(user: Profile) -> list[CartItem]:
    return list(
        CartItem.objects.select_related("content_item")
        .filter(user=user)
        .order_by("created_at", "id")
    )


def add_item(user: Profile, content_item: ContentItem) -> tuple[CartItem, bool]:
    if content_item.is_effectively_free:
        raise ValueError("Free items do not need to be purchased.")
    if Purchase.objects.filter(
        user=user,
        content_item=content_item,
        status=Purchase.Status.COMPLETED,
    ).exists():
        raise ValueError("You already own this item.")
    return CartItem.objects.get_or_create(user=user, content_item=content_item)


def remove_item(user: Profile, content_item_id: int) -> bool:
    deleted, _ = CartItem.objects.filter(user=user, content_item_id=content_item_id).delete()
    return bool(deleted)


def clear(user: Profile, content_item_ids: Iterable[int] | None = None) -> int:
    """Empty the cart, or only the given items when ``content_item_ids`` is passed."""
    queryset = CartItem.objects.filter(user=user)
    if content_item_ids is not None:
        queryset = queryset.filter(content_item_id__in=list(content_item_ids))
    deleted, _ = queryset.delete()
    return deleted
