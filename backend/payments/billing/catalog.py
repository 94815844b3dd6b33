from __future__ import annotations

from django.shortcuts import get_object_or_404

from ..models import Chapter, ContentItem


def content_items(*, published_only: bool = False):
    queryset = ContentItem.objects.select_related("owner")
    if published_only:
        queryset = queryset.filter(is_published=True)
    return queryset


def get_content_item(content_item_id: object, *, published_only: bool = False) -> ContentItem:
    """Return the content item with its owner loaded; raises ``Http404`` when missing."""
    return get_object_or_404(content_items(published_only=published_only), pk=content_item_id)


def get_chapter(chapter_id: object) -> Chapter:
    return get_object_or_404(Chapter.objects.select_related("content_item__owner"), pk=chapter_id)
