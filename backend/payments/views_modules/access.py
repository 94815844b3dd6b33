from __future__ import annotations

from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from ..billing import resolve_access, resolve_chapter_access
from ..billing.catalog import get_chapter, get_content_item
from .helpers import get_optional_request_profile


class ContentAccessView(APIView):
    permission_classes = [AllowAny]

    def get(self, request, pk: int):
        content_item = get_content_item(pk)
        decision = resolve_access(get_optional_request_profile(request), content_item)
        return Response({"content_item_id": content_item.pk, **decision.as_dict()})


class ChapterAccessView(APIView):
    permission_classes = [AllowAny]

    def get(self, request, pk: int):
        chapter = get_chapter(pk)
        decision = resolve_chapter_access(get_optional_request_profile(request), chapter)
        return Response(
            {
                "chapter_id": chapter.pk,
                "content_item_id": chapter.content_item_id,
                **decision.as_dict(),
            }
        )
