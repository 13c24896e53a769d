"""API views for notifications."""

from __future__ import annotations

import json
import logging

from django.conf import settings  # type: ignore
from django.http import StreamingHttpResponse  # type: ignore
from rest_framework import permissions, status  # type: ignore
from rest_framework.renderers import BaseRenderer, JSONRenderer  # type: ignore
from rest_framework.response import Response  # type: ignore
from rest_framework.views import APIView  # type: ignore

from .broker import get_notification_broker
from .serializers import MarkReadSerializer, NotificationPreferenceSerializer, NotificationSerializer
from .services import (
    get_or_create_preferences,
    list_notifications,
    mark_notifications_read,
    serialize_notification,
)

logger = logging.getLogger(__name__)

STREAM_SNAPSHOT_SIZE = 10


class NotificationListView(APIView):
    """GET: latest notifications plus unread count. PATCH: mark ids as read."""

    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):  # type: ignore
        page = list_notifications(request.user.pk, request.query_params.get("limit"))
        return Response(
            {
                "items": NotificationSerializer(page.items, many=True).data,
                "unreadCount": page.unread_count,
            }
        )

    def patch(self, request):  # type: ignore
        serializer = MarkReadSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        updated = mark_notifications_read(request.user.pk, serializer.validated_data["ids"])
        return Response({"updated": updated}, status=status.HTTP_200_OK)


class NotificationPreferenceView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):  # type: ignore
        preference = get_or_create_preferences(request.user.pk)
        return Response(NotificationPreferenceSerializer(preference).data)

    def patch(self, request):  # type: ignore
        preference = get_or_create_preferences(request.user.pk)
        serializer = NotificationPreferenceSerializer(preference, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        serializer.save()
        return Response(serializer.data)


class ServerSentEventRenderer(BaseRenderer):
    media_type = "text/event-stream"
    format = "sse"
    charset = "utf-8"

    def render(self, data, accepted_media_type=None, renderer_context=None):
        return json.dumps(data).encode(self.charset)


def _sse(event: str, data) -> str:
    return f"event: {event}\ndata: {json.dumps(data, default=str)}\n\n"


def _event_stream(user_id, broker, heartbeat: float):
    # Subscribe before the snapshot so nothing published in between is lost.
    with broker.subscribe(user_id) as subscription:
        page = list_notifications(user_id, STREAM_SNAPSHOT_SIZE)
        yield _sse(
            "snapshot",
            {
                "items": [serialize_notification(item) for item in page.items],
                "unreadCount": page.unread_count,
            },
        )
        while True:
            message = subscription.get(timeout=heartbeat)
            if message is None:
                yield ": ping\n\n"
                continue
            yield _sse(message.get("type", "notification"), message.get("data"))


class NotificationStreamView(APIView):
    """Live feed: snapshot, then ``notification`` / ``read`` events."""

    permission_classes = [permissions.IsAuthenticated]
    renderer_classes = [ServerSentEventRenderer, JSONRenderer]

    def get(self, request):  # type: ignore
        heartbeat = getattr(settings, "NOTIFICATIONS_STREAM_HEARTBEAT_SECONDS", 30)
        response = StreamingHttpResponse(
            _event_stream(request.user.pk, get_notification_broker(), heartbeat),
            content_type="text/event-stream",
        )
        response["Cache-Control"] = "no-cache"
        response["X-Accel-Buffering"] = "no"
        logger.info(f"Notification stream opened for user {request.user.pk}")
        return response
