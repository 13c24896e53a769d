"""API views for the booking domain."""

from __future__ import annotations

import logging

from rest_framework import mixins, permissions, status, viewsets  # type: ignore
from rest_framework.decorators import action  # type: ignore
from rest_framework.response import Response  # type: ignore
from rest_framework.views import APIView  # type: ignore

from apps.users.permissions import IsExplorer, IsOrganizer

from .application.command_handlers import (
    CancelBookingCommand,
    CancelBookingHandler,
    CreateBookingCommand,
    CreateBookingHandler,
    UpdateBookingStatusCommand,
    UpdateBookingStatusHandler,
)
from .models import Booking
from .serializers import (
    BookingCancelSerializer,
    BookingCreateSerializer,
    BookingSerializer,
    OrganizerStatusSerializer,
)

logger = logging.getLogger(__name__)


class BookingViewSet(
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    viewsets.GenericViewSet,
):
    """Бронирования: explorer видит свои, организатор видит брони своих впечатлений."""

    queryset = Booking.objects.select_related("experience", "session", "explorer").all()
    serializer_class = BookingSerializer
    permission_classes = [permissions.IsAuthenticated]
    lookup_value_regex = "[0-9a-fA-F-]{36}"

    def get_permissions(self):  # type: ignore
        if self.action in ("create", "cancel"):
            return [IsExplorer()]
        return super().get_permissions()

    def get_queryset(self):  # type: ignore
        user = self.request.user
        qs = super().get_queryset()
        if user.is_platform_admin():
            return qs
        if user.is_organizer():
            return qs.filter(experience__organizer=user)
        return qs.filter(explorer=user)

    def create(self, request, *args, **kwargs):  # type: ignore
        serializer = BookingCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        booking = CreateBookingHandler().handle(
            CreateBookingCommand(
                explorer_id=request.user.pk,
                experience_id=data["experience_id"],
                session_id=data["session_id"],
                guests=data["guests"],
                notes=data.get("notes", ""),
            )
        )
        booking = self.get_queryset().get(pk=booking.pk)
        return Response(BookingSerializer(booking).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["post"])
    def cancel(self, request, pk=None):  # type: ignore
        serializer = BookingCancelSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        booking = CancelBookingHandler().handle(
            CancelBookingCommand(
                explorer_id=request.user.pk,
                booking_id=pk,
                reason=serializer.validated_data.get("reason") or "explorer",
            )
        )
        return Response(BookingSerializer(booking).data, status=status.HTTP_200_OK)


class OrganizerBookingStatusView(APIView):
    """POST {booking_id, status}: организатор подтверждает или отменяет бронь."""

    permission_classes = [IsOrganizer]

    def post(self, request):  # type: ignore
        serializer = OrganizerStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        result = UpdateBookingStatusHandler().handle(
            UpdateBookingStatusCommand(
                organizer_id=request.user.pk,
                booking_id=data["booking_id"],
                status=data["status"],
                reason=data.get("reason") or "organizer",
            )
        )
        booking = Booking.objects.select_related("experience", "session").get(pk=result.booking.pk)
        payload = BookingSerializer(booking).data
        payload["changed"] = result.changed
        return Response(payload, status=status.HTTP_200_OK)
