"""URL routing for the booking domain."""

from __future__ import annotations

from django.urls import include, path  # type: ignore
from rest_framework.routers import DefaultRouter  # type: ignore

from .views import BookingViewSet, OrganizerBookingStatusView

router = DefaultRouter()
router.register(r"", BookingViewSet, basename="booking")

urlpatterns = [
    path("organizer/status/", OrganizerBookingStatusView.as_view(), name="booking-organizer-status"),
    path("", include(router.urls)),
]
