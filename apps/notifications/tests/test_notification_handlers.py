"""Booking events turn into notifications for the right user."""

from __future__ import annotations

from decimal import Decimal
from uuid import uuid4

from django.core import mail
from django.test import TestCase

from apps.bookings.domain.events import BookingCancelled, BookingConfirmed, BookingCreated
from apps.notifications.broker import InMemoryNotificationBroker
from apps.notifications.models import EventType, Notification
from apps.users.models import User
from shared.application.bootstrap import build_message_bus
from shared.testing import make_user


class BookingNotificationHandlerTests(TestCase):
    def setUp(self) -> None:
        self.explorer = make_user(email="explorer@example.com")
        self.organizer = make_user(User.RoleChoices.ORGANIZER, email="organizer@example.com")
        self.broker = InMemoryNotificationBroker()
        self.bus = build_message_bus(self.broker)
        self.common = {
            "booking_id": uuid4(),
            "experience_id": uuid4(),
            "experience_title": "Sunset kayak tour",
            "explorer_id": self.explorer.pk,
            "organizer_id": self.organizer.pk,
        }

    def test_created_notifies_organizer(self) -> None:
        event = BookingCreated(
            session_id=uuid4(), guests=2, total_price=Decimal("500.00"), currency="MAD", **self.common
        )

        with self.captureOnCommitCallbacks(execute=True):
            self.bus.publish_events([event])

        notification = Notification.objects.get()
        self.assertEqual(notification.user, self.organizer)
        self.assertEqual(notification.title, "New reservation")
        self.assertEqual(notification.event_type, EventType.BOOKING_CREATED)
        self.assertEqual(notification.href, "/dashboard/organizer/bookings")
        self.assertEqual(notification.metadata["bookingId"], str(event.booking_id))
        self.assertEqual(len(self.broker.messages_for(self.organizer.pk)), 1)
        self.assertEqual(mail.outbox[0].to, ["organizer@example.com"])

    def test_confirmed_notifies_explorer(self) -> None:
        event = BookingConfirmed(tickets_issued=2, origin="payment", **self.common)

        with self.captureOnCommitCallbacks(execute=True):
            self.bus.publish_events([event])

        notification = Notification.objects.get()
        self.assertEqual(notification.user, self.explorer)
        self.assertEqual(notification.title, "Reservation confirmed")
        self.assertEqual(notification.href, "/dashboard/explorer/reservations")
        self.assertEqual(notification.metadata["tickets"], 2)
        self.assertEqual(self.broker.messages_for(self.organizer.pk), [])

    def test_cancelled_title_depends_on_reason(self) -> None:
        self.bus.publish_events(
            [
                BookingCancelled(reason="expired", previous_status="PENDING", **self.common),
                BookingCancelled(reason="organizer", previous_status="CONFIRMED", **self.common),
            ]
        )

        titles = list(
            Notification.objects.filter(user=self.explorer).order_by("id").values_list("title", flat=True)
        )
        self.assertEqual(titles, ["Reservation expired", "Reservation cancelled"])

    def test_failing_subscriber_does_not_block_others(self) -> None:
        def broken(event):
            raise RuntimeError("analytics offline")

        self.bus.register_event_handler(BookingConfirmed, broken)

        with self.assertLogs("shared.application.message_bus", level="ERROR"):
            self.bus.publish_events([BookingConfirmed(**self.common)])

        self.assertEqual(Notification.objects.filter(user=self.explorer).count(), 1)
