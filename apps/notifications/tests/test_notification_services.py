"""Tests for notification fan-out."""

from __future__ import annotations

from django.core import mail
from django.test import TestCase

from apps.notifications.broker import InMemoryNotificationBroker
from apps.notifications.models import Channel, EventType, Notification
from apps.notifications.services import (
    create_notification,
    get_or_create_preferences,
    list_notifications,
    mark_notifications_read,
    render_notification_email,
)
from shared.testing import make_user


class CreateNotificationTests(TestCase):
    def setUp(self) -> None:
        self.user = make_user(email="explorer@example.com")
        self.broker = InMemoryNotificationBroker()

    def _create(self, **kwargs) -> Notification:
        kwargs.setdefault("event_type", EventType.BOOKING_CONFIRMED)
        kwargs.setdefault("channels", [Channel.TOAST, Channel.EMAIL])
        return create_notification(
            self.user.pk, "Reservation confirmed", "See you there.", broker=self.broker, **kwargs
        )

    def test_live_message_and_email_after_commit(self) -> None:
        with self.captureOnCommitCallbacks(execute=True):
            notification = self._create(href="/dashboard/explorer/reservations")

        self.assertEqual(notification.channels, ["TOAST", "EMAIL"])
        messages = self.broker.messages_for(self.user.pk)
        self.assertEqual(len(messages), 1)
        self.assertEqual(messages[0]["type"], "notification")
        self.assertEqual(messages[0]["data"]["id"], notification.pk)
        self.assertEqual(messages[0]["data"]["href"], "/dashboard/explorer/reservations")
        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].to, ["explorer@example.com"])
        self.assertEqual(mail.outbox[0].subject, "Reservation confirmed")

    def test_nothing_leaves_before_commit(self) -> None:
        self._create()

        self.assertEqual(self.broker.messages_for(self.user.pk), [])
        self.assertEqual(mail.outbox, [])

    def test_email_channel_respects_preference(self) -> None:
        preference = get_or_create_preferences(self.user.pk)
        preference.email_enabled = False
        preference.save()

        with self.captureOnCommitCallbacks(execute=True):
            notification = self._create()

        self.assertEqual(notification.channels, ["TOAST"])
        self.assertEqual(mail.outbox, [])
        self.assertEqual(len(self.broker.messages_for(self.user.pk)), 1)

    def test_disabled_event_type_is_stored_silently(self) -> None:
        preference = get_or_create_preferences(self.user.pk)
        preference.on_booking_confirmed = False
        preference.save()

        with self.captureOnCommitCallbacks(execute=True):
            notification = self._create()

        self.assertEqual(notification.channels, [])
        self.assertEqual(self.broker.messages_for(self.user.pk), [])
        self.assertEqual(mail.outbox, [])
        self.assertTrue(Notification.objects.filter(pk=notification.pk).exists())

    def test_unknown_event_type_is_always_allowed(self) -> None:
        with self.captureOnCommitCallbacks(execute=True):
            notification = self._create(event_type="PAYOUT_SENT", channels=[Channel.TOAST])

        self.assertEqual(notification.channels, ["TOAST"])

    def test_unknown_channel_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            self._create(channels=["SMS"])

    def test_push_is_opt_in(self) -> None:
        notification = self._create(channels=[Channel.PUSH, Channel.TOAST])

        self.assertEqual(notification.channels, ["TOAST"])

    def test_broker_failure_is_logged(self) -> None:
        class BrokenBroker(InMemoryNotificationBroker):
            def publish(self, user_id, message):
                raise ConnectionError("redis down")

        with self.assertLogs("apps.notifications.services", level="ERROR"):
            with self.captureOnCommitCallbacks(execute=True):
                create_notification(
                    self.user.pk, "Hi", "There", channels=[Channel.TOAST], broker=BrokenBroker()
                )

        self.assertEqual(Notification.objects.count(), 1)


class ReadStateTests(TestCase):
    def setUp(self) -> None:
        self.user = make_user()
        self.broker = InMemoryNotificationBroker()
        self.notifications = [
            create_notification(self.user.pk, f"Title {i}", "Body", broker=self.broker) for i in range(3)
        ]

    def test_list_is_newest_first_with_unread_count(self) -> None:
        page = list_notifications(self.user.pk, limit=2)

        self.assertEqual([n.pk for n in page.items], [self.notifications[2].pk, self.notifications[1].pk])
        self.assertEqual(page.unread_count, 3)

    def test_limit_is_clamped(self) -> None:
        self.assertEqual(len(list_notifications(self.user.pk, limit=0).items), 1)
        self.assertEqual(len(list_notifications(self.user.pk, limit="junk").items), 3)

    def test_mark_read_ignores_foreign_and_repeated_ids(self) -> None:
        other = create_notification(make_user().pk, "Other", "Body", broker=self.broker)
        ids = [self.notifications[0].pk, other.pk]

        with self.captureOnCommitCallbacks(execute=True):
            updated = mark_notifications_read(self.user.pk, ids, broker=self.broker)
        repeated = mark_notifications_read(self.user.pk, ids, broker=self.broker)

        self.assertEqual((updated, repeated), (1, 0))
        other.refresh_from_db()
        self.assertIsNone(other.read_at)
        self.assertEqual(list_notifications(self.user.pk).unread_count, 2)
        read_messages = [m for m in self.broker.messages_for(self.user.pk) if m["type"] == "read"]
        self.assertEqual(len(read_messages), 1)
        self.assertIn(self.notifications[0].pk, read_messages[0]["data"]["ids"])


class EmailRenderingTests(TestCase):
    def test_email_escapes_content_and_links_to_app(self) -> None:
        notification = Notification(
            title="<b>Booked</b>", message="Tom & Jerry", href="/dashboard/explorer/reservations"
        )

        html = render_notification_email(notification)

        self.assertIn("&lt;b&gt;Booked&lt;/b&gt;", html)
        self.assertIn("Tom &amp; Jerry", html)
        self.assertIn('href="http://testserver/dashboard/explorer/reservations"', html)
