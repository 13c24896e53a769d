"""Message bus routing and after-commit publishing by the unit of work."""

from dataclasses import dataclass

from django.test import SimpleTestCase, TestCase

from shared.application.message_bus import MessageBus
from shared.application.uow import DjangoUnitOfWork
from shared.domain.base import DomainEvent


@dataclass
class Pinged(DomainEvent):
    event_type = "PINGED"

    note: str = ""


@dataclass
class Ping:
    note: str


class MessageBusTests(SimpleTestCase):
    def setUp(self) -> None:
        self.bus = MessageBus()
        self.received: list = []

    def test_events_fan_out_and_failures_are_logged(self) -> None:
        def broken(event):
            raise RuntimeError("boom")

        self.bus.register_event_handler(Pinged, broken)
        self.bus.register_event_handler(Pinged, self.received.append)

        with self.assertLogs("shared.application.message_bus", level="ERROR"):
            self.bus.publish_events([Pinged(note="a"), Pinged(note="b")])

        self.assertEqual([event.note for event in self.received], ["a", "b"])

    def test_unhandled_event_is_only_warned_about(self) -> None:
        with self.assertLogs("shared.application.message_bus", level="WARNING"):
            self.bus.publish_events([Pinged()])

    def test_one_handler_per_command(self) -> None:
        self.bus.register_command_handler(Ping, lambda command: command.note.upper())

        self.assertEqual(self.bus.handle_command(Ping("hi")), "HI")
        with self.assertRaises(ValueError):
            self.bus.register_command_handler(Ping, lambda command: None)

    def test_unknown_command(self) -> None:
        with self.assertRaises(ValueError):
            self.bus.handle_command(Ping("hi"))

    def test_event_serializes_ids(self) -> None:
        payload = Pinged(note="x").to_dict()

        self.assertEqual(payload["event_type"], "PINGED")
        self.assertIsInstance(payload["event_id"], str)
        self.assertEqual(payload["note"], "x")


class UnitOfWorkTests(TestCase):
    def setUp(self) -> None:
        self.bus = MessageBus()
        self.received: list = []
        self.bus.register_event_handler(Pinged, self.received.append)

    def test_events_and_callbacks_run_after_commit(self) -> None:
        calls: list = []

        with self.captureOnCommitCallbacks(execute=True):
            with DjangoUnitOfWork(self.bus) as uow:
                uow.add_event(Pinged(note="committed"))
                uow.on_commit(lambda: calls.append("callback"))
                self.assertEqual(self.received, [])

        self.assertEqual([event.note for event in self.received], ["committed"])
        self.assertEqual(calls, ["callback"])

    def test_rollback_discards_events(self) -> None:
        calls: list = []

        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            with self.assertRaises(RuntimeError):
                with DjangoUnitOfWork(self.bus) as uow:
                    uow.add_event(Pinged(note="lost"))
                    uow.on_commit(lambda: calls.append("callback"))
                    raise RuntimeError("abort")

        self.assertEqual(callbacks, [])
        self.assertEqual(self.received, [])
        self.assertEqual(calls, [])
