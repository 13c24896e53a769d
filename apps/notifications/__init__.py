"""Notifications app package.

Preference-gated, multi-channel notifications (toast, email, push) with
a per-user live feed. Domain events from other apps are turned into
notifications by ``handlers.register_notification_handlers``.
"""
