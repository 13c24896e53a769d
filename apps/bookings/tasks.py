"""Celery tasks for the booking domain."""

from __future__ import annotations

import logging

from celery import shared_task  # type: ignore

from .application.command_handlers import ExpireBookingsCommand, ExpireBookingsHandler

logger = logging.getLogger(__name__)


# ============================================================================
# PERIODIC TASKS (запускаются автоматически через Celery Beat)
# ============================================================================

@shared_task(name="bookings.expire_pending_bookings")
def expire_pending_bookings() -> dict[str, int]:
    """
    Отмена просроченных PENDING броней.

    Места освобождаются сразу после expires_at (учёт вместимости это
    учитывает), задача лишь фиксирует итоговый статус CANCELLED.
    Запускается каждую минуту через Celery Beat.
    """
    expired = ExpireBookingsHandler().handle(ExpireBookingsCommand())
    return {"expired": expired}
