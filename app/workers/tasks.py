"""
Celery Tasks - periodic maintenance of the bot

Each task wraps an async implementation that takes a session, so the same
code runs from the worker (fresh loop, per-task engine) and from tests.
"""
from __future__ import annotations

import asyncio
from contextlib import contextmanager
from datetime import timedelta
from typing import TYPE_CHECKING, Optional

from sqlalchemy import delete, select

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession
    from app.domain.services.whatsapp import BaseWhatsAppProvider

from app.workers.celery_app import celery_app
from app.core.config import settings
from app.core.logging import get_logger, set_correlation_id
from app.db.database import get_task_session, utc_now
from app.db.models.motorcycle import Motorcycle
from app.db.models.user import User
from app.db.models.webhook_event import WebhookEvent
from app.state_machine.conversation_store import ConversationStore

logger = get_logger(__name__)


@contextmanager
def get_event_loop():
    """
    Context manager for proper event loop handling in Celery tasks.
    Creates a new event loop and ensures proper cleanup to prevent resource leaks.
    """
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        yield loop
    finally:
        try:
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()


def run_async(coro):
    """Helper to run async code in sync Celery task with proper cleanup"""
    set_correlation_id()

    with get_event_loop() as loop:
        return loop.run_until_complete(coro)


async def cleanup_expired_conversations_async(db: "AsyncSession") -> dict:
    store = ConversationStore(db, timeout_minutes=settings.CONVERSATION_TIMEOUT_MINUTES)
    return {"deleted": await store.cleanup_expired()}


async def cleanup_old_webhook_events_async(db: "AsyncSession", days: int = 7) -> dict:
    """רק רשומות completed: processing ישנות נשארות לזיהוי הודעות תקועות"""
    result = await db.execute(
        delete(WebhookEvent).where(
            WebhookEvent.status == "completed",
            WebhookEvent.created_at < utc_now() - timedelta(days=days),
        )
    )
    await db.commit()
    deleted = result.rowcount or 0

    logger.info(
        "Cleaned up old webhook events",
        extra_data={"deleted": deleted, "cutoff_days": days},
    )
    return {"deleted": deleted}


async def send_maintenance_reminders_async(
    db: "AsyncSession",
    provider: Optional["BaseWhatsAppProvider"] = None,
    threshold_km: Optional[int] = None,
) -> dict:
    """
    Remind couriers whose motorcycle is close to its next service.

    Every active user linked to the motorcycle's courier gets the reminder.
    """
    from app.domain.services.bot_service import BotService

    threshold_km = threshold_km if threshold_km is not None else settings.MAINTENANCE_REMINDER_THRESHOLD_KM
    bot = BotService(db, provider=provider)

    result = await db.execute(
        select(Motorcycle, User)
        .join(User, User.courier_id == Motorcycle.assigned_courier_id)
        .where(Motorcycle.is_active.is_(True), User.is_active.is_(True))
        .order_by(Motorcycle.id)
    )

    sent = 0
    failed = 0
    for motorcycle, user in result.all():
        next_maintenance = await bot.fleet.get_next_maintenance(motorcycle)
        if next_maintenance.due_in is None or next_maintenance.due_in >= threshold_km:
            continue

        outcome = await bot.send_maintenance_reminder(
            user.phone_number,
            motorcycle.id,
            next_maintenance.next_mileage,
            motorcycle.current_mileage,
        )
        if outcome.success:
            sent += 1
        else:
            failed += 1

    logger.info(
        "Maintenance reminders processed",
        extra_data={"sent": sent, "failed": failed, "threshold_km": threshold_km},
    )
    return {"sent": sent, "failed": failed}


@celery_app.task(name="app.workers.tasks.cleanup_expired_conversations")
def cleanup_expired_conversations():
    """מחיקת שיחות שפג תוקפן"""

    async def _cleanup():
        async with get_task_session() as db:
            return await cleanup_expired_conversations_async(db)

    return run_async(_cleanup())


@celery_app.task(name="app.workers.tasks.cleanup_old_webhook_events")
def cleanup_old_webhook_events(days: int = 7):
    """ניקוי רשומות ישנות מטבלת webhook_events (idempotency)"""

    async def _cleanup():
        async with get_task_session() as db:
            return await cleanup_old_webhook_events_async(db, days)

    return run_async(_cleanup())


@celery_app.task(name="app.workers.tasks.send_maintenance_reminders")
def send_maintenance_reminders():

    async def _send():
        async with get_task_session() as db:
            return await send_maintenance_reminders_async(db)

    return run_async(_send())
