"""
WhatsApp Cloud API Webhook Handler

מקבל הודעות מ-Meta Cloud API ומעביר כל הודעה ל-BotService.
כולל אימות webhook, אימות חתימה ו-idempotency לפי message_id.
"""
from __future__ import annotations

import hashlib
import hmac
import json
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.logging import get_logger
from app.core.validation import PhoneNumberValidator
from app.db.database import get_db, utc_now
from app.db.models.webhook_event import WebhookEvent
from app.domain.services.bot_service import BotService
from app.domain.services.whatsapp import get_whatsapp_provider

logger = get_logger(__name__)

router = APIRouter()

# הודעה שנתקעה ב-processing יותר מזה מותרת לעיבוד חוזר
_STALE_PROCESSING_SECONDS = 120


@router.get(
    "/webhook",
    summary="Cloud API Webhook Verification",
    description="אימות webhook מול Meta: מחזיר hub.challenge.",
    tags=["Webhooks"],
)
async def cloud_api_verify(
    hub_mode: str = Query(None, alias="hub.mode"),
    hub_challenge: str = Query(None, alias="hub.challenge"),
    hub_verify_token: str = Query(None, alias="hub.verify_token"),
) -> int:
    if (
        hub_mode == "subscribe"
        and hub_challenge
        and hub_verify_token
        and settings.WHATSAPP_CLOUD_API_VERIFY_TOKEN
        and hmac.compare_digest(hub_verify_token, settings.WHATSAPP_CLOUD_API_VERIFY_TOKEN)
    ):
        logger.info("Cloud API webhook verified successfully")
        try:
            return int(hub_challenge)
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid challenge")

    logger.warning("Cloud API webhook verification failed", extra_data={"hub_mode": hub_mode})
    raise HTTPException(status_code=403, detail="Verification failed")


def _verify_signature(body: bytes, signature_header: str) -> bool:
    """אימות חתימת HMAC-SHA256 של Meta על ה-payload."""
    if not signature_header or not signature_header.startswith("sha256="):
        return False
    expected = hmac.new(
        settings.WHATSAPP_CLOUD_API_APP_SECRET.encode(),
        body,
        hashlib.sha256,
    ).hexdigest()
    return hmac.compare_digest(signature_header[7:], expected)


async def _try_acquire_message(db: AsyncSession, message_id: str) -> bool:
    """
    ניסיון לרכוש הודעה לעיבוד.

    True אם ההודעה חדשה, או שנתקעה ב-processing מעבר לסף; False אם כפולה.
    """
    if not message_id:
        return True

    try:
        async with db.begin_nested():
            db.add(WebhookEvent(message_id=message_id, status="processing"))
        # commit מיידי: הרשומה נשמרת גם אם העיבוד נכשל
        await db.commit()
        return True
    except IntegrityError:
        await db.rollback()

    status = await db.scalar(
        select(WebhookEvent.status).where(WebhookEvent.message_id == message_id)
    )
    if status is None:
        return False

    if status == "completed":
        logger.info("Skipping completed duplicate message", extra_data={"message_id": message_id})
        return False

    update_result = await db.execute(
        update(WebhookEvent)
        .where(
            WebhookEvent.message_id == message_id,
            WebhookEvent.status == "processing",
            WebhookEvent.created_at < utc_now() - timedelta(seconds=_STALE_PROCESSING_SECONDS),
        )
        .values(created_at=utc_now())
    )
    await db.commit()

    if update_result.rowcount:
        logger.warning("Retrying stale processing message", extra_data={"message_id": message_id})
        return True

    logger.info("Skipping in-progress message", extra_data={"message_id": message_id})
    return False


async def _mark_message_completed(db: AsyncSession, message_id: str) -> None:
    if not message_id:
        return
    await db.execute(
        update(WebhookEvent)
        .where(WebhookEvent.message_id == message_id)
        .values(status="completed")
    )
    await db.commit()


@router.post(
    "/webhook",
    summary="Cloud API Webhook",
    description="קבלת הודעות מ-WhatsApp Cloud API (Meta).",
    responses={
        200: {"description": "הודעה התקבלה ועובדה"},
        403: {"description": "חתימה לא תקינה"},
    },
    tags=["Webhooks"],
)
async def cloud_api_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> dict:
    """
    1. אימות חתימת Meta (X-Hub-Signature-256)
    2. חילוץ הודעות: entry[] → changes[] → value.messages[]
    3. idempotency לפי message_id
    4. BotService.process_message: תשובה אחת לכל הודעה
    """
    body = await request.body()

    # בלי סוד אפליקציה אי אפשר לאמת חתימות
    if not settings.WHATSAPP_CLOUD_API_APP_SECRET:
        logger.error("Cloud API webhook: WHATSAPP_CLOUD_API_APP_SECRET לא מוגדר, דוחה בקשה")
        raise HTTPException(status_code=403, detail="חתימה לא ניתנת לאימות")

    if not _verify_signature(body, request.headers.get("X-Hub-Signature-256", "")):
        logger.warning("Cloud API webhook: חתימה לא תקינה")
        raise HTTPException(status_code=403, detail="חתימה לא תקינה")

    try:
        payload = json.loads(body)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    bot = BotService(db, provider=get_whatsapp_provider())
    results: list[dict] = []

    for entry in payload.get("entry", []):
        for change in entry.get("changes", []):
            value = change.get("value", {})
            if value.get("messaging_product") != "whatsapp":
                continue

            # עדכוני סטטוס (delivered/read) מגיעים בלי messages
            for msg in value.get("messages", []):
                message_id = msg.get("id", "")
                if not msg.get("from"):
                    continue
                if not await _try_acquire_message(db, message_id):
                    continue

                logger.debug(
                    "Cloud API message received",
                    extra_data={
                        "from": PhoneNumberValidator.mask(msg.get("from", "")),
                        "message_id": message_id,
                        "type": msg.get("type", ""),
                    },
                )

                result = await bot.process_message(msg)
                await _mark_message_completed(db, message_id)
                results.append({
                    "message_id": message_id,
                    "success": result.success,
                    "conversation_ended": result.conversation_ended,
                })

    return {"status": "ok", "processed": len(results), "results": results}
