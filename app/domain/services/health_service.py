"""
שירות בדיקת בריאות: בדיקות תלויות (DB, Celery broker, WhatsApp Gateway).

- liveness: האם התהליך חי (ללא בדיקת תלויות), ב-/health
- readiness: בדיקה של כל התלויות החיצוניות
"""
from typing import Any

import httpx
import redis.asyncio as aioredis
from sqlalchemy import text

from app.core.circuit_breaker import get_whatsapp_circuit_breaker
from app.core.config import settings
from app.core.logging import get_logger
from app.db.database import AsyncSessionLocal

logger = get_logger(__name__)

_STATUS_HEALTHY = "healthy"
_STATUS_DEGRADED = "degraded"

_CHECK_OK = "ok"
_CHECK_SKIPPED = "skipped"

# הודעות שגיאה מסוננות: ללא חשיפת פרטי תשתית
_ERROR_DB = "error: db_unavailable"
_ERROR_WHATSAPP = "error: whatsapp_unavailable"
_ERROR_WHATSAPP_DISCONNECTED = "error: whatsapp_disconnected"
_ERROR_CELERY = "error: celery_unavailable"


async def _check_db(session_factory=AsyncSessionLocal) -> str:
    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
        return _CHECK_OK
    except Exception as e:
        logger.warning("בדיקת בריאות DB נכשלה", extra_data={"error": str(e)})
        return _ERROR_DB


async def _check_whatsapp_gateway() -> str:
    """
    רק ל-WPPConnect יש gateway מקומי לבדוק; Cloud API מדלגים.

    ה-Gateway מחזיר {"status": "ok", "connected": true/false} וסטטוס 200 לבד
    לא מעיד על חיבור.
    """
    if settings.WHATSAPP_PROVIDER != "wppconnect":
        return _CHECK_SKIPPED

    try:
        async with httpx.AsyncClient(timeout=5.0) as client:
            response = await client.get(f"{settings.WHATSAPP_GATEWAY_URL}/health")
        if response.status_code != 200:
            logger.warning(
                "WhatsApp Gateway החזיר סטטוס לא תקין",
                extra_data={"status_code": response.status_code},
            )
            return _ERROR_WHATSAPP
        if not response.json().get("connected"):
            logger.warning("WhatsApp Gateway פעיל אך לא מחובר")
            return _ERROR_WHATSAPP_DISCONNECTED
        return _CHECK_OK
    except Exception as e:
        logger.warning("בדיקת בריאות WhatsApp Gateway נכשלה", extra_data={"error": str(e)})
        return _ERROR_WHATSAPP


async def _check_celery() -> str:
    """ping ל-broker (Redis) שממנו ה-worker וה-beat מושכים משימות"""
    try:
        client = aioredis.from_url(settings.CELERY_BROKER_URL, decode_responses=True)
        try:
            await client.ping()
            return _CHECK_OK
        finally:
            await client.aclose()
    except Exception as e:
        logger.warning("בדיקת בריאות Celery נכשלה", extra_data={"error": str(e)})
        return _ERROR_CELERY


async def check_readiness(session_factory=AsyncSessionLocal) -> dict[str, Any]:
    """
    Returns:
        status: "healthy" כשכל הבדיקות ok/skipped, אחרת "degraded"
        db / celery / whatsapp_gateway: "ok", "skipped" או "error: ..."
        whatsapp_circuit_breaker: מצב ה-circuit breaker של השליחה
    """
    checks = {
        "db": await _check_db(session_factory),
        "celery": await _check_celery(),
        "whatsapp_gateway": await _check_whatsapp_gateway(),
    }

    all_ok = all(v in (_CHECK_OK, _CHECK_SKIPPED) for v in checks.values())
    if not all_ok:
        logger.warning("בדיקת מוכנות: המערכת במצב degraded", extra_data=checks)

    return {
        "status": _STATUS_HEALTHY if all_ok else _STATUS_DEGRADED,
        **checks,
        "whatsapp_circuit_breaker": get_whatsapp_circuit_breaker().snapshot(),
    }
