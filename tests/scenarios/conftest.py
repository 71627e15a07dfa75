"""
Fixtures ו-helpers לבדיקות תרחיש מקצה לקצה.

מספק:
- בונה payload של WhatsApp Cloud API עם חתימה תקינה
- פונקציית שליחה תמציתית דרך ה-webhook
- ספק WhatsApp מזויף שאוסף את התשובות
- פונקציות אימות DB (מצב שיחה, קילומטראז', דיווחים)
"""
import hashlib
import hmac
import json
from unittest.mock import patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.db.models.conversation import Conversation
from app.db.models.mileage_report import MileageReport
from app.db.models.motorcycle import Motorcycle

from tests.conftest import FakeWhatsAppProvider


# ============================================================================
# בוני Payload: WhatsApp Cloud API
# ============================================================================

_wa_msg_counter = 0


def build_wa_message(phone: str, text: str) -> dict:
    """בניית payload הודעת טקסט כפי ש-Meta שולחת ל-webhook"""
    global _wa_msg_counter
    _wa_msg_counter += 1
    return {
        "object": "whatsapp_business_account",
        "entry": [{
            "id": "WABA_ID",
            "changes": [{
                "field": "messages",
                "value": {
                    "messaging_product": "whatsapp",
                    "metadata": {"phone_number_id": "PHONE_ID"},
                    "contacts": [{"wa_id": phone, "profile": {"name": "Test"}}],
                    "messages": [{
                        "from": phone,
                        "id": f"wamid.scenario.{_wa_msg_counter}",
                        "timestamp": str(1700000000 + _wa_msg_counter),
                        "type": "text",
                        "text": {"body": text},
                    }],
                },
            }],
        }],
    }


def _signature(body: bytes) -> str:
    digest = hmac.new(settings.WHATSAPP_CLOUD_API_APP_SECRET.encode(), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


# ============================================================================
# פונקציות שליחה תמציתיות
# ============================================================================

async def send_wa(client, phone: str, text: str) -> dict:
    """שליחת הודעה לוואטסאפ webhook: assert 200 ומחזיר JSON"""
    body = json.dumps(build_wa_message(phone, text)).encode()
    resp = await client.post(
        "/api/whatsapp/webhook",
        content=body,
        headers={"Content-Type": "application/json", "X-Hub-Signature-256": _signature(body)},
    )
    assert resp.status_code == 200, f"WhatsApp webhook returned {resp.status_code}: {resp.text}"
    return resp.json()


async def send_many(client, phone: str, *texts: str) -> dict:
    """שליחת רצף הודעות; מחזיר את תשובת ה-webhook האחרונה"""
    result = {}
    for text in texts:
        result = await send_wa(client, phone, text)
    return result


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture(autouse=True)
def _reset_counters():
    global _wa_msg_counter
    _wa_msg_counter = 0
    yield


@pytest.fixture
def outbound():
    """ספק מזויף במקום WPPConnect / Cloud API: כל תשובה נאספת ב-.sent"""
    provider = FakeWhatsAppProvider()
    with patch("app.api.webhooks.whatsapp_cloud.get_whatsapp_provider", return_value=provider):
        yield provider


# ============================================================================
# פונקציות אימות DB
# ============================================================================

async def assert_conversation_state(
    db_session: AsyncSession,
    user_id: int,
    expected_state: str,
) -> Conversation:
    """אימות מצב שיחה: שליפה טרייה מ-DB"""
    result = await db_session.execute(
        select(Conversation).where(Conversation.user_id == user_id).execution_options(
            populate_existing=True
        )
    )
    conversation = result.scalar_one()
    assert conversation.state == expected_state, (
        f"צפי: {expected_state}, בפועל: {conversation.state}"
    )
    return conversation


async def assert_mileage(
    db_session: AsyncSession,
    motorcycle_id: int,
    expected_mileage: int,
) -> Motorcycle:
    result = await db_session.execute(
        select(Motorcycle).where(Motorcycle.id == motorcycle_id).execution_options(
            populate_existing=True
        )
    )
    motorcycle = result.scalar_one()
    assert motorcycle.current_mileage == expected_mileage, (
        f"צפי: {expected_mileage}, בפועל: {motorcycle.current_mileage}"
    )
    return motorcycle


async def assert_report_count(
    db_session: AsyncSession,
    motorcycle_id: int,
    expected_count: int,
) -> None:
    """אימות מספר דיווחי קילומטראז' של אופנוע"""
    result = await db_session.execute(
        select(func.count(MileageReport.id)).where(MileageReport.motorcycle_id == motorcycle_id)
    )
    count = result.scalar()
    assert count == expected_count, (
        f"צפי: {expected_count} דיווחים, נמצאו {count}"
    )
