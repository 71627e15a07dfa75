"""
תרחיש 2: ביטול, איפוס ותפוגה של שיחה

מכסה:
- "לא" באישור: שום דבר לא נשמר, חזרה לתפריט
- שלוש שגיאות ברצף: איפוס, ההודעה הבאה מתחילה מברכה
- שיחה שפג תוקפה: ההודעה הבאה מתחילה מחדש
- משלוח חוזר של אותה הודעה מ-Meta לא מקדם את השיחה פעמיים
"""
import json

import pytest

from tests.scenarios.conftest import (
    _signature,
    assert_conversation_state,
    assert_mileage,
    assert_report_count,
    build_wa_message,
    send_many,
    send_wa,
)

COURIER_PHONE = "972501111111"


@pytest.mark.scenario
class TestFlowCancellation:

    @pytest.mark.asyncio
    async def test_negative_answer_discards_pending_value(
        self, test_client, db_session, outbound, courier_user, courier_motorcycle
    ):
        await send_many(test_client, COURIER_PHONE, "hi", "1", "1", "17000", "לא")

        assert "הדיווח בוטל" in outbound.last_text
        conversation = await assert_conversation_state(db_session, courier_user.id, "AWAITING_MENU_SELECTION")
        assert "pending_mileage" not in conversation.context
        await assert_mileage(db_session, courier_motorcycle.id, 15000)
        await assert_report_count(db_session, courier_motorcycle.id, 0)

    @pytest.mark.asyncio
    async def test_three_strikes_reset_the_conversation(
        self, test_client, db_session, outbound, courier_user, courier_motorcycle
    ):
        await send_many(test_client, COURIER_PHONE, "hi", "1", "1", "abc", "12.5")
        conversation = await assert_conversation_state(db_session, courier_user.id, "AWAITING_MILEAGE_INPUT")
        assert conversation.context["error_count"] == 2

        await send_wa(test_client, COURIER_PHONE, "שש")
        assert "השיחה אופסה" in outbound.last_text
        await assert_conversation_state(db_session, courier_user.id, "IDLE")

        await send_wa(test_client, COURIER_PHONE, "15100")
        assert "ברוך הבא" in outbound.last_text
        await assert_mileage(db_session, courier_motorcycle.id, 15000)

    @pytest.mark.asyncio
    async def test_expired_conversation_starts_over(
        self, test_client, db_session, outbound, courier_user, courier_motorcycle, conversation_factory
    ):
        await conversation_factory(
            courier_user.id,
            state="AWAITING_CONFIRMATION",
            context={"selected_motorcycle_id": courier_motorcycle.id, "pending_mileage": 20000},
            expires_in_minutes=-1,
        )

        await send_wa(test_client, COURIER_PHONE, "1")

        assert "ברוך הבא" in outbound.last_text
        await assert_mileage(db_session, courier_motorcycle.id, 15000)

    @pytest.mark.asyncio
    async def test_redelivered_message_is_answered_once(
        self, test_client, db_session, outbound, courier_user
    ):
        body = json.dumps(build_wa_message(COURIER_PHONE, "hi")).encode()
        headers = {"Content-Type": "application/json", "X-Hub-Signature-256": _signature(body)}

        first = await test_client.post("/api/whatsapp/webhook", content=body, headers=headers)
        second = await test_client.post("/api/whatsapp/webhook", content=body, headers=headers)

        assert first.json()["processed"] == 1
        assert second.json()["processed"] == 0
        assert len(outbound.sent) == 1
        await assert_conversation_state(db_session, courier_user.id, "AWAITING_MENU_SELECTION")
