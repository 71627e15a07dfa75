"""
Bot Service - WhatsApp conversation orchestrator

Bridges provider payloads to the state machine and sends exactly one reply per
inbound message. Failures never propagate: the user gets a generic apology and
the caller gets a failed BotProcessResult.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.circuit_breaker import get_whatsapp_circuit_breaker
from app.core.config import settings
from app.core.logging import get_logger, log_async_operation
from app.core.validation import PhoneNumberValidator, TextSanitizer
from app.db.models.conversation import Conversation
from app.domain.services.fleet_service import FleetService
from app.domain.services.user_service import UserService
from app.domain.services.whatsapp import BaseWhatsAppProvider, get_whatsapp_provider
from app.state_machine.conversation_store import ConversationStore
from app.state_machine.machine import StateMachine
from app.state_machine.menu import Menu
from app.state_machine.menu_builder import MenuBuilder
from app.state_machine.messages import InboundMessage, MessageType
from app.state_machine.response_generator import BotErrorCode, ResponseGenerator, format_number
from app.state_machine.states import ConversationState

logger = get_logger(__name__)


@dataclass
class BotProcessResult:
    success: bool
    message_id: Optional[str] = None
    conversation_ended: bool = False
    error: Optional[str] = None


class BotService:
    """Entry point of the bot for one database session"""

    def __init__(
        self,
        db: AsyncSession,
        provider: Optional[BaseWhatsAppProvider] = None,
        *,
        timeout_minutes: Optional[int] = None,
        max_errors: Optional[int] = None,
        page_size: Optional[int] = None,
    ):
        self.db = db
        self.provider = provider or get_whatsapp_provider()
        self.responses = ResponseGenerator()
        self.users = UserService(db)
        self.fleet = FleetService(db)
        self.store = ConversationStore(
            db,
            timeout_minutes=timeout_minutes or settings.CONVERSATION_TIMEOUT_MINUTES,
        )
        self.menus = MenuBuilder(
            db,
            fleet=self.fleet,
            page_size=page_size or settings.MOTORCYCLE_MENU_PAGE_SIZE,
        )
        self.state_machine = StateMachine(
            self.store,
            self.menus,
            self.responses,
            fleet=self.fleet,
            users=self.users,
            max_errors=max_errors or settings.CONVERSATION_MAX_ERRORS,
        )

    @staticmethod
    def extract_message_body(payload: dict[str, Any]) -> str:
        """
        Text of a Cloud API message payload.

        text -> text.body, interactive -> button_reply.id / list_reply.id,
        template button -> button.text. Anything else (image, audio,
        location...) yields "".
        """
        text = payload.get("text")
        if isinstance(text, dict) and text.get("body") is not None:
            return str(text["body"])

        interactive = payload.get("interactive")
        if isinstance(interactive, dict):
            for reply_key in ("button_reply", "list_reply"):
                reply = interactive.get(reply_key)
                if isinstance(reply, dict) and reply.get("id") is not None:
                    return str(reply["id"])

        # כפתור template (quick reply)
        button = payload.get("button")
        if isinstance(button, dict) and button.get("text") is not None:
            return str(button["text"])

        logger.warning(
            "Unsupported message type",
            extra_data={"type": payload.get("type"), "message_id": payload.get("id")}
        )
        return ""

    @classmethod
    def to_inbound_message(cls, payload: dict[str, Any]) -> InboundMessage:
        try:
            message_type = MessageType(payload.get("type", "text"))
        except ValueError:
            # interactive / button: גוף הטקסט כבר חולץ
            message_type = MessageType.TEXT

        timestamp = None
        raw_timestamp = payload.get("timestamp")
        if raw_timestamp:
            try:
                timestamp = datetime.fromtimestamp(int(raw_timestamp), tz=timezone.utc)
            except (TypeError, ValueError, OverflowError):
                timestamp = None

        return InboundMessage(
            sender=str(payload.get("from", "")),
            body=TextSanitizer.sanitize(cls.extract_message_body(payload)),
            message_id=str(payload.get("id", "")),
            timestamp=timestamp,
            type=message_type,
        )

    @log_async_operation("bot.process_message")
    async def process_message(self, payload: dict[str, Any]) -> BotProcessResult:
        """Run one inbound Cloud API message through the bot and reply"""
        sender = str(payload.get("from", ""))

        try:
            message = self.to_inbound_message(payload)
            user = await self.users.get_or_create_by_phone(message.sender)

            if not user.is_active:
                logger.warning(
                    "Message from inactive user ignored",
                    extra_data={"user_id": user.id, "phone": PhoneNumberValidator.mask(sender)}
                )
                message_id = await self.provider.send_text(
                    sender,
                    self.responses.error(BotErrorCode.UNAUTHORIZED, "המשתמש שלך אינו פעיל. פנה למנהל."),
                )
                return BotProcessResult(success=True, message_id=message_id)

            result = await self.state_machine.process_transition(user, message)
            message_id = await self.provider.send_text(sender, result.response)

            logger.info(
                "Bot response sent",
                extra_data={
                    "user_id": user.id,
                    "phone": PhoneNumberValidator.mask(sender),
                    "state": result.conversation.state,
                    "conversation_ended": result.should_end_conversation,
                }
            )
            return BotProcessResult(
                success=True,
                message_id=message_id,
                conversation_ended=result.should_end_conversation,
            )

        except Exception as e:
            logger.error(
                "Bot processing error",
                extra_data={"phone": PhoneNumberValidator.mask(sender), "error": str(e)},
                exc_info=True
            )
            try:
                await self.db.rollback()
            except Exception as rollback_error:
                logger.warning("Rollback after bot error failed", extra_data={"error": str(rollback_error)})

            try:
                await self.provider.send_text(sender, self.responses.generic_apology())
            except Exception as send_error:
                logger.error(
                    "Failed to send error message",
                    extra_data={"phone": PhoneNumberValidator.mask(sender), "error": str(send_error)}
                )

            return BotProcessResult(success=False, error=str(e))

    async def _send(self, phone_number: str, text: str, log_message: str, **log_data: Any) -> BotProcessResult:
        try:
            message_id = await self.provider.send_text(phone_number, text)
        except Exception as e:
            logger.error(
                f"Failed: {log_message}",
                extra_data={"phone": PhoneNumberValidator.mask(phone_number), "error": str(e), **log_data}
            )
            return BotProcessResult(success=False, error=str(e))

        logger.info(
            log_message,
            extra_data={"phone": PhoneNumberValidator.mask(phone_number), **log_data}
        )
        return BotProcessResult(success=True, message_id=message_id)

    async def send_proactive_message(self, phone_number: str, message: str) -> BotProcessResult:
        return await self._send(phone_number, message, "Proactive message sent")

    async def send_maintenance_reminder(
        self,
        phone_number: str,
        motorcycle_id: int,
        next_service_km: int,
        current_mileage: int,
    ) -> BotProcessResult:
        km_until_service = next_service_km - current_mileage
        text = self.responses.format_hebrew_text(
            "🚨 תזכורת תחזוקה\n\n"
            f"האופנוע שלך צריך טיפול תחזוקה בעוד {format_number(km_until_service)} ק\"מ.\n"
            f"קילומטראז נוכחי: {format_number(current_mileage)}\n\n"
            "האם תרצה לתאם טיפול?"
        )
        return await self._send(
            phone_number, text, "Maintenance reminder sent", motorcycle_id=motorcycle_id
        )

    async def request_mileage_report(self, phone_number: str, motorcycle_id: int) -> BotProcessResult:
        text = self.responses.format_hebrew_text(
            "📊 דיווח קילומטראז נדרש\n\n"
            "אנא עדכן את הקילומטראז הנוכחי של האופנוע:\n\n"
            "שלח מספר הקילומטראז (לדוגמה: 15000)"
        )
        return await self._send(
            phone_number, text, "Mileage report request sent", motorcycle_id=motorcycle_id
        )

    async def end_conversation(self, user_id: int) -> Conversation:
        """איפוס השיחה ל-IDLE מבחוץ (למשל מפאנל הניהול)"""
        return await self.state_machine.reset_conversation(user_id)

    async def get_current_menu(self, user_id: int, state: ConversationState) -> Optional[Menu]:
        """The menu a user in this state is answering, None for free-text states"""
        if state == ConversationState.AWAITING_MENU_SELECTION:
            return await self.menus.build_main_menu(user_id)
        if state == ConversationState.AWAITING_MOTORCYCLE_SELECTION:
            conversation = await self.store.get_or_create(user_id)
            page = (conversation.context or {}).get("motorcycle_page", 0)
            return await self.menus.build_motorcycle_selection_menu(user_id, page=page)
        return None

    def get_health_status(self) -> dict[str, Any]:
        breaker = get_whatsapp_circuit_breaker().snapshot()
        if self.provider.provider_name == "pywa":
            configured = bool(settings.WHATSAPP_CLOUD_API_TOKEN and settings.WHATSAPP_CLOUD_API_PHONE_ID)
        else:
            configured = bool(settings.WHATSAPP_GATEWAY_URL)

        return {
            "status": "healthy" if configured else "development",
            "whatsapp_provider": self.provider.provider_name,
            "whatsapp_configured": configured,
            "whatsapp_circuit_breaker": breaker,
            "state_machine_healthy": True,
        }
