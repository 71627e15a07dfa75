"""
Conversation Store - one active conversation record per user

A conversation is active while expires_at is NULL or in the future. Every
touch (read through get_or_create, or any update) pushes expires_at forward by
the configured timeout. Expired rows are never resumed: the state machine
deletes them when the user writes again (see get_latest), and
cleanup_expired() removes the rest out-of-band.
"""
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from sqlalchemy import select, delete, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConversationNotFoundError
from app.core.logging import get_logger
from app.db.database import utc_now
from app.db.models.conversation import Conversation
from app.state_machine.states import ConversationState

logger = get_logger(__name__)


class ConversationStore:
    """Persistence of conversation state, context and expiry"""

    def __init__(
        self,
        db: AsyncSession,
        timeout_minutes: int = 30,
        clock: Callable[[], datetime] = utc_now,
    ):
        if timeout_minutes < 1:
            raise ValueError("timeout_minutes must be at least 1")
        self.db = db
        self.timeout_minutes = timeout_minutes
        self._clock = clock

    def _new_expiry(self, minutes: Optional[int] = None) -> datetime:
        return self._clock() + timedelta(minutes=minutes or self.timeout_minutes)

    def _active_filter(self, now: datetime):
        return or_(Conversation.expires_at.is_(None), Conversation.expires_at > now)

    async def _find_active(self, user_id: int) -> Optional[Conversation]:
        result = await self.db.execute(
            select(Conversation)
            .where(Conversation.user_id == user_id, self._active_filter(self._clock()))
            .order_by(Conversation.updated_at.desc(), Conversation.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def _require_active(self, user_id: int) -> Conversation:
        conversation = await self._find_active(user_id)
        if conversation is None:
            raise ConversationNotFoundError(user_id)
        return conversation

    async def _save(self, conversation: Conversation) -> Conversation:
        await self.db.commit()
        await self.db.refresh(conversation)
        return conversation

    async def get_latest(self, user_id: int) -> Optional[Conversation]:
        """השיחה האחרונה של המשתמש, גם אם פג תוקפה; לא מאריך את התוקף"""
        result = await self.db.execute(
            select(Conversation)
            .where(Conversation.user_id == user_id)
            .order_by(Conversation.updated_at.desc(), Conversation.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_or_create(self, user_id: int) -> Conversation:
        """Return the active conversation (expiry refreshed) or create an IDLE one"""
        conversation = await self._find_active(user_id)

        if conversation is None:
            conversation = Conversation(
                user_id=user_id,
                state=ConversationState.IDLE.value,
                context={},
                expires_at=self._new_expiry(),
            )
            self.db.add(conversation)
            logger.info(
                "Created new conversation",
                extra_data={"user_id": user_id}
            )
        else:
            conversation.expires_at = self._new_expiry()

        return await self._save(conversation)

    async def update_state(
        self,
        user_id: int,
        state: ConversationState,
        context: Optional[dict[str, Any]] = None,
    ) -> Conversation:
        """
        Set the state and shallow-merge context into the stored context.

        Keys mapped to None are removed from the stored context.

        Raises:
            ConversationNotFoundError: no active conversation for the user
        """
        conversation = await self._require_active(user_id)
        conversation.state = ConversationState(state).value
        if context:
            conversation.context = self._merge(conversation.context, context)
        conversation.expires_at = self._new_expiry()
        return await self._save(conversation)

    async def update_context(self, user_id: int, context: dict[str, Any]) -> Conversation:
        """Merge context without touching the state"""
        conversation = await self._require_active(user_id)
        conversation.context = self._merge(conversation.context, context)
        conversation.expires_at = self._new_expiry()
        return await self._save(conversation)

    async def reset(
        self,
        user_id: int,
        state: ConversationState = ConversationState.IDLE,
    ) -> Conversation:
        """Replace the context with an empty one and set the state (IDLE by default)"""
        conversation = await self._require_active(user_id)
        conversation.state = ConversationState(state).value
        conversation.context = {}
        conversation.expires_at = self._new_expiry()
        return await self._save(conversation)

    async def delete(self, user_id: int) -> int:
        """מחיקת כל השיחות של המשתמש, כולל כאלה שפג תוקפן"""
        result = await self.db.execute(
            delete(Conversation).where(Conversation.user_id == user_id)
        )
        await self.db.commit()
        return result.rowcount or 0

    def is_expired(self, conversation: Conversation) -> bool:
        """expires_at ריק לעולם לא פג"""
        if conversation.expires_at is None:
            return False
        return conversation.expires_at <= self._clock()

    async def cleanup_expired(self) -> int:
        """Delete every conversation whose expiry has passed; returns the count"""
        result = await self.db.execute(
            delete(Conversation).where(
                Conversation.expires_at.is_not(None),
                Conversation.expires_at <= self._clock(),
            )
        )
        await self.db.commit()
        deleted = result.rowcount or 0

        if deleted:
            logger.info(
                "Cleaned up expired conversations",
                extra_data={"deleted_count": deleted}
            )
        return deleted

    async def get_by_id(self, conversation_id: int) -> Optional[Conversation]:
        result = await self.db.execute(
            select(Conversation).where(Conversation.id == conversation_id)
        )
        return result.scalar_one_or_none()

    async def get_active(self) -> list[Conversation]:
        result = await self.db.execute(
            select(Conversation)
            .where(self._active_filter(self._clock()))
            .order_by(Conversation.updated_at.desc())
        )
        return list(result.scalars().all())

    async def get_stats(self) -> dict[str, Any]:
        """Active count, active count per state and expired (not yet cleaned) count"""
        now = self._clock()

        by_state_rows = await self.db.execute(
            select(Conversation.state, func.count(Conversation.id))
            .where(self._active_filter(now))
            .group_by(Conversation.state)
        )
        by_state = {state: count for state, count in by_state_rows.all()}

        expired_count = await self.db.scalar(
            select(func.count(Conversation.id)).where(
                Conversation.expires_at.is_not(None),
                Conversation.expires_at <= now,
            )
        )

        return {
            "total_active": sum(by_state.values()),
            "by_state": by_state,
            "expired_count": expired_count or 0,
        }

    async def extend_expiration(self, user_id: int, minutes: Optional[int] = None) -> Conversation:
        """Push the active conversation's expiry to now + minutes (default timeout)"""
        conversation = await self._require_active(user_id)
        conversation.expires_at = self._new_expiry(minutes)
        return await self._save(conversation)

    async def rollback(self) -> None:
        """ביטול טרנזקציה שנכשלה כדי שהסשן יהיה שמיש שוב"""
        await self.db.rollback()

    @staticmethod
    def _merge(current: Optional[dict[str, Any]], update: dict[str, Any]) -> dict[str, Any]:
        # dict חדש: אחרת SQLAlchemy לא מזהה שינוי בעמודת JSON
        merged = dict(current or {})
        for key, value in update.items():
            if value is None:
                merged.pop(key, None)
            else:
                merged[key] = value
        return merged
