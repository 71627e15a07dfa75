"""
Conversation diagnostics: endpoints לניטור ותחזוקה של שיחות הבוט.

1. סטטיסטיקה: פעילות לפי מצב + שיחות שפג תוקפן וטרם נוקו
2. רשימת שיחות פעילות (דיבוג משתמשים תקועים)
3. מחיקת שיחה של משתמש (ההודעה הבאה תתחיל מ-IDLE)
4. הרצת ניקוי ידנית
"""
from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.admin_auth import require_admin_api_key
from app.core.config import settings
from app.core.logging import get_logger
from app.db.database import get_db
from app.state_machine.conversation_store import ConversationStore

logger = get_logger(__name__)

router = APIRouter()

_AUTH_RESPONSES = {
    401: {"description": "חסר מפתח API"},
    403: {"description": "מפתח API שגוי"},
}


class ConversationStatsResponse(BaseModel):
    total_active: int
    by_state: dict[str, int]
    expired_count: int = Field(description="שיחות שפג תוקפן וממתינות לניקוי")


class ConversationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    state: str
    context: dict
    expires_at: datetime | None
    updated_at: datetime | None


class DeletedCountResponse(BaseModel):
    deleted: int


def _store(db: AsyncSession) -> ConversationStore:
    return ConversationStore(db, timeout_minutes=settings.CONVERSATION_TIMEOUT_MINUTES)


@router.get(
    "/stats",
    response_model=ConversationStatsResponse,
    summary="סטטיסטיקת שיחות",
    responses={200: {"description": "ספירות לפי מצב"}, **_AUTH_RESPONSES},
)
async def get_conversation_stats(
    _: None = Depends(require_admin_api_key),
    db: AsyncSession = Depends(get_db),
) -> ConversationStatsResponse:
    return ConversationStatsResponse(**await _store(db).get_stats())


@router.get(
    "/active",
    response_model=list[ConversationResponse],
    summary="שיחות פעילות",
    description="השיחות שלא פג תוקפן, מהעדכנית לישנה.",
    responses={200: {"description": "רשימת שיחות"}, **_AUTH_RESPONSES},
)
async def get_active_conversations(
    _: None = Depends(require_admin_api_key),
    db: AsyncSession = Depends(get_db),
    limit: int = Query(default=50, ge=1, le=500, description="מספר שיחות מקסימלי"),
) -> list[ConversationResponse]:
    conversations = await _store(db).get_active()
    return [ConversationResponse.model_validate(c) for c in conversations[:limit]]


@router.delete(
    "/{user_id}",
    response_model=DeletedCountResponse,
    summary="מחיקת שיחות של משתמש",
    description="מוחק את כל רשומות השיחה של המשתמש, כולל כאלה שפג תוקפן.",
    responses={200: {"description": "מספר הרשומות שנמחקו"}, **_AUTH_RESPONSES},
)
async def delete_user_conversation(
    user_id: int,
    _: None = Depends(require_admin_api_key),
    db: AsyncSession = Depends(get_db),
) -> DeletedCountResponse:
    deleted = await _store(db).delete(user_id)
    logger.info(
        "Conversation deleted by admin",
        extra_data={"user_id": user_id, "deleted": deleted}
    )
    return DeletedCountResponse(deleted=deleted)


@router.post(
    "/cleanup",
    response_model=DeletedCountResponse,
    summary="ניקוי שיחות שפג תוקפן",
    description="אותה פעולה שמשימת ה-beat מריצה, לפי דרישה.",
    responses={200: {"description": "מספר הרשומות שנמחקו"}, **_AUTH_RESPONSES},
)
async def cleanup_expired_conversations(
    _: None = Depends(require_admin_api_key),
    db: AsyncSession = Depends(get_db),
) -> DeletedCountResponse:
    return DeletedCountResponse(deleted=await _store(db).cleanup_expired())
