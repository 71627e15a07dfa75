"""
Conversation Model - State Machine Tracking
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON, Index

from app.db.database import Base, utc_now


class Conversation(Base):
    """
    Per-user conversation state.

    A row is active while expires_at is NULL or in the future. Rows that
    expired are ignored by lookups and removed by the periodic cleanup task.
    """

    __tablename__ = "conversations"
    __table_args__ = (
        Index("ix_conversations_user_updated", "user_id", "updated_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    state = Column(String(50), nullable=False, default="IDLE")

    # הקשר השיחה (אופנוע נבחר, קילומטראז' ממתין, מונה שגיאות...): מיזוג רדוד
    context = Column(JSON, default=dict, nullable=False)

    expires_at = Column(DateTime, nullable=True, index=True)
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)
