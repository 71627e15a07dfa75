"""
Webhook Event Model - idempotency של הודעות נכנסות

Meta שולחת webhook שוב כשהתשובה מתעכבת; כל הודעה נרשמת לפי message_id
ורק הודעה שסומנה completed נחסמת מעיבוד חוזר.
"""
from sqlalchemy import Column, String, DateTime, Index

from app.db.database import Base, utc_now


class WebhookEvent(Base):
    __tablename__ = "webhook_events"

    message_id = Column(String(200), primary_key=True)
    status = Column(String(20), nullable=False, default="processing")
    created_at = Column(DateTime, default=utc_now)

    __table_args__ = (
        Index("ix_webhook_events_status_created", "status", "created_at"),
    )
