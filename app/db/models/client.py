"""
Client Model - Businesses that lease motorcycles from the fleet
"""
from sqlalchemy import Column, Integer, String, DateTime, Boolean

from app.db.database import Base, utc_now


class Client(Base):
    __tablename__ = "clients"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(150), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)
