"""
Courier Model
"""
from sqlalchemy import Column, Integer, String, DateTime, Boolean

from app.db.database import Base, utc_now


class Courier(Base):
    """שליח בצי: אופנועים משויכים אליו דרך Motorcycle.assigned_courier_id"""

    __tablename__ = "couriers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)
