"""
User Model - Couriers and Administrators
"""
import enum
from sqlalchemy import Column, Integer, String, DateTime, Enum as SQLEnum, Boolean, ForeignKey

from app.db.database import Base, utc_now


class UserRole(str, enum.Enum):
    COURIER = "courier"
    ADMIN = "admin"


class User(Base):
    """משתמש הבוט: מזוהה לפי מספר הטלפון שממנו נשלחה ההודעה"""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    phone_number = Column(String(20), unique=True, index=True, nullable=False)
    name = Column(String(100), nullable=True)
    role = Column(
        SQLEnum(UserRole, name="user_role", values_callable=lambda x: [e.value for e in x]),
        default=UserRole.COURIER,
        nullable=False,
    )
    is_active = Column(Boolean, default=True, nullable=False)

    # שליח מקושר: רק למשתמשים בתפקיד courier
    courier_id = Column(Integer, ForeignKey("couriers.id"), nullable=True, index=True)

    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN
