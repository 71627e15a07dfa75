"""
Maintenance History Model - טיפולים שבוצעו בפועל
"""
import enum
from sqlalchemy import Column, Integer, DateTime, ForeignKey, Text, Enum as SQLEnum

from app.db.database import Base, utc_now


class MaintenanceType(str, enum.Enum):
    NONE = "NONE"
    SMALL = "SMALL"
    LARGE = "LARGE"


class MaintenanceHistory(Base):
    __tablename__ = "maintenance_history"

    id = Column(Integer, primary_key=True, index=True)
    motorcycle_id = Column(Integer, ForeignKey("motorcycles.id"), nullable=False, index=True)
    maintenance_type = Column(SQLEnum(MaintenanceType, name="maintenance_type"), nullable=False)
    mileage_at_maintenance = Column(Integer, nullable=False)
    performed_at = Column(DateTime, default=utc_now, nullable=False)
    notes = Column(Text, nullable=True)
