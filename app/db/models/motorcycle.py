"""
Motorcycle Model
"""
import enum
from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, ForeignKey, Enum as SQLEnum
)
from sqlalchemy.orm import relationship

from app.db.database import Base, utc_now


class MotorcycleType(str, enum.Enum):
    MOTORCYCLE_125 = "MOTORCYCLE_125"
    MOTORCYCLE_250 = "MOTORCYCLE_250"
    ELECTRIC = "ELECTRIC"


class InsuranceType(str, enum.Enum):
    SINGLE_DRIVER = "SINGLE_DRIVER"
    ANY_DRIVER = "ANY_DRIVER"


class Motorcycle(Base):
    __tablename__ = "motorcycles"

    id = Column(Integer, primary_key=True, index=True)
    license_plate = Column(String(20), unique=True, nullable=False, index=True)
    type = Column(SQLEnum(MotorcycleType, name="motorcycle_type"), nullable=False)
    current_mileage = Column(Integer, default=0, nullable=False)

    license_expiry_date = Column(DateTime, nullable=True)
    insurance_expiry_date = Column(DateTime, nullable=True)
    insurance_type = Column(SQLEnum(InsuranceType, name="insurance_type"), nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)

    assigned_courier_id = Column(Integer, ForeignKey("couriers.id"), nullable=True, index=True)
    assigned_client_id = Column(Integer, ForeignKey("clients.id"), nullable=True, index=True)
    assigned_courier = relationship("Courier", lazy="selectin")
    assigned_client = relationship("Client", lazy="selectin")

    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)
