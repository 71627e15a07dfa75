"""
Mileage Report Model - דיווחי קילומטראז' שאושרו בצ'אט
"""
from sqlalchemy import Column, Integer, DateTime, ForeignKey

from app.db.database import Base, utc_now


class MileageReport(Base):
    __tablename__ = "mileage_reports"

    id = Column(Integer, primary_key=True, index=True)
    motorcycle_id = Column(Integer, ForeignKey("motorcycles.id"), nullable=False, index=True)
    # המדווח: שליח, או None כשמנהל מדווח בשם הצי
    courier_id = Column(Integer, ForeignKey("couriers.id"), nullable=True, index=True)
    reported_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    mileage = Column(Integer, nullable=False)
    reported_at = Column(DateTime, default=utc_now, nullable=False)
