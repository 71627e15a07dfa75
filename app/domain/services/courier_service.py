"""
Courier Service - ניהול שליחים: יצירה, עדכון, הפעלה/השבתה וסטטיסטיקת נסועה
"""
import math
from datetime import datetime
from typing import Any, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from app.core.exceptions import CourierNotFoundError, ValidationException
from app.core.logging import get_logger
from app.db.database import to_naive_utc
from app.db.models.courier import Courier
from app.db.models.mileage_report import MileageReport
from app.domain.services.fleet_service import distance_covered

logger = get_logger(__name__)


class CourierService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, courier_id: int) -> Courier:
        result = await self.db.execute(select(Courier).where(Courier.id == courier_id))
        courier = result.scalar_one_or_none()
        if courier is None:
            raise CourierNotFoundError(courier_id)
        return courier

    async def find_all(self, is_active: Optional[bool] = None) -> list[Courier]:
        query = select(Courier).order_by(Courier.name)
        if is_active is not None:
            query = query.where(Courier.is_active == is_active)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def create(self, name: str) -> Courier:
        courier = Courier(name=name)
        self.db.add(courier)
        await self.db.commit()
        await self.db.refresh(courier)

        logger.info("Courier created", extra_data={"courier_id": courier.id})
        return courier

    async def update(self, courier_id: int, name: Optional[str] = None) -> Courier:
        courier = await self.get(courier_id)
        if name is not None:
            courier.name = name
        await self.db.commit()
        await self.db.refresh(courier)

        logger.info("Courier updated", extra_data={"courier_id": courier.id})
        return courier

    async def set_active(self, courier_id: int, is_active: bool) -> Courier:
        """השבתת שליח לא משחררת את האופנועים שמשויכים אליו"""
        courier = await self.get(courier_id)
        courier.is_active = is_active
        await self.db.commit()
        await self.db.refresh(courier)

        logger.info(
            "Courier activation changed",
            extra_data={"courier_id": courier.id, "is_active": is_active}
        )
        return courier

    async def deactivate(self, courier_id: int) -> Courier:
        return await self.set_active(courier_id, False)

    async def activate(self, courier_id: int) -> Courier:
        return await self.set_active(courier_id, True)

    async def get_stats(
        self,
        courier_id: int,
        start_date: datetime,
        end_date: datetime,
    ) -> dict[str, Any]:
        """
        Mileage reported by the courier within [start_date, end_date].

        total_mileage is the distance covered per motorcycle (highest minus
        lowest reading in the period), summed over the motorcycles reported.

        Raises:
            CourierNotFoundError: unknown courier
            ValidationException: end_date before start_date
        """
        start_date, end_date = to_naive_utc(start_date), to_naive_utc(end_date)
        if end_date < start_date:
            raise ValidationException("end_date must not be before start_date", field="end_date")

        await self.get(courier_id)
        result = await self.db.execute(
            select(MileageReport)
            .where(
                MileageReport.courier_id == courier_id,
                MileageReport.reported_at >= start_date,
                MileageReport.reported_at <= end_date,
            )
            .order_by(MileageReport.reported_at)
        )
        reports = list(result.scalars().all())

        total_mileage = distance_covered(reports)
        days = math.ceil((end_date - start_date).total_seconds() / 86400)

        return {
            "courier_id": courier_id,
            "start_date": start_date,
            "end_date": end_date,
            "total_mileage": total_mileage,
            "average_daily_mileage": total_mileage / days if days > 0 else 0.0,
            "total_reports": len(reports),
            "motorcycle_count": len({report.motorcycle_id for report in reports}),
        }
