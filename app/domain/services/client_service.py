"""
Client Service - לקוחות שמחכירים אופנועים מהצי
"""
from datetime import datetime, timedelta
from typing import Any, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from app.core.exceptions import ClientNotFoundError, ValidationException
from app.core.logging import get_logger
from app.db.database import to_naive_utc, utc_now
from app.db.models.client import Client
from app.db.models.maintenance_history import MaintenanceHistory
from app.db.models.mileage_report import MileageReport
from app.db.models.motorcycle import Motorcycle
from app.domain.services.fleet_service import distance_covered

logger = get_logger(__name__)

# רישיון או ביטוח שפגים בתוך חלון זה נספרים כ"עומדים לפוג"
EXPIRY_WARNING_DAYS = 30


class ClientService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, client_id: int) -> Client:
        result = await self.db.execute(select(Client).where(Client.id == client_id))
        client = result.scalar_one_or_none()
        if client is None:
            raise ClientNotFoundError(client_id)
        return client

    async def find_all(self, is_active: Optional[bool] = None) -> list[Client]:
        query = select(Client).order_by(Client.name)
        if is_active is not None:
            query = query.where(Client.is_active == is_active)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def create(self, name: str) -> Client:
        client = Client(name=name)
        self.db.add(client)
        await self.db.commit()
        await self.db.refresh(client)

        logger.info("Client created", extra_data={"client_id": client.id})
        return client

    async def update(self, client_id: int, name: Optional[str] = None) -> Client:
        client = await self.get(client_id)
        if name is not None:
            client.name = name
        await self.db.commit()
        await self.db.refresh(client)

        logger.info("Client updated", extra_data={"client_id": client.id})
        return client

    async def set_active(self, client_id: int, is_active: bool) -> Client:
        client = await self.get(client_id)
        client.is_active = is_active
        await self.db.commit()
        await self.db.refresh(client)

        logger.info(
            "Client activation changed",
            extra_data={"client_id": client.id, "is_active": is_active}
        )
        return client

    async def deactivate(self, client_id: int) -> Client:
        return await self.set_active(client_id, False)

    async def activate(self, client_id: int) -> Client:
        return await self.set_active(client_id, True)

    async def _motorcycles(self, client_id: int, include_inactive: bool = True) -> list[Motorcycle]:
        query = select(Motorcycle).where(Motorcycle.assigned_client_id == client_id)
        if not include_inactive:
            query = query.where(Motorcycle.is_active.is_(True))
        result = await self.db.execute(query.order_by(Motorcycle.license_plate))
        return list(result.scalars().all())

    async def get_fleet_overview(self, client_id: int, include_inactive: bool = False) -> dict[str, Any]:
        """Counts by type plus licenses and insurance expiring within EXPIRY_WARNING_DAYS"""
        await self.get(client_id)
        motorcycles = await self._motorcycles(client_id, include_inactive)
        horizon = utc_now() + timedelta(days=EXPIRY_WARNING_DAYS)

        by_type: dict[str, int] = {}
        for motorcycle in motorcycles:
            by_type[motorcycle.type.value] = by_type.get(motorcycle.type.value, 0) + 1

        return {
            "client_id": client_id,
            "total_motorcycles": len(motorcycles),
            "active_motorcycles": sum(1 for m in motorcycles if m.is_active),
            "by_type": by_type,
            "expiring_licenses": sum(
                1 for m in motorcycles
                if m.license_expiry_date is not None and m.license_expiry_date <= horizon
            ),
            "expiring_insurance": sum(
                1 for m in motorcycles
                if m.insurance_expiry_date is not None and m.insurance_expiry_date <= horizon
            ),
        }

    async def get_stats(
        self,
        client_id: int,
        start_date: datetime,
        end_date: datetime,
    ) -> dict[str, Any]:
        """
        Usage of the client's motorcycles within [start_date, end_date].

        Raises:
            ClientNotFoundError: unknown client
            ValidationException: end_date before start_date
        """
        start_date, end_date = to_naive_utc(start_date), to_naive_utc(end_date)
        if end_date < start_date:
            raise ValidationException("end_date must not be before start_date", field="end_date")

        await self.get(client_id)
        motorcycle_ids = [m.id for m in await self._motorcycles(client_id)]

        reports: list[MileageReport] = []
        maintenance_count = 0
        if motorcycle_ids:
            result = await self.db.execute(
                select(MileageReport).where(
                    MileageReport.motorcycle_id.in_(motorcycle_ids),
                    MileageReport.reported_at >= start_date,
                    MileageReport.reported_at <= end_date,
                )
            )
            reports = list(result.scalars().all())

            result = await self.db.execute(
                select(MaintenanceHistory.id).where(
                    MaintenanceHistory.motorcycle_id.in_(motorcycle_ids),
                    MaintenanceHistory.performed_at >= start_date,
                    MaintenanceHistory.performed_at <= end_date,
                )
            )
            maintenance_count = len(result.all())

        total_mileage = distance_covered(reports)
        return {
            "client_id": client_id,
            "start_date": start_date,
            "end_date": end_date,
            "total_mileage": total_mileage,
            "average_mileage_per_motorcycle": (
                total_mileage / len(motorcycle_ids) if motorcycle_ids else 0.0
            ),
            "maintenance_count": maintenance_count,
            "motorcycle_count": len(motorcycle_ids),
        }
