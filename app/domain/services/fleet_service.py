"""
Fleet Service - motorcycle lookups, mileage reports and fleet administration

Administration (create, update, assign, maintenance records, activation) is
reached through the admin API; the chat flow only reads the fleet and reports
mileage.
"""
from datetime import datetime
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from app.core.exceptions import (
    ClientNotFoundError,
    CourierNotFoundError,
    LicensePlateTakenError,
    MileageDecreaseError,
    MotorcycleNotFoundError,
    ValidationException,
)
from app.core.logging import get_logger
from app.db.database import to_naive_utc
from app.db.models.client import Client
from app.db.models.courier import Courier
from app.db.models.maintenance_history import MaintenanceHistory, MaintenanceType
from app.db.models.mileage_report import MileageReport
from app.db.models.motorcycle import InsuranceType, Motorcycle, MotorcycleType
from app.db.models.user import User
from app.domain.services.maintenance_calculator import (
    MaintenanceCalculation,
    calculate_next_maintenance,
)

logger = get_logger(__name__)


class FleetService:
    """Service for the motorcycle fleet: lookups, odometer reports and administration"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_by_id(self, motorcycle_id: int) -> Optional[Motorcycle]:
        result = await self.db.execute(
            select(Motorcycle).where(Motorcycle.id == motorcycle_id)
        )
        return result.scalar_one_or_none()

    async def get_motorcycle(self, motorcycle_id: int) -> Motorcycle:
        """Like find_by_id, but raises MotorcycleNotFoundError"""
        motorcycle = await self.find_by_id(motorcycle_id)
        if motorcycle is None:
            raise MotorcycleNotFoundError(motorcycle_id)
        return motorcycle

    async def find_by_courier_id(self, courier_id: int) -> list[Motorcycle]:
        result = await self.db.execute(
            select(Motorcycle)
            .where(Motorcycle.assigned_courier_id == courier_id)
            .order_by(Motorcycle.license_plate)
        )
        return list(result.scalars().all())

    async def find_by_client_id(self, client_id: int) -> list[Motorcycle]:
        result = await self.db.execute(
            select(Motorcycle)
            .where(Motorcycle.assigned_client_id == client_id)
            .order_by(Motorcycle.license_plate)
        )
        return list(result.scalars().all())

    async def find_all(self) -> list[Motorcycle]:
        result = await self.db.execute(
            select(Motorcycle).order_by(Motorcycle.license_plate)
        )
        return list(result.scalars().all())

    async def get_maintenance_history(self, motorcycle_id: int) -> list[MaintenanceHistory]:
        result = await self.db.execute(
            select(MaintenanceHistory)
            .where(MaintenanceHistory.motorcycle_id == motorcycle_id)
            .order_by(MaintenanceHistory.mileage_at_maintenance)
        )
        return list(result.scalars().all())

    async def get_next_maintenance(self, motorcycle: Motorcycle) -> MaintenanceCalculation:
        history = await self.get_maintenance_history(motorcycle.id)
        return calculate_next_maintenance(motorcycle.type, motorcycle.current_mileage, history)

    async def report_mileage(
        self,
        motorcycle_id: int,
        mileage: int,
        reported_by: User,
    ) -> Motorcycle:
        """
        Record a confirmed odometer reading.

        Updates the motorcycle's current mileage and stores a MileageReport
        in one transaction.

        Raises:
            MotorcycleNotFoundError: unknown motorcycle
            MileageDecreaseError: reading below the stored mileage
        """
        motorcycle = await self.get_motorcycle(motorcycle_id)

        if mileage < (motorcycle.current_mileage or 0):
            raise MileageDecreaseError(motorcycle_id, motorcycle.current_mileage, mileage)

        motorcycle.current_mileage = mileage
        self.db.add(MileageReport(
            motorcycle_id=motorcycle.id,
            courier_id=reported_by.courier_id,
            reported_by_user_id=reported_by.id,
            mileage=mileage,
        ))
        await self.db.commit()
        await self.db.refresh(motorcycle)

        logger.info(
            "Mileage reported",
            extra_data={
                "motorcycle_id": motorcycle.id,
                "mileage": mileage,
                "user_id": reported_by.id,
            }
        )
        return motorcycle


    # ==================== Administration ====================

    async def is_license_plate_available(
        self,
        license_plate: str,
        exclude_id: Optional[int] = None,
    ) -> bool:
        query = select(Motorcycle.id).where(Motorcycle.license_plate == license_plate.strip())
        if exclude_id is not None:
            query = query.where(Motorcycle.id != exclude_id)
        result = await self.db.execute(query.limit(1))
        return result.scalar_one_or_none() is None

    async def create_motorcycle(
        self,
        license_plate: str,
        type: MotorcycleType,
        current_mileage: int = 0,
        license_expiry_date: Optional[datetime] = None,
        insurance_expiry_date: Optional[datetime] = None,
        insurance_type: Optional[InsuranceType] = None,
        assigned_courier_id: Optional[int] = None,
        assigned_client_id: Optional[int] = None,
    ) -> Motorcycle:
        """
        Add a motorcycle to the fleet.

        Raises:
            ValidationException: empty license plate
            LicensePlateTakenError: the plate belongs to another motorcycle
            CourierNotFoundError / ClientNotFoundError: unknown assignment target
        """
        license_plate = self._clean_plate(license_plate)
        if not await self.is_license_plate_available(license_plate):
            raise LicensePlateTakenError(license_plate)

        if assigned_courier_id is not None:
            await self._require_courier(assigned_courier_id)
        if assigned_client_id is not None:
            await self._require_client(assigned_client_id)

        motorcycle = Motorcycle(
            license_plate=license_plate,
            type=type,
            current_mileage=current_mileage,
            license_expiry_date=_naive(license_expiry_date),
            insurance_expiry_date=_naive(insurance_expiry_date),
            insurance_type=insurance_type,
            assigned_courier_id=assigned_courier_id,
            assigned_client_id=assigned_client_id,
        )
        self.db.add(motorcycle)
        await self.db.commit()
        await self.db.refresh(motorcycle)

        logger.info(
            "Motorcycle created",
            extra_data={"motorcycle_id": motorcycle.id, "type": motorcycle.type.value}
        )
        return motorcycle

    async def update_motorcycle(
        self,
        motorcycle_id: int,
        license_plate: Optional[str] = None,
        type: Optional[MotorcycleType] = None,
        license_expiry_date: Optional[datetime] = None,
        insurance_expiry_date: Optional[datetime] = None,
        insurance_type: Optional[InsuranceType] = None,
    ) -> Motorcycle:
        """
        Change motorcycle details; None leaves a field unchanged.

        Mileage is not edited here: it only moves forward through report_mileage
        or record_maintenance.
        """
        motorcycle = await self.get_motorcycle(motorcycle_id)

        if license_plate is not None:
            license_plate = self._clean_plate(license_plate)
            if license_plate != motorcycle.license_plate:
                if not await self.is_license_plate_available(license_plate, exclude_id=motorcycle.id):
                    raise LicensePlateTakenError(license_plate)
                motorcycle.license_plate = license_plate

        if type is not None:
            motorcycle.type = type
        if license_expiry_date is not None:
            motorcycle.license_expiry_date = to_naive_utc(license_expiry_date)
        if insurance_expiry_date is not None:
            motorcycle.insurance_expiry_date = to_naive_utc(insurance_expiry_date)
        if insurance_type is not None:
            motorcycle.insurance_type = insurance_type

        await self.db.commit()
        await self.db.refresh(motorcycle)

        logger.info("Motorcycle updated", extra_data={"motorcycle_id": motorcycle.id})
        return motorcycle

    async def assign_motorcycle(
        self,
        motorcycle_id: int,
        courier_id: Optional[int] = None,
        client_id: Optional[int] = None,
    ) -> Motorcycle:
        """Assign to a courier and/or client; an omitted side keeps its assignment"""
        motorcycle = await self.get_motorcycle(motorcycle_id)

        if courier_id is not None:
            await self._require_courier(courier_id)
            motorcycle.assigned_courier_id = courier_id
        if client_id is not None:
            await self._require_client(client_id)
            motorcycle.assigned_client_id = client_id

        await self.db.commit()
        await self.db.refresh(motorcycle)

        logger.info(
            "Motorcycle assigned",
            extra_data={
                "motorcycle_id": motorcycle.id,
                "courier_id": motorcycle.assigned_courier_id,
                "client_id": motorcycle.assigned_client_id,
            }
        )
        return motorcycle

    async def unassign_motorcycle(self, motorcycle_id: int) -> Motorcycle:
        """Clears both the courier and the client assignment"""
        motorcycle = await self.get_motorcycle(motorcycle_id)
        motorcycle.assigned_courier_id = None
        motorcycle.assigned_client_id = None
        await self.db.commit()
        await self.db.refresh(motorcycle)

        logger.info("Motorcycle unassigned", extra_data={"motorcycle_id": motorcycle.id})
        return motorcycle

    async def record_maintenance(
        self,
        motorcycle_id: int,
        maintenance_type: MaintenanceType,
        mileage_at_maintenance: int,
        notes: Optional[str] = None,
    ) -> Motorcycle:
        """
        Store a performed service.

        A service reading above the stored odometer also moves current_mileage
        forward; a lower one is kept as history only.
        """
        motorcycle = await self.get_motorcycle(motorcycle_id)

        self.db.add(MaintenanceHistory(
            motorcycle_id=motorcycle.id,
            maintenance_type=maintenance_type,
            mileage_at_maintenance=mileage_at_maintenance,
            notes=notes or None,
        ))
        if mileage_at_maintenance > (motorcycle.current_mileage or 0):
            motorcycle.current_mileage = mileage_at_maintenance

        await self.db.commit()
        await self.db.refresh(motorcycle)

        logger.info(
            "Maintenance recorded",
            extra_data={
                "motorcycle_id": motorcycle.id,
                "maintenance_type": maintenance_type.value,
                "mileage": mileage_at_maintenance,
            }
        )
        return motorcycle

    async def set_active(self, motorcycle_id: int, is_active: bool) -> Motorcycle:
        """אופנוע לא פעיל נשאר בהיסטוריה אבל לא מוצג בתפריט הבחירה"""
        motorcycle = await self.get_motorcycle(motorcycle_id)
        motorcycle.is_active = is_active
        await self.db.commit()
        await self.db.refresh(motorcycle)

        logger.info(
            "Motorcycle activation changed",
            extra_data={"motorcycle_id": motorcycle.id, "is_active": is_active}
        )
        return motorcycle

    async def deactivate(self, motorcycle_id: int) -> Motorcycle:
        return await self.set_active(motorcycle_id, False)

    async def activate(self, motorcycle_id: int) -> Motorcycle:
        return await self.set_active(motorcycle_id, True)

    @staticmethod
    def _clean_plate(license_plate: str) -> str:
        cleaned = (license_plate or "").strip()
        if not cleaned:
            raise ValidationException("License plate is required", field="license_plate")
        return cleaned

    async def _require_courier(self, courier_id: int) -> Courier:
        result = await self.db.execute(select(Courier).where(Courier.id == courier_id))
        courier = result.scalar_one_or_none()
        if courier is None:
            raise CourierNotFoundError(courier_id)
        return courier

    async def _require_client(self, client_id: int) -> Client:
        result = await self.db.execute(select(Client).where(Client.id == client_id))
        client = result.scalar_one_or_none()
        if client is None:
            raise ClientNotFoundError(client_id)
        return client


def _naive(value: Optional[datetime]) -> Optional[datetime]:
    return to_naive_utc(value) if value is not None else None


def distance_covered(reports: list[MileageReport]) -> int:
    """Sum over motorcycles of (highest - lowest) reading in the given reports"""
    readings: dict[int, list[int]] = {}
    for report in reports:
        readings.setdefault(report.motorcycle_id, []).append(report.mileage)
    return sum(max(values) - min(values) for values in readings.values())
