"""
Fleet administration API - אופנועים, שליחים ולקוחות

כל ה-endpoints דורשים X-Admin-API-Key. הבוט עצמו רק קורא את הצי ומדווח
קילומטראז'; הוספה, שיוך, רישום טיפולים והשבתה נעשים כאן.
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.admin_auth import require_admin_api_key
from app.core.logging import get_logger
from app.core.validation import MileageValidator, NameValidator, TextSanitizer
from app.db.database import get_db
from app.db.models.maintenance_history import MaintenanceType
from app.db.models.motorcycle import InsuranceType, MotorcycleType
from app.domain.services.client_service import ClientService
from app.domain.services.courier_service import CourierService
from app.domain.services.fleet_service import FleetService

logger = get_logger(__name__)

router = APIRouter(dependencies=[Depends(require_admin_api_key)])

_AUTH_RESPONSES = {
    401: {"description": "חסר מפתח API"},
    403: {"description": "מפתח API שגוי"},
}


def _clean_name(v: str | None, max_length: int = NameValidator.MAX_LENGTH) -> str | None:
    if v is None:
        return None
    is_valid, error = NameValidator.validate(v, max_length=max_length)
    if not is_valid:
        raise ValueError(error)
    return TextSanitizer.sanitize(v.strip(), max_length=max_length)


def _clean_plate(v: str | None) -> str | None:
    if v is None:
        return None
    cleaned = TextSanitizer.sanitize(v, max_length=20)
    if not cleaned:
        raise ValueError("License plate is required")
    return cleaned


# ==================== Schemas ====================

class MotorcycleCreate(BaseModel):
    license_plate: str
    type: MotorcycleType
    current_mileage: int = Field(default=0, ge=MileageValidator.MIN_VALUE, le=MileageValidator.MAX_VALUE)
    license_expiry_date: Optional[datetime] = None
    insurance_expiry_date: Optional[datetime] = None
    insurance_type: Optional[InsuranceType] = None
    assigned_courier_id: Optional[int] = None
    assigned_client_id: Optional[int] = None

    @field_validator("license_plate")
    @classmethod
    def validate_plate(cls, v: str) -> str:
        return _clean_plate(v)


class MotorcycleUpdate(BaseModel):
    """שדות שלא נשלחו נשארים כפי שהם"""
    license_plate: Optional[str] = None
    type: Optional[MotorcycleType] = None
    license_expiry_date: Optional[datetime] = None
    insurance_expiry_date: Optional[datetime] = None
    insurance_type: Optional[InsuranceType] = None

    @field_validator("license_plate")
    @classmethod
    def validate_plate(cls, v: str | None) -> str | None:
        return _clean_plate(v)


class MotorcycleAssign(BaseModel):
    courier_id: Optional[int] = None
    client_id: Optional[int] = None


class MaintenanceCreate(BaseModel):
    maintenance_type: MaintenanceType
    mileage_at_maintenance: int = Field(ge=MileageValidator.MIN_VALUE, le=MileageValidator.MAX_VALUE)
    notes: Optional[str] = None

    @field_validator("notes")
    @classmethod
    def sanitize_notes(cls, v: str | None) -> str | None:
        return TextSanitizer.sanitize(v, max_length=1000) or None


class MotorcycleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    license_plate: str
    type: MotorcycleType
    current_mileage: int
    license_expiry_date: Optional[datetime]
    insurance_expiry_date: Optional[datetime]
    insurance_type: Optional[InsuranceType]
    is_active: bool
    assigned_courier_id: Optional[int]
    assigned_client_id: Optional[int]


class AvailabilityResponse(BaseModel):
    license_plate: str
    available: bool


class CourierCreate(BaseModel):
    name: str

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _clean_name(v)


class CourierUpdate(BaseModel):
    name: Optional[str] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str | None) -> str | None:
        return _clean_name(v)


class ClientCreate(BaseModel):
    name: str

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _clean_name(v, max_length=150)


class ClientUpdate(BaseModel):
    name: Optional[str] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str | None) -> str | None:
        return _clean_name(v, max_length=150)


class PartyResponse(BaseModel):
    """שליח או לקוח"""
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    is_active: bool


class CourierStatsResponse(BaseModel):
    courier_id: int
    start_date: datetime
    end_date: datetime
    total_mileage: int
    average_daily_mileage: float
    total_reports: int
    motorcycle_count: int


class ClientStatsResponse(BaseModel):
    client_id: int
    start_date: datetime
    end_date: datetime
    total_mileage: int
    average_mileage_per_motorcycle: float
    maintenance_count: int
    motorcycle_count: int


class FleetOverviewResponse(BaseModel):
    client_id: int
    total_motorcycles: int
    active_motorcycles: int
    by_type: dict[str, int]
    expiring_licenses: int
    expiring_insurance: int


# ==================== Motorcycles ====================

@router.get(
    "/motorcycles",
    response_model=list[MotorcycleResponse],
    summary="רשימת אופנועים",
    description="כל הצי לפי מספר רישוי, או רק האופנועים של שליח / לקוח.",
    responses=_AUTH_RESPONSES,
)
async def list_motorcycles(
    courier_id: Optional[int] = Query(default=None),
    client_id: Optional[int] = Query(default=None),
    db: AsyncSession = Depends(get_db),
):
    fleet = FleetService(db)
    if courier_id is not None:
        return await fleet.find_by_courier_id(courier_id)
    if client_id is not None:
        return await fleet.find_by_client_id(client_id)
    return await fleet.find_all()


@router.post(
    "/motorcycles",
    response_model=MotorcycleResponse,
    status_code=201,
    summary="הוספת אופנוע",
    responses={
        201: {"description": "האופנוע נוסף"},
        404: {"description": "שליח או לקוח לא קיימים"},
        409: {"description": "מספר הרישוי כבר קיים"},
        **_AUTH_RESPONSES,
    },
)
async def create_motorcycle(data: MotorcycleCreate, db: AsyncSession = Depends(get_db)):
    return await FleetService(db).create_motorcycle(**data.model_dump())


@router.get(
    "/motorcycles/availability",
    response_model=AvailabilityResponse,
    summary="בדיקת זמינות מספר רישוי",
    responses=_AUTH_RESPONSES,
)
async def check_license_plate(
    license_plate: str = Query(min_length=1, max_length=20),
    exclude_id: Optional[int] = Query(default=None, description="אופנוע שמתעדכן"),
    db: AsyncSession = Depends(get_db),
):
    available = await FleetService(db).is_license_plate_available(license_plate, exclude_id=exclude_id)
    return AvailabilityResponse(license_plate=license_plate.strip(), available=available)


@router.get(
    "/motorcycles/{motorcycle_id}",
    response_model=MotorcycleResponse,
    summary="קבלת אופנוע",
    responses={404: {"description": "האופנוע לא נמצא"}, **_AUTH_RESPONSES},
)
async def get_motorcycle(motorcycle_id: int, db: AsyncSession = Depends(get_db)):
    return await FleetService(db).get_motorcycle(motorcycle_id)


@router.patch(
    "/motorcycles/{motorcycle_id}",
    response_model=MotorcycleResponse,
    summary="עדכון פרטי אופנוע",
    description="הקילומטראז' לא מתעדכן כאן: רק בדיווח או ברישום טיפול.",
    responses={
        404: {"description": "האופנוע לא נמצא"},
        409: {"description": "מספר הרישוי כבר קיים"},
        **_AUTH_RESPONSES,
    },
)
async def update_motorcycle(
    motorcycle_id: int,
    data: MotorcycleUpdate,
    db: AsyncSession = Depends(get_db),
):
    return await FleetService(db).update_motorcycle(motorcycle_id, **data.model_dump(exclude_none=True))


@router.post(
    "/motorcycles/{motorcycle_id}/assign",
    response_model=MotorcycleResponse,
    summary="שיוך אופנוע לשליח ו/או ללקוח",
    responses={404: {"description": "אופנוע, שליח או לקוח לא נמצאו"}, **_AUTH_RESPONSES},
)
async def assign_motorcycle(
    motorcycle_id: int,
    data: MotorcycleAssign,
    db: AsyncSession = Depends(get_db),
):
    return await FleetService(db).assign_motorcycle(motorcycle_id, data.courier_id, data.client_id)


@router.post(
    "/motorcycles/{motorcycle_id}/unassign",
    response_model=MotorcycleResponse,
    summary="ביטול שיוך אופנוע",
    responses={404: {"description": "האופנוע לא נמצא"}, **_AUTH_RESPONSES},
)
async def unassign_motorcycle(motorcycle_id: int, db: AsyncSession = Depends(get_db)):
    return await FleetService(db).unassign_motorcycle(motorcycle_id)


@router.post(
    "/motorcycles/{motorcycle_id}/maintenance",
    response_model=MotorcycleResponse,
    summary="רישום טיפול שבוצע",
    responses={404: {"description": "האופנוע לא נמצא"}, **_AUTH_RESPONSES},
)
async def record_maintenance(
    motorcycle_id: int,
    data: MaintenanceCreate,
    db: AsyncSession = Depends(get_db),
):
    return await FleetService(db).record_maintenance(
        motorcycle_id,
        data.maintenance_type,
        data.mileage_at_maintenance,
        data.notes,
    )


@router.post(
    "/motorcycles/{motorcycle_id}/deactivate",
    response_model=MotorcycleResponse,
    summary="השבתת אופנוע",
    responses={404: {"description": "האופנוע לא נמצא"}, **_AUTH_RESPONSES},
)
async def deactivate_motorcycle(motorcycle_id: int, db: AsyncSession = Depends(get_db)):
    return await FleetService(db).deactivate(motorcycle_id)


@router.post(
    "/motorcycles/{motorcycle_id}/activate",
    response_model=MotorcycleResponse,
    summary="הפעלת אופנוע",
    responses={404: {"description": "האופנוע לא נמצא"}, **_AUTH_RESPONSES},
)
async def activate_motorcycle(motorcycle_id: int, db: AsyncSession = Depends(get_db)):
    return await FleetService(db).activate(motorcycle_id)


# ==================== Couriers ====================

@router.get("/couriers", response_model=list[PartyResponse], summary="רשימת שליחים", responses=_AUTH_RESPONSES)
async def list_couriers(
    is_active: Optional[bool] = Query(default=None),
    db: AsyncSession = Depends(get_db),
):
    return await CourierService(db).find_all(is_active=is_active)


@router.post(
    "/couriers",
    response_model=PartyResponse,
    status_code=201,
    summary="הוספת שליח",
    responses={201: {"description": "השליח נוסף"}, **_AUTH_RESPONSES},
)
async def create_courier(data: CourierCreate, db: AsyncSession = Depends(get_db)):
    return await CourierService(db).create(data.name)


@router.patch(
    "/couriers/{courier_id}",
    response_model=PartyResponse,
    summary="עדכון שליח",
    responses={404: {"description": "השליח לא נמצא"}, **_AUTH_RESPONSES},
)
async def update_courier(courier_id: int, data: CourierUpdate, db: AsyncSession = Depends(get_db)):
    return await CourierService(db).update(courier_id, name=data.name)


@router.post(
    "/couriers/{courier_id}/deactivate",
    response_model=PartyResponse,
    summary="השבתת שליח",
    responses={404: {"description": "השליח לא נמצא"}, **_AUTH_RESPONSES},
)
async def deactivate_courier(courier_id: int, db: AsyncSession = Depends(get_db)):
    return await CourierService(db).deactivate(courier_id)


@router.post(
    "/couriers/{courier_id}/activate",
    response_model=PartyResponse,
    summary="הפעלת שליח",
    responses={404: {"description": "השליח לא נמצא"}, **_AUTH_RESPONSES},
)
async def activate_courier(courier_id: int, db: AsyncSession = Depends(get_db)):
    return await CourierService(db).activate(courier_id)


@router.get(
    "/couriers/{courier_id}/stats",
    response_model=CourierStatsResponse,
    summary="סטטיסטיקת נסועה של שליח",
    responses={
        400: {"description": "טווח תאריכים הפוך"},
        404: {"description": "השליח לא נמצא"},
        **_AUTH_RESPONSES,
    },
)
async def get_courier_stats(
    courier_id: int,
    start_date: datetime,
    end_date: datetime,
    db: AsyncSession = Depends(get_db),
):
    return await CourierService(db).get_stats(courier_id, start_date, end_date)


# ==================== Clients ====================

@router.get("/clients", response_model=list[PartyResponse], summary="רשימת לקוחות", responses=_AUTH_RESPONSES)
async def list_clients(
    is_active: Optional[bool] = Query(default=None),
    db: AsyncSession = Depends(get_db),
):
    return await ClientService(db).find_all(is_active=is_active)


@router.post(
    "/clients",
    response_model=PartyResponse,
    status_code=201,
    summary="הוספת לקוח",
    responses={201: {"description": "הלקוח נוסף"}, **_AUTH_RESPONSES},
)
async def create_client(data: ClientCreate, db: AsyncSession = Depends(get_db)):
    return await ClientService(db).create(data.name)


@router.patch(
    "/clients/{client_id}",
    response_model=PartyResponse,
    summary="עדכון לקוח",
    responses={404: {"description": "הלקוח לא נמצא"}, **_AUTH_RESPONSES},
)
async def update_client(client_id: int, data: ClientUpdate, db: AsyncSession = Depends(get_db)):
    return await ClientService(db).update(client_id, name=data.name)


@router.post(
    "/clients/{client_id}/deactivate",
    response_model=PartyResponse,
    summary="השבתת לקוח",
    responses={404: {"description": "הלקוח לא נמצא"}, **_AUTH_RESPONSES},
)
async def deactivate_client(client_id: int, db: AsyncSession = Depends(get_db)):
    return await ClientService(db).deactivate(client_id)


@router.post(
    "/clients/{client_id}/activate",
    response_model=PartyResponse,
    summary="הפעלת לקוח",
    responses={404: {"description": "הלקוח לא נמצא"}, **_AUTH_RESPONSES},
)
async def activate_client(client_id: int, db: AsyncSession = Depends(get_db)):
    return await ClientService(db).activate(client_id)


@router.get(
    "/clients/{client_id}/fleet",
    response_model=FleetOverviewResponse,
    summary="סקירת הצי של לקוח",
    responses={404: {"description": "הלקוח לא נמצא"}, **_AUTH_RESPONSES},
)
async def get_client_fleet(
    client_id: int,
    include_inactive: bool = Query(default=False),
    db: AsyncSession = Depends(get_db),
):
    return await ClientService(db).get_fleet_overview(client_id, include_inactive=include_inactive)


@router.get(
    "/clients/{client_id}/stats",
    response_model=ClientStatsResponse,
    summary="סטטיסטיקת שימוש של לקוח",
    responses={
        400: {"description": "טווח תאריכים הפוך"},
        404: {"description": "הלקוח לא נמצא"},
        **_AUTH_RESPONSES,
    },
)
async def get_client_stats(
    client_id: int,
    start_date: datetime,
    end_date: datetime,
    db: AsyncSession = Depends(get_db),
):
    return await ClientService(db).get_stats(client_id, start_date, end_date)
