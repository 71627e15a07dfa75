"""
בדיקות ל-FleetService (קריאה, דיווח וניהול צי), CourierService, ClientService ו-UserService
"""
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from app.core.exceptions import (
    ClientNotFoundError,
    CourierNotFoundError,
    LicensePlateTakenError,
    MileageDecreaseError,
    MotorcycleNotFoundError,
    ValidationException,
)
from app.db.database import utc_now
from app.db.models.maintenance_history import MaintenanceHistory, MaintenanceType
from app.db.models.mileage_report import MileageReport
from app.db.models.motorcycle import InsuranceType, MotorcycleType
from app.db.models.user import User, UserRole
from app.domain.services import ClientService, CourierService, FleetService, UserService
from app.domain.services.fleet_service import distance_covered


@pytest.fixture
def fleet(db_session) -> FleetService:
    return FleetService(db_session)


@pytest.fixture
def users(db_session) -> UserService:
    return UserService(db_session)


@pytest.fixture
def couriers(db_session) -> CourierService:
    return CourierService(db_session)


@pytest.fixture
def clients(db_session) -> ClientService:
    return ClientService(db_session)


@pytest.fixture
def report_factory(db_session):
    """דיווח קילומטראז' עם זמן דיווח נתון"""
    async def _create_report(
        motorcycle_id: int,
        mileage: int,
        reported_at: datetime,
        reported_by_user_id: int,
        courier_id: int | None = None,
    ) -> MileageReport:
        report = MileageReport(
            motorcycle_id=motorcycle_id,
            courier_id=courier_id,
            reported_by_user_id=reported_by_user_id,
            mileage=mileage,
            reported_at=reported_at,
        )
        db_session.add(report)
        await db_session.commit()
        return report

    return _create_report


class TestFleetLookups:

    @pytest.mark.unit
    async def test_find_by_courier_sorted_by_plate(
        self, fleet, sample_courier, motorcycle_factory
    ) -> None:
        await motorcycle_factory(license_plate="Z-9", assigned_courier_id=sample_courier.id)
        await motorcycle_factory(license_plate="A-1", assigned_courier_id=sample_courier.id)
        await motorcycle_factory(license_plate="M-5")

        plates = [m.license_plate for m in await fleet.find_by_courier_id(sample_courier.id)]

        assert plates == ["A-1", "Z-9"]

    @pytest.mark.unit
    async def test_get_motorcycle_raises_for_unknown(self, fleet) -> None:
        with pytest.raises(MotorcycleNotFoundError):
            await fleet.get_motorcycle(12345)
        assert await fleet.find_by_id(12345) is None

    @pytest.mark.unit
    async def test_next_maintenance_uses_history(
        self, fleet, motorcycle_factory, maintenance_factory
    ) -> None:
        motorcycle = await motorcycle_factory(type=MotorcycleType.MOTORCYCLE_125, current_mileage=4500)
        await maintenance_factory(motorcycle.id, MaintenanceType.SMALL, 4000)

        result = await fleet.get_next_maintenance(motorcycle)

        assert result.next_mileage == 8000
        assert result.due_in == 3500
        assert result.type == MaintenanceType.LARGE


class TestReportMileage:

    @pytest.mark.unit
    async def test_updates_mileage_and_records_report(
        self, fleet, db_session, courier_user, courier_motorcycle
    ) -> None:
        motorcycle = await fleet.report_mileage(courier_motorcycle.id, 15800, reported_by=courier_user)

        assert motorcycle.current_mileage == 15800
        report = (await db_session.execute(select(MileageReport))).scalar_one()
        assert report.motorcycle_id == courier_motorcycle.id
        assert report.courier_id == courier_user.courier_id
        assert report.mileage == 15800

    @pytest.mark.unit
    async def test_same_value_is_allowed(self, fleet, courier_user, courier_motorcycle) -> None:
        motorcycle = await fleet.report_mileage(courier_motorcycle.id, 15000, reported_by=courier_user)
        assert motorcycle.current_mileage == 15000

    @pytest.mark.unit
    async def test_decrease_is_rejected(self, fleet, db_session, courier_user, courier_motorcycle) -> None:
        with pytest.raises(MileageDecreaseError) as exc_info:
            await fleet.report_mileage(courier_motorcycle.id, 14999, reported_by=courier_user)

        assert exc_info.value.details["current_mileage"] == 15000
        assert exc_info.value.details["new_mileage"] == 14999
        assert (await db_session.execute(select(MileageReport))).scalars().all() == []

    @pytest.mark.unit
    async def test_admin_report_has_no_courier(self, fleet, db_session, admin_user, motorcycle_factory) -> None:
        motorcycle = await motorcycle_factory(current_mileage=100)

        await fleet.report_mileage(motorcycle.id, 200, reported_by=admin_user)

        report = (await db_session.execute(select(MileageReport))).scalar_one()
        assert report.courier_id is None
        assert report.reported_by_user_id == admin_user.id


# ============================================================================
# ניהול צי: אופנועים
# ============================================================================


class TestMotorcycleAdministration:

    @pytest.mark.unit
    async def test_create_motorcycle(self, fleet, sample_courier, client_factory) -> None:
        client = await client_factory()

        motorcycle = await fleet.create_motorcycle(
            license_plate=" 555-55-555 ",
            type=MotorcycleType.ELECTRIC,
            current_mileage=1200,
            insurance_type=InsuranceType.ANY_DRIVER,
            assigned_courier_id=sample_courier.id,
            assigned_client_id=client.id,
        )

        assert motorcycle.id is not None
        assert motorcycle.license_plate == "555-55-555"
        assert motorcycle.current_mileage == 1200
        assert motorcycle.is_active is True
        assert motorcycle.assigned_courier_id == sample_courier.id
        assert motorcycle.assigned_client_id == client.id

    @pytest.mark.unit
    async def test_create_rejects_taken_plate(self, fleet, courier_motorcycle) -> None:
        with pytest.raises(LicensePlateTakenError) as exc_info:
            await fleet.create_motorcycle("123-45-678", MotorcycleType.MOTORCYCLE_250)

        assert exc_info.value.status_code == 409
        assert exc_info.value.details == {"license_plate": "123-45-678"}

    @pytest.mark.unit
    async def test_create_rejects_blank_plate(self, fleet) -> None:
        with pytest.raises(ValidationException):
            await fleet.create_motorcycle("   ", MotorcycleType.MOTORCYCLE_125)

    @pytest.mark.unit
    async def test_create_with_unknown_courier(self, fleet) -> None:
        with pytest.raises(CourierNotFoundError):
            await fleet.create_motorcycle("777", MotorcycleType.MOTORCYCLE_125, assigned_courier_id=999)

    @pytest.mark.unit
    async def test_plate_availability_excludes_self(self, fleet, courier_motorcycle) -> None:
        assert await fleet.is_license_plate_available("123-45-678") is False
        assert await fleet.is_license_plate_available("123-45-678", exclude_id=courier_motorcycle.id) is True
        assert await fleet.is_license_plate_available("000-00-000") is True

    @pytest.mark.unit
    async def test_update_changes_only_given_fields(self, fleet, courier_motorcycle) -> None:
        expiry = datetime(2027, 1, 31, 12, 0, tzinfo=timezone(timedelta(hours=2)))

        motorcycle = await fleet.update_motorcycle(
            courier_motorcycle.id,
            license_plate="123-45-999",
            license_expiry_date=expiry,
        )

        assert motorcycle.license_plate == "123-45-999"
        assert motorcycle.license_expiry_date == datetime(2027, 1, 31, 10, 0)
        assert motorcycle.type == MotorcycleType.MOTORCYCLE_125
        assert motorcycle.current_mileage == 15000

    @pytest.mark.unit
    async def test_update_to_other_motorcycles_plate(
        self, fleet, courier_motorcycle, motorcycle_factory
    ) -> None:
        other = await motorcycle_factory(license_plate="OTHER-1")

        with pytest.raises(LicensePlateTakenError):
            await fleet.update_motorcycle(other.id, license_plate="123-45-678")

        # אותו מספר רישוי של האופנוע עצמו אינו התנגשות
        same = await fleet.update_motorcycle(courier_motorcycle.id, license_plate="123-45-678")
        assert same.license_plate == "123-45-678"

    @pytest.mark.unit
    async def test_assign_keeps_omitted_side(
        self, fleet, sample_courier, courier_factory, client_factory, motorcycle_factory
    ) -> None:
        client = await client_factory()
        motorcycle = await motorcycle_factory(assigned_courier_id=sample_courier.id)

        motorcycle = await fleet.assign_motorcycle(motorcycle.id, client_id=client.id)
        assert motorcycle.assigned_courier_id == sample_courier.id
        assert motorcycle.assigned_client_id == client.id

        other = await courier_factory(name="שליח שני")
        motorcycle = await fleet.assign_motorcycle(motorcycle.id, courier_id=other.id)
        assert motorcycle.assigned_courier_id == other.id
        assert motorcycle.assigned_client_id == client.id

    @pytest.mark.unit
    async def test_assign_unknown_client(self, fleet, courier_motorcycle) -> None:
        with pytest.raises(ClientNotFoundError):
            await fleet.assign_motorcycle(courier_motorcycle.id, client_id=424242)

    @pytest.mark.unit
    async def test_unassign_clears_both(self, fleet, courier_motorcycle, client_factory) -> None:
        client = await client_factory()
        await fleet.assign_motorcycle(courier_motorcycle.id, client_id=client.id)

        motorcycle = await fleet.unassign_motorcycle(courier_motorcycle.id)

        assert motorcycle.assigned_courier_id is None
        assert motorcycle.assigned_client_id is None

    @pytest.mark.unit
    async def test_record_maintenance_moves_mileage_forward(
        self, fleet, db_session, courier_motorcycle
    ) -> None:
        motorcycle = await fleet.record_maintenance(
            courier_motorcycle.id, MaintenanceType.LARGE, 16000, notes="החלפת שרשרת"
        )

        assert motorcycle.current_mileage == 16000
        record = (await db_session.execute(select(MaintenanceHistory))).scalar_one()
        assert record.maintenance_type == MaintenanceType.LARGE
        assert record.mileage_at_maintenance == 16000
        assert record.notes == "החלפת שרשרת"

    @pytest.mark.unit
    async def test_record_older_maintenance_keeps_mileage(self, fleet, courier_motorcycle) -> None:
        motorcycle = await fleet.record_maintenance(courier_motorcycle.id, MaintenanceType.SMALL, 12000)

        assert motorcycle.current_mileage == 15000
        # הטיפול שנרשם משפיע על חישוב הטיפול הבא
        history = await fleet.get_maintenance_history(courier_motorcycle.id)
        assert [h.mileage_at_maintenance for h in history] == [12000]

    @pytest.mark.unit
    async def test_deactivate_and_activate(self, fleet, courier_motorcycle) -> None:
        assert (await fleet.deactivate(courier_motorcycle.id)).is_active is False
        assert (await fleet.activate(courier_motorcycle.id)).is_active is True

    @pytest.mark.unit
    async def test_unknown_motorcycle(self, fleet) -> None:
        with pytest.raises(MotorcycleNotFoundError):
            await fleet.deactivate(9999)


# ============================================================================
# ניהול צי: שליחים ולקוחות
# ============================================================================


class TestCourierService:

    @pytest.mark.unit
    async def test_create_update_and_deactivate(self, couriers) -> None:
        courier = await couriers.create("משה לוי")
        assert courier.is_active is True

        courier = await couriers.update(courier.id, name="משה לוי-כהן")
        assert courier.name == "משה לוי-כהן"

        courier = await couriers.deactivate(courier.id)
        assert courier.is_active is False
        assert [c.id for c in await couriers.find_all(is_active=False)] == [courier.id]

    @pytest.mark.unit
    async def test_unknown_courier(self, couriers) -> None:
        with pytest.raises(CourierNotFoundError):
            await couriers.update(9999, name="אף אחד")

    @pytest.mark.unit
    async def test_stats_sum_distance_per_motorcycle(
        self, couriers, courier_user, sample_courier, motorcycle_factory, report_factory
    ) -> None:
        start = utc_now() - timedelta(days=10)
        first = await motorcycle_factory(assigned_courier_id=sample_courier.id)
        second = await motorcycle_factory(assigned_courier_id=sample_courier.id)
        for motorcycle_id, mileage, day in [
            (first.id, 1000, 1), (first.id, 1500, 5),
            (second.id, 20000, 2), (second.id, 20300, 6),
        ]:
            await report_factory(
                motorcycle_id, mileage, start + timedelta(days=day),
                reported_by_user_id=courier_user.id, courier_id=sample_courier.id,
            )
        # מחוץ לטווח
        await report_factory(
            first.id, 900, start - timedelta(days=1),
            reported_by_user_id=courier_user.id, courier_id=sample_courier.id,
        )

        stats = await couriers.get_stats(sample_courier.id, start, start + timedelta(days=10))

        assert stats["total_mileage"] == 800
        assert stats["average_daily_mileage"] == 80.0
        assert stats["total_reports"] == 4
        assert stats["motorcycle_count"] == 2

    @pytest.mark.unit
    async def test_stats_reject_reversed_period(self, couriers, sample_courier) -> None:
        now = utc_now()
        with pytest.raises(ValidationException):
            await couriers.get_stats(sample_courier.id, now, now - timedelta(days=1))


class TestClientService:

    @pytest.mark.unit
    async def test_create_update_and_activate(self, clients) -> None:
        client = await clients.create("משלוחים מהירים בע\"מ")
        client = await clients.update(client.id, name="משלוחים מהירים")
        assert client.name == "משלוחים מהירים"

        assert (await clients.deactivate(client.id)).is_active is False
        assert (await clients.activate(client.id)).is_active is True

    @pytest.mark.unit
    async def test_unknown_client(self, clients) -> None:
        with pytest.raises(ClientNotFoundError):
            await clients.get_stats(9999, utc_now() - timedelta(days=1), utc_now())

    @pytest.mark.unit
    async def test_fleet_overview(self, clients, fleet, client_factory) -> None:
        client = await client_factory()
        soon = utc_now() + timedelta(days=10)
        await fleet.create_motorcycle(
            "C-1", MotorcycleType.MOTORCYCLE_125,
            license_expiry_date=soon, assigned_client_id=client.id,
        )
        await fleet.create_motorcycle(
            "C-2", MotorcycleType.ELECTRIC,
            insurance_expiry_date=utc_now() + timedelta(days=90), assigned_client_id=client.id,
        )
        retired = await fleet.create_motorcycle("C-3", MotorcycleType.ELECTRIC, assigned_client_id=client.id)
        await fleet.deactivate(retired.id)

        overview = await clients.get_fleet_overview(client.id)

        assert overview["total_motorcycles"] == 2
        assert overview["by_type"] == {"MOTORCYCLE_125": 1, "ELECTRIC": 1}
        assert overview["expiring_licenses"] == 1
        assert overview["expiring_insurance"] == 0

        with_inactive = await clients.get_fleet_overview(client.id, include_inactive=True)
        assert with_inactive["total_motorcycles"] == 3
        assert with_inactive["active_motorcycles"] == 2

    @pytest.mark.unit
    async def test_stats(
        self, clients, fleet, client_factory, courier_user, motorcycle_factory, report_factory
    ) -> None:
        client = await client_factory()
        start = utc_now() - timedelta(days=7)
        leased = await motorcycle_factory(assigned_client_id=client.id, current_mileage=5000)
        await motorcycle_factory(assigned_client_id=client.id)
        await report_factory(leased.id, 5000, start + timedelta(days=1), reported_by_user_id=courier_user.id)
        await report_factory(leased.id, 5600, start + timedelta(days=3), reported_by_user_id=courier_user.id)
        await fleet.record_maintenance(leased.id, MaintenanceType.SMALL, 5600)

        stats = await clients.get_stats(client.id, start, utc_now() + timedelta(minutes=1))

        assert stats["total_mileage"] == 600
        assert stats["average_mileage_per_motorcycle"] == 300.0
        assert stats["maintenance_count"] == 1
        assert stats["motorcycle_count"] == 2

    @pytest.mark.unit
    async def test_stats_without_motorcycles(self, clients, client_factory) -> None:
        client = await client_factory()

        stats = await clients.get_stats(client.id, utc_now() - timedelta(days=1), utc_now())

        assert stats["total_mileage"] == 0
        assert stats["average_mileage_per_motorcycle"] == 0.0
        assert stats["motorcycle_count"] == 0


class TestDistanceCovered:

    @pytest.mark.unit
    def test_empty(self) -> None:
        assert distance_covered([]) == 0

    @pytest.mark.unit
    def test_single_reading_covers_nothing(self) -> None:
        assert distance_covered([MileageReport(motorcycle_id=1, mileage=500)]) == 0


class TestUserService:

    @pytest.mark.unit
    async def test_registers_new_sender_as_courier(self, users, db_session) -> None:
        user = await users.get_or_create_by_phone("972521234567")

        assert user.phone_number == "+972521234567"
        assert user.role == UserRole.COURIER
        assert user.is_active is True

    @pytest.mark.unit
    async def test_finds_existing_user_across_formats(self, users, courier_user) -> None:
        """אותו מספר בפורמט מקומי ובפורמט Cloud API"""
        assert (await users.get_or_create_by_phone("050-1111111")).id == courier_user.id
        assert (await users.get_or_create_by_phone("972501111111")).id == courier_user.id

        count = len((await users.db.execute(select(User))).scalars().all())
        assert count == 1

    @pytest.mark.unit
    async def test_invalid_phone_rejected(self, users) -> None:
        with pytest.raises(ValidationException):
            await users.get_or_create_by_phone("12")

    @pytest.mark.unit
    async def test_display_name_prefers_courier_record(self, users, courier_user, user_factory) -> None:
        assert await users.get_display_name(courier_user) == "דני כהן"
        assert await users.get_display_name(await user_factory(name="Moshe")) == "Moshe"
        assert await users.get_display_name(await user_factory(name=None)) == "משתמש"
