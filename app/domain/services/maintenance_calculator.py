"""
Maintenance Calculator - next service milestone per motorcycle type

125cc: every 4,000 km, alternating SMALL / LARGE.
250cc: every 5,000 km, SMALL, SMALL, LARGE.
Electric: no scheduled maintenance.
"""
import math
from dataclasses import dataclass
from typing import Iterable, Optional

from app.db.models.maintenance_history import MaintenanceHistory, MaintenanceType
from app.db.models.motorcycle import MotorcycleType


@dataclass(frozen=True)
class MaintenanceCycle:
    interval_km: int
    pattern: tuple[MaintenanceType, ...]


MAINTENANCE_CYCLES: dict[MotorcycleType, MaintenanceCycle] = {
    MotorcycleType.MOTORCYCLE_125: MaintenanceCycle(
        interval_km=4000,
        pattern=(MaintenanceType.SMALL, MaintenanceType.LARGE),
    ),
    MotorcycleType.MOTORCYCLE_250: MaintenanceCycle(
        interval_km=5000,
        pattern=(MaintenanceType.SMALL, MaintenanceType.SMALL, MaintenanceType.LARGE),
    ),
}


@dataclass
class MaintenanceCalculation:
    type: MaintenanceType
    next_mileage: Optional[int]
    due_in: Optional[int]
    interval_km: int
    cycle_position: int


def calculate_next_maintenance(
    motorcycle_type: MotorcycleType,
    current_mileage: int,
    history: Iterable[MaintenanceHistory] = (),
) -> MaintenanceCalculation:
    """
    Next maintenance for a motorcycle.

    The position in the cycle is the number of past real services (NONE
    records excluded) modulo the pattern length. The next milestone is the
    next multiple of the interval strictly above the current mileage.
    """
    motorcycle_type = MotorcycleType(motorcycle_type)
    cycle = MAINTENANCE_CYCLES.get(motorcycle_type)

    if cycle is None:
        # חשמלי: אין טיפולים מתוכננים
        return MaintenanceCalculation(
            type=MaintenanceType.NONE,
            next_mileage=None,
            due_in=None,
            interval_km=0,
            cycle_position=0,
        )

    performed = [
        record for record in history
        if MaintenanceType(record.maintenance_type) != MaintenanceType.NONE
    ]
    cycle_position = len(performed) % len(cycle.pattern)

    next_mileage = math.ceil(current_mileage / cycle.interval_km) * cycle.interval_km
    if next_mileage <= current_mileage:
        next_mileage += cycle.interval_km

    return MaintenanceCalculation(
        type=cycle.pattern[cycle_position],
        next_mileage=next_mileage,
        due_in=next_mileage - current_mileage,
        interval_km=cycle.interval_km,
        cycle_position=cycle_position,
    )
