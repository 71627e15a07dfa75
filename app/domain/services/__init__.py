"""
Domain Services
"""
from app.domain.services.client_service import ClientService
from app.domain.services.courier_service import CourierService
from app.domain.services.fleet_service import FleetService
from app.domain.services.user_service import UserService
from app.domain.services.maintenance_calculator import calculate_next_maintenance

__all__ = [
    "ClientService",
    "CourierService",
    "FleetService",
    "UserService",
    "calculate_next_maintenance",
]
