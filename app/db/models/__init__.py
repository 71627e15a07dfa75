"""
Database Models
"""
from app.db.models.user import User
from app.db.models.client import Client
from app.db.models.courier import Courier
from app.db.models.motorcycle import Motorcycle
from app.db.models.maintenance_history import MaintenanceHistory
from app.db.models.mileage_report import MileageReport
from app.db.models.conversation import Conversation
from app.db.models.webhook_event import WebhookEvent

__all__ = [
    "User",
    "Client",
    "Courier",
    "Motorcycle",
    "MaintenanceHistory",
    "MileageReport",
    "Conversation",
    "WebhookEvent",
]
