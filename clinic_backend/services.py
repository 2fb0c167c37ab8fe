from __future__ import annotations

from dataclasses import dataclass

from .agenda import AppointmentQueries
from .auth_service import AuthService
from .booking import BookingManager
from .config import Settings
from .customers import CustomerService
from .db import Database
from .devices import DeviceRegistry
from .lifecycle import AppointmentLifecycle


# =========================
# Wiring
# =========================
@dataclass
class Services:
    """Servizi costruiti una volta all'avvio e passati agli handler."""

    settings: Settings
    db: Database
    auth: AuthService
    devices: DeviceRegistry
    customers: CustomerService
    booking: BookingManager
    lifecycle: AppointmentLifecycle
    agenda: AppointmentQueries


def build_services(settings: Settings, db: Database | None = None) -> Services:
    db = db or Database(settings.database_url, echo=settings.db_echo)
    return Services(
        settings=settings,
        db=db,
        auth=AuthService(db),
        devices=DeviceRegistry(db),
        customers=CustomerService(db),
        booking=BookingManager(db),
        lifecycle=AppointmentLifecycle(db),
        agenda=AppointmentQueries(db),
    )


def init_db(services: Services) -> None:
    """Crea le tabelle se non esistono."""
    services.db.create_all()
