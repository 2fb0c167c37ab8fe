"""
Repository usati dal motore di prenotazione.

Il BookingManager dipende solo dalle interfacce (Protocol) qui sotto: in
produzione riceve le implementazioni SQL legate alla sessione della
transazione, nei test può ricevere dei fake in memoria.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, ContextManager, Iterable, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload, selectinload

from .models import Appointment, AppointmentDevice, AppointmentStatus, Customer, Device
from .overlap import overlap_clause


# =========================
# Interfacce
# =========================
class TransactionScope(Protocol):
    """Qualcosa che apre una transazione: `Database` o un fake."""

    def session(self) -> ContextManager[Any]: ...


class DeviceLookup(Protocol):
    def find_by_name(self, tenant_id: str, name: str) -> Device | None: ...

    def lock_by_names(self, tenant_id: str, names: Iterable[str]) -> dict[str, Device]: ...


class AppointmentStore(Protocol):
    def get(self, tenant_id: str, appointment_id: str) -> Appointment | None: ...

    def overlapping_slots(
        self,
        tenant_id: str,
        device_name: str,
        start: datetime,
        end: datetime,
        exclude_appointment_id: str | None = None,
    ) -> list[AppointmentDevice]: ...

    def customer_overlap(
        self,
        tenant_id: str,
        customer_id: str,
        start: datetime,
        end: datetime,
        exclude_appointment_id: str | None = None,
    ) -> Appointment | None: ...

    def add(self, appointment: Appointment) -> None: ...

    def replace_slots(self, appointment: Appointment, slots: list[AppointmentDevice]) -> None: ...


class CustomerLookup(Protocol):
    def get(self, tenant_id: str, customer_id: str, for_update: bool = False) -> Customer | None: ...


@dataclass
class Repositories:
    devices: DeviceLookup
    appointments: AppointmentStore
    customers: CustomerLookup


# factory: dalla sessione della transazione ai repository
RepositoryFactory = Callable[[Session], Repositories]


# =========================
# Implementazioni SQL
# =========================
class SqlDeviceRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def find_by_name(self, tenant_id: str, name: str) -> Device | None:
        q = select(Device).where(Device.company_id == tenant_id, Device.name == name)
        return self.session.scalars(q).first()

    def lock_by_names(self, tenant_id: str, names: Iterable[str]) -> dict[str, Device]:
        """
        SELECT ... FOR UPDATE sulle righe dispositivo, in ordine di nome
        (ordine fisso = niente deadlock tra due prenotazioni incrociate).
        """
        wanted = sorted(set(names))
        if not wanted:
            return {}
        q = (
            select(Device)
            .where(Device.company_id == tenant_id, Device.name.in_(wanted))
            .order_by(Device.name.asc())
            .with_for_update()
        )
        return {d.name: d for d in self.session.scalars(q)}

    def get(self, tenant_id: str, device_id: str) -> Device | None:
        q = select(Device).where(Device.company_id == tenant_id, Device.id == device_id)
        return self.session.scalars(q).first()


class SqlAppointmentRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, tenant_id: str, appointment_id: str) -> Appointment | None:
        q = (
            select(Appointment)
            .where(Appointment.id == appointment_id, Appointment.company_id == tenant_id)
            .options(selectinload(Appointment.devices), joinedload(Appointment.customer))
        )
        return self.session.scalars(q).first()

    def overlapping_slots(
        self,
        tenant_id: str,
        device_name: str,
        start: datetime,
        end: datetime,
        exclude_appointment_id: str | None = None,
    ) -> list[AppointmentDevice]:
        q = (
            select(AppointmentDevice)
            .join(Appointment, Appointment.id == AppointmentDevice.appointment_id)
            .where(
                AppointmentDevice.device_name == device_name,
                Appointment.company_id == tenant_id,
                Appointment.status != AppointmentStatus.CANCELLED,
                overlap_clause(AppointmentDevice.start_time, AppointmentDevice.end_time, start, end),
            )
            .options(joinedload(AppointmentDevice.appointment).joinedload(Appointment.customer))
            .order_by(AppointmentDevice.start_time.asc())
        )
        if exclude_appointment_id:
            q = q.where(Appointment.id != exclude_appointment_id)
        return list(self.session.scalars(q).unique())

    def customer_overlap(
        self,
        tenant_id: str,
        customer_id: str,
        start: datetime,
        end: datetime,
        exclude_appointment_id: str | None = None,
    ) -> Appointment | None:
        q = (
            select(Appointment)
            .where(
                Appointment.company_id == tenant_id,
                Appointment.customer_id == customer_id,
                Appointment.status != AppointmentStatus.CANCELLED,
                overlap_clause(Appointment.start_time, Appointment.end_time, start, end),
            )
            .options(joinedload(Appointment.customer))
            .order_by(Appointment.start_time.asc())
            .limit(1)
        )
        if exclude_appointment_id:
            q = q.where(Appointment.id != exclude_appointment_id)
        return self.session.scalars(q).first()

    def add(self, appointment: Appointment) -> None:
        self.session.add(appointment)
        self.session.flush()

    def replace_slots(self, appointment: Appointment, slots: list[AppointmentDevice]) -> None:
        # delete-orphan: svuotare la lista elimina le righe vecchie
        appointment.devices.clear()
        self.session.flush()
        appointment.devices.extend(slots)
        self.session.flush()


class SqlCustomerRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, tenant_id: str, customer_id: str, for_update: bool = False) -> Customer | None:
        q = select(Customer).where(Customer.id == customer_id, Customer.company_id == tenant_id)
        if for_update:
            q = q.with_for_update()
        return self.session.scalars(q).first()


def sql_repositories(session: Session) -> Repositories:
    return Repositories(
        devices=SqlDeviceRepository(session),
        appointments=SqlAppointmentRepository(session),
        customers=SqlCustomerRepository(session),
    )
