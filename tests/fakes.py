"""Repository in memoria: stesso contratto dei Protocol di clinic_backend.repositories."""
from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Iterable, Iterator

from clinic_backend.models import (
    Appointment,
    AppointmentDevice,
    AppointmentStatus,
    Customer,
    Device,
    new_uuid,
    utcnow,
)
from clinic_backend.overlap import overlaps
from clinic_backend.repositories import Repositories


class FakeSession:
    def __init__(self, store: "InMemoryStore") -> None:
        self.store = store
        self.pending: list[Appointment] = []

    def flush(self) -> None:
        pass


class InMemoryStore:
    """
    Le scritture restano in sospeso fino all'uscita senza errori dal blocco
    `session()`: un'eccezione le scarta, come un rollback.
    """

    def __init__(self) -> None:
        self.devices: list[Device] = []
        self.customers: list[Customer] = []
        self.appointments: list[Appointment] = []

    @contextmanager
    def session(self) -> Iterator[FakeSession]:
        s = FakeSession(self)
        yield s
        self.appointments.extend(s.pending)

    def add_device(self, tenant_id: str, name: str, capacity: int = 1) -> Device:
        d = Device(id=new_uuid(), company_id=tenant_id, name=name, capacity=capacity)
        self.devices.append(d)
        return d

    def add_customer(self, tenant_id: str, full_name: str) -> Customer:
        c = Customer(id=new_uuid(), company_id=tenant_id, full_name=full_name, is_active=True)
        self.customers.append(c)
        return c

    def repositories(self, session: FakeSession) -> Repositories:
        return Repositories(
            devices=FakeDeviceRepository(self),
            appointments=FakeAppointmentRepository(self, session),
            customers=FakeCustomerRepository(self),
        )


class FakeDeviceRepository:
    def __init__(self, store: InMemoryStore) -> None:
        self.store = store

    def find_by_name(self, tenant_id: str, name: str) -> Device | None:
        return next((d for d in self.store.devices if d.company_id == tenant_id and d.name == name), None)

    def lock_by_names(self, tenant_id: str, names: Iterable[str]) -> dict[str, Device]:
        found = {}
        for name in sorted(set(names)):
            d = self.find_by_name(tenant_id, name)
            if d is not None:
                found[name] = d
        return found


class FakeAppointmentRepository:
    def __init__(self, store: InMemoryStore, session: FakeSession) -> None:
        self.store = store
        self.session = session

    def _active(self, tenant_id: str, exclude_appointment_id: str | None) -> list[Appointment]:
        return [
            a
            for a in self.store.appointments
            if a.company_id == tenant_id
            and a.status != AppointmentStatus.CANCELLED
            and a.id != exclude_appointment_id
        ]

    def get(self, tenant_id: str, appointment_id: str) -> Appointment | None:
        return next(
            (a for a in self.store.appointments if a.company_id == tenant_id and a.id == appointment_id), None
        )

    def overlapping_slots(
        self,
        tenant_id: str,
        device_name: str,
        start: datetime,
        end: datetime,
        exclude_appointment_id: str | None = None,
    ) -> list[AppointmentDevice]:
        found = [
            slot
            for a in self._active(tenant_id, exclude_appointment_id)
            for slot in a.devices
            if slot.device_name == device_name and overlaps(start, end, slot.start_time, slot.end_time)
        ]
        return sorted(found, key=lambda x: x.start_time)

    def customer_overlap(
        self,
        tenant_id: str,
        customer_id: str,
        start: datetime,
        end: datetime,
        exclude_appointment_id: str | None = None,
    ) -> Appointment | None:
        found = [
            a
            for a in self._active(tenant_id, exclude_appointment_id)
            if a.customer_id == customer_id and overlaps(start, end, a.start_time, a.end_time)
        ]
        return min(found, key=lambda a: a.start_time) if found else None

    @staticmethod
    def _stamp(slots: Iterable[AppointmentDevice]) -> None:
        for slot in slots:
            slot.id = slot.id or new_uuid()

    def add(self, appointment: Appointment) -> None:
        appointment.id = new_uuid()
        appointment.created_at = appointment.updated_at = utcnow()
        self._stamp(appointment.devices)
        self.session.pending.append(appointment)

    def replace_slots(self, appointment: Appointment, slots: list[AppointmentDevice]) -> None:
        self._stamp(slots)
        appointment.devices = list(slots)


class FakeCustomerRepository:
    def __init__(self, store: InMemoryStore) -> None:
        self.store = store

    def get(self, tenant_id: str, customer_id: str, for_update: bool = False) -> Customer | None:
        return next(
            (c for c in self.store.customers if c.company_id == tenant_id and c.id == customer_id), None
        )
