from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import delete, func, select, update

from .db import Database
from .errors import ConflictError, NotFoundError, ValidationError
from .models import Appointment, AppointmentDevice, AppointmentStatus, Device, utcnow
from .repositories import SqlDeviceRepository

logger = logging.getLogger(__name__)


def device_flat(d: Device) -> dict[str, Any]:
    return {"id": d.id, "name": d.name, "capacity": d.capacity}


def _check_capacity(capacity: int) -> int:
    if capacity is None or int(capacity) < 1:
        raise ValidationError("Capacità non valida", ["La capacità deve essere un intero positivo"])
    return int(capacity)


def _peak_bookings(s, d: Device) -> int:
    """Massimo di slot futuri non annullati contemporanei sul dispositivo (intervalli [start, end))."""
    rows = s.execute(
        select(AppointmentDevice.start_time, AppointmentDevice.end_time)
        .join(Appointment, Appointment.id == AppointmentDevice.appointment_id)
        .where(
            AppointmentDevice.device_id == d.id,
            Appointment.status != AppointmentStatus.CANCELLED,
            AppointmentDevice.end_time > utcnow(),
        )
    ).all()

    # a parità di istante la fine (-1) viene prima dell'inizio (+1): estremi che si toccano non contano
    events = sorted([(start, 1) for start, _ in rows] + [(end, -1) for _, end in rows])
    peak = current = 0
    for _, delta in events:
        current += delta
        peak = max(peak, current)
    return peak


class DeviceRegistry:
    """
    Dispositivi prenotabili del tenant.
    - lookup per nome (case-sensitive): assente = None, mai errore
    - cancellazione fisica con cascata sugli slot e pulizia appuntamenti orfani
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    # =========================
    # Lookup
    # =========================
    def find_by_name(self, tenant_id: str, name: str) -> dict[str, Any] | None:
        with self.db.session() as s:
            d = SqlDeviceRepository(s).find_by_name(tenant_id, name)
            return device_flat(d) if d else None

    def capacity(self, tenant_id: str, name: str) -> int | None:
        found = self.find_by_name(tenant_id, name)
        return found["capacity"] if found else None

    def list_devices(self, tenant_id: str) -> list[dict[str, Any]]:
        with self.db.session() as s:
            rows = s.scalars(select(Device).where(Device.company_id == tenant_id).order_by(Device.name.asc()))
            return [device_flat(d) for d in rows]

    def get_device(self, tenant_id: str, device_id: str) -> dict[str, Any]:
        with self.db.session() as s:
            d = SqlDeviceRepository(s).get(tenant_id, device_id)
            if d is None:
                raise NotFoundError("Dispositivo")
            return device_flat(d)

    # =========================
    # CRUD (solo admin)
    # =========================
    def create_device(self, tenant_id: str, name: str, capacity: int = 1) -> dict[str, Any]:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Il nome del dispositivo è obbligatorio")
        capacity = _check_capacity(capacity)

        with self.db.session() as s:
            if SqlDeviceRepository(s).find_by_name(tenant_id, name) is not None:
                raise ConflictError("Esiste già un dispositivo con questo nome")

            d = Device(company_id=tenant_id, name=name, capacity=capacity)
            s.add(d)
            s.flush()
            logger.info(f"Dispositivo '{name}' creato (capacità {capacity}) per tenant {tenant_id}")
            return device_flat(d)

    def update_device(self, tenant_id: str, device_id: str, capacity: int) -> dict[str, Any]:
        capacity = _check_capacity(capacity)
        with self.db.session() as s:
            d = SqlDeviceRepository(s).get(tenant_id, device_id)
            if d is None:
                raise NotFoundError("Dispositivo")
            d.capacity = capacity
            s.flush()

            peak = _peak_bookings(s, d)
            if peak > capacity:
                logger.warning(
                    f"Dispositivo '{d.name}' (tenant {tenant_id}): capacità ridotta a {capacity}, "
                    f"ma ci sono già {peak} prenotazioni contemporanee"
                )
            return device_flat(d)

    def delete_device(self, tenant_id: str, device_id: str) -> int:
        """
        Cancellazione fisica:
        - elimina gli slot che usano il dispositivo
        - elimina il dispositivo
        - elimina gli appuntamenti rimasti senza slot
        - ricalcola inizio/fine degli appuntamenti che hanno ancora slot
        Ritorna il numero di appuntamenti orfani eliminati.
        """
        with self.db.session() as s:
            d = s.scalars(
                select(Device).where(Device.company_id == tenant_id, Device.id == device_id).with_for_update()
            ).first()
            if d is None:
                raise NotFoundError("Dispositivo")

            affected = set(
                s.scalars(
                    select(AppointmentDevice.appointment_id)
                    .join(Appointment, Appointment.id == AppointmentDevice.appointment_id)
                    .where(AppointmentDevice.device_id == d.id, Appointment.company_id == tenant_id)
                )
            )

            s.execute(delete(AppointmentDevice).where(AppointmentDevice.device_id == d.id))
            s.delete(d)
            s.flush()

            removed = 0
            for appointment_id in sorted(affected):
                remaining, start, end = s.execute(
                    select(
                        func.count(AppointmentDevice.id),
                        func.min(AppointmentDevice.start_time),
                        func.max(AppointmentDevice.end_time),
                    ).where(AppointmentDevice.appointment_id == appointment_id)
                ).one()
                if not remaining:
                    s.execute(delete(Appointment).where(Appointment.id == appointment_id))
                    removed += 1
                else:
                    # envelope ricalcolato sugli slot rimasti
                    s.execute(
                        update(Appointment)
                        .where(Appointment.id == appointment_id)
                        .values(start_time=start, end_time=end, updated_at=utcnow())
                    )

            logger.info(
                f"Dispositivo '{d.name}' eliminato (tenant {tenant_id}): "
                f"{len(affected)} appuntamenti toccati, {removed} orfani rimossi"
            )
            return removed
