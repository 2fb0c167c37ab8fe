"""
Motore di prenotazione dispositivi.

Regole:
- un dispositivo non può avere più slot contemporanei (non annullati) della sua capacità
- un cliente non può avere due appuntamenti (non annullati) con envelope sovrapposti
- controllo e scrittura avvengono nella stessa transazione, con lock sulle righe
  dispositivo/cliente: nessuna scrittura bypassa il controllo
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Iterable

from .agenda import appointment_flat
from .errors import ConflictError, NotFoundError, ValidationError
from .models import Appointment, AppointmentDevice, AppointmentStatus, Device
from .overlap import as_utc_naive, envelope, iso, overlaps
from .repositories import Repositories, RepositoryFactory, TransactionScope, sql_repositories

logger = logging.getLogger(__name__)

REASON_CAPACITY = "capacity"
REASON_DEVICE_NOT_FOUND = "device_not_found"
REASON_CUSTOMER_OVERLAP = "customer_overlap"

LOCKED_STATUSES = {AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED}


# =========================
# Helper / DTO
# =========================
@dataclass(frozen=True)
class SlotRequest:
    device_name: str
    start_time: datetime | None
    end_time: datetime | None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SlotRequest":
        return cls(
            device_name=data.get("device_name") or "",
            start_time=data.get("start_time"),
            end_time=data.get("end_time"),
        )


@dataclass(frozen=True)
class Conflict:
    reason: str
    message: str
    device_name: str | None = None
    conflicting_appointment_id: str | None = None
    customer_name: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    device_capacity: int | None = None
    current_bookings: int | None = None

    def as_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["start_time"] = iso(self.start_time)
        out["end_time"] = iso(self.end_time)
        return out


@dataclass(frozen=True)
class AvailabilityResult:
    is_available: bool
    conflicts: list[Conflict] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {"is_available": self.is_available, "conflicts": [c.as_dict() for c in self.conflicts]}


def _fmt(value: datetime) -> str:
    return value.strftime("%d/%m/%Y %H:%M")


def _device_not_found(name: str) -> Conflict:
    return Conflict(
        reason=REASON_DEVICE_NOT_FOUND,
        message=f"Il dispositivo \"{name}\" non esiste. Aggiungilo prima nella pagina Dispositivi.",
        device_name=name,
    )


def _capacity_conflict(device: Device, example: AppointmentDevice | None, current: int) -> Conflict:
    if example is None:
        # collisione solo tra slot della stessa richiesta
        return Conflict(
            reason=REASON_CAPACITY,
            message=f"{device.name}: la richiesta supera la capacità del dispositivo ({current}/{device.capacity})",
            device_name=device.name,
            device_capacity=device.capacity,
            current_bookings=current,
        )

    appointment = example.appointment
    customer_name = appointment.customer.full_name if appointment.customer else None
    return Conflict(
        reason=REASON_CAPACITY,
        message=(
            f"{device.name} è già prenotato per {customer_name or 'un altro cliente'} "
            f"dalle {_fmt(example.start_time)} alle {_fmt(example.end_time)} "
            f"({current}/{device.capacity})"
        ),
        device_name=device.name,
        conflicting_appointment_id=appointment.id,
        customer_name=customer_name,
        start_time=example.start_time,
        end_time=example.end_time,
        device_capacity=device.capacity,
        current_bookings=current,
    )


def _customer_conflict(existing: Appointment) -> Conflict:
    customer_name = existing.customer.full_name if existing.customer else None
    who = f"Il cliente {customer_name}" if customer_name else "Il cliente"
    return Conflict(
        reason=REASON_CUSTOMER_OVERLAP,
        message=(
            f"{who} ha già un appuntamento "
            f"dalle {_fmt(existing.start_time)} alle {_fmt(existing.end_time)}"
        ),
        conflicting_appointment_id=existing.id,
        customer_name=customer_name,
        start_time=existing.start_time,
        end_time=existing.end_time,
    )


def validate_slots(slots: Iterable[SlotRequest]) -> list[SlotRequest]:
    """Controlla i campi obbligatori e normalizza gli orari in UTC naive."""
    items = list(slots or [])
    errors: list[str] = []

    if not items:
        errors.append("Selezionare almeno un dispositivo")

    cleaned: list[SlotRequest] = []
    for slot in items:
        name = (slot.device_name or "").strip()
        if not name:
            errors.append("Il nome del dispositivo è obbligatorio")
        if slot.start_time is None or slot.end_time is None:
            errors.append(f"Il dispositivo {name or '?'} deve avere orario di inizio e di fine")
            continue
        start, end = as_utc_naive(slot.start_time), as_utc_naive(slot.end_time)
        if start >= end:
            errors.append(f"Il dispositivo {name or '?'}: la fine deve essere successiva all'inizio")
            continue
        cleaned.append(SlotRequest(device_name=name, start_time=start, end_time=end))

    if errors:
        raise ValidationError("Dati appuntamento non validi", errors)
    return cleaned


def raise_on_conflicts(conflicts: list[Conflict]) -> None:
    """Dispositivo inesistente -> 404, altrimenti 409. Entrambi portano la lista completa."""
    if not conflicts:
        return
    missing = [c for c in conflicts if c.reason == REASON_DEVICE_NOT_FOUND]
    if missing:
        raise NotFoundError(f"Dispositivo \"{missing[0].device_name}\"", conflicts)
    raise ConflictError(conflicts[0].message, conflicts)


# =========================
# Booking manager
# =========================
class BookingManager:
    """
    Orchestratore delle prenotazioni. Riceve il database (o un fake) e la
    factory dei repository: nessuno stato globale.
    """

    def __init__(self, db: TransactionScope, repositories: RepositoryFactory = sql_repositories) -> None:
        self.db = db
        self.repositories = repositories

    # ---- controlli (sola lettura) ----
    def _device_conflicts(
        self,
        repos: Repositories,
        tenant_id: str,
        slots: list[SlotRequest],
        exclude_appointment_id: str | None = None,
        devices: dict[str, Device] | None = None,
    ) -> list[Conflict]:
        conflicts: list[Conflict] = []
        seen: list[SlotRequest] = []

        for slot in slots:
            if devices is not None:
                device = devices.get(slot.device_name)
            else:
                device = repos.devices.find_by_name(tenant_id, slot.device_name)

            if device is None:
                conflicts.append(_device_not_found(slot.device_name))
                continue

            existing = repos.appointments.overlapping_slots(
                tenant_id, slot.device_name, slot.start_time, slot.end_time, exclude_appointment_id
            )
            # slot precedenti della stessa richiesta sullo stesso dispositivo
            same_request = sum(
                1
                for prev in seen
                if prev.device_name == slot.device_name
                and overlaps(slot.start_time, slot.end_time, prev.start_time, prev.end_time)
            )
            seen.append(slot)

            current = len(existing) + same_request
            if current >= device.capacity:
                conflicts.append(_capacity_conflict(device, existing[0] if existing else None, current))

        return conflicts

    def check_device_conflicts(
        self,
        tenant_id: str,
        slots: Iterable[SlotRequest],
        exclude_appointment_id: str | None = None,
    ) -> list[Conflict]:
        cleaned = validate_slots(slots)
        with self.db.session() as s:
            return self._device_conflicts(self.repositories(s), tenant_id, cleaned, exclude_appointment_id)

    def check_customer_time_conflict(
        self,
        tenant_id: str,
        customer_id: str,
        start: datetime,
        end: datetime,
        exclude_appointment_id: str | None = None,
    ) -> dict[str, Any] | None:
        """Ritorna l'appuntamento esistente del cliente che si sovrappone all'envelope, se c'è."""
        with self.db.session() as s:
            existing = self.repositories(s).appointments.customer_overlap(
                tenant_id, customer_id, as_utc_naive(start), as_utc_naive(end), exclude_appointment_id
            )
            return appointment_flat(existing) if existing else None

    def check_availability(
        self,
        tenant_id: str,
        slots: Iterable[SlotRequest],
        customer_id: str | None = None,
        exclude_appointment_id: str | None = None,
    ) -> AvailabilityResult:
        """Dry-run usato dalla UI prima del submit: non scrive nulla."""
        cleaned = validate_slots(slots)
        with self.db.session() as s:
            repos = self.repositories(s)
            conflicts = self._device_conflicts(repos, tenant_id, cleaned, exclude_appointment_id)

            if customer_id:
                # un solo controllo sull'envelope di tutti gli slot
                start, end = envelope((x.start_time, x.end_time) for x in cleaned)
                existing = repos.appointments.customer_overlap(
                    tenant_id, customer_id, start, end, exclude_appointment_id
                )
                if existing is not None:
                    conflicts.append(_customer_conflict(existing))

        return AvailabilityResult(is_available=not conflicts, conflicts=conflicts)

    # ---- scritture (transazionali) ----
    @staticmethod
    def _build_slots(slots: list[SlotRequest], devices: dict[str, Device]) -> list[AppointmentDevice]:
        return [
            AppointmentDevice(
                device_id=devices[slot.device_name].id,
                device_name=slot.device_name,
                start_time=slot.start_time,
                end_time=slot.end_time,
                sequence=index,
            )
            for index, slot in enumerate(slots, start=1)
        ]

    def create_appointment(
        self,
        tenant_id: str,
        customer_id: str,
        slots: Iterable[SlotRequest],
        notes: str | None = None,
    ) -> dict[str, Any]:
        """
        Use case: Prenotare appuntamento.
        - valida i dati
        - lock su cliente e dispositivi richiesti
        - ricontrolla capacità dispositivi e sovrapposizione cliente
        - inserisce appuntamento + N slot, tutto o niente
        """
        if not customer_id:
            raise ValidationError("Dati appuntamento non validi", ["Il cliente è obbligatorio"])
        cleaned = validate_slots(slots)
        start, end = envelope((x.start_time, x.end_time) for x in cleaned)

        with self.db.session() as s:
            repos = self.repositories(s)

            customer = repos.customers.get(tenant_id, customer_id, for_update=True)
            if customer is None or not customer.is_active:
                raise NotFoundError("Cliente")

            devices = repos.devices.lock_by_names(tenant_id, (x.device_name for x in cleaned))
            conflicts = self._device_conflicts(repos, tenant_id, cleaned, None, devices)

            existing = repos.appointments.customer_overlap(tenant_id, customer.id, start, end)
            if existing is not None:
                conflicts.append(_customer_conflict(existing))

            if conflicts:
                logger.warning(f"Prenotazione rifiutata (tenant {tenant_id}): {conflicts[0].message}")
            raise_on_conflicts(conflicts)

            appointment = Appointment(
                company_id=tenant_id,
                customer_id=customer.id,
                start_time=start,
                end_time=end,
                status=AppointmentStatus.SCHEDULED,
                notes=notes,
            )
            appointment.customer = customer
            appointment.devices = self._build_slots(cleaned, devices)
            repos.appointments.add(appointment)

            logger.info(
                f"Appuntamento {appointment.id} creato per cliente {customer.id} "
                f"({len(cleaned)} slot, {start.isoformat()} - {end.isoformat()})"
            )
            return appointment_flat(appointment)

    def update_appointment(
        self,
        appointment_id: str,
        tenant_id: str,
        customer_id: str | None = None,
        slots: Iterable[SlotRequest] | None = None,
        notes: str | None = None,
    ) -> dict[str, Any] | None:
        """
        Use case: Spostare / modificare appuntamento.
        Ritorna None se l'appuntamento non appartiene al tenant.
        Con nuovi slot: controllo conflitti escludendo se stesso, poi sostituzione completa.
        """
        cleaned = validate_slots(slots) if slots is not None else None

        with self.db.session() as s:
            repos = self.repositories(s)

            appointment = repos.appointments.get(tenant_id, appointment_id)
            if appointment is None:
                return None

            if appointment.status in LOCKED_STATUSES:
                raise ValidationError(
                    f"Impossibile modificare un appuntamento in stato '{appointment.status.value}'"
                )

            customer = appointment.customer
            customer_changed = bool(customer_id) and customer_id != appointment.customer_id
            if customer_changed:
                customer = repos.customers.get(tenant_id, customer_id, for_update=True)
                if customer is None or not customer.is_active:
                    raise NotFoundError("Cliente")

            conflicts: list[Conflict] = []
            devices: dict[str, Device] = {}
            start, end = appointment.start_time, appointment.end_time

            if cleaned is not None:
                start, end = envelope((x.start_time, x.end_time) for x in cleaned)
                devices = repos.devices.lock_by_names(tenant_id, (x.device_name for x in cleaned))
                conflicts.extend(self._device_conflicts(repos, tenant_id, cleaned, appointment.id, devices))

            if cleaned is not None or customer_changed:
                existing = repos.appointments.customer_overlap(
                    tenant_id, customer.id, start, end, appointment.id
                )
                if existing is not None:
                    conflicts.append(_customer_conflict(existing))

            if conflicts:
                logger.warning(f"Modifica appuntamento {appointment.id} rifiutata: {conflicts[0].message}")
            raise_on_conflicts(conflicts)

            if cleaned is not None:
                repos.appointments.replace_slots(appointment, self._build_slots(cleaned, devices))
                appointment.start_time = start
                appointment.end_time = end

            if customer_changed:
                appointment.customer_id = customer.id
                appointment.customer = customer

            if notes is not None:
                appointment.notes = notes

            s.flush()
            logger.info(f"Appuntamento {appointment.id} aggiornato")
            return appointment_flat(appointment)
