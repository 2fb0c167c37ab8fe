from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any

from sqlalchemy import and_, func, select
from sqlalchemy.orm import selectinload, joinedload

from .db import Database
from .errors import NotFoundError, ValidationError
from .models import Appointment, AppointmentDevice, AppointmentStatus, utcnow
from .overlap import as_utc_naive, iso


# =========================
# Helper / DTO
# =========================
def appointment_flat(a: Appointment) -> dict[str, Any]:
    """
    Versione 'flat' (safe fuori sessione): dict serializzabile.
    Va chiamata DENTRO la sessione, evita lazy-load e DetachedInstanceError.
    """
    customer = a.customer
    return {
        "id": a.id,
        "customer_id": a.customer_id,
        "customer_name": customer.full_name if customer else None,
        "customer_phone": customer.phone if customer else None,
        "start_time": iso(a.start_time),
        "end_time": iso(a.end_time),
        "status": a.status.value,
        "notes": a.notes,
        "devices": [
            {
                "id": d.id,
                "device_name": d.device_name,
                "start_time": iso(d.start_time),
                "end_time": iso(d.end_time),
                "sequence": d.sequence,
            }
            for d in a.devices
        ],
        "created_at": iso(a.created_at),
        "updated_at": iso(a.updated_at),
    }


@dataclass(frozen=True)
class AppointmentPage:
    items: list[dict[str, Any]]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit else 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "data": self.items,
            "pagination": {
                "total": self.total,
                "page": self.page,
                "limit": self.limit,
                "total_pages": self.total_pages,
            },
        }


def parse_status(value: str) -> AppointmentStatus:
    try:
        return AppointmentStatus(value)
    except ValueError:
        valid = ", ".join(s.value for s in AppointmentStatus)
        raise ValidationError("Stato non valido", [f"Lo stato deve essere uno di: {valid}"]) from None


# =========================
# Query di lettura
# =========================
class AppointmentQueries:
    """Agenda e liste appuntamenti, sempre filtrate per tenant."""

    def __init__(self, db: Database) -> None:
        self.db = db

    @staticmethod
    def _base():
        return select(Appointment).options(selectinload(Appointment.devices), joinedload(Appointment.customer))

    def get(self, tenant_id: str, appointment_id: str) -> dict[str, Any]:
        with self.db.session() as s:
            a = s.scalars(
                self._base().where(Appointment.id == appointment_id, Appointment.company_id == tenant_id)
            ).first()
            if a is None:
                raise NotFoundError("Appuntamento")
            return appointment_flat(a)

    def list_appointments(
        self,
        tenant_id: str,
        page: int = 1,
        limit: int = 20,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        customer_id: str | None = None,
        status: str | None = None,
        device_name: str | None = None,
    ) -> AppointmentPage:
        page = max(page, 1)
        limit = min(max(limit, 1), 200)

        conds = [Appointment.company_id == tenant_id]
        if start_date and end_date:
            conds.append(Appointment.start_time >= as_utc_naive(start_date))
            conds.append(Appointment.end_time <= as_utc_naive(end_date))
        if customer_id:
            conds.append(Appointment.customer_id == customer_id)
        if status:
            conds.append(Appointment.status == parse_status(status))
        if device_name:
            conds.append(Appointment.devices.any(AppointmentDevice.device_name == device_name))

        with self.db.session() as s:
            total = s.scalar(select(func.count(Appointment.id)).where(and_(*conds))) or 0
            q = (
                self._base()
                .where(and_(*conds))
                .order_by(Appointment.start_time.asc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
            items = [appointment_flat(a) for a in s.scalars(q).unique()]
            return AppointmentPage(items=items, total=total, page=page, limit=limit)

    def by_date_range(self, tenant_id: str, start_date: datetime, end_date: datetime) -> list[dict[str, Any]]:
        """Calendario: appuntamenti non annullati interamente dentro l'intervallo."""
        with self.db.session() as s:
            q = (
                self._base()
                .where(
                    and_(
                        Appointment.company_id == tenant_id,
                        Appointment.start_time >= as_utc_naive(start_date),
                        Appointment.end_time <= as_utc_naive(end_date),
                        Appointment.status != AppointmentStatus.CANCELLED,
                    )
                )
                .order_by(Appointment.start_time.asc())
            )
            return [appointment_flat(a) for a in s.scalars(q).unique()]

    def day(self, tenant_id: str, giorno: date) -> list[dict[str, Any]]:
        inizio = datetime.combine(giorno, datetime.min.time())
        return self.by_date_range(tenant_id, inizio, inizio + timedelta(days=1))

    def today(self, tenant_id: str) -> list[dict[str, Any]]:
        return self.day(tenant_id, utcnow().date())

    def upcoming(self, tenant_id: str, limit: int = 5) -> list[dict[str, Any]]:
        with self.db.session() as s:
            q = (
                self._base()
                .where(
                    and_(
                        Appointment.company_id == tenant_id,
                        Appointment.start_time >= utcnow(),
                        Appointment.status == AppointmentStatus.SCHEDULED,
                    )
                )
                .order_by(Appointment.start_time.asc())
                .limit(limit)
            )
            return [appointment_flat(a) for a in s.scalars(q).unique()]

    def count_today(self, tenant_id: str) -> int:
        inizio = datetime.combine(utcnow().date(), datetime.min.time())
        fine = inizio + timedelta(days=1)
        with self.db.session() as s:
            q = select(func.count(Appointment.id)).where(
                and_(
                    Appointment.company_id == tenant_id,
                    Appointment.start_time >= inizio,
                    Appointment.start_time < fine,
                    Appointment.status != AppointmentStatus.CANCELLED,
                )
            )
            return s.scalar(q) or 0

    def stats(self, tenant_id: str) -> dict[str, Any]:
        return {
            "today_count": self.count_today(tenant_id),
            "upcoming_appointments": self.upcoming(tenant_id, 5),
        }
