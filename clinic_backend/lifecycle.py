from __future__ import annotations

import logging
from typing import Any

from .agenda import appointment_flat, parse_status
from .errors import NotFoundError, ValidationError
from .models import AppointmentStatus
from .repositories import RepositoryFactory, TransactionScope, sql_repositories

logger = logging.getLogger(__name__)

# scheduled -> in_progress -> completed ; scheduled/in_progress -> cancelled
TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.SCHEDULED: frozenset(
        {AppointmentStatus.IN_PROGRESS, AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED}
    ),
    AppointmentStatus.IN_PROGRESS: frozenset({AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED}),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
}


def can_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    return target in TRANSITIONS[current]


def ensure_transition(current: AppointmentStatus, target: AppointmentStatus) -> None:
    if can_transition(current, target):
        return
    if current == target:
        raise ValidationError(f"L'appuntamento è già in stato '{current.value}'")
    if target == AppointmentStatus.COMPLETED and current == AppointmentStatus.CANCELLED:
        raise ValidationError("Impossibile completare un appuntamento in stato 'cancelled'")
    raise ValidationError(f"Transizione non valida: da '{current.value}' a '{target.value}'")


class AppointmentLifecycle:
    """
    Cambi di stato degli appuntamenti.
    Nessun nuovo impegno di tempo: i conflitti dispositivo non vengono ricontrollati.
    """

    def __init__(self, db: TransactionScope, repositories: RepositoryFactory = sql_repositories) -> None:
        self.db = db
        self.repositories = repositories

    def transition(self, appointment_id: str, tenant_id: str, target: AppointmentStatus) -> dict[str, Any]:
        with self.db.session() as s:
            appointment = self.repositories(s).appointments.get(tenant_id, appointment_id)
            if appointment is None:
                raise NotFoundError("Appuntamento")

            previous = appointment.status
            ensure_transition(previous, target)
            appointment.status = target
            s.flush()

            logger.info(f"Appuntamento {appointment.id}: {previous.value} -> {target.value}")
            return appointment_flat(appointment)

    def update_status(self, appointment_id: str, tenant_id: str, status: str) -> dict[str, Any]:
        return self.transition(appointment_id, tenant_id, parse_status(status))

    def start(self, appointment_id: str, tenant_id: str) -> dict[str, Any]:
        return self.transition(appointment_id, tenant_id, AppointmentStatus.IN_PROGRESS)

    def complete(self, appointment_id: str, tenant_id: str) -> dict[str, Any]:
        return self.transition(appointment_id, tenant_id, AppointmentStatus.COMPLETED)

    def cancel(self, appointment_id: str, tenant_id: str) -> dict[str, Any]:
        """Annullamento soft: lo stato cambia, righe e slot restano."""
        return self.transition(appointment_id, tenant_id, AppointmentStatus.CANCELLED)
