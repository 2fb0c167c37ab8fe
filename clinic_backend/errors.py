from __future__ import annotations

from typing import Any


class ClinicError(Exception):
    """Errore applicativo con status HTTP e codice stabile."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message}


class ValidationError(ClinicError):
    status_code = 400
    code = "VALIDATION_ERROR"

    def __init__(self, message: str = "Dati non validi", errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors = list(errors or [])

    def to_dict(self) -> dict[str, Any]:
        out = super().to_dict()
        if self.errors:
            out["errors"] = self.errors
        return out


class UnauthorizedError(ClinicError):
    status_code = 401
    code = "UNAUTHORIZED"

    def __init__(self, message: str = "Autenticazione richiesta") -> None:
        super().__init__(message)


class ForbiddenError(ClinicError):
    status_code = 403
    code = "FORBIDDEN"

    def __init__(self, message: str = "Accesso negato") -> None:
        super().__init__(message)


class _ConflictCarrier(ClinicError):
    def __init__(self, message: str, conflicts: list | None = None) -> None:
        super().__init__(message)
        self.conflicts = list(conflicts or [])

    def to_dict(self) -> dict[str, Any]:
        out = super().to_dict()
        if self.conflicts:
            out["conflicts"] = [c.as_dict() for c in self.conflicts]
        return out


class NotFoundError(_ConflictCarrier):
    """Risorsa assente per il tenant (appuntamento, cliente, dispositivo)."""

    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, resource: str = "Risorsa", conflicts: list | None = None) -> None:
        super().__init__(f"{resource} non trovato", conflicts)
        self.resource = resource


class ConflictError(_ConflictCarrier):
    """Capacità dispositivo superata o doppia prenotazione del cliente."""

    status_code = 409
    code = "CONFLICT"

    def __init__(self, message: str = "Conflitto di prenotazione", conflicts: list | None = None) -> None:
        super().__init__(message, conflicts)
