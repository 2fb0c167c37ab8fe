"""
API REST (FastAPI + JWT).

Avvio: uvicorn clinic_backend.api_main:create_app --factory
"""
from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Literal

from fastapi import APIRouter, Depends, FastAPI, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from pydantic import BaseModel, Field

from .auth_models import Role
from .auth_security import create_access_token, get_claims
from .auth_service import CurrentUser
from .booking import SlotRequest
from .config import Settings, configure_logging, load_settings
from .errors import ClinicError, ForbiddenError, NotFoundError, UnauthorizedError
from .services import Services, build_services, init_db

logger = logging.getLogger(__name__)

# OAuth2 Bearer (Authorization: Bearer <token>)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")

router = APIRouter(prefix="/api")


# Schemi Auth

class RegisterIn(BaseModel):
    company_name: str = Field(..., min_length=1)
    username: str
    password: str


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"


class MeOut(BaseModel):
    id: str
    username: str
    company_id: str
    role: str


class UserCreateIn(BaseModel):
    username: str
    password: str
    role: Literal["ADMIN", "STAFF"] = "STAFF"


# Schemi Domain

class DeviceCreateIn(BaseModel):
    name: str = Field(..., min_length=1)
    capacity: int = Field(1, ge=1)


class DeviceUpdateIn(BaseModel):
    capacity: int = Field(..., ge=1)


class CustomerCreateIn(BaseModel):
    full_name: str = Field(..., min_length=1)
    phone: str | None = None
    notes: str | None = None


class CustomerUpdateIn(BaseModel):
    full_name: str | None = None
    phone: str | None = None
    notes: str | None = None


class SlotIn(BaseModel):
    # campi opzionali: la validazione completa (con elenco errori) la fa il booking manager
    device_name: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None

    def to_request(self) -> SlotRequest:
        return SlotRequest(device_name=self.device_name or "", start_time=self.start_time, end_time=self.end_time)


class AppointmentCreateIn(BaseModel):
    customer_id: str
    devices: list[SlotIn] = Field(default_factory=list)
    notes: str | None = None


class AppointmentUpdateIn(BaseModel):
    customer_id: str | None = None
    devices: list[SlotIn] | None = None
    notes: str | None = None


class AvailabilityIn(BaseModel):
    devices: list[SlotIn] = Field(default_factory=list)
    customer_id: str | None = None
    exclude_appointment_id: str | None = None


class StatusIn(BaseModel):
    status: str


def _ok(data: Any, **extra: Any) -> dict[str, Any]:
    return {"ok": True, "data": data, **extra}


# Dipendenze

def get_services(request: Request) -> Services:
    return request.app.state.services


def get_current_user(
    token: str = Depends(oauth2_scheme),
    services: Services = Depends(get_services),
) -> CurrentUser:
    # protezione extra: elimina spazi / virgolette accidentali
    token = token.strip().strip('"').strip("'")

    claims = get_claims(services.settings, token)
    if not claims:
        raise UnauthorizedError("Token non valido")

    u = services.auth.get_user(claims["sub"])
    if not u or not u.is_active or u.company_id != claims["company_id"]:
        raise UnauthorizedError("Utente non valido")
    return u


def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if user.role != Role.ADMIN:
        raise ForbiddenError("Operazione riservata agli amministratori")
    return user


# AUTH endpoints

@router.get("/health")
def health() -> dict[str, Any]:
    return {"ok": True, "status": "up"}


@router.post("/auth/register", status_code=status.HTTP_201_CREATED)
def register(payload: RegisterIn, services: Services = Depends(get_services)) -> dict[str, Any]:
    u = services.auth.register_company(payload.company_name, payload.username, payload.password)
    return {"ok": True, "user_id": u.id, "company_id": u.company_id}


@router.post("/auth/login", response_model=TokenOut)
def login(form: OAuth2PasswordRequestForm = Depends(), services: Services = Depends(get_services)) -> TokenOut:
    u = services.auth.authenticate(form.username, form.password)
    if not u:
        raise UnauthorizedError("Credenziali non valide")

    token = create_access_token(
        services.settings,
        subject=u.id,
        extra={"username": u.username, "company_id": u.company_id, "role": u.role.value},
    )
    return TokenOut(access_token=token)


@router.get("/me", response_model=MeOut)
def me(user: CurrentUser = Depends(get_current_user)) -> MeOut:
    return MeOut(id=user.id, username=user.username, company_id=user.company_id, role=user.role.value)


@router.post("/users", status_code=status.HTTP_201_CREATED)
def create_user(
    payload: UserCreateIn,
    admin: CurrentUser = Depends(require_admin),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    u = services.auth.create_user(admin.company_id, payload.username, payload.password, Role(payload.role))
    return {"ok": True, "user_id": u.id}


# DEVICES

@router.get("/devices")
def list_devices(user: CurrentUser = Depends(get_current_user), services: Services = Depends(get_services)):
    return _ok(services.devices.list_devices(user.company_id))


@router.get("/devices/{device_id}")
def get_device(
    device_id: str, user: CurrentUser = Depends(get_current_user), services: Services = Depends(get_services)
):
    return _ok(services.devices.get_device(user.company_id, device_id))


@router.post("/devices", status_code=status.HTTP_201_CREATED)
def create_device(
    payload: DeviceCreateIn, admin: CurrentUser = Depends(require_admin), services: Services = Depends(get_services)
):
    return _ok(services.devices.create_device(admin.company_id, payload.name, payload.capacity))


@router.put("/devices/{device_id}")
def update_device(
    device_id: str,
    payload: DeviceUpdateIn,
    admin: CurrentUser = Depends(require_admin),
    services: Services = Depends(get_services),
):
    return _ok(services.devices.update_device(admin.company_id, device_id, payload.capacity))


@router.delete("/devices/{device_id}")
def delete_device(
    device_id: str, admin: CurrentUser = Depends(require_admin), services: Services = Depends(get_services)
):
    removed = services.devices.delete_device(admin.company_id, device_id)
    return {"ok": True, "deleted_appointments": removed}


# CUSTOMERS

@router.get("/customers")
def list_customers(
    search: str | None = None,
    include_inactive: bool = False,
    user: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return _ok(services.customers.list_customers(user.company_id, search=search, include_inactive=include_inactive))


@router.post("/customers", status_code=status.HTTP_201_CREATED)
def create_customer(
    payload: CustomerCreateIn, user: CurrentUser = Depends(get_current_user), services: Services = Depends(get_services)
):
    return _ok(services.customers.create_customer(user.company_id, payload.full_name, payload.phone, payload.notes))


@router.get("/customers/{customer_id}")
def get_customer(
    customer_id: str, user: CurrentUser = Depends(get_current_user), services: Services = Depends(get_services)
):
    return _ok(services.customers.get_customer(user.company_id, customer_id))


@router.put("/customers/{customer_id}")
def update_customer(
    customer_id: str,
    payload: CustomerUpdateIn,
    user: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return _ok(
        services.customers.update_customer(
            user.company_id, customer_id, full_name=payload.full_name, phone=payload.phone, notes=payload.notes
        )
    )


@router.delete("/customers/{customer_id}")
def deactivate_customer(
    customer_id: str, user: CurrentUser = Depends(get_current_user), services: Services = Depends(get_services)
):
    changed = services.customers.deactivate_customer(user.company_id, customer_id)
    return {"ok": True, "deactivated": changed}


# APPOINTMENTS (lettura)

@router.get("/appointments")
def list_appointments(
    page: int = 1,
    limit: int = 20,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    customer_id: str | None = None,
    status: str | None = None,
    device_name: str | None = None,
    user: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    result = services.agenda.list_appointments(
        user.company_id,
        page=page,
        limit=limit,
        start_date=start_date,
        end_date=end_date,
        customer_id=customer_id,
        status=status,
        device_name=device_name,
    )
    body = {"ok": True, **result.as_dict()}
    return JSONResponse(
        body,
        headers={"X-Total-Count": str(result.total), "X-Page": str(result.page), "X-Per-Page": str(result.limit)},
    )


@router.get("/appointments/calendar")
def calendar(
    start_date: datetime = Query(...),
    end_date: datetime = Query(...),
    user: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return _ok(services.agenda.by_date_range(user.company_id, start_date, end_date))


@router.get("/appointments/agenda")
def agenda(
    giorno: date = Query(...),
    user: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return _ok(services.agenda.day(user.company_id, giorno))


@router.get("/appointments/today")
def today(user: CurrentUser = Depends(get_current_user), services: Services = Depends(get_services)):
    return _ok(services.agenda.today(user.company_id))


@router.get("/appointments/upcoming")
def upcoming(
    limit: int = 5, user: CurrentUser = Depends(get_current_user), services: Services = Depends(get_services)
):
    return _ok(services.agenda.upcoming(user.company_id, limit))


@router.get("/appointments/stats")
def stats(user: CurrentUser = Depends(get_current_user), services: Services = Depends(get_services)):
    return _ok(services.agenda.stats(user.company_id))


@router.get("/appointments/{appointment_id}")
def get_appointment(
    appointment_id: str, user: CurrentUser = Depends(get_current_user), services: Services = Depends(get_services)
):
    return _ok(services.agenda.get(user.company_id, appointment_id))


# APPOINTMENTS (prenotazione)

@router.post("/appointments/check-availability")
def check_availability(
    payload: AvailabilityIn, user: CurrentUser = Depends(get_current_user), services: Services = Depends(get_services)
):
    result = services.booking.check_availability(
        user.company_id,
        [d.to_request() for d in payload.devices],
        customer_id=payload.customer_id,
        exclude_appointment_id=payload.exclude_appointment_id,
    )
    return _ok(result.as_dict())


@router.post("/appointments", status_code=status.HTTP_201_CREATED)
def create_appointment(
    payload: AppointmentCreateIn,
    user: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    created = services.booking.create_appointment(
        user.company_id,
        payload.customer_id,
        [d.to_request() for d in payload.devices],
        notes=payload.notes,
    )
    return _ok(created)


@router.put("/appointments/{appointment_id}")
def update_appointment(
    appointment_id: str,
    payload: AppointmentUpdateIn,
    user: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    updated = services.booking.update_appointment(
        appointment_id,
        user.company_id,
        customer_id=payload.customer_id,
        slots=[d.to_request() for d in payload.devices] if payload.devices is not None else None,
        notes=payload.notes,
    )
    if updated is None:
        raise NotFoundError("Appuntamento")
    return _ok(updated)


# APPOINTMENTS (stato)

@router.patch("/appointments/{appointment_id}/status")
def update_status(
    appointment_id: str,
    payload: StatusIn,
    user: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return _ok(services.lifecycle.update_status(appointment_id, user.company_id, payload.status))


@router.patch("/appointments/{appointment_id}/start")
def start_appointment(
    appointment_id: str, user: CurrentUser = Depends(get_current_user), services: Services = Depends(get_services)
):
    return _ok(services.lifecycle.start(appointment_id, user.company_id))


@router.patch("/appointments/{appointment_id}/complete")
def complete_appointment(
    appointment_id: str, user: CurrentUser = Depends(get_current_user), services: Services = Depends(get_services)
):
    return _ok(services.lifecycle.complete(appointment_id, user.company_id), message="Appuntamento completato")


@router.post("/appointments/{appointment_id}/cancel")
def cancel_appointment(
    appointment_id: str, user: CurrentUser = Depends(get_current_user), services: Services = Depends(get_services)
):
    return _ok(services.lifecycle.cancel(appointment_id, user.company_id))


# App factory

def _clinic_error_handler(request: Request, exc: ClinicError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc.message}")
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(status_code=exc.status_code, content={"ok": False, "error": exc.to_dict()}, headers=headers)


def create_app(settings: Settings | None = None, services: Services | None = None) -> FastAPI:
    if services is None:
        settings = settings or load_settings()
        services = build_services(settings)
    configure_logging(services.settings.log_level)

    app = FastAPI(title="Clinic Booking API", version="1.0.0")
    app.state.services = services

    @app.on_event("startup")
    def startup() -> None:
        # Crea tabelle (idempotente)
        init_db(services)

    @app.on_event("shutdown")
    def shutdown() -> None:
        services.db.dispose()

    app.add_exception_handler(ClinicError, _clinic_error_handler)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=services.settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app
