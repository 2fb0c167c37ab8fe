from __future__ import annotations

import pytest

from clinic_backend.config import Settings
from clinic_backend.services import build_services, init_db


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'test.sqlite'}",
        jwt_secret="test-secret",
        log_level="WARNING",
    )


@pytest.fixture
def services(settings):
    s = build_services(settings)
    init_db(s)
    yield s
    s.db.dispose()


@pytest.fixture
def tenant(services) -> str:
    admin = services.auth.register_company("Centro Test", "admin", "secret")
    return admin.company_id


@pytest.fixture
def other_tenant(services) -> str:
    admin = services.auth.register_company("Altro Centro", "altro", "secret")
    return admin.company_id


@pytest.fixture
def customer_id(services, tenant) -> str:
    return services.customers.create_customer(tenant, "Maria Rossi", "+39 333 1111111")["id"]


@pytest.fixture
def second_customer_id(services, tenant) -> str:
    return services.customers.create_customer(tenant, "Giulia Bianchi")["id"]


@pytest.fixture
def rollshape(services, tenant) -> dict:
    return services.devices.create_device(tenant, "RollShape", 1)
