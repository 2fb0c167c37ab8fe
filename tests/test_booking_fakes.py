"""BookingManager e AppointmentLifecycle su repository in memoria, senza database."""
from __future__ import annotations

import pytest

from clinic_backend.booking import REASON_CAPACITY, REASON_CUSTOMER_OVERLAP, BookingManager
from clinic_backend.errors import ConflictError, NotFoundError, ValidationError
from clinic_backend.lifecycle import AppointmentLifecycle

from fakes import InMemoryStore
from helpers import at, slot

TENANT = "tenant-a"


@pytest.fixture
def store():
    s = InMemoryStore()
    s.add_device(TENANT, "RollShape", 1)
    s.add_device(TENANT, "Lipolaser", 2)
    return s


@pytest.fixture
def booking(store):
    return BookingManager(store, repositories=store.repositories)


@pytest.fixture
def lifecycle(store):
    return AppointmentLifecycle(store, repositories=store.repositories)


def test_booking_is_persisted_only_on_success(store, booking):
    maria = store.add_customer(TENANT, "Maria Rossi")
    giulia = store.add_customer(TENANT, "Giulia Bianchi")

    booking.create_appointment(TENANT, maria.id, [slot("RollShape", at(10), at(10, 30))])
    assert len(store.appointments) == 1

    with pytest.raises(ConflictError):
        booking.create_appointment(TENANT, giulia.id, [slot("RollShape", at(10, 15), at(10, 45))])
    assert len(store.appointments) == 1

    booking.create_appointment(TENANT, giulia.id, [slot("RollShape", at(10, 30), at(11))])
    assert len(store.appointments) == 2


def test_capacity_two_allows_two_concurrent_bookings(store, booking):
    customers = [store.add_customer(TENANT, f"Cliente {i}") for i in range(3)]

    booking.create_appointment(TENANT, customers[0].id, [slot("Lipolaser", at(9), at(10))])
    booking.create_appointment(TENANT, customers[1].id, [slot("Lipolaser", at(9, 30), at(10, 30))])

    with pytest.raises(ConflictError) as exc:
        booking.create_appointment(TENANT, customers[2].id, [slot("Lipolaser", at(9, 45), at(10))])

    conflict = exc.value.conflicts[0]
    assert conflict.reason == REASON_CAPACITY
    assert (conflict.current_bookings, conflict.device_capacity) == (2, 2)


def test_customer_overlap_is_reported_alongside_device_conflicts(store, booking):
    maria = store.add_customer(TENANT, "Maria Rossi")
    booking.create_appointment(TENANT, maria.id, [slot("RollShape", at(10), at(11))])

    result = booking.check_availability(TENANT, [slot("RollShape", at(10, 30), at(11, 30))], customer_id=maria.id)

    assert result.is_available is False
    assert [c.reason for c in result.conflicts] == [REASON_CAPACITY, REASON_CUSTOMER_OVERLAP]


def test_other_tenant_sees_its_own_devices_only(store, booking):
    store.add_device("tenant-b", "RollShape", 1)
    maria = store.add_customer(TENANT, "Maria Rossi")
    esterno = store.add_customer("tenant-b", "Cliente Esterno")

    booking.create_appointment(TENANT, maria.id, [slot("RollShape", at(10), at(11))])
    booking.create_appointment("tenant-b", esterno.id, [slot("RollShape", at(10), at(11))])

    with pytest.raises(NotFoundError):
        booking.create_appointment("tenant-b", esterno.id, [slot("Lipolaser", at(12), at(13))])


def test_reschedule_replaces_slots(store, booking):
    maria = store.add_customer(TENANT, "Maria Rossi")
    created = booking.create_appointment(
        TENANT, maria.id, [slot("RollShape", at(10), at(10, 30)), slot("Lipolaser", at(10, 30), at(11))]
    )

    moved = booking.update_appointment(created["id"], TENANT, slots=[slot("Lipolaser", at(15), at(16))])

    assert [d["device_name"] for d in moved["devices"]] == ["Lipolaser"]
    assert moved["start_time"] == at(15).isoformat()
    assert moved["end_time"] == at(16).isoformat()
    assert booking.check_device_conflicts(TENANT, [slot("RollShape", at(10), at(10, 30))]) == []


def test_cancel_then_complete_is_rejected(store, booking, lifecycle):
    maria = store.add_customer(TENANT, "Maria Rossi")
    created = booking.create_appointment(TENANT, maria.id, [slot("RollShape", at(10), at(10, 30))])

    assert lifecycle.cancel(created["id"], TENANT)["status"] == "cancelled"
    with pytest.raises(ValidationError):
        lifecycle.complete(created["id"], TENANT)


def test_unknown_appointment_in_lifecycle(lifecycle):
    with pytest.raises(NotFoundError):
        lifecycle.start("missing", TENANT)
