from __future__ import annotations

import pytest

from clinic_backend.booking import REASON_CAPACITY, REASON_CUSTOMER_OVERLAP, REASON_DEVICE_NOT_FOUND
from clinic_backend.errors import ConflictError, NotFoundError, ValidationError

from helpers import at, slot


def _customers(services, tenant, n):
    return [services.customers.create_customer(tenant, f"Cliente {i}")["id"] for i in range(n)]


def test_rollshape_overlap_rejected_touching_boundary_accepted(services, tenant, rollshape, customer_id, second_customer_id):
    booking = services.booking
    first = booking.create_appointment(tenant, customer_id, [slot("RollShape", at(10), at(10, 30))])

    with pytest.raises(ConflictError) as exc:
        booking.create_appointment(tenant, second_customer_id, [slot("RollShape", at(10, 15), at(10, 45))])

    conflict = exc.value.conflicts[0]
    assert conflict.reason == REASON_CAPACITY
    assert conflict.device_name == "RollShape"
    assert conflict.conflicting_appointment_id == first["id"]
    assert conflict.customer_name == "Maria Rossi"
    assert conflict.start_time == at(10)
    assert conflict.end_time == at(10, 30)
    assert (conflict.current_bookings, conflict.device_capacity) == (1, 1)

    second = booking.create_appointment(tenant, second_customer_id, [slot("RollShape", at(10, 30), at(11))])
    assert second["status"] == "scheduled"
    assert second["start_time"] == at(10, 30).isoformat()


def test_capacity_allows_c_bookings_and_rejects_the_next(services, tenant):
    services.devices.create_device(tenant, "Lipolaser", 3)
    customers = _customers(services, tenant, 4)

    for cid in customers[:3]:
        services.booking.create_appointment(tenant, cid, [slot("Lipolaser", at(14), at(15))])

    with pytest.raises(ConflictError) as exc:
        services.booking.create_appointment(tenant, customers[3], [slot("Lipolaser", at(14, 30), at(15, 30))])

    conflict = exc.value.conflicts[0]
    assert conflict.device_name == "Lipolaser"
    assert conflict.current_bookings == 3
    assert conflict.device_capacity == 3


def test_cancelling_frees_capacity(services, tenant, rollshape, customer_id, second_customer_id):
    first = services.booking.create_appointment(tenant, customer_id, [slot("RollShape", at(9), at(10))])
    services.lifecycle.cancel(first["id"], tenant)

    again = services.booking.create_appointment(tenant, second_customer_id, [slot("RollShape", at(9), at(10))])
    assert again["devices"][0]["device_name"] == "RollShape"


def test_customer_cannot_hold_overlapping_appointments_on_different_devices(services, tenant, customer_id):
    services.devices.create_device(tenant, "Lipolaser", 5)
    services.devices.create_device(tenant, "Pressoterapia", 5)

    first = services.booking.create_appointment(tenant, customer_id, [slot("Lipolaser", at(10), at(11))])

    with pytest.raises(ConflictError) as exc:
        services.booking.create_appointment(tenant, customer_id, [slot("Pressoterapia", at(10, 30), at(11, 30))])

    conflict = exc.value.conflicts[0]
    assert conflict.reason == REASON_CUSTOMER_OVERLAP
    assert conflict.device_name is None
    assert conflict.conflicting_appointment_id == first["id"]

    existing = services.booking.check_customer_time_conflict(tenant, customer_id, at(10, 59), at(12))
    assert existing["id"] == first["id"]
    assert services.booking.check_customer_time_conflict(tenant, customer_id, at(11), at(12)) is None


def test_customer_check_uses_the_whole_envelope(services, tenant, customer_id):
    for name in ("Lipolaser", "Pressoterapia", "Radiofrequenza"):
        services.devices.create_device(tenant, name, 5)

    services.booking.create_appointment(
        tenant,
        customer_id,
        [slot("Lipolaser", at(10), at(10, 30)), slot("Pressoterapia", at(11, 30), at(12))],
    )

    # nessuno slot si sovrappone, ma 11:00 cade dentro l'envelope 10:00-12:00
    with pytest.raises(ConflictError):
        services.booking.create_appointment(tenant, customer_id, [slot("Radiofrequenza", at(11), at(11, 15))])


def test_multi_device_appointment_keeps_input_order_and_envelope(services, tenant, rollshape, customer_id):
    services.devices.create_device(tenant, "Lipolaser", 2)

    created = services.booking.create_appointment(
        tenant,
        customer_id,
        [slot("Lipolaser", at(10, 30), at(11)), slot("RollShape", at(10), at(10, 30))],
        notes="prima seduta",
    )

    assert [d["device_name"] for d in created["devices"]] == ["Lipolaser", "RollShape"]
    assert [d["sequence"] for d in created["devices"]] == [1, 2]
    assert created["start_time"] == at(10).isoformat()
    assert created["end_time"] == at(11).isoformat()
    assert created["notes"] == "prima seduta"
    assert created["customer_name"] == "Maria Rossi"


def test_slots_of_the_same_request_share_capacity(services, tenant, rollshape, customer_id):
    with pytest.raises(ConflictError) as exc:
        services.booking.create_appointment(
            tenant,
            customer_id,
            [slot("RollShape", at(10), at(10, 30)), slot("RollShape", at(10, 15), at(10, 45))],
        )

    conflict = exc.value.conflicts[0]
    assert conflict.conflicting_appointment_id is None
    assert conflict.current_bookings == 1


def test_reschedule_excludes_itself(services, tenant, rollshape, customer_id):
    created = services.booking.create_appointment(tenant, customer_id, [slot("RollShape", at(10), at(10, 30))])

    moved = services.booking.update_appointment(
        created["id"], tenant, slots=[slot("RollShape", at(10, 15), at(10, 45))]
    )

    assert moved["start_time"] == at(10, 15).isoformat()
    assert moved["end_time"] == at(10, 45).isoformat()
    assert len(moved["devices"]) == 1
    assert moved["devices"][0]["start_time"] == at(10, 15).isoformat()


def test_reschedule_into_someone_else_slot_is_rejected_and_nothing_changes(
    services, tenant, rollshape, customer_id, second_customer_id
):
    services.booking.create_appointment(tenant, customer_id, [slot("RollShape", at(10), at(10, 30))])
    other = services.booking.create_appointment(tenant, second_customer_id, [slot("RollShape", at(11), at(11, 30))])

    with pytest.raises(ConflictError):
        services.booking.update_appointment(other["id"], tenant, slots=[slot("RollShape", at(10, 15), at(10, 45))])

    unchanged = services.agenda.get(tenant, other["id"])
    assert unchanged["start_time"] == at(11).isoformat()
    assert unchanged["devices"][0]["start_time"] == at(11).isoformat()


def test_update_notes_only_keeps_slots(services, tenant, rollshape, customer_id):
    created = services.booking.create_appointment(tenant, customer_id, [slot("RollShape", at(10), at(10, 30))])

    updated = services.booking.update_appointment(created["id"], tenant, notes="portare asciugamano")

    assert updated["notes"] == "portare asciugamano"
    assert updated["devices"] == created["devices"]


def test_update_of_foreign_appointment_returns_none(services, tenant, other_tenant, rollshape, customer_id):
    created = services.booking.create_appointment(tenant, customer_id, [slot("RollShape", at(10), at(10, 30))])
    assert services.booking.update_appointment(created["id"], other_tenant, notes="x") is None


def test_completed_appointment_cannot_be_rescheduled(services, tenant, rollshape, customer_id):
    created = services.booking.create_appointment(tenant, customer_id, [slot("RollShape", at(10), at(10, 30))])
    services.lifecycle.complete(created["id"], tenant)

    with pytest.raises(ValidationError):
        services.booking.update_appointment(created["id"], tenant, slots=[slot("RollShape", at(12), at(12, 30))])


def test_missing_device_is_reported_and_evaluation_continues(services, tenant, rollshape, customer_id):
    services.booking.create_appointment(tenant, customer_id, [slot("RollShape", at(10), at(10, 30))])

    conflicts = services.booking.check_device_conflicts(
        tenant, [slot("Ghost", at(10), at(11)), slot("RollShape", at(10), at(10, 30))]
    )

    assert [c.reason for c in conflicts] == [REASON_DEVICE_NOT_FOUND, REASON_CAPACITY]
    assert conflicts[0].device_name == "Ghost"


def test_device_names_are_case_sensitive(services, tenant, rollshape):
    conflicts = services.booking.check_device_conflicts(tenant, [slot("rollshape", at(10), at(11))])
    assert conflicts[0].reason == REASON_DEVICE_NOT_FOUND


def test_unknown_device_aborts_booking_without_writes(services, tenant, rollshape, customer_id):
    with pytest.raises(NotFoundError) as exc:
        services.booking.create_appointment(
            tenant, customer_id, [slot("RollShape", at(10), at(10, 30)), slot("Ghost", at(10, 30), at(11))]
        )

    assert exc.value.conflicts[0].device_name == "Ghost"
    assert services.agenda.list_appointments(tenant).total == 0


def test_invalid_booking_data_lists_every_problem(services, tenant, customer_id):
    with pytest.raises(ValidationError) as exc:
        services.booking.create_appointment(
            tenant,
            customer_id,
            [slot("", at(10), at(11)), slot("RollShape", at(11), at(10)), slot("RollShape", None, None)],
        )
    assert len(exc.value.errors) == 3

    with pytest.raises(ValidationError):
        services.booking.create_appointment(tenant, customer_id, [])

    with pytest.raises(ValidationError):
        services.booking.create_appointment(tenant, "", [slot("RollShape", at(10), at(11))])


def test_inactive_or_foreign_customer_is_not_found(services, tenant, other_tenant, rollshape, customer_id):
    foreign = services.customers.create_customer(other_tenant, "Cliente Esterno")["id"]
    with pytest.raises(NotFoundError):
        services.booking.create_appointment(tenant, foreign, [slot("RollShape", at(10), at(10, 30))])

    services.customers.deactivate_customer(tenant, customer_id)
    with pytest.raises(NotFoundError):
        services.booking.create_appointment(tenant, customer_id, [slot("RollShape", at(10), at(10, 30))])


def test_tenants_do_not_share_device_capacity(services, tenant, other_tenant, rollshape, customer_id):
    services.devices.create_device(other_tenant, "RollShape", 1)
    foreign = services.customers.create_customer(other_tenant, "Cliente Esterno")["id"]

    services.booking.create_appointment(other_tenant, foreign, [slot("RollShape", at(10), at(10, 30))])
    created = services.booking.create_appointment(tenant, customer_id, [slot("RollShape", at(10), at(10, 30))])

    assert created["status"] == "scheduled"


def test_check_availability_is_a_dry_run(services, tenant, rollshape, customer_id):
    services.devices.create_device(tenant, "Lipolaser", 2)
    services.booking.create_appointment(tenant, customer_id, [slot("RollShape", at(10), at(10, 30))])

    free = services.booking.check_availability(tenant, [slot("Lipolaser", at(10), at(10, 30))])
    assert free.is_available is True
    assert free.conflicts == []

    busy = services.booking.check_availability(
        tenant, [slot("Lipolaser", at(10, 15), at(10, 45))], customer_id=customer_id
    )
    assert busy.is_available is False
    assert [c.reason for c in busy.conflicts] == [REASON_CUSTOMER_OVERLAP]
    assert busy.as_dict()["conflicts"][0]["start_time"] == at(10).isoformat()

    assert services.agenda.list_appointments(tenant).total == 1
