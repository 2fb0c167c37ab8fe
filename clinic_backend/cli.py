from __future__ import annotations

import argparse
from datetime import datetime

from .booking import SlotRequest
from .config import configure_logging, load_settings
from .errors import ClinicError
from .seed import DEMO_COMPANY, seed_base
from .services import Services, build_services, init_db


def parse_slot(raw: str) -> SlotRequest:
    """Formato: NOME@INIZIO/FINE, es. RollShape@2026-01-14T10:00/2026-01-14T10:30"""
    try:
        name, times = raw.rsplit("@", 1)
        start, end = times.split("/", 1)
        return SlotRequest(device_name=name, start_time=datetime.fromisoformat(start), end_time=datetime.fromisoformat(end))
    except ValueError:
        raise argparse.ArgumentTypeError(f"Slot non valido: {raw!r} (atteso NOME@INIZIO/FINE)") from None


def cmd_init(services: Services, args: argparse.Namespace) -> None:
    seed_base(services.db)
    print("DB inizializzato e seed completato.")


def cmd_list(services: Services, args: argparse.Namespace) -> None:
    company_id = services.auth.company_id_by_name(args.company)
    if args.entity == "devices":
        for d in services.devices.list_devices(company_id):
            print(f"{d['id']} | {d['name']} | capacità {d['capacity']}")
    elif args.entity == "customers":
        for c in services.customers.list_customers(company_id):
            print(f"{c['id']} | {c['full_name']} | {c['phone'] or '-'}")
    elif args.entity == "appointments":
        for a in services.agenda.list_appointments(company_id, limit=200).items:
            devices = ", ".join(d["device_name"] for d in a["devices"])
            print(f"{a['id']} | {a['start_time']} - {a['end_time']} | {a['status']} | {a['customer_name']} | {devices}")


def cmd_add_device(services: Services, args: argparse.Namespace) -> None:
    company_id = services.auth.company_id_by_name(args.company)
    d = services.devices.create_device(company_id, args.name, args.capacity)
    print(f"Dispositivo creato: {d['id']}")


def cmd_delete_device(services: Services, args: argparse.Namespace) -> None:
    company_id = services.auth.company_id_by_name(args.company)
    removed = services.devices.delete_device(company_id, args.device_id)
    print(f"Dispositivo eliminato. Appuntamenti orfani rimossi: {removed}")


def cmd_add_customer(services: Services, args: argparse.Namespace) -> None:
    company_id = services.auth.company_id_by_name(args.company)
    c = services.customers.create_customer(company_id, args.name, args.phone)
    print(f"Cliente creato: {c['id']}")


def cmd_book(services: Services, args: argparse.Namespace) -> None:
    company_id = services.auth.company_id_by_name(args.company)
    a = services.booking.create_appointment(company_id, args.customer_id, args.slot, notes=args.note)
    print("Appuntamento confermato.")
    print(f"Appuntamento ID: {a['id']}")


def cmd_check(services: Services, args: argparse.Namespace) -> None:
    company_id = services.auth.company_id_by_name(args.company)
    result = services.booking.check_availability(
        company_id, args.slot, customer_id=args.customer_id, exclude_appointment_id=args.exclude
    )
    if result.is_available:
        print("Disponibile.")
        return
    for c in result.conflicts:
        print(f"- {c.message}")


def cmd_cancel(services: Services, args: argparse.Namespace) -> None:
    company_id = services.auth.company_id_by_name(args.company)
    services.lifecycle.cancel(args.appointment_id, company_id)
    print("Annullato.")


def cmd_complete(services: Services, args: argparse.Namespace) -> None:
    company_id = services.auth.company_id_by_name(args.company)
    services.lifecycle.complete(args.appointment_id, company_id)
    print("Completato.")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="clinic_cli", description="CLI prenotazione dispositivi (simulazione sistemi esterni)")
    p.add_argument("--company", default=DEMO_COMPANY, help="Nome azienda (tenant)")
    sub = p.add_subparsers(required=True)

    p_init = sub.add_parser("init", help="Crea DB e carica seed")
    p_init.set_defaults(func=cmd_init)

    p_list = sub.add_parser("list", help="Lista entità")
    p_list.add_argument("entity", choices=["devices", "customers", "appointments"])
    p_list.set_defaults(func=cmd_list)

    p_dev = sub.add_parser("add-device", help="Crea dispositivo")
    p_dev.add_argument("--name", required=True)
    p_dev.add_argument("--capacity", type=int, default=1)
    p_dev.set_defaults(func=cmd_add_device)

    p_deldev = sub.add_parser("delete-device", help="Elimina dispositivo (cascata sugli appuntamenti)")
    p_deldev.add_argument("--device-id", required=True)
    p_deldev.set_defaults(func=cmd_delete_device)

    p_cust = sub.add_parser("add-customer", help="Crea cliente")
    p_cust.add_argument("--name", required=True)
    p_cust.add_argument("--phone", default=None)
    p_cust.set_defaults(func=cmd_add_customer)

    p_book = sub.add_parser("book", help="Prenota appuntamento")
    p_book.add_argument("--customer-id", required=True)
    p_book.add_argument("--slot", type=parse_slot, action="append", required=True,
                        help="NOME@INIZIO/FINE, ripetibile per più dispositivi")
    p_book.add_argument("--note", default=None)
    p_book.set_defaults(func=cmd_book)

    p_check = sub.add_parser("check", help="Verifica disponibilità (senza prenotare)")
    p_check.add_argument("--slot", type=parse_slot, action="append", required=True)
    p_check.add_argument("--customer-id", default=None)
    p_check.add_argument("--exclude", default=None, help="ID appuntamento da escludere (spostamento)")
    p_check.set_defaults(func=cmd_check)

    p_cancel = sub.add_parser("cancel", help="Annulla appuntamento")
    p_cancel.add_argument("--appointment-id", required=True)
    p_cancel.set_defaults(func=cmd_cancel)

    p_done = sub.add_parser("complete", help="Segna appuntamento come completato")
    p_done.add_argument("--appointment-id", required=True)
    p_done.set_defaults(func=cmd_complete)

    return p


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = load_settings()
    configure_logging(settings.log_level)
    services = build_services(settings)
    init_db(services)  # garantisce tabelle

    try:
        args.func(services, args)
    except ClinicError as e:
        print(f"Errore: {e.message}")
        for detail in getattr(e, "errors", []):
            print(f"- {detail}")
        for c in getattr(e, "conflicts", []):
            print(f"- {c.message}")
        return 1
    finally:
        services.db.dispose()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
