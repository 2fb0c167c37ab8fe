from __future__ import annotations

from typing import Any

from sqlalchemy import or_, select

from .db import Database
from .errors import NotFoundError, ValidationError
from .models import Customer


def customer_flat(c: Customer) -> dict[str, Any]:
    return {
        "id": c.id,
        "full_name": c.full_name,
        "phone": c.phone,
        "notes": c.notes,
        "is_active": c.is_active,
    }


class CustomerService:
    """Anagrafica clienti. Cancellazione = disattivazione (is_active=False)."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def create_customer(
        self, tenant_id: str, full_name: str, phone: str | None = None, notes: str | None = None
    ) -> dict[str, Any]:
        full_name = (full_name or "").strip()
        if not full_name:
            raise ValidationError("Il nome del cliente è obbligatorio")

        with self.db.session() as s:
            c = Customer(company_id=tenant_id, full_name=full_name, phone=phone, notes=notes)
            s.add(c)
            s.flush()
            return customer_flat(c)

    def list_customers(
        self, tenant_id: str, search: str | None = None, include_inactive: bool = False
    ) -> list[dict[str, Any]]:
        with self.db.session() as s:
            q = select(Customer).where(Customer.company_id == tenant_id)
            if not include_inactive:
                q = q.where(Customer.is_active.is_(True))
            if search:
                like = f"%{search.strip()}%"
                q = q.where(or_(Customer.full_name.ilike(like), Customer.phone.ilike(like)))
            return [customer_flat(c) for c in s.scalars(q.order_by(Customer.full_name.asc()))]

    def get_customer(self, tenant_id: str, customer_id: str) -> dict[str, Any]:
        with self.db.session() as s:
            c = s.scalars(
                select(Customer).where(Customer.company_id == tenant_id, Customer.id == customer_id)
            ).first()
            if c is None:
                raise NotFoundError("Cliente")
            return customer_flat(c)

    def update_customer(
        self,
        tenant_id: str,
        customer_id: str,
        full_name: str | None = None,
        phone: str | None = None,
        notes: str | None = None,
    ) -> dict[str, Any]:
        """Aggiorna solo i campi passati (None = invariato)."""
        if full_name is not None:
            full_name = full_name.strip()
            if not full_name:
                raise ValidationError("Il nome del cliente è obbligatorio")

        with self.db.session() as s:
            c = s.scalars(
                select(Customer).where(Customer.company_id == tenant_id, Customer.id == customer_id)
            ).first()
            if c is None:
                raise NotFoundError("Cliente")

            if full_name is not None:
                c.full_name = full_name
            if phone is not None:
                c.phone = phone.strip() or None
            if notes is not None:
                c.notes = notes
            s.flush()
            return customer_flat(c)

    def deactivate_customer(self, tenant_id: str, customer_id: str) -> bool:
        with self.db.session() as s:
            c = s.scalars(
                select(Customer).where(Customer.company_id == tenant_id, Customer.id == customer_id)
            ).first()
            if c is None:
                raise NotFoundError("Cliente")
            if not c.is_active:
                return False
            c.is_active = False
            return True
