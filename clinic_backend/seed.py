from __future__ import annotations

from sqlalchemy import select

from .auth_models import Role, User
from .auth_security import hash_password
from .db import Database
from .models import Company, Customer, Device

DEMO_COMPANY = "Demo Clinic"
DEMO_ADMIN = ("admin", "admin123")


def seed_base(db: Database) -> str:
    """
    Popola dati minimi (idempotente):
    - azienda demo + utente admin
    - dispositivi
    - un cliente di prova
    Ritorna l'id dell'azienda demo.
    """
    with db.session() as s:
        company = s.execute(select(Company).where(Company.name == DEMO_COMPANY)).scalar_one_or_none()
        if company is None:
            company = Company(name=DEMO_COMPANY)
            s.add(company)
            s.flush()

        username, password = DEMO_ADMIN
        if s.execute(select(User).where(User.username == username)).scalar_one_or_none() is None:
            s.add(
                User(
                    company_id=company.id,
                    username=username,
                    password_hash=hash_password(password),
                    role=Role.ADMIN,
                )
            )

        # Dispositivi (nome, capacità)
        devices = [
            ("RollShape", 1),
            ("Lipolaser", 2),
            ("Pressoterapia", 3),
        ]
        for name, capacity in devices:
            exists = s.execute(
                select(Device).where(Device.company_id == company.id, Device.name == name)
            ).scalar_one_or_none()
            if exists is None:
                s.add(Device(company_id=company.id, name=name, capacity=capacity))

        if s.execute(select(Customer).where(Customer.company_id == company.id)).first() is None:
            s.add(Customer(company_id=company.id, full_name="Maria Rossi", phone="+39 333 0000000"))

        return company.id
