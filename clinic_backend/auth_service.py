from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select

from .auth_models import Role, User
from .auth_security import hash_password, verify_password
from .db import Database
from .errors import ConflictError, NotFoundError, ValidationError
from .models import Company

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CurrentUser:
    id: str
    username: str
    company_id: str
    role: Role
    is_active: bool


def _flat(u: User) -> CurrentUser:
    return CurrentUser(id=u.id, username=u.username, company_id=u.company_id, role=u.role, is_active=u.is_active)


class AuthService:
    def __init__(self, db: Database) -> None:
        self.db = db

    def register_company(self, company_name: str, username: str, password: str) -> CurrentUser:
        """Nuovo tenant + primo utente ADMIN."""
        company_name = (company_name or "").strip()
        if not company_name:
            raise ValidationError("Il nome dell'azienda è obbligatorio.")

        with self.db.session() as s:
            if s.execute(select(Company).where(Company.name == company_name)).scalar_one_or_none():
                raise ConflictError("Azienda già registrata.")
            company = Company(name=company_name)
            s.add(company)
            s.flush()
            user = self._add_user(s, company.id, username, password, Role.ADMIN)
            logger.info(f"Registrata azienda '{company_name}' con admin '{user.username}'")
            return user

    def create_user(self, company_id: str, username: str, password: str, role: Role = Role.STAFF) -> CurrentUser:
        with self.db.session() as s:
            return self._add_user(s, company_id, username, password, role)

    @staticmethod
    def _add_user(s, company_id: str, username: str, password: str, role: Role) -> CurrentUser:
        username = (username or "").strip().lower()
        if not username or not password:
            raise ValidationError("Username e password sono obbligatori.")

        exists = s.execute(select(User).where(User.username == username)).scalar_one_or_none()
        if exists:
            raise ConflictError("Username già registrato.")

        u = User(
            company_id=company_id,
            username=username,
            password_hash=hash_password(password),
            role=role,
            is_active=True,
        )
        s.add(u)
        s.flush()
        return _flat(u)

    def authenticate(self, username: str, password: str) -> CurrentUser | None:
        username = (username or "").strip().lower()
        with self.db.session() as s:
            u = s.execute(select(User).where(User.username == username)).scalar_one_or_none()
            if not u or not u.is_active:
                return None
            if not verify_password(password, u.password_hash):
                return None
            return _flat(u)

    def get_user(self, user_id: str) -> CurrentUser | None:
        with self.db.session() as s:
            u = s.get(User, user_id)
            return _flat(u) if u else None

    def company_id_by_name(self, company_name: str) -> str:
        with self.db.session() as s:
            company = s.execute(select(Company).where(Company.name == company_name)).scalar_one_or_none()
            if company is None:
                raise NotFoundError(f"Azienda '{company_name}'")
            return company.id
