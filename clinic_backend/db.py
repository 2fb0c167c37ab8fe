from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base ORM per tutti i modelli."""
    pass


def _install_sqlite_hooks(engine: Engine) -> None:
    """
    SQLite: il driver pysqlite gestisce male le transazioni.
    - disattiva il BEGIN automatico del driver
    - ogni transazione parte con BEGIN IMMEDIATE (lock di scrittura subito)
    - abilita le foreign key
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


class Database:
    """Engine + factory delle sessioni. Una istanza per processo."""

    def __init__(self, url: str, echo: bool = False) -> None:
        is_sqlite = url.startswith("sqlite")
        connect_args = {"check_same_thread": False, "timeout": 30} if is_sqlite else {}

        self.engine = create_engine(
            url,
            echo=echo,              # metti True se vuoi vedere le query
            future=True,
            pool_pre_ping=not is_sqlite,
            connect_args=connect_args,
        )
        if is_sqlite:
            _install_sqlite_hooks(self.engine)

        self._factory = sessionmaker(
            bind=self.engine,
            autoflush=False,
            autocommit=False,
            future=True,
            expire_on_commit=False,
        )
        logger.info(f"Database engine creato: {self.engine.url.render_as_string(hide_password=True)}")

    def create_all(self) -> None:
        """Crea le tabelle se non esistono."""
        # Import per registrare tutte le tabelle nel metadata
        from . import auth_models, models  # noqa: F401

        Base.metadata.create_all(bind=self.engine)

    def dispose(self) -> None:
        self.engine.dispose()

    @contextmanager
    def session(self) -> Iterator[Session]:
        """
        Context manager per gestire correttamente la sessione:
        - commit se tutto ok
        - rollback su eccezioni
        - close sempre
        """
        session: Session = self._factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
