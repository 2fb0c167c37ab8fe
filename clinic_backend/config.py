from __future__ import annotations

import logging
import os
import warnings
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

# DB SQLite su file nella root del progetto (accanto a streamlit_app.py)
DEFAULT_DB_PATH = Path(__file__).resolve().parents[1] / "clinic.sqlite"
DEV_JWT_SECRET = "CHANGE_ME_DEV_SECRET"


@dataclass(frozen=True)
class Settings:
    """Configurazione applicativa, costruita una volta all'avvio e passata esplicitamente."""

    database_url: str = f"sqlite:///{DEFAULT_DB_PATH}"
    db_echo: bool = False
    jwt_secret: str = DEV_JWT_SECRET
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60
    log_level: str = "INFO"
    cors_origins: list[str] = field(default_factory=lambda: ["*"])


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def load_settings() -> Settings:
    """Legge .env + variabili d'ambiente."""
    load_dotenv()

    secret = os.getenv("JWT_SECRET")
    if not secret:
        # In produzione: mettila in variabile d'ambiente
        warnings.warn("JWT_SECRET non impostato: uso il segreto di sviluppo", RuntimeWarning, stacklevel=2)
        secret = DEV_JWT_SECRET

    origins = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

    return Settings(
        database_url=os.getenv("DATABASE_URL", f"sqlite:///{DEFAULT_DB_PATH}"),
        db_echo=_bool_env("DB_ECHO", False),
        jwt_secret=secret,
        jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
        access_token_expire_minutes=int(os.getenv("JWT_EXPIRE_MINUTES", "60")),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        cors_origins=origins or ["*"],
    )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
