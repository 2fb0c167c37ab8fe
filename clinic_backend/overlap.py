"""
Sovrapposizione di intervalli [start, end) semiaperti.

Lo stesso test viene usato in Python (fake in memoria, slot della stessa
richiesta) e in SQL (query sugli slot esistenti): tre casi in OR.
- il nuovo intervallo inizia dentro un esistente
- il nuovo intervallo finisce dentro un esistente
- il nuovo intervallo contiene interamente un esistente

Estremi che si toccano NON sono sovrapposti: 10:00-10:30 e 10:30-11:00 sono compatibili.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable

from sqlalchemy import and_, or_
from sqlalchemy.sql.elements import ColumnElement


def overlaps(start: datetime, end: datetime, other_start: datetime, other_end: datetime) -> bool:
    """True se il candidato [start, end) si sovrappone all'esistente [other_start, other_end)."""
    return (
        (other_start <= start and other_end > start)
        or (other_start < end and other_end >= end)
        or (other_start >= start and other_end <= end)
    )


def overlap_clause(start_col, end_col, start: datetime, end: datetime) -> ColumnElement[bool]:
    """Versione SQL di `overlaps`: colonne dell'esistente contro il candidato."""
    return or_(
        and_(start_col <= start, end_col > start),
        and_(start_col < end, end_col >= end),
        and_(start_col >= start, end_col <= end),
    )


def envelope(intervals: Iterable[tuple[datetime, datetime]]) -> tuple[datetime, datetime]:
    """Inizio minimo e fine massima di un insieme di intervalli (non vuoto)."""
    items = list(intervals)
    if not items:
        raise ValueError("envelope() richiede almeno un intervallo")
    return min(s for s, _ in items), max(e for _, e in items)


def as_utc_naive(value: datetime) -> datetime:
    """Le date a DB sono naive in UTC: converte eventuali offset ISO-8601."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
