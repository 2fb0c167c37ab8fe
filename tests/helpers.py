from __future__ import annotations

from datetime import datetime

from clinic_backend.booking import SlotRequest

DAY = (2030, 1, 14)


def at(hour: int, minute: int = 0, day: tuple[int, int, int] = DAY) -> datetime:
    return datetime(*day, hour, minute)


def slot(name: str, start: datetime, end: datetime) -> SlotRequest:
    return SlotRequest(device_name=name, start_time=start, end_time=end)
