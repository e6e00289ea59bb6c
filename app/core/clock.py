# app/core/clock.py
from __future__ import annotations

from datetime import datetime, timezone
from zoneinfo import ZoneInfo


class Clock:
    """Instante actual en UTC y conversiones con la zona horaria del negocio."""

    def __init__(self, time_zone: str):
        self.zone = ZoneInfo(time_zone)

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def localize(self, local: datetime) -> datetime:
        """Hora de pared local (naive) -> instante UTC."""
        return local.replace(tzinfo=self.zone).astimezone(timezone.utc)

    def to_local(self, instant: datetime) -> datetime:
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=timezone.utc)
        return instant.astimezone(self.zone)
