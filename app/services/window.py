# app/services/window.py
"""
Ventanas de validez de los tokens.

Los propósitos ligados a un turno (check-in) se abren un rato antes de la hora
programada y se cierran un rato después; el resto vale desde la emisión durante
la duración pedida.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from app.core.errors import OutOfWindow
from app.db.models import Purpose

MIN_DURATION_MINUTES = 1
MAX_DURATION_MINUTES = 1440

SCHEDULE_BOUND = frozenset({Purpose.CHECK_IN})


@dataclass(frozen=True)
class WindowPolicy:
    open_before: timedelta = timedelta(minutes=30)
    close_after: timedelta = timedelta(minutes=60)
    default_duration_minutes: int = 60


@dataclass(frozen=True)
class Window:
    earliest_issuable: datetime | None
    latest_redeemable: datetime


def is_schedule_bound(purpose: Purpose) -> bool:
    return purpose in SCHEDULE_BOUND


def clamp_duration(minutes: int | None, default: int) -> int:
    if minutes is None:
        minutes = default
    return max(MIN_DURATION_MINUTES, min(MAX_DURATION_MINUTES, int(minutes)))


def compute_window(
    purpose: Purpose,
    *,
    now: datetime,
    policy: WindowPolicy,
    scheduled_at: datetime | None = None,
    duration_minutes: int | None = None,
) -> Window:
    """
    scheduled_at es un instante absoluto (la hora local del turno ya pasada
    por la zona horaria configurada).
    """
    if is_schedule_bound(purpose):
        if scheduled_at is None:
            raise ValueError(f"{purpose.value} requires a scheduled time")
        return Window(
            earliest_issuable=scheduled_at - policy.open_before,
            latest_redeemable=scheduled_at + policy.close_after,
        )

    minutes = clamp_duration(duration_minutes, policy.default_duration_minutes)
    return Window(earliest_issuable=None, latest_redeemable=now + timedelta(minutes=minutes))


def ensure_issuable(
    window: Window,
    now: datetime,
    to_local: Callable[[datetime], datetime] = lambda dt: dt,
) -> None:
    if window.earliest_issuable is not None and now < window.earliest_issuable:
        available_at = to_local(window.earliest_issuable)
        raise OutOfWindow(
            f"QR will be available from {available_at:%d/%m/%Y %H:%M}",
            too_early=True,
            available_at=available_at,
        )
    if now > window.latest_redeemable:
        raise OutOfWindow("Appointment window is over, QR no longer available", too_early=False)
