# app/services/issuer.py
from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.clock import Clock
from app.core.config import Settings
from app.core.crypto import new_token_string
from app.core.errors import Forbidden, InvalidRequest, SubjectNotEligible, SubjectNotFound, TokenCollision
from app.db.models import Appointment, AppointmentStatus, Purpose, QRToken
from app.db.store import TokenStore
from app.services.window import WindowPolicy, compute_window, ensure_issuable, is_schedule_bound

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Caller:
    id: str
    is_privileged: bool = False


@dataclass(frozen=True)
class IssuedToken:
    token: QRToken
    url: str
    reused: bool = False


def redemption_url(base_url: str, token: str) -> str:
    return f"{base_url.rstrip('/')}/validate/{token}"


class TokenIssuer:
    """Emite tokens QR de un solo uso, reutilizando el vigente si coincide."""

    def __init__(
        self,
        sessions: async_sessionmaker,
        settings: Settings,
        clock: Clock,
        *,
        store: TokenStore | None = None,
        random_bytes: Callable[[int], bytes] = secrets.token_bytes,
    ):
        self._sessions = sessions
        self._settings = settings
        self._clock = clock
        self._store = store or TokenStore()
        self._random_bytes = random_bytes
        self.policy = WindowPolicy(
            open_before=timedelta(minutes=settings.checkin_open_minutes),
            close_after=timedelta(minutes=settings.checkin_close_minutes),
            default_duration_minutes=settings.default_expiration_minutes,
        )
        self.reuse_tolerance = timedelta(seconds=settings.reuse_tolerance_seconds)

    async def issue_checkin(self, caller: Caller, appointment_id: str) -> IssuedToken:
        return await self.issue(caller, Purpose.CHECK_IN, subject_ref=appointment_id)

    async def issue(
        self,
        caller: Caller,
        purpose: Purpose,
        *,
        subject_ref: str | None = None,
        user_ref: str | None = None,
        duration_minutes: int | None = None,
        data: dict | None = None,
    ) -> IssuedToken:
        now = self._clock.now()

        async with self._sessions() as s:
            appt = await self._authorize(s, caller, subject_ref, user_ref)

            scheduled_at = None
            if is_schedule_bound(purpose):
                if appt is None:
                    raise InvalidRequest(f"{purpose.value} QR requires an appointment")
                if appt.status != AppointmentStatus.CONFIRMED:
                    raise SubjectNotEligible("Appointment must be confirmed to generate a check-in QR")
                scheduled_at = self._clock.localize(appt.scheduled_local())

            window = compute_window(
                purpose,
                now=now,
                policy=self.policy,
                scheduled_at=scheduled_at,
                duration_minutes=duration_minutes,
            )
            ensure_issuable(window, now, self._clock.to_local)
            expires_at = window.latest_redeemable

            if subject_ref:
                existing = await self._reusable(s, subject_ref, purpose, expires_at, now)
                if existing is not None:
                    await s.commit()
                    logger.info("Reusing QR token for %s %s", purpose.value, subject_ref)
                    return IssuedToken(existing, redemption_url(self._settings.qr_base_url, existing.token), reused=True)

            if appt is not None and is_schedule_bound(purpose):
                # fecha y hora del turno quedan fijadas en el token
                data = {**(data or {}), **self._checkin_data(appt, window)}

            qr = QRToken(
                token=new_token_string(self._random_bytes),
                purpose=purpose.value,
                subject_ref=subject_ref,
                user_ref=appt.client_id if appt is not None else (user_ref or caller.id),
                issued_by=caller.id,
                data=data,
                issued_at=now,
                expires_at=expires_at,
                consumed=False,
            )
            try:
                await self._store.insert(s, qr)
                await s.commit()
            except IntegrityError as exc:
                await s.rollback()
                logger.error("Token collision while issuing %s QR", purpose.value)
                raise TokenCollision("Could not issue QR code, please retry") from exc

        logger.info("QR token issued: %s for %s (subject=%s)", qr.id, purpose.value, subject_ref)
        return IssuedToken(qr, redemption_url(self._settings.qr_base_url, qr.token))

    async def _authorize(
        self,
        s: AsyncSession,
        caller: Caller,
        subject_ref: str | None,
        user_ref: str | None,
    ) -> Appointment | None:
        if subject_ref:
            appt = await s.get(Appointment, subject_ref)
            if appt is None:
                raise SubjectNotFound("Appointment not found")
            if not caller.is_privileged and caller.id not in (appt.client_id, appt.professional_id):
                raise Forbidden("You are not allowed to generate a QR for this appointment")
            return appt

        if not caller.is_privileged and user_ref not in (None, caller.id):
            raise Forbidden("You can only generate QR codes for yourself")
        return None

    async def _reusable(
        self,
        s: AsyncSession,
        subject_ref: str,
        purpose: Purpose,
        expires_at: datetime,
        now: datetime,
    ) -> QRToken | None:
        found = None
        for cand in await self._store.find_open_for_subject(s, subject_ref, purpose.value):
            matches = abs(cand.expires_at - expires_at) <= self.reuse_tolerance
            if cand.expires_at < now:
                if matches:
                    # vencido sin usar en su propia ventana: lo cierra el canje o el barrido
                    continue
            elif found is None and matches:
                found = cand
                continue
            # la agenda cambió (o es un duplicado): se descarta y se emite otro
            if await self._store.delete_if_open(s, cand.id):
                logger.info("Discarded stale QR token %s for %s %s", cand.id, purpose.value, subject_ref)
        return found

    def _checkin_data(self, appt: Appointment, window) -> dict:
        opens = self._clock.to_local(window.earliest_issuable)
        closes = self._clock.to_local(window.latest_redeemable)
        return {
            "appointment_id": appt.id,
            "client_id": appt.client_id,
            "date": appt.scheduled_date.isoformat(),
            "time": appt.scheduled_time,
            "auto_generated": True,
            "checkin_window": f"{opens:%H:%M} - {closes:%H:%M}",
        }
