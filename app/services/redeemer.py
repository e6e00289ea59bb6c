# app/services/redeemer.py
"""
Canje de tokens QR.

Clasificación, en orden: desconocido, vencido sin usar (se cierra al leerlo),
ya usado, válido. En el camino válido el consumo condicional y el efecto del
handler van en la misma transacción: si el handler falla no queda consumido.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.clock import Clock
from app.core.errors import ActionError, TokenNotFound
from app.db.models import QRToken
from app.db.store import TokenStore
from app.services.actions import ActionHandler, default_registry

logger = logging.getLogger(__name__)

DISPLAY_FMT = "%d/%m/%Y %H:%M"


class OutcomeKind(str, enum.Enum):
    SUCCESS = "success"
    UNKNOWN = "unknown"
    EXPIRED = "expired"
    ALREADY_USED = "already_used"
    PROCESSING_FAILED = "processing_failed"
    UNRECOGNIZED_PURPOSE = "unrecognized_purpose"


@dataclass(frozen=True)
class RedemptionOutcome:
    kind: OutcomeKind
    message: str
    purpose: str | None = None
    expires_at: datetime | None = None
    used_at: datetime | None = None
    now: datetime | None = None

    @property
    def ok(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS

    @property
    def retryable(self) -> bool:
        return self.kind is OutcomeKind.PROCESSING_FAILED

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "kind": self.kind.value,
            "message": self.message,
            "purpose": self.purpose,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "used_at": self.used_at.isoformat() if self.used_at else None,
            "now": self.now.isoformat() if self.now else None,
            "retryable": self.retryable,
        }


class TokenRedeemer:
    def __init__(
        self,
        sessions: async_sessionmaker,
        clock: Clock,
        *,
        store: TokenStore | None = None,
        handlers: dict[str, ActionHandler] | None = None,
    ):
        self._sessions = sessions
        self._clock = clock
        self._store = store or TokenStore()
        self._handlers = handlers if handlers is not None else default_registry()

    async def redeem(self, token: str) -> RedemptionOutcome:
        now = self._clock.now()
        async with self._sessions() as s:
            qr = await self._store.get_by_token(s, token)
            if qr is None:
                logger.warning("Redemption of unknown QR token")
                return RedemptionOutcome(OutcomeKind.UNKNOWN, "Invalid QR code")

            if not qr.consumed and now > qr.expires_at:
                return await self._expire(s, qr, now)

            if qr.consumed:
                return self._already_used(qr)

            return await self._process(s, qr, now)

    async def sweep_expired(self) -> int:
        """Cierra los tokens vencidos sin usar; devuelve cuántos cerró."""
        now = self._clock.now()
        async with self._sessions() as s:
            stale = [qr.token for qr in await self._store.find_stale(s, now)]

        closed = 0
        for token in stale:
            # una sesión por token: un fallo no arrastra al resto
            async with self._sessions() as s:
                qr = await self._store.get_by_token(s, token)
                if qr is None or qr.consumed:
                    continue
                if await self._close_expired(s, qr, now) == "closed":
                    closed += 1
        if closed:
            logger.info("Expiry sweep closed %d QR tokens", closed)
        return closed

    async def describe(self, token: str) -> dict:
        now = self._clock.now()
        async with self._sessions() as s:
            qr = await self._store.get_by_token(s, token)
        if qr is None:
            raise TokenNotFound("Invalid QR code")
        return token_view(qr, now, self._clock)

    async def history(
        self,
        *,
        purpose: str | None = None,
        consumed: bool | None = None,
        page: int = 1,
        page_size: int = 10,
    ) -> dict:
        page = max(1, page)
        page_size = max(1, min(100, page_size))
        now = self._clock.now()
        async with self._sessions() as s:
            rows, total = await self._store.history(
                s,
                purpose=purpose,
                consumed=consumed,
                offset=(page - 1) * page_size,
                limit=page_size,
            )
        return {
            "items": [token_view(r, now, self._clock) for r in rows],
            "total": total,
            "page": page,
            "page_size": page_size,
        }

    async def _process(self, s: AsyncSession, qr: QRToken, now: datetime) -> RedemptionOutcome:
        token_id, purpose = qr.id, qr.purpose
        handler = self._handlers.get(purpose)
        if handler is None:
            logger.error("QR token %s has unrecognized purpose %r", token_id, purpose)
            return RedemptionOutcome(
                OutcomeKind.UNRECOGNIZED_PURPOSE,
                f"Unrecognized action: {purpose}",
                purpose=purpose,
            )

        try:
            if not await self._store.consume_if_open(s, token_id, now):
                await s.rollback()
                return await self._lost_race(s, qr)
            message = await handler.process(s, qr)
            await s.commit()
        except ActionError as exc:
            await s.rollback()
            logger.warning("QR action failed for %s: %s", token_id, exc.message)
            return RedemptionOutcome(OutcomeKind.PROCESSING_FAILED, exc.message, purpose=purpose)
        except Exception:
            await s.rollback()
            logger.exception("Error processing QR %s (%s)", token_id, purpose)
            return RedemptionOutcome(
                OutcomeKind.PROCESSING_FAILED,
                f"Error processing {purpose}, please try again",
                purpose=purpose,
            )

        logger.info("QR token redeemed: %s - action: %s", token_id, purpose)
        return RedemptionOutcome(OutcomeKind.SUCCESS, message, purpose=purpose, used_at=self._clock.to_local(now))

    async def _expire(self, s: AsyncSession, qr: QRToken, now: datetime) -> RedemptionOutcome:
        purpose = qr.purpose
        expires_at = self._clock.to_local(qr.expires_at)
        now_local = self._clock.to_local(now)

        status = await self._close_expired(s, qr, now)
        if status == "lost":
            return await self._lost_race(s, qr)
        if status == "failed":
            return RedemptionOutcome(
                OutcomeKind.PROCESSING_FAILED,
                "Could not close expired QR code, please try again",
                purpose=purpose,
                expires_at=expires_at,
                now=now_local,
            )

        return RedemptionOutcome(
            OutcomeKind.EXPIRED,
            f"QR code expired at {expires_at:{DISPLAY_FMT}} (now {now_local:{DISPLAY_FMT}})",
            purpose=purpose,
            expires_at=expires_at,
            now=now_local,
        )

    async def _close_expired(self, s: AsyncSession, qr: QRToken, now: datetime) -> str:
        """Marca consumido el token vencido y aplica la consecuencia de su propósito."""
        token_id, purpose = qr.id, qr.purpose
        try:
            if not await self._store.consume_if_open(s, token_id, now):
                await s.rollback()
                return "lost"
            handler = self._handlers.get(purpose)
            if handler is not None:
                await handler.on_expired(s, qr)
            await s.commit()
        except Exception:
            # queda abierto; otra lectura o el barrido lo reintenta
            await s.rollback()
            logger.exception("Could not close expired QR token %s", token_id)
            return "failed"

        logger.info("QR token %s expired unused (%s)", token_id, purpose)
        return "closed"

    async def _lost_race(self, s: AsyncSession, qr: QRToken) -> RedemptionOutcome:
        await s.refresh(qr)
        return self._already_used(qr)

    def _already_used(self, qr: QRToken) -> RedemptionOutcome:
        used_at = self._clock.to_local(qr.used_at) if qr.used_at else None
        when = f"{used_at:{DISPLAY_FMT}}" if used_at else "an earlier time"
        if qr.used_at is not None and qr.used_at > qr.expires_at:
            message = f"QR code expired unused and was closed at {when}"
        else:
            message = f"QR code already used at {when}"
        logger.warning("QR token %s presented again after use", qr.id)
        return RedemptionOutcome(
            OutcomeKind.ALREADY_USED,
            message,
            purpose=qr.purpose,
            expires_at=self._clock.to_local(qr.expires_at),
            used_at=used_at,
        )


def token_view(qr: QRToken, now: datetime, clock: Clock) -> dict:
    return {
        "token": qr.token,
        "purpose": qr.purpose,
        "subject_ref": qr.subject_ref,
        "user_ref": qr.user_ref,
        "issued_by": qr.issued_by,
        "data": qr.data,
        "issued_at": clock.to_local(qr.issued_at).isoformat(),
        "expires_at": clock.to_local(qr.expires_at).isoformat(),
        "used_at": clock.to_local(qr.used_at).isoformat() if qr.used_at else None,
        "consumed": qr.consumed,
        "is_redeemable": qr.is_redeemable(now),
    }
