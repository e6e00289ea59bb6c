# app/db/store.py
"""
Acceso a la colección de tokens QR.

Las escrituras que compiten (consumir, descartar) son condicionales sobre
consumed = false; el número de filas afectadas decide quién gana.
"""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import QRToken


class TokenStore:

    async def get_by_token(self, s: AsyncSession, token: str) -> QRToken | None:
        res = await s.execute(select(QRToken).where(QRToken.token == token))
        return res.scalar_one_or_none()

    async def find_open_for_subject(self, s: AsyncSession, subject_ref: str, purpose: str) -> list[QRToken]:
        res = await s.execute(
            select(QRToken)
            .where(
                QRToken.subject_ref == subject_ref,
                QRToken.purpose == purpose,
                QRToken.consumed.is_(False),
            )
            .order_by(QRToken.issued_at.desc())
        )
        return list(res.scalars().all())

    async def find_stale(self, s: AsyncSession, now: datetime, limit: int = 500) -> list[QRToken]:
        res = await s.execute(
            select(QRToken)
            .where(QRToken.consumed.is_(False), QRToken.expires_at < now)
            .order_by(QRToken.expires_at)
            .limit(limit)
        )
        return list(res.scalars().all())

    async def insert(self, s: AsyncSession, qr: QRToken) -> None:
        # flush para que una colisión del índice único salte aquí
        s.add(qr)
        await s.flush()

    async def consume_if_open(self, s: AsyncSession, token_id: str, now: datetime) -> bool:
        res = await s.execute(
            update(QRToken)
            .where(QRToken.id == token_id, QRToken.consumed.is_(False))
            .values(consumed=True, used_at=now)
            .execution_options(synchronize_session=False)
        )
        return res.rowcount == 1

    async def delete_if_open(self, s: AsyncSession, token_id: str) -> bool:
        res = await s.execute(
            delete(QRToken)
            .where(QRToken.id == token_id, QRToken.consumed.is_(False))
            .execution_options(synchronize_session=False)
        )
        return res.rowcount == 1

    async def history(
        self,
        s: AsyncSession,
        *,
        purpose: str | None = None,
        consumed: bool | None = None,
        offset: int = 0,
        limit: int = 10,
    ) -> tuple[list[QRToken], int]:
        conds = []
        if purpose:
            conds.append(QRToken.purpose == purpose)
        if consumed is not None:
            conds.append(QRToken.consumed.is_(consumed))

        total = (await s.execute(select(func.count()).select_from(QRToken).where(*conds))).scalar_one()
        res = await s.execute(
            select(QRToken)
            .where(*conds)
            .order_by(QRToken.issued_at.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(res.scalars().all()), total
