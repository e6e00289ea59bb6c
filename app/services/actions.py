# app/services/actions.py
"""Efectos de dominio de cada propósito de token."""
from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ActionError
from app.db.models import Appointment, AppointmentStatus, Payment, Purpose, QRToken

logger = logging.getLogger(__name__)


class ActionHandler:
    purpose: Purpose

    async def process(self, s: AsyncSession, token: QRToken) -> str:
        raise NotImplementedError

    async def on_expired(self, s: AsyncSession, token: QRToken) -> None:
        """Consecuencia de un token que venció sin usarse (por defecto ninguna)."""


def _issued_for_other_schedule(token: QRToken, appt: Appointment) -> bool:
    data = token.data or {}
    if "date" not in data or "time" not in data:
        return False
    return (data["date"], data["time"]) != (appt.scheduled_date.isoformat(), appt.scheduled_time)


class CheckInHandler(ActionHandler):
    purpose = Purpose.CHECK_IN

    async def process(self, s: AsyncSession, token: QRToken) -> str:
        if not token.subject_ref:
            raise ActionError("Invalid check-in QR: no appointment bound")

        appt = await s.get(Appointment, token.subject_ref)
        if appt is None:
            raise ActionError("Appointment not found")
        if appt.status == AppointmentStatus.CANCELLED:
            raise ActionError("Appointment was cancelled")

        await s.execute(
            update(Appointment)
            .where(Appointment.id == appt.id)
            .values(status=AppointmentStatus.ATTENDED, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        return f"Check-in successful for appointment on {appt.scheduled_date:%d/%m/%Y} at {appt.scheduled_time}"

    async def on_expired(self, s: AsyncSession, token: QRToken) -> None:
        if not token.subject_ref:
            return
        appt = await s.get(Appointment, token.subject_ref)
        if appt is None:
            return
        if _issued_for_other_schedule(token, appt):
            logger.info("Expired check-in QR %s belongs to a previous schedule of %s", token.id, appt.id)
            return
        # solo un turno que seguía confirmado pasa a ausente
        res = await s.execute(
            update(Appointment)
            .where(
                Appointment.id == token.subject_ref,
                Appointment.status == AppointmentStatus.CONFIRMED,
            )
            .values(status=AppointmentStatus.NO_SHOW, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        if res.rowcount:
            logger.info("Appointment %s marked as no-show (check-in QR expired)", token.subject_ref)


class PaymentConfirmationHandler(ActionHandler):
    purpose = Purpose.PAYMENT_CONFIRMATION

    async def process(self, s: AsyncSession, token: QRToken) -> str:
        if token.subject_ref:
            res = await s.execute(
                select(Payment)
                .where(Payment.appointment_id == token.subject_ref, Payment.status == "pending")
                .limit(1)
            )
            payment = res.scalar_one_or_none()
            if payment is None:
                raise ActionError("No pending payment for this appointment")
            await s.execute(
                update(Payment)
                .where(Payment.id == payment.id, Payment.status == "pending")
                .values(status="confirmed", confirmed_at=datetime.now(timezone.utc))
                .execution_options(synchronize_session=False)
            )
        return "Payment confirmed via QR"


class ServiceAccessHandler(ActionHandler):
    purpose = Purpose.SERVICE_ACCESS

    async def process(self, s: AsyncSession, token: QRToken) -> str:
        return "Access granted to exclusive feature"


class SpecialOfferHandler(ActionHandler):
    purpose = Purpose.SPECIAL_OFFER

    async def process(self, s: AsyncSession, token: QRToken) -> str:
        return "Special offer applied! Enjoy your exclusive discount"


def default_registry() -> dict[str, ActionHandler]:
    handlers = [
        CheckInHandler(),
        PaymentConfirmationHandler(),
        ServiceAccessHandler(),
        SpecialOfferHandler(),
    ]
    return {h.purpose.value: h for h in handlers}
