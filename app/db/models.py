# app/db/models.py
from __future__ import annotations

import enum
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy import JSON, Boolean, Date, DateTime, Index, Numeric, String, TypeDecorator


class UTCDateTime(TypeDecorator):
    """Guarda UTC naive y devuelve datetimes aware (SQLite pierde la zona)."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Purpose(str, enum.Enum):
    CHECK_IN = "check_in"
    PAYMENT_CONFIRMATION = "payment_confirmation"
    SERVICE_ACCESS = "service_access"
    SPECIAL_OFFER = "special_offer"


class AppointmentStatus:
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    ATTENDED = "attended"
    NO_SHOW = "no_show"


class Base(DeclarativeBase):
    pass


class QRToken(Base):
    __tablename__ = "qr_tokens"
    __table_args__ = (
        Index("ix_qr_tokens_subject_purpose", "subject_ref", "purpose"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    token: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    purpose: Mapped[str] = mapped_column(String(32))
    subject_ref: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_ref: Mapped[str | None] = mapped_column(String(64), nullable=True)
    issued_by: Mapped[str] = mapped_column(String(64))
    data: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    issued_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime(), index=True)
    used_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    consumed: Mapped[bool] = mapped_column(Boolean, default=False)

    def is_redeemable(self, now: datetime) -> bool:
        return not self.consumed and now <= self.expires_at


class Appointment(Base):
    __tablename__ = "appointments"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    client_id: Mapped[str] = mapped_column(String(64), index=True)
    professional_id: Mapped[str] = mapped_column(String(64), index=True)
    service_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Fecha y hora en hora local del negocio ("HH:MM")
    scheduled_date: Mapped[date] = mapped_column(Date)
    scheduled_time: Mapped[str] = mapped_column(String(5))

    status: Mapped[str] = mapped_column(String(16), default=AppointmentStatus.PENDING)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow)

    def scheduled_local(self) -> datetime:
        hour, minute = (int(p) for p in self.scheduled_time.split(":"))
        d = self.scheduled_date
        return datetime(d.year, d.month, d.day, hour, minute)


class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    appointment_id: Mapped[str] = mapped_column(String(64), index=True)
    client_id: Mapped[str] = mapped_column(String(64))
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    method: Mapped[str] = mapped_column(String(16), default="cash")
    status: Mapped[str] = mapped_column(String(16), default="pending")
    confirmed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
