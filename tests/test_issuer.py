# tests/test_issuer.py
import asyncio
import base64
from datetime import date, datetime, timedelta, timezone

import pytest

from app.core.errors import (
    Forbidden,
    InvalidRequest,
    OutOfWindow,
    SubjectNotEligible,
    SubjectNotFound,
    TokenCollision,
)
from app.db.models import Appointment, AppointmentStatus, Purpose
from app.services.issuer import Caller, TokenIssuer

ADMIN = Caller("admin-1", is_privileged=True)
CLIENT = Caller("client-1")
PRO = Caller("pro-1")
STRANGER = Caller("someone-else")


@pytest.fixture
def issuer(sessions, svc_settings, clock):
    return TokenIssuer(sessions, svc_settings, clock)


def test_checkin_inside_window(issuer, db, clock):
    appt = db.appointment()
    clock.set_local(2026, 10, 20, 13, 35)

    issued = asyncio.run(issuer.issue_checkin(CLIENT, appt.id))

    qr = issued.token
    assert qr.purpose == "check_in"
    assert qr.subject_ref == appt.id
    assert qr.user_ref == "client-1"
    assert qr.consumed is False and qr.used_at is None
    assert clock.to_local(qr.expires_at).strftime("%H:%M") == "15:00"
    assert issued.url == f"http://testserver/qr/validate/{qr.token}"
    assert issued.reused is False
    assert qr.data["checkin_window"] == "13:30 - 15:00"
    assert qr.data["auto_generated"] is True


def test_checkin_too_early(issuer, db, clock):
    appt = db.appointment()
    clock.set_local(2026, 10, 20, 13, 20)

    with pytest.raises(OutOfWindow) as exc:
        asyncio.run(issuer.issue_checkin(CLIENT, appt.id))

    assert exc.value.too_early is True
    assert exc.value.available_at.strftime("%H:%M") == "13:30"
    assert db.tokens_for(appt.id) == []


def test_checkin_too_late(issuer, db, clock):
    appt = db.appointment()
    clock.set_local(2026, 10, 20, 15, 1)

    with pytest.raises(OutOfWindow) as exc:
        asyncio.run(issuer.issue_checkin(CLIENT, appt.id))
    assert exc.value.too_early is False


def test_checkin_requires_confirmed_appointment(issuer, db, clock):
    appt = db.appointment(status=AppointmentStatus.PENDING)
    clock.set_local(2026, 10, 20, 13, 45)

    with pytest.raises(SubjectNotEligible):
        asyncio.run(issuer.issue_checkin(CLIENT, appt.id))


def test_checkin_requires_appointment(issuer):
    with pytest.raises(InvalidRequest):
        asyncio.run(issuer.issue(ADMIN, Purpose.CHECK_IN))


def test_unknown_appointment(issuer):
    with pytest.raises(SubjectNotFound):
        asyncio.run(issuer.issue_checkin(ADMIN, "nope"))


def test_professional_and_admin_may_issue(issuer, db, clock):
    appt = db.appointment()
    clock.set_local(2026, 10, 20, 13, 50)

    by_pro = asyncio.run(issuer.issue_checkin(PRO, appt.id))
    by_admin = asyncio.run(issuer.issue_checkin(ADMIN, appt.id))
    assert by_pro.token.token == by_admin.token.token


def test_stranger_is_forbidden(issuer, db, clock):
    appt = db.appointment()
    clock.set_local(2026, 10, 20, 13, 50)

    with pytest.raises(Forbidden):
        asyncio.run(issuer.issue_checkin(STRANGER, appt.id))


def test_non_privileged_only_for_themselves(issuer):
    with pytest.raises(Forbidden):
        asyncio.run(issuer.issue(CLIENT, Purpose.SPECIAL_OFFER, user_ref="client-2"))

    own = asyncio.run(issuer.issue(CLIENT, Purpose.SPECIAL_OFFER, user_ref="client-1"))
    assert own.token.user_ref == "client-1"

    implicit = asyncio.run(issuer.issue(CLIENT, Purpose.SPECIAL_OFFER))
    assert implicit.token.user_ref == "client-1"
    assert implicit.token.issued_by == "client-1"


def test_admin_may_issue_for_anyone(issuer):
    issued = asyncio.run(issuer.issue(ADMIN, Purpose.SERVICE_ACCESS, user_ref="client-9"))
    assert issued.token.user_ref == "client-9"
    assert issued.token.issued_by == "admin-1"


def test_repeated_request_reuses_token(issuer, db, clock):
    appt = db.appointment()
    clock.set_local(2026, 10, 20, 13, 40)
    first = asyncio.run(issuer.issue_checkin(CLIENT, appt.id))

    clock.advance(minutes=5)
    second = asyncio.run(issuer.issue_checkin(CLIENT, appt.id))

    assert second.token.token == first.token.token
    assert second.reused is True
    assert len(db.tokens_for(appt.id)) == 1


def test_reschedule_discards_stale_token(issuer, db, clock):
    appt = db.appointment()
    clock.set_local(2026, 10, 20, 13, 40)
    first = asyncio.run(issuer.issue_checkin(CLIENT, appt.id))

    db.update(Appointment, appt.id, scheduled_time="14:05")
    second = asyncio.run(issuer.issue_checkin(CLIENT, appt.id))

    assert second.token.token != first.token.token
    assert clock.to_local(second.token.expires_at).strftime("%H:%M") == "15:05"
    assert db.token(first.token.token) is None
    assert [t.token for t in db.tokens_for(appt.id)] == [second.token.token]


def test_adhoc_duration_is_clamped(issuer, clock):
    issued = asyncio.run(issuer.issue(ADMIN, Purpose.SPECIAL_OFFER, duration_minutes=10_000))
    assert issued.token.expires_at == clock.now() + timedelta(minutes=1440)

    short = asyncio.run(issuer.issue(ADMIN, Purpose.SPECIAL_OFFER, duration_minutes=0))
    assert short.token.expires_at == clock.now() + timedelta(minutes=1)


def test_adhoc_without_subject_never_reuses(issuer):
    a = asyncio.run(issuer.issue(ADMIN, Purpose.SPECIAL_OFFER, duration_minutes=60))
    b = asyncio.run(issuer.issue(ADMIN, Purpose.SPECIAL_OFFER, duration_minutes=60))
    assert a.token.token != b.token.token


def test_token_string_is_urlsafe_256_bits(issuer):
    issued = asyncio.run(issuer.issue(ADMIN, Purpose.SERVICE_ACCESS))
    tok = issued.token.token
    assert "=" not in tok and "+" not in tok and "/" not in tok
    raw = base64.urlsafe_b64decode(tok + "=" * (-len(tok) % 4))
    assert len(raw) == 32


def test_collision_is_a_hard_failure(sessions, svc_settings, clock):
    fixed = TokenIssuer(sessions, svc_settings, clock, random_bytes=lambda n: b"\x01" * n)
    first = asyncio.run(fixed.issue(ADMIN, Purpose.SERVICE_ACCESS))

    with pytest.raises(TokenCollision):
        asyncio.run(fixed.issue(ADMIN, Purpose.SERVICE_ACCESS))

    # el primero sigue intacto
    assert first.token.consumed is False


def test_issued_at_comes_from_clock(issuer, clock):
    clock.current = datetime(2026, 1, 2, 3, 4, tzinfo=timezone.utc)
    issued = asyncio.run(issuer.issue(ADMIN, Purpose.PAYMENT_CONFIRMATION))
    assert issued.token.issued_at == clock.current


def test_reschedule_discards_expired_token(issuer, db, clock):
    appt = db.appointment()
    clock.set_local(2026, 10, 20, 13, 45)
    old = asyncio.run(issuer.issue_checkin(CLIENT, appt.id))

    # el turno pasa al 22/10 y nadie escanea el QR viejo
    db.update(Appointment, appt.id, scheduled_date=date(2026, 10, 22))
    clock.set_local(2026, 10, 22, 13, 45)
    new = asyncio.run(issuer.issue_checkin(CLIENT, appt.id))

    assert new.reused is False
    assert db.token(old.token.token) is None
    assert [t.token for t in db.tokens_for(appt.id)] == [new.token.token]
    assert new.token.data["date"] == "2026-10-22"
    assert db.get(Appointment, appt.id).status == AppointmentStatus.CONFIRMED


def test_checkin_data_is_not_overridden_by_caller(issuer, db, clock):
    appt = db.appointment()
    clock.set_local(2026, 10, 20, 13, 45)
    issued = asyncio.run(issuer.issue(ADMIN, Purpose.CHECK_IN, subject_ref=appt.id,
                                      data={"date": "1999-01-01", "note": "vip"}))
    assert issued.token.data["date"] == "2026-10-20"
    assert issued.token.data["note"] == "vip"
