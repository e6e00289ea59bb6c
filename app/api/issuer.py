# app/api/issuer.py
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel

from app.api.deps import get_caller, get_clock, get_issuer, get_notifier, get_redeemer, require_admin
from app.core.clock import Clock
from app.db.models import Purpose
from app.services.issuer import Caller, IssuedToken, TokenIssuer, redemption_url
from app.services.notifier import Notifier, qr_email
from app.services.qr import render_png_base64
from app.services.redeemer import TokenRedeemer
from app.core.config import settings

router = APIRouter()


class GenerateInput(BaseModel):
    purpose: Purpose
    subject_ref: str | None = None
    user_ref: str | None = None
    expiration_minutes: int | None = None
    data: dict | None = None


class SendInput(BaseModel):
    address: str


def _qr_response(issued: IssuedToken, clock: Clock) -> dict:
    qr = issued.token
    return {
        "token": qr.token,
        "purpose": qr.purpose,
        "url": issued.url,
        "image_base64": render_png_base64(issued.url),
        "expires_at": clock.to_local(qr.expires_at).isoformat(),
        "reused": issued.reused,
    }


@router.post("/generate")
async def generate_qr(
    body: GenerateInput,
    caller: Caller = Depends(get_caller),
    issuer: TokenIssuer = Depends(get_issuer),
    clock: Clock = Depends(get_clock),
):
    issued = await issuer.issue(
        caller,
        body.purpose,
        subject_ref=body.subject_ref,
        user_ref=body.user_ref,
        duration_minutes=body.expiration_minutes,
        data=body.data,
    )
    return _qr_response(issued, clock)


@router.post("/appointments/{appointment_id}/checkin")
async def checkin_qr(
    appointment_id: str,
    caller: Caller = Depends(get_caller),
    issuer: TokenIssuer = Depends(get_issuer),
    clock: Clock = Depends(get_clock),
):
    issued = await issuer.issue_checkin(caller, appointment_id)
    return _qr_response(issued, clock)


@router.post("/{token}/send")
async def send_qr(
    token: str,
    body: SendInput,
    caller: Caller = Depends(get_caller),
    redeemer: TokenRedeemer = Depends(get_redeemer),
    notifier: Notifier = Depends(get_notifier),
):
    info = await redeemer.describe(token)
    if not caller.is_privileged and caller.id not in (info["issued_by"], info["user_ref"]):
        raise HTTPException(status_code=403, detail="not allowed to send this QR")

    url = redemption_url(settings.qr_base_url, token)
    subject, html = qr_email(
        info["purpose"],
        url,
        render_png_base64(url),
        datetime.fromisoformat(info["expires_at"]),
    )
    delivered = await run_in_threadpool(notifier.deliver, body.address, subject, html)
    return {"delivered": bool(delivered)}


@router.get("/history")
async def qr_history(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    purpose: Purpose | None = None,
    consumed: bool | None = None,
    _admin: Caller = Depends(require_admin),
    redeemer: TokenRedeemer = Depends(get_redeemer),
):
    return await redeemer.history(
        purpose=purpose.value if purpose else None,
        consumed=consumed,
        page=page,
        page_size=page_size,
    )


@router.post("/sweep")
async def sweep_expired(
    _admin: Caller = Depends(require_admin),
    redeemer: TokenRedeemer = Depends(get_redeemer),
):
    return {"closed": await redeemer.sweep_expired()}
