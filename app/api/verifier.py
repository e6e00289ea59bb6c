from urllib.parse import urlencode

from fastapi import APIRouter, Depends
from fastapi.responses import RedirectResponse
from pydantic import BaseModel

from app.api.deps import get_redeemer
from app.core.config import settings
from app.services.redeemer import TokenRedeemer

router = APIRouter()


class RedeemInput(BaseModel):
    token: str


@router.get("/validate/{token}")
async def validate_qr(token: str, redeemer: TokenRedeemer = Depends(get_redeemer)):
    # Lo que abre el móvil al escanear: sin autenticación, el token es la credencial
    outcome = await redeemer.redeem(token)
    if outcome.ok:
        query = urlencode({"purpose": outcome.purpose, "message": outcome.message})
        return RedirectResponse(f"{settings.success_page_url}?{query}", status_code=302)
    query = urlencode({"message": outcome.message})
    return RedirectResponse(f"{settings.error_page_url}?{query}", status_code=302)


@router.post("/redeem")
async def redeem_qr(body: RedeemInput, redeemer: TokenRedeemer = Depends(get_redeemer)):
    outcome = await redeemer.redeem(body.token)
    return outcome.to_dict()


@router.get("/info/{token}")
async def qr_info(token: str, redeemer: TokenRedeemer = Depends(get_redeemer)):
    # Solo lectura: no dispara el cierre por vencimiento
    return await redeemer.describe(token)
