from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from io import BytesIO

from app.api.deps import get_redeemer
from app.core.config import settings
from app.services.issuer import redemption_url
from app.services.qr import render_png
from app.services.redeemer import TokenRedeemer

router = APIRouter()


@router.get("/image/{token}")
async def qr_image(token: str, redeemer: TokenRedeemer = Depends(get_redeemer)):
    await redeemer.describe(token)  # 404 si no existe
    buf = BytesIO(render_png(redemption_url(settings.qr_base_url, token)))
    return StreamingResponse(buf, media_type="image/png")
