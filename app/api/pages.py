from fastapi import APIRouter

router = APIRouter()


# Destinos de la redirección tras escanear; el front pinta el resultado
@router.get("/qr-success")
def qr_success(purpose: str | None = None, message: str | None = None):
    return {"ok": True, "purpose": purpose, "message": message}


@router.get("/qr-error")
def qr_error(message: str | None = None):
    return {"ok": False, "message": message}
