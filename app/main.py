# app/main.py
import asyncio
import logging
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.api.issuer import router as issuer_router
from app.api.verifier import router as verifier_router
from app.api.holder import router as holder_router
from app.api.pages import router as pages_router
from app.api.deps import get_clock
from app.core.config import settings
from app.core.errors import TokenServiceError
from app.services.redeemer import TokenRedeemer

from app.db.session import engine, SessionLocal
from app.db.models import Base

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def _sweep_loop(interval: int):
    redeemer = TokenRedeemer(SessionLocal, get_clock())
    while True:
        await asyncio.sleep(interval)
        try:
            await redeemer.sweep_expired()
        except Exception:
            logger.exception("Expiry sweep failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # === STARTUP ===
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    sweeper = None
    if settings.sweep_interval_seconds > 0:
        sweeper = asyncio.create_task(_sweep_loop(settings.sweep_interval_seconds))
        logger.info("Expiry sweep every %ss", settings.sweep_interval_seconds)
    yield
    # === SHUTDOWN ===
    if sweeper is not None:
        sweeper.cancel()
        with suppress(asyncio.CancelledError):
            await sweeper
    await engine.dispose()

app = FastAPI(title="Sentirse Bien QR tokens", lifespan=lifespan)


@app.exception_handler(TokenServiceError)
async def token_service_error_handler(request: Request, exc: TokenServiceError):
    if exc.status_code >= 500:
        logger.error("%s %s - %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


app.include_router(issuer_router, prefix="/qr", tags=["qr-issuer"])
app.include_router(verifier_router, prefix="/qr", tags=["qr-verifier"])
app.include_router(holder_router,   prefix="/qr", tags=["qr-holder"])
app.include_router(pages_router, include_in_schema=False)

@app.get("/")
def root():
    return {"ok": True}
