# app/api/deps.py
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import InvalidTokenError

from app.core.clock import Clock
from app.core.config import settings
from app.core.crypto import verify_access_token
from app.db.session import SessionLocal
from app.services.issuer import Caller, TokenIssuer
from app.services.notifier import Notifier, build_notifier
from app.services.redeemer import TokenRedeemer

_bearer = HTTPBearer(auto_error=False)
_clock = Clock(settings.time_zone)


def get_clock() -> Clock:
    return _clock


def get_sessions():
    return SessionLocal


def get_notifier() -> Notifier:
    return build_notifier(settings)


def get_issuer(clock: Clock = Depends(get_clock), sessions=Depends(get_sessions)) -> TokenIssuer:
    return TokenIssuer(sessions, settings, clock)


def get_redeemer(clock: Clock = Depends(get_clock), sessions=Depends(get_sessions)) -> TokenRedeemer:
    return TokenRedeemer(sessions, clock)


def get_caller(creds: HTTPAuthorizationCredentials | None = Depends(_bearer)) -> Caller:
    if creds is None:
        raise HTTPException(status_code=401, detail="missing bearer token")
    try:
        claims = verify_access_token(creds.credentials)
    except (InvalidTokenError, ValueError) as e:
        raise HTTPException(status_code=401, detail=f"invalid bearer token: {e}")
    return Caller(id=str(claims["sub"]), is_privileged=bool(claims.get("is_admin", False)))


def require_admin(caller: Caller = Depends(get_caller)) -> Caller:
    if not caller.is_privileged:
        raise HTTPException(status_code=403, detail="admin only")
    return caller
