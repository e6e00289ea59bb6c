# app/core/crypto.py
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable
import base64
import secrets

import jwt

from app.core.config import settings
from app.core.keys import read_private_key, read_public_key

TOKEN_BYTES = 32


def new_token_string(random_bytes: Callable[[int], bytes] = secrets.token_bytes) -> str:
    """
    Token opaco para el QR: 32 bytes aleatorios (256 bits) en base64 URL-safe
    sin padding.
    """
    raw = random_bytes(TOKEN_BYTES)
    if len(raw) < TOKEN_BYTES:
        raise ValueError("random source returned too few bytes")
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


def sign_access_token(user_id: str, is_admin: bool = False, exp_minutes: int = 60) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "is_admin": is_admin,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=exp_minutes)).timestamp()),
    }
    return jwt.encode(payload, read_private_key(settings.priv_key_path), algorithm=settings.jwt_alg)


def verify_access_token(token: str) -> dict:
    """
    Verifica firma y expiración del JWT de acceso. Lanza
    jwt.InvalidTokenError si no es válido.
    """
    return jwt.decode(
        token,
        read_public_key(settings.pub_key_path),
        algorithms=[settings.jwt_alg],
        options={"require": ["sub", "exp"]},
    )
