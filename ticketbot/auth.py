# ticketbot/auth.py
from __future__ import annotations

import hmac
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import jwt

from .config import Settings, settings as default_settings


def verify_gateway_key(candidate: str | None, cfg: Settings = default_settings) -> bool:
    if not candidate or not cfg.gateway_key:
        return False
    return hmac.compare_digest(candidate.encode(), cfg.gateway_key.encode())


def create_token(user_id: str, cfg: Settings = default_settings) -> str:
    exp = datetime.now(timezone.utc) + timedelta(minutes=cfg.jwt_expire_minutes)
    payload = {"sub": str(user_id), "exp": exp}
    return jwt.encode(payload, cfg.jwt_secret, algorithm=cfg.jwt_alg)


def decode_token(token: str, cfg: Settings = default_settings) -> Optional[str]:
    try:
        data = jwt.decode(token, cfg.jwt_secret, algorithms=[cfg.jwt_alg])
        sub = data.get("sub")
        return str(sub) if sub else None
    except Exception:
        return None
