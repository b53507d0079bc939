# ticketbot/config.py
from __future__ import annotations

import os
from decimal import Decimal
from typing import FrozenSet

from pydantic import BaseModel

# Load .env locally (safe in prod too)
try:
    from dotenv import load_dotenv

    load_dotenv()
except Exception:
    pass


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() not in {"0", "false", "no", ""}


def _env_ids(name: str) -> FrozenSet[str]:
    raw = os.getenv(name, "")
    return frozenset(p.strip() for p in raw.split(",") if p.strip())


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, str(default))
    try:
        return int(raw)
    except Exception:
        return default


# -------------------
# Config (env-driven)
# -------------------
class Settings(BaseModel):
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./data/ticketbot.db")

    # Bearer tokens for the chat gateway's users
    jwt_secret: str = os.getenv("JWT_SECRET", "dev-secret-change-me")
    jwt_alg: str = os.getenv("JWT_ALG", "HS256")
    jwt_expire_minutes: int = _env_int("JWT_EXPIRE_MIN", 1440)
    gateway_key: str = os.getenv("GATEWAY_KEY", "dev-gateway-key")

    admin_user_ids: FrozenSet[str] = _env_ids("ADMIN_USER_IDS")
    chef_user_ids: FrozenSet[str] = _env_ids("CHEF_USER_IDS")

    # Flat per-order amounts owed to the operator
    doordash_amount: Decimal = Decimal(os.getenv("DOORDASH_AMOUNT", "5.00"))
    ubereats_amount: Decimal = Decimal(os.getenv("UBEREATS_AMOUNT", "5.00"))
    fallback_order_amount: Decimal = Decimal(os.getenv("FALLBACK_ORDER_AMOUNT", "5.00"))

    completed_grace_seconds: float = float(os.getenv("COMPLETED_GRACE_SECONDS", "30"))
    closed_grace_seconds: float = float(os.getenv("CLOSED_GRACE_SECONDS", "10"))
    high_demand_threshold: int = _env_int("HIGH_DEMAND_THRESHOLD", 2)
    status_capacity: int = _env_int("STATUS_CAPACITY", 4)
    require_open_chef: bool = _env_bool("REQUIRE_OPEN_CHEF", "0")

    llm_enabled: bool = _env_bool("LLM_ENABLED", "0")
    openai_api_key: str = os.getenv("OPENAI_API_KEY", "").strip()


settings = Settings()
