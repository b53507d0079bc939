# ticketbot/command_router.py
from __future__ import annotations

import re
from typing import Any, Dict, Optional

INTENTS = {"complete_order", "unknown"}

# "order is complete", "order has been delivered", "food done", "delivered ✅"
_COMPLETE_RE = re.compile(
    r"\b(?:order|food|delivery)\s+(?:is\s+|has\s+been\s+|was\s+)?(?:completed?|done|delivered|placed)\b"
    r"|^\s*(?:all\s+)?(?:done|completed?|delivered)\s*[.!✅]*\s*$",
    re.IGNORECASE,
)

# Negations that flip the meaning ("order is not done yet")
_NEGATED_RE = re.compile(r"\b(?:not|isn'?t|wasn'?t|hasn'?t|never)\b", re.IGNORECASE)

_DOORDASH_RE = re.compile(r"\bdoor\s*dash\b|\bdd\b", re.IGNORECASE)
_UBEREATS_RE = re.compile(r"\buber\s*eats\b|\bue\b", re.IGNORECASE)


def order_type_hint(text: str) -> Optional[str]:
    if _DOORDASH_RE.search(text or ""):
        return "doordash"
    if _UBEREATS_RE.search(text or ""):
        return "ubereats"
    return None


def interpret_message(text: str) -> Dict[str, Any]:
    msg = (text or "").strip()
    if not msg or _NEGATED_RE.search(msg) or not _COMPLETE_RE.search(msg):
        return {"intent": "unknown", "order_type": None}
    return {"intent": "complete_order", "order_type": order_type_hint(msg)}


def normalize_command(cmd: Dict[str, Any]) -> Dict[str, Any]:
    """Clamp an LLM-produced command to the shapes `interpret_message` returns."""
    intent = str(cmd.get("intent") or "unknown").strip()
    if intent not in INTENTS:
        intent = "unknown"

    order_type = cmd.get("order_type")
    if order_type not in {"doordash", "ubereats"}:
        order_type = None

    return {"intent": intent, "order_type": order_type}
