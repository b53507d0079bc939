# ticketbot/ai_intent.py
from __future__ import annotations

import json
from typing import Any, Dict, Optional

from openai import AsyncOpenAI

from .config import settings

SYSTEM = """You classify messages a chef posts inside a food-delivery order ticket.
Return ONE JSON command that matches the provided JSON schema.
Rules:
- intent is "complete_order" only if the chef states the customer's order is finished, placed or delivered.
- Questions, plans ("will be done soon") and negations are "unknown".
- order_type is "doordash" or "ubereats" only if the message names the platform, else null.
"""

# JSON Schema for Structured Outputs
COMMAND_SCHEMA: Dict[str, Any] = {
    "type": "json_schema",
    "name": "ticket_message_command",
    "schema": {
        "type": "object",
        "additionalProperties": False,
        "properties": {
            "intent": {"type": "string", "enum": ["complete_order", "unknown"]},
            "order_type": {
                "anyOf": [
                    {"type": "string", "enum": ["doordash", "ubereats"]},
                    {"type": "null"},
                ]
            },
        },
        "required": ["intent", "order_type"],
    },
    "strict": True,
}

_client: Optional[AsyncOpenAI] = None


def _get_client() -> AsyncOpenAI:
    # created lazily: constructing the client without a key raises
    global _client
    if _client is None:
        _client = AsyncOpenAI(api_key=settings.openai_api_key)
    return _client


async def interpret_message_llm(message: str, ticket: Dict[str, Any]) -> Dict[str, Any]:
    payload = {
        "message": message,
        "ticket": ticket,
    }

    resp = await _get_client().responses.create(
        model="gpt-5-mini",  # fast/cheap; the pattern rules are the fallback anyway
        input=[
            {"role": "system", "content": SYSTEM},
            {"role": "user", "content": json.dumps(payload, ensure_ascii=False)},
        ],
        # Structured Outputs: forces schema correctness
        text={"format": COMMAND_SCHEMA},
    )

    return json.loads(resp.output_text)
