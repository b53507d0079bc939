# ticketbot/main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field

from .auth import create_token, decode_token, verify_gateway_key
from .collaborators import Identity, Messaging, OutboxMessenger, RoleDirectory
from .config import Settings, settings as default_settings
from .db import init_db, make_engine, make_session_factory
from .domain import ChefRecord, ChefStatus, OrderRecord, OrderType
from .errors import TicketBotError
from .ledger import ChefLedger
from .tickets.engine import TicketEngine
from .tickets.store import TicketRecord, TicketStore
from .totals import format_money

logger = logging.getLogger(__name__)


# -------------------
# Schemas
# -------------------
class TokenIn(BaseModel):
    user_id: str


class TicketIn(BaseModel):
    group_order_link: str
    total: str
    special_instructions: Optional[str] = None
    order_type: OrderType = OrderType.UBEREATS


class CompleteIn(BaseModel):
    amount: Optional[Decimal] = Field(default=None, ge=0)
    order_type: Optional[OrderType] = None


class CloseIn(BaseModel):
    reason: Optional[str] = None


class StatusIn(BaseModel):
    status: ChefStatus
    username: Optional[str] = None


class MessageIn(BaseModel):
    content: str


# -------------------
# Serializers
# -------------------
def _ticket_out(t: TicketRecord) -> Dict[str, Any]:
    return {
        "channel_id": t.channel_id,
        "customer_id": t.user_id,
        "chef_id": t.chef_id,
        "order_type": t.order_type.value,
        "group_order_link": t.group_order_link,
        "total": t.total,
        "special_instructions": t.special_instructions,
        "claimed": t.claimed,
        "completed": t.completed,
        "created_at": t.created_at.isoformat() if t.created_at else None,
        "claimed_at": t.claimed_at.isoformat() if t.claimed_at else None,
    }


def _chef_out(c: ChefRecord) -> Dict[str, Any]:
    avg = c.debt_amount / c.total_completed if c.total_completed else Decimal("0")
    return {
        "user_id": c.user_id,
        "username": c.username,
        "status": c.status.value,
        "debt_amount": str(c.debt_amount),
        "total_completed": c.total_completed,
        "average_per_order": format_money(avg),
    }


def _order_out(o: OrderRecord) -> Dict[str, Any]:
    return {
        "id": o.id,
        "chef_id": o.chef_id,
        "customer_id": o.customer_id,
        "order_type": o.order_type.value,
        "amount": str(o.amount),
        "completed_at": o.completed_at.isoformat() if o.completed_at else None,
    }


# -------------------
# App factory
# -------------------
def create_app(
    cfg: Settings | None = None,
    messaging: Messaging | None = None,
    identity: Identity | None = None,
) -> FastAPI:
    cfg = cfg or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db_engine = make_engine(cfg.database_url)
        init_db(db_engine)
        sessions = make_session_factory(db_engine)

        interpreter = None
        if cfg.llm_enabled and cfg.openai_api_key:
            try:
                from .ai_intent import interpret_message_llm

                interpreter = interpret_message_llm
            except Exception as e:
                logger.warning("LLM intent layer unavailable: %s", e)

        engine = TicketEngine(
            store=TicketStore(sessions),
            ledger=ChefLedger(sessions),
            messaging=messaging or OutboxMessenger(),
            identity=identity or RoleDirectory(cfg.admin_user_ids, cfg.chef_user_ids),
            settings=cfg,
            interpreter=interpreter,
        )
        await engine.start()
        app.state.engine = engine
        try:
            yield
        finally:
            await engine.shutdown()
            db_engine.dispose()

    app = FastAPI(
        title="Ticket Bot API",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan,
    )
    app.state.settings = cfg

    @app.exception_handler(TicketBotError)
    async def _rejected(request: Request, exc: TicketBotError):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    _register_routes(app)
    return app


# -------------------
# Dependencies
# -------------------
def get_engine(request: Request) -> TicketEngine:
    return request.app.state.engine


def require_actor_id(request: Request, authorization: str | None = Header(default=None)) -> str:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing Bearer token")

    token = authorization.split(" ", 1)[1].strip()
    uid = decode_token(token, request.app.state.settings)
    if not uid:
        raise HTTPException(status_code=401, detail="Invalid token")
    return uid


def require_gateway(request: Request, x_gateway_key: str | None = Header(default=None)) -> None:
    if not verify_gateway_key(x_gateway_key, request.app.state.settings):
        raise HTTPException(status_code=401, detail="Bad gateway key")


def _register_routes(app: FastAPI) -> None:
    # -------------------
    # Health / auth
    # -------------------
    @app.get("/")
    def root():
        return {"ok": True, "service": "ticketbot"}

    @app.post("/auth/token", dependencies=[Depends(require_gateway)])
    def issue_token(payload: TokenIn, request: Request):
        return {"token": create_token(payload.user_id, request.app.state.settings)}

    # -------------------
    # Tickets
    # -------------------
    @app.post("/tickets", status_code=201)
    async def create_ticket(
        payload: TicketIn,
        actor_id: str = Depends(require_actor_id),
        engine: TicketEngine = Depends(get_engine),
    ):
        ticket = await engine.create_ticket(
            customer_id=actor_id,
            group_order_link=payload.group_order_link,
            total=payload.total,
            special_instructions=payload.special_instructions,
            order_type=payload.order_type,
        )
        return {"ok": True, "ticket": _ticket_out(ticket), "message": f"Ticket created! Please head to #{ticket.channel_id}"}

    @app.get("/tickets")
    async def list_tickets(actor_id: str = Depends(require_actor_id), engine: TicketEngine = Depends(get_engine)):
        tickets, high_demand = await engine.list_tickets(actor_id)
        return {
            "count": len(tickets),
            "high_demand": high_demand,
            "tickets": [_ticket_out(t) for t in tickets],
        }

    @app.delete("/tickets")
    async def delete_all_tickets(actor_id: str = Depends(require_actor_id), engine: TicketEngine = Depends(get_engine)):
        summary = await engine.delete_all_tickets(actor_id)
        return {
            "ok": True,
            "total": summary.total,
            "deleted": summary.deleted,
            "failed": summary.failed,
            "failed_channels": summary.failed_channels,
        }

    @app.post("/tickets/{channel_id}/claim")
    async def claim_ticket(channel_id: str, actor_id: str = Depends(require_actor_id), engine: TicketEngine = Depends(get_engine)):
        ticket = await engine.claim_ticket(channel_id, actor_id)
        return {"ok": True, "ticket": _ticket_out(ticket)}

    @app.post("/tickets/{channel_id}/complete")
    async def complete_ticket(
        channel_id: str,
        payload: CompleteIn | None = None,
        actor_id: str = Depends(require_actor_id),
        engine: TicketEngine = Depends(get_engine),
    ):
        payload = payload or CompleteIn()
        result = await engine.complete_ticket(
            channel_id, actor_id, amount=payload.amount, order_type=payload.order_type
        )
        return {
            "ok": True,
            "ticket": _ticket_out(result.ticket),
            "order": _order_out(result.order),
            "chef": _chef_out(result.chef) if result.chef else None,
        }

    @app.post("/tickets/{channel_id}/cancel")
    async def cancel_ticket(channel_id: str, actor_id: str = Depends(require_actor_id), engine: TicketEngine = Depends(get_engine)):
        ticket = await engine.cancel_ticket(channel_id, actor_id)
        return {"ok": True, "ticket": _ticket_out(ticket)}

    @app.post("/tickets/{channel_id}/close")
    async def close_ticket(
        channel_id: str,
        payload: CloseIn | None = None,
        actor_id: str = Depends(require_actor_id),
        engine: TicketEngine = Depends(get_engine),
    ):
        ticket = await engine.close_ticket(channel_id, actor_id, reason=(payload.reason if payload else None))
        return {"ok": True, "ticket": _ticket_out(ticket)}

    # -------------------
    # Chat platform events
    # -------------------
    @app.post("/channels/{channel_id}/deleted", dependencies=[Depends(require_gateway)])
    async def channel_deleted(channel_id: str, engine: TicketEngine = Depends(get_engine)):
        ticket = await engine.channel_deleted(channel_id)
        return {"ok": True, "removed": ticket is not None}

    @app.post("/channels/{channel_id}/messages")
    async def channel_message(
        channel_id: str,
        payload: MessageIn,
        actor_id: str = Depends(require_actor_id),
        engine: TicketEngine = Depends(get_engine),
    ):
        result = await engine.handle_message(channel_id, actor_id, payload.content)
        if result is None:
            return {"ok": True, "completed": False}
        return {"ok": True, "completed": True, "order": _order_out(result.order)}

    @app.get("/outbox/{channel_id}", dependencies=[Depends(require_gateway)])
    def outbox(channel_id: str, engine: TicketEngine = Depends(get_engine)):
        messaging = engine.messaging
        if not isinstance(messaging, OutboxMessenger):
            raise HTTPException(status_code=404, detail="No outbox configured")
        return {"channel_id": channel_id, "messages": list(messaging.messages.get(channel_id, []))}

    # -------------------
    # Chefs / debt
    # -------------------
    @app.put("/chefs/{chef_id}/status")
    async def set_chef_status(
        chef_id: str,
        payload: StatusIn,
        actor_id: str = Depends(require_actor_id),
        engine: TicketEngine = Depends(get_engine),
    ):
        chef = await engine.set_chef_status(actor_id, chef_id, payload.status, username=payload.username)
        return {"ok": True, "chef": _chef_out(chef)}

    @app.get("/chefs/{chef_id}/debt")
    async def chef_debt(chef_id: str, actor_id: str = Depends(require_actor_id), engine: TicketEngine = Depends(get_engine)):
        chef = await engine.chef_debt(actor_id, chef_id)
        return _chef_out(chef)

    @app.post("/chefs/{chef_id}/debt/clear")
    async def clear_debt(chef_id: str, actor_id: str = Depends(require_actor_id), engine: TicketEngine = Depends(get_engine)):
        cleared = await engine.clear_debt(actor_id, chef_id)
        if not cleared:
            return {"ok": True, "cleared": "0.00", "message": "This chef has no debt to clear!"}
        return {
            "ok": True,
            "cleared": str(cleared),
            "message": f"Successfully cleared {format_money(cleared)} debt for <@{chef_id}>",
        }

    @app.delete("/chefs/{chef_id}")
    async def remove_chef(chef_id: str, actor_id: str = Depends(require_actor_id), engine: TicketEngine = Depends(get_engine)):
        result = await engine.remove_chef(actor_id, chef_id)
        return {
            "ok": True,
            "chef_id": result.chef.user_id,
            "total_orders": result.total_orders,
            "total_owed": str(result.total_owed),
        }

    @app.get("/debts")
    async def all_debts(actor_id: str = Depends(require_actor_id), engine: TicketEngine = Depends(get_engine)):
        chefs = await engine.all_debts(actor_id)
        total = sum((c.debt_amount for c in chefs), Decimal("0.00"))
        return {"total": str(total), "chefs": [_chef_out(c) for c in chefs]}

    @app.get("/history")
    async def history(
        chef_id: Optional[str] = None,
        actor_id: str = Depends(require_actor_id),
        engine: TicketEngine = Depends(get_engine),
    ):
        orders = await engine.order_history(actor_id, chef_id)
        return {"orders": [_order_out(o) for o in orders]}

    @app.get("/status")
    def status(engine: TicketEngine = Depends(get_engine)):
        view, _ = engine.dashboard()
        return {
            "open_count": view.open_count,
            "total": view.total,
            "open_chefs": [c.user_id for c in view.open_chefs],
        }

    @app.get("/status/dashboard", response_class=PlainTextResponse)
    def status_dashboard(engine: TicketEngine = Depends(get_engine)):
        _, text = engine.dashboard()
        return text


app = create_app()
