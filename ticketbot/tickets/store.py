# ticketbot/tickets/store.py
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..domain import OrderType
from ..errors import NotFound, PersistenceFailure
from ..models import ActiveTicket

logger = logging.getLogger(__name__)

_FIELDS = (
    "user_id",
    "chef_id",
    "order_type",
    "group_order_link",
    "total",
    "special_instructions",
    "claimed",
    "completed",
    "created_at",
    "claimed_at",
)


@dataclass(frozen=True)
class TicketRecord:
    channel_id: str
    user_id: str
    group_order_link: str
    total: str
    order_type: OrderType = OrderType.UBEREATS
    special_instructions: str = "None"
    chef_id: Optional[str] = None
    claimed: bool = False
    completed: bool = False
    created_at: Optional[datetime] = None
    claimed_at: Optional[datetime] = None

    @property
    def active(self) -> bool:
        """Non-terminal: counts for duplicate checks, chef load and removal guards."""
        return not self.completed


def _from_row(row: ActiveTicket) -> TicketRecord:
    return TicketRecord(
        channel_id=row.channel_id,
        user_id=row.user_id,
        chef_id=row.chef_id,
        order_type=OrderType(row.order_type),
        group_order_link=row.group_order_link,
        total=row.total,
        special_instructions=row.special_instructions or "None",
        claimed=bool(row.claimed),
        completed=bool(row.completed),
        created_at=row.created_at,
        claimed_at=row.claimed_at,
    )


def _column_value(name: str, value: Any) -> Any:
    if name == "order_type":
        return OrderType(value).value
    return value


class TicketStore:
    """
    Active tickets keyed by channel id.

    The database is the recovery source; the in-process cache is what every
    reader sees. Mutations hit the database first and only then the cache,
    so a failed write never leaves the cache ahead of the database.
    """

    def __init__(self, sessions: Callable[[], Session]) -> None:
        self._sessions = sessions
        self._cache: Dict[str, TicketRecord] = {}

    # -------------------
    # Cache reads
    # -------------------
    def get(self, channel_id: str) -> Optional[TicketRecord]:
        return self._cache.get(channel_id)

    def require(self, channel_id: str) -> TicketRecord:
        ticket = self._cache.get(channel_id)
        if ticket is None:
            raise NotFound("This command can only be used in active ticket channels!")
        return ticket

    def __contains__(self, channel_id: str) -> bool:
        return channel_id in self._cache

    def __len__(self) -> int:
        return len(self._cache)

    def all(self) -> List[TicketRecord]:
        return list(self._cache.values())

    def active(self) -> List[TicketRecord]:
        return [t for t in self._cache.values() if t.active]

    def find_active_for_customer(self, user_id: str) -> Optional[TicketRecord]:
        for t in self._cache.values():
            if t.user_id == user_id and t.active:
                return t
        return None

    def active_for_chef(self, chef_id: str) -> List[TicketRecord]:
        return [t for t in self._cache.values() if t.chef_id == chef_id and t.active]

    def claimed_by_chef(self, chef_id: str) -> List[TicketRecord]:
        return [t for t in self.active_for_chef(chef_id) if t.claimed]

    # -------------------
    # Startup
    # -------------------
    def rehydrate(self) -> int:
        with self._sessions() as db:
            try:
                rows = db.query(ActiveTicket).all()
            except SQLAlchemyError as e:
                logger.error("Could not load active tickets: %s", e)
                raise PersistenceFailure() from e
            loaded = {r.channel_id: _from_row(r) for r in rows}

        self._cache = loaded
        logger.info("Rehydrated %d active ticket(s) from the database", len(loaded))
        return len(loaded)

    # -------------------
    # Mutations
    # -------------------
    def create(self, ticket: TicketRecord) -> TicketRecord:
        if ticket.created_at is None:
            ticket = replace(ticket, created_at=datetime.utcnow())

        with self._sessions() as db:
            try:
                db.add(
                    ActiveTicket(
                        channel_id=ticket.channel_id,
                        **{f: _column_value(f, getattr(ticket, f)) for f in _FIELDS},
                    )
                )
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                logger.error("Error creating active ticket %s: %s", ticket.channel_id, e)
                raise PersistenceFailure() from e

        self._cache[ticket.channel_id] = ticket
        logger.info("Saved ticket to database: %s", ticket.channel_id)
        return ticket

    def update(self, channel_id: str, **changes: Any) -> TicketRecord:
        current = self.require(channel_id)
        unknown = set(changes) - set(_FIELDS)
        if unknown:
            raise ValueError(f"Unknown ticket fields: {sorted(unknown)}")

        updated = replace(current, **changes)
        with self._sessions() as db:
            try:
                n = (
                    db.query(ActiveTicket)
                    .filter(ActiveTicket.channel_id == channel_id)
                    .update(
                        {getattr(ActiveTicket, k): _column_value(k, v) for k, v in changes.items()},
                        synchronize_session=False,
                    )
                )
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                logger.error("Error updating active ticket %s: %s", channel_id, e)
                raise PersistenceFailure() from e

        if not n:
            # row vanished underneath us; the cache must not outlive the database
            self._cache.pop(channel_id, None)
            raise NotFound("This ticket no longer exists!")

        self._cache[channel_id] = updated
        logger.info("Updated ticket in database: %s", channel_id)
        return updated

    def mark_completed_in_cache(self, channel_id: str, **changes: Any) -> Optional[TicketRecord]:
        """
        Flag a cached ticket completed without touching the database.

        Used when the order was already charged but the row update failed:
        readers must see the terminal state until teardown removes the row.
        """
        current = self._cache.get(channel_id)
        if current is None:
            return None
        updated = replace(current, completed=True, **changes)
        self._cache[channel_id] = updated
        logger.warning("Ticket %s marked completed in cache only", channel_id)
        return updated

    def delete(self, channel_id: str) -> Optional[TicketRecord]:
        with self._sessions() as db:
            try:
                db.query(ActiveTicket).filter(ActiveTicket.channel_id == channel_id).delete(
                    synchronize_session=False
                )
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                logger.error("Error deleting active ticket %s: %s", channel_id, e)
                raise PersistenceFailure() from e

        removed = self._cache.pop(channel_id, None)
        logger.info("Deleted ticket from database: %s", channel_id)
        return removed

    def clear(self) -> int:
        with self._sessions() as db:
            try:
                n = db.query(ActiveTicket).delete(synchronize_session=False)
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                logger.error("Error clearing active tickets: %s", e)
                raise PersistenceFailure() from e

        self._cache.clear()
        return int(n or 0)
