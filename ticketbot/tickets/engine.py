# ticketbot/tickets/engine.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from ..collaborators import Capabilities, Identity, Messaging
from ..command_router import interpret_message, normalize_command
from ..config import Settings
from ..domain import OFFLINE_STATUSES, ChefRecord, ChefStatus, OrderRecord, OrderType
from ..errors import (
    AlreadyClaimed,
    AlreadyCompleted,
    ChannelUnavailable,
    ChefUnavailable,
    DuplicateTicket,
    HasActiveTickets,
    InvalidAmount,
    NotAssignedChef,
    NotAuthorized,
    NotClaimed,
    NotFound,
    PersistenceFailure,
)
from ..ledger import ChefLedger
from ..status import StatusProjection, project, render_dashboard
from ..totals import amount_or_fallback, format_money
from .store import TicketRecord, TicketStore

logger = logging.getLogger(__name__)

Interpreter = Callable[[str, Dict[str, Any]], Awaitable[Dict[str, Any]]]


@dataclass(frozen=True)
class CompletionResult:
    ticket: TicketRecord
    order: OrderRecord
    chef: Optional[ChefRecord]


@dataclass(frozen=True)
class RemovalResult:
    chef: ChefRecord
    total_orders: int
    total_owed: Decimal


@dataclass
class DeletionSummary:
    total: int = 0
    deleted: int = 0
    failed: int = 0
    failed_channels: List[str] = field(default_factory=list)


class TicketEngine:
    """
    Ticket lifecycle: create -> claim -> complete, or cancel / close.

    The engine is the only writer of the ticket store. Database calls are
    synchronous and never yield to the event loop, so a conflict check that
    runs right before a write (with no await in between) cannot be raced.
    Collaborator calls are the suspension points; anything checked before one
    is checked again after it.
    """

    def __init__(
        self,
        store: TicketStore,
        ledger: ChefLedger,
        messaging: Messaging,
        identity: Identity,
        settings: Settings,
        interpreter: Optional[Interpreter] = None,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.messaging = messaging
        self.identity = identity
        self.settings = settings
        self.interpreter = interpreter
        self._cleanups: Set[asyncio.Task] = set()
        # set at shutdown: pending teardowns stop waiting out their grace period
        self._flush = asyncio.Event()

    # -------------------
    # Startup / shutdown
    # -------------------
    async def start(self) -> int:
        loaded = self.store.rehydrate()
        # completions that were waiting on their teardown when the process stopped
        for t in self.store.all():
            if t.completed:
                self._schedule_teardown(t.channel_id, 0, remove_ticket=True)
        await self.refresh_status()
        return loaded

    async def wait_for_cleanups(self) -> None:
        while self._cleanups:
            await asyncio.gather(*list(self._cleanups), return_exceptions=True)

    async def shutdown(self) -> None:
        """Run every pending teardown now instead of after its grace period."""
        if self._cleanups:
            logger.info("Flushing %d pending channel teardown(s)", len(self._cleanups))
        self._flush.set()
        await self.wait_for_cleanups()

    # -------------------
    # Helpers
    # -------------------
    async def _caps(self, user_id: str) -> Capabilities:
        return await self.identity.capabilities(user_id)

    async def _require_admin(self, actor_id: str, message: str) -> Capabilities:
        caps = await self._caps(actor_id)
        if not caps.is_admin:
            raise NotAuthorized(message)
        return caps

    async def _best_effort(self, what: str, aw: Awaitable[Any]) -> bool:
        try:
            await aw
            return True
        except Exception as e:
            logger.warning("Best-effort step failed (%s): %s", what, e)
            return False

    def _schedule_teardown(self, channel_id: str, delay: float, remove_ticket: bool) -> None:
        task = asyncio.get_running_loop().create_task(
            self._teardown(channel_id, delay, remove_ticket)
        )
        self._cleanups.add(task)
        task.add_done_callback(self._cleanups.discard)

    async def _teardown(self, channel_id: str, delay: float, remove_ticket: bool) -> None:
        if delay > 0 and not self._flush.is_set():
            try:
                await asyncio.wait_for(self._flush.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass
        if remove_ticket:
            try:
                self.store.delete(channel_id)
            except PersistenceFailure:
                logger.error("Could not remove completed ticket %s; it will be retried on restart", channel_id)
        await self._best_effort(f"deleting channel {channel_id}", self.messaging.delete_channel(channel_id))

    def _set_status_after_commit(self, chef_id: str, status: ChefStatus) -> bool:
        # the ticket transition already committed; a failed status write must not undo it
        try:
            return self.ledger.set_status(chef_id, status)
        except PersistenceFailure:
            logger.error("Could not set chef %s to %s after ticket change", chef_id, status.value)
            return False

    async def _reconcile_chef(self, chef_id: str) -> None:
        """Put a chef back to OPEN once they hold no claimed, unfinished ticket."""
        if self.store.claimed_by_chef(chef_id):
            return
        try:
            chef = self.ledger.get(chef_id)
        except PersistenceFailure:
            return
        if chef is None or chef.status == ChefStatus.CLOSED:
            return
        if self._set_status_after_commit(chef_id, ChefStatus.OPEN):
            await self.refresh_status()

    def amount_for(self, order_type: OrderType) -> Decimal:
        if OrderType(order_type) is OrderType.DOORDASH:
            return self.settings.doordash_amount
        return self.settings.ubereats_amount

    def high_demand(self) -> bool:
        return len(self.store.active()) >= self.settings.high_demand_threshold

    # -------------------
    # Status projection
    # -------------------
    def projection(self) -> StatusProjection:
        return project(self.ledger.list_all())

    def dashboard(self) -> Tuple[StatusProjection, str]:
        chefs = self.ledger.list_all()
        return project(chefs), render_dashboard(chefs, capacity=self.settings.status_capacity)

    async def refresh_status(self) -> Optional[StatusProjection]:
        try:
            view, text = self.dashboard()
        except PersistenceFailure:
            logger.error("Could not refresh chef status dashboard")
            return None
        await self._best_effort("publishing status dashboard", self.messaging.publish_status(text))
        return view

    # -------------------
    # Ticket lifecycle
    # -------------------
    async def create_ticket(
        self,
        customer_id: str,
        group_order_link: str,
        total: str,
        special_instructions: str | None = None,
        order_type: OrderType = OrderType.UBEREATS,
    ) -> TicketRecord:
        order_type = OrderType(order_type)
        if self.store.find_active_for_customer(customer_id):
            raise DuplicateTicket()

        view = self.projection()
        if self.settings.require_open_chef and not view.any_open:
            raise ChefUnavailable()

        try:
            channel_id = await self.messaging.create_ticket_channel(
                customer_id, [c.user_id for c in view.open_chefs]
            )
        except Exception as e:
            logger.error("Could not open ticket channel for %s: %s", customer_id, e)
            raise ChannelUnavailable() from e

        # the customer may have opened another ticket while the channel was being created
        if self.store.find_active_for_customer(customer_id):
            await self._best_effort("deleting duplicate channel", self.messaging.delete_channel(channel_id))
            raise DuplicateTicket()

        try:
            ticket = self.store.create(
                TicketRecord(
                    channel_id=channel_id,
                    user_id=customer_id,
                    order_type=order_type,
                    group_order_link=group_order_link,
                    total=total,
                    special_instructions=(special_instructions or "").strip() or "None",
                    created_at=datetime.utcnow(),
                )
            )
        except PersistenceFailure:
            await self._best_effort("deleting orphan channel", self.messaging.delete_channel(channel_id))
            raise

        lines = []
        if self.high_demand():
            lines.append("⚠️ **High demand detected!** Please expect longer wait times.")
        lines += [
            f"🎫 New Order Ticket for <@{customer_id}>",
            f"🛒 Group order: {group_order_link}",
            f"💵 Total: {total}",
            f"📝 Special instructions: {ticket.special_instructions}",
            "A chef will claim your order shortly.",
        ]
        await self._best_effort("posting welcome message", self.messaging.send_message(channel_id, "\n".join(lines)))

        logger.info("Ticket %s created for customer %s", channel_id, customer_id)
        return ticket

    @staticmethod
    def _ensure_claimable(ticket: TicketRecord) -> None:
        if ticket.completed:
            raise AlreadyCompleted()
        if ticket.claimed:
            raise AlreadyClaimed()

    async def claim_ticket(self, channel_id: str, chef_id: str) -> TicketRecord:
        self._ensure_claimable(self.store.require(channel_id))

        caps = await self._caps(chef_id)
        if not caps.can_cook:
            raise NotAuthorized("You need the chef role to claim tickets!")

        chef = self.ledger.get(chef_id)
        if chef is None or chef.status in OFFLINE_STATUSES:
            raise ChefUnavailable("You must be registered and not CLOSED to claim tickets!")

        # re-check and write with no await in between: first claim wins
        self._ensure_claimable(self.store.require(channel_id))
        ticket = self.store.update(
            channel_id,
            chef_id=chef_id,
            claimed=True,
            claimed_at=datetime.utcnow(),
        )
        logger.info("Ticket %s claimed by chef %s", channel_id, chef_id)

        if len(self.store.claimed_by_chef(chef_id)) > 1:
            if self._set_status_after_commit(chef_id, ChefStatus.BUSY):
                await self.refresh_status()

        await self._best_effort(
            "posting claim notice",
            self.messaging.send_message(channel_id, f"👨‍🍳 <@{chef_id}> has claimed this order and will assist you shortly."),
        )
        return ticket

    async def complete_ticket(
        self,
        channel_id: str,
        actor_id: str,
        amount: Decimal | None = None,
        order_type: OrderType | str | None = None,
    ) -> CompletionResult:
        ticket = self.store.require(channel_id)
        caps = await self._caps(actor_id)
        if ticket.chef_id != actor_id and not caps.is_admin:
            raise NotAssignedChef()

        ticket = self.store.require(channel_id)
        if ticket.completed:
            raise AlreadyCompleted()
        if not ticket.claimed or not ticket.chef_id:
            raise NotClaimed()

        kind = OrderType(order_type) if order_type else ticket.order_type
        amount = self.amount_for(kind) if amount is None else Decimal(amount)
        if amount < 0:
            raise InvalidAmount()

        # debt + history in one transaction; on failure the ticket is untouched
        order = self.ledger.add_debt_and_record_order(ticket.chef_id, amount, kind, ticket.user_id)

        try:
            ticket = self.store.update(channel_id, completed=True, order_type=kind)
        except (PersistenceFailure, NotFound):
            logger.exception("Order %s recorded but ticket %s could not be marked completed", order.id, channel_id)
            # the debt is committed; a retry must see the ticket as completed
            ticket = self.store.mark_completed_in_cache(channel_id, order_type=kind) or replace(
                ticket, completed=True, order_type=kind
            )

        logger.info("Ticket %s completed by %s for %s", channel_id, actor_id, format_money(order.amount))

        await self._reconcile_chef(ticket.chef_id)

        chef = None
        try:
            chef = self.ledger.get(ticket.chef_id)
        except PersistenceFailure:
            logger.warning("Could not reload chef %s after completing ticket %s", ticket.chef_id, channel_id)

        await self._best_effort(
            "posting completion notice",
            self.messaging.send_message(
                channel_id,
                "\n".join(
                    [
                        "✅ Order Completed!",
                        f"📦 Order Type: {kind.label}",
                        f"💰 Amount: {format_money(order.amount)}",
                        f"👨‍🍳 Chef: <@{ticket.chef_id}>",
                        f"🛍️ Customer: <@{ticket.user_id}>",
                        f"Thank you for your order! This channel will be deleted in {int(self.settings.completed_grace_seconds)} seconds.",
                    ]
                ),
            ),
        )
        if chef is not None:
            await self._best_effort(
                "sending debt update",
                self.messaging.send_direct(
                    chef.user_id,
                    f"💳 Debt Updated\nYour current debt: **{format_money(chef.debt_amount)}**\n"
                    f"Total orders completed: **{chef.total_completed}**",
                ),
            )

        self._schedule_teardown(channel_id, self.settings.completed_grace_seconds, remove_ticket=True)
        return CompletionResult(ticket=ticket, order=order, chef=chef)

    async def cancel_ticket(self, channel_id: str, actor_id: str) -> TicketRecord:
        ticket = self.store.require(channel_id)
        caps = await self._caps(actor_id)
        if ticket.user_id != actor_id and not caps.is_admin:
            raise NotAuthorized("You can only cancel your own ticket!")

        ticket = self.store.require(channel_id)
        if ticket.claimed:
            raise AlreadyClaimed("This order has already been claimed by a chef, ask them to close it instead.")

        self.store.delete(channel_id)
        logger.info("Ticket %s cancelled by %s", channel_id, actor_id)

        await self._best_effort(
            "posting cancel notice",
            self.messaging.send_message(channel_id, f"🚫 Ticket cancelled by <@{actor_id}>"),
        )
        self._schedule_teardown(channel_id, self.settings.closed_grace_seconds, remove_ticket=False)
        return ticket

    async def close_ticket(self, channel_id: str, actor_id: str, reason: str | None = None) -> TicketRecord:
        ticket = self.store.require(channel_id)
        caps = await self._caps(actor_id)
        if actor_id not in {ticket.user_id, ticket.chef_id} and not caps.is_admin:
            raise NotAuthorized("You can only close your own tickets or tickets you are assigned to!")

        ticket = self.store.require(channel_id)
        if ticket.completed:
            raise AlreadyCompleted()

        self.store.delete(channel_id)
        logger.info("Ticket %s closed by %s", channel_id, actor_id)

        if ticket.claimed and ticket.chef_id:
            await self._reconcile_chef(ticket.chef_id)

        await self._best_effort(
            "posting close notice",
            self.messaging.send_message(
                channel_id,
                f"🔒 Ticket closed by <@{actor_id}>\n📝 Reason: {reason or 'No reason provided'}\n"
                f"This channel will be deleted in {int(self.settings.closed_grace_seconds)} seconds",
            ),
        )
        self._schedule_teardown(channel_id, self.settings.closed_grace_seconds, remove_ticket=False)
        return ticket

    async def channel_deleted(self, channel_id: str) -> Optional[TicketRecord]:
        """A ticket channel disappeared outside of close/complete/cancel."""
        ticket = self.store.get(channel_id)
        if ticket is None:
            return None

        self.store.delete(channel_id)
        logger.info("Ticket %s removed after its channel was deleted", channel_id)

        if ticket.claimed and not ticket.completed and ticket.chef_id:
            await self._reconcile_chef(ticket.chef_id)
        return ticket

    async def handle_message(self, channel_id: str, author_id: str, content: str) -> Optional[CompletionResult]:
        """Complete a ticket when its chef announces the order is done in chat."""
        ticket = self.store.get(channel_id)
        if ticket is None or not ticket.claimed or ticket.completed or ticket.chef_id != author_id:
            return None

        cmd = await self._interpret(content, ticket)
        if cmd.get("intent") != "complete_order":
            return None

        amount = amount_or_fallback(ticket.total, self.settings.fallback_order_amount)
        return await self.complete_ticket(channel_id, author_id, amount=amount, order_type=cmd.get("order_type"))

    async def _interpret(self, content: str, ticket: TicketRecord) -> Dict[str, Any]:
        if self.interpreter is not None:
            try:
                cmd = await self.interpreter(
                    content,
                    {"order_type": ticket.order_type.value, "total": ticket.total},
                )
                return normalize_command(cmd)
            except Exception as e:
                logger.warning("LLM intent failed, using pattern rules: %s", e)
        return interpret_message(content)

    # -------------------
    # Chefs
    # -------------------
    async def set_chef_status(
        self,
        actor_id: str,
        chef_id: str,
        status: ChefStatus,
        username: str | None = None,
    ) -> ChefRecord:
        status = ChefStatus(status)
        caps = await self._caps(actor_id)
        if chef_id != actor_id and not caps.is_admin:
            raise NotAuthorized("You can only change your own status unless you have admin permissions!")
        if chef_id == actor_id and not caps.can_cook:
            raise NotAuthorized("You need the chef role to use this command!")

        self.ledger.upsert_chef(chef_id, username or "")
        self.ledger.set_status(chef_id, status)
        logger.info("Chef %s set to %s by %s", chef_id, status.value, actor_id)

        if status in (ChefStatus.CLOSED, ChefStatus.OPEN):
            visible = status == ChefStatus.OPEN
            notice = (
                "✅ Your chef is back online! You can continue with your order."
                if visible
                else "🔒 Your assigned chef is currently offline. This ticket will reappear when they come back online."
            )
            for t in self.store.active_for_chef(chef_id):
                await self._best_effort(
                    f"changing visibility of {t.channel_id}",
                    self.messaging.set_channel_visibility(t.channel_id, t.user_id, visible),
                )
                await self._best_effort("posting visibility notice", self.messaging.send_message(t.channel_id, notice))

        await self.refresh_status()
        chef = self.ledger.get(chef_id)
        if chef is None:
            raise NotFound(f"<@{chef_id}> is not registered as a chef!")
        return chef

    async def chef_debt(self, actor_id: str, chef_id: str | None = None) -> ChefRecord:
        target = chef_id or actor_id
        if target != actor_id:
            await self._require_admin(actor_id, "You can only check your own debt unless you have admin permissions!")

        chef = self.ledger.get(target)
        if chef is None:
            raise NotFound(f"<@{target}> is not registered as a chef!")
        return chef

    async def all_debts(self, actor_id: str) -> List[ChefRecord]:
        await self._require_admin(actor_id, "You need admin permissions to view all debts!")
        return self.ledger.list_with_debt()

    async def clear_debt(self, actor_id: str, chef_id: str) -> Decimal:
        """Returns the cleared amount; zero means there was no debt to clear."""
        await self._require_admin(actor_id, "You need admin permissions to clear debts!")
        cleared = self.ledger.clear_debt(chef_id)
        if cleared > 0:
            logger.info("Cleared %s debt for chef %s", format_money(cleared), chef_id)
            await self._best_effort(
                "notifying chef of cleared debt",
                self.messaging.send_direct(chef_id, f"Your debt of {format_money(cleared)} has been cleared by an admin."),
            )
        return cleared

    async def remove_chef(self, actor_id: str, chef_id: str) -> RemovalResult:
        await self._require_admin(actor_id, "You need admin permissions to remove chefs!")

        chef = self.ledger.get(chef_id)
        if chef is None:
            raise NotFound(f"<@{chef_id}> is not registered as a chef!")

        active = self.store.active_for_chef(chef_id)
        if active:
            raise HasActiveTickets(
                f"Cannot remove <@{chef_id}>! They currently have {len(active)} active ticket(s). "
                "Please complete or reassign these orders first."
            )

        total_orders, _ = self.ledger.history_totals(chef_id)
        self.ledger.remove(chef_id)
        logger.info("Chef %s removed by %s", chef_id, actor_id)

        await self.refresh_status()
        return RemovalResult(chef=chef, total_orders=total_orders, total_owed=chef.debt_amount)

    async def order_history(self, actor_id: str, chef_id: str | None = None) -> List[OrderRecord]:
        caps = await self._caps(actor_id)
        if chef_id and chef_id != actor_id and not caps.is_admin:
            raise NotAuthorized("You need admin permissions to view other chefs' history!")
        if chef_id is None and not caps.is_admin:
            chef_id = actor_id
        return self.ledger.order_history(chef_id)

    # -------------------
    # Admin ticket tools
    # -------------------
    async def list_tickets(self, actor_id: str) -> Tuple[List[TicketRecord], bool]:
        await self._require_admin(actor_id, "You need admin permissions to use this command!")
        tickets = sorted(self.store.all(), key=lambda t: t.created_at or datetime.min)
        return tickets, self.high_demand()

    async def delete_all_tickets(self, actor_id: str) -> DeletionSummary:
        await self._require_admin(actor_id, "You need admin permissions to delete tickets!")

        summary = DeletionSummary()
        channel_ids = [t.channel_id for t in self.store.all()]
        summary.total = len(channel_ids)

        for channel_id in channel_ids:
            if await self._best_effort(f"deleting channel {channel_id}", self.messaging.delete_channel(channel_id)):
                summary.deleted += 1
            else:
                summary.failed += 1
                summary.failed_channels.append(channel_id)

        self.store.clear()

        for chef in self.ledger.list_all():
            if chef.status != ChefStatus.CLOSED:
                self._set_status_after_commit(chef.user_id, ChefStatus.OPEN)

        await self.refresh_status()
        logger.info("Deleted %d ticket(s), %d channel deletion(s) failed", summary.total, summary.failed)
        return summary
