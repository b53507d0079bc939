# ticketbot/collaborators.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Protocol, Sequence, Set
from uuid import uuid4

logger = logging.getLogger(__name__)


# -------------------
# Identity / permissions
# -------------------
@dataclass(frozen=True)
class Capabilities:
    is_admin: bool = False
    is_chef: bool = False

    @property
    def can_cook(self) -> bool:
        return self.is_chef or self.is_admin


class Identity(Protocol):
    async def capabilities(self, user_id: str) -> Capabilities: ...


class RoleDirectory:
    """Roles from configured id lists (ADMIN_USER_IDS / CHEF_USER_IDS)."""

    def __init__(self, admin_ids: Iterable[str] = (), chef_ids: Iterable[str] = ()) -> None:
        self.admin_ids: Set[str] = set(admin_ids)
        self.chef_ids: Set[str] = set(chef_ids)

    async def capabilities(self, user_id: str) -> Capabilities:
        return Capabilities(
            is_admin=user_id in self.admin_ids,
            is_chef=user_id in self.chef_ids,
        )


# -------------------
# Messaging surface
# -------------------
class Messaging(Protocol):
    async def create_ticket_channel(self, customer_id: str, eligible_chefs: Sequence[str]) -> str: ...

    async def send_message(self, channel_id: str, content: str) -> None: ...

    async def send_direct(self, user_id: str, content: str) -> None: ...

    async def delete_channel(self, channel_id: str) -> None: ...

    async def set_channel_visibility(self, channel_id: str, user_id: str, visible: bool) -> None: ...

    async def publish_status(self, content: str) -> None: ...


class ChannelNotFound(Exception):
    pass


class OutboxMessenger:
    """
    In-process messaging surface. Keeps channels, their members and every
    message posted, so a chat gateway can poll `/outbox/{channel}` and relay.
    """

    def __init__(self) -> None:
        self.channels: Dict[str, Dict[str, bool]] = {}
        self.messages: Dict[str, List[str]] = {}
        self.direct: Dict[str, List[str]] = {}
        self.status_board: str = ""

    async def create_ticket_channel(self, customer_id: str, eligible_chefs: Sequence[str]) -> str:
        channel_id = f"ticket-{uuid4().hex[:12]}"
        members = {customer_id: True}
        members.update({c: True for c in eligible_chefs})
        self.channels[channel_id] = members
        self.messages[channel_id] = []
        logger.info("Opened channel %s for %s (%d chef(s))", channel_id, customer_id, len(eligible_chefs))
        return channel_id

    async def send_message(self, channel_id: str, content: str) -> None:
        if channel_id not in self.channels:
            raise ChannelNotFound(channel_id)
        self.messages[channel_id].append(content)

    async def send_direct(self, user_id: str, content: str) -> None:
        self.direct.setdefault(user_id, []).append(content)

    async def delete_channel(self, channel_id: str) -> None:
        if self.channels.pop(channel_id, None) is None:
            raise ChannelNotFound(channel_id)
        logger.info("Deleted channel %s", channel_id)

    async def set_channel_visibility(self, channel_id: str, user_id: str, visible: bool) -> None:
        if channel_id not in self.channels:
            raise ChannelNotFound(channel_id)
        self.channels[channel_id][user_id] = visible

    async def publish_status(self, content: str) -> None:
        self.status_board = content
