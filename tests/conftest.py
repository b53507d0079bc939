import asyncio

import pytest

from ticketbot.collaborators import Capabilities, OutboxMessenger, RoleDirectory
from ticketbot.config import Settings
from ticketbot.db import init_db, make_engine, make_session_factory
from ticketbot.domain import ChefStatus
from ticketbot.ledger import ChefLedger
from ticketbot.tickets.engine import TicketEngine
from ticketbot.tickets.store import TicketStore

ADMIN = "admin-1"
CHEF_F = "chef-f"
CHEF_G = "chef-g"
CUSTOMER = "customer-c"
OTHER_CUSTOMER = "customer-d"


def make_settings(**overrides) -> Settings:
    values = dict(
        database_url="sqlite://",
        admin_user_ids=frozenset({ADMIN}),
        chef_user_ids=frozenset({CHEF_F, CHEF_G}),
        completed_grace_seconds=0,
        closed_grace_seconds=0,
        llm_enabled=False,
        openai_api_key="",
    )
    values.update(overrides)
    return Settings(**values)


class FailingMessenger(OutboxMessenger):
    """Opens channels, then fails every other call."""

    async def send_message(self, channel_id, content):
        raise RuntimeError("chat platform is down")

    async def send_direct(self, user_id, content):
        raise RuntimeError("DMs closed")

    async def delete_channel(self, channel_id):
        raise RuntimeError("missing permissions")

    async def set_channel_visibility(self, channel_id, user_id, visible):
        raise RuntimeError("missing permissions")

    async def publish_status(self, content):
        raise RuntimeError("status channel gone")


class YieldingRoles(RoleDirectory):
    """Suspends on every lookup, like a member fetch against the platform."""

    async def capabilities(self, user_id: str) -> Capabilities:
        await asyncio.sleep(0)
        return await super().capabilities(user_id)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def sessions(settings):
    engine = make_engine(settings.database_url)
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def ledger(sessions):
    return ChefLedger(sessions)


@pytest.fixture
def store(sessions):
    return TicketStore(sessions)


@pytest.fixture
def messenger():
    return OutboxMessenger()


@pytest.fixture
def roles(settings):
    return RoleDirectory(settings.admin_user_ids, settings.chef_user_ids)


@pytest.fixture
def engine(store, ledger, messenger, roles, settings):
    return TicketEngine(store=store, ledger=ledger, messaging=messenger, identity=roles, settings=settings)


@pytest.fixture
def open_chefs(ledger):
    for chef_id, name in ((CHEF_F, "Fiona"), (CHEF_G, "Gus")):
        ledger.upsert_chef(chef_id, name)
        ledger.set_status(chef_id, ChefStatus.OPEN)
    return ledger


class SlowChannels(OutboxMessenger):
    """Channel creation suspends before returning."""

    async def create_ticket_channel(self, customer_id, eligible_chefs):
        await asyncio.sleep(0)
        return await super().create_ticket_channel(customer_id, eligible_chefs)
