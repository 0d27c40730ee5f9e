"""Shared fixtures for the slackhook test suite."""

from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from mautrix.types import RoomID, UserID
from mautrix.util.async_db import Database

from slackhook.migrations import upgrade_table
from slackhook.power_levels import PowerLevelState
from slackhook.store import Webhook, WebhookStore

ROOM = RoomID("!room:example.org")
ALICE = UserID("@alice:example.org")


class FakeReader:
    """Room state reader returning a fixed power level snapshot."""

    def __init__(self, power_levels=None, user_id="@bridge:example.org"):
        self.user_id = user_id
        self.get_power_levels = AsyncMock(return_value=power_levels)


@pytest.fixture
def make_reader():
    def _make(users=None, users_default=None, state_default=50, absent=False):
        if absent:
            return FakeReader(None)
        return FakeReader(PowerLevelState(
            users=dict(users or {}),
            users_default=users_default,
            state_default=state_default,
        ))
    return _make


@pytest.fixture
def fake_store():
    """Spy store recording every call made to it."""
    store = AsyncMock(spec=WebhookStore)
    store.create_webhook.return_value = Webhook(
        id="hook1", room_id=ROOM, user_id=ALICE, created_ts=1700000000000
    )
    store.list_webhooks.return_value = []
    store.delete_webhook.return_value = None
    return store


@pytest.fixture
def mock_logger():
    logger = MagicMock()
    logger.getChild = MagicMock(return_value=logger)
    return logger


@pytest_asyncio.fixture
async def database(tmp_path):
    """Real SQLite database with the webhook schema applied."""
    db = Database.create(f"sqlite:///{tmp_path}/slackhook.db", upgrade_table=upgrade_table)
    await db.start()
    yield db
    await db.stop()
