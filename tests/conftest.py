import pytest
import pytest_asyncio

from chatsync.utils.realtime_bus import LocalBus
from fakes import FakeStore, Services


@pytest.fixture
def store():
    """In-memory collections with two users, alice and bob"""
    store = FakeStore()
    store.add_profile("alice", username="alice", full_name="Alice Liddell", avatar_url="https://cdn/alice.png")
    store.add_profile("bob", username="bob", full_name="Bob Builder", avatar_url="https://cdn/bob.png")
    store.add_profile("carol", username=None, full_name="Carol Danvers")
    return store


@pytest_asyncio.fixture
async def bus():
    bus = LocalBus()
    await bus.open()
    yield bus
    await bus.close()


@pytest.fixture
def services(store, bus):
    return Services(store, bus=bus)
