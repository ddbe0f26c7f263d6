import os
import sys
from pathlib import Path

import pytest

# Ensure `backend` and this directory are importable without an editable install
BACKEND_DIR = Path(__file__).resolve().parents[1]
for path in (BACKEND_DIR, Path(__file__).resolve().parent):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

# Tests never touch a real Redis unless REDIS_URL is given explicitly
os.environ.setdefault("SIGNALING_BACKEND", "memory")

from relaycast.signaling import InMemorySignalingStore  # noqa: E402

from fakes import FakeNetwork  # noqa: E402


@pytest.fixture
async def store():
    """In-memory signaling store, closed after the test."""
    store = InMemorySignalingStore()
    yield store
    await store.close()


@pytest.fixture
def network() -> FakeNetwork:
    return FakeNetwork()


@pytest.fixture
def link_factory(network: FakeNetwork):
    return network.create
