import os
import tempfile

import pytest

# Set up test environment with temporary database before the app module is imported
TEST_DB_PATH = tempfile.mkstemp(suffix='.db')[1]
os.environ.setdefault('DB_PATH', TEST_DB_PATH)

from context_server.core.broadcaster import SubscriptionBroadcaster
from context_server.core.dao import ContextStore


@pytest.fixture
def store(tmp_path):
    """A context store backed by a fresh SQLite file."""
    s = ContextStore(str(tmp_path / "context.db"))
    yield s
    s.close()


@pytest.fixture
def broadcaster():
    return SubscriptionBroadcaster(ping_interval=30, queue_size=100)
