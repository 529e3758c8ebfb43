import pytest

from fulfillment.config import FulfillmentConfig
from fulfillment.events import EventBroker
from fulfillment.session import SessionStore


@pytest.fixture
def config(tmp_path):
    """Default pricing and URLs, no waits, everything on disk under tmp_path."""
    return FulfillmentConfig(
        session_dir=tmp_path / "session",
        artifacts_dir=tmp_path / "artifacts",
        wait_seconds_ui_settle=0,
        wait_seconds_checkout_settle=0,
        wait_seconds_cart_remove=0,
        wait_seconds_bag_update=0,
        wait_seconds_quantity=0,
        wait_seconds_order_confirm=0,
        session_poll_interval_seconds=0,
        session_setup_timeout_seconds=0.05,
        wait_seconds_login_settle=0,
    )


@pytest.fixture
def broker():
    return EventBroker()


@pytest.fixture
def session_store(config):
    """A store that already holds an exported session."""
    store = SessionStore(config.session_dir)
    store.root.mkdir(parents=True, exist_ok=True)
    store.storage_state_path.write_text("{}")
    return store
