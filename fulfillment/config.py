"""
Configuration for the fulfillment engine.

Every tunable is read from an environment variable once, at construction time,
and carried around in a FulfillmentConfig instance so tests can build their own
without touching process-wide state.
"""

import os
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path

# =============================================================================
# CONFIGURABLE PARAMETERS (via environment variables)
# =============================================================================

# TIMEOUT_* = max wait, proceeds immediately when ready
# WAIT_* = fixed sleep, always waits the full duration


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass(frozen=True)
class FulfillmentConfig:
    """Pricing policy, retailer endpoints, timing and artifact locations."""

    # Pricing: our own margin and shipping policy on top of retailer prices
    markup_rate: Decimal = Decimal("0.15")
    free_shipping_threshold: Decimal = Decimal("35")
    flat_shipping_fee: Decimal = Decimal("5.95")

    # Retailer
    retailer_domain: str = "ulta.com"
    retailer_base_url: str = "https://www.ulta.com"

    # Browser
    session_dir: Path = Path(".browser-session")
    headless: bool = True
    timeout_ms_page_load: int = 30000
    timeout_ms_session_probe: int = 20000
    timeout_ms_checkout_load: int = 15000

    # Fixed waits in seconds
    wait_seconds_ui_settle: float = 0.8
    wait_seconds_checkout_settle: float = 2.5
    wait_seconds_cart_remove: float = 0.7
    wait_seconds_bag_update: float = 1.0
    wait_seconds_quantity: float = 0.5
    wait_seconds_order_confirm: float = 8.0

    max_cart_clear_iterations: int = 10

    # Session setup polling
    session_poll_interval_seconds: float = 2.0
    session_setup_timeout_seconds: float = 180.0
    wait_seconds_login_settle: float = 3.0

    # Diagnostics
    artifacts_dir: Path = Path("artifacts")
    order_id_prefix: str = "GLOWUP"

    # Derived URLs
    @property
    def home_url(self) -> str:
        return self.retailer_base_url.rstrip("/")

    @property
    def bag_url(self) -> str:
        return f"{self.home_url}/bag"

    @property
    def login_url(self) -> str:
        return f"{self.home_url}/u/login"

    @property
    def account_url(self) -> str:
        return f"{self.home_url}/myaccount"

    @property
    def checkout_debug_screenshot(self) -> Path:
        return self.artifacts_dir / "checkout-debug.png"

    @property
    def checkout_error_screenshot(self) -> Path:
        return self.artifacts_dir / "checkout-error.png"

    @classmethod
    def from_env(cls) -> "FulfillmentConfig":
        """Build a config from environment variables, falling back to defaults."""
        return cls(
            markup_rate=Decimal(os.getenv("MARKUP_RATE", "0.15")),
            free_shipping_threshold=Decimal(os.getenv("FREE_SHIPPING_THRESHOLD", "35")),
            flat_shipping_fee=Decimal(os.getenv("FLAT_SHIPPING_FEE", "5.95")),
            retailer_domain=os.getenv("RETAILER_DOMAIN", "ulta.com"),
            retailer_base_url=os.getenv("RETAILER_BASE_URL", "https://www.ulta.com"),
            session_dir=Path(os.getenv("SESSION_DIR", ".browser-session")),
            headless=_env_bool("HEADLESS", "true"),
            timeout_ms_page_load=int(os.getenv("TIMEOUT_MS_PAGE_LOAD", "30000")),
            timeout_ms_session_probe=int(os.getenv("TIMEOUT_MS_SESSION_PROBE", "20000")),
            timeout_ms_checkout_load=int(os.getenv("TIMEOUT_MS_CHECKOUT_LOAD", "15000")),
            wait_seconds_ui_settle=float(os.getenv("WAIT_SECONDS_UI_SETTLE", "0.8")),
            wait_seconds_checkout_settle=float(os.getenv("WAIT_SECONDS_CHECKOUT_SETTLE", "2.5")),
            wait_seconds_cart_remove=float(os.getenv("WAIT_SECONDS_CART_REMOVE", "0.7")),
            wait_seconds_bag_update=float(os.getenv("WAIT_SECONDS_BAG_UPDATE", "1.0")),
            wait_seconds_quantity=float(os.getenv("WAIT_SECONDS_QUANTITY", "0.5")),
            wait_seconds_order_confirm=float(os.getenv("WAIT_SECONDS_ORDER_CONFIRM", "8.0")),
            max_cart_clear_iterations=int(os.getenv("MAX_CART_CLEAR_ITERATIONS", "10")),
            session_poll_interval_seconds=float(os.getenv("SESSION_POLL_INTERVAL_SECONDS", "2.0")),
            session_setup_timeout_seconds=float(os.getenv("SESSION_SETUP_TIMEOUT_SECONDS", "180")),
            wait_seconds_login_settle=float(os.getenv("WAIT_SECONDS_LOGIN_SETTLE", "3.0")),
            artifacts_dir=Path(os.getenv("ARTIFACTS_DIR", "artifacts")),
            order_id_prefix=os.getenv("ORDER_ID_PREFIX", "GLOWUP"),
        )
