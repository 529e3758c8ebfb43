"""
Session store and the operator-supervised login flow.

Setup opens a visible browser on a persistent profile, waits for a human to
sign in, and exports the resulting cookies/local storage to a JSON file that
every headless order run loads read-only.
"""

import asyncio
from pathlib import Path
from typing import Callable, Optional

from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeout

from fulfillment import strategies
from fulfillment.browser import BrowserManager
from fulfillment.config import FulfillmentConfig
from fulfillment.detectors import is_account_page, is_login_url, is_maintenance_page, login_detected
from fulfillment.events import event_broker, EventBroker, EventType
from fulfillment.models import SessionSetupResult

TIMEOUT_MS_VERIFY = 15000
PROGRESS_EVERY_SECONDS = 10.0


class SessionStore:
    """On-disk authenticated identity against the retailer."""

    STORAGE_STATE_FILE = "storage-state.json"
    PROFILE_DIR = "profile"

    def __init__(self, root: Path):
        self.root = Path(root)

    @property
    def storage_state_path(self) -> Path:
        return self.root / self.STORAGE_STATE_FILE

    @property
    def profile_dir(self) -> Path:
        return self.root / self.PROFILE_DIR

    def exists(self) -> bool:
        return self.storage_state_path.is_file()


class SessionSetup:
    """One-time manual login (setup_session) and the session health probe (is_session_valid)."""

    def __init__(
        self,
        config: Optional[FulfillmentConfig] = None,
        broker: EventBroker = event_broker,
        browser_factory: Optional[Callable[[], BrowserManager]] = None,
        session_store: Optional[SessionStore] = None,
    ):
        self._config = config or FulfillmentConfig.from_env()
        self._broker = broker
        self._browser_factory = browser_factory or (lambda: BrowserManager(broker))
        self._store = session_store or SessionStore(self._config.session_dir)

    @property
    def store(self) -> SessionStore:
        return self._store

    async def setup_session(self) -> SessionSetupResult:
        """
        Launch a visible browser and block until the operator has signed in.

        Polls the rendered page every `session_poll_interval_seconds` up to
        `session_setup_timeout_seconds`. On success the storage state is written
        to the store before the browser is closed.
        """
        config = self._config
        browser = self._browser_factory()

        await self._broker.emit(
            EventType.SESSION, "session_setup_start",
            message="Launching visible browser for retailer login",
            storage_state=str(self._store.storage_state_path)
        )

        try:
            driver = await browser.launch_persistent(self._store.profile_dir, headless=False)

            # Home page first, it is less likely to be blocked than the login URL
            await driver.goto(config.home_url, timeout_ms=config.timeout_ms_page_load)
            await asyncio.sleep(config.wait_seconds_login_settle)

            if is_maintenance_page(await driver.body_text()):
                await self._broker.emit(
                    EventType.SESSION, "session_setup_maintenance",
                    url=driver.url, message="Maintenance page detected, retrying once"
                )
                await asyncio.sleep(config.wait_seconds_login_settle)
                await driver.reload(timeout_ms=config.timeout_ms_page_load)
                await asyncio.sleep(config.wait_seconds_login_settle)

            fired = await strategies.perform(driver, strategies.SIGN_IN)
            if fired:
                await self._broker.emit(
                    EventType.SESSION, "session_setup_sign_in_clicked",
                    url=driver.url, selector=fired
                )
            else:
                await driver.goto(config.login_url, timeout_ms=config.timeout_ms_page_load)
            await asyncio.sleep(config.wait_seconds_login_settle)

            await self._broker.emit(
                EventType.ACTION_REQUIRED, "session_login_required",
                url=driver.url,
                message="Log into the retailer account in the browser window (complete 2FA if prompted)",
                timeout_seconds=config.session_setup_timeout_seconds
            )

            if not await self._wait_for_login(driver):
                await self._broker.emit(EventType.SESSION, "session_setup_timeout", url=driver.url)
                return SessionSetupResult(success=False, message="Timeout waiting for login. Try again.")

            await browser.export_storage_state(self._store.storage_state_path)
            await self._broker.emit(
                EventType.SESSION, "session_saved",
                url=driver.url, path=str(self._store.storage_state_path)
            )
            return SessionSetupResult(
                success=True, message="Session saved. Future orders will use this login."
            )

        except Exception as e:
            await self._broker.emit(EventType.ERROR, "session_setup_failed", error=str(e))
            return SessionSetupResult(success=False, message=f"Setup failed: {e}")

        finally:
            await browser.shutdown()

    async def _wait_for_login(self, driver) -> bool:
        """Poll page state until a signed-in page is seen or the ceiling is hit."""
        config = self._config
        loop = asyncio.get_running_loop()
        start = loop.time()
        end_time = start + config.session_setup_timeout_seconds
        next_report = start + PROGRESS_EVERY_SECONDS

        while loop.time() < end_time:
            try:
                url = driver.url
                text = await driver.body_text()
                title = await driver.title()

                if is_maintenance_page(text):
                    await self._broker.emit(
                        EventType.SESSION, "session_setup_maintenance", url=url,
                        message="Still seeing maintenance page, navigate to login manually"
                    )

                if login_detected(url, text, title):
                    await self._broker.emit(
                        EventType.SESSION, "session_login_detected", url=url,
                        message="Login detected, stabilizing session"
                    )
                    await asyncio.sleep(config.wait_seconds_login_settle)
                    if await self._verify(driver):
                        return True
                    await self._broker.emit(
                        EventType.SESSION, "session_verify_redirected", url=driver.url,
                        message="Redirected to login during verification, continuing to wait"
                    )
            except PlaywrightError:
                # Page is mid-navigation while the operator types
                pass

            if loop.time() >= next_report:
                await self._broker.emit(
                    EventType.SESSION, "session_setup_waiting", url=driver.url,
                    elapsed_seconds=int(loop.time() - start)
                )
                next_report += PROGRESS_EVERY_SECONDS

            await asyncio.sleep(config.session_poll_interval_seconds)

        return False

    async def _verify(self, driver) -> bool:
        """Open the account page; a redirect back to login means the session did not stick."""
        try:
            await driver.goto(self._config.account_url, timeout_ms=TIMEOUT_MS_VERIFY)
        except PlaywrightTimeout:
            # Slow account page, the login itself was already observed
            return True
        await asyncio.sleep(self._config.wait_seconds_ui_settle)
        return not is_login_url(driver.url)

    async def is_session_valid(self) -> bool:
        """Headless probe of the stored session. Fails closed: any error means False."""
        if not self._store.exists():
            return False

        browser = self._browser_factory()
        try:
            driver = await browser.launch(headless=True, storage_state=self._store.storage_state_path)
            await driver.goto(self._config.account_url, timeout_ms=self._config.timeout_ms_session_probe)
            return is_account_page(await driver.body_text())
        except Exception as e:
            await self._broker.emit(EventType.SESSION, "session_probe_failed", error=str(e))
            return False
        finally:
            try:
                await browser.shutdown()
            except Exception as e:
                await self._broker.emit(EventType.ERROR, "browser_close_failed", error=str(e))
