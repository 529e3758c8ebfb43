import asyncio
from dataclasses import replace

from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeout

from fakes import BASE, HOME, FakeBrowser, FakeDriver, FakeElement, FakePage
from fulfillment.events import EventType
from fulfillment.session import SessionSetup, SessionStore

ACCOUNT = f"{BASE}/myaccount"
LOGIN = f"{BASE}/u/login"


def make_setup(config, broker, driver, store=None, launch_error=None):
    browser = FakeBrowser(driver, launch_error=launch_error)
    setup = SessionSetup(
        config=config,
        broker=broker,
        browser_factory=lambda: browser,
        session_store=store or SessionStore(config.session_dir),
    )
    return setup, browser


def test_setup_saves_session_after_login(config, broker):
    def operator_signs_in(driver):
        driver.url = ACCOUNT

    driver = FakeDriver({
        HOME: FakePage(text="Sign In", elements={
            'a[href*="login"]': FakeElement('a[href*="login"]', on_click=operator_signs_in),
        }),
        ACCOUNT: FakePage(text="My Account\nSign Out"),
    })
    setup, browser = make_setup(config, broker, driver)

    result = asyncio.run(setup.setup_session())

    assert result.success is True
    assert result.message == "Session saved. Future orders will use this login."
    assert setup.store.exists()
    assert browser.launches[0]["headless"] is False
    assert browser.launches[0]["profile_dir"] == setup.store.profile_dir
    assert browser.close_count == 1
    assert ACCOUNT in driver.visited


def test_setup_falls_back_to_login_url_and_times_out(config, broker):
    driver = FakeDriver({
        HOME: FakePage(text="Welcome"),
        LOGIN: FakePage(text="Sign In\nEmail\nPassword"),
    })
    setup, browser = make_setup(config, broker, driver)

    result = asyncio.run(setup.setup_session())

    assert result.success is False
    assert result.message == "Timeout waiting for login. Try again."
    assert LOGIN in driver.visited
    assert not setup.store.exists()
    assert browser.close_count == 1

    history = asyncio.run(broker.get_history(100))
    assert any(e.type == EventType.ACTION_REQUIRED for e in history)


def test_setup_launch_failure_is_reported(config, broker):
    setup, browser = make_setup(
        config, broker, FakeDriver({}), launch_error=PlaywrightError("no display")
    )

    result = asyncio.run(setup.setup_session())

    assert result.success is False
    assert result.message.startswith("Setup failed:")
    assert "no display" in result.message
    assert browser.close_count == 1


def test_probe_without_store_does_not_launch(config, broker):
    setup, browser = make_setup(config, broker, FakeDriver({}))

    assert asyncio.run(setup.is_session_valid()) is False
    assert browser.launches == []


def test_probe_accepts_account_page(config, broker, session_store):
    driver = FakeDriver({ACCOUNT: FakePage(text="My Account\nOrder History")})
    setup, browser = make_setup(config, broker, driver, store=session_store)

    assert asyncio.run(setup.is_session_valid()) is True
    assert browser.launches == [{"headless": True, "storage_state": session_store.storage_state_path}]
    assert browser.close_count == 1


def test_probe_rejects_signed_out_page(config, broker, session_store):
    driver = FakeDriver({ACCOUNT: FakePage(text="Sign In to continue")})
    setup, browser = make_setup(config, broker, driver, store=session_store)

    assert asyncio.run(setup.is_session_valid()) is False
    assert browser.close_count == 1


def test_probe_fails_closed_on_browser_error(config, broker, session_store):
    setup, browser = make_setup(
        config, broker, FakeDriver({}), store=session_store,
        launch_error=PlaywrightError("browser crashed"),
    )

    assert asyncio.run(setup.is_session_valid()) is False
    assert browser.close_count == 1


def test_setup_reloads_once_on_maintenance_page(config, broker):
    def operator_signs_in(driver):
        driver.url = ACCOUNT

    driver = FakeDriver({
        HOME: FakePage(text="Down for maintenance. We will be back shortly", elements={
            'a[href*="login"]': FakeElement('a[href*="login"]', on_click=operator_signs_in),
        }),
        ACCOUNT: FakePage(text="My Account\nSign Out"),
    })
    setup, browser = make_setup(config, broker, driver)

    result = asyncio.run(setup.setup_session())

    assert driver.reloads == 1
    assert result.success is True
    history = asyncio.run(broker.get_history(100))
    assert [e.step for e in history].count("session_setup_maintenance") >= 1


def test_setup_skips_reload_on_normal_home_page(config, broker):
    driver = FakeDriver({
        HOME: FakePage(text="Welcome"),
        LOGIN: FakePage(text="Sign In"),
    })
    setup, _ = make_setup(config, broker, driver)

    asyncio.run(setup.setup_session())

    assert driver.reloads == 0


class SecondLoginDriver(FakeDriver):
    """First account visit bounces to login; the operator then signs in again."""

    def __init__(self, site):
        super().__init__(site)
        self.account_visits = 0

    async def goto(self, url, timeout_ms, wait_until="domcontentloaded"):
        await super().goto(url, timeout_ms, wait_until)
        if url == ACCOUNT:
            self.account_visits += 1
            if self.account_visits == 1:
                self.url = LOGIN

    async def body_text(self):
        text = await super().body_text()
        if self.url == LOGIN and self.account_visits == 1:
            self.url = ACCOUNT
        return text


def test_setup_keeps_polling_after_verify_redirect(config, broker):
    def operator_signs_in(driver):
        driver.url = ACCOUNT

    driver = SecondLoginDriver({
        HOME: FakePage(text="Sign In", elements={
            'a[href*="login"]': FakeElement('a[href*="login"]', on_click=operator_signs_in),
        }),
        LOGIN: FakePage(text="Sign In\nEmail\nPassword"),
        ACCOUNT: FakePage(text="My Account\nSign Out"),
    })
    setup, browser = make_setup(
        replace(config, session_setup_timeout_seconds=5), broker, driver
    )

    result = asyncio.run(setup.setup_session())

    assert result.success is True
    assert driver.account_visits == 2
    assert setup.store.exists()
    history = asyncio.run(broker.get_history(100))
    assert "session_verify_redirected" in [e.step for e in history]


def test_slow_account_page_counts_as_verified(config, broker):
    def operator_signs_in(driver):
        driver.url = ACCOUNT

    driver = FakeDriver({
        HOME: FakePage(text="Sign In", elements={
            'a[href*="login"]': FakeElement('a[href*="login"]', on_click=operator_signs_in),
        }),
        ACCOUNT: FakePage(text="My Account\nSign Out"),
    })
    driver.goto_errors[ACCOUNT] = PlaywrightTimeout("Timeout 15000ms exceeded")
    setup, browser = make_setup(config, broker, driver)

    result = asyncio.run(setup.setup_session())

    assert result.success is True
    assert setup.store.exists()
    assert browser.close_count == 1
