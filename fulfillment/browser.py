"""
Playwright browser lifecycle management and the page driver used by the flows.

One BrowserManager owns one browser for one order attempt (or one session
setup run). PageDriver is the only surface the checkout flow talks to.
"""

import re
from pathlib import Path
from typing import Optional, Pattern, Sequence, Union

from playwright.async_api import (
    async_playwright,
    Browser,
    BrowserContext,
    ElementHandle,
    Page,
    Playwright,
    TimeoutError as PlaywrightTimeout,
)

from fulfillment.events import event_broker, EventBroker, EventType

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--window-size=1280,900",
    # Basic fingerprint reduction
    "--disable-blink-features=AutomationControlled",
    "--disable-infobars",
    "--no-first-run",
    "--no-default-browser-check",
]
VIEWPORT = {"width": 1280, "height": 900}

# Remove navigator.webdriver flag
HIDE_WEBDRIVER_SCRIPT = """
    Object.defineProperty(navigator, 'webdriver', {
        get: () => undefined
    });
"""

# Last-resort locator: first clickable element whose text contains the needle
# and none of the excluded words, and which is not disabled.
FIND_BY_TEXT_SCRIPT = """
    ([tags, needle, exclude]) => {
        const els = Array.from(document.querySelectorAll(tags.join(',')));
        return els.find(el => {
            const text = (el.innerText || el.textContent || '').toLowerCase();
            if (!text.includes(needle)) return false;
            if (exclude.some(word => text.includes(word))) return false;
            return !el.disabled && !el.hasAttribute('disabled');
        }) || null;
    }
"""


class PageDriver:
    """Thin async wrapper over a Playwright page."""

    def __init__(self, page: Page):
        self._page = page

    @property
    def page(self) -> Page:
        return self._page

    @property
    def url(self) -> str:
        return self._page.url

    async def goto(self, url: str, timeout_ms: int, wait_until: str = "domcontentloaded") -> None:
        await self._page.goto(url, wait_until=wait_until, timeout=timeout_ms)

    async def reload(self, timeout_ms: int) -> None:
        await self._page.reload(wait_until="domcontentloaded", timeout=timeout_ms)

    async def body_text(self) -> str:
        return await self._page.evaluate(
            "() => (document.body && document.body.innerText) || ''"
        )

    async def title(self) -> str:
        return await self._page.title()

    async def query(self, selector: str) -> Optional[ElementHandle]:
        return await self._page.query_selector(selector)

    async def find_by_text(
        self,
        text: str,
        tags: Sequence[str] = ("button",),
        exclude: Sequence[str] = ()
    ) -> Optional[ElementHandle]:
        handle = await self._page.evaluate_handle(
            FIND_BY_TEXT_SCRIPT,
            [list(tags), text.lower(), [w.lower() for w in exclude]]
        )
        element = handle.as_element()
        if element is None:
            await handle.dispose()
        return element

    async def is_enabled(self, element: ElementHandle) -> bool:
        return await element.is_enabled()

    async def click(self, element: ElementHandle) -> None:
        await element.click()

    async def fill(self, element: ElementHandle, value: str) -> None:
        # Select existing text so the new value replaces it
        await element.click(click_count=3)
        await element.fill(value)

    async def select(self, element: ElementHandle, value: str) -> None:
        await element.select_option(value)

    async def wait_for_url(self, pattern: Union[str, Pattern], timeout_ms: int) -> bool:
        if isinstance(pattern, str):
            pattern = re.compile(pattern, re.IGNORECASE)
        try:
            await self._page.wait_for_url(pattern, timeout=timeout_ms)
            return True
        except PlaywrightTimeout:
            return False

    async def wait_for_load(self, timeout_ms: int) -> bool:
        try:
            await self._page.wait_for_load_state("domcontentloaded", timeout=timeout_ms)
            return True
        except PlaywrightTimeout:
            return False

    async def screenshot(self, path: str) -> None:
        await self._page.screenshot(path=path, full_page=True)


class BrowserManager:
    """Manages one Playwright browser, either headless with a stored session or headed with a profile."""

    def __init__(self, broker: EventBroker = event_broker):
        self._broker = broker
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._driver: Optional[PageDriver] = None
        self._is_running = False

    @property
    def is_running(self) -> bool:
        return self._is_running

    @property
    def driver(self) -> Optional[PageDriver]:
        return self._driver

    async def launch(self, headless: bool = True, storage_state: Optional[Path] = None) -> PageDriver:
        """Launch a fresh browser, optionally loading cookies/local storage from disk."""
        await self._broker.emit(
            EventType.STEP, "browser_init",
            message="Launching browser", headless=headless,
            storage_state=str(storage_state) if storage_state else None
        )

        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(headless=headless, args=LAUNCH_ARGS)
        self._context = await self._browser.new_context(
            storage_state=str(storage_state) if storage_state else None,
            viewport=VIEWPORT,
            ignore_https_errors=True,
        )
        return await self._open_page()

    async def launch_persistent(self, profile_dir: Path, headless: bool = False) -> PageDriver:
        """Launch a browser bound to an on-disk profile directory."""
        profile_dir.mkdir(parents=True, exist_ok=True)
        await self._broker.emit(
            EventType.STEP, "browser_init",
            message="Launching browser with persistent profile",
            headless=headless, profile_dir=str(profile_dir)
        )

        self._playwright = await async_playwright().start()
        self._context = await self._playwright.chromium.launch_persistent_context(
            user_data_dir=str(profile_dir),
            headless=headless,
            args=LAUNCH_ARGS,
            viewport=VIEWPORT,
            ignore_https_errors=True,
        )
        return await self._open_page()

    async def _open_page(self) -> PageDriver:
        await self._context.add_init_script(HIDE_WEBDRIVER_SCRIPT)
        pages = self._context.pages
        page = pages[0] if pages else await self._context.new_page()
        self._driver = PageDriver(page)
        self._is_running = True

        await self._broker.emit(EventType.STEP, "browser_ready", message="Browser initialized successfully")
        return self._driver

    async def export_storage_state(self, path: Path) -> None:
        """Write cookies and local storage of the current context to a JSON file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        await self._context.storage_state(path=str(path))

    async def take_screenshot(self, path: Path) -> str:
        """Screenshot the active page to a fixed path. Returns '' if there is nothing to capture."""
        if not self._driver or self._driver.page.is_closed():
            return ""

        path.parent.mkdir(parents=True, exist_ok=True)
        await self._driver.screenshot(str(path))
        await self._broker.emit(EventType.SCREENSHOT, "screenshot_saved", url=self._driver.url, path=str(path))
        return str(path)

    async def shutdown(self) -> None:
        """Close the browser and stop Playwright. Safe to call more than once."""
        if not self._is_running and self._context is None and self._playwright is None:
            return
        self._is_running = False

        await self._broker.emit(EventType.STEP, "browser_shutdown", message="Shutting down browser")

        if self._context:
            try:
                await self._context.close()
            except Exception as e:
                await self._broker.emit(EventType.ERROR, "browser_context_close_failed", error=str(e))
            self._context = None

        if self._browser:
            try:
                await self._browser.close()
            except Exception as e:
                await self._broker.emit(EventType.ERROR, "browser_close_failed", error=str(e))
            self._browser = None

        if self._playwright:
            try:
                await self._playwright.stop()
            except Exception as e:
                await self._broker.emit(EventType.ERROR, "playwright_stop_failed", error=str(e))
            self._playwright = None

        self._driver = None
