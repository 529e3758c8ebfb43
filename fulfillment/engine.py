"""
Fulfillment engine: the public entry point for placing one order.

process_order() always returns an OrderResult and always closes the browser it
launched, whichever stage fails or raises.
"""

import time
from decimal import Decimal
from typing import Callable, Optional

from fulfillment.browser import BrowserManager
from fulfillment.checkout import CheckoutFlow
from fulfillment.config import FulfillmentConfig
from fulfillment.detectors import DEFAULT_DETECTORS, Detectors
from fulfillment.events import event_broker, EventBroker, EventType, OrderLog
from fulfillment.models import FailureKind, OrderRequest, OrderResult, to_cents
from fulfillment.pricing import compute_costs, partition_items
from fulfillment.session import SessionStore


def _money(value: Decimal) -> str:
    return f"${to_cents(value):.2f}"


class FulfillmentEngine:
    """Owns the lifecycle of each order attempt: partition, launch, checkout, price, close."""

    def __init__(
        self,
        config: Optional[FulfillmentConfig] = None,
        detectors: Detectors = DEFAULT_DETECTORS,
        broker: EventBroker = event_broker,
        browser_factory: Optional[Callable[[], BrowserManager]] = None,
        session_store: Optional[SessionStore] = None,
    ):
        self._config = config or FulfillmentConfig.from_env()
        self._detectors = detectors
        self._broker = broker
        self._browser_factory = browser_factory or (lambda: BrowserManager(broker))
        self._store = session_store or SessionStore(self._config.session_dir)

    @property
    def config(self) -> FulfillmentConfig:
        return self._config

    async def process_order(self, order: OrderRequest) -> OrderResult:
        """Run one fulfillment attempt end to end."""
        log = OrderLog(order.user_id, self._broker)
        self._broker.order_started()
        try:
            result = await self._process(order, log)
        finally:
            self._broker.order_finished()

        self._broker.last_result = {
            "user_id": order.user_id,
            "success": result.success,
            "order_id": result.order_id,
            "error": result.error,
        }
        return result

    async def _process(self, order: OrderRequest, log: OrderLog) -> OrderResult:
        domain = self._config.retailer_domain
        await log("order_received", f"Agent initialized for user {order.user_id}")
        await log("order_items", f"Processing {len(order.items)} item(s)...")

        eligible, ineligible = partition_items(order.items, domain)
        if ineligible:
            names = ", ".join(item.name for item in ineligible)
            await log(
                "ineligible_items",
                f"{len(ineligible)} item(s) are not from {domain} - skipping: {names}",
                product_ids=[item.product_id for item in ineligible]
            )

        if not eligible:
            return OrderResult.failure(
                FailureKind.NO_ELIGIBLE_ITEMS, f"No {domain} products in cart", log.entries
            )

        if not self._store.exists():
            await log("no_session", "No browser session found. Run session setup first.")
            return OrderResult.failure(
                FailureKind.NO_SESSION, "No retailer session. Run session setup first.", log.entries
            )

        browser = self._browser_factory()
        try:
            await log("browser_launch", "Launching browser with saved session...")
            await browser.launch(
                headless=self._config.headless,
                storage_state=self._store.storage_state_path
            )

            flow = CheckoutFlow(browser, self._config, log, self._detectors, self._broker)
            result = await flow.run(eligible, order.shipping_address)

            if not result.success:
                # Manual review still reports what was put in the bag
                total = flow.subtotal if result.failure == FailureKind.MANUAL_REVIEW else Decimal("0")
                return OrderResult.failure(
                    result.failure, result.message, log.entries,
                    total_cost=total, screenshot_path=flow.screenshot_path
                )

            costs = compute_costs(flow.subtotal, self._config)
            shipping = "FREE" if costs.shipping_cost == 0 else _money(costs.shipping_cost)
            await log("cost_subtotal", f"Subtotal: {_money(costs.subtotal)}")
            await log("cost_shipping", f"Shipping: {shipping}")
            await log("cost_markup", f"Service fee: {_money(costs.markup)}")
            await log("cost_total", f"Total: {_money(costs.total_cost)}")

            return OrderResult(
                success=True,
                order_id=flow.order_number or self._fallback_order_id(),
                total_cost=costs.total_cost,
                shipping_cost=costs.shipping_cost,
                markup=costs.markup,
                logs=log.entries,
            )

        except Exception as e:
            await log("fatal_error", f"Fatal error: {e}")
            screenshot_path = await self._capture_error_screenshot(browser, log)
            return OrderResult.failure(
                FailureKind.EXCEPTION, f"Agent failed: {e}", log.entries,
                screenshot_path=screenshot_path
            )

        finally:
            await self._close(browser)

    def _fallback_order_id(self) -> str:
        """Local reference used when the confirmation page could not be scraped."""
        return f"{self._config.order_id_prefix}-{int(time.time() * 1000)}"

    async def _capture_error_screenshot(self, browser: BrowserManager, log: OrderLog) -> Optional[str]:
        try:
            path = await browser.take_screenshot(self._config.checkout_error_screenshot)
        except Exception as e:
            await self._broker.emit(EventType.ERROR, "error_screenshot_failed", error=str(e))
            return None
        if not path:
            return None
        await log("screenshot_saved", f"Error screenshot saved: {path}")
        return path

    async def _close(self, browser: BrowserManager) -> None:
        try:
            await browser.shutdown()
        except Exception as e:
            await self._broker.emit(EventType.ERROR, "browser_close_failed", error=str(e))
