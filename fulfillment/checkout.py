"""
Retailer checkout state machine.
Handles: Login Check → Clear Bag → Add Items → Checkout → Shipping → Payment → Place Order
"""

import asyncio
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from playwright.async_api import Error as PlaywrightError

from fulfillment import strategies
from fulfillment.config import FulfillmentConfig
from fulfillment.detectors import CONFIRMATION_URL_PATTERN, DEFAULT_DETECTORS, Detectors
from fulfillment.events import event_broker, EventBroker, EventType, OrderLog
from fulfillment.models import FailureKind, OrderItem, ShippingAddress
from fulfillment.strategies import Fill, Select, TextCandidate


class CheckoutStage(str, Enum):
    """States in the checkout flow, in the only order they are entered."""
    IDLE = "idle"
    LOGIN_CHECK = "login_check"
    CART_CLEAR = "cart_clear"
    ADD_ITEMS = "add_items"
    GO_TO_CHECKOUT = "go_to_checkout"
    SHIPPING = "shipping"
    PAYMENT = "payment"
    PLACE_ORDER = "place_order"
    ORDER_PLACED = "order_placed"
    MANUAL_REVIEW = "manual_review"
    ERROR = "error"


STAGE_ORDER = (
    CheckoutStage.LOGIN_CHECK,
    CheckoutStage.CART_CLEAR,
    CheckoutStage.ADD_ITEMS,
    CheckoutStage.GO_TO_CHECKOUT,
    CheckoutStage.SHIPPING,
    CheckoutStage.PAYMENT,
    CheckoutStage.PLACE_ORDER,
)


@dataclass
class StageResult:
    """Result of a stage execution."""
    success: bool
    stage: CheckoutStage
    message: str
    failure: Optional[FailureKind] = None
    details: Dict[str, Any] = field(default_factory=dict)


class CheckoutFlow:
    """
    State machine for one order attempt against the retailer.

    Flow:
    1. Open home page and confirm the stored session is signed in (fatal if not)
    2. Empty whatever is already in the bag
    3. Add each eligible item, skipping out-of-stock ones (fatal if none added)
    4. Go from the bag to checkout, never as a guest
    5. Accept the saved address or fill the form
    6. Check that a saved payment method is on file (informational)
    7. Click "Place Order" and scrape the order number

    Stages run strictly in order and are never retried within one run.
    Exceptions are not caught here; the engine owns cleanup.
    """

    def __init__(
        self,
        browser,
        config: FulfillmentConfig,
        log: OrderLog,
        detectors: Detectors = DEFAULT_DETECTORS,
        broker: EventBroker = event_broker,
    ):
        self._browser = browser
        self._config = config
        self._log = log
        self._detectors = detectors
        self._broker = broker
        self._current_stage = CheckoutStage.IDLE

        self.subtotal = Decimal("0")
        self.added: List[OrderItem] = []
        self.skipped: List[Tuple[OrderItem, str]] = []
        self.order_number: Optional[str] = None
        self.screenshot_path: Optional[str] = None

    @property
    def current_stage(self) -> CheckoutStage:
        return self._current_stage

    @property
    def driver(self):
        return self._browser.driver

    async def _update_stage(self, stage: CheckoutStage) -> None:
        self._current_stage = stage
        await self._broker.emit(
            EventType.STAGE, stage.value,
            url=self.driver.url if self.driver else "",
            user_id=self._log.user_id
        )

    async def _settle(self, seconds: Optional[float] = None) -> None:
        await asyncio.sleep(self._config.wait_seconds_ui_settle if seconds is None else seconds)

    async def _goto(self, url: str) -> None:
        await self.driver.goto(url, timeout_ms=self._config.timeout_ms_page_load)
        await self._settle()

    async def run(self, items: Sequence[OrderItem], address: ShippingAddress) -> StageResult:
        """Execute every stage in order; stop at the first fatal one."""
        result = await self._step_login_check()
        if not result.success:
            return result

        await self._step_cart_clear()

        result = await self._step_add_items(items)
        if not result.success:
            return result

        await self._step_go_to_checkout()
        await self._step_shipping(address)
        await self._step_payment()
        return await self._step_place_order()

    async def _step_login_check(self) -> StageResult:
        """Step 1: Confirm the stored session is still signed in."""
        await self._update_stage(CheckoutStage.LOGIN_CHECK)
        await self._log("login_check", "Checking login status...")

        await self._goto(self._config.home_url)
        text = await self.driver.body_text()

        if not self._detectors.is_authenticated(text):
            await self._log("login_failed", "Not logged in - session may have expired", url=self.driver.url)
            await self._log("login_failed", "Session expired. Run session setup to re-login.")
            self._current_stage = CheckoutStage.ERROR
            return StageResult(
                success=False,
                stage=CheckoutStage.LOGIN_CHECK,
                message="Session expired. Please re-authenticate.",
                failure=FailureKind.SESSION_EXPIRED,
            )

        await self._log("login_ok", "Logged into retailer account")
        return StageResult(success=True, stage=CheckoutStage.LOGIN_CHECK, message="Logged in")

    async def _step_cart_clear(self) -> StageResult:
        """Step 2: Remove leftovers from the bag. Bounded, never fatal."""
        await self._update_stage(CheckoutStage.CART_CLEAR)
        await self._log("cart_clear", "Clearing existing bag...")

        await self._goto(self._config.bag_url)

        removed = 0
        for _ in range(self._config.max_cart_clear_iterations):
            if not await strategies.perform(self.driver, strategies.CART_REMOVE):
                break
            removed += 1
            await self._settle(self._config.wait_seconds_cart_remove)

        await self._log("cart_cleared", "Bag cleared", removed=removed)
        return StageResult(
            success=True, stage=CheckoutStage.CART_CLEAR,
            message="Bag cleared", details={"removed": removed}
        )

    async def _step_add_items(self, items: Sequence[OrderItem]) -> StageResult:
        """Step 3: Add each item; out-of-stock or unclickable items are skipped."""
        await self._update_stage(CheckoutStage.ADD_ITEMS)

        for item in items:
            await self._log(
                "add_item", f"Adding: {item.name} ({item.brand}) x{item.quantity}",
                url=item.url, product_id=item.product_id
            )
            try:
                await self._add_item(item)
            except PlaywrightError as e:
                self.skipped.append((item, f"error: {e}"))
                await self._log("add_item_error", f'Error adding "{item.name}": {e}', url=item.url)

        if not self.added:
            await self._log("add_items_failed", "Could not add any products to bag")
            self._current_stage = CheckoutStage.ERROR
            return StageResult(
                success=False,
                stage=CheckoutStage.ADD_ITEMS,
                message="Failed to add products to cart",
                failure=FailureKind.NOTHING_ADDED,
                details={"skipped": [item.name for item, _ in self.skipped]},
            )

        await self._log(
            "add_items_done", f"{len(self.added)}/{len(items)} items added to bag",
            subtotal=str(self.subtotal)
        )
        return StageResult(
            success=True, stage=CheckoutStage.ADD_ITEMS,
            message=f"{len(self.added)} item(s) added",
            details={"added": len(self.added), "skipped": len(self.skipped)}
        )

    async def _add_item(self, item: OrderItem) -> None:
        await self._goto(item.url)

        text = await self.driver.body_text()
        if self._detectors.is_out_of_stock(text):
            self.skipped.append((item, "out of stock"))
            await self._log("item_out_of_stock", f'"{item.name}" is OUT OF STOCK - skipping', url=item.url)
            return

        if item.quantity > 1:
            if await strategies.locate(self.driver, strategies.QUANTITY) is None:
                await self._log(
                    "quantity_not_found",
                    f"  Quantity selector not found - adding 1 of {item.quantity}"
                )
            elif await strategies.perform(self.driver, strategies.QUANTITY, Select(str(item.quantity))):
                await self._log("quantity_set", f"  Set quantity to {item.quantity}")
                await self._settle(self._config.wait_seconds_quantity)

        fired = await strategies.perform(self.driver, strategies.ADD_TO_BAG)
        if fired:
            fallback = " (fallback)" if fired == _text_label(strategies.ADD_TO_BAG) else ""
            self.added.append(item)
            self.subtotal += item.line_total
            await self._log("item_added", f"  Added to bag{fallback}", selector=fired)
        else:
            self.skipped.append((item, "add to bag control not found"))
            await self._log("item_add_failed", f'  Could not find "Add to Bag" button for "{item.name}"')

        await self._settle(self._config.wait_seconds_bag_update)

    async def _step_go_to_checkout(self) -> StageResult:
        """Step 4: Bag → checkout. Proceeds optimistically if nothing was clickable."""
        await self._update_stage(CheckoutStage.GO_TO_CHECKOUT)
        await self._log("go_to_checkout", "Navigating to checkout...")

        await self._goto(self._config.bag_url)

        fired = await strategies.perform(self.driver, strategies.CHECKOUT)
        if fired == _text_label(strategies.CHECKOUT):
            await self._log("checkout_clicked", "  Proceeding to checkout (fallback)...", selector=fired)
        elif fired:
            await self._log("checkout_clicked", "  Proceeding to checkout...", selector=fired)
        else:
            await self._log("checkout_not_found", "  Checkout control not found - continuing")

        await self._settle(self._config.wait_seconds_checkout_settle)
        await self.driver.wait_for_load(self._config.timeout_ms_checkout_load)

        return StageResult(
            success=True, stage=CheckoutStage.GO_TO_CHECKOUT,
            message="Checkout requested", details={"selector": fired}
        )

    async def _step_shipping(self, address: ShippingAddress) -> StageResult:
        """Step 5: Use the saved address, or best-effort fill of the form."""
        await self._update_stage(CheckoutStage.SHIPPING)
        await self._log("shipping", "Handling shipping...")

        text = await self.driver.body_text()
        if self._detectors.has_saved_address(text) or not address.line1:
            await self._log("shipping_saved", "  Using saved shipping address")
            return StageResult(success=True, stage=CheckoutStage.SHIPPING, message="Saved address")

        await self._log("shipping_fill", "  Entering shipping address...")
        values = {
            "first_name": address.first_name,
            "last_name": address.last_name,
            "line1": address.line1,
            "line2": address.line2 or "",
            "city": address.city,
            "zip": address.zip,
        }
        filled = []
        for field_name, chain in strategies.SHIPPING_FIELDS.items():
            value = values[field_name]
            if not value:
                continue
            if await strategies.perform(self.driver, chain, Fill(value)):
                filled.append(field_name)

        if address.state and await strategies.perform(
            self.driver, strategies.SHIPPING_STATE, Select(address.state)
        ):
            filled.append("state")

        await self._settle()
        await strategies.perform(self.driver, strategies.SHIPPING_CONTINUE)
        await self._settle(self._config.wait_seconds_checkout_settle)

        await self._log("shipping_entered", "  Shipping address entered", fields=filled)
        return StageResult(
            success=True, stage=CheckoutStage.SHIPPING,
            message="Address entered", details={"fields": filled}
        )

    async def _step_payment(self) -> StageResult:
        """Step 6: Detect a saved payment method. Never enters card data, never blocks."""
        await self._update_stage(CheckoutStage.PAYMENT)
        await self._log("payment", "Confirming payment method...")
        await self._settle()

        text = await self.driver.body_text()
        found = self._detectors.has_saved_payment(text)
        if found:
            await self._log("payment_saved", "  Using saved payment method")
        else:
            await self._log(
                "payment_missing",
                "  No saved payment method detected - order may need manual payment entry"
            )
        return StageResult(
            success=True, stage=CheckoutStage.PAYMENT,
            message="Payment checked", details={"saved_payment": found}
        )

    async def _step_place_order(self) -> StageResult:
        """Step 7: Submit the order and scrape the confirmation number."""
        await self._update_stage(CheckoutStage.PLACE_ORDER)
        await self._log("place_order", "Placing order...")

        fired = await strategies.perform(self.driver, strategies.PLACE_ORDER)
        if not fired:
            await self._log(
                "place_order_not_found",
                'Could not click "Place Order" - checkout may require manual review'
            )
            await self._capture_debug_screenshot()
            self._current_stage = CheckoutStage.MANUAL_REVIEW
            await self._broker.emit(
                EventType.ACTION_REQUIRED, "manual_review_required",
                url=self.driver.url, user_id=self._log.user_id,
                screenshot=self.screenshot_path
            )
            return StageResult(
                success=False,
                stage=CheckoutStage.PLACE_ORDER,
                message="Manual review required: could not complete checkout automatically. Check debug screenshot.",
                failure=FailureKind.MANUAL_REVIEW,
            )

        await self._log("order_submitted", "  Waiting for order confirmation...", selector=fired)
        # The click already placed the order; from here on the scrape is best effort
        timeout_ms = max(1, int(self._config.wait_seconds_order_confirm * 1000))
        try:
            await self.driver.wait_for_url(CONFIRMATION_URL_PATTERN, timeout_ms)
            text = await self.driver.body_text()
        except PlaywrightError as e:
            text = ""
            await self._log("confirmation_read_failed", f"  Could not read confirmation page: {e}")

        self.order_number = self._detectors.extract_order_number(text) if text else None
        if self.order_number:
            await self._log("order_confirmed", f"  ORDER CONFIRMED! Order #{self.order_number}", url=self.driver.url)
        else:
            await self._log("order_unconfirmed", "  Order submitted (confirmation number not detected)", url=self.driver.url)

        self._current_stage = CheckoutStage.ORDER_PLACED
        await self._broker.emit(
            EventType.ORDER_PLACED, "order_placed",
            url=self.driver.url, user_id=self._log.user_id, order_number=self.order_number
        )
        return StageResult(
            success=True, stage=CheckoutStage.PLACE_ORDER,
            message="Order placed", details={"order_number": self.order_number}
        )

    async def _capture_debug_screenshot(self) -> None:
        try:
            path = await self._browser.take_screenshot(self._config.checkout_debug_screenshot)
        except PlaywrightError as e:
            await self._log("screenshot_failed", f"Debug screenshot failed: {e}")
            return
        if path:
            self.screenshot_path = path
            await self._log("screenshot_saved", f"Debug screenshot saved: {path}")


def _text_label(chain: strategies.SelectorChain) -> Optional[str]:
    """Label of the chain's text-match candidate, if it has one."""
    for candidate in chain.candidates:
        if isinstance(candidate, TextCandidate):
            return candidate.label
    return None
