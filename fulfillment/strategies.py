"""
Selector fallback chains for every UI action on the retailer site.

The retailer's markup is not under our control, so each action is described as
an ordered list of ways to find the element: CSS selectors first, a text match
last. The first candidate that resolves to an enabled element is used.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple, Union

from playwright.async_api import Error as PlaywrightError


@dataclass(frozen=True)
class CssCandidate:
    """Locate by selector; the element must exist and be enabled."""
    selector: str

    @property
    def label(self) -> str:
        return self.selector

    async def locate(self, driver) -> Optional[Any]:
        element = await driver.query(self.selector)
        if element is None:
            return None
        if not await driver.is_enabled(element):
            return None
        return element


@dataclass(frozen=True)
class TextCandidate:
    """Locate any enabled element of the given tags whose text contains `text`."""
    text: str
    tags: Tuple[str, ...] = ("button",)
    exclude: Tuple[str, ...] = ()

    @property
    def label(self) -> str:
        return f"text~'{self.text}'"

    async def locate(self, driver) -> Optional[Any]:
        return await driver.find_by_text(self.text, tags=self.tags, exclude=self.exclude)


Candidate = Union[CssCandidate, TextCandidate]


@dataclass(frozen=True)
class Click:
    async def apply(self, driver, element) -> None:
        await driver.click(element)


@dataclass(frozen=True)
class Fill:
    value: str

    async def apply(self, driver, element) -> None:
        await driver.fill(element, self.value)


@dataclass(frozen=True)
class Select:
    value: str

    async def apply(self, driver, element) -> None:
        await driver.select(element, self.value)


Action = Union[Click, Fill, Select]
CLICK = Click()


@dataclass(frozen=True)
class SelectorChain:
    name: str
    candidates: Tuple[Candidate, ...]

    @classmethod
    def of(cls, name: str, *candidates: Union[str, Candidate]) -> "SelectorChain":
        """Build a chain; plain strings become CSS candidates."""
        return cls(
            name=name,
            candidates=tuple(CssCandidate(c) if isinstance(c, str) else c for c in candidates)
        )


async def perform(driver, chain: SelectorChain, action: Action = CLICK) -> Optional[str]:
    """
    Walk the chain and apply `action` to the first usable element.

    Returns the label of the candidate that fired, or None if nothing matched.
    A candidate whose lookup or action raises a browser error is skipped.
    """
    for candidate in chain.candidates:
        try:
            element = await candidate.locate(driver)
            if element is None:
                continue
            await action.apply(driver, element)
            return candidate.label
        except PlaywrightError:
            continue
    return None


async def locate(driver, chain: SelectorChain) -> Optional[Any]:
    """Return the first element the chain resolves to without acting on it."""
    for candidate in chain.candidates:
        try:
            element = await candidate.locate(driver)
        except PlaywrightError:
            continue
        if element is not None:
            return element
    return None


# =============================================================================
# Retailer chains
# =============================================================================

SIGN_IN = SelectorChain.of(
    "sign_in",
    'a[href*="login"]',
    'a[href*="sign-in"]',
    'a[href*="myaccount"]',
    'button:has-text("Sign In")',
    'a:has-text("Sign In")',
    'a:has-text("Account")',
)

CART_REMOVE = SelectorChain.of(
    "cart_remove",
    '[data-test="bag-item-remove"]',
    ".js-remove-product",
    'button[aria-label*="Remove"]',
)

QUANTITY = SelectorChain.of(
    "quantity",
    'select[data-test="item-quantity"]',
    "select.js-quantity",
    'select[name="quantity"]',
)

ADD_TO_BAG = SelectorChain.of(
    "add_to_bag",
    'button[data-test="add-to-bag"]',
    "button#add-to-bag",
    "button.ProductDetail__addToCart",
    'button[aria-label*="Add to bag"]',
    'button[aria-label*="Add to Bag"]',
    "button.js-add-to-bag",
    "button.ProductHero__addToCart",
    TextCandidate("add to bag"),
)

# Guest checkout would drop the authenticated session, never use it
CHECKOUT = SelectorChain.of(
    "checkout",
    'button[data-test="checkout-button"]',
    'a[data-test="checkout-button"]',
    "button.js-checkout",
    "a.js-checkout",
    'a[href*="checkout"]:not([href*="guest"])',
    'button[aria-label*="Checkout"]:not([aria-label*="Guest"])',
    TextCandidate("checkout", tags=("a", "button"), exclude=("guest",)),
)

SHIPPING_FIELDS: Dict[str, SelectorChain] = {
    "first_name": SelectorChain.of(
        "shipping_first_name",
        "#shipping-firstName", 'input[name="firstName"]', 'input[name="shipping.firstName"]',
    ),
    "last_name": SelectorChain.of(
        "shipping_last_name",
        "#shipping-lastName", 'input[name="lastName"]', 'input[name="shipping.lastName"]',
    ),
    "line1": SelectorChain.of(
        "shipping_address1",
        "#shipping-address1", 'input[name="address1"]', 'input[name="shipping.address1"]',
    ),
    "line2": SelectorChain.of(
        "shipping_address2",
        "#shipping-address2", 'input[name="address2"]', 'input[name="shipping.address2"]',
    ),
    "city": SelectorChain.of(
        "shipping_city",
        "#shipping-city", 'input[name="city"]', 'input[name="shipping.city"]',
    ),
    "zip": SelectorChain.of(
        "shipping_zip",
        "#shipping-zip", 'input[name="postalCode"]', 'input[name="shipping.postalCode"]',
    ),
}

SHIPPING_STATE = SelectorChain.of(
    "shipping_state",
    "#shipping-state", 'select[name="state"]', 'select[name="shipping.state"]',
)

SHIPPING_CONTINUE = SelectorChain.of(
    "shipping_continue",
    'button[data-test="shipping-continue"]',
    "button.js-continue-shipping",
    'button[type="submit"]',
)

PLACE_ORDER = SelectorChain.of(
    "place_order",
    'button[data-test="place-order"]',
    "button.js-place-order",
    'button[aria-label*="Place Order"]',
    'button[aria-label*="Place order"]',
    "#place-order",
    TextCandidate("place order"),
)
