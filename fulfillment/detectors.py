"""
Text-scraping predicates and extractors for retailer page state.

The retailer exposes no API, so login state, stock state, saved checkout data
and the order number are all read from rendered page text. Each signal lives
behind one named function so the checkout flow can be tested with fakes.
"""

import re
from dataclasses import dataclass
from typing import Callable, Optional

AUTHENTICATED_MARKERS = ("Sign Out", "Hi,")
ACCOUNT_MARKERS = ("Sign Out", "My Account", "Order History")
OUT_OF_STOCK_MARKERS = ("out of stock", "sold out")
SAVED_ADDRESS_MARKERS = ("Ship to this address", "Selected shipping address")
SAVED_PAYMENT_MARKERS = ("ending in", "****", "Visa", "Mastercard", "American Express")
MAINTENANCE_MARKERS = ("will be back shortly", "maintenance", "temporarily unavailable")

ORDER_NUMBER_PATTERN = re.compile(
    r"order\s*(?:number|#|confirmation)[:\s]*([A-Z0-9-]+)",
    re.IGNORECASE
)
CONFIRMATION_URL_PATTERN = re.compile(r"order|confirmation|thank-you", re.IGNORECASE)


def is_authenticated(text: str) -> bool:
    """Home page shows a signed-in greeting or a sign-out control."""
    return any(marker in text for marker in AUTHENTICATED_MARKERS)


def is_account_page(text: str) -> bool:
    """Account page rendered for a signed-in user."""
    return any(marker in text for marker in ACCOUNT_MARKERS)


def is_out_of_stock(text: str) -> bool:
    lowered = text.lower()
    return any(marker in lowered for marker in OUT_OF_STOCK_MARKERS)


def has_saved_address(text: str) -> bool:
    return any(marker in text for marker in SAVED_ADDRESS_MARKERS)


def has_saved_payment(text: str) -> bool:
    return any(marker in text for marker in SAVED_PAYMENT_MARKERS)


def is_maintenance_page(text: str) -> bool:
    lowered = text.lower()
    return any(marker in lowered for marker in MAINTENANCE_MARKERS)


def extract_order_number(text: str) -> Optional[str]:
    """Pull the retailer's order number out of confirmation page text."""
    match = ORDER_NUMBER_PATTERN.search(text)
    return match.group(1) if match else None


def is_login_url(url: str) -> bool:
    return "/login" in url


def login_detected(url: str, text: str, title: str = "") -> bool:
    """
    Decide whether the operator has finished signing in during session setup.

    The URL is the strongest signal; body text markers are accepted as long as
    the browser is not still sitting on a login page.
    """
    body = text.lower()
    title = title.lower()

    url_logged_in = "/myaccount" in url or ("/account" in url and "/login" not in url)
    text_logged_in = (
        "sign out" in body
        or "my account" in body
        or "myaccount" in body
        or "hi," in body
        or "order history" in body
    )
    shows_login = (
        "sign in" in body
        or "log in" in body
        or "login" in title
        or "sign in" in title
    )
    on_login_page = is_login_url(url) or (shows_login and not url_logged_in)

    return (url_logged_in or text_logged_in) and not on_login_page


@dataclass(frozen=True)
class Detectors:
    """Bundle of page-state detectors used by the checkout flow."""
    is_authenticated: Callable[[str], bool] = is_authenticated
    is_out_of_stock: Callable[[str], bool] = is_out_of_stock
    has_saved_address: Callable[[str], bool] = has_saved_address
    has_saved_payment: Callable[[str], bool] = has_saved_payment
    extract_order_number: Callable[[str], Optional[str]] = extract_order_number


DEFAULT_DETECTORS = Detectors()
