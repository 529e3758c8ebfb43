"""
Cost breakdown and item eligibility.

Both are pure functions of their inputs and run before/after the browser work.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import List, Sequence, Tuple
from urllib.parse import urlparse

from fulfillment.config import FulfillmentConfig
from fulfillment.models import OrderItem


@dataclass(frozen=True)
class CostBreakdown:
    subtotal: Decimal
    shipping_cost: Decimal
    markup: Decimal
    total_cost: Decimal


def compute_costs(subtotal: Decimal, config: FulfillmentConfig) -> CostBreakdown:
    """Apply our shipping policy and service fee to an accumulated subtotal."""
    subtotal = Decimal(subtotal)
    if subtotal >= config.free_shipping_threshold:
        shipping_cost = Decimal("0")
    else:
        shipping_cost = config.flat_shipping_fee
    markup = subtotal * config.markup_rate
    return CostBreakdown(
        subtotal=subtotal,
        shipping_cost=shipping_cost,
        markup=markup,
        total_cost=subtotal + shipping_cost + markup,
    )


def is_eligible_url(url: str, retailer_domain: str) -> bool:
    """True if the URL points at the retailer's own domain or a subdomain of it."""
    if not url:
        return False
    try:
        host = (urlparse(url).hostname or "").lower()
    except ValueError:
        # e.g. an unbalanced "[" is parsed as a broken IPv6 literal
        return False
    domain = retailer_domain.lower()
    return host == domain or host.endswith("." + domain)


def partition_items(
    items: Sequence[OrderItem],
    retailer_domain: str
) -> Tuple[List[OrderItem], List[OrderItem]]:
    """Split items into (eligible, ineligible), preserving order."""
    eligible: List[OrderItem] = []
    ineligible: List[OrderItem] = []
    for item in items:
        if is_eligible_url(item.url, retailer_domain):
            eligible.append(item)
        else:
            ineligible.append(item)
    return eligible, ineligible
