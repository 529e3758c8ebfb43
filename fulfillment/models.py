"""
Request and result models exchanged with the app backend.

Field names on the wire are camelCase to match the mobile/backend payloads;
Python code uses the snake_case attribute names.
"""

from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer

CENTS = Decimal("0.01")


def to_cents(value: Decimal) -> float:
    """Round a money amount to cents for JSON output."""
    return float(Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP))


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)


class OrderItem(_WireModel):
    """A single catalog product the user wants bought."""
    product_id: str = Field(alias="productId")
    name: str
    brand: str = ""
    url: str = ""  # deep link into the retailer's product page
    quantity: int = Field(default=1, ge=1)
    price: Decimal = Field(ge=0)

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity


class ShippingAddress(_WireModel):
    full_name: str = Field(alias="fullName")
    line1: str
    line2: Optional[str] = None
    city: str
    state: str
    zip: str
    country: str = "US"

    @property
    def first_name(self) -> str:
        return self.full_name.strip().split(" ", 1)[0]

    @property
    def last_name(self) -> str:
        parts = self.full_name.strip().split(" ", 1)
        return parts[1].strip() if len(parts) > 1 else ""


class OrderRequest(_WireModel):
    user_id: str = Field(alias="userId")
    items: List[OrderItem]
    shipping_address: ShippingAddress = Field(alias="shippingAddress")


class FailureKind(str, Enum):
    """Why an order attempt did not succeed, for caller-side routing."""
    NO_ELIGIBLE_ITEMS = "no_eligible_items"
    NO_SESSION = "no_session"
    SESSION_EXPIRED = "session_expired"
    NOTHING_ADDED = "nothing_added"
    MANUAL_REVIEW = "manual_review"
    EXCEPTION = "exception"


class OrderResult(_WireModel):
    """Outcome of exactly one fulfillment attempt."""
    success: bool
    order_id: Optional[str] = Field(default=None, alias="orderId")
    total_cost: Decimal = Field(default=Decimal("0"), alias="totalCost")
    shipping_cost: Decimal = Field(default=Decimal("0"), alias="shippingCost")
    markup: Decimal = Decimal("0")
    logs: List[str] = Field(default_factory=list)
    error: Optional[str] = None
    error_kind: Optional[FailureKind] = Field(default=None, alias="errorKind")
    screenshot_path: Optional[str] = Field(default=None, alias="screenshotPath")

    @field_serializer("total_cost", "shipping_cost", "markup")
    def _serialize_money(self, value: Decimal) -> float:
        return to_cents(value)

    @classmethod
    def failure(
        cls,
        kind: FailureKind,
        error: str,
        logs: List[str],
        total_cost: Decimal = Decimal("0"),
        screenshot_path: Optional[str] = None,
    ) -> "OrderResult":
        return cls(
            success=False,
            error=error,
            error_kind=kind,
            logs=list(logs),
            total_cost=total_cost,
            screenshot_path=screenshot_path,
        )


class SessionSetupResult(_WireModel):
    success: bool
    message: str


class SessionStatus(_WireModel):
    valid: bool
    message: str
