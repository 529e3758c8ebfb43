from decimal import Decimal

import pytest
from pydantic import ValidationError

from fulfillment.models import FailureKind, OrderItem, OrderRequest, OrderResult, ShippingAddress

PAYLOAD = {
    "userId": "u-42",
    "items": [
        {
            "productId": "p1",
            "name": "Hydrating Cleanser",
            "brand": "CeraVe",
            "url": "https://www.ulta.com/p/hydrating-cleanser",
            "quantity": 2,
            "price": 15.99,
        }
    ],
    "shippingAddress": {
        "fullName": "Jane Doe",
        "line1": "1 Main St",
        "city": "Austin",
        "state": "TX",
        "zip": "78701",
    },
}


def test_request_parses_camel_case_payload():
    request = OrderRequest.model_validate(PAYLOAD)

    assert request.user_id == "u-42"
    assert request.items[0].product_id == "p1"
    assert request.items[0].line_total == Decimal("15.99") * 2
    assert request.shipping_address.country == "US"
    assert request.shipping_address.line2 is None


def test_quantity_must_be_positive():
    bad = {**PAYLOAD["items"][0], "quantity": 0}
    with pytest.raises(ValidationError):
        OrderItem.model_validate(bad)


def test_request_is_immutable():
    request = OrderRequest.model_validate(PAYLOAD)
    with pytest.raises(ValidationError):
        request.user_id = "someone-else"


def test_name_split():
    address = ShippingAddress(fullName="Mary Ann Smith", line1="x", city="y", state="CA", zip="1")
    assert address.first_name == "Mary"
    assert address.last_name == "Ann Smith"

    single = ShippingAddress(fullName="Cher", line1="x", city="y", state="CA", zip="1")
    assert single.first_name == "Cher"
    assert single.last_name == ""


def test_result_serializes_camel_case_and_cents():
    result = OrderResult(
        success=True,
        order_id="GU-1",
        total_cost=Decimal("46.0000"),
        shipping_cost=Decimal("0"),
        markup=Decimal("6.0045"),
        logs=["done"],
    )
    data = result.model_dump(mode="json", by_alias=True)

    assert data["orderId"] == "GU-1"
    assert data["totalCost"] == 46.0
    assert data["markup"] == 6.0
    assert data["shippingCost"] == 0.0
    assert data["error"] is None


def test_failure_constructor():
    result = OrderResult.failure(FailureKind.NO_SESSION, "No session", ["a", "b"])

    assert result.success is False
    assert result.error == "No session"
    assert result.error_kind == FailureKind.NO_SESSION
    assert result.logs == ["a", "b"]
    assert result.total_cost == 0
    assert result.model_dump(mode="json", by_alias=True)["errorKind"] == "no_session"
