"""
Tests for selector fallback chains.
"""

import asyncio

from playwright.async_api import Error as PlaywrightError

from fakes import FakeDriver, FakeElement, FakePage
from fulfillment import strategies
from fulfillment.strategies import CssCandidate, Fill, Select, SelectorChain, TextCandidate

URL = "https://www.ulta.com/p/x"


def driver_with(elements=None, buttons=None) -> FakeDriver:
    driver = FakeDriver({URL: FakePage(elements=elements, buttons=buttons)})
    driver.url = URL
    return driver


CHAIN = SelectorChain.of("thing", "#first", "#second", TextCandidate("do it"))


def test_first_matching_candidate_wins():
    driver = driver_with({"#first": FakeElement("#first"), "#second": FakeElement("#second")})

    fired = asyncio.run(strategies.perform(driver, CHAIN))

    assert fired == "#first"
    assert driver.clicks == ["#first"]


def test_disabled_candidate_is_skipped():
    driver = driver_with({
        "#first": FakeElement("#first", enabled=False),
        "#second": FakeElement("#second"),
    })

    fired = asyncio.run(strategies.perform(driver, CHAIN))

    assert fired == "#second"
    assert driver.clicks == ["#second"]


def test_text_candidate_is_last_resort():
    driver = driver_with(buttons=[
        FakeElement("disabled", enabled=False, text="Do it"),
        FakeElement("enabled", text="Do it now"),
    ])

    fired = asyncio.run(strategies.perform(driver, CHAIN))

    assert fired == "text~'do it'"
    assert driver.clicks == ["enabled"]


def test_no_match_is_not_an_exception():
    driver = driver_with()

    assert asyncio.run(strategies.perform(driver, CHAIN)) is None
    assert driver.clicks == []


def test_browser_error_moves_to_next_candidate():
    def detached(_driver):
        raise PlaywrightError("Element is not attached to the DOM")

    driver = driver_with({
        "#first": FakeElement("#first", on_click=detached),
        "#second": FakeElement("#second"),
    })

    fired = asyncio.run(strategies.perform(driver, CHAIN))

    assert fired == "#second"


def test_fill_and_select_actions():
    driver = driver_with({"#first": FakeElement("#first")})

    asyncio.run(strategies.perform(driver, CHAIN, Fill("Austin")))
    asyncio.run(strategies.perform(driver, CHAIN, Select("TX")))

    assert driver.fills == {"#first": "Austin"}
    assert driver.selects == {"#first": "TX"}


def test_locate_does_not_act():
    driver = driver_with({"#second": FakeElement("#second")})

    element = asyncio.run(strategies.locate(driver, CHAIN))

    assert element.label == "#second"
    assert driver.clicks == []


def test_chain_of_wraps_strings_as_css():
    assert CHAIN.candidates[0] == CssCandidate("#first")
    assert isinstance(CHAIN.candidates[-1], TextCandidate)


def test_checkout_chain_never_uses_guest_checkout():
    for candidate in strategies.CHECKOUT.candidates:
        if isinstance(candidate, TextCandidate):
            assert "guest" in candidate.exclude
        else:
            assert "guest" not in candidate.selector.split(":not(")[0].lower()


def test_action_chains_end_with_text_fallback():
    for chain in (strategies.ADD_TO_BAG, strategies.CHECKOUT, strategies.PLACE_ORDER):
        assert isinstance(chain.candidates[-1], TextCandidate)
        assert all(isinstance(c, CssCandidate) for c in chain.candidates[:-1])
