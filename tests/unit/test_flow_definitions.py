"""
Unit tests for flow definitions and the platform registry.
"""

import re

import pytest

from sesame.flows.definitions import (
    FlowDefinition,
    LocatorKind,
    Role,
    SuccessPredicate,
    aria,
    css,
    keyword_locators,
    merge_strategies,
    text,
)
from sesame.flows.locators import DEFAULT_CHALLENGES, DEFAULT_STRATEGIES
from sesame.flows.platforms import FLOWS, available_platforms, dismiss_cookie_banner, get_flow


@pytest.mark.unit
class TestLocators:
    def test_describe(self):
        assert css("#email").describe() == "css=#email"
        assert aria("button", r"^next$").describe() == "role=button[name~/^next$/]"
        assert text("continue", tag="button").describe() == "text~/continue/ in button"

    def test_keyword_locators_match_any_keyword(self):
        (locator,) = keyword_locators(("sign in", "log in"))

        assert locator.kind is LocatorKind.TEXT
        assert re.search(locator.value, "Log In", re.IGNORECASE)
        assert not re.search(locator.value, "Register", re.IGNORECASE)

    def test_keyword_locators_empty(self):
        assert keyword_locators(()) == ()

    def test_merge_puts_specific_strategies_first(self):
        merged = merge_strategies(
            {Role.IDENTIFIER: (css("#login_username"), css('input[type="email"]'))},
            {Role.IDENTIFIER: (css('input[type="email"]'), css('input[name="email"]')), Role.SECRET: (css("#pw"),)},
        )

        assert merged[Role.IDENTIFIER] == (
            css("#login_username"),
            css('input[type="email"]'),
            css('input[name="email"]'),
        )
        assert merged[Role.SECRET] == (css("#pw"),)


@pytest.mark.unit
class TestFlowDefinition:
    @pytest.fixture
    def flow(self):
        return FlowDefinition(
            name="upwork",
            login_url="https://www.upwork.com/ab/account-security/login",
            strategies={},
            success=SuccessPredicate(login_url_patterns=(r"/login",), authenticated_url_patterns=(r"/nx/",)),
        )

    @pytest.mark.parametrize(
        "url, expected",
        [
            ("https://www.upwork.com/nx/find-work/", True),
            ("https://upwork.com/", True),
            ("https://support.upwork.com/hc", True),
            ("https://evilupwork.com/login", False),
            ("https://accounts.google.com/signin", False),
            ("about:blank", False),
        ],
    )
    def test_same_site(self, flow, url, expected):
        assert flow.is_same_site(url) is expected

    def test_success_predicate(self, flow):
        assert flow.success.is_login_surface("https://www.upwork.com/ab/account-security/login")
        assert flow.success.matches_authenticated_area("https://www.upwork.com/nx/find-work/")
        assert not flow.success.matches_authenticated_area("")

    def test_strategies_for_missing_role(self, flow):
        assert flow.strategies_for(Role.CONTINUE) == ()


@pytest.mark.unit
class TestPlatformRegistry:
    def test_available_platforms_sorted(self):
        names = available_platforms()

        assert names == sorted(names)
        assert {"upwork", "upwork-google", "linkedin", "indeed"} <= set(names)

    def test_get_flow_is_case_insensitive(self):
        assert get_flow("LinkedIn").name == "linkedin"

    def test_unknown_platform(self):
        with pytest.raises(KeyError) as exc_info:
            get_flow("myspace")
        assert "Available" in str(exc_info.value)

    @pytest.mark.parametrize("name", sorted(FLOWS))
    def test_every_flow_is_complete(self, name):
        flow = FLOWS[name]

        for role in (Role.IDENTIFIER, Role.SECRET, Role.SUBMIT, Role.REJECTION_BANNER):
            assert flow.strategies_for(role), f"{name} has no {role.value} strategy"
        assert flow.success.is_login_surface(flow.login_url)
        assert flow.is_same_site(flow.login_url)

    def test_google_variant_triggers_on_surface(self):
        flow = get_flow("upwork-google")

        assert flow.delegated.trigger_on_surface
        assert flow.delegated.matches("https://accounts.google.com/v3/signin/identifier")
        assert not get_flow("upwork").delegated.trigger_on_surface

    def test_google_flow_is_its_own_login_surface(self):
        google = get_flow("upwork").delegated.flow

        assert google.success.is_login_surface("https://accounts.google.com/v3/signin/challenge/pwd")

    def test_default_tables(self):
        assert DEFAULT_STRATEGIES[Role.SECRET]
        assert "recaptcha" in DEFAULT_CHALLENGES.captcha_frame_markers


@pytest.mark.unit
class TestCookieBannerHook:
    async def test_accepts_visible_banner(self, driver, login_flow):
        window = await driver.open_window()
        accept = driver.page(window).add(css("#onetrust-accept-btn-handler"))

        await dismiss_cookie_banner(driver, window, login_flow)

        assert accept.clicks == 1

    async def test_no_banner_is_a_no_op(self, driver, login_flow):
        window = await driver.open_window()

        await dismiss_cookie_banner(driver, window, login_flow)
