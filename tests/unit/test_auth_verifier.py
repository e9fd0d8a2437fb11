"""
Unit tests for the Authentication Verifier.
"""

import pytest

from sesame.core.models import Cookie
from sesame.flows.definitions import css
from sesame.services.auth_verifier import AuthenticationVerifier, VerdictKind
from sesame.tools.browser_driver import ElementState


SESSION_COOKIE = Cookie(name="session_id", value="abc123", domain="app.example.com")


@pytest.mark.unit
class TestAuthenticationVerifier:
    """Test cases for AuthenticationVerifier."""

    @pytest.fixture
    def verifier(self, driver, fast_settings):
        return AuthenticationVerifier(driver, fast_settings.verifier)

    @pytest.fixture
    async def page_window(self, driver):
        window = await driver.open_window()
        page = driver.page(window)
        page.url = "https://app.example.com/login"
        return window, page

    @staticmethod
    def provider_for(window):
        async def provider():
            return window
        return provider

    async def test_success_by_authenticated_area(self, verifier, driver, login_flow, page_window):
        window, page = page_window
        page.url = "https://app.example.com/dashboard"
        driver.cookie_jar.append(SESSION_COOKIE)

        verdict = await verifier.await_outcome(self.provider_for(window), login_flow)

        assert verdict.succeeded
        assert verdict.cookies == [SESSION_COOKIE]
        assert verdict.user_agent == driver.user_agent_string
        assert verdict.polls == 1

    async def test_success_by_marker(self, verifier, driver, login_flow, page_window):
        window, page = page_window
        page.url = "https://app.example.com/welcome"
        page.add(css("#avatar"))
        driver.cookie_jar.append(SESSION_COOKIE)

        verdict = await verifier.await_outcome(self.provider_for(window), login_flow)

        assert verdict.kind is VerdictKind.SUCCESS

    async def test_marker_on_login_surface_is_not_success(self, verifier, driver, login_flow, page_window):
        window, page = page_window
        page.add(css("#avatar"))
        driver.cookie_jar.append(SESSION_COOKIE)

        verdict = await verifier.await_outcome(self.provider_for(window), login_flow, timeout=0.1)

        assert verdict.kind is VerdictKind.AUTH_TIMEOUT

    async def test_success_requires_cookies(self, verifier, login_flow, page_window):
        window, page = page_window
        page.url = "https://app.example.com/dashboard"

        verdict = await verifier.await_outcome(self.provider_for(window), login_flow, timeout=0.1)

        assert verdict.kind is VerdictKind.AUTH_TIMEOUT
        assert verdict.cookies == []

    async def test_rejection_banner(self, verifier, login_flow, page_window):
        window, page = page_window
        page.add(css(".error"), text="  Incorrect password.\n   Please try again. ")

        verdict = await verifier.await_outcome(self.provider_for(window), login_flow)

        assert verdict.kind is VerdictKind.AUTH_REJECTED
        assert verdict.banner_text == "Incorrect password. Please try again."
        assert verdict.detail == "Incorrect password. Please try again. (URL final: https://app.example.com/login)"

    async def test_hidden_or_oversized_banners_are_ignored(self, verifier, login_flow, page_window):
        window, page = page_window
        page.add(css(".error"), text="Incorrect password.", state=ElementState(display="none", width=100, height=20))
        page.add(css(".error"), text="x" * 301)

        verdict = await verifier.await_outcome(self.provider_for(window), login_flow, timeout=0.1)

        assert verdict.kind is VerdictKind.AUTH_TIMEOUT

    async def test_timeout_detail(self, verifier, login_flow, page_window):
        window, _ = page_window

        verdict = await verifier.await_outcome(self.provider_for(window), login_flow, timeout=0.1)

        assert verdict.kind is VerdictKind.AUTH_TIMEOUT
        assert verdict.detail == "No success marker or rejection after 0.1s (URL final: https://app.example.com/login)"
        assert verdict.polls > 1

    async def test_window_provider_is_polled(self, verifier, driver, login_flow, page_window):
        window, page = page_window
        page.url = "https://app.example.com/dashboard"
        driver.cookie_jar.append(SESSION_COOKIE)
        calls = []

        async def provider():
            calls.append(1)
            return window if len(calls) > 2 else None

        verdict = await verifier.await_outcome(provider, login_flow)

        assert verdict.succeeded
        assert verdict.polls == 3

    async def test_public_rejection_banner(self, verifier, login_flow, page_window):
        window, page = page_window

        assert await verifier.rejection_banner(window, login_flow) is None
        page.add(css(".error"), text="Account locked")
        assert await verifier.rejection_banner(window, login_flow) == "Account locked"
