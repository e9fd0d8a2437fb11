"""
Pytest configuration and fixtures for Sesame tests.

This module provides shared fixtures for unit and integration tests, most
importantly a scripted in-memory browser (``FakeDriver``) that implements
the BrowserDriver interface so that every flow can be exercised without a
real browser.
"""

import inspect
import os
import re
from collections import Counter
from dataclasses import replace
from pathlib import Path
from typing import Dict, List, Optional

import pytest

# Set test environment
os.environ["ENVIRONMENT"] = "testing"

from sesame.config.settings import (
    ChallengeSettings,
    DiagnosticsSettings,
    EngineSettings,
    Settings,
    VerifierSettings,
    WindowSettings,
    get_settings,
)
from sesame.core.errors import DriverError, ElementNotFoundError, LaunchError
from sesame.core.models import Cookie, Credentials
from sesame.flows.definitions import (
    ChallengeProfile,
    DelegatedProvider,
    FlowDefinition,
    Locator,
    LocatorKind,
    Role,
    SuccessPredicate,
    css,
    input_type,
    keyword_locators,
)
from sesame.tools.browser_driver import BrowserDriver, ElementRef, ElementState, FrameInfo, WindowHandle


LOGIN_URL = "https://app.example.com/login"
DASHBOARD_URL = "https://app.example.com/dashboard"
IDP_URL = "https://accounts.idp.example.net/signin"
RECAPTCHA_URL = "https://www.google.com/recaptcha/api2/anchor?k=test"

HIDDEN = ElementState(display="none", width=120, height=32)


# ========== SCRIPTED BROWSER ==========


class FakeElement(ElementRef):
    """Scripted element; ``on_click`` runs for direct and synthetic clicks."""

    def __init__(self, text="", state=None, on_click=None, image=b"", fail_click=False, type_error=None, attributes=None):
        self._text = text
        self.attributes = dict(attributes or {})
        self.state_value = state or ElementState(width=120, height=32)
        self.on_click = on_click
        self.image = image
        self.fail_click = fail_click
        self.type_error = type_error
        self.value = ""
        self.clicks = 0
        self.dispatches = 0
        self.removed = False

    def show(self):
        self.state_value = replace(self.state_value, display="block")

    def hide(self):
        self.state_value = replace(self.state_value, display="none")

    def check(self):
        self.state_value = replace(self.state_value, checked=True)

    def remove(self):
        self.removed = True

    async def state(self) -> ElementState:
        if self.removed:
            return ElementState(attached=False)
        return self.state_value

    async def click(self, delay_ms: int = 0) -> None:
        if self.fail_click:
            raise ElementNotFoundError("Element click intercepted")
        self.clicks += 1
        await self._fire()

    async def dispatch_click(self) -> None:
        self.dispatches += 1
        await self._fire()

    async def _fire(self):
        if self.on_click is not None:
            result = self.on_click()
            if inspect.isawaitable(result):
                await result

    async def clear(self) -> None:
        self.value = ""

    async def type_text(self, text: str, delay_ms: int = 0) -> None:
        if self.type_error is not None:
            raise self.type_error
        self.value += text

    async def text(self) -> str:
        return self._text

    async def attribute(self, name: str):
        return self.attributes.get(name)

    async def scroll_into_view(self) -> None:
        pass

    async def screenshot(self) -> bytes:
        return self.image


class FakeFrame:
    def __init__(self, index: int, url: str = "", name: str = ""):
        self.index = index
        self.url = url
        self.name = name
        self.elements: Dict[Locator, List[FakeElement]] = {}
        self.detached = False

    def find(self, locator: Locator) -> List[FakeElement]:
        if self.detached:
            raise DriverError("Frame was detached")
        if locator.kind is LocatorKind.TEXT:
            pattern = re.compile(locator.value, re.IGNORECASE)
            found: List[FakeElement] = []
            for elements in self.elements.values():
                for element in elements:
                    if element not in found and element._text and pattern.search(element._text):
                        found.append(element)
            return [e for e in found if not e.removed]
        return [e for e in self.elements.get(locator, []) if not e.removed]


class FakePage:
    """Content of one window."""

    def __init__(self, url: str = "about:blank"):
        self.reset(url)

    def reset(self, url: str) -> None:
        self.url = url
        self.title = ""
        self.body_text = ""
        self.frames = [FakeFrame(0, url)]
        self.keys: List[str] = []
        self.on_key = {}
        self.probe = {
            "webdriver": False,
            "userAgent": FakeDriver.user_agent_string,
            "hasChrome": True,
            "plugins": 3,
            "languages": 2,
        }

    def add(self, locator: Locator, frame: int = 0, **kwargs) -> FakeElement:
        element = FakeElement(**kwargs)
        self.frames[frame].elements.setdefault(locator, []).append(element)
        return element

    def add_frame(self, url: str, name: str = "") -> int:
        self.frames.append(FakeFrame(len(self.frames), url, name))
        return len(self.frames) - 1


class FakeDriver(BrowserDriver):
    """In-memory BrowserDriver with scripted pages keyed by URL."""

    user_agent_string = "Mozilla/5.0 (X11; Linux x86_64) FakeBrowser/1.0"

    def __init__(self, routes=None, fail_launch: bool = False):
        self.routes = dict(routes or {})
        self.fail_launch = fail_launch
        self.windows: List[WindowHandle] = []
        self.callbacks = []
        self.cookie_jar: List[Cookie] = []
        self.navigations = []
        self.navigation_errors: List[Optional[Exception]] = []
        self.destroyed = Counter()
        self.launched = False
        self.shut_down = False

    # Scripting helpers

    def page(self, window: WindowHandle) -> FakePage:
        return window.native

    def route(self, url: str, builder) -> None:
        self.routes[url] = builder

    def goto(self, window: WindowHandle, url: str) -> None:
        page = self.page(window)
        page.reset(url)
        builder = self.routes.get(url)
        if builder is not None:
            builder(page)

    def spawn(self, url: str = "about:blank") -> WindowHandle:
        """Simulate the site opening a popup."""
        window = WindowHandle(native=FakePage())
        self.windows.append(window)
        self.goto(window, url)
        for callback in list(self.callbacks):
            callback(window)
        return window

    def destroy(self, window: WindowHandle) -> None:
        if window.closed:
            return
        window.closed = True
        self.destroyed[window.id] += 1

    def _live(self, window: WindowHandle) -> FakePage:
        if window.closed:
            raise DriverError(f"Window {window.id} is closed")
        return window.native

    # BrowserDriver

    async def launch(self) -> None:
        if self.fail_launch:
            raise LaunchError("Executable doesn't exist")
        self.launched = True

    async def shutdown(self) -> None:
        await self.close_all()
        self.shut_down = True

    async def open_window(self) -> WindowHandle:
        window = WindowHandle(native=FakePage())
        self.windows.append(window)
        return window

    async def close_window(self, window: WindowHandle) -> None:
        self.destroy(window)

    def open_windows(self) -> List[WindowHandle]:
        return [w for w in self.windows if not w.closed]

    def on_window_created(self, callback) -> None:
        self.callbacks.append(callback)

    async def navigate(self, window, url, wait_until, timeout_ms) -> None:
        self.navigations.append((url, wait_until))
        if self.navigation_errors:
            error = self.navigation_errors.pop(0)
            if error is not None:
                raise error
        self._live(window)
        self.goto(window, url)

    async def frames(self, window) -> List[FrameInfo]:
        page = self._live(window)
        return [FrameInfo(f.index, f.url, f.name, native=f) for f in page.frames if not f.detached]

    async def query(self, window, locator, frame=None):
        page = self._live(window)
        target = frame.native if frame is not None and frame.native is not None else page.frames[0]
        return target.find(locator)

    async def current_url(self, window) -> str:
        return self._live(window).url

    async def title(self, window) -> str:
        return self._live(window).title

    async def page_text(self, window) -> str:
        return self._live(window).body_text

    async def press_key(self, window, key) -> None:
        page = self._live(window)
        page.keys.append(key)
        handler = page.on_key.get(key)
        if handler is not None:
            result = handler()
            if inspect.isawaitable(result):
                await result

    async def cookies(self) -> List[Cookie]:
        return list(self.cookie_jar)

    async def user_agent(self, window) -> str:
        self._live(window)
        return self.user_agent_string

    async def evaluate(self, window, script):
        return dict(self._live(window).probe)

    async def screenshot(self, window, path) -> str:
        self._live(window)
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        Path(path).write_bytes(b"\x89PNG\r\n")
        return path


class ExampleSite:
    """
    Scripted sign-in site: a login page on app.example.com and an identity
    provider on accounts.idp.example.net.
    """

    def __init__(self, driver: FakeDriver, credentials: Credentials):
        self.driver = driver
        self.credentials = credentials
        self.hidden_secret = False
        self.checkbox: Optional[str] = None
        self.outcome = "success"
        self.delegated = False
        self.popup_closes = True
        self.identifier_error: Optional[Exception] = None
        self.extra_popup: Optional[str] = None
        self.popup: Optional[WindowHandle] = None
        self.page: Optional[FakePage] = None
        driver.route(LOGIN_URL, self.login_page)
        driver.route(IDP_URL, self.idp_page)

    def login_page(self, page: FakePage) -> None:
        self.page = page
        page.title = "Sign in"
        if self.checkbox:
            frame = page.add_frame(RECAPTCHA_URL, name="a-recaptcha")
            self.captcha = page.add(css("#recaptcha-anchor"), frame=frame, state=ElementState(width=24, height=24, checked=False))
            if self.checkbox == "clears":
                self.captcha.on_click = self.captcha.check

        self.identifier = page.add(css("#email"), type_error=self.identifier_error)
        self.secret = page.add(css("#password"), state=HIDDEN if self.hidden_secret else None)
        if self.hidden_secret:
            self.next_button = page.add(css("#next"), on_click=self.secret.show)
        self.submit_button = page.add(css("#submit"), on_click=self.submit)
        if self.delegated:
            self.idp_button = page.add(css("#idp-button"), text="Continue with IdP", on_click=self.open_popup)

    def submit(self) -> None:
        if self.extra_popup:
            self.driver.spawn(self.extra_popup)
        if self.outcome == "nothing":
            return
        if self.outcome == "reject" or self.secret.value != self.credentials.secret:
            self.page.add(css(".error"), text="Incorrect password. Please try again.")
            return
        self.sign_in()

    def sign_in(self) -> None:
        self.page.reset(DASHBOARD_URL)
        self.page.title = "Dashboard"
        self.page.add(css("#avatar"))
        self.driver.cookie_jar.append(Cookie(name="session_id", value="abc123", domain="app.example.com"))

    def open_popup(self) -> None:
        self.popup = self.driver.spawn(IDP_URL)

    def idp_page(self, page: FakePage) -> None:
        self.idp = page
        self.idp_identifier = page.add(css("#identifierId"))
        self.idp_secret = page.add(css("#Passwd"), state=HIDDEN)
        page.add(css("#identifierNext"), on_click=self.idp_secret.show)
        page.add(css("#passwordNext"), on_click=self.idp_submit)

    def idp_submit(self) -> None:
        if self.idp_secret.value != self.credentials.secret:
            self.idp.add(css(".idp-error"), text="Wrong password. Try again.")
            return
        self.sign_in()
        if self.popup_closes:
            self.driver.destroy(self.popup)
        else:
            self.idp.reset("https://app.example.com/oauth/callback")


# ========== FIXTURES ==========


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """Settings are cached; tests that change the environment need a fresh read."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def fast_settings():
    """Settings with every bounded wait shrunk for tests."""
    return Settings(
        environment="testing",
        engine=EngineSettings(
            navigation_timeout_ms=1000,
            element_retries=2,
            retry_backoff_seconds=0.01,
            typing_delay_ms=0,
            click_delay_ms=0,
            reveal_timeout_seconds=0.4,
            reveal_poll_seconds=0.02,
            reveal_retry_every=5,
            delegated_window_timeout_seconds=0.3,
            delegated_completion_timeout_seconds=0.4,
            cooldown_seconds=0,
        ),
        challenge=ChallengeSettings(max_attempts=2, clear_timeout_seconds=0.1, poll_seconds=0.02, settle_seconds=0.01),
        windows=WindowSettings(blank_grace_seconds=0.1, poll_seconds=0.02),
        verifier=VerifierSettings(timeout_seconds=0.3, poll_interval_seconds=0.02),
        diagnostics=DiagnosticsSettings(screenshot_dir=None),
    )


@pytest.fixture
def challenge_profile():
    return ChallengeProfile(
        captcha_frame_markers=("recaptcha", "hcaptcha"),
        frame_checkboxes=(css("#recaptcha-anchor"),),
        page_checkboxes=(css("#human-check"),),
        checkbox_label_patterns=(r"not a robot",),
        image_grid_patterns=(r"select all images with (?P<keyword>[\w ]+?)(?:\.|$)",),
        image_tiles=(css(".tile"),),
        image_verify=(css("#verify"),),
        security_key_url_markers=("challenge/pk",),
        security_key_text_patterns=(r"use your passkey",),
        security_key_cancel=(css("#cancel"),),
        banner_text_patterns=(r"technical difficulties",),
        banner_close=(css(".banner-close"),),
    )


@pytest.fixture
def idp_flow(challenge_profile):
    return FlowDefinition(
        name="idp",
        login_url=IDP_URL,
        strategies={
            Role.IDENTIFIER: (css("#identifierId"),),
            Role.CONTINUE: (css("#identifierNext"),),
            Role.SECRET: (css("#Passwd"),),
            Role.SUBMIT: (css("#passwordNext"),),
            Role.REJECTION_BANNER: (css(".idp-error"),),
        },
        success=SuccessPredicate(login_url_patterns=(r"/signin",)),
        challenges=challenge_profile,
    )


@pytest.fixture
def login_flow(challenge_profile):
    """Flow for the example site without a delegated provider."""
    return FlowDefinition(
        name="example",
        login_url=LOGIN_URL,
        strategies={
            Role.IDENTIFIER: (css("#email"), input_type("email")),
            Role.SECRET: (css("#password"),),
            Role.CONTINUE: (css("#next"),) + keyword_locators(("continue",)),
            Role.SUBMIT: (css("#submit"),),
            Role.REJECTION_BANNER: (css(".error"),),
            Role.SUCCESS_MARKER: (css("#avatar"),),
        },
        success=SuccessPredicate(
            login_url_patterns=(r"/login",),
            authenticated_url_patterns=(r"/dashboard",),
            markers=(css("#avatar"),),
        ),
        challenges=challenge_profile,
    )


@pytest.fixture
def delegated_flow(login_flow, idp_flow):
    """Example site signing in through the identity provider."""
    provider = DelegatedProvider(
        name="idp",
        domain_patterns=(r"^https://accounts\.idp\.example\.net/",),
        flow=idp_flow,
        trigger=(css("#idp-button"),),
        trigger_on_surface=True,
    )
    return replace(login_flow, name="example-idp", delegated=provider)


@pytest.fixture
def credentials():
    return Credentials(identifier="user@example.com", secret="s3cret-pass")


@pytest.fixture
def driver():
    return FakeDriver()


@pytest.fixture
def site(driver, credentials):
    return ExampleSite(driver, credentials)


@pytest.fixture
def solid_png():
    """Factory for solid-colour PNG bytes."""
    import io

    from PIL import Image

    def make(rgb, size=(20, 20)) -> bytes:
        buffer = io.BytesIO()
        Image.new("RGB", size, rgb).save(buffer, format="PNG")
        return buffer.getvalue()

    return make


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow running tests")
    config.addinivalue_line("markers", "requires_browser: Tests that need a real browser")
