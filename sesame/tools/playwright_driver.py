"""
Playwright implementation of the Browser Driver.

This tool provides the browser capabilities the engine consumes using
Playwright's async API: one browser and one context per attempt, every page
wrapped in a WindowHandle, popups reported as new-window events.
"""

import asyncio
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from playwright.async_api import Browser, BrowserContext, Error as PlaywrightError, Page, async_playwright

from sesame.config.settings import get_settings
from sesame.core.errors import DriverError, ElementNotFoundError, LaunchError, NavigationError
from sesame.core.models import Cookie
from sesame.flows.definitions import Locator, LocatorKind
from sesame.tools.browser_driver import (
    BrowserDriver,
    ElementRef,
    ElementState,
    FrameInfo,
    WindowCallback,
    WindowHandle,
)
from sesame.utils.logging import LoggingMixin


MAX_MATCHES = 25

STATE_SCRIPT = """
(el) => {
    const style = window.getComputedStyle(el);
    const rect = el.getBoundingClientRect();
    const aria = el.getAttribute('aria-checked');
    const isToggle = el instanceof HTMLInputElement && (el.type === 'checkbox' || el.type === 'radio');
    return {
        attached: el.isConnected,
        display: style.display,
        visibility: style.visibility,
        opacity: parseFloat(style.opacity || '1'),
        width: rect.width,
        height: rect.height,
        disabled: !!el.disabled || el.getAttribute('aria-disabled') === 'true',
        readonly: !!el.readOnly,
        checked: isToggle ? el.checked : (aria === null ? null : aria === 'true'),
    };
}
"""

TEXT_SCRIPT = """
(el) => (el.innerText || el.textContent || el.value || el.getAttribute('aria-label') || '').trim()
"""

SYNTHETIC_CLICK_SCRIPT = """
(el) => {
    const opts = { bubbles: true, cancelable: true, view: window };
    el.dispatchEvent(new MouseEvent('mousedown', { ...opts, buttons: 1 }));
    el.dispatchEvent(new MouseEvent('mouseup', { ...opts, buttons: 0 }));
    el.dispatchEvent(new MouseEvent('click', { ...opts, buttons: 0 }));
    if (typeof el.click === 'function') { el.click(); }
}
"""


class PlaywrightElement(ElementRef):
    """ElementRef backed by a Playwright locator pinned to one match."""

    def __init__(self, locator, timeout_ms: int):
        self._locator = locator
        self._timeout = timeout_ms

    async def state(self) -> ElementState:
        try:
            data = await self._locator.evaluate(STATE_SCRIPT, timeout=self._timeout)
        except PlaywrightError:
            return ElementState(attached=False)
        return ElementState(**data)

    async def click(self, delay_ms: int = 0) -> None:
        try:
            await self._locator.click(delay=delay_ms, timeout=self._timeout)
        except PlaywrightError as e:
            raise ElementNotFoundError(f"Direct click failed: {e}")

    async def dispatch_click(self) -> None:
        try:
            await self._locator.evaluate(SYNTHETIC_CLICK_SCRIPT, timeout=self._timeout)
        except PlaywrightError as e:
            raise ElementNotFoundError(f"Synthetic click failed: {e}")

    async def clear(self) -> None:
        try:
            await self._locator.fill("", timeout=self._timeout)
        except PlaywrightError as e:
            raise ElementNotFoundError(f"Failed to clear element: {e}")

    async def type_text(self, text: str, delay_ms: int = 0) -> None:
        try:
            await self._locator.press_sequentially(text, delay=delay_ms, timeout=self._timeout)
        except PlaywrightError as e:
            raise ElementNotFoundError(f"Failed to type into element: {e}")

    async def text(self) -> str:
        try:
            return await self._locator.evaluate(TEXT_SCRIPT, timeout=self._timeout) or ""
        except PlaywrightError:
            return ""

    async def attribute(self, name: str) -> Optional[str]:
        try:
            return await self._locator.get_attribute(name, timeout=self._timeout)
        except PlaywrightError:
            return None

    async def scroll_into_view(self) -> None:
        try:
            await self._locator.scroll_into_view_if_needed(timeout=self._timeout)
        except PlaywrightError as e:
            raise ElementNotFoundError(f"Failed to scroll element into view: {e}")

    async def screenshot(self) -> bytes:
        try:
            return await self._locator.screenshot(timeout=self._timeout)
        except PlaywrightError as e:
            raise ElementNotFoundError(f"Failed to capture element: {e}")


class PlaywrightDriver(BrowserDriver, LoggingMixin):
    """
    Browser driver using Playwright (Chromium).

    One instance serves exactly one authentication attempt. Every page,
    including popups opened by the site, is tracked in ``_windows`` until
    it is closed.
    """

    def __init__(self, headless: Optional[bool] = None):
        super().__init__()
        self.setup_logging("playwright_driver")

        self.settings = get_settings()
        browser_settings = self.settings.browser

        self._playwright = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._windows: List[WindowHandle] = []
        self._by_page: Dict[int, WindowHandle] = {}
        self._callbacks: List[WindowCallback] = []

        self.headless = browser_settings.headless if headless is None else headless
        self.timeout = browser_settings.timeout_ms
        self.viewport = {
            "width": browser_settings.viewport_width,
            "height": browser_settings.viewport_height,
        }
        self.user_agent_override = browser_settings.user_agent
        self.launch_args = list(browser_settings.launch_args)
        self.slow_mo = browser_settings.slow_mo_ms

    async def launch(self) -> None:
        """Start Playwright, the browser and a fresh context."""
        try:
            self.logger.info("Starting browser session", headless=self.headless)
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self.headless,
                args=self.launch_args,
                slow_mo=self.slow_mo,
            )
            self._context = await self._browser.new_context(
                viewport=self.viewport,
                user_agent=self.user_agent_override,
            )
            self._context.set_default_timeout(self.timeout)
        except Exception as e:
            self.log_error("launch", e)
            await self.shutdown()
            raise LaunchError(f"Failed to start browser: {e}")

    async def shutdown(self) -> None:
        """Close the context, browser and Playwright. Never raises."""
        await self.close_all()
        for name, closer in (
            ("context", lambda: self._context.close() if self._context else None),
            ("browser", lambda: self._browser.close() if self._browser else None),
            ("playwright", lambda: self._playwright.stop() if self._playwright else None),
        ):
            try:
                pending = closer()
                if pending is not None:
                    await pending
            except Exception as e:
                self.logger.warning(f"Failed to close {name}", error=str(e))
        self._context = None
        self._browser = None
        self._playwright = None
        self.logger.info("Browser session closed")

    def _ensure_context(self) -> BrowserContext:
        if not self._context:
            raise DriverError("Browser session not active. Call launch() first.")
        return self._context

    def _page(self, window: WindowHandle) -> Page:
        if window.closed or window.native is None:
            raise DriverError(f"Window {window.id} is closed")
        return window.native

    def _wrap(self, page: Page) -> WindowHandle:
        existing = self._by_page.get(id(page))
        if existing is not None:
            return existing

        window = WindowHandle(native=page)
        self._windows.append(window)
        self._by_page[id(page)] = window

        def _on_close(_page=None, _window=window):
            _window.closed = True

        page.on("close", _on_close)
        page.on("popup", self._on_popup)
        return window

    def _on_popup(self, page: Page) -> None:
        window = self._wrap(page)
        self.logger.info("New window detected", window_id=window.id, url=page.url)
        for callback in list(self._callbacks):
            try:
                callback(window)
            except Exception as e:
                self.log_error("on_window_created", e, window_id=window.id)

    # ========== WINDOW METHODS ==========

    async def open_window(self) -> WindowHandle:
        context = self._ensure_context()
        page = await context.new_page()
        return self._wrap(page)

    async def close_window(self, window: WindowHandle) -> None:
        if window.closed:
            return
        window.closed = True
        page = window.native
        try:
            if page is not None and not page.is_closed():
                await page.close()
        except PlaywrightError as e:
            self.logger.debug("Window already gone", window_id=window.id, error=str(e))

    def open_windows(self) -> List[WindowHandle]:
        return [w for w in self._windows if not w.closed]

    def on_window_created(self, callback: WindowCallback) -> None:
        self._callbacks.append(callback)

    def is_closed(self, window: Optional[WindowHandle]) -> bool:
        if window is None or window.closed:
            return True
        page = window.native
        if page is not None and page.is_closed():
            window.closed = True
        return window.closed

    # ========== NAVIGATION METHODS ==========

    async def navigate(self, window: WindowHandle, url: str, wait_until: str, timeout_ms: int) -> None:
        page = self._page(window)
        self.log_method_call("navigate", url=url, wait_until=wait_until)
        try:
            start_time = asyncio.get_running_loop().time()
            response = await page.goto(url, wait_until=wait_until, timeout=timeout_ms)
            duration_ms = (asyncio.get_running_loop().time() - start_time) * 1000
            self.log_method_result(
                "navigate",
                {"final_url": page.url, "status_code": response.status if response else None},
                round(duration_ms, 2),
            )
        except PlaywrightError as e:
            raise NavigationError(f"Failed to navigate to {url}: {e}")

    async def current_url(self, window: WindowHandle) -> str:
        return self._page(window).url

    async def title(self, window: WindowHandle) -> str:
        try:
            return await self._page(window).title()
        except PlaywrightError as e:
            raise DriverError(f"Failed to read title: {e}")

    async def page_text(self, window: WindowHandle) -> str:
        try:
            return await self._page(window).evaluate("() => document.body ? document.body.innerText : ''")
        except PlaywrightError as e:
            raise DriverError(f"Failed to read page text: {e}")

    # ========== ELEMENT QUERY METHODS ==========

    async def frames(self, window: WindowHandle) -> List[FrameInfo]:
        page = self._page(window)
        infos = []
        for index, frame in enumerate(page.frames):
            if frame.is_detached():
                continue
            infos.append(FrameInfo(index=index, url=frame.url, name=frame.name, native=frame))
        return infos

    async def query(self, window: WindowHandle, locator: Locator, frame: Optional[FrameInfo] = None) -> List[ElementRef]:
        page = self._page(window)
        target = frame.native if frame is not None and frame.native is not None else page.main_frame
        try:
            if locator.kind is LocatorKind.TEXT:
                return await self._query_text(target, locator)
            matches = self._build_locator(target, locator)
            count = min(await matches.count(), MAX_MATCHES)
            return [PlaywrightElement(matches.nth(i), self.timeout) for i in range(count)]
        except PlaywrightError as e:
            raise DriverError(f"Query {locator.describe()} failed: {e}")

    def _build_locator(self, frame, locator: Locator):
        kind = locator.kind
        if kind is LocatorKind.CSS:
            return frame.locator(locator.value)
        if kind is LocatorKind.ROLE:
            if locator.name:
                return frame.get_by_role(locator.value, name=re.compile(locator.name, re.IGNORECASE))
            return frame.get_by_role(locator.value)
        if kind is LocatorKind.PLACEHOLDER:
            return frame.get_by_placeholder(re.compile(locator.value, re.IGNORECASE))
        if kind is LocatorKind.LABEL:
            return frame.get_by_label(re.compile(locator.value, re.IGNORECASE))
        if kind is LocatorKind.AUTOCOMPLETE:
            return frame.locator(f'input[autocomplete="{locator.value}"]')
        if kind is LocatorKind.TYPE:
            return frame.locator(f'input[type="{locator.value}"]')
        raise DriverError(f"Unsupported locator kind: {kind}")

    async def _query_text(self, frame, locator: Locator) -> List[ElementRef]:
        """Keyword match on text, value or aria-label of candidate controls."""
        pattern = re.compile(locator.value, re.IGNORECASE)
        candidates = frame.locator(locator.tag or "*")
        count = min(await candidates.count(), MAX_MATCHES * 4)
        found: List[ElementRef] = []
        for i in range(count):
            element = PlaywrightElement(candidates.nth(i), self.timeout)
            if pattern.search(await element.text()):
                found.append(element)
                if len(found) >= MAX_MATCHES:
                    break
        return found

    # ========== INTERACTION METHODS ==========

    async def press_key(self, window: WindowHandle, key: str) -> None:
        try:
            await self._page(window).keyboard.press(key)
        except PlaywrightError as e:
            raise DriverError(f"Failed to press {key}: {e}")

    # ========== SESSION STATE METHODS ==========

    async def cookies(self) -> List[Cookie]:
        context = self._ensure_context()
        return [Cookie.from_mapping(c) for c in await context.cookies()]

    async def user_agent(self, window: WindowHandle) -> str:
        try:
            return await self._page(window).evaluate("() => navigator.userAgent")
        except PlaywrightError as e:
            raise DriverError(f"Failed to read user agent: {e}")

    async def evaluate(self, window: WindowHandle, script: str) -> Any:
        try:
            return await self._page(window).evaluate(script)
        except PlaywrightError as e:
            raise DriverError(f"Script evaluation failed: {e}")

    async def screenshot(self, window: WindowHandle, path: str) -> str:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        try:
            await self._page(window).screenshot(path=path, full_page=True)
        except PlaywrightError as e:
            raise DriverError(f"Failed to take screenshot: {e}")
        return path
