"""
Window Correlator.

Classifies every window the site spawns during an attempt and owns the
"active window" table: one active window for the primary flow and at most one
for a delegated identity provider. Classification runs in tracked tasks that
are serialised by a lock, so the table only ever has one writer at a time.
"""

import asyncio
import itertools
from enum import Enum
from typing import Dict, Optional, Set

from sesame.config.settings import WindowSettings, get_settings
from sesame.flows.definitions import FlowDefinition
from sesame.tools.browser_driver import BrowserDriver, WindowHandle
from sesame.utils.logging import LoggingMixin


BLANK_URLS = {"", "about:blank", "about:srcdoc"}


class Concern(str, Enum):
    PRIMARY = "primary"
    DELEGATED = "delegated"


class WindowClass(str, Enum):
    PRIMARY = "primary"
    DELEGATED = "delegated"
    DUPLICATE = "duplicate"
    UNRELATED = "unrelated"


class WindowCorrelator(LoggingMixin):
    """
    Decides which window is the canonical one for each concern.

    Policy for a newly observed window:
    - blank address: wait ``blank_grace_seconds`` for a real one, else close
    - delegated provider domain: adopt the earliest to appear, close the rest
    - the flow's own login surface: keep only the active one
    - the flow's own site elsewhere: leave open as a substitution candidate
    - anything else: close
    """

    def __init__(self, driver: BrowserDriver, flow: FlowDefinition, settings: Optional[WindowSettings] = None):
        super().__init__()
        self.setup_logging("window_correlator", flow=flow.name)
        self.driver = driver
        self.flow = flow
        self.settings = settings or get_settings().windows

        self._active: Dict[Concern, Optional[WindowHandle]] = {Concern.PRIMARY: None, Concern.DELEGATED: None}
        self._classified: Dict[int, WindowClass] = {}
        self._lock = asyncio.Lock()
        self._tasks: Set[asyncio.Task] = set()
        self._delegated_ready = asyncio.Event()
        self._arrival = itertools.count()
        self._arrivals: Dict[int, int] = {}

    def adopt_primary(self, window: WindowHandle) -> None:
        """Register the window the lifecycle manager opened for the flow."""
        self._active[Concern.PRIMARY] = window
        self._classified[window.id] = WindowClass.PRIMARY
        self._arrivals.setdefault(window.id, next(self._arrival))
        self.logger.debug("Primary window adopted", window_id=window.id)

    def observe(self, window: WindowHandle) -> None:
        """New-window callback: schedule classification as a tracked task."""
        if window.id in self._arrivals:
            return
        self._arrivals[window.id] = next(self._arrival)
        task = asyncio.get_running_loop().create_task(self.classify(window))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def settle(self) -> None:
        """Wait until every pending classification has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def cancel(self) -> None:
        """Cancel pending classifications."""
        for task in list(self._tasks):
            task.cancel()

    async def classify(self, window: WindowHandle) -> WindowClass:
        """
        Classify a window and apply the policy to it.

        Re-classifying a window that is already closed returns its previous
        DUPLICATE/UNRELATED class without side effects.
        """
        if self.driver.is_closed(window):
            previous = self._classified.get(window.id)
            return previous if previous in (WindowClass.DUPLICATE, WindowClass.UNRELATED) else WindowClass.UNRELATED

        url = await self._settled_url(window)

        async with self._lock:
            if self.driver.is_closed(window):
                return self._classified.setdefault(window.id, WindowClass.UNRELATED)
            window_class = await self._decide(window, url)
            self._classified[window.id] = window_class

        self.logger.info("Window classified", window_id=window.id, url=url, window_class=window_class.value)
        return window_class

    async def _decide(self, window: WindowHandle, url: str) -> WindowClass:
        provider = self.flow.delegated

        if url in BLANK_URLS:
            await self.driver.close_window(window)
            return WindowClass.UNRELATED

        if provider is not None and provider.matches(url):
            current = self._active[Concern.DELEGATED]
            if current is window:
                return WindowClass.DELEGATED
            if current is not None and not self.driver.is_closed(current):
                if self._arrived_before(current, window):
                    await self.driver.close_window(window)
                    return WindowClass.DUPLICATE
                # an earlier popup settled late; it takes over the slot
                await self.driver.close_window(current)
                self._classified[current.id] = WindowClass.DUPLICATE
                self.logger.info("Later delegated window displaced", window_id=current.id, by=window.id)
            self._active[Concern.DELEGATED] = window
            self._delegated_ready.set()
            return WindowClass.DELEGATED

        if self.flow.is_same_site(url) and self.flow.success.is_login_surface(url):
            current = self._active[Concern.PRIMARY]
            if current is window:
                return WindowClass.PRIMARY
            if current is None or self.driver.is_closed(current):
                self._active[Concern.PRIMARY] = window
                return WindowClass.PRIMARY
            await self.driver.close_window(window)
            return WindowClass.DUPLICATE

        if self.flow.is_same_site(url):
            return WindowClass.UNRELATED

        await self.driver.close_window(window)
        return WindowClass.UNRELATED

    def _arrived_before(self, first: WindowHandle, second: WindowHandle) -> bool:
        unseen = float("inf")
        return self._arrivals.get(first.id, unseen) <= self._arrivals.get(second.id, unseen)

    async def _settled_url(self, window: WindowHandle) -> str:
        """Current address, polling through a grace period while it is blank."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.blank_grace_seconds
        while True:
            url = await self._url(window)
            if url not in BLANK_URLS or loop.time() >= deadline or self.driver.is_closed(window):
                return url
            await asyncio.sleep(self.settings.poll_seconds)

    async def _url(self, window: WindowHandle) -> str:
        try:
            return (await self.driver.current_url(window)) or ""
        except Exception as e:
            self.logger.debug("Window address unreadable", window_id=window.id, error=str(e))
            return ""

    async def active(self, concern: Concern) -> Optional[WindowHandle]:
        """
        The active window for a concern.

        If it has been closed, the first still-open window matching the
        concern is substituted; None when there is none.
        """
        window = self._active[concern]
        if window is not None and not self.driver.is_closed(window):
            return window

        async with self._lock:
            window = self._active[concern]
            if window is not None and not self.driver.is_closed(window):
                return window
            substitute = await self._find_substitute(concern, exclude=window)
            self._active[concern] = substitute

        if substitute is not None:
            self._classified[substitute.id] = WindowClass(concern.value)
            self.logger.warning(
                "Active window substituted",
                concern=concern.value,
                lost_window=window.id if window else None,
                window_id=substitute.id,
            )
        return substitute

    async def _find_substitute(self, concern: Concern, exclude: Optional[WindowHandle]) -> Optional[WindowHandle]:
        provider = self.flow.delegated
        for candidate in self.driver.open_windows():
            if candidate is exclude or self.driver.is_closed(candidate):
                continue
            if concern is Concern.DELEGATED and self._active[Concern.PRIMARY] is candidate:
                continue
            url = await self._url(candidate)
            if concern is Concern.PRIMARY and self.flow.is_same_site(url):
                return candidate
            if concern is Concern.DELEGATED and provider is not None and provider.matches(url):
                return candidate
        return None

    async def wait_for_delegated(self, timeout: float) -> Optional[WindowHandle]:
        """Wait up to ``timeout`` seconds for a delegated window to be adopted."""
        current = await self.active(Concern.DELEGATED)
        if current is not None:
            return current
        self._delegated_ready.clear()
        try:
            await asyncio.wait_for(self._delegated_ready.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return None
        return await self.active(Concern.DELEGATED)

    async def release(self, concern: Concern) -> None:
        """Close the active window of a concern and clear its slot."""
        async with self._lock:
            window = self._active[concern]
            self._active[concern] = None
            if concern is Concern.DELEGATED:
                self._delegated_ready.clear()
        if window is not None:
            await self.driver.close_window(window)
            self.logger.debug("Window released", concern=concern.value, window_id=window.id)

    def classification(self, window: WindowHandle) -> Optional[WindowClass]:
        return self._classified.get(window.id)
