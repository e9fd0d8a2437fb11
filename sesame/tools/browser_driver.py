"""
Browser Driver boundary for Sesame.

The engine never talks to a browser automation library directly; it consumes
this interface. ``PlaywrightDriver`` is the shipped implementation and the
test-suite provides a scripted in-memory one.
"""

import itertools
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

from sesame.core.models import Cookie
from sesame.flows.definitions import Locator


_window_ids = itertools.count(1)


class WindowHandle:
    """
    Opaque reference to one browser window or tab.

    The driver that created a handle owns it and is the only party that
    destroys the underlying window. ``native`` is private to the driver.
    """

    def __init__(self, native: Any = None):
        self.id = next(_window_ids)
        self.native = native
        self.closed = False

    def __repr__(self) -> str:
        return f"WindowHandle(id={self.id}, closed={self.closed})"


@dataclass(frozen=True)
class FrameInfo:
    """A frame of a window; index 0 is the main document."""

    index: int
    url: str = ""
    name: str = ""
    native: Any = field(default=None, compare=False, repr=False)

    @property
    def is_main(self) -> bool:
        return self.index == 0


@dataclass(frozen=True)
class ElementState:
    """Layout and interactivity snapshot of one element."""

    attached: bool = True
    display: str = "block"
    visibility: str = "visible"
    opacity: float = 1.0
    width: float = 0.0
    height: float = 0.0
    disabled: bool = False
    readonly: bool = False
    checked: Optional[bool] = None

    @property
    def is_interactable(self) -> bool:
        return (
            self.attached
            and self.display != "none"
            and self.visibility != "hidden"
            and self.opacity > 0
            and self.width > 0
            and self.height > 0
            and not self.disabled
            and not self.readonly
        )

    @property
    def is_displayed(self) -> bool:
        """Visible in layout, regardless of disabled/read-only state."""
        return (
            self.attached
            and self.display != "none"
            and self.visibility != "hidden"
            and self.opacity > 0
            and self.width > 0
            and self.height > 0
        )


class ElementRef(ABC):
    """A concrete element returned by ``BrowserDriver.query``."""

    @abstractmethod
    async def state(self) -> ElementState:
        """Read visibility, bounding box and enabled state."""

    @abstractmethod
    async def click(self, delay_ms: int = 0) -> None:
        """Direct (trusted) click."""

    @abstractmethod
    async def dispatch_click(self) -> None:
        """Synthetic mousedown/mouseup/click event sequence."""

    @abstractmethod
    async def clear(self) -> None:
        """Clear any pre-filled value."""

    @abstractmethod
    async def type_text(self, text: str, delay_ms: int = 0) -> None:
        """Type text key by key with a per-key delay."""

    @abstractmethod
    async def text(self) -> str:
        """Visible text, falling back to value and aria-label."""

    @abstractmethod
    async def attribute(self, name: str) -> Optional[str]:
        """Value of an HTML attribute, or None when it is not set."""

    @abstractmethod
    async def scroll_into_view(self) -> None:
        """Scroll the element into the viewport."""

    @abstractmethod
    async def screenshot(self) -> bytes:
        """PNG bytes of the element."""


WindowCallback = Callable[[WindowHandle], None]


class BrowserDriver(ABC):
    """
    Capabilities the engine consumes from a browser.

    Implementations keep an arena of every WindowHandle they create,
    including windows opened by the page itself, and notify subscribers
    through ``on_window_created`` for the latter.
    """

    @abstractmethod
    async def launch(self) -> None:
        """Acquire the browser instance. Raises LaunchError."""

    @abstractmethod
    async def shutdown(self) -> None:
        """Release the browser instance. Never raises."""

    @abstractmethod
    async def open_window(self) -> WindowHandle:
        """Create a new window owned by this driver."""

    @abstractmethod
    async def close_window(self, window: WindowHandle) -> None:
        """Close a window. Idempotent."""

    @abstractmethod
    def open_windows(self) -> List[WindowHandle]:
        """All windows created so far that are still open, in creation order."""

    @abstractmethod
    def on_window_created(self, callback: WindowCallback) -> None:
        """Subscribe to windows spawned by page content (popups, new tabs)."""

    @abstractmethod
    async def navigate(self, window: WindowHandle, url: str, wait_until: str, timeout_ms: int) -> None:
        """Navigate a window. Raises NavigationError."""

    @abstractmethod
    async def frames(self, window: WindowHandle) -> List[FrameInfo]:
        """Frames of the window, main document first then document order."""

    @abstractmethod
    async def query(self, window: WindowHandle, locator: Locator, frame: Optional[FrameInfo] = None) -> List[ElementRef]:
        """Elements matching a locator in a frame (main document by default)."""

    @abstractmethod
    async def current_url(self, window: WindowHandle) -> str:
        """Current address of the window."""

    @abstractmethod
    async def title(self, window: WindowHandle) -> str:
        """Document title."""

    @abstractmethod
    async def page_text(self, window: WindowHandle) -> str:
        """Visible text of the main document."""

    @abstractmethod
    async def press_key(self, window: WindowHandle, key: str) -> None:
        """Press a key in the focused element."""

    @abstractmethod
    async def cookies(self) -> List[Cookie]:
        """Full cookie snapshot of the browser context."""

    @abstractmethod
    async def user_agent(self, window: WindowHandle) -> str:
        """User agent reported by the page."""

    @abstractmethod
    async def evaluate(self, window: WindowHandle, script: str) -> Any:
        """Evaluate a script in the main document."""

    @abstractmethod
    async def screenshot(self, window: WindowHandle, path: str) -> str:
        """Save a screenshot of the window and return its path."""

    async def __aenter__(self):
        await self.launch()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.shutdown()

    def is_closed(self, window: Optional[WindowHandle]) -> bool:
        return window is None or window.closed

    async def close_all(self) -> None:
        """Close every window still open in the arena."""
        for window in list(self.open_windows()):
            await self.close_window(window)
