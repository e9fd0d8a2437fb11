"""
Element Resolution Engine.

Resolves a semantic role ("identifier", "secret", "submit", ...) to a concrete,
interactable element by walking the flow's ordered strategy table across the
main document and its nested frames. Resolution is a pure query.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence

from sesame.flows.definitions import FlowDefinition, Locator, Role
from sesame.tools.browser_driver import BrowserDriver, ElementRef, FrameInfo, WindowHandle
from sesame.utils.logging import LoggingMixin


@dataclass(frozen=True)
class SearchScope:
    """
    Where to search.

    ``frames=None`` means the main document first, then every nested frame in
    document order. An explicit list is searched in the order given.
    """

    window: WindowHandle
    frames: Optional[Sequence[FrameInfo]] = None


@dataclass(frozen=True)
class ControlRef:
    """A resolved control and the strategy that found it."""

    role: Optional[Role]
    element: ElementRef
    locator: Locator
    strategy_index: int
    frame: Optional[FrameInfo] = None


class ElementResolver(LoggingMixin):
    """Strategy-table driven element lookup."""

    def __init__(self, driver: BrowserDriver, flow: FlowDefinition):
        super().__init__()
        self.setup_logging("element_resolver", flow=flow.name)
        self.driver = driver
        self.flow = flow

    async def resolve(self, role: Role, scope: SearchScope) -> Optional[ControlRef]:
        """
        Resolve a role to the first interactable element.

        Frames are searched in scope order; within a frame strategies are
        tried in table order and matches in DOM order. Returns None when no
        strategy yields an interactable element.
        """
        control = await self.resolve_first(self.flow.strategies_for(role), scope, role=role)
        if control is None:
            self.logger.debug("Role not resolved", role=role.value)
        else:
            self.logger.debug(
                "Role resolved",
                role=role.value,
                strategy=control.locator.describe(),
                strategy_index=control.strategy_index,
                frame=control.frame.index if control.frame else 0,
            )
        return control

    async def resolve_first(
        self,
        locators: Sequence[Locator],
        scope: SearchScope,
        role: Optional[Role] = None,
        require_enabled: bool = True,
    ) -> Optional[ControlRef]:
        """First element matching any of ``locators`` in strategy order."""
        if not locators:
            return None
        for frame in await self._frames(scope):
            for index, locator in enumerate(locators):
                for element in await self._query(scope.window, locator, frame):
                    if await self._accept(element, require_enabled):
                        return ControlRef(role, element, locator, index, frame)
        return None

    async def resolve_all_visible(
        self,
        locators: Sequence[Locator],
        scope: SearchScope,
        require_enabled: bool = False,
    ) -> List[ControlRef]:
        """Every displayed element matching any locator, in search order."""
        found: List[ControlRef] = []
        for frame in await self._frames(scope):
            for index, locator in enumerate(locators):
                for element in await self._query(scope.window, locator, frame):
                    if await self._accept(element, require_enabled):
                        found.append(ControlRef(None, element, locator, index, frame))
        return found

    async def is_visible(self, role: Role, scope: SearchScope) -> bool:
        return await self.resolve(role, scope) is not None

    async def _frames(self, scope: SearchScope) -> List[Optional[FrameInfo]]:
        if scope.frames is not None:
            return list(scope.frames)
        try:
            frames = await self.driver.frames(scope.window)
        except Exception as e:
            self.logger.debug("Frame enumeration failed", error=str(e))
            return [None]
        if not frames:
            return [None]
        return sorted(frames, key=lambda f: f.index)

    async def _query(self, window: WindowHandle, locator: Locator, frame: Optional[FrameInfo]) -> List[ElementRef]:
        try:
            return await self.driver.query(window, locator, frame)
        except Exception as e:
            # Frames can detach mid-query; treat as no matches.
            self.logger.debug("Strategy query failed", strategy=locator.describe(), error=str(e))
            return []

    async def _accept(self, element: ElementRef, require_enabled: bool) -> bool:
        try:
            state = await element.state()
        except Exception as e:
            self.logger.debug("Element state unreadable", error=str(e))
            return False
        return state.is_interactable if require_enabled else state.is_displayed
