"""
Diagnostics Recorder

Captures a best-effort snapshot of the browser surface when an attempt fails,
so that a failed Session explains where the flow stopped: address, title,
secret-field state, rejection banner text and automation-detectability
markers.
"""

import asyncio
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from sesame.config.settings import get_settings
from sesame.flows.definitions import FlowDefinition, Role
from sesame.modules.resolution.element_resolver import ElementResolver, SearchScope
from sesame.tools.browser_driver import BrowserDriver, WindowHandle
from sesame.utils.logging import LoggingMixin


AUTOMATION_PROBE = """
() => ({
    webdriver: navigator.webdriver === true,
    userAgent: navigator.userAgent || '',
    hasChrome: typeof window.chrome !== 'undefined',
    plugins: navigator.plugins ? navigator.plugins.length : 0,
    languages: navigator.languages ? navigator.languages.length : 0,
})
"""

MAX_BANNER_LENGTH = 300


@dataclass
class SecretFieldState:
    """Presence and interactivity of the secret field."""

    present: bool = False
    visible: bool = False
    enabled: bool = False


@dataclass
class Diagnostics:
    """Snapshot of the surface at failure time."""

    context: str
    url: str = ""
    title: str = ""
    secret_field: SecretFieldState = field(default_factory=SecretFieldState)
    submit_present: bool = False
    banner_text: Optional[str] = None
    automation_markers: List[str] = field(default_factory=list)
    screenshot_path: Optional[str] = None
    captured_at: datetime = field(default_factory=datetime.now)
    probe_errors: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["captured_at"] = self.captured_at.isoformat()
        return data


class DiagnosticsRecorder(LoggingMixin):
    """Collects a Diagnostics snapshot without ever raising."""

    def __init__(self, driver: BrowserDriver, screenshot_dir: Optional[Path] = None):
        super().__init__()
        self.setup_logging("diagnostics_recorder")
        self.driver = driver
        self.screenshot_dir = screenshot_dir if screenshot_dir is not None else get_settings().diagnostics.screenshot_dir

    async def snapshot(
        self,
        window: Optional[WindowHandle],
        context: str,
        flow: Optional[FlowDefinition] = None,
    ) -> Optional[Diagnostics]:
        """
        Capture the current surface.

        Args:
            window: Window to inspect (None or closed yields None)
            context: Short description of the failure point
            flow: Flow whose strategy tables locate the secret/submit controls

        Returns:
            Diagnostics, or None when nothing could be captured
        """
        if window is None or self.driver.is_closed(window):
            self.logger.warning("No open window to snapshot", context=context)
            return None

        try:
            diagnostics = Diagnostics(context=context)

            diagnostics.url = await self._probe(diagnostics, "url", self.driver.current_url(window), "")
            diagnostics.title = await self._probe(diagnostics, "title", self.driver.title(window), "")

            if flow is not None:
                resolver = ElementResolver(self.driver, flow)
                scope = SearchScope(window)
                diagnostics.secret_field = await self._probe(
                    diagnostics, "secret_field", self._secret_field_state(flow, scope), SecretFieldState()
                )
                diagnostics.submit_present = await self._probe(
                    diagnostics, "submit", self._any_present(resolver, flow.strategies_for(Role.SUBMIT), scope), False
                )
                diagnostics.banner_text = await self._probe(
                    diagnostics, "banner", self._banner_text(resolver, flow, scope), None
                )

            diagnostics.automation_markers = await self._probe(
                diagnostics, "automation", self._automation_markers(window), []
            )

            if self.screenshot_dir:
                diagnostics.screenshot_path = await self._probe(
                    diagnostics, "screenshot", self._screenshot(window, context), None
                )

            self.logger.info(
                "Diagnostics captured",
                context=context,
                url=diagnostics.url,
                masked_field_present=diagnostics.secret_field.present,
                banner=bool(diagnostics.banner_text),
                markers=diagnostics.automation_markers,
            )
            return diagnostics

        except Exception as e:
            self.logger.warning(f"Failed to capture diagnostics: {e}", context=context)
            return None

    async def _probe(self, diagnostics: Diagnostics, name: str, coro, default):
        """Run one probe in isolation; record its error and fall back to ``default``."""
        try:
            return await coro
        except Exception as e:
            diagnostics.probe_errors[name] = str(e)
            self.logger.debug("Diagnostics probe failed", probe=name, error=str(e))
            return default

    async def _secret_field_state(self, flow: FlowDefinition, scope: SearchScope) -> SecretFieldState:
        state = SecretFieldState()
        for locator in flow.strategies_for(Role.SECRET):
            elements = await self.driver.query(scope.window, locator)
            if not elements:
                continue
            state.present = True
            element_state = await elements[0].state()
            state.visible = element_state.is_displayed
            state.enabled = element_state.is_interactable
            break
        return state

    async def _any_present(self, resolver: ElementResolver, locators, scope: SearchScope) -> bool:
        return await resolver.resolve_first(locators, scope, require_enabled=False) is not None

    async def _banner_text(self, resolver: ElementResolver, flow: FlowDefinition, scope: SearchScope) -> Optional[str]:
        for control in await resolver.resolve_all_visible(flow.strategies_for(Role.REJECTION_BANNER), scope):
            content = re.sub(r"\s+", " ", await control.element.text()).strip()
            if content and len(content) <= MAX_BANNER_LENGTH:
                return content
        return None

    async def _automation_markers(self, window: WindowHandle) -> List[str]:
        probe = await self.driver.evaluate(window, AUTOMATION_PROBE) or {}
        markers = []
        if probe.get("webdriver"):
            markers.append("navigator.webdriver")
        if "headless" in str(probe.get("userAgent", "")).lower():
            markers.append("headless-user-agent")
        if not probe.get("hasChrome", True):
            markers.append("missing-window.chrome")
        if probe.get("plugins", 1) == 0:
            markers.append("no-plugins")
        if probe.get("languages", 1) == 0:
            markers.append("no-languages")
        return markers

    async def _screenshot(self, window: WindowHandle, context: str) -> str:
        slug = re.sub(r"[^a-z0-9]+", "-", context.lower()).strip("-") or "failure"
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        path = Path(self.screenshot_dir) / f"{slug}_{timestamp}.png"
        return await asyncio.wait_for(self.driver.screenshot(window, str(path)), timeout=10.0)
