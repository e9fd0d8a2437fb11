"""
Authentication Verifier.

Polls the active window after credentials were submitted and decides between
success, explicit rejection and timeout. The decision is monotonic: the first
poll that satisfies the success predicate ends verification.
"""

import asyncio
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from sesame.config.settings import VerifierSettings, get_settings
from sesame.core.models import Cookie
from sesame.flows.definitions import FlowDefinition, Role
from sesame.modules.resolution.element_resolver import ElementResolver, SearchScope
from sesame.tools.browser_driver import BrowserDriver, WindowHandle
from sesame.utils.logging import LoggingMixin


MAX_BANNER_LENGTH = 300

WindowProvider = Callable[[], Awaitable[Optional[WindowHandle]]]


class VerdictKind(str, Enum):
    SUCCESS = "success"
    AUTH_REJECTED = "rejected"
    AUTH_TIMEOUT = "timeout"


@dataclass
class Verdict:
    kind: VerdictKind
    detail: Optional[str] = None
    banner_text: Optional[str] = None
    url: str = ""
    cookies: List[Cookie] = field(default_factory=list)
    user_agent: str = ""
    polls: int = 0

    @property
    def succeeded(self) -> bool:
        return self.kind is VerdictKind.SUCCESS


class AuthenticationVerifier(LoggingMixin):
    """Decides the outcome of a submitted sign-in."""

    def __init__(self, driver: BrowserDriver, settings: Optional[VerifierSettings] = None):
        super().__init__()
        self.setup_logging("auth_verifier")
        self.driver = driver
        self.settings = settings or get_settings().verifier

    async def await_outcome(
        self,
        window_provider: WindowProvider,
        flow: FlowDefinition,
        timeout: Optional[float] = None,
    ) -> Verdict:
        """
        Poll until success, rejection or timeout.

        Args:
            window_provider: Coroutine returning the current active window;
                called on every poll so a replaced window is picked up
            flow: Flow whose success predicate and banner table apply
            timeout: Seconds to wait (defaults to ``verifier.timeout_seconds``)

        Returns:
            Verdict with cookies and user agent on success, the banner text
            on rejection, or the last observed address on timeout
        """
        timeout = self.settings.timeout_seconds if timeout is None else timeout
        resolver = ElementResolver(self.driver, flow)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        polls = 0
        last_url = ""

        while True:
            polls += 1
            window = await window_provider()
            if window is not None:
                scope = SearchScope(window)
                last_url = await self._url(window) or last_url

                banner = await self._rejection_banner(resolver, flow, scope)
                if banner:
                    self.logger.info("Sign-in rejected", flow=flow.name, banner=banner, polls=polls)
                    return Verdict(
                        VerdictKind.AUTH_REJECTED,
                        detail=f"{banner} (URL final: {last_url})",
                        banner_text=banner,
                        url=last_url,
                        polls=polls,
                    )

                if await self._success_satisfied(resolver, flow, scope, last_url):
                    cookies = await self._cookies()
                    if cookies:
                        user_agent = await self._user_agent(window)
                        self.logger.info("Sign-in verified", flow=flow.name, url=last_url, cookies=len(cookies), polls=polls)
                        return Verdict(
                            VerdictKind.SUCCESS,
                            url=last_url,
                            cookies=cookies,
                            user_agent=user_agent,
                            polls=polls,
                        )
                    self.logger.debug("Success predicate met without cookies, polling on", url=last_url)

            if loop.time() >= deadline:
                self.logger.warning("Sign-in outcome undetermined", flow=flow.name, url=last_url, polls=polls)
                return Verdict(
                    VerdictKind.AUTH_TIMEOUT,
                    detail=f"No success marker or rejection after {timeout:g}s (URL final: {last_url})",
                    url=last_url,
                    polls=polls,
                )
            await asyncio.sleep(self.settings.poll_interval_seconds)

    async def rejection_banner(self, window: WindowHandle, flow: FlowDefinition) -> Optional[str]:
        """Text of a visible rejection banner in ``window``, if any."""
        return await self._rejection_banner(ElementResolver(self.driver, flow), flow, SearchScope(window))

    async def _rejection_banner(self, resolver: ElementResolver, flow: FlowDefinition, scope: SearchScope) -> Optional[str]:
        for control in await resolver.resolve_all_visible(flow.strategies_for(Role.REJECTION_BANNER), scope):
            try:
                content = re.sub(r"\s+", " ", await control.element.text()).strip()
            except Exception:
                continue
            if content and len(content) <= MAX_BANNER_LENGTH:
                return content
        return None

    async def _success_satisfied(self, resolver: ElementResolver, flow: FlowDefinition, scope: SearchScope, url: str) -> bool:
        predicate = flow.success
        if not url or predicate.is_login_surface(url):
            return False
        if predicate.matches_authenticated_area(url):
            return True
        markers = predicate.markers or flow.strategies_for(Role.SUCCESS_MARKER)
        return await resolver.resolve_first(markers, scope, require_enabled=False) is not None

    async def _url(self, window: WindowHandle) -> str:
        try:
            return await self.driver.current_url(window)
        except Exception:
            return ""

    async def _cookies(self) -> List[Cookie]:
        try:
            return list(await self.driver.cookies())
        except Exception as e:
            self.logger.debug("Cookie snapshot failed", error=str(e))
            return []

    async def _user_agent(self, window: WindowHandle) -> str:
        try:
            return await self.driver.user_agent(window)
        except Exception:
            return ""
