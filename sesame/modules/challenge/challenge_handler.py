"""
Challenge Handler.

Detects anti-automation artifacts on the current surface and makes a bounded
number of remediation attempts for each one:

- security-key prompts are cancelled so the flow falls back to a password
- transient error banners are dismissed through their close control
- checkbox widgets (in captcha frames or the main document) are activated
- image grids get a colour-heuristic tile selection followed by "verify"
"""

import asyncio
import re
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from sesame.config.settings import ChallengeSettings, get_settings
from sesame.core.models import Challenge, ChallengeKind
from sesame.flows.definitions import ChallengeProfile, Locator, css, text
from sesame.modules.challenge.image_heuristics import classify_tiles
from sesame.modules.resolution.element_resolver import ControlRef, ElementResolver, SearchScope
from sesame.tools.browser_driver import BrowserDriver, ElementRef, FrameInfo
from sesame.utils.logging import LoggingMixin


LABEL_TAGS = "label, [role='checkbox'], span, p"
INSTRUCTION_TAGS = "strong, h1, h2, h3, p, span, div.rc-imageselect-desc, div.prompt-text, label"
LABELLED_CONTROLS = (css("input[type='checkbox']"), css("[role='checkbox']"))
PLAIN_ID = re.compile(r"[A-Za-z_][\w-]*")


@dataclass
class ChallengeOutcome:
    """Result of one detect-and-resolve pass."""

    resolved: bool
    challenges: List[Challenge] = field(default_factory=list)
    detail: Optional[str] = None


class ChallengeHandler(LoggingMixin):
    """
    Detection and remediation of anti-automation artifacts.

    Detection order is fixed: security-key prompt, error banner, checkbox,
    image grid. Each artifact gets at most ``max_attempts`` activations and
    each activation waits at most ``clear_timeout_seconds`` for it to clear.
    """

    def __init__(
        self,
        driver: BrowserDriver,
        resolver: ElementResolver,
        profile: ChallengeProfile,
        settings: Optional[ChallengeSettings] = None,
        click_delay_ms: Optional[int] = None,
    ):
        super().__init__()
        self.setup_logging("challenge_handler", flow=resolver.flow.name)
        self.driver = driver
        self.resolver = resolver
        self.profile = profile
        self.settings = settings or get_settings().challenge
        self.click_delay_ms = get_settings().engine.click_delay_ms if click_delay_ms is None else click_delay_ms

    async def detect_and_resolve(self, scope: SearchScope) -> ChallengeOutcome:
        """
        Detect every artifact on the surface and try to clear each in turn.

        Returns a resolved outcome with an empty challenge list when nothing
        was found.
        """
        handled: List[Challenge] = []
        for _ in range(len(ChallengeKind) * 2):
            challenge = await self.detect(scope)
            if challenge is None:
                return ChallengeOutcome(resolved=True, challenges=handled)

            self.logger.info("Challenge detected", kind=challenge.kind.value, location=challenge.location)
            handled.append(challenge)
            if not await self._resolve(challenge, scope):
                self.logger.warning("Challenge unresolved", kind=challenge.kind.value, location=challenge.location)
                return ChallengeOutcome(
                    resolved=False,
                    challenges=handled,
                    detail=challenge.detail or f"{challenge.kind.value} still present",
                )

        return ChallengeOutcome(resolved=False, challenges=handled, detail="challenges keep reappearing")

    async def detect(self, scope: SearchScope) -> Optional[Challenge]:
        """First artifact present on the surface, in detection order."""
        for detector in (
            self._detect_security_key,
            self._detect_banner,
            self._detect_checkbox,
            self._detect_image_grid,
        ):
            try:
                challenge = await detector(scope)
            except Exception as e:
                self.logger.debug("Challenge probe failed", probe=detector.__name__, error=str(e))
                continue
            if challenge is not None:
                return challenge
        return None

    # ========== DETECTION ==========

    async def _detect_security_key(self, scope: SearchScope) -> Optional[Challenge]:
        url = (await self.driver.current_url(scope.window)).lower()
        by_url = any(marker in url for marker in self.profile.security_key_url_markers)
        by_text = False
        if not by_url and self.profile.security_key_text_patterns:
            body = await self._page_text(scope)
            by_text = any(re.search(p, body, re.IGNORECASE) for p in self.profile.security_key_text_patterns)
        if not (by_url or by_text):
            return None

        cancel = await self.resolver.resolve_first(self.profile.security_key_cancel, SearchScope(scope.window))
        return Challenge(
            kind=ChallengeKind.SECURITY_KEY_PROMPT,
            detail="security key prompt without a cancel control" if cancel is None else "security key prompt",
            element=cancel.element if cancel else None,
        )

    async def _detect_banner(self, scope: SearchScope) -> Optional[Challenge]:
        if not self.profile.banner_text_patterns:
            return None
        body = await self._page_text(scope)
        match = next(
            (m for m in (re.search(p, body, re.IGNORECASE) for p in self.profile.banner_text_patterns) if m),
            None,
        )
        if match is None:
            return None

        close = await self.resolver.resolve_first(self.profile.banner_close, SearchScope(scope.window))
        return Challenge(
            kind=ChallengeKind.ERROR_BANNER,
            detail=match.group(0),
            element=close.element if close else None,
        )

    async def _detect_checkbox(self, scope: SearchScope) -> Optional[Challenge]:
        ticked = False
        for frame in await self._captcha_frames(scope):
            control = await self.resolver.resolve_first(
                self.profile.frame_checkboxes, SearchScope(scope.window, [frame]), require_enabled=False
            )
            if control is None:
                continue
            if not await self._is_checked(control.element):
                return Challenge(kind=ChallengeKind.CHECKBOX, frame=frame, detail="captcha frame checkbox", element=control.element)
            ticked = True

        main = await self._main_frame(scope)
        main_scope = SearchScope(scope.window, [main] if main else None)

        control = await self.resolver.resolve_first(self.profile.page_checkboxes, main_scope, require_enabled=False)
        if control is not None:
            if not await self._is_checked(control.element):
                return Challenge(kind=ChallengeKind.CHECKBOX, frame=control.frame, detail="page checkbox", element=control.element)
            ticked = True

        # A ticked widget keeps its label on screen.
        if self.profile.checkbox_label_patterns and not ticked:
            pattern = "|".join(f"(?:{p})" for p in self.profile.checkbox_label_patterns)
            control = await self.resolver.resolve_first([text(pattern, tag=LABEL_TAGS)], main_scope, require_enabled=False)
            if control and not await self._label_ticked(control, scope):
                return Challenge(kind=ChallengeKind.CHECKBOX, frame=control.frame, detail="labelled checkbox", element=control.element)

        return None

    async def _detect_image_grid(self, scope: SearchScope) -> Optional[Challenge]:
        if not self.profile.image_grid_patterns:
            return None

        frames: List[Optional[FrameInfo]] = list(await self._captcha_frames(scope))
        main = await self._main_frame(scope)
        frames.append(main)

        pattern = "|".join(f"(?:{p})" for p in self.profile.image_grid_patterns).replace("?P<keyword>", "")
        for frame in frames:
            frame_scope = SearchScope(scope.window, [frame] if frame else None)
            control = await self.resolver.resolve_first([text(pattern, tag=INSTRUCTION_TAGS)], frame_scope, require_enabled=False)
            if control is None:
                continue
            keyword = self._extract_keyword(await control.element.text())
            return Challenge(kind=ChallengeKind.IMAGE_GRID, frame=control.frame, detail=keyword, element=control.element)
        return None

    def _extract_keyword(self, instruction: str) -> str:
        for p in self.profile.image_grid_patterns:
            match = re.search(p, instruction or "", re.IGNORECASE)
            if match and "keyword" in match.groupdict():
                return (match.group("keyword") or "").strip()
        return ""

    # ========== RESOLUTION ==========

    async def _resolve(self, challenge: Challenge, scope: SearchScope) -> bool:
        if challenge.kind is ChallengeKind.IMAGE_GRID:
            attempt = self._attempt_image_grid
        else:
            attempt = self._attempt_activation

        for number in range(1, self.settings.max_attempts + 1):
            self.log_method_call("resolve_challenge", kind=challenge.kind.value, attempt=number)
            try:
                await attempt(challenge, scope)
            except Exception as e:
                self.logger.debug("Remediation attempt failed", kind=challenge.kind.value, attempt=number, error=str(e))

            if await self._wait_cleared(challenge, scope):
                challenge.resolved = True
                self.logger.info("Challenge cleared", kind=challenge.kind.value, attempts=number)
                return True

            refreshed = await self._redetect(challenge.kind, scope)
            if refreshed is not None and refreshed.element is not None:
                challenge.element = refreshed.element
                challenge.frame = refreshed.frame
                challenge.detail = refreshed.detail or challenge.detail
        return False

    async def _attempt_activation(self, challenge: Challenge, scope: SearchScope) -> None:
        if challenge.element is None:
            raise LookupError(f"No control to activate for {challenge.kind.value}")
        await self.activate(challenge.element, still_present=lambda: self._still_present(challenge, scope))

    async def _attempt_image_grid(self, challenge: Challenge, scope: SearchScope) -> None:
        frame_scope = SearchScope(scope.window, [challenge.frame] if challenge.frame else None)
        tiles = await self.resolver.resolve_all_visible(self.profile.image_tiles, frame_scope)
        if not tiles:
            raise LookupError("Image grid has no visible tiles")

        images = []
        for tile in tiles:
            images.append(await tile.element.screenshot())
        selected = classify_tiles(images, challenge.detail or "", self.settings.image_min_fraction)
        self.logger.info("Image grid tiles selected", keyword=challenge.detail, selected=selected, tiles=len(tiles))

        for index in selected:
            await self.activate(tiles[index].element)

        verify = await self.resolver.resolve_first(self.profile.image_verify, frame_scope)
        if verify is None:
            raise LookupError("Image grid has no verify control")
        await self.activate(verify.element)

    async def activate(self, element: ElementRef, still_present: Optional[Callable] = None) -> None:
        """
        Scroll into view, click directly, then fall back to a synthetic
        mousedown/mouseup/click sequence.
        """
        try:
            await element.scroll_into_view()
        except Exception as e:
            self.logger.debug("Scroll into view failed", error=str(e))

        try:
            await element.click(self.click_delay_ms)
            if still_present is None:
                return
            await asyncio.sleep(self.settings.settle_seconds)
            if not await still_present():
                return
        except Exception as e:
            self.logger.debug("Direct click failed, dispatching synthetic events", error=str(e))

        await element.dispatch_click()

    async def _wait_cleared(self, challenge: Challenge, scope: SearchScope) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.clear_timeout_seconds
        while True:
            if not await self._still_present(challenge, scope):
                return True
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(self.settings.poll_seconds)

    async def _still_present(self, challenge: Challenge, scope: SearchScope) -> bool:
        if challenge.kind is ChallengeKind.CHECKBOX and challenge.element is not None:
            if await self._is_checked(challenge.element):
                return False
        return await self._redetect(challenge.kind, scope) is not None

    async def _redetect(self, kind: ChallengeKind, scope: SearchScope) -> Optional[Challenge]:
        detector = {
            ChallengeKind.SECURITY_KEY_PROMPT: self._detect_security_key,
            ChallengeKind.ERROR_BANNER: self._detect_banner,
            ChallengeKind.CHECKBOX: self._detect_checkbox,
            ChallengeKind.IMAGE_GRID: self._detect_image_grid,
        }[kind]
        try:
            return await detector(scope)
        except Exception as e:
            if self.driver.is_closed(scope.window):
                return None
            self.logger.debug("Challenge re-check failed", kind=kind.value, error=str(e))
            return None

    # ========== HELPERS ==========

    async def _page_text(self, scope: SearchScope) -> str:
        try:
            return await self.driver.page_text(scope.window) or ""
        except Exception:
            return ""

    async def _captcha_frames(self, scope: SearchScope) -> List[FrameInfo]:
        frames = list(scope.frames) if scope.frames is not None else await self.driver.frames(scope.window)
        markers = self.profile.captcha_frame_markers
        return [
            f for f in frames
            if f is not None and not f.is_main and any(m in f"{f.url} {f.name}".lower() for m in markers)
        ]

    async def _main_frame(self, scope: SearchScope) -> Optional[FrameInfo]:
        frames = await self.driver.frames(scope.window)
        return next((f for f in frames if f.is_main), None)

    async def _label_ticked(self, label: ControlRef, scope: SearchScope) -> bool:
        """
        A label counts as ticked when it, or the checkbox it belongs to, is
        checked. The checkbox is the label's ``for`` target, else the first
        checkbox control in the label's frame.
        """
        if await self._is_checked(label.element):
            return True

        locators: List[Locator] = []
        target = await label.element.attribute("for")
        if target:
            locators.append(css(f"#{target}" if PLAIN_ID.fullmatch(target) else f"[id=\"{target}\"]"))
        locators.extend(LABELLED_CONTROLS)

        for locator in locators:
            try:
                matches = await self.driver.query(scope.window, locator, label.frame)
            except Exception as e:
                self.logger.debug("Labelled checkbox lookup failed", locator=locator.describe(), error=str(e))
                continue
            if matches:
                return await self._is_checked(matches[0])
        return False

    async def _is_checked(self, element: ElementRef) -> bool:
        try:
            state = await element.state()
        except Exception:
            return False
        return state.checked is True
