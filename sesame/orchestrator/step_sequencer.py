"""
Step Sequencer.

Per-flow state machine that walks a sign-in surface:

    INIT -> SURFACE_LOADED -> CHALLENGE_CLEARED -> IDENTIFIER_ENTERED
         -> SECRET_REVEALED -> SECRET_ENTERED -> SUBMITTED
         -> (DELEGATED_FLOW) -> VERIFYING -> SUCCESS | FAILURE

Every state is served by one step coroutine returning a StepResult and has a
retry budget. When a delegated identity provider takes over, a nested
sequencer scoped to the provider's window runs the same sub-sequence while
the primary one waits.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Union

from sesame.config.settings import Settings, get_settings
from sesame.core.errors import ElementNotFoundError, NavigationError, SesameError
from sesame.core.models import Credentials, ErrorKind, StepOutcome, StepResult
from sesame.flows.definitions import DelegatedProvider, FlowDefinition, Role
from sesame.modules.challenge.challenge_handler import ChallengeHandler
from sesame.modules.resolution.element_resolver import ElementResolver, SearchScope
from sesame.services.auth_verifier import AuthenticationVerifier, Verdict, VerdictKind
from sesame.services.window_correlator import Concern, WindowCorrelator
from sesame.tools.browser_driver import BrowserDriver, WindowHandle
from sesame.utils.logging import LoggingMixin


class FlowState(str, Enum):
    INIT = "init"
    SURFACE_LOADED = "surface-loaded"
    CHALLENGE_CLEARED = "challenge-cleared"
    IDENTIFIER_ENTERED = "identifier-entered"
    SECRET_REVEALED = "secret-revealed"
    SECRET_ENTERED = "secret-entered"
    SUBMITTED = "submitted"
    DELEGATED_FLOW = "delegated-flow"
    VERIFYING = "verifying"
    SUCCESS = "success"
    FAILURE = "failure"


TERMINAL_STATES = {FlowState.SUCCESS, FlowState.FAILURE}

TRANSITIONS = {
    FlowState.INIT: FlowState.SURFACE_LOADED,
    FlowState.SURFACE_LOADED: FlowState.CHALLENGE_CLEARED,
    FlowState.CHALLENGE_CLEARED: FlowState.IDENTIFIER_ENTERED,
    FlowState.IDENTIFIER_ENTERED: FlowState.SECRET_REVEALED,
    FlowState.SECRET_REVEALED: FlowState.SECRET_ENTERED,
    FlowState.SECRET_ENTERED: FlowState.SUBMITTED,
    FlowState.SUBMITTED: FlowState.VERIFYING,
    FlowState.DELEGATED_FLOW: FlowState.VERIFYING,
    FlowState.VERIFYING: FlowState.SUCCESS,
}


@dataclass(frozen=True)
class StepSpec:
    """A step coroutine, its retry budget and the failure it escalates to."""

    name: str
    handler: str
    budget: Union[int, str]
    failure: ErrorKind


STEPS: Dict[FlowState, StepSpec] = {
    FlowState.INIT: StepSpec("open login surface", "_load_surface", 1, ErrorKind.NAVIGATION_FAILURE),
    FlowState.SURFACE_LOADED: StepSpec("clear challenges", "_clear_challenges", 1, ErrorKind.CHALLENGE_UNRESOLVED),
    FlowState.CHALLENGE_CLEARED: StepSpec("enter identifier", "_enter_identifier", "element_retries", ErrorKind.ELEMENT_NOT_FOUND),
    FlowState.IDENTIFIER_ENTERED: StepSpec("reveal secret field", "_reveal_secret", 1, ErrorKind.ELEMENT_NOT_FOUND),
    FlowState.SECRET_REVEALED: StepSpec("enter secret", "_enter_secret", "element_retries", ErrorKind.ELEMENT_NOT_FOUND),
    FlowState.SECRET_ENTERED: StepSpec("submit", "_submit", "element_retries", ErrorKind.ELEMENT_NOT_FOUND),
    FlowState.SUBMITTED: StepSpec("await delegation", "_await_delegation", 1, ErrorKind.AUTH_TIMEOUT),
    FlowState.DELEGATED_FLOW: StepSpec("delegated sign-in", "_run_delegated", 1, ErrorKind.AUTH_TIMEOUT),
    FlowState.VERIFYING: StepSpec("verify", "_verify", 1, ErrorKind.AUTH_TIMEOUT),
}


@dataclass
class FlowOutcome:
    """Terminal result of one sequencer run."""

    state: FlowState
    error: Optional[ErrorKind] = None
    detail: Optional[str] = None
    verdict: Optional[Verdict] = None
    history: List[FlowState] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.state is FlowState.SUCCESS


class StepSequencer(LoggingMixin):
    """
    Drives one flow through its sign-in states.

    A primary sequencer navigates to the login surface and finishes with the
    Authentication Verifier. A nested sequencer (``provider`` set) is scoped
    to a delegated window, never navigates, and finishes when the provider
    window closes itself or leaves the provider domain.
    """

    def __init__(
        self,
        driver: BrowserDriver,
        flow: FlowDefinition,
        correlator: WindowCorrelator,
        settings: Optional[Settings] = None,
        provider: Optional[DelegatedProvider] = None,
        window: Optional[WindowHandle] = None,
    ):
        super().__init__()
        self.driver = driver
        self.flow = flow
        self.correlator = correlator
        self.settings = settings or get_settings()
        self.engine = self.settings.engine
        self.provider = provider
        self.nested = provider is not None
        self.concern = Concern.DELEGATED if self.nested else Concern.PRIMARY
        self._window_override = window

        self.setup_logging("step_sequencer", flow=flow.name, concern=self.concern.value)

        self.resolver = ElementResolver(driver, flow)
        self.challenges = ChallengeHandler(
            driver, self.resolver, flow.challenges, self.settings.challenge, self.engine.click_delay_ms
        )
        self.verifier = AuthenticationVerifier(driver, self.settings.verifier)

        self.history: List[FlowState] = []
        self.verdict: Optional[Verdict] = None
        self._jump: Optional[FlowState] = None
        self._delegation_triggered = False
        self._delegated_window: Optional[WindowHandle] = None
        self._delegated_in_place = False

    async def run(self, credentials: Credentials) -> FlowOutcome:
        """
        Walk the state machine to a terminal state.

        Driver errors inside a step are converted to StepResults; anything
        else propagates to the caller.
        """
        state = FlowState.INIT
        self.history = [state]
        self.logger.info("Starting sign-in flow", identifier=credentials.masked_identifier)

        while state not in TERMINAL_STATES:
            spec = STEPS[state]
            result = await self._run_step(spec, credentials)

            if result.is_terminal:
                self.history.append(FlowState.FAILURE)
                self.logger.warning(
                    "Sign-in flow failed",
                    step=spec.name,
                    error=result.failure.value,
                    detail=result.detail,
                )
                return FlowOutcome(FlowState.FAILURE, result.failure, result.detail, self.verdict, list(self.history))

            if result.outcome is StepOutcome.SKIP:
                self.logger.debug("Step skipped", step=spec.name, detail=result.detail)

            state = self._next_state(state)
            self.history.append(state)
            self.logger.debug("State transition", state=state.value)

        self.logger.info("Sign-in flow succeeded", states=[s.value for s in self.history])
        return FlowOutcome(FlowState.SUCCESS, verdict=self.verdict, history=list(self.history))

    def _next_state(self, state: FlowState) -> FlowState:
        if self._jump is not None:
            target, self._jump = self._jump, None
            return target
        return TRANSITIONS[state]

    async def _run_step(self, spec: StepSpec, credentials: Credentials) -> StepResult:
        budget = getattr(self.engine, spec.budget) if isinstance(spec.budget, str) else spec.budget
        handler = getattr(self, spec.handler)
        last: Optional[StepResult] = None

        for attempt in range(1, budget + 1):
            self.log_method_call(spec.handler, attempt=attempt, budget=budget)
            try:
                result = await handler(credentials)
            except ElementNotFoundError as e:
                result = StepResult.retry(str(e))
            except SesameError as e:
                result = StepResult.fail(e.kind, str(e))

            if result.outcome is not StepOutcome.RETRY:
                return result

            last = result
            if attempt < budget:
                await asyncio.sleep(self.engine.retry_backoff_seconds)

        detail = last.detail if last and last.detail else f"{spec.name} failed after {budget} attempts"
        return StepResult.fail(spec.failure, detail)

    # ========== WINDOW ACCESS ==========

    async def _window(self) -> Optional[WindowHandle]:
        if self._window_override is not None:
            return None if self.driver.is_closed(self._window_override) else self._window_override
        return await self.correlator.active(self.concern)

    async def _require_window(self) -> WindowHandle:
        window = await self._window()
        if window is None:
            raise ElementNotFoundError("Active window is gone")
        return window

    def _provider_finished(self) -> StepResult:
        """A nested flow whose window closed itself has handed control back."""
        self._jump = FlowState.VERIFYING
        return StepResult.skip("provider window closed")

    # ========== STEPS ==========

    async def _load_surface(self, credentials: Credentials) -> StepResult:
        window = await self._window()
        if window is None:
            if self.nested:
                return self._provider_finished()
            return StepResult.fail(ErrorKind.NAVIGATION_FAILURE, "No window to load the login surface in")

        if not self.nested:
            result = await self._navigate(window)
            if result is not None:
                return result

        for hook in self.flow.hooks.before_identifier:
            await self._run_hook(hook, window)
        return StepResult.advance()

    async def _navigate(self, window: WindowHandle) -> Optional[StepResult]:
        url = self.flow.login_url
        timeout_ms = self.engine.navigation_timeout_ms
        try:
            await self.driver.navigate(window, url, self.engine.navigation_wait_until, timeout_ms)
            return None
        except NavigationError as e:
            self.logger.warning("Navigation failed, retrying with relaxed wait", url=url, error=str(e))

        try:
            await self.driver.navigate(window, url, self.engine.relaxed_wait_until, timeout_ms)
            return None
        except NavigationError as e:
            current = await self._safe_url(window)
            if current and self.flow.is_same_site(current):
                self.logger.warning("Navigation incomplete but login host reached", url=current)
                return None
            return StepResult.fail(ErrorKind.NAVIGATION_FAILURE, f"{e} (URL final: {current or url})")

    async def _clear_challenges(self, credentials: Credentials) -> StepResult:
        window = await self._window()
        if window is None:
            return self._provider_finished() if self.nested else StepResult.fail(
                ErrorKind.ELEMENT_NOT_FOUND, "Active window is gone"
            )

        outcome = await self.challenges.detect_and_resolve(SearchScope(window))
        if not outcome.resolved:
            return StepResult.fail(ErrorKind.CHALLENGE_UNRESOLVED, outcome.detail)

        provider = self.flow.delegated
        if provider is not None and provider.trigger_on_surface:
            if await self._activate_delegation(window):
                self._jump = FlowState.SUBMITTED
                return StepResult.skip("delegated sign-in triggered from the login surface")
            self.logger.warning("Delegated sign-in trigger not found, continuing with credentials")

        return StepResult.advance(f"{len(outcome.challenges)} challenge(s) cleared")

    async def _enter_identifier(self, credentials: Credentials) -> StepResult:
        window = await self._window()
        if window is None and self.nested:
            return self._provider_finished()
        window = await self._require_window()

        control = await self.resolver.resolve(Role.IDENTIFIER, SearchScope(window))
        if control is None:
            if await self.resolver.is_visible(Role.SECRET, SearchScope(window)):
                # Identifier remembered by the site; only the secret is asked for.
                return StepResult.skip("identifier already known")
            return StepResult.retry("Identifier field not found")

        await self._fill(control.element, credentials.identifier)
        self.logger.info("Identifier entered", identifier=credentials.masked_identifier, strategy=control.locator.describe())
        return StepResult.advance()

    async def _reveal_secret(self, credentials: Credentials) -> StepResult:
        window = await self._window()
        if window is None and self.nested:
            return self._provider_finished()
        window = await self._require_window()
        scope = SearchScope(window)

        if await self.resolver.is_visible(Role.SECRET, scope):
            return StepResult.skip("secret field already visible")

        await self._activate_continue(window)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.engine.reveal_timeout_seconds
        polls = 0
        challenge_passes = 0

        while loop.time() < deadline:
            await asyncio.sleep(self.engine.reveal_poll_seconds)
            polls += 1

            window = await self._window()
            if window is None:
                if self.nested:
                    return self._provider_finished()
                return StepResult.fail(ErrorKind.ELEMENT_NOT_FOUND, "Active window is gone")
            scope = SearchScope(window)

            if await self.resolver.is_visible(Role.SECRET, scope):
                self.logger.info("Secret field revealed", polls=polls)
                return StepResult.advance()

            if challenge_passes < self.settings.challenge.max_attempts and await self.challenges.detect(scope):
                challenge_passes += 1
                outcome = await self.challenges.detect_and_resolve(scope)
                if not outcome.resolved:
                    return StepResult.fail(ErrorKind.CHALLENGE_UNRESOLVED, outcome.detail)
                continue

            if await self._delegation_offered(scope):
                if await self._activate_delegation(window):
                    self._jump = FlowState.SUBMITTED
                    return StepResult.skip("delegated sign-in offered instead of a secret field")

            if polls % self.engine.reveal_retry_every == 0:
                self.logger.debug("Secret field still hidden, re-activating continue", polls=polls)
                await self._activate_continue(window)

        current = await self._safe_url(window)
        return StepResult.fail(
            ErrorKind.ELEMENT_NOT_FOUND,
            f"Secret field not visible after {self.engine.reveal_timeout_seconds:g}s (URL final: {current})",
        )

    async def _enter_secret(self, credentials: Credentials) -> StepResult:
        window = await self._window()
        if window is None and self.nested:
            return self._provider_finished()
        window = await self._require_window()

        control = await self.resolver.resolve(Role.SECRET, SearchScope(window))
        if control is None:
            return StepResult.retry("Secret field not found")

        await self._fill(control.element, credentials.secret)
        self.logger.info("Secret entered", strategy=control.locator.describe())
        return StepResult.advance()

    async def _submit(self, credentials: Credentials) -> StepResult:
        window = await self._window()
        if window is None and self.nested:
            return self._provider_finished()
        window = await self._require_window()

        control = await self.resolver.resolve(Role.SUBMIT, SearchScope(window))
        if control is not None:
            await self.challenges.activate(control.element)
            self.logger.info("Credentials submitted", strategy=control.locator.describe())
        else:
            await self.driver.press_key(window, "Enter")
            self.logger.info("Credentials submitted with Enter")

        for hook in self.flow.hooks.after_submit:
            await self._run_hook(hook, window)
        return StepResult.advance()

    async def _await_delegation(self, credentials: Credentials) -> StepResult:
        provider = self.flow.delegated
        if self.nested or provider is None:
            return StepResult.skip("no delegated provider")

        loop = asyncio.get_running_loop()
        wait = self.engine.delegated_window_timeout_seconds if self._delegation_triggered else 0
        deadline = loop.time() + wait

        while True:
            await self.correlator.settle()

            delegated = await self.correlator.active(Concern.DELEGATED)
            if delegated is not None:
                self._delegated_window = delegated
                self._delegated_in_place = False
                self._jump = FlowState.DELEGATED_FLOW
                return StepResult.advance(f"delegated window adopted for {provider.name}")

            primary = await self._window()
            if primary is not None and provider.matches(await self._safe_url(primary)):
                self._delegated_window = primary
                self._delegated_in_place = True
                self._jump = FlowState.DELEGATED_FLOW
                return StepResult.advance(f"primary window redirected to {provider.name}")

            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            await self.correlator.wait_for_delegated(min(remaining, self.settings.windows.poll_seconds))

        if self._delegation_triggered:
            self.logger.warning("Delegated sign-in triggered but no provider window appeared", provider=provider.name)
        return StepResult.skip("no delegated window")

    async def _run_delegated(self, credentials: Credentials) -> StepResult:
        provider = self.flow.delegated
        window = self._delegated_window
        self.logger.info(
            "Handing over to delegated provider",
            provider=provider.name,
            window_id=window.id,
            in_place=self._delegated_in_place,
        )

        nested = StepSequencer(
            self.driver,
            provider.flow,
            self.correlator,
            settings=self.settings,
            provider=provider,
            window=window if self._delegated_in_place else None,
        )
        try:
            outcome = await nested.run(credentials)
        finally:
            if not self._delegated_in_place:
                await self.correlator.release(Concern.DELEGATED)
            self._delegated_window = None

        if not outcome.succeeded:
            return StepResult.fail(outcome.error, f"{provider.name}: {outcome.detail}")
        return StepResult.advance(f"{provider.name} sign-in completed")

    async def _verify(self, credentials: Credentials) -> StepResult:
        if self.nested:
            return await self._await_provider_completion()

        verdict = await self.verifier.await_outcome(self._window, self.flow)
        self.verdict = verdict
        if verdict.kind is VerdictKind.SUCCESS:
            return StepResult.advance()
        if verdict.kind is VerdictKind.AUTH_REJECTED:
            return StepResult.fail(ErrorKind.AUTH_REJECTED, verdict.detail)
        return StepResult.fail(ErrorKind.AUTH_TIMEOUT, verdict.detail)

    async def _await_provider_completion(self) -> StepResult:
        """Poll until the provider window closes itself or leaves the provider domain."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.engine.delegated_completion_timeout_seconds
        url = ""

        while True:
            window = await self._window()
            if window is None:
                return StepResult.advance("provider window closed")

            url = await self._safe_url(window) or url
            if url and not self.provider.matches(url):
                return StepResult.advance("provider redirected back")

            banner = await self.verifier.rejection_banner(window, self.flow)
            if banner:
                return StepResult.fail(ErrorKind.AUTH_REJECTED, f"{banner} (URL final: {url})")

            if loop.time() >= deadline:
                return StepResult.fail(
                    ErrorKind.AUTH_TIMEOUT,
                    f"Provider did not complete within {self.engine.delegated_completion_timeout_seconds:g}s (URL final: {url})",
                )
            await asyncio.sleep(self.settings.verifier.poll_interval_seconds)

    # ========== HELPERS ==========

    async def _fill(self, element, value: str) -> None:
        try:
            await element.scroll_into_view()
        except Exception as e:
            self.logger.debug("Scroll into view failed", error=str(e))
        await element.clear()
        await element.type_text(value, self.engine.typing_delay_ms)

    async def _activate_continue(self, window: WindowHandle) -> None:
        control = await self.resolver.resolve(Role.CONTINUE, SearchScope(window))
        if control is not None:
            try:
                await self.challenges.activate(control.element)
                self.logger.info("Continue activated", strategy=control.locator.describe())
                return
            except Exception as e:
                self.logger.debug("Continue activation failed, pressing Enter", error=str(e))
        await self.driver.press_key(window, "Enter")
        self.logger.info("Identifier submitted with Enter")

    async def _delegation_offered(self, scope: SearchScope) -> bool:
        """A delegated trigger is on screen once the identifier step is gone."""
        provider = self.flow.delegated
        if provider is None or not provider.trigger:
            return False
        if await self.resolver.is_visible(Role.IDENTIFIER, scope):
            return False
        return await self.resolver.resolve_first(provider.trigger, scope) is not None

    async def _activate_delegation(self, window: WindowHandle) -> bool:
        provider = self.flow.delegated
        control = await self.resolver.resolve_first(provider.trigger, SearchScope(window))
        if control is None:
            return False
        await self.challenges.activate(control.element)
        self._delegation_triggered = True
        self.logger.info("Delegated sign-in triggered", provider=provider.name, strategy=control.locator.describe())
        return True

    async def _run_hook(self, hook, window: WindowHandle) -> None:
        try:
            await hook(self.driver, window, self.flow)
        except Exception as e:
            self.logger.warning("Flow hook failed", hook=getattr(hook, "__name__", repr(hook)), error=str(e))

    async def _safe_url(self, window: Optional[WindowHandle]) -> str:
        if window is None:
            return ""
        try:
            return await self.driver.current_url(window)
        except Exception:
            return ""
