"""
Session Lifecycle Manager.

Owns the browser and every window of one authentication attempt, runs the
Step Sequencer and converts its outcome into a Session. This is the only
place where arbitrary exceptions are caught; ``run`` never raises.
"""

from typing import Callable, Optional

from sesame.config.settings import Settings, get_settings
from sesame.core.models import Credentials, ErrorKind, Session
from sesame.flows.definitions import FlowDefinition
from sesame.orchestrator.step_sequencer import StepSequencer
from sesame.services.diagnostics_recorder import DiagnosticsRecorder
from sesame.services.window_correlator import Concern, WindowCorrelator
from sesame.tools.browser_driver import BrowserDriver, WindowHandle
from sesame.utils.logging import LoggingMixin, LogTimer


DriverFactory = Callable[[], BrowserDriver]


def default_driver_factory(headless: Optional[bool] = None) -> DriverFactory:
    """Factory producing a fresh PlaywrightDriver per attempt."""

    def factory() -> BrowserDriver:
        from sesame.tools.playwright_driver import PlaywrightDriver

        return PlaywrightDriver(headless=headless)

    return factory


class SessionLifecycleManager(LoggingMixin):
    """
    Runs one authentication attempt end to end.

    Every window opened during the attempt, by the engine or by the site, is
    closed and the browser is shut down before ``run`` returns.
    """

    def __init__(
        self,
        driver_factory: Optional[DriverFactory] = None,
        settings: Optional[Settings] = None,
        headless: Optional[bool] = None,
    ):
        super().__init__()
        self.setup_logging("session_manager")
        self.settings = settings or get_settings()
        self.driver_factory = driver_factory or default_driver_factory(headless)

    async def run(self, flow: FlowDefinition, credentials: Credentials) -> Session:
        """
        Authenticate to one platform.

        Args:
            flow: Flow definition of the platform
            credentials: Credentials to sign in with

        Returns:
            An authenticated Session, or a failed one carrying the error
            kind, the address at failure time and a diagnostics snapshot
        """
        driver: Optional[BrowserDriver] = None
        correlator: Optional[WindowCorrelator] = None

        self.logger.info("Starting authentication attempt", flow=flow.name, identifier=credentials.masked_identifier)
        with LogTimer(self.logger, "authentication attempt", flow=flow.name):
            try:
                try:
                    driver = self.driver_factory()
                    await driver.launch()
                    primary = await driver.open_window()
                except Exception as e:
                    self.log_error("launch", e, flow=flow.name)
                    return Session.failed(ErrorKind.LAUNCH_FAILURE, f"Failed to start browser: {e}")

                correlator = WindowCorrelator(driver, flow, self.settings.windows)
                correlator.adopt_primary(primary)
                driver.on_window_created(correlator.observe)

                sequencer = StepSequencer(driver, flow, correlator, settings=self.settings)
                outcome = await sequencer.run(credentials)

                if outcome.succeeded:
                    verdict = outcome.verdict
                    self.logger.info("Authentication succeeded", flow=flow.name, cookies=len(verdict.cookies))
                    return Session.succeeded(verdict.cookies, verdict.user_agent)

                window = await correlator.active(Concern.PRIMARY)
                return await self._failed(
                    driver, window, flow, outcome.error, outcome.detail,
                    context=f"{flow.name}: {outcome.error.value} after {outcome.history[-2].value}",
                )

            except Exception as e:
                self.log_error("run", e, flow=flow.name)
                window = None
                if correlator is not None:
                    window = await self._safe_active(correlator)
                return await self._failed(
                    driver, window, flow, ErrorKind.UNEXPECTED_EXCEPTION, f"{type(e).__name__}: {e}",
                    context=f"{flow.name}: unexpected exception",
                )

            finally:
                await self._teardown(driver, correlator)

    async def _failed(
        self,
        driver: Optional[BrowserDriver],
        window: Optional[WindowHandle],
        flow: FlowDefinition,
        error: ErrorKind,
        detail: Optional[str],
        context: str,
    ) -> Session:
        diagnostics = None
        user_agent = self.settings.browser.user_agent
        if driver is not None:
            recorder = DiagnosticsRecorder(driver, self.settings.diagnostics.screenshot_dir)
            diagnostics = await recorder.snapshot(window, context, flow)
            if window is not None and not driver.is_closed(window):
                try:
                    user_agent = await driver.user_agent(window)
                except Exception as e:
                    self.logger.debug("User agent unavailable", error=str(e))

        detail = detail or error.value
        if diagnostics is not None and diagnostics.url and "URL final:" not in detail:
            detail = f"{detail} (URL final: {diagnostics.url})"

        self.logger.warning(
            "Authentication failed",
            flow=flow.name,
            error=error.value,
            inconclusive=error.is_inconclusive,
            detail=detail,
        )
        return Session.failed(error, detail, user_agent=user_agent, diagnostics=diagnostics)

    async def _safe_active(self, correlator: WindowCorrelator) -> Optional[WindowHandle]:
        try:
            return await correlator.active(Concern.PRIMARY)
        except Exception:
            return None

    async def _teardown(self, driver: Optional[BrowserDriver], correlator: Optional[WindowCorrelator]) -> None:
        """Cancel classification tasks, close every window and release the browser."""
        if correlator is not None:
            correlator.cancel()
            try:
                await correlator.settle()
            except Exception as e:
                self.logger.warning("Window classification did not settle", error=str(e))

        if driver is None:
            return

        if correlator is not None:
            for window in driver.open_windows():
                window_class = correlator.classification(window)
                self.logger.debug(
                    "Closing window",
                    window_id=window.id,
                    window_class=window_class.value if window_class else None,
                )

        try:
            await driver.close_all()
        except Exception as e:
            self.logger.warning("Failed to close windows", error=str(e))

        try:
            await driver.shutdown()
        except Exception as e:
            self.logger.warning("Failed to shut down browser", error=str(e))
