"""
Sequential multi-platform authentication.

Platforms are attempted one after another with a cooldown between
consecutive attempts, never in parallel, so that attempts are not
correlated by timing across platforms.
"""

import asyncio
from typing import Dict, Iterable, Optional

from sesame.config.settings import Settings, get_settings
from sesame.core.models import Session
from sesame.flows.platforms import get_flow
from sesame.orchestrator.session_manager import DriverFactory, SessionLifecycleManager
from sesame.utils.logging import LoggingMixin


class BatchAuthenticator(LoggingMixin):
    """Runs one Session Lifecycle Manager per platform, in order."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        driver_factory: Optional[DriverFactory] = None,
        cooldown_seconds: Optional[float] = None,
        headless: Optional[bool] = None,
    ):
        super().__init__()
        self.setup_logging("batch_authenticator")
        self.settings = settings or get_settings()
        self.driver_factory = driver_factory
        self.headless = headless
        self.cooldown_seconds = self.settings.engine.cooldown_seconds if cooldown_seconds is None else cooldown_seconds

    async def run_all(self, platforms: Iterable[str]) -> Dict[str, Session]:
        """
        Authenticate to each platform sequentially.

        Unknown platforms and platforms without credentials are skipped.

        Returns:
            Mapping of platform name to its Session
        """
        sessions: Dict[str, Session] = {}
        attempted = 0

        for name in platforms:
            try:
                flow = get_flow(name)
            except KeyError as e:
                self.logger.warning("Skipping unknown platform", platform=name, error=str(e))
                continue

            credentials = self.settings.credentials.for_platform(flow.name)
            if credentials is None:
                self.logger.warning("Skipping platform without credentials", platform=flow.name)
                continue

            if attempted:
                self.logger.info("Cooling down before next platform", seconds=self.cooldown_seconds, platform=flow.name)
                await asyncio.sleep(self.cooldown_seconds)

            manager = SessionLifecycleManager(self.driver_factory, settings=self.settings, headless=self.headless)
            sessions[flow.name] = await manager.run(flow, credentials)
            attempted += 1

        authenticated = [name for name, session in sessions.items() if session.authenticated]
        self.logger.info("Batch finished", attempted=attempted, authenticated=authenticated)
        return sessions
