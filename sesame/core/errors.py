"""
Exception hierarchy for Sesame.

Exceptions are raised by the browser driver and the engine components and
converted into StepResults or Session failures before they cross the
``SessionLifecycleManager.run`` boundary.
"""

from sesame.core.models import ErrorKind


class SesameError(Exception):
    """Base exception for Sesame errors."""

    kind = ErrorKind.UNEXPECTED_EXCEPTION


class DriverError(SesameError):
    """Raised when the browser driver cannot complete an operation."""
    pass


class LaunchError(DriverError):
    """Raised when the browser instance cannot be acquired."""

    kind = ErrorKind.LAUNCH_FAILURE


class NavigationError(DriverError):
    """Raised when navigation fails."""

    kind = ErrorKind.NAVIGATION_FAILURE


class ElementNotFoundError(SesameError):
    """Raised when a control cannot be resolved or interacted with."""

    kind = ErrorKind.ELEMENT_NOT_FOUND
