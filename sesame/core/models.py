"""
Core data model for Sesame.

Value objects exchanged between the engine components: credentials, the
Session result, step results and challenge descriptors.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple


class ErrorKind(str, Enum):
    """Failure taxonomy surfaced on a Session."""

    LAUNCH_FAILURE = "LaunchFailure"
    NAVIGATION_FAILURE = "NavigationFailure"
    ELEMENT_NOT_FOUND = "ElementNotFound"
    CHALLENGE_UNRESOLVED = "ChallengeUnresolved"
    AUTH_REJECTED = "AuthRejected"
    AUTH_TIMEOUT = "AuthTimeout"
    UNEXPECTED_EXCEPTION = "UnexpectedException"

    @property
    def is_inconclusive(self) -> bool:
        """True when the failure says nothing about the credentials."""
        return self in (ErrorKind.AUTH_TIMEOUT, ErrorKind.CHALLENGE_UNRESOLVED)


def mask_identifier(identifier: str) -> str:
    """Mask an email-like identifier for logging: ``abc***@example.com``."""
    if not identifier:
        return ""
    local, sep, domain = identifier.partition("@")
    return f"{local[:3]}***{sep}{domain}"


@dataclass(frozen=True)
class Credentials:
    """Sign-in credentials for one platform. Never logged in full."""

    identifier: str
    secret: str = field(repr=False)
    username: Optional[str] = None

    @property
    def masked_identifier(self) -> str:
        return mask_identifier(self.identifier)

    def __repr__(self) -> str:
        return f"Credentials(identifier={self.masked_identifier!r}, username={self.username!r})"


@dataclass(frozen=True)
class Cookie:
    """A single browser cookie in a transport-neutral shape."""

    name: str
    value: str
    domain: str
    path: str = "/"
    expires: float = -1
    http_only: bool = False
    secure: bool = False
    same_site: Optional[str] = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Cookie":
        """Build a cookie from a Playwright-style cookie dict."""
        return cls(
            name=data["name"],
            value=data["value"],
            domain=data.get("domain", ""),
            path=data.get("path", "/"),
            expires=data.get("expires", -1),
            http_only=data.get("httpOnly", False),
            secure=data.get("secure", False),
            same_site=data.get("sameSite"),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "name": self.name,
            "value": self.value,
            "domain": self.domain,
            "path": self.path,
            "expires": self.expires,
            "httpOnly": self.http_only,
            "secure": self.secure,
        }
        if self.same_site:
            data["sameSite"] = self.same_site
        return data


@dataclass(frozen=True)
class Session:
    """
    Portable result of one authentication attempt.

    Created once through ``succeeded`` or ``failed`` and never mutated.
    An authenticated session always carries cookies and no error; a failed
    one always carries an error kind and no cookies.
    """

    cookies: Tuple[Cookie, ...]
    user_agent: str
    authenticated: bool
    error: Optional[ErrorKind] = None
    error_detail: Optional[str] = None
    diagnostics: Optional[Any] = None

    def __post_init__(self):
        if self.authenticated:
            if self.error is not None:
                raise ValueError("An authenticated session cannot carry an error")
            if not self.cookies:
                raise ValueError("An authenticated session must carry cookies")
        else:
            if self.error is None:
                raise ValueError("A failed session must carry an error kind")
            if self.cookies:
                raise ValueError("A failed session cannot carry cookies")

    @classmethod
    def succeeded(cls, cookies, user_agent: str) -> "Session":
        return cls(cookies=tuple(cookies), user_agent=user_agent, authenticated=True)

    @classmethod
    def failed(
        cls,
        error: ErrorKind,
        detail: Optional[str] = None,
        user_agent: str = "",
        diagnostics: Optional[Any] = None,
    ) -> "Session":
        return cls(
            cookies=(),
            user_agent=user_agent,
            authenticated=False,
            error=error,
            error_detail=detail,
            diagnostics=diagnostics,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the session for export (JSON-safe)."""
        diagnostics = self.diagnostics
        if diagnostics is not None and hasattr(diagnostics, "to_dict"):
            diagnostics = diagnostics.to_dict()
        return {
            "authenticated": self.authenticated,
            "userAgent": self.user_agent,
            "cookies": [cookie.to_dict() for cookie in self.cookies],
            "error": self.error.value if self.error else None,
            "errorDetails": self.error_detail,
            "diagnostics": diagnostics,
        }


class StepOutcome(str, Enum):
    ADVANCE = "advance"
    RETRY = "retry"
    SKIP = "skip"
    FAILURE = "failure"


@dataclass(frozen=True)
class StepResult:
    """Outcome of one sequencer step; exactly one outcome at a time."""

    outcome: StepOutcome
    failure: Optional[ErrorKind] = None
    detail: Optional[str] = None

    def __post_init__(self):
        if (self.outcome is StepOutcome.FAILURE) != (self.failure is not None):
            raise ValueError("A failure kind is required for, and only for, FAILURE results")

    @classmethod
    def advance(cls, detail: Optional[str] = None) -> "StepResult":
        return cls(StepOutcome.ADVANCE, detail=detail)

    @classmethod
    def retry(cls, detail: Optional[str] = None) -> "StepResult":
        return cls(StepOutcome.RETRY, detail=detail)

    @classmethod
    def skip(cls, detail: Optional[str] = None) -> "StepResult":
        return cls(StepOutcome.SKIP, detail=detail)

    @classmethod
    def fail(cls, kind: ErrorKind, detail: Optional[str] = None) -> "StepResult":
        return cls(StepOutcome.FAILURE, failure=kind, detail=detail)

    @property
    def is_terminal(self) -> bool:
        return self.outcome is StepOutcome.FAILURE


class ChallengeKind(str, Enum):
    CHECKBOX = "checkbox"
    IMAGE_GRID = "image-grid"
    SECURITY_KEY_PROMPT = "security-key-prompt"
    ERROR_BANNER = "error-banner"


@dataclass
class Challenge:
    """
    A detected anti-automation artifact.

    ``frame`` is None for the main document, otherwise the FrameInfo the
    artifact was found in. ``element`` is the control used to remediate it
    (checkbox, close/cancel button, or grid container).
    """

    kind: ChallengeKind
    frame: Optional[Any] = None
    resolved: bool = False
    detail: Optional[str] = None
    element: Optional[Any] = field(default=None, repr=False, compare=False)

    @property
    def location(self) -> str:
        if self.frame is None or getattr(self.frame, "is_main", False):
            return "main"
        return getattr(self.frame, "url", "") or f"frame[{getattr(self.frame, 'index', '?')}]"
