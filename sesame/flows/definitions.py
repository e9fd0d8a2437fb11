"""
Declarative flow definitions.

A FlowDefinition describes how to sign in to one platform: where the login
surface lives, the ordered locator strategies for every semantic role, how
to recognise success or rejection, and an optional delegated identity
provider. The engine itself stays selector-agnostic.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, Mapping, Optional, Pattern, Tuple
from urllib.parse import urlparse


class Role(str, Enum):
    """Semantic roles the Element Resolution Engine can resolve."""

    IDENTIFIER = "identifier"
    SECRET = "secret"
    CONTINUE = "continue"
    SUBMIT = "submit"
    SUCCESS_MARKER = "success-marker"
    REJECTION_BANNER = "rejection-banner"


class LocatorKind(str, Enum):
    CSS = "css"
    ROLE = "role"
    PLACEHOLDER = "placeholder"
    LABEL = "label"
    AUTOCOMPLETE = "autocomplete"
    TEXT = "text"
    TYPE = "type"


@dataclass(frozen=True)
class Locator:
    """
    One locator strategy.

    ``value`` is a CSS selector (css), an ARIA role (role), a regex
    (placeholder, label, text), an autocomplete token (autocomplete) or an
    input type (type). ``name`` is the accessible-name regex for role
    locators; ``tag`` narrows text locators to a CSS selector.
    """

    kind: LocatorKind
    value: str
    name: Optional[str] = None
    tag: Optional[str] = None

    def describe(self) -> str:
        if self.kind is LocatorKind.ROLE and self.name:
            return f"role={self.value}[name~/{self.name}/]"
        if self.kind is LocatorKind.TEXT and self.tag:
            return f"text~/{self.value}/ in {self.tag}"
        return f"{self.kind.value}={self.value}"


def css(selector: str) -> Locator:
    return Locator(LocatorKind.CSS, selector)


def aria(role: str, name: Optional[str] = None) -> Locator:
    return Locator(LocatorKind.ROLE, role, name=name)


def placeholder(pattern: str) -> Locator:
    return Locator(LocatorKind.PLACEHOLDER, pattern)


def label(pattern: str) -> Locator:
    return Locator(LocatorKind.LABEL, pattern)


def autocomplete(token: str) -> Locator:
    return Locator(LocatorKind.AUTOCOMPLETE, token)


def text(pattern: str, tag: str = "button, input[type='submit'], [role='button'], a") -> Locator:
    return Locator(LocatorKind.TEXT, pattern, tag=tag)


def input_type(kind: str) -> Locator:
    return Locator(LocatorKind.TYPE, kind)


def keyword_locators(keywords) -> Tuple[Locator, ...]:
    """Build a single case-insensitive text locator matching any keyword."""
    if not keywords:
        return ()
    pattern = "|".join(re.escape(k) for k in keywords)
    return (text(pattern),)


def _compile(patterns) -> Tuple[Pattern, ...]:
    return tuple(re.compile(p, re.IGNORECASE) for p in patterns)


@dataclass(frozen=True)
class SuccessPredicate:
    """
    Success conditions for a flow.

    Satisfied when the address no longer matches the login surface AND at
    least one marker is visible or the address is in the authenticated area.
    """

    login_url_patterns: Tuple[str, ...]
    authenticated_url_patterns: Tuple[str, ...] = ()
    markers: Tuple[Locator, ...] = ()

    def is_login_surface(self, url: str) -> bool:
        return any(p.search(url or "") for p in _compile(self.login_url_patterns))

    def matches_authenticated_area(self, url: str) -> bool:
        return any(p.search(url or "") for p in _compile(self.authenticated_url_patterns))


@dataclass(frozen=True)
class ChallengeProfile:
    """Locator and text tables used to detect and clear challenges."""

    captcha_frame_markers: Tuple[str, ...] = ()
    frame_checkboxes: Tuple[Locator, ...] = ()
    page_checkboxes: Tuple[Locator, ...] = ()
    checkbox_label_patterns: Tuple[str, ...] = ()
    image_grid_patterns: Tuple[str, ...] = ()
    image_tiles: Tuple[Locator, ...] = ()
    image_verify: Tuple[Locator, ...] = ()
    security_key_url_markers: Tuple[str, ...] = ()
    security_key_text_patterns: Tuple[str, ...] = ()
    security_key_cancel: Tuple[Locator, ...] = ()
    banner_text_patterns: Tuple[str, ...] = ()
    banner_close: Tuple[Locator, ...] = ()


Hook = Callable[..., Awaitable[None]]


@dataclass(frozen=True)
class FlowHooks:
    """
    Optional coroutine hooks run by the sequencer.

    Each hook is awaited as ``hook(driver, window, flow)``.
    """

    before_identifier: Tuple[Hook, ...] = ()
    after_submit: Tuple[Hook, ...] = ()


@dataclass(frozen=True)
class DelegatedProvider:
    """A third-party identity provider the flow hands off to."""

    name: str
    domain_patterns: Tuple[str, ...]
    flow: "FlowDefinition"
    trigger: Tuple[Locator, ...] = ()
    trigger_on_surface: bool = False

    def matches(self, url: str) -> bool:
        return any(p.search(url or "") for p in _compile(self.domain_patterns))


@dataclass(frozen=True)
class FlowDefinition:
    """Per-platform sign-in configuration. Read-only during execution."""

    name: str
    login_url: str
    strategies: Mapping[Role, Tuple[Locator, ...]]
    success: SuccessPredicate
    challenges: ChallengeProfile = field(default_factory=ChallengeProfile)
    delegated: Optional[DelegatedProvider] = None
    hooks: FlowHooks = field(default_factory=FlowHooks)
    description: str = ""

    def strategies_for(self, role: Role) -> Tuple[Locator, ...]:
        return tuple(self.strategies.get(role, ()))

    @property
    def host(self) -> str:
        return urlparse(self.login_url).hostname or ""

    def is_same_site(self, url: str) -> bool:
        """True when ``url`` is served by the flow's own registrable domain."""
        host = urlparse(url or "").hostname or ""
        if not host or not self.host:
            return False
        own = ".".join(self.host.split(".")[-2:])
        return host == own or host.endswith("." + own)


def merge_strategies(
    overrides: Mapping[Role, Tuple[Locator, ...]],
    defaults: Mapping[Role, Tuple[Locator, ...]],
) -> Dict[Role, Tuple[Locator, ...]]:
    """
    Combine platform-specific strategies with the generic tables.

    Platform strategies come first so that more specific attribute matches
    win the tie-break over the generic fallbacks.
    """
    merged: Dict[Role, Tuple[Locator, ...]] = {}
    for role in Role:
        specific = tuple(overrides.get(role, ()))
        generic = tuple(l for l in defaults.get(role, ()) if l not in specific)
        if specific or generic:
            merged[role] = specific + generic
    return merged
