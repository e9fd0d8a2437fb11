"""
Unit tests for the core data model.
"""

import json

import pytest

from sesame.core.errors import ElementNotFoundError, LaunchError, NavigationError, SesameError
from sesame.core.models import (
    Challenge,
    ChallengeKind,
    Cookie,
    Credentials,
    ErrorKind,
    Session,
    StepOutcome,
    StepResult,
    mask_identifier,
)
from sesame.tools.browser_driver import FrameInfo


@pytest.mark.unit
class TestSession:
    """Test cases for the Session invariants."""

    def test_succeeded_session(self):
        cookie = Cookie(name="sid", value="abc", domain="example.com")
        session = Session.succeeded([cookie], "Mozilla/5.0")

        assert session.authenticated
        assert session.error is None
        assert session.cookies == (cookie,)

    def test_failed_session(self):
        session = Session.failed(ErrorKind.AUTH_TIMEOUT, "no marker", user_agent="UA")

        assert not session.authenticated
        assert session.cookies == ()
        assert session.error is ErrorKind.AUTH_TIMEOUT
        assert session.error_detail == "no marker"

    def test_authenticated_session_requires_cookies(self):
        with pytest.raises(ValueError):
            Session(cookies=(), user_agent="UA", authenticated=True)

    def test_authenticated_session_cannot_carry_error(self):
        cookie = Cookie(name="sid", value="abc", domain="example.com")
        with pytest.raises(ValueError):
            Session(cookies=(cookie,), user_agent="UA", authenticated=True, error=ErrorKind.AUTH_REJECTED)

    def test_failed_session_requires_error_kind(self):
        with pytest.raises(ValueError):
            Session(cookies=(), user_agent="UA", authenticated=False)

    def test_failed_session_cannot_carry_cookies(self):
        cookie = Cookie(name="sid", value="abc", domain="example.com")
        with pytest.raises(ValueError):
            Session(cookies=(cookie,), user_agent="UA", authenticated=False, error=ErrorKind.AUTH_TIMEOUT)

    def test_session_is_immutable(self):
        session = Session.failed(ErrorKind.AUTH_TIMEOUT)
        with pytest.raises(AttributeError):
            session.authenticated = True

    def test_to_dict_is_json_serialisable(self):
        cookie = Cookie(name="sid", value="abc", domain="example.com", http_only=True, same_site="Lax")
        data = Session.succeeded([cookie], "UA").to_dict()

        assert data["authenticated"] is True
        assert data["userAgent"] == "UA"
        assert data["cookies"][0]["httpOnly"] is True
        assert data["cookies"][0]["sameSite"] == "Lax"
        assert data["error"] is None
        json.dumps(data)

    def test_failed_to_dict_carries_error_value(self):
        data = Session.failed(ErrorKind.CHALLENGE_UNRESOLVED, "checkbox").to_dict()

        assert data["error"] == "ChallengeUnresolved"
        assert data["errorDetails"] == "checkbox"
        assert data["cookies"] == []


@pytest.mark.unit
class TestErrorKind:
    """Test cases for the failure taxonomy."""

    @pytest.mark.parametrize("kind", [ErrorKind.AUTH_TIMEOUT, ErrorKind.CHALLENGE_UNRESOLVED])
    def test_inconclusive_kinds(self, kind):
        assert kind.is_inconclusive

    @pytest.mark.parametrize(
        "kind",
        [ErrorKind.AUTH_REJECTED, ErrorKind.LAUNCH_FAILURE, ErrorKind.ELEMENT_NOT_FOUND, ErrorKind.UNEXPECTED_EXCEPTION],
    )
    def test_conclusive_kinds(self, kind):
        assert not kind.is_inconclusive

    def test_exceptions_carry_their_kind(self):
        assert LaunchError("x").kind is ErrorKind.LAUNCH_FAILURE
        assert NavigationError("x").kind is ErrorKind.NAVIGATION_FAILURE
        assert ElementNotFoundError("x").kind is ErrorKind.ELEMENT_NOT_FOUND
        assert SesameError("x").kind is ErrorKind.UNEXPECTED_EXCEPTION


@pytest.mark.unit
class TestCredentials:
    """Credentials never leak the secret."""

    def test_repr_masks_identifier_and_hides_secret(self):
        credentials = Credentials(identifier="someone@example.com", secret="hunter2")

        text = repr(credentials)
        assert "hunter2" not in text
        assert "someone@example.com" not in text
        assert "som***@example.com" in text

    def test_mask_identifier(self):
        assert mask_identifier("ab@example.com") == "ab***@example.com"
        assert mask_identifier("username") == "use***"
        assert mask_identifier("") == ""


@pytest.mark.unit
class TestCookie:
    def test_from_playwright_mapping(self):
        cookie = Cookie.from_mapping({
            "name": "sid",
            "value": "abc",
            "domain": ".example.com",
            "path": "/",
            "expires": 1700000000,
            "httpOnly": True,
            "secure": True,
            "sameSite": "None",
        })

        assert cookie.http_only and cookie.secure
        assert cookie.same_site == "None"
        assert cookie.to_dict()["expires"] == 1700000000


@pytest.mark.unit
class TestStepResult:
    def test_failure_requires_kind(self):
        with pytest.raises(ValueError):
            StepResult(StepOutcome.FAILURE)

    def test_only_failure_carries_kind(self):
        with pytest.raises(ValueError):
            StepResult(StepOutcome.ADVANCE, failure=ErrorKind.AUTH_TIMEOUT)

    def test_constructors(self):
        assert StepResult.advance().outcome is StepOutcome.ADVANCE
        assert StepResult.retry("again").detail == "again"
        assert StepResult.skip().outcome is StepOutcome.SKIP
        assert StepResult.fail(ErrorKind.AUTH_REJECTED).is_terminal
        assert not StepResult.retry().is_terminal


@pytest.mark.unit
class TestChallenge:
    def test_location_main_document(self):
        assert Challenge(ChallengeKind.CHECKBOX).location == "main"
        assert Challenge(ChallengeKind.CHECKBOX, frame=FrameInfo(0, "https://example.com")).location == "main"

    def test_location_nested_frame(self):
        frame = FrameInfo(2, "https://www.google.com/recaptcha/api2/anchor")
        assert Challenge(ChallengeKind.CHECKBOX, frame=frame).location == frame.url
