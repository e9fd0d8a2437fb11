"""
Platform flow registry.

Declarative sign-in definitions for every supported platform plus the Google
identity provider used for delegated sign-in.
"""

from typing import Dict, List

from sesame.flows.definitions import (
    DelegatedProvider,
    FlowDefinition,
    FlowHooks,
    Role,
    SuccessPredicate,
    aria,
    css,
    merge_strategies,
    text,
)
from sesame.flows.locators import DEFAULT_CHALLENGES, DEFAULT_STRATEGIES
from sesame.tools.browser_driver import BrowserDriver, WindowHandle
from sesame.utils.logging import get_logger


logger = get_logger(__name__, "flows")

COOKIE_CONSENT = (
    css("#onetrust-accept-btn-handler"),
    css('button[data-testid="cookie-accept"]'),
    aria("button", r"^(accept all|accept cookies|aceptar todo|aceptar)$"),
)


async def dismiss_cookie_banner(driver: BrowserDriver, window: WindowHandle, flow: FlowDefinition) -> None:
    """Accept a cookie consent banner if one covers the login form."""
    for locator in COOKIE_CONSENT:
        for element in await driver.query(window, locator):
            state = await element.state()
            if state.is_interactable:
                await element.click()
                logger.debug("Cookie banner dismissed", flow=flow.name, strategy=locator.describe())
                return


GOOGLE_FLOW = FlowDefinition(
    name="google",
    login_url="https://accounts.google.com/signin",
    strategies=merge_strategies(
        {
            Role.IDENTIFIER: (css("#identifierId"), css('input[name="identifier"]'), css('input[type="email"]')),
            Role.CONTINUE: (css("#identifierNext"), css("#identifierNext button")),
            Role.SECRET: (css('input[name="Passwd"]'), css('input[name="password"]'), css('input[type="password"]')),
            Role.SUBMIT: (css("#passwordNext"), css("#passwordNext button")),
            Role.REJECTION_BANNER: (
                css('[aria-live="assertive"] span'),
                css('div[jsname="B34EJ"] span'),
                css(".o6cuMc"),
            ),
        },
        DEFAULT_STRATEGIES,
    ),
    success=SuccessPredicate(login_url_patterns=(r"accounts\.google\.com/(v3/)?signin",)),
    challenges=DEFAULT_CHALLENGES,
    description="Google account sign-in (delegated provider)",
)

GOOGLE_TRIGGER = (
    css('[data-cy="google-login-button"]'),
    css('button[data-provider="google"]'),
    css("#login_google_submit"),
    aria("button", r"continue with google|sign in with google|continuar con google"),
    text(r"continue with google|sign in with google|continuar con google"),
)


def google_provider(trigger_on_surface: bool = False) -> DelegatedProvider:
    return DelegatedProvider(
        name="google",
        domain_patterns=(r"^https://accounts\.google\.com/",),
        flow=GOOGLE_FLOW,
        trigger=GOOGLE_TRIGGER,
        trigger_on_surface=trigger_on_surface,
    )


UPWORK_STRATEGIES = merge_strategies(
    {
        Role.IDENTIFIER: (css("#login_username"),),
        Role.CONTINUE: (css("#login_password_continue"),),
        Role.SECRET: (css("#login_password"),),
        Role.SUBMIT: (css("#login_control_continue"),),
        Role.REJECTION_BANNER: (css(".air3-alert-negative"), css('[data-qa="error-message"]')),
        Role.SUCCESS_MARKER: (css('[data-cy="user-menu"]'), css(".nav-user-avatar")),
    },
    DEFAULT_STRATEGIES,
)

UPWORK_SUCCESS = SuccessPredicate(
    login_url_patterns=(r"/login",),
    authenticated_url_patterns=(r"/nx/", r"/freelancers/", r"/ab/", r"/home", r"/jobs/", r"/find-work/"),
    markers=(css('[data-cy="user-menu"]'), css('a[href*="logout"]'), text(r"^\s*find work\s*$", tag="a, button, span")),
)


def _build_flows() -> Dict[str, FlowDefinition]:
    flows = [
        FlowDefinition(
            name="upwork",
            login_url="https://www.upwork.com/ab/account-security/login",
            strategies=UPWORK_STRATEGIES,
            success=UPWORK_SUCCESS,
            challenges=DEFAULT_CHALLENGES,
            delegated=google_provider(),
            hooks=FlowHooks(before_identifier=(dismiss_cookie_banner,)),
            description="Upwork (password, Google offered when linked)",
        ),
        FlowDefinition(
            name="upwork-google",
            login_url="https://www.upwork.com/ab/account-security/login",
            strategies=UPWORK_STRATEGIES,
            success=UPWORK_SUCCESS,
            challenges=DEFAULT_CHALLENGES,
            delegated=google_provider(trigger_on_surface=True),
            hooks=FlowHooks(before_identifier=(dismiss_cookie_banner,)),
            description="Upwork through 'Continue with Google'",
        ),
        FlowDefinition(
            name="freelancer",
            login_url="https://www.freelancer.com/login",
            strategies=merge_strategies(
                {
                    Role.IDENTIFIER: (css('input[name="username"]'), css("#emailOrUsernameInput")),
                    Role.SECRET: (css("#passwordInput"),),
                    Role.SUBMIT: (css('button.login-button'), css('app-login button[type="submit"]')),
                },
                DEFAULT_STRATEGIES,
            ),
            success=SuccessPredicate(
                login_url_patterns=(r"/login",),
                authenticated_url_patterns=(r"/dashboard", r"/jobs", r"/projects", r"/u/"),
            ),
            challenges=DEFAULT_CHALLENGES,
            description="Freelancer.com",
        ),
        FlowDefinition(
            name="hireline",
            login_url="https://hireline.io/login",
            strategies=merge_strategies(
                {
                    Role.IDENTIFIER: (css('input[type="email"]'), css('input[placeholder*="email" i]')),
                    Role.SECRET: (css('input[type="password"]'), css('input[placeholder*="contraseña" i]')),
                },
                DEFAULT_STRATEGIES,
            ),
            success=SuccessPredicate(
                login_url_patterns=(r"/login", r"/signin"),
                authenticated_url_patterns=(r"/dashboard", r"/candidato", r"/perfil", r"/vacantes"),
            ),
            challenges=DEFAULT_CHALLENGES,
            hooks=FlowHooks(before_identifier=(dismiss_cookie_banner,)),
            description="Hireline",
        ),
        FlowDefinition(
            name="indeed",
            login_url="https://secure.indeed.com/account/login",
            strategies=merge_strategies(
                {
                    Role.IDENTIFIER: (css('input[name="__email"]'), css("#ifl-InputFormField-3")),
                    Role.CONTINUE: (css('button[data-tn-element="auth-page-email-submit-button"]'),),
                    Role.SECRET: (css('input[name="__password"]'),),
                    Role.SUBMIT: (css('button[data-tn-element="auth-page-sign-in-password-form-submit-button"]'),),
                },
                DEFAULT_STRATEGIES,
            ),
            success=SuccessPredicate(
                login_url_patterns=(r"/account/login", r"/auth"),
                authenticated_url_patterns=(r"indeed\.com/(jobs|myjobs|profile|\?from=gnav)", r"myjobs\.indeed\.com"),
                markers=(css('[data-gnav-element-name="AccountMenu"]'),),
            ),
            challenges=DEFAULT_CHALLENGES,
            delegated=google_provider(),
            description="Indeed (email first, password revealed after continue)",
        ),
        FlowDefinition(
            name="braintrust",
            login_url="https://app.usebraintrust.com/login",
            strategies=merge_strategies(
                {Role.SUBMIT: (css("button.login-button"), css('[data-testid="login-button"]'))},
                DEFAULT_STRATEGIES,
            ),
            success=SuccessPredicate(
                login_url_patterns=(r"/login",),
                authenticated_url_patterns=(r"/talent", r"/jobs", r"/home"),
            ),
            challenges=DEFAULT_CHALLENGES,
            description="Braintrust",
        ),
        FlowDefinition(
            name="glassdoor",
            login_url="https://www.glassdoor.com/profile/login_input.htm",
            strategies=merge_strategies(
                {
                    Role.IDENTIFIER: (css("#inlineUserEmail"), css('input[name="username"]')),
                    Role.CONTINUE: (css('button[data-test="email-form-button"]'),),
                    Role.SECRET: (css("#inlineUserPassword"),),
                },
                DEFAULT_STRATEGIES,
            ),
            success=SuccessPredicate(
                login_url_patterns=(r"/login", r"/profile/login"),
                authenticated_url_patterns=(r"/member/", r"/Community/", r"/Job/"),
            ),
            challenges=DEFAULT_CHALLENGES,
            hooks=FlowHooks(before_identifier=(dismiss_cookie_banner,)),
            description="Glassdoor",
        ),
        FlowDefinition(
            name="linkedin",
            login_url="https://www.linkedin.com/login",
            strategies=merge_strategies(
                {
                    Role.IDENTIFIER: (css("#username"), css('input[name="session_key"]')),
                    Role.SECRET: (css("#password"), css('input[name="session_password"]')),
                    Role.SUBMIT: (css('button[data-litms-control-urn="login-submit"]'),),
                    Role.REJECTION_BANNER: (css("#error-for-password"), css("#error-for-username")),
                },
                DEFAULT_STRATEGIES,
            ),
            success=SuccessPredicate(
                login_url_patterns=(r"/login", r"/uas/login", r"/checkpoint/lg/"),
                authenticated_url_patterns=(r"/feed", r"/in/", r"/mynetwork", r"/jobs"),
                markers=(css(".global-nav__me"),),
            ),
            challenges=DEFAULT_CHALLENGES,
            description="LinkedIn",
        ),
    ]
    return {flow.name: flow for flow in flows}


FLOWS = _build_flows()


def available_platforms() -> List[str]:
    """Names of every registered platform flow."""
    return sorted(FLOWS)


def get_flow(name: str) -> FlowDefinition:
    """
    Look up a platform flow.

    Raises:
        KeyError: if no flow is registered under ``name``
    """
    try:
        return FLOWS[name.lower()]
    except KeyError:
        raise KeyError(f"Unknown platform '{name}'. Available: {', '.join(available_platforms())}") from None
