"""
Generic locator strategy tables shared by every flow.

Each platform flow layers its own attribute matches on top of these through
``merge_strategies``. Order matters: the first strategy that yields an
interactable element wins.
"""

from sesame.flows.definitions import (
    ChallengeProfile,
    Role,
    aria,
    autocomplete,
    css,
    input_type,
    keyword_locators,
    label,
    placeholder,
    text,
)


CONTINUE_KEYWORDS = ("continu", "sigu", "next", "siguiente", "correo", "email")
SUBMIT_KEYWORDS = ("log in", "login", "sign in", "iniciar", "entrar", "ingresar", "acceder")

DEFAULT_STRATEGIES = {
    Role.IDENTIFIER: (
        css('input[name="email"]'),
        css('input[name="username"]'),
        css('input[name="login"]'),
        css('input[id*="email" i]'),
        css('input[id*="username" i]'),
        autocomplete("username"),
        autocomplete("email"),
        placeholder(r"e-?mail|correo|username|usuario"),
        label(r"e-?mail|correo|username|usuario"),
        aria("textbox", r"e-?mail|correo|username|usuario"),
        input_type("email"),
    ),
    Role.SECRET: (
        css('input[name="password"]'),
        css('input[id*="password" i]'),
        autocomplete("current-password"),
        placeholder(r"password|contraseña"),
        label(r"password|contraseña"),
        input_type("password"),
    ),
    Role.CONTINUE: (
        css('button[id*="continue" i]'),
        css('button[data-qa*="continue" i]'),
        aria("button", r"continu|siguiente|next"),
    ) + keyword_locators(CONTINUE_KEYWORDS),
    Role.SUBMIT: (
        css('button[type="submit"]'),
        css('input[type="submit"]'),
        aria("button", r"log ?in|sign ?in|iniciar sesi[oó]n|entrar|acceder"),
    ) + keyword_locators(SUBMIT_KEYWORDS),
    Role.REJECTION_BANNER: (
        css(".error-message"),
        css(".alert-error"),
        css(".login-error"),
        css('[role="alert"]'),
        css(".alert-danger"),
        css(".text-danger"),
    ),
    Role.SUCCESS_MARKER: (
        css('[data-cy="user-menu"]'),
        css('[data-testid="user-menu"]'),
        css('a[href*="logout"]'),
        css('button[aria-label*="account" i]'),
    ),
}

DEFAULT_CHALLENGES = ChallengeProfile(
    captcha_frame_markers=("recaptcha", "hcaptcha", "captcha", "turnstile", "challenges.cloudflare"),
    frame_checkboxes=(
        css("#recaptcha-anchor"),
        css(".recaptcha-checkbox-border"),
        css("#checkbox"),
        css('input[type="checkbox"]'),
        aria("checkbox"),
    ),
    page_checkboxes=(
        css('.recaptcha-checkbox'),
        css('[data-testid*="captcha" i] input[type="checkbox"]'),
        css('input[type="checkbox"][name*="captcha" i]'),
        css('input[type="checkbox"][id*="human" i]'),
    ),
    checkbox_label_patterns=(
        r"i'?m not a robot",
        r"not a robot",
        r"verify you are human",
        r"no soy un robot",
        r"soy humano",
    ),
    image_grid_patterns=(
        r"select all (?:images|squares) with (?:an? )?(?P<keyword>[\w ]+?)(?:\.|$|\n| click| if)",
        r"selecciona todas las im[aá]genes (?:con|que contengan) (?:un |una )?(?P<keyword>[\w ]+?)(?:\.|$|\n)",
    ),
    image_tiles=(
        css("td.rc-imageselect-tile"),
        css(".task-image .image"),
        css('[role="gridcell"]'),
    ),
    image_verify=(
        css("#recaptcha-verify-button"),
        css(".button-submit"),
        aria("button", r"verify|verificar|next|siguiente"),
    ),
    security_key_url_markers=("challenge/pk", "webauthn", "passkey", "challenge/dp"),
    security_key_text_patterns=(
        r"use your passkey",
        r"security key",
        r"verifying it'?s you",
        r"verify it'?s you",
        r"usa tu llave de acceso",
        r"llave de seguridad",
    ),
    security_key_cancel=(
        aria("button", r"^cancel|^cancelar"),
        text(r"^\s*(cancel|cancelar)\s*$"),
    ),
    banner_text_patterns=(
        r"technical difficulties",
        r"dificultades t[eé]cnicas",
        r"something went wrong",
        r"algo sali[oó] mal",
    ),
    banner_close=(
        aria("button", r"close|dismiss|cerrar"),
        css('button[aria-label*="close" i]'),
        css(".close, .btn-close, [data-dismiss]"),
        text(r"^\s*(ok|close|cerrar|aceptar|try again|reintentar)\s*$"),
    ),
)
