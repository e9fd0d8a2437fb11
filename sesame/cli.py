"""
Command Line Interface for Sesame.

This module provides the main CLI entry point: listing the registered
platforms, signing in to one platform, or to several in sequence.
"""

import asyncio
import json
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from sesame import __version__
from sesame.config.settings import get_settings
from sesame.core.models import ErrorKind, Session
from sesame.flows.platforms import FLOWS, available_platforms, get_flow
from sesame.orchestrator.batch import BatchAuthenticator
from sesame.orchestrator.session_manager import SessionLifecycleManager

# Initialize Typer app and Rich console
app = typer.Typer(
    name="sesame",
    help="Sesame - Authentication Orchestration Engine",
    add_completion=False,
)
console = Console()


def version_callback(value: bool) -> None:
    """Print version information and exit."""
    if value:
        console.print(f"Sesame v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True, help="Show version and exit"
    ),
) -> None:
    """
    Sesame - Authentication Orchestration Engine

    Signs in to third-party platforms with a real browser and returns the
    resulting cookies and user agent.
    """
    pass


@app.command()
def platforms() -> None:
    """List the registered platform flows."""
    settings = get_settings()

    table = Table(title="Registered Platforms")
    table.add_column("Platform", style="cyan")
    table.add_column("Login URL", style="blue")
    table.add_column("Delegated", style="magenta")
    table.add_column("Credentials", style="green")
    table.add_column("Description", style="yellow")

    for name in available_platforms():
        flow = FLOWS[name]
        has_credentials = settings.credentials.for_platform(name) is not None
        table.add_row(
            name,
            flow.login_url,
            flow.delegated.name if flow.delegated else "-",
            "✅" if has_credentials else "❌",
            flow.description,
        )

    console.print(table)


@app.command()
def login(
    platform: str = typer.Argument(..., help="Platform to sign in to (see 'sesame platforms')"),
    headless: bool = typer.Option(True, "--headless/--headed", help="Run the browser without a window"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the session as JSON to this file"),
) -> None:
    """
    Sign in to one platform.

    Credentials are read from <PLATFORM>_EMAIL and <PLATFORM>_PASSWORD.
    Exits with code 1 unless the session is authenticated.
    """
    try:
        flow = get_flow(platform)
    except KeyError as e:
        console.print(f"❌ [red]{escape(str(e.args[0]))}[/red]")
        raise typer.Exit(1)

    credentials = get_settings().credentials.for_platform(flow.name)
    if credentials is None:
        key = flow.name.split("-")[0].upper()
        console.print(f"❌ [red]Missing credentials: set {key}_EMAIL and {key}_PASSWORD[/red]")
        raise typer.Exit(1)

    console.print(Panel.fit(
        f"🔐 Platform: {flow.name}\n"
        f"👤 Account: {escape(credentials.masked_identifier)}\n"
        f"🌐 Browser Mode: {'Headless' if headless else 'Headed'}",
        title="Sesame Login",
        border_style="blue",
    ))

    session = asyncio.run(SessionLifecycleManager(headless=headless).run(flow, credentials))
    _print_session(flow.name, session)

    if output:
        _write_session(output, session)
        console.print(f"💾 Session written to [cyan]{escape(str(output))}[/cyan]")

    if not session.authenticated:
        raise typer.Exit(1)


@app.command("login-all")
def login_all(
    platform: Optional[List[str]] = typer.Option(None, "--platform", "-p", help="Platform to include (repeatable)"),
    cooldown: Optional[float] = typer.Option(None, "--cooldown", help="Seconds to wait between platforms"),
    headless: bool = typer.Option(True, "--headless/--headed", help="Run the browser without a window"),
    output_dir: Optional[Path] = typer.Option(None, "--output-dir", help="Write one JSON session file per platform"),
) -> None:
    """Sign in to several platforms, one after another."""
    names = platform or [name for name in available_platforms() if "-" not in name]

    authenticator = BatchAuthenticator(cooldown_seconds=cooldown, headless=headless)
    sessions = asyncio.run(authenticator.run_all(names))

    if not sessions:
        console.print("📝 No platform could be attempted (unknown names or missing credentials)")
        raise typer.Exit(1)

    table = Table(title="Authentication Results")
    table.add_column("Platform", style="cyan")
    table.add_column("Status")
    table.add_column("Cookies", style="blue")
    table.add_column("Details", style="yellow")

    for name, session in sessions.items():
        table.add_row(
            name,
            "[green]authenticated[/green]" if session.authenticated else f"[red]{session.error.value}[/red]",
            str(len(session.cookies)),
            escape(session.error_detail or ""),
        )
        if output_dir:
            _write_session(output_dir / f"{name}.json", session)

    console.print(table)

    if not all(session.authenticated for session in sessions.values()):
        raise typer.Exit(1)


def _print_session(name: str, session: Session) -> None:
    if session.authenticated:
        console.print(f"✅ [green]Signed in to {name}[/green] with {len(session.cookies)} cookies")
        return

    if session.error is ErrorKind.AUTH_REJECTED:
        hint = "check the credentials"
    elif session.error.is_inconclusive:
        hint = "try again later"
    else:
        hint = "see diagnostics"
    console.print(f"❌ [red]{name}: {session.error.value}[/red] ({hint})")
    if session.error_detail:
        console.print(f"   {escape(session.error_detail)}")


def _write_session(path: Path, session: Session) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(session.to_dict(), indent=2, default=str))


if __name__ == "__main__":
    app()
