"""
Main CLI application for chatloop.

Usage:
    chatloop login | logout | token
    chatloop chat MESSAGE... [--model NAME]
    chatloop stream MESSAGE... [--model NAME]
    chatloop repl [--model NAME]
    chatloop config show|validate
    chatloop version
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List, Optional

import typer
import yaml
from rich.console import Console

from chatloop import __version__
from chatloop.config import ChatloopConfig, find_config_path, load_config

app = typer.Typer(name="chatloop", help="chatloop - GitHub Copilot chat with tool calling")
config_app = typer.Typer(help="Configuration management")

app.add_typer(config_app, name="config")

console = Console()

REVOKE_HINT = (
    "Note: To fully revoke the token, visit https://github.com/settings/applications "
    "and revoke 'GitHub Copilot Chat'."
)

_state: dict = {"config_path": None, "verbose": False}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _get_config_path() -> Path | None:
    return _state["config_path"] or find_config_path()


def _load(model: str | None = None) -> ChatloopConfig:
    cfg = load_config(_get_config_path(), cli_overrides={"llm.model": model})
    configure_logging(cfg, verbose=_state["verbose"])
    return cfg


def configure_logging(cfg: ChatloopConfig, verbose: bool = False) -> None:
    """Configure the root logger from the ``logging`` section."""
    level = logging.DEBUG if verbose else getattr(
        logging, cfg.logging.level.upper(), logging.WARNING
    )
    handlers: list[logging.Handler] = []
    if cfg.logging.file:
        log_path = Path(cfg.logging.file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))
    else:
        handlers.append(logging.StreamHandler())

    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=handlers,
        force=True,
    )


def _setup_stack(cfg: ChatloopConfig, stream: bool):
    """Wire up the full stack for chat."""
    from chatloop.auth.store import CredentialStore
    from chatloop.auth.token import CopilotTokenSource
    from chatloop.cli.chat import ChatHandler
    from chatloop.llm.providers.copilot import CopilotProvider
    from chatloop.orchestrator.core import Orchestrator
    from chatloop.tools import default_registry

    store = CredentialStore(cfg.auth.credentials_path)
    token_source = CopilotTokenSource(store, cfg.auth, cfg.llm)
    provider = CopilotProvider(token_source.access, cfg.llm)

    orchestrator = Orchestrator(
        provider=provider,
        registry=default_registry(cfg.chat.read_file_max_bytes),
        system_prompt=cfg.chat.system_prompt,
        max_tool_passes=cfg.chat.max_tool_passes,
        tool_timeout=cfg.chat.tool_timeout_seconds,
        stream=stream,
    )
    return ChatHandler(orchestrator=orchestrator, console=console)


def _run_single(message: list[str], model: str | None, stream: bool) -> None:
    text = " ".join(message).strip()
    if not text:
        console.print("[red]Error:[/red] message must not be empty")
        raise typer.Exit(1)

    cfg = _load(model)
    handler = _setup_stack(cfg, stream=stream)
    console.print("[blue]chatloop>[/blue] ", end="")
    ok = asyncio.run(handler.handle_input(text))
    if not ok:
        raise typer.Exit(1)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@app.callback()
def main_options(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to a YAML config file"),
):
    """chatloop - GitHub Copilot chat with tool calling."""
    _state["verbose"] = verbose
    _state["config_path"] = config


@app.command()
def login():
    """Log in to GitHub Copilot with the device-code flow."""
    from chatloop.auth.device import AuthError, DeviceAuthFlow
    from chatloop.auth.store import CredentialStore

    cfg = _load()
    flow = DeviceAuthFlow(CredentialStore(cfg.auth.credentials_path), cfg.auth)

    def on_session(session):
        console.print(f"\n[yellow]Go to:[/yellow] {session.verification_uri}")
        console.print(f"[yellow]Enter code:[/yellow] [bold]{session.user_code}[/bold]")
        console.print("\n[dim]Waiting for authorization...[/dim]")

    def on_pending(attempt: int):
        console.print("[dim]Still waiting for authorization...[/dim]")

    console.print("[blue]Logging into GitHub Copilot...[/blue]")
    try:
        asyncio.run(flow.login(on_session=on_session, on_pending=on_pending))
    except AuthError as e:
        console.print(f"[red]Login failed:[/red] {e}")
        raise typer.Exit(1)

    console.print("[green]Successfully logged into GitHub Copilot![/green]")


@app.command()
def logout():
    """Remove the stored credential."""
    from chatloop.auth.store import CredentialStore

    cfg = _load()
    removed = CredentialStore(cfg.auth.credentials_path).remove(cfg.auth.provider_key)
    if removed:
        console.print("[green]Logged out and removed stored authentication.[/green]")
    else:
        console.print("[dim]No stored authentication found.[/dim]")
    console.print(f"[yellow]{REVOKE_HINT}[/yellow]")


@app.command()
def token():
    """Print the current Copilot service token."""
    from chatloop.auth.store import CredentialStore
    from chatloop.auth.token import CopilotTokenSource

    cfg = _load()
    source = CopilotTokenSource(CredentialStore(cfg.auth.credentials_path), cfg.auth, cfg.llm)
    value = asyncio.run(source.access())
    if value:
        console.print(f"[cyan]Current Copilot token:[/cyan] {value}", highlight=False)
    else:
        console.print("[red]No valid token found. Please run 'chatloop login' first.[/red]")
        raise typer.Exit(1)


@app.command()
def chat(
    message: List[str] = typer.Argument(..., help="Message to send"),
    model: Optional[str] = typer.Option(None, help="Model name"),
):
    """Send one message and print the whole reply."""
    _run_single(message, model, stream=False)


@app.command()
def stream(
    message: List[str] = typer.Argument(..., help="Message to send"),
    model: Optional[str] = typer.Option(None, help="Model name"),
):
    """Send one message and stream the reply as it arrives."""
    _run_single(message, model, stream=True)


@app.command()
def repl(
    model: Optional[str] = typer.Option(None, help="Model name"),
):
    """Start an interactive chat session."""
    cfg = _load(model)
    handler = _setup_stack(cfg, stream=cfg.llm.stream)
    asyncio.run(handler.run_loop())


@config_app.command("show")
def config_show():
    """Show effective config."""
    from chatloop.cli.output import OutputFormatter

    cfg = _load()
    formatter = OutputFormatter(console)
    formatter.format_config(cfg.to_dict())


@config_app.command("validate")
def config_validate():
    """Validate config and show any type issues."""
    config_path = _get_config_path()
    try:
        cfg = load_config(config_path)
    except (ValueError, TypeError, OSError, yaml.YAMLError) as e:
        console.print(f"[red]Config validation failed:[/red] {e}")
        raise typer.Exit(1)

    console.print("[green]Config is valid.[/green]")
    if config_path:
        console.print(f"  Loaded from: {config_path}")
    else:
        console.print("  [dim]No config file found, using defaults.[/dim]")
    console.print(f"  Model: {cfg.llm.model} ({cfg.llm.api_base})")
    console.print(f"  Max tool passes: {cfg.chat.max_tool_passes}")
    console.print(f"  Credentials: {cfg.auth.credentials_path}")


@app.command()
def version():
    """Show version."""
    console.print(f"chatloop v{__version__}")


def main():
    app()


if __name__ == "__main__":
    main()
