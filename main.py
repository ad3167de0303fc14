from __future__ import annotations

import logging
import signal
from dataclasses import dataclass
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from services.auth_service import AuthService
from services.auto_responder import AutoResponder, CycleReport
from services.credential_store import TokenStore, load_client_credentials
from services.gmail_service import GmailService, build_session
from services.poller import MailboxPoller
from utils.config import AppConfig, load_config
from utils.exceptions import AuthError, ConfigError, MailboxError
from utils.logger import configure_logging


LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class AppContext:
    config: AppConfig
    auth: AuthService
    token_store: TokenStore
    console: Console
    gmail: Optional[GmailService] = None


def build_context(env_file: str) -> AppContext:
    config = load_config(env_file)
    configure_logging(config.log_dir, config.log_level)
    console = Console()

    client = load_client_credentials(config.credentials_file)
    token_store = TokenStore(config.token_file)
    auth_service = AuthService(
        client,
        token_store,
        display=lambda text: console.print(text, soft_wrap=True),
        prompt=console.input,
    )
    return AppContext(config=config, auth=auth_service, token_store=token_store, console=console)


def connect(app: AppContext, interactive: bool = True) -> GmailService:
    if app.gmail is None:
        credentials = app.auth.authenticate(interactive=interactive)
        app.gmail = GmailService(
            build_session(credentials),
            app.config.user_id,
            retry_attempts=app.config.retry_attempts,
        )
    return app.gmail


def build_responder(app: AppContext, gmail: GmailService) -> AutoResponder:
    operator_address = app.config.operator_email or gmail.get_profile_address()
    LOGGER.info("Replying on behalf of %s", operator_address)
    return AutoResponder(
        gmail,
        operator_address,
        reply_body=app.config.reply_body,
        subject=app.config.reply_subject,
        label_name=app.config.label_name,
        unread_query=app.config.unread_query,
    )


@click.group()
@click.option("--env-file", default=".env", show_default=True, help="Path to the .env file")
@click.pass_context
def cli(ctx: click.Context, env_file: str) -> None:
    """Gmail vacation auto-responder."""

    try:
        ctx.obj = build_context(env_file)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc


@cli.command("authorize")
@click.option("--force", is_flag=True, help="Run the authorization flow even if a token is stored")
@click.pass_obj
def authorize(app: AppContext, force: bool) -> None:
    """Obtain and store an OAuth token for the mailbox."""

    if app.token_store.load() is not None and not force:
        app.console.print(f"A token is already stored at {app.token_store.path}. Use --force to replace it.")
        return
    try:
        app.auth.authorize()
    except AuthError as exc:
        raise click.ClickException(str(exc)) from exc
    app.console.print(f"[bold green]Token stored to {app.token_store.path}[/bold green]")


@cli.command("run")
@click.option(
    "--interactive/--no-interactive",
    default=True,
    show_default=True,
    help="Prompt for an authorization code when no token is stored",
)
@click.option("--immediate", is_flag=True, help="Run the first cycle right away instead of after the first interval")
@click.pass_obj
def run(app: AppContext, interactive: bool, immediate: bool) -> None:
    """Poll the mailbox and auto-reply until stopped."""

    try:
        gmail = connect(app, interactive=interactive)
        responder = build_responder(app, gmail)
    except (AuthError, MailboxError) as exc:
        raise click.ClickException(str(exc)) from exc

    poller = MailboxPoller(
        responder,
        app.config.poll_min_seconds,
        app.config.poll_max_seconds,
    )
    signal.signal(signal.SIGTERM, lambda *_: poller.stop())

    app.console.print(
        f"Auto-replying as {responder.operator_address} every "
        f"{app.config.poll_min_seconds}-{app.config.poll_max_seconds}s. Press Ctrl+C to stop."
    )
    try:
        poller.run_forever(run_immediately=immediate)
    except KeyboardInterrupt:
        poller.stop()
    app.console.print("Poller stopped.")


@cli.command("check")
@click.pass_obj
def check(app: AppContext) -> None:
    """Run a single auto-reply cycle now and print what happened."""

    try:
        gmail = connect(app)
        responder = build_responder(app, gmail)
    except (AuthError, MailboxError) as exc:
        raise click.ClickException(str(exc)) from exc

    report = responder.run_cycle()
    if not report.total:
        app.console.print("[bold green]No unread emails found.[/bold green]")
        return
    app.console.print(_build_report_table(report))


@cli.command("create-label")
@click.argument("label_name", required=False)
@click.pass_obj
def create_label(app: AppContext, label_name: Optional[str]) -> None:
    """Create the auto-reply label if it does not exist."""

    name = label_name or app.config.label_name
    try:
        label_id = connect(app).get_or_create_label_id(name)
    except (AuthError, MailboxError) as exc:
        raise click.ClickException(str(exc)) from exc
    app.console.print(f"Label {name} is ready (id: {label_id}).")


def _build_report_table(report: CycleReport) -> Table:
    table = Table(title="Auto-reply cycle")
    table.add_column("Message ID", overflow="fold")
    table.add_column("Outcome")
    for message_id in report.replied:
        table.add_row(message_id, "[green]replied[/green]")
    for message_id in report.skipped:
        table.add_row(message_id, "[dim]skipped[/dim]")
    for message_id in report.failed:
        table.add_row(message_id, "[red]failed[/red]")
    return table


def main() -> None:
    cli(standalone_mode=True)


if __name__ == "__main__":
    main()
