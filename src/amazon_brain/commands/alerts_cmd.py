"""CLI commands for the alert job and the strategic digest."""

from __future__ import annotations

from typing import Annotated

import typer
from rich.console import Console

from amazon_brain.config import get_config
from amazon_brain.db import init_db, make_engine, make_session_factory
from amazon_brain.services.alerts import AlertService
from amazon_brain.services.notifier import EmailNotifier
from amazon_brain.store import Store
from amazon_brain.utils.errors import BrainError, handle_error
from amazon_brain.utils.output import OutputFormat, print_output

console = Console(stderr=True)
app = typer.Typer(name="alerts", help="Stock/TACoS alerts and the strategic email digest.")


def _build_service() -> tuple[EmailNotifier, AlertService]:
    config = get_config()
    settings = config.settings
    engine = make_engine(settings.database_url)
    init_db(engine)
    notifier = EmailNotifier(settings.resend_api_key, settings.email_from)
    service = AlertService(Store(make_session_factory(engine)), notifier, config.tuning, settings.email_to)
    return notifier, service


@app.command("run")
def run_alerts(
    output: Annotated[OutputFormat, typer.Option("--output", "-o")] = OutputFormat.TABLE,
) -> None:
    """Run the cron job once: digest if due, stock and TACoS alerts, cleanup."""
    notifier, service = _build_service()
    try:
        result = service.run()
        print_output(result, output, title="Alert Run")
    except BrainError as e:
        handle_error(e)
        raise typer.Exit(1)
    finally:
        notifier.close()


@app.command("report")
def preview_report(
    send: Annotated[bool, typer.Option("--send", help="Email the digest when it is due instead of printing it")] = False,
) -> None:
    """Print this week's strategic digest, or send it with --send when due."""
    notifier, service = _build_service()
    try:
        if send:
            sent = service.maybe_send_strategic_report()
            console.print("Report sent" if sent else "[yellow]Report not sent[/yellow]")
            return
        subject, body = service.build_strategic_report()
        console.print(f"[bold]{subject}[/bold]\n")
        typer.echo(body)
    except BrainError as e:
        handle_error(e)
        raise typer.Exit(1)
    finally:
        notifier.close()
