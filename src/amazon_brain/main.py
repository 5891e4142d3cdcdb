"""Amazon Brain CLI: entry point.

Syncs seller orders, listings and advertising reports into weekly
rollups, and runs the alert job over them.
"""

from __future__ import annotations

import logging

import typer

from amazon_brain.commands.alerts_cmd import app as alerts_app
from amazon_brain.commands.api_cmd import app as api_app
from amazon_brain.commands.sync_cmd import app as sync_app

app = typer.Typer(
    name="amazon-brain",
    help="Weekly Amazon seller analytics: data sync, alerts and sheets API.",
    no_args_is_help=True,
)

# Register command groups
app.add_typer(sync_app, name="sync")
app.add_typer(alerts_app, name="alerts")
app.add_typer(api_app, name="api")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Amazon Brain CLI: sync, alert and serve weekly seller analytics."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(levelname)s: %(message)s",
    )


if __name__ == "__main__":
    app()
