"""CLI command to serve the sheets and cron HTTP API."""

from __future__ import annotations

from typing import Annotated

import typer
import uvicorn

from amazon_brain.api import create_app
from amazon_brain.config import get_config

app = typer.Typer(name="api", help="Serve the read-only sheets API and the cron endpoint.")


@app.command("serve")
def serve(
    host: Annotated[str, typer.Option("--host", help="Bind address")] = "127.0.0.1",
    port: Annotated[int, typer.Option("--port", "-p", help="Bind port")] = 8000,
) -> None:
    """Run the API with uvicorn."""
    uvicorn.run(create_app(get_config()), host=host, port=port)
