from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
import uvicorn

from .config import load_settings
from .errors import ConfigError
from .main import create_app

app = typer.Typer(help="oneshot-relay – one-time-download file relay")


def configure_logging(level: str) -> None:
    logging.basicConfig(level=level.upper(), format="%(asctime)s %(levelname)s %(message)s")


@app.callback()
def callback():
    """Upload a file once, download it once."""


@app.command()
def serve(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to a JSON config file"),
    host: str = typer.Option("0.0.0.0", "--host", help="Interface to bind"),
    port: Optional[int] = typer.Option(None, "--port", help="Override the configured port"),
):
    """Run the relay HTTP server."""
    try:
        settings = load_settings(config)
    except (ConfigError, FileNotFoundError) as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1)
    configure_logging(settings.log_level)

    listen_port = port or settings.listen_port
    logging.getLogger("oneshot_relay").info("Server starting on port %d...", listen_port)
    uvicorn.run(
        create_app(settings),
        host=host,
        port=listen_port,
        log_level=settings.log_level.lower(),
    )


def main():
    app()


if __name__ == "__main__":
    main()
