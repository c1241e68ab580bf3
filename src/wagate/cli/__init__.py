"""
wagate CLI - messaging gateway manager.

This package splits CLI commands into focused modules:
- serve:    run the gateway
- sessions: list, create, status, qr, pair, remove
- send:     text, image
"""

import os
from typing import Optional

import typer

from wagate.cli.send import send_app
from wagate.cli.sessions import sessions_app

app = typer.Typer(help="wagate - multi-session messaging gateway")


@app.callback()
def main(
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose logging (DEBUG level)"
    ),
):
    """
    wagate - multi-session messaging gateway.
    """
    from wagate.logger import setup_logging

    setup_logging(level="DEBUG" if verbose else "WARNING")


@app.command("serve")
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Bind port"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
    debug: bool = typer.Option(False, "--debug", help="Log at DEBUG level"),
):
    """Run the gateway server."""
    import uvicorn

    from wagate.config import CONFIG
    from wagate.logger import setup_logging

    config = CONFIG.current
    if host:
        config.host = host
        os.environ["WAGATE_HOST"] = host
    if port:
        config.port = port
        os.environ["WAGATE_PORT"] = str(port)
    if debug:
        config.log_level = "DEBUG"
        os.environ["WAGATE_LOG_LEVEL"] = "DEBUG"
    setup_logging(level=config.log_level, log_file=config.log_file)

    typer.echo(f"🚀 Starting wagate on http://{config.host}:{config.port}")
    uvicorn.run(
        "wagate.server:create_app",
        factory=True,
        host=config.host,
        port=config.port,
        reload=reload,
        log_level=config.log_level.lower(),
    )


app.add_typer(sessions_app, name="sessions")
app.add_typer(send_app, name="send")

if __name__ == "__main__":
    app()
