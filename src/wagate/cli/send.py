"""
CLI subcommands for sending messages through an authenticated session.

Usage:
    wagate send text <token> <number> <message>
    wagate send image <token> <number> <url> [--caption TEXT]
"""

import typer

from wagate.cli._http import _http_post

send_app = typer.Typer(help="Send messages through a session")


def _report(result: dict) -> None:
    if result.get("success"):
        typer.echo(f"✅ {result.get('message', 'Sent.')} ({result.get('chat_id')})")
    else:
        typer.echo(f"❌ Failed: {result.get('error', 'Unknown error')}")
        raise typer.Exit(code=1)


@send_app.command("text")
def send_text(
    token: str = typer.Argument(help="Session token"),
    number: str = typer.Argument(help="Recipient number or chat id"),
    message: str = typer.Argument(help="Message text"),
):
    """Send a text message."""
    result = _http_post(
        "/send-text", data={"token": token, "number": number, "message": message}
    )
    _report(result)


@send_app.command("image")
def send_image(
    token: str = typer.Argument(help="Session token"),
    number: str = typer.Argument(help="Recipient number or chat id"),
    url: str = typer.Argument(help="Image URL"),
    caption: str = typer.Option("", "--caption", "-c", help="Optional caption"),
):
    """Send an image fetched from a URL."""
    result = _http_post(
        "/send-image-url",
        data={"token": token, "number": number, "imageUrl": url, "caption": caption},
        timeout=60.0,
    )
    _report(result)
