"""
CLI subcommands for managing gateway sessions.

Usage:
    wagate sessions list
    wagate sessions create <number> [--pairing]
    wagate sessions status <token>
    wagate sessions qr <token>
    wagate sessions pair <number>
    wagate sessions remove <token>
"""

import typer

from wagate.cli._http import _http_delete, _http_get, _http_post

sessions_app = typer.Typer(help="Manage messaging sessions")

STATUS_ICONS = {
    "authenticated": "🟢",
    "awaiting_code": "🟡",
    "initializing": "🟡",
    "auth_failed": "🔴",
    "logged_out": "🔴",
    "removed": "⚫",
}


def _icon(status: str) -> str:
    return STATUS_ICONS.get(status, "⚪")


@sessions_app.command("list")
def sessions_list():
    """List all sessions and their status."""
    data = _http_get("/sessions")
    sessions = data.get("sessions", [])

    if not sessions:
        typer.echo("No sessions.")
        return

    typer.echo(f"📱 Sessions ({len(sessions)}):\n")
    for session in sessions:
        line = f"  {_icon(session['status'])} {session['token']}  {session['status']}"
        if session.get("reason"):
            line += f" ({session['reason']})"
        typer.echo(line)


@sessions_app.command("create")
def sessions_create(
    number: str = typer.Argument(help="Phone number in E.164 format"),
    pairing: bool = typer.Option(
        False, "--pairing", help="Authenticate with a pairing code instead of a QR code"
    ),
):
    """Initialize a session for a phone number."""
    auth_method = "pairing_code" if pairing else "qr"
    result = _http_post("/sessions", data={"number": number, "auth_method": auth_method})

    session = result.get("session", {})
    typer.echo(f"✅ {result.get('message', 'Session initialized.')}")
    typer.echo(f"   Token: {session.get('token', number)}")
    typer.echo(f"   Status: {session.get('status', 'unknown')}")


@sessions_app.command("status")
def sessions_status(
    token: str = typer.Argument(help="Session token"),
):
    """Show the status of one session."""
    data = _http_get(f"/sessions/{token}")

    typer.echo(f"{_icon(data['status'])} {data['token']}")
    typer.echo(f"   Status: {data['status']}")
    typer.echo(f"   Auth method: {data.get('auth_method', 'unknown')}")
    typer.echo(f"   Created: {data.get('created_at', 'unknown')}")
    typer.echo(f"   Last change: {data.get('last_transition_at', 'unknown')}")
    if data.get("reason"):
        typer.echo(f"   Reason: {data['reason']}")


@sessions_app.command("qr")
def sessions_qr(
    token: str = typer.Argument(help="Session token"),
):
    """Print the current QR payload for a session."""
    data = _http_get(f"/sessions/{token}/qr", timeout=30.0)
    typer.echo(data.get("qr") or data.get("code") or "")


@sessions_app.command("pair")
def sessions_pair(
    number: str = typer.Argument(help="Phone number in E.164 format"),
):
    """Request a pairing code for a phone number."""
    typer.echo(f"⏳ Requesting pairing code for {number}...")
    data = _http_post(f"/sessions/{number}/pairing-code")
    typer.echo(f"🔑 Pairing code: {data.get('code')}")


@sessions_app.command("remove")
def sessions_remove(
    token: str = typer.Argument(help="Session token"),
):
    """Remove a session and delete its credentials."""
    result = _http_delete(f"/sessions/{token}")
    typer.echo(f"🗑️  {result.get('message', 'Session removed.')}")
