"""
CLI subcommands for managing messaging sessions on a running server.

Usage:
    wagate sessions list
    wagate sessions status <client_id>
    wagate sessions create <client_id>
    wagate sessions restart <client_id>
    wagate sessions logout <client_id>
    wagate sessions send <client_id> <phone> [--message TEXT] [--image URL]
"""

from datetime import datetime
from typing import Optional

import typer

from wagate.cli._http import _http_get, _http_post

sessions_app = typer.Typer(help="Manage messaging sessions")

_ICONS = {
    "ready": "🟢",
    "authenticated": "🟡",
    "connecting": "🟡",
    "reconnecting": "🟡",
    "waiting_qr": "📷",
}


def _icon(code: str) -> str:
    return _ICONS.get(code, "🔴")


def _fmt_ts(ms: int) -> str:
    if not ms:
        return "never"
    return datetime.fromtimestamp(ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


@sessions_app.command("list")
def sessions_list():
    """List sessions known to the server."""
    sessions = _http_get("/api/sessions")

    if not sessions:
        typer.echo("No sessions.")
        return

    typer.echo(f"📱 Sessions ({len(sessions)}):\n")
    for s in sessions:
        reason = f" ({s['reason']})" if s.get("reason") else ""
        typer.echo(
            f"  {_icon(s['status'])} {s['clientId']}: {s['status']}{reason}\n"
            f"     Last ready: {_fmt_ts(s.get('lastReadyAt', 0))}\n"
            f"     Last QR:    {_fmt_ts(s.get('lastQrAt', 0))}\n"
        )


@sessions_app.command("status")
def sessions_status(
    client_id: str = typer.Argument(help="Session client ID"),
):
    """Show the live status of one session."""
    data = _http_get(f"/api/status/{client_id}")
    reason = f" ({data['reason']})" if data.get("reason") else ""
    typer.echo(f"{_icon(data['code'])} {client_id}: {data['code']}{reason}")
    if data.get("wweb_state"):
        typer.echo(f"   Engine state: {data['wweb_state']}")


@sessions_app.command("create")
def sessions_create(
    client_id: str = typer.Argument(help="Session client ID"),
):
    """Create (or reuse) a session."""
    _http_post("/api/session", {"clientId": client_id})
    typer.echo(f"⏳ Session {client_id} pending. Join its room to receive the QR code.")


@sessions_app.command("restart")
def sessions_restart(
    client_id: str = typer.Argument(help="Session client ID"),
):
    """Restart a session, keeping its login."""
    _http_post("/api/restart", {"clientId": client_id})
    typer.echo(f"🔄 Session {client_id} restarting.")


@sessions_app.command("logout")
def sessions_logout(
    client_id: str = typer.Argument(help="Session client ID"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Logout and delete the session's credentials."""
    if not yes and not typer.confirm(
        f"Delete credentials of {client_id}? A new QR scan will be required"
    ):
        raise typer.Exit(code=0)
    _http_post("/api/logout", {"clientId": client_id})
    typer.echo(f"🧹 Session {client_id} logged out.")


@sessions_app.command("send")
def sessions_send(
    client_id: str = typer.Argument(help="Session client ID"),
    phone: str = typer.Argument(help="Recipient phone number or chat ID"),
    message: Optional[str] = typer.Option(None, "--message", "-m", help="Text body"),
    image: Optional[str] = typer.Option(
        None, "--image", "-i", help="Image URL, data URI or base64"
    ),
):
    """Send a message through a session."""
    if not message and not image:
        typer.echo("❌ Provide --message and/or --image")
        raise typer.Exit(code=1)

    payload = {"clientId": client_id, "phone": phone}
    if message:
        payload["message"] = message
    if image:
        payload["image"] = image

    data = _http_post("/api/send", payload)
    typer.echo(f"✅ Sent {data.get('id')} (attempt {data.get('attempt')})")
