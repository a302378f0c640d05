"""
Shared HTTP helpers for CLI commands that talk to the running server.
"""

import os

import httpx
import typer


def get_server_url() -> str:
    """Get the server URL from environment or default."""
    host = os.getenv("WAGATE_HOST", "localhost")
    if host == "0.0.0.0":
        host = "localhost"
    port = os.getenv("WAGATE_PORT", "3000")
    return os.getenv("WAGATE_SERVER_URL", f"http://{host}:{port}")


def _headers() -> dict:
    api_key = os.getenv("API_KEY")
    return {"X-API-Key": api_key} if api_key else {}


def _http_request(method: str, path: str, data: dict = None) -> dict | list:
    """Make a request to the running server and return the decoded body."""
    url = f"{get_server_url()}{path}"
    try:
        resp = httpx.request(
            method,
            url,
            json=data if method != "GET" else None,
            headers=_headers(),
            timeout=30.0,
        )
        resp.raise_for_status()
        return resp.json()
    except httpx.ConnectError:
        typer.echo("❌ Cannot connect to wagate server. Is it running?")
        raise typer.Exit(code=1)
    except httpx.HTTPStatusError as e:
        try:
            detail = e.response.json().get("error", str(e))
        except Exception:
            detail = str(e)
        typer.echo(f"❌ Server error: {detail}")
        raise typer.Exit(code=1)


def _http_get(path: str) -> dict | list:
    """Make a GET request to the running server."""
    return _http_request("GET", path)


def _http_post(path: str, data: dict = None) -> dict | list:
    """Make a POST request to the running server."""
    return _http_request("POST", path, data or {})
