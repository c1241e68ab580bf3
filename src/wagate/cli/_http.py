"""
Shared HTTP helpers for CLI commands that talk to the running gateway.
"""

import os
from typing import Optional

import typer


def get_server_url() -> str:
    """Get the gateway URL from environment or default."""
    port = os.getenv("WAGATE_PORT") or "3000"
    host = os.getenv("WAGATE_HOST", "localhost")
    if host == "0.0.0.0":
        host = "localhost"
    return os.getenv("WAGATE_SERVER_URL", f"http://{host}:{port}").rstrip("/")


def _auth_headers() -> dict:
    api_key = os.getenv("WAGATE_API_KEY")
    return {"Authorization": f"Bearer {api_key}"} if api_key else {}


def _error_detail(response) -> str:
    try:
        return response.json().get("error", response.text)
    except ValueError:
        return response.text or f"HTTP {response.status_code}"


def _request(
    method: str, path: str, data: Optional[dict] = None, timeout: float = 10.0
) -> dict:
    import httpx

    url = f"{get_server_url()}{path}"
    try:
        resp = httpx.request(
            method, url, json=data, headers=_auth_headers(), timeout=timeout
        )
        resp.raise_for_status()
        return resp.json()
    except httpx.ConnectError:
        typer.echo("❌ Cannot connect to the wagate server. Is it running?")
        raise typer.Exit(code=1)
    except httpx.HTTPStatusError as e:
        typer.echo(
            f"❌ Server error ({e.response.status_code}): {_error_detail(e.response)}"
        )
        raise typer.Exit(code=1)
    except Exception as e:
        typer.echo(f"❌ Error: {e}")
        raise typer.Exit(code=1)


def _http_get(path: str, timeout: float = 10.0) -> dict:
    """Make a GET request to the running gateway."""
    return _request("GET", path, timeout=timeout)


def _http_post(path: str, data: dict = None, timeout: float = 30.0) -> dict:
    """Make a POST request to the running gateway."""
    return _request("POST", path, data=data or {}, timeout=timeout)


def _http_delete(path: str) -> dict:
    """Make a DELETE request to the running gateway."""
    return _request("DELETE", path)
