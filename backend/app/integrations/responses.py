"""Response helpers shared by the HTTP integration clients.

Upstreams and the proxies in front of them do not always answer with JSON
or with a numeric Retry-After, so the clients read both through here.
"""

from typing import Any

import httpx


def retry_after_seconds(value: str | None) -> float | None:
    """Parse a Retry-After header given in seconds. HTTP-date values yield None."""
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def json_body(response: httpx.Response) -> Any:
    """Decoded JSON body, or None when the body is empty or not JSON."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None


def error_message(body: Any, default: str = "Client error") -> str:
    """The ``error.message`` of an API error body, falling back to ``default``."""
    if not isinstance(body, dict):
        return default
    error = body.get("error")
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    if isinstance(error, str) and error:
        return error
    return str(body)
