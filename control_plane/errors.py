"""Error taxonomy for control-plane calls.

Callers branch on the subclass, never on status codes or message text:

    Unauthenticated  no/expired credential        surfaced, never retried
    NotFound         no such server               a normal "no server" outcome
    Conflict         a server already exists      surfaced distinctly
    Transient        network error or 5xx         retried a few times, then surfaced
    Validation       malformed local input        never sent to the network
"""

from __future__ import annotations

from typing import Optional

import httpx


class ControlPlaneError(Exception):
    """Base for every failure talking to the control plane."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class Unauthenticated(ControlPlaneError):
    pass


Unauthorized = Unauthenticated


class NotFound(ControlPlaneError):
    pass


class Conflict(ControlPlaneError):
    pass


class Transient(ControlPlaneError):
    pass


class Validation(ControlPlaneError):
    pass


def error_message(response: httpx.Response) -> str:
    """Format ``"<message> (<status>)"`` from a JSON error body, else a generic message."""
    message = ""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and isinstance(body.get("message"), str):
        message = body["message"]
    if message:
        return f"{message} ({response.status_code})"
    return f"Request failed ({response.status_code})"


def classify_response(response: httpx.Response) -> ControlPlaneError:
    """Map a non-2xx response to the matching error class."""
    status = response.status_code
    message = error_message(response)
    if status in (401, 403):
        return Unauthenticated(message, status)
    if status == 404:
        return NotFound(message, status)
    if status == 409:
        return Conflict(message, status)
    if status >= 500 or status == 429:
        return Transient(message, status)
    return ControlPlaneError(message, status)
