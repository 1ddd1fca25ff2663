"""Error types and upstream error message extraction."""

from __future__ import annotations

import json
from typing import Any


class RangewatchError(Exception):
    """Base class for Rangewatch errors."""


class TransportError(RangewatchError):
    """Network, timeout or 5xx failure talking to the Ludus API.

    Recoverable: pollers retry on their next interval.
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class LudusAPIError(RangewatchError):
    """The Ludus API understood the request and refused it (4xx)."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def extract_error_message(error: Any, fallback: str = "An unknown error occurred") -> str:
    """
    Extract a user-friendly message from the error shapes the Ludus API returns.

    Checked in order:
    1. {"error": {"message": "..."}}
    2. {"error": "..."}
    3. {"message": "..."}
    4. {"details": "..."}
    5. A single-key dict with a string value, else the dict as JSON
    """
    if error is None or error == "" or error == {}:
        return fallback

    if isinstance(error, str):
        return error

    if isinstance(error, BaseException):
        return str(error) or fallback

    if isinstance(error, dict):
        nested = error.get("error")
        if isinstance(nested, dict) and isinstance(nested.get("message"), str):
            return nested["message"]
        if isinstance(nested, str):
            return nested

        for key in ("message", "details"):
            if isinstance(error.get(key), str):
                return error[key]

        if len(error) == 1:
            (value,) = error.values()
            if isinstance(value, str):
                return value

        try:
            return json.dumps(error, indent=2)
        except (TypeError, ValueError):
            return str(error)

    return str(error)
