"""
Range Status Normalization

Maps the free-form state strings the Ludus API reports onto
OperationStatus, and decides which transitions a tracker accepts.
"""

from __future__ import annotations

from rangewatch.models.operation import TERMINAL_STATUSES, OperationStatus

_BY_VALUE = {status.value: status for status in OperationStatus}

BADGE_VARIANTS = {
    OperationStatus.SUCCESS: "success",
    OperationStatus.FAILURE: "danger",
    OperationStatus.ERROR: "danger",
    OperationStatus.DEPLOYING: "warning",
    OperationStatus.ACTIVE: "info",
    OperationStatus.NEVER_DEPLOYED: "outline",
}


def normalize_status(raw: str | None) -> OperationStatus:
    """
    Convert a reported state string to OperationStatus.

    Case-insensitive; "never_deployed" and "NEVER DEPLOYED" are the same.
    Anything unrecognized is UNKNOWN, never an error.
    """
    if not isinstance(raw, str):
        return OperationStatus.UNKNOWN

    key = " ".join(raw.replace("_", " ").split()).upper()
    return _BY_VALUE.get(key, OperationStatus.UNKNOWN)


def is_recognized(raw: str | None) -> bool:
    """True if raw maps to a known status (UNKNOWN itself counts)."""
    if isinstance(raw, str) and raw.strip().upper() == OperationStatus.UNKNOWN.value:
        return True
    return normalize_status(raw) is not OperationStatus.UNKNOWN


def next_status(current: OperationStatus, reported: OperationStatus) -> OperationStatus:
    """Terminal states are final; otherwise the server's report wins."""
    if current in TERMINAL_STATUSES:
        return current
    return reported


def badge_variant(raw: str | None) -> str:
    """Badge style for a range state."""
    return BADGE_VARIANTS.get(normalize_status(raw), "default")


def display_label(raw: str | None) -> str:
    """Human-readable label for a range state."""
    if not raw:
        return "Unknown"

    status = normalize_status(raw)
    if status is OperationStatus.UNKNOWN:
        return raw
    return status.value.title()
