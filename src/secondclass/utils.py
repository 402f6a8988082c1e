"""Shared helpers for portal payloads: masking filter, sign times, response decoding."""

from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import Any

import httpx

from secondclass.errors import ProtocolError

# Literal success message embedded in every portal JSON payload.
SUCCESS_MESSAGE = "请求成功"

# Substring of the gateway's plain-text internal error page.
ERROR_PAGE_MARKER = "Server internal error"

# Ids containing this character are placeholder rows, never actionable.
MASK_MARKER = "*"

# Server-side validation expects check-in one hour after start and
# check-out 100 seconds after that.
CHECK_IN_OFFSET = timedelta(seconds=3600)
CHECK_OUT_OFFSET = timedelta(seconds=3700)

_PORTAL_TIME_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d",
)


def keep_actionable(rows: Iterable[dict[str, Any] | None]) -> list[dict[str, Any]]:
    """Drop missing rows and masked placeholder rows, preserving order."""
    kept = []
    for row in rows:
        if row is None or row.get("id") is None:
            continue
        if MASK_MARKER in str(row["id"]):
            continue
        kept.append(row)
    return kept


def parse_portal_time(value: str) -> datetime:
    """Parse a portal timestamp such as ``2024-01-01 10:00:00`` or ``2024/1/1 10:00``.

    Raises:
        ValueError: If the value matches none of the known layouts.
    """
    normalized = value.strip().replace("/", "-")
    for fmt in _PORTAL_TIME_FORMATS:
        try:
            return datetime.strptime(normalized, fmt)
        except ValueError:
            continue
    raise ValueError(f"Unrecognized portal time {value!r}")


def format_portal_time(moment: datetime) -> str:
    """Format like a zh-CN locale string with slashes turned into hyphens.

    ``datetime(2024, 1, 1, 9, 5)`` -> ``"2024-1-1 09:05:00"``
    """
    return f"{moment.year}-{moment.month}-{moment.day} {moment:%H:%M:%S}"


def sign_times(start_time: str) -> tuple[datetime, datetime]:
    """Synthesize (check-in, check-out) moments for an activity start time."""
    start = parse_portal_time(start_time)
    return start + CHECK_IN_OFFSET, start + CHECK_OUT_OFFSET


def decode_json(response: httpx.Response) -> Any:
    """Decode a portal response body, detecting the gateway error page.

    Raises:
        ProtocolError: If the body is the generic error page or not JSON at all.
    """
    try:
        body = response.json()
    except ValueError as e:
        text = response.text
        if ERROR_PAGE_MARKER in text:
            raise ProtocolError("500 Server internal error") from e
        raise ProtocolError(
            f"Expected JSON from {response.request.url.path}, got {text[:80]!r}"
        ) from e
    # A JSON-encoded string can carry the same page
    if isinstance(body, str) and ERROR_PAGE_MARKER in body:
        raise ProtocolError("500 Server internal error")
    return body


def is_success(body: Any) -> bool:
    return isinstance(body, dict) and body.get("message") == SUCCESS_MESSAGE


def message_of(body: Any) -> str:
    """Best-effort portal message for a failed payload."""
    if isinstance(body, dict):
        return str(body.get("message") or body.get("msg") or "unknown portal error")
    return str(body)
