"""
Xbox Achievements Tracker - Codec Helpers
=========================================
Small encoders and extractors used across the tracker: ISO-8601 timestamps,
base64 / base64url, URL component encoding and JSON pointer lookups.
"""

import base64
import calendar
import re
import time
import urllib.parse

from xbox_errors import DecodeError

_ISO8601_RE = re.compile(
    r"^(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})(?:\.(\d{1,9}))?Z$")


def now():
    """Current Unix time in whole seconds."""
    return int(time.time())


# ---------------------------------------------------------------------------
# Time
# ---------------------------------------------------------------------------

def parse_iso8601(value):
    """Parse a UTC ISO-8601 timestamp such as ``2024-03-01T10:00:00.123Z``.

    Returns (unix_seconds, fraction_nanoseconds). Only the ``Z`` suffix is
    accepted; offsets and trailing characters raise DecodeError.
    """
    if not isinstance(value, str):
        raise DecodeError(f"Timestamp is not a string: {value!r}")
    m = _ISO8601_RE.match(value)
    if not m:
        raise DecodeError(f"Invalid ISO-8601 timestamp: {value!r}")

    year, month, day, hour, minute, second = (int(g) for g in m.groups()[:6])
    fraction = m.group(7) or ""

    if year < 1 or not 1 <= month <= 12:
        raise DecodeError(f"Invalid date in {value!r}")
    if not 1 <= day <= calendar.monthrange(year, month)[1]:
        raise DecodeError(f"Invalid day in {value!r}")
    if hour > 23 or minute > 59 or second > 60:
        raise DecodeError(f"Invalid time of day in {value!r}")

    seconds = calendar.timegm((year, month, day, hour, minute, second, 0, 0, 0))
    nanos = int(fraction.ljust(9, "0")) if fraction else 0
    return seconds, nanos


def iso8601_to_unix(value):
    """Parse a UTC ISO-8601 timestamp, dropping the fractional part."""
    return parse_iso8601(value)[0]


# ---------------------------------------------------------------------------
# Base64
# ---------------------------------------------------------------------------

def base64_encode(data):
    """Standard padded base64, no line breaks."""
    return base64.b64encode(data).decode("ascii")


def base64_decode(text):
    try:
        return base64.b64decode(text, validate=True)
    except (ValueError, TypeError) as e:
        raise DecodeError(f"Invalid base64: {e}") from e


def base64url_encode(data):
    """Base64url encode without padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def base64url_decode(text):
    padding = "=" * (-len(text) % 4)
    try:
        return base64.urlsafe_b64decode(text + padding)
    except (ValueError, TypeError) as e:
        raise DecodeError(f"Invalid base64url: {e}") from e


def url_encode(value):
    """Percent-encode a single query component."""
    return urllib.parse.quote(value, safe="")


# ---------------------------------------------------------------------------
# JSON
# ---------------------------------------------------------------------------

_MISSING = object()


def json_pointer(doc, pointer, default=None):
    """Resolve an RFC 6901 pointer like ``/titles/0/images`` against parsed JSON.

    Returns ``default`` when any segment is missing.
    """
    if pointer in ("", "/"):
        return doc
    node = doc
    for raw in pointer.lstrip("/").split("/"):
        part = raw.replace("~1", "/").replace("~0", "~")
        if isinstance(node, dict):
            node = node.get(part, _MISSING)
        elif isinstance(node, list):
            try:
                idx = int(part)
            except ValueError:
                return default
            node = node[idx] if 0 <= idx < len(node) else _MISSING
        else:
            return default
        if node is _MISSING:
            return default
    return node


def require(doc, pointer):
    """Like json_pointer but raises DecodeError on a missing or empty value."""
    value = json_pointer(doc, pointer)
    if value is None or value == "":
        raise DecodeError(f"Missing field {pointer}")
    return value
