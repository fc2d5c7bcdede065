"""Payload parsing for the ingest and query endpoints.

Everything here runs before the store is touched: timestamps are resolved to
epoch milliseconds and nested sensor payloads are flattened into
``(metric key, value)`` pairs.
"""
import datetime
import math
import re
from typing import Any, Dict, List, Optional, Tuple

EPOCH = datetime.datetime(1970, 1, 1, tzinfo=datetime.timezone.utc)
ONE_MS = datetime.timedelta(milliseconds=1)

# Gateway clock format without zone information, e.g. "2025-09-25 09:54:39"
LOCAL_TIMESTAMP_RE = re.compile(r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}$")
UTC_OFFSET_RE = re.compile(r"^([+-])(\d{2}):?(\d{2})$")

# metric key -> (payload section, field)
INGEST_FIELDS = (
    ("voltage", ("energy_meter", "voltage_V")),
    ("frequency_Hz", ("energy_meter", "frequency_Hz")),
    ("energy_kWh", ("energy_meter", "energy_kWh")),
    ("current_A", ("energy_meter", "current_A")),
    ("temp.CH1", ("temperature", "CH1")),
    ("temp.CH3", ("temperature", "CH3")),
    ("temp.CH5", ("temperature", "CH5")),
    ("vibration", ("vibrator_meter", "s4_voltage")),
)

EXAMPLE_PAYLOAD = {
    "temperature": {"CH1": 32.0, "CH3": 31.0, "CH5": 31.05},
    "energy_meter": {"energy_kWh": 17.39, "frequency_Hz": 50.2, "voltage_V": 230.0},
    "vibrator_meter": {"s4_voltage": 2.9588},
    "timestamp": "2025-09-25 09:54:39",
}


class PayloadError(ValueError):
    """Raised for request data that must be rejected with a 400."""


def parse_utc_offset(text: str) -> datetime.timezone:
    text = (text or "").strip()
    if text.upper() in ("Z", "UTC"):
        return datetime.timezone.utc
    m = UTC_OFFSET_RE.match(text)
    if not m:
        raise ValueError(f"Invalid UTC offset {text!r}; expected e.g. +05:30")
    sign, hours, minutes = m.groups()
    delta = datetime.timedelta(hours=int(hours), minutes=int(minutes))
    if sign == "-":
        delta = -delta
    return datetime.timezone(delta)


def to_epoch_ms(dt: datetime.datetime) -> int:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=datetime.timezone.utc)
    return (dt - EPOCH) // ONE_MS


def to_iso(ts_ms: int) -> str:
    """Format epoch milliseconds as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""
    dt = EPOCH + datetime.timedelta(milliseconds=ts_ms)
    return dt.strftime("%Y-%m-%dT%H:%M:%S") + f".{ts_ms % 1000:03d}Z"


def _parse_iso(text: str) -> datetime.datetime:
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    return datetime.datetime.fromisoformat(text)


def _formattable(ts_ms: int) -> int:
    # Instants outside datetime's range cannot be echoed back to clients
    to_iso(ts_ms)
    return ts_ms


def parse_timestamp(value: Any, local_tz: datetime.tzinfo) -> int:
    """Resolve an ingest timestamp to epoch milliseconds.

    Accepts ISO-8601 (naive values are UTC) or ``YYYY-MM-DD HH:MM:SS``, which
    is read in ``local_tz``.
    """
    if not isinstance(value, str) or not value.strip():
        raise PayloadError("Invalid timestamp format")
    text = value.strip()
    try:
        if LOCAL_TIMESTAMP_RE.match(text):
            dt = datetime.datetime.strptime(text, "%Y-%m-%d %H:%M:%S")
            return _formattable(to_epoch_ms(dt.replace(tzinfo=local_tz)))
        return _formattable(to_epoch_ms(_parse_iso(text)))
    except (ValueError, OverflowError):
        raise PayloadError("Invalid timestamp format") from None


def parse_query_time(value: str) -> int:
    """Parse a ``from``/``to`` query bound given as epoch ms or ISO-8601."""
    text = (value or "").strip()
    try:
        if text.isascii() and text.isdigit():
            return _formattable(int(text))
        return _formattable(to_epoch_ms(_parse_iso(text)))
    except (ValueError, OverflowError):
        raise PayloadError("Invalid date format. Use ISO strings") from None


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def flatten_payload(body: Dict[str, Any]) -> List[Tuple[str, float]]:
    """Map a nested sensor payload to ``(metric key, value)`` pairs.

    Missing sections, nulls and non-numeric values are skipped.
    """
    pairs: List[Tuple[str, float]] = []
    for key, (section_name, field) in INGEST_FIELDS:
        section: Optional[Any] = body.get(section_name)
        if not isinstance(section, dict):
            continue
        value = section.get(field)
        if _is_number(value):
            pairs.append((key, float(value)))
    return pairs
