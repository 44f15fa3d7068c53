#utils/dates.py
from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional


def _fromisoformat_utc_aware(ts: str) -> datetime:
    """
    Parse an ISO-8601 string into an aware datetime.

    - Accepts 'Z' suffix by translating to '+00:00'
    - Accepts offsets like '+07:00'
    - Accepts bare dates ('2025-01-13') as midnight
    - If the string is naive (no tz info), assume UTC
    """
    s = ts.strip()
    if s.endswith(("Z", "z")):
        s = s[:-1] + "+00:00"

    if len(s) == 10:
        d = date.fromisoformat(s)
        return datetime(d.year, d.month, d.day, tzinfo=timezone.utc)

    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def normalize_iso8601(ts: Optional[str]) -> Optional[str]:
    """
    Normalize a timestamp string to ISO-8601 UTC (Z-notation).

    Examples
    --------
    >>> normalize_iso8601("2025-08-19T10:52:51-07:00")
    '2025-08-19T17:52:51Z'

    >>> normalize_iso8601("2025-08-19")
    '2025-08-19T00:00:00Z'

    Notes
    -----
    - Accepts None and returns None.
    - Drops microseconds.
    """
    if ts is None:
        return None

    dt = _fromisoformat_utc_aware(ts).astimezone(timezone.utc).replace(microsecond=0)
    return dt.strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_sis_date(value: Optional[str]) -> Optional[str]:
    """
    Parse a start_date/end_date cell from an SIS CSV.

    Blank cells mean "no date" and return None. Anything that is not
    ISO-8601 raises ValueError so the importer can report the row.
    """
    if value is None or not value.strip():
        return None
    try:
        return normalize_iso8601(value)
    except OverflowError as exc:
        # in range locally but not once shifted to UTC (e.g. 0001-01-01T00:00+01:00)
        raise ValueError(f"date out of range: {value.strip()}") from exc


def now_utc_iso() -> str:
    """
    Return the current UTC timestamp in ISO-8601 Z notation.

    >>> now_utc_iso().endswith("Z")
    True
    """
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")
