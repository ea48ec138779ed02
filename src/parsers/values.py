"""
Lenient value parsing shared by all format parsers.

Source files carry dates and numbers in many shapes; these helpers return
None instead of raising so a single bad cell never fails a whole file.
"""
import re
from datetime import datetime, date, timedelta, timezone
from typing import Optional, Tuple

_NUMBER_RE = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)$")

# HL7 TS: YYYYMMDD[HHMM[SS[.fff]]][+-ZZZZ]
_HL7_TS_RE = re.compile(
    r"^(\d{4})(\d{2})(\d{2})(?:(\d{2})(\d{2})(?:(\d{2})(?:\.\d+)?)?)?([+-]\d{4})?$"
)

# Tried in order after HL7 and ISO-8601
_DATETIME_FORMATS = [
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y",
    "%Y/%m/%d",
    "%d-%b-%Y",
    "%d %b %Y",
    "%b %d, %Y",
    "%B %d, %Y",
]


def parse_number(raw: Optional[str]) -> Optional[float]:
    """Parse a plain decimal number ('13.5', '-2', '.5'); None otherwise."""
    if raw is None:
        return None
    text = str(raw).strip().replace(",", "")
    if not _NUMBER_RE.match(text):
        return None
    return float(text)


def parse_datetime(raw: Optional[str]) -> Optional[datetime]:
    """
    Parse a date or date-time string in any of the common source formats.

    Returns None when nothing matches.
    """
    if raw is None:
        return None
    text = str(raw).strip()
    if not text:
        return None

    if _HL7_TS_RE.match(text):
        return _parse_hl7_timestamp(text)

    iso_text = text[:-1] + "+00:00" if text.endswith("Z") else text
    try:
        return datetime.fromisoformat(iso_text)
    except ValueError:
        pass

    for fmt in _DATETIME_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def _parse_hl7_timestamp(text: str) -> Optional[datetime]:
    year, month, day, hour, minute, second, offset = _HL7_TS_RE.match(text).groups()
    tzinfo = None
    if offset:
        sign = -1 if offset[0] == "-" else 1
        tzinfo = timezone(sign * timedelta(hours=int(offset[1:3]), minutes=int(offset[3:5])))
    try:
        return datetime(
            int(year), int(month), int(day),
            int(hour or 0), int(minute or 0), int(second or 0),
            tzinfo=tzinfo,
        )
    except ValueError:
        return None


def parse_date(raw: Optional[str]) -> Optional[date]:
    parsed = parse_datetime(raw)
    return parsed.date() if parsed else None


def split_value_and_unit(raw) -> Tuple[Optional[float], Optional[str], Optional[str]]:
    """
    Split a reported value into (quantity, unit, string_value).

    '13.2 g/dL' → (13.2, 'g/dL', None)
    '72'        → (72.0, None, None)
    72          → (72.0, None, None)
    '120/80 mmHg' → (None, None, '120/80 mmHg')
    """
    if raw is None:
        return None, None, None
    if isinstance(raw, bool):
        return None, None, str(raw).lower()
    if isinstance(raw, (int, float)):
        return float(raw), None, None

    text = str(raw).strip()
    if not text:
        return None, None, None

    parts = text.split(" ", 1)
    number = parse_number(parts[0])
    if number is None:
        return None, None, text
    unit = parts[1].strip() if len(parts) > 1 and parts[1].strip() else None
    return number, unit, None


def utcnow() -> datetime:
    """Get current UTC time (timezone-aware)."""
    return datetime.now(timezone.utc)
