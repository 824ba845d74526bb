"""Day, month and half-hour bucketing for the fixed Asia/Colombo offset.

Bounds are computed by shifting an instant forward by the offset, truncating
in plain UTC arithmetic and shifting back. The offset is a constant 05:30
with no daylight saving; a zone with transitions would need a real
calendar-aware computation here.
"""

import re
from collections import namedtuple
from datetime import datetime, timedelta, timezone

COLOMBO_OFFSET_MINUTES = 330
COLOMBO_OFFSET = timedelta(minutes=COLOMBO_OFFSET_MINUTES)
COLOMBO_TZ = timezone(COLOMBO_OFFSET, "Asia/Colombo")

SLOTS_PER_DAY = 48
SLOT_FIRST_OFFSET = timedelta(minutes=29)
SLOT_INTERVAL = timedelta(minutes=30)

_DAY_KEY_RE = re.compile(r"\d{4}-\d{2}-\d{2}", re.ASCII)

Slot = namedtuple("Slot", ["instant", "label"])


def _as_utc(value):
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _shifted(reference):
    # Wall-clock fields of the local time, read off a UTC datetime.
    return _as_utc(reference) + COLOMBO_OFFSET


def _unshift(year, month, day):
    return datetime(year, month, day, tzinfo=timezone.utc) - COLOMBO_OFFSET


def day_bounds(reference):
    shifted = _shifted(reference)
    start_utc = _unshift(shifted.year, shifted.month, shifted.day)
    return start_utc, start_utc + timedelta(days=1)


def _next_month(year, month):
    if month == 12:
        return year + 1, 1
    return year, month + 1


def month_bounds(reference):
    shifted = _shifted(reference)
    year, month = shifted.year, shifted.month
    next_year, next_month = _next_month(year, month)
    start_utc = _unshift(year, month, 1)
    end_utc = _unshift(next_year, next_month, 1)
    days_in_month = (datetime(next_year, next_month, 1) - datetime(year, month, 1)).days
    day_keys = [f"{year:04d}-{month:02d}-{day:02d}" for day in range(1, days_in_month + 1)]
    return start_utc, end_utc, day_keys


def trailing_day_keys(reference, days):
    """Bounds and keys for the ``days`` local days ending with the reference day, oldest first."""
    days = max(int(days), 1)
    today_start, end_utc = day_bounds(reference)
    start_utc = today_start - timedelta(days=days - 1)
    day_keys = [format_day_key(start_utc + timedelta(days=offset)) for offset in range(days)]
    return start_utc, end_utc, day_keys


def build_slot_grid(start_utc, end_utc):
    slots = []
    start_utc = _as_utc(start_utc)
    end_utc = _as_utc(end_utc)
    for index in range(SLOTS_PER_DAY):
        instant = start_utc + SLOT_FIRST_OFFSET + index * SLOT_INTERVAL
        if instant >= end_utc:
            break
        slots.append(Slot(instant, format_slot_label(instant)))
    return slots


def format_day_key(instant):
    return _as_utc(instant).astimezone(COLOMBO_TZ).date().isoformat()


def format_slot_label(instant):
    return _as_utc(instant).astimezone(COLOMBO_TZ).strftime("%H:%M")


def format_day_label(day_key):
    return str(int(day_key[8:10]))


def format_day_title(day_key, today_key):
    selected = datetime.strptime(day_key, "%Y-%m-%d").date()
    today = datetime.strptime(today_key, "%Y-%m-%d").date()
    if selected == today:
        return "Today"
    if selected == today - timedelta(days=1):
        return "Yesterday"
    return f"{selected:%a}, {selected.day} {selected:%b}"


def format_reported_at(value):
    instant = parse_timestamp(value)
    if instant is None:
        return "-"
    return instant.astimezone(COLOMBO_TZ).strftime("%d/%m/%Y, %H:%M:%S")


def parse_day_key_param(value):
    """Return the UTC instant of local midnight for a ``YYYY-MM-DD`` key, or None."""
    if not isinstance(value, str) or not _DAY_KEY_RE.fullmatch(value):
        return None
    try:
        local_day = datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        return None
    try:
        start_utc = _unshift(local_day.year, local_day.month, local_day.day)
        # The whole local day must fit in the datetime range.
        day_bounds(start_utc)
    except OverflowError:
        return None
    return start_utc


def parse_timestamp(value):
    if value is None:
        return None
    if isinstance(value, datetime):
        return _as_utc(value)
    raw = str(value).strip()
    if not raw:
        return None
    if raw.endswith(("Z", "z")):
        raw = raw[:-1] + "+00:00"
    try:
        return _as_utc(datetime.fromisoformat(raw))
    except ValueError:
        return None
