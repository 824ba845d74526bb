"""Intraday and monthly usage series built from the append-only usage log.

Intraday points carry the last observed value forward across the day.
Monthly points take each day's own last value; a day without samples is 0
even when the previous day had data.
"""

from datetime import datetime, timezone

from . import db
from .forms import parse_nullable_number
from .timebuckets import (
    build_slot_grid,
    day_bounds,
    format_day_key,
    format_day_label,
    month_bounds,
    parse_timestamp,
    trailing_day_keys,
)

METRICS = ("vas_used_gb", "used_gb")
DEFAULT_METRIC = "vas_used_gb"


def _ordered_samples(samples):
    cleaned = []
    for instant, value in samples:
        instant = parse_timestamp(instant)
        if instant is None:
            continue
        cleaned.append((instant, value))
    # sorted() is stable, so equal instants keep insertion order.
    cleaned.sort(key=lambda item: item[0])
    return cleaned


def carry_forward(slots, samples):
    ordered = _ordered_samples(samples)
    points = []
    cursor = 0
    current = 0.0
    for slot in slots:
        while cursor < len(ordered) and ordered[cursor][0] <= slot.instant:
            current = ordered[cursor][1]
            cursor += 1
        points.append({"key": slot.label, "label": slot.label, "value": current})
    return points


def per_day_last(day_keys, samples):
    latest = {}
    for instant, value in _ordered_samples(samples):
        latest[format_day_key(instant)] = value
    return [
        {"key": day_key, "label": format_day_label(day_key), "value": latest.get(day_key, 0.0)}
        for day_key in day_keys
    ]


def _check_metric(metric):
    if metric not in METRICS:
        raise ValueError(f"unknown usage metric: {metric}")
    return metric


def rows_to_samples(rows, metric=DEFAULT_METRIC):
    metric = _check_metric(metric)
    samples = []
    for row in rows:
        value = parse_nullable_number(row.get(metric))
        samples.append((row.get("timestamp"), value if value is not None else 0.0))
    return samples


def get_daily_usage_series(reference, metric=DEFAULT_METRIC):
    start_utc, end_utc = day_bounds(reference)
    rows = db.get_usage_rows_between(db.utc_iso(start_utc), db.utc_iso(end_utc))
    return carry_forward(build_slot_grid(start_utc, end_utc), rows_to_samples(rows, metric))


def get_monthly_usage(reference=None, window_days=0, metric=DEFAULT_METRIC):
    reference = reference or datetime.now(timezone.utc)
    if window_days and int(window_days) > 0:
        start_utc, end_utc, day_keys = trailing_day_keys(reference, window_days)
    else:
        start_utc, end_utc, day_keys = month_bounds(reference)
    rows = db.get_usage_rows_between(db.utc_iso(start_utc), db.utc_iso(end_utc))
    return per_day_last(day_keys, rows_to_samples(rows, metric))
