import math


def parse_nullable_number(value):
    # Upstream sends numbers as strings, blanks or nulls; anything non-finite becomes None.
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        raw = value
    else:
        raw = str(value).strip()
        if not raw:
            return None
    try:
        numeric = float(raw)
    except (TypeError, ValueError, OverflowError):
        return None
    return numeric if math.isfinite(numeric) else None


def parse_positive_int(params, key, default, maximum=None):
    value = params.get(key)
    try:
        parsed = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return default
    if parsed <= 0:
        return default
    if maximum is not None:
        return min(parsed, maximum)
    return parsed


def parse_int_list(values, minimum=None, maximum=None):
    if isinstance(values, str):
        values = values.replace(",", " ").split()
    parsed = []
    for item in values or []:
        try:
            number = int(item)
        except (TypeError, ValueError):
            continue
        if minimum is not None and number < minimum:
            continue
        if maximum is not None and number > maximum:
            continue
        if number not in parsed:
            parsed.append(number)
    return parsed
