import copy

from .db import get_json, set_json


def deep_merge(defaults, overrides):
    if overrides is None:
        return copy.deepcopy(defaults)
    result = copy.deepcopy(defaults)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def get_settings(key, defaults):
    saved = get_json("settings", key, None)
    return deep_merge(defaults, saved or {})


def save_settings(key, settings):
    set_json("settings", key, settings)


def get_state(key, default):
    return deep_merge(default, get_json("state", key, None) or {})


def save_state(key, state):
    set_json("state", key, state)
