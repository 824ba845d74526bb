import os

from .settings_defaults import DEFAULT_USER_AGENT

DEFAULT_CHANNEL_ID = "WEB"


def _env(environ, name, default=None):
    value = (environ.get(name) or "").strip()
    return value or default


def load_env(environ=None):
    """Read subscriber identity and SLT secrets from the environment.

    Missing values come back as None; the SLT client decides which of them
    are required for the call being made.
    """
    environ = os.environ if environ is None else environ
    return {
        "subscriber_id": _env(environ, "SLT_SUBSCRIBER_ID"),
        "auth_token": _env(environ, "SLT_AUTH_TOKEN"),
        "username": _env(environ, "SLT_USERNAME"),
        "password": environ.get("SLT_PASSWORD") or None,
        "channel_id": _env(environ, "SLT_CHANNEL_ID", DEFAULT_CHANNEL_ID),
        "user_agent": _env(environ, "SLT_USER_AGENT", DEFAULT_USER_AGENT),
    }
