"""SLT usage API client: bearer token cache, login and the single re-login retry.

Per ``fetch_usage`` call the client makes at most one login and at most two
usage requests. Only the first candidate token is ever tried; a 401/403 on it
goes straight to a fresh login.
"""

import json
import logging
import urllib.error
import urllib.parse
import urllib.request

from .settings_defaults import DEFAULT_USER_AGENT, USAGE_DEFAULTS

logger = logging.getLogger(__name__)

STATE_NO_TOKEN = "NoToken"
STATE_HAVE_CACHED_TOKEN = "HaveCachedToken"
STATE_LOGIN_IN_FLIGHT = "LoginInFlight"
STATE_AUTHENTICATED = "Authenticated"
STATE_FAILED = "Failed"


class SltError(RuntimeError):
    pass


class ConfigurationError(SltError):
    pass


class MissingSubscriberId(ConfigurationError):
    def __init__(self, message="Missing SLT_SUBSCRIBER_ID"):
        super().__init__(message)


class MissingCredentialConfiguration(ConfigurationError):
    def __init__(self, message=None):
        super().__init__(
            message
            or "No SLT auth token available. Provide SLT_AUTH_TOKEN or configure "
            "SLT_USERNAME and SLT_PASSWORD for auto-login."
        )


class UpstreamTransportError(SltError):
    what = "SLT request"

    def __init__(self, status, body, context=""):
        self.status = status
        self.body = body
        where = f" {context}" if context else ""
        if status is None:
            message = f"{self.what} could not reach the server{where}: {body}"
        else:
            message = f"{self.what} failed{where} with {status}: {body}"
        super().__init__(message)


class UpstreamUsageError(UpstreamTransportError):
    what = "SLT API"


class UpstreamLoginError(UpstreamTransportError):
    what = "SLT login"


class UpstreamBusinessError(SltError):
    pass


class MalformedResponseError(SltError):
    pass


class MalformedLoginResponse(MalformedResponseError):
    def __init__(self, message="SLT login response did not include an accessToken"):
        super().__init__(message)


class TokenCache:
    """Holds the last bearer token that worked.

    Shared by every cycle in the process without a lock; overlapping cycles
    may overwrite each other's token, which only costs an extra login.
    """

    def __init__(self, token=None):
        self._token = token

    def get(self):
        return self._token

    def set(self, token):
        self._token = token

    def clear(self):
        self._token = None


token_cache = TokenCache()


def urllib_transport(method, url, headers=None, data=None, timeout=None):
    """Send one request and return ``(status, body_text)`` for any HTTP status.

    Connection-level failures propagate as ``urllib.error.URLError``.
    """
    req = urllib.request.Request(url, data=data, headers=headers or {}, method=method)
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            return resp.status, resp.read().decode("utf-8", errors="replace")
    except urllib.error.HTTPError as exc:
        try:
            body = exc.read().decode("utf-8", errors="replace")
        except Exception:
            body = ""
        return exc.code, body


def candidate_tokens(*tokens):
    seen = []
    for token in tokens:
        if not isinstance(token, str):
            continue
        token = token.strip()
        if token and token not in seen:
            seen.append(token)
    return seen


def _is_ok(status):
    return status is not None and 200 <= status < 300


def _is_unauthorized(status):
    return status in (401, 403)


class SltClient:
    def __init__(self, env, api=None, cache=None, transport=None):
        self.env = env or {}
        self.api = dict(USAGE_DEFAULTS["api"])
        self.api.update(api or {})
        self.cache = cache if cache is not None else token_cache
        self.transport = transport or urllib_transport
        self.state = STATE_HAVE_CACHED_TOKEN if self.cache.get() else STATE_NO_TOKEN

    def can_auto_login(self):
        return bool(self.env.get("username") and self.env.get("password"))

    def _headers(self, extra=None):
        origin = self.api.get("origin") or "https://myslt.slt.lk"
        headers = {
            "Accept": "application/json, text/plain, */*",
            "Accept-Language": "en-US,en;q=0.9",
            "Origin": origin,
            "Referer": origin.rstrip("/") + "/",
            "Sec-Fetch-Dest": "empty",
            "Sec-Fetch-Mode": "cors",
            "Sec-Fetch-Site": "same-site",
            "User-Agent": self.env.get("user_agent") or DEFAULT_USER_AGENT,
            "X-IBM-Client-Id": self.api["client_id"],
        }
        if extra:
            headers.update(extra)
        return headers

    def _send(self, error_cls, method, url, headers, data=None, context=""):
        try:
            return self.transport(method, url, headers=headers, data=data, timeout=self.api.get("timeout_seconds"))
        except urllib.error.URLError as exc:
            self.state = STATE_FAILED
            raise error_cls(None, str(getattr(exc, "reason", exc)), context) from exc

    def _request_usage(self, subscriber_id, token, context=""):
        query = urllib.parse.urlencode({"subscriberID": subscriber_id})
        url = f"{self.api['usage_url']}?{query}"
        headers = self._headers({"Authorization": f"bearer {token}"})
        return self._send(UpstreamUsageError, "GET", url, headers, context=context)

    def login(self):
        """Log in with the configured credentials and cache the new token."""
        if not self.can_auto_login():
            self.state = STATE_FAILED
            raise MissingCredentialConfiguration("Missing SLT_USERNAME or SLT_PASSWORD secret")
        self.state = STATE_LOGIN_IN_FLIGHT
        form = urllib.parse.urlencode(
            {
                "username": self.env["username"],
                "password": self.env["password"],
                "channelID": self.env.get("channel_id") or "WEB",
            }
        ).encode("utf-8")
        headers = self._headers({"Content-Type": "application/x-www-form-urlencoded"})
        logger.info("Logging in to SLT as %s", self.env["username"])
        status, body = self._send(UpstreamLoginError, "POST", self.api["login_url"], headers, data=form)
        if not _is_ok(status):
            self.state = STATE_FAILED
            raise UpstreamLoginError(status, body)
        try:
            payload = json.loads(body)
        except ValueError as exc:
            self.state = STATE_FAILED
            raise MalformedLoginResponse("SLT login response was not valid JSON") from exc
        token = payload.get("accessToken") if isinstance(payload, dict) else None
        token = token.strip() if isinstance(token, str) else ""
        if not token:
            self.state = STATE_FAILED
            raise MalformedLoginResponse()
        self.cache.set(token)
        self.state = STATE_HAVE_CACHED_TOKEN
        logger.info("SLT login succeeded")
        return token

    def fetch_usage(self):
        """Return the parsed usage-summary payload, logging in again once if the token is rejected."""
        subscriber_id = (self.env.get("subscriber_id") or "").strip()
        if not subscriber_id:
            self.state = STATE_FAILED
            raise MissingSubscriberId()

        tokens = candidate_tokens(self.cache.get(), self.env.get("auth_token"))
        if tokens:
            self.state = STATE_HAVE_CACHED_TOKEN
            token = tokens[0]
            status, body = self._request_usage(subscriber_id, token)
            if _is_ok(status):
                self.cache.set(token)
                return self._accept(body)
            if not _is_unauthorized(status) or not self.can_auto_login():
                self.state = STATE_FAILED
                raise UpstreamUsageError(status, body)
            logger.info("SLT rejected the bearer token with %s; logging in again", status)
        elif not self.can_auto_login():
            self.state = STATE_FAILED
            raise MissingCredentialConfiguration()
        else:
            self.state = STATE_NO_TOKEN

        token = self.login()
        status, body = self._request_usage(subscriber_id, token, context="after re-login")
        if not _is_ok(status):
            self.state = STATE_FAILED
            raise UpstreamUsageError(status, body, context="after re-login")
        return self._accept(body)

    def _accept(self, body):
        try:
            payload = json.loads(body)
        except ValueError as exc:
            self.state = STATE_FAILED
            raise MalformedResponseError("SLT usage response was not valid JSON") from exc
        if not isinstance(payload, dict):
            self.state = STATE_FAILED
            raise MalformedResponseError("SLT usage response was not a JSON object")
        self.state = STATE_AUTHENTICATED
        return payload
