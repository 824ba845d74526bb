DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/142.0.0.0 Safari/537.36"
)

USAGE_DEFAULTS = {
    "enabled": True,
    "schedule": {
        # Minutes past each hour; samples land just before the half-hour slot marks.
        "minutes": [29, 59],
    },
    "api": {
        "login_url": "https://omniscapp.slt.lk/slt/ext/api/Account/Login",
        "usage_url": "https://omniscapp.slt.lk/slt/ext/api/BBVAS/UsageSummary",
        "client_id": "b7402e9d66808f762ccedbe42c20668e",
        "origin": "https://myslt.slt.lk",
        "timeout_seconds": None,
    },
    "dashboard": {
        "daily_limit_gb": 10,
        "metric": "vas_used_gb",
        # 0 = whole calendar month; N > 0 = trailing N days.
        "monthly_window_days": 0,
        "usage_days_default": 7,
    },
}

USAGE_STATE_DEFAULTS = {
    "last_run_key": None,
    "last_run_at": None,
}
