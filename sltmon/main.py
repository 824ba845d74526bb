from pathlib import Path

import logging
import os
from datetime import datetime, timedelta, timezone

from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse, Response
from fastapi.templating import Jinja2Templates

from .db import get_job_status, get_latest_usage_row_between, get_usage_rows_since, init_db, utc_iso
from .env import load_env
from .forms import parse_positive_int
from .jobs import JobsManager, run_usage_cycle
from .series import get_daily_usage_series, get_monthly_usage
from .settings_defaults import USAGE_DEFAULTS
from .settings_store import get_settings
from .slt import SltClient
from .timebuckets import (
    day_bounds,
    format_day_key,
    format_day_title,
    format_reported_at,
    parse_day_key_param,
)

BASE_DIR = Path(__file__).resolve().parent

logging.basicConfig(
    level=os.environ.get("SLTMON_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

JSON_HEADERS = {"Access-Control-Allow-Origin": "*"}
MAX_USAGE_DAYS = 3650

app = FastAPI()
templates = Jinja2Templates(directory=str(BASE_DIR / "templates"))

jobs_manager = JobsManager()


@app.on_event("startup")
async def startup_event():
    init_db()
    jobs_manager.start()


@app.on_event("shutdown")
async def shutdown_event():
    jobs_manager.stop()


@app.middleware("http")
async def preflight(request: Request, call_next):
    if request.method == "OPTIONS":
        return Response(status_code=200, headers=JSON_HEADERS, media_type="application/json")
    return await call_next(request)


def make_context(request, extra=None):
    ctx = {"request": request}
    if extra:
        ctx.update(extra)
    return ctx


def json_response(payload, status_code=200):
    return JSONResponse(payload, status_code=status_code, headers=JSON_HEADERS)


def usage_settings():
    return get_settings("usage", USAGE_DEFAULTS)


def make_client(cfg):
    return SltClient(load_env(), api=cfg.get("api"))


def line_points(series, ceiling):
    # SVG viewBox is 100x100 with y growing downwards.
    if not series:
        return ""
    ceiling = max([point["value"] for point in series] + [ceiling, 0.0001])
    step = 100.0 / max(len(series) - 1, 1)
    return " ".join(
        f"{index * step:.2f},{100.0 - min(point['value'] / ceiling, 1.0) * 100.0:.2f}" for index, point in enumerate(series)
    )


def series_metric(cfg):
    return cfg.get("dashboard", {}).get("metric") or "vas_used_gb"


@app.get("/", response_class=HTMLResponse)
async def dashboard(request: Request):
    cfg = usage_settings()
    dashboard_cfg = cfg.get("dashboard", {})
    metric = series_metric(cfg)
    now = datetime.now(timezone.utc)
    start_utc, end_utc = day_bounds(now)
    latest = get_latest_usage_row_between(utc_iso(start_utc), utc_iso(end_utc))
    today_key = format_day_key(now)
    # Unknown or malformed days fall back to today on the HTML page.
    selected = parse_day_key_param(request.query_params.get("day") or "") or now
    selected_key = format_day_key(selected)
    limit_gb = float(dashboard_cfg.get("daily_limit_gb") or 10)
    vas_used = (latest or {}).get("vas_used_gb") or 0.0
    intraday = get_daily_usage_series(selected, metric=metric)
    monthly = get_monthly_usage(now, window_days=dashboard_cfg.get("monthly_window_days") or 0, metric=metric)
    peak = max([point["value"] for point in monthly] + [limit_gb, 0.0001])
    return templates.TemplateResponse(
        request,
        "dashboard.html",
        make_context(
            request,
            {
                "latest": latest,
                "package_name": (latest or {}).get("package_name") or "Unknown package",
                "vas_used": vas_used,
                "base_used": (latest or {}).get("used_gb") or 0.0,
                "daily_limit_gb": limit_gb,
                "remaining_gb": max(limit_gb - vas_used, 0.0),
                "percentage": min(vas_used / limit_gb * 100.0, 100.0) if limit_gb else 0.0,
                "reported_at": format_reported_at(latest["timestamp"]) if latest else "-",
                "intraday": intraday,
                "intraday_points": line_points(intraday, limit_gb),
                "monthly": monthly,
                "monthly_peak": peak,
                "selected_day_title": format_day_title(selected_key, today_key),
                "selected_day_key": selected_key,
                "today_key": today_key,
            },
        ),
    )


@app.get("/usage")
async def usage(request: Request):
    cfg = usage_settings()
    default_days = int(cfg.get("dashboard", {}).get("usage_days_default") or 7)
    days = parse_positive_int(request.query_params, "days", default_days, maximum=MAX_USAGE_DAYS)
    since = utc_iso(datetime.now(timezone.utc) - timedelta(days=days))
    rows = get_usage_rows_since(since)
    return json_response({"count": len(rows), "since": since, "rows": rows})


@app.get("/intraday")
async def intraday(request: Request):
    day_param = request.query_params.get("day")
    reference = parse_day_key_param(day_param) if day_param else datetime.now(timezone.utc)
    if reference is None:
        return json_response({"error": "Invalid day parameter"}, status_code=400)
    series = get_daily_usage_series(reference, metric=series_metric(usage_settings()))
    return json_response({"dayKey": format_day_key(reference), "series": series})


@app.get("/monthly")
async def monthly():
    cfg = usage_settings()
    window_days = cfg.get("dashboard", {}).get("monthly_window_days") or 0
    series = get_monthly_usage(window_days=window_days, metric=series_metric(cfg))
    return json_response(
        {
            "startDayKey": series[0]["key"] if series else None,
            "endDayKey": series[-1]["key"] if series else None,
            "series": series,
        }
    )


@app.api_route("/trigger", methods=["GET", "POST"])
async def trigger_now():
    cfg = usage_settings()
    try:
        record = run_usage_cycle(cfg, client=make_client(cfg))
    except Exception as exc:
        logger.warning("Manual SLT usage poll failed: %s", exc)
        return json_response({"stored": False, "error": str(exc)}, status_code=500)
    return json_response({"stored": True, "record": record})


@app.api_route("/login", methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
async def login_now(request: Request):
    if request.method != "POST":
        return PlainTextResponse("Method not allowed", status_code=405, headers=JSON_HEADERS)
    try:
        make_client(usage_settings()).login()
    except Exception as exc:
        logger.warning("Manual SLT login failed: %s", exc)
        return json_response({"loggedIn": False, "error": str(exc)}, status_code=500)
    return json_response({"loggedIn": True})


@app.get("/health")
async def health():
    return PlainTextResponse("ok")


@app.get("/jobs")
async def jobs():
    return json_response({"jobs": get_job_status()})


@app.api_route("/{path:path}", methods=["GET", "POST"])
async def index(path: str):
    minutes = usage_settings().get("schedule", {}).get("minutes") or []
    return json_response(
        {
            "message": "SLT usage monitor",
            "endpoints": [
                "/usage?days=7",
                "/intraday?day=YYYY-MM-DD",
                "/monthly",
                "/trigger",
                "/login",
                "/health",
                "/jobs",
            ],
            "schedule": [f"{int(minute)} * * * *" for minute in minutes],
        }
    )
