import logging
import threading
import time as time_module
from datetime import datetime, timezone

from .db import update_job_status, utc_now_iso
from .env import load_env
from .forms import parse_int_list
from .poller import record_usage
from .settings_defaults import USAGE_DEFAULTS, USAGE_STATE_DEFAULTS
from .settings_store import get_settings, get_state, save_state
from .slt import SltClient

logger = logging.getLogger(__name__)

USAGE_JOB = "slt_usage"


def run_key(now):
    return now.strftime("%Y-%m-%dT%H:%M")


def is_due(now, minutes, last_run_key):
    """True once per matching minute: ``now.minute`` is scheduled and has not run yet."""
    if now.minute not in minutes:
        return False
    return run_key(now) != last_run_key


def run_usage_cycle(cfg, env=None, client=None):
    """One scheduled or manual poll; shared by the background loop and the /trigger route."""
    client = client or SltClient(env or load_env(), api=cfg.get("api"))
    update_job_status(USAGE_JOB, last_run_at=utc_now_iso())
    try:
        record = record_usage(client)
    except Exception as exc:
        update_job_status(USAGE_JOB, last_error=str(exc), last_error_at=utc_now_iso())
        raise
    update_job_status(USAGE_JOB, last_success_at=utc_now_iso(), last_error="", last_error_at="")
    return record


class JobsManager:
    def __init__(self, poll_seconds=20):
        self.stop_event = threading.Event()
        self.threads = []
        self.poll_seconds = poll_seconds

    def start(self):
        self.threads = [threading.Thread(target=self._usage_loop, name="slt-usage", daemon=True)]
        for thread in self.threads:
            thread.start()

    def stop(self):
        self.stop_event.set()
        for thread in self.threads:
            thread.join(timeout=2)

    def _usage_loop(self):
        while not self.stop_event.is_set():
            self.tick(datetime.now(timezone.utc))
            self.stop_event.wait(self.poll_seconds)

    def tick(self, now):
        cfg = get_settings("usage", USAGE_DEFAULTS)
        if not cfg.get("enabled"):
            return False
        minutes = parse_int_list(cfg.get("schedule", {}).get("minutes"), minimum=0, maximum=59)
        state = get_state("usage_state", USAGE_STATE_DEFAULTS)
        if not is_due(now, minutes, state.get("last_run_key")):
            return False

        # Mark the minute before running so a failing cycle is not repeated within it.
        state["last_run_key"] = run_key(now)
        state["last_run_at"] = utc_now_iso()
        save_state("usage_state", state)
        started = time_module.monotonic()
        try:
            run_usage_cycle(cfg)
        except Exception:
            logger.exception("Scheduled SLT usage poll failed")
            return False
        logger.debug("Scheduled SLT usage poll finished in %.1fs", time_module.monotonic() - started)
        return True
