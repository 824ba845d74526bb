import logging
from datetime import datetime, timezone

from . import db
from .forms import parse_nullable_number
from .slt import UpstreamBusinessError

logger = logging.getLogger(__name__)

# The upstream schema spells this field both ways; first non-empty wins.
ERROR_MESSAGE_FIELDS = ("errorMessage", "errorMessege")
UNKNOWN_ERROR_MESSAGE = "Unknown SLT API error"


def _section(node, key):
    value = node.get(key) if isinstance(node, dict) else None
    return value if isinstance(value, dict) else {}


def upstream_error_message(payload):
    for field in ERROR_MESSAGE_FIELDS:
        message = payload.get(field)
        if isinstance(message, str) and message.strip():
            return message
    return UNKNOWN_ERROR_MESSAGE


def _first_usage_detail(package_info):
    details = package_info.get("usageDetails")
    if isinstance(details, list) and details and isinstance(details[0], dict):
        return details[0].get("used")
    return None


def transform_payload(payload, now=None):
    now = now or datetime.now(timezone.utc)
    bundle = _section(payload, "dataBundle")
    package_info = _section(bundle, "my_package_info")
    package_name = package_info.get("package_name")

    used_gb = parse_nullable_number(_section(bundle, "my_package_summary").get("used"))
    if used_gb is None:
        used_gb = parse_nullable_number(_first_usage_detail(package_info))

    return {
        "timestamp": db.utc_iso(now),
        "package_name": package_name if isinstance(package_name, str) else None,
        "used_gb": used_gb,
        "vas_used_gb": parse_nullable_number(_section(bundle, "vas_data_summary").get("used")),
        "raw": payload,
    }


def record_usage(client, insert_row=None, now=None):
    """Fetch, validate, normalize and store one usage snapshot; returns the stored record."""
    insert_row = insert_row or db.insert_usage_row
    payload = client.fetch_usage()
    if payload.get("isSuccess") is not True:
        message = upstream_error_message(payload)
        logger.warning("SLT usage payload reported failure: %s", message)
        raise UpstreamBusinessError(message)

    record = transform_payload(payload, now=now)
    insert_row(record)
    logger.info(
        "Recorded SLT usage at %s: used=%s vas_used=%s",
        record["timestamp"],
        record["used_gb"],
        record["vas_used_gb"],
    )
    return record
