from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from .request_id import get_request_id

# Record keys copied verbatim into each audit line.
_RECORD_FIELDS = ("hall_id", "requester_id", "booking_date", "period", "version")


def _build_audit_logger() -> logging.Logger:
    audit = logging.getLogger("audit")
    audit.setLevel(logging.INFO)
    if not audit.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(message)s"))
        audit.addHandler(handler)
    audit.propagate = False
    return audit


_audit_logger = _build_audit_logger()


def _status_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(getattr(value, "value", value))


def emit_audit_log(
    *,
    action: str,
    initiator: str,
    record: Mapping[str, Any],
    status_from: Any = None,
    message: Optional[str] = None,
    extra: Optional[dict[str, Any]] = None,
) -> None:
    """Write one JSON line describing a reservation change.

    ``record`` is the reservation snapshot carried by the event. None values
    are dropped. Raises RuntimeError if the line cannot be written.
    """
    payload: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": "info",
        "action": action,
        "initiator": initiator,
        "request_id": get_request_id(),
        "reservation_id": record.get("id"),
        "status_from": _status_text(status_from),
        "status_to": _status_text(record.get("status")),
    }
    payload.update({name: record.get(name) for name in _RECORD_FIELDS})
    if message is not None:
        payload["message"] = message
    if extra:
        payload.update(extra)

    line = json.dumps({k: v for k, v in payload.items() if v is not None}, ensure_ascii=True, default=str)
    try:
        _audit_logger.info(line)
    except Exception as exc:
        raise RuntimeError("failed to emit audit log") from exc
