"""Structured JSON telemetry events for patch operations."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

TELEMETRY_LOGGER = logging.getLogger("extpatch.telemetry")


def _json_default(value: Any) -> Any:
    if isinstance(value, Path):
        return value.as_posix()
    raise TypeError(f"Unsupported telemetry value: {type(value).__name__}")


def emit_event(event: str, **fields: Any) -> None:
    """Log one compact JSON object describing ``event``."""
    if not TELEMETRY_LOGGER.isEnabledFor(logging.INFO):
        return
    payload = {"event": event, "timestamp": datetime.now(timezone.utc).isoformat(), **fields}
    TELEMETRY_LOGGER.info(json.dumps(payload, default=_json_default, separators=(",", ":")))
