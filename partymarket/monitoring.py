"""
Structured debug events for the monitoring dashboard.

Events are plain log records on the "partymarket.debug" logger; the
`debug_event` attribute carries the {location, message, data} payload so a
log handler can ship it without parsing the message text.
"""

import logging
from typing import Any, Optional

debug_logger = logging.getLogger("partymarket.debug")


def send_debug_log(location: str, message: str, data: Optional[dict[str, Any]] = None) -> None:
    payload = {"location": location, "message": message, "data": data or {}}
    debug_logger.debug(f"[{location}] {message} {payload['data']}", extra={"debug_event": payload})
