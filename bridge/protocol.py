"""
Simulator event framing.

The simulator speaks socket.io over a websocket: an event frame is the text
"42" followed by a JSON array ``[event_name, payload]``.
"""

import json
import logging
from typing import Any, Optional, Tuple

logger = logging.getLogger(__name__)

EVENT_PREFIX = "42"
MANUAL_MESSAGE = '42["manual",{}]'


def is_event_message(message: str) -> bool:
    """True for socket.io event frames ("4" = message, "2" = event)."""
    return len(message) > 2 and message.startswith(EVENT_PREFIX)


def extract_event_payload(message: str) -> Optional[str]:
    """
    Return the JSON array carried by a frame, or None.

    Frames whose payload is null (manual driving in the simulator) and frames
    without an ``[...}]`` array carry no telemetry.
    """
    if "null" in message:
        return None
    start = message.find("[")
    end = message.rfind("}]")
    if start != -1 and end != -1:
        return message[start:end + 2]
    return None


def parse_event(message: str) -> Optional[Tuple[str, Any]]:
    """Decode an event frame into (event_name, data), or None if it has no data."""
    payload = extract_event_payload(message)
    if payload is None:
        return None
    try:
        decoded = json.loads(payload)
    except json.JSONDecodeError as e:
        logger.warning("Malformed event payload (%s): %.80s", e, payload)
        return None
    if not isinstance(decoded, list) or len(decoded) < 2 or not isinstance(decoded[0], str):
        logger.warning("Unexpected event payload shape: %.80s", payload)
        return None
    return decoded[0], decoded[1]


def format_event(name: str, payload: Any) -> str:
    return EVENT_PREFIX + json.dumps([name, payload], separators=(",", ":"))
