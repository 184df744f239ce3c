"""Server-Sent Events framing for the chat stream.

Each event is one block::

    event: <type>\\n
    data: <json>\\n
    \\n

The encoder produces exactly that. The decoder accepts arbitrary text
slices as they arrive from the network and returns complete events only.
"""
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}
SSE_MEDIA_TYPE = "text/event-stream"


class StreamEventType(str, Enum):
    INITIAL = "initial"
    MESSAGE = "message"
    DONE = "done"
    ERROR = "error"
    TITLE_UPDATE = "titleUpdate"


@dataclass(frozen=True)
class ServerEvent:
    """One decoded event."""
    event: str
    data: Dict[str, Any]


def encode_event(event: StreamEventType, data: Dict[str, Any]) -> str:
    """Frame one event. The payload is serialized as single-line JSON."""
    event_name = StreamEventType(event).value
    payload = json.dumps(data, default=str, ensure_ascii=False)
    return f"event: {event_name}\ndata: {payload}\n\n"


class SSEDecoder:
    """
    Incremental decoder.

    Feed text in any slicing; a block is only parsed once its blank-line
    terminator has arrived. Blocks missing an event name or a JSON object
    payload are dropped.
    """

    def __init__(self) -> None:
        self._buffer = ""

    def feed(self, text: str) -> List[ServerEvent]:
        self._buffer = (self._buffer + text).replace("\r\n", "\n")
        events: List[ServerEvent] = []
        while True:
            end = self._buffer.find("\n\n")
            if end == -1:
                break
            block = self._buffer[:end]
            self._buffer = self._buffer[end + 2:]
            event = self._parse_block(block)
            if event is not None:
                events.append(event)
        return events

    @property
    def pending(self) -> str:
        """Text received after the last complete block."""
        return self._buffer

    def _parse_block(self, block: str) -> Optional[ServerEvent]:
        event_type = None
        data_lines = []
        for line in block.split("\n"):
            if not line or line.startswith(":"):
                continue
            field, _, value = line.partition(":")
            if value.startswith(" "):
                value = value[1:]
            if field == "event":
                event_type = value
            elif field == "data":
                data_lines.append(value)

        if event_type is None or not data_lines:
            return None
        try:
            data = json.loads("\n".join(data_lines))
        except json.JSONDecodeError as e:
            logger.error("Failed to parse event data for %s: %s", event_type, e)
            return None
        if not isinstance(data, dict):
            logger.warning("Ignoring non-object payload for %s", event_type)
            return None
        return ServerEvent(event=event_type, data=data)
