"""
Server-sent event framing for the generation stream.

Each record is a line `data: <json>` followed by a blank line. The decoder
buffers partial lines across chunks, ignores any line that is not a data
line, and skips payloads it cannot decode.
"""

import codecs
import json
import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Iterable, Iterator, List, Optional, Union

from .types import Action, StreamEvent

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "

Chunk = Union[bytes, str]


def encode_event(event: StreamEvent) -> str:
    """One SSE record for event."""
    return f"{DATA_PREFIX}{json.dumps(event.to_dict())}\n\n"


def event_from_payload(payload: dict) -> Optional[StreamEvent]:
    """Map a decoded JSON payload to a StreamEvent, or None if it is not one."""
    if not isinstance(payload, dict):
        return None
    kind = payload.get("type")
    if kind == "text":
        content = payload.get("content")
        if not isinstance(content, str) or not content:
            return None
        return StreamEvent(type="text", content=content)
    if kind == "action":
        data = payload.get("action")
        if not isinstance(data, dict):
            return None
        try:
            return StreamEvent(type="action", action=Action.from_dict(data))
        except ValueError as e:
            logger.warning(f"Dropping malformed action event: {e}")
            return None
    if kind == "done":
        return StreamEvent(type="done")
    if kind == "error":
        return StreamEvent(type="error", message=str(payload.get("message") or "Unknown error"))
    return None


class SSEDecoder:
    """Incremental SSE decoder. feed() returns the events completed by a chunk."""

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, chunk: Chunk) -> List[StreamEvent]:
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        self._buffer += chunk
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()  # incomplete line
        events = []
        for line in lines:
            event = self._decode_line(line.rstrip("\r"))
            if event is not None:
                events.append(event)
        return events

    def flush(self) -> List[StreamEvent]:
        """Decode a final unterminated line, if any."""
        tail = self._decoder.decode(b"", final=True)
        line = (self._buffer + tail).rstrip("\r")
        self._buffer = ""
        event = self._decode_line(line)
        return [event] if event is not None else []

    @staticmethod
    def _decode_line(line: str) -> Optional[StreamEvent]:
        if not line.startswith(DATA_PREFIX):
            return None
        try:
            payload = json.loads(line[len(DATA_PREFIX):])
        except json.JSONDecodeError:
            logger.warning(f"Failed to parse SSE line: {line[:120]}")
            return None
        event = event_from_payload(payload)
        if event is None:
            logger.warning(f"Skipping unrecognised SSE payload: {line[:120]}")
        return event


def iter_events(chunks: Iterable[Chunk], abort: Optional[threading.Event] = None) -> Iterator[StreamEvent]:
    """Yield events in arrival order, stopping after the first done or error.

    A chunk source that raises ends the stream with an error event. Setting
    abort stops consumption before the next chunk is read or event yielded.
    """
    decoder = SSEDecoder()
    try:
        for chunk in chunks:
            if abort is not None and abort.is_set():
                return
            for event in decoder.feed(chunk):
                if abort is not None and abort.is_set():
                    return
                yield event
                if event.terminal:
                    return
    except Exception as e:
        logger.error(f"Stream reading error: {e}")
        yield StreamEvent(type="error", message=str(e) or "Stream reading failed")
        return
    if abort is not None and abort.is_set():
        return
    for event in decoder.flush():
        yield event
        if event.terminal:
            return


@dataclass
class StreamOutcome:
    """What a consumed stream delivered"""
    text: str = ""
    actions: List[Action] = field(default_factory=list)
    done: bool = False
    error: Optional[str] = None
    aborted: bool = False

    @property
    def completed(self) -> bool:
        return self.done and self.error is None


def dispatch_events(
    chunks: Iterable[Chunk],
    on_text: Optional[Callable[[str], None]] = None,
    on_action: Optional[Callable[[Action], None]] = None,
    on_done: Optional[Callable[[], None]] = None,
    on_error: Optional[Callable[[str], None]] = None,
    abort: Optional[threading.Event] = None,
) -> StreamOutcome:
    """Consume a stream, calling one handler per event, and summarise it."""
    outcome = StreamOutcome()
    text_parts = []
    for event in iter_events(chunks, abort=abort):
        if event.type == "text":
            text_parts.append(event.content)
            if on_text:
                on_text(event.content)
        elif event.type == "action":
            outcome.actions.append(event.action)
            if on_action:
                on_action(event.action)
        elif event.type == "done":
            outcome.done = True
            if on_done:
                on_done()
        elif event.type == "error":
            outcome.error = event.message
            if on_error:
                on_error(event.message)
    outcome.text = "".join(text_parts)
    outcome.aborted = bool(abort is not None and abort.is_set() and not outcome.done and outcome.error is None)
    return outcome
