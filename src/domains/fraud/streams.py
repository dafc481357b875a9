"""In-memory progress streams for triage sessions.

Events are buffered per session, so a subscriber that connects after the
triage started still sees the full sequence. A stream ends on its
``complete`` / ``error`` event or after the subscriber timeout, and the
session is dropped ``ttl_seconds`` after it finished.
"""

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

import structlog

from .models import TriageEvent

logger = structlog.get_logger()

TERMINAL_EVENTS = frozenset({"complete", "error"})


@dataclass
class _Stream:
    events: list[TriageEvent] = field(default_factory=list)
    done: bool = False
    condition: asyncio.Condition = field(default_factory=asyncio.Condition)


class TriageStreamHub:
    def __init__(self, ttl_seconds: float = 5.0, timeout_seconds: float = 30.0) -> None:
        self.ttl_seconds = ttl_seconds
        self.timeout_seconds = timeout_seconds
        self._streams: dict[str, _Stream] = {}
        self._cleanups: dict[str, asyncio.TimerHandle] = {}

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._streams

    def __len__(self) -> int:
        return len(self._streams)

    def open(self, session_id: str) -> None:
        self._streams.setdefault(session_id, _Stream())

    async def publish(self, session_id: str, event: TriageEvent) -> None:
        stream = self._streams.get(session_id)
        if stream is None:
            logger.debug("triage_stream_missing", session_id=session_id, event_type=event.type)
            return

        async with stream.condition:
            stream.events.append(event)
            if event.type in TERMINAL_EVENTS:
                stream.done = True
            stream.condition.notify_all()

        if stream.done:
            self._schedule_cleanup(session_id)

    def _schedule_cleanup(self, session_id: str) -> None:
        if session_id in self._cleanups:
            return
        loop = asyncio.get_running_loop()
        self._cleanups[session_id] = loop.call_later(self.ttl_seconds, self._drop, session_id)

    def _drop(self, session_id: str) -> None:
        self._streams.pop(session_id, None)
        self._cleanups.pop(session_id, None)
        logger.debug("triage_stream_dropped", session_id=session_id)

    def events(self, session_id: str) -> list[TriageEvent]:
        stream = self._streams.get(session_id)
        return list(stream.events) if stream else []

    async def subscribe(self, session_id: str) -> AsyncIterator[TriageEvent]:
        stream = self._streams.get(session_id)
        if stream is None:
            yield TriageEvent(type="error", message="Session not found", session_id=session_id)
            return

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout_seconds
        index = 0

        def ready() -> bool:
            return len(stream.events) > index or stream.done

        while True:
            timed_out = False
            async with stream.condition:
                if not ready():
                    try:
                        await asyncio.wait_for(
                            stream.condition.wait_for(ready),
                            timeout=max(deadline - loop.time(), 0.001),
                        )
                    except TimeoutError:
                        timed_out = True
                pending = stream.events[index:]
                finished = stream.done

            if timed_out and not pending:
                logger.warning("triage_stream_timeout", session_id=session_id)
                yield TriageEvent(
                    type="error",
                    message="Stream timed out",
                    session_id=session_id,
                    error="timeout",
                )
                return

            for event in pending:
                index += 1
                yield event
                if event.type in TERMINAL_EVENTS:
                    return
            if finished and not pending:
                return

    def shutdown(self) -> None:
        for handle in self._cleanups.values():
            handle.cancel()
        self._cleanups.clear()
        self._streams.clear()
