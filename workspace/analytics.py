"""Product analytics events and the tracker the controller reports them to."""

import logging
from datetime import datetime
from typing import Callable

logger = logging.getLogger(__name__)

EVENT_LESSON_STARTED = "Lesson Started"
EVENT_CODE_PASTED = "Code Pasted"
EVENT_TEST_RUN = "Test Run Executed"
EVENT_SOLUTION_SUBMITTED = "Solution Submitted"
EVENT_HINT_REQUESTED = "Hint Requested"

MAX_BUFFERED_EVENTS = 500


class EventTracker:
    """Product analytics events for one workspace.

    Events are logged, kept in a bounded in-memory buffer and forwarded to an
    optional sink. A failing sink never breaks the caller.
    """

    def __init__(self, sink: Callable[[str, dict], None] | None = None, user_id: str | None = None):
        self.sink = sink
        self.user_id = user_id
        self.events: list[dict] = []

    def identify(self, user_id: str | None) -> None:
        self.user_id = user_id

    def track(self, name: str, properties: dict | None = None) -> None:
        props = dict(properties or {})
        event = {
            "event": name,
            "properties": props,
            "user_id": self.user_id,
            "timestamp": datetime.now().isoformat(),
        }
        self.events.append(event)
        if len(self.events) > MAX_BUFFERED_EVENTS:
            del self.events[: len(self.events) - MAX_BUFFERED_EVENTS]
        logger.info("analytics event %s %s", name, props)
        if self.sink is None:
            return
        try:
            self.sink(name, props)
        except Exception:
            logger.exception("Analytics sink failed for event %s", name)

    def named(self, name: str) -> list[dict]:
        return [e for e in self.events if e["event"] == name]
