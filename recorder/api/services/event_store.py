"""In-memory store for events posted by the in-page recorder."""

import logging
from collections import OrderedDict, deque
from typing import Any, Collection, Deque, Dict, Iterable, List, Optional

from pydantic import ValidationError

from recorder.models import RecordedEvent

logger = logging.getLogger(__name__)


class EventStore:
    """Keeps the most recent events per session, oldest dropped first.

    The number of session buckets is capped as well; once the cap is hit the
    bucket written to least recently is evicted.
    """

    def __init__(self, max_events_per_session: int = 10000, max_sessions: int = 200):
        self.max_events_per_session = max_events_per_session
        self.max_sessions = max_sessions
        self._events: 'OrderedDict[str, Deque[RecordedEvent]]' = OrderedDict()
        self.rejected_count = 0

    def _bucket(self, session_id: str) -> Deque[RecordedEvent]:
        bucket = self._events.get(session_id)
        if bucket is not None:
            self._events.move_to_end(session_id)
            return bucket

        bucket = deque(maxlen=self.max_events_per_session)
        self._events[session_id] = bucket
        while len(self._events) > self.max_sessions:
            evicted, events = self._events.popitem(last=False)
            logger.info(f"Evicted {len(events)} stored events of session {evicted}")
        return bucket

    def add(self, session_id: str, raw_events: Iterable[Dict[str, Any]]) -> List[RecordedEvent]:
        """Validate and store raw event dicts.

        Malformed events are logged and skipped.

        Returns:
            The events that were stored
        """
        stored = []
        for raw in raw_events:
            try:
                event = RecordedEvent.model_validate(raw)
            except ValidationError as e:
                self.rejected_count += 1
                logger.warning(f"Rejected malformed event for session {session_id}: {e.error_count()} errors")
                continue

            if event.session_id is None:
                event.session_id = session_id
            stored.append(event)

        if stored:
            self._bucket(session_id).extend(stored)
        return stored

    def list(self, session_id: str, limit: Optional[int] = None) -> List[RecordedEvent]:
        events = list(self._events.get(session_id, ()))
        if limit is not None:
            events = events[-limit:] if limit > 0 else []
        return events

    def count(self, session_id: str) -> int:
        return len(self._events.get(session_id, ()))

    def clear(self, session_id: str) -> int:
        removed = self._events.pop(session_id, None)
        return len(removed) if removed else 0

    def retain(self, session_ids: Collection[str]) -> int:
        """Drop the buckets of every session not in ``session_ids``.

        Returns:
            Number of buckets dropped
        """
        stale = [sid for sid in self._events if sid not in session_ids]
        for session_id in stale:
            self.clear(session_id)
        if stale:
            logger.debug(f"Dropped stored events of {len(stale)} forgotten sessions")
        return len(stale)

    def session_ids(self) -> List[str]:
        return list(self._events)
