"""Per-batch session bookkeeping keyed by trace root."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from otel_bugsnag.models import NotifyEventSession, NotifyEventSessionEvents, Session


@dataclass
class SessionTracker:
    """A session and its handled/unhandled event counters.

    ``counts`` is shared with every :class:`NotifyEventSession` handed out by
    :meth:`event_session`, so reports always carry the final totals.
    """

    session: Session
    counts: NotifyEventSessionEvents = field(default_factory=NotifyEventSessionEvents)

    def event_session(self) -> NotifyEventSession:
        return NotifyEventSession(
            id=self.session.id,
            started_at=self.session.started_at,
            events=self.counts,
        )


class SessionRegistry:
    """Maps root identity to its session for the duration of one export call.

    Trackers come back from :meth:`drain` in creation order. A registry is
    single-use: create one per batch and drop it after draining.
    """

    def __init__(self) -> None:
        self._trackers: dict[str, SessionTracker] = {}

    def __len__(self) -> int:
        return len(self._trackers)

    def get_or_create(self, root_id: str, started_at: datetime) -> SessionTracker:
        tracker = self._trackers.get(root_id)
        if tracker is None:
            tracker = SessionTracker(Session(id=root_id, started_at=started_at))
            self._trackers[root_id] = tracker
        return tracker

    def record_outcome(self, root_id: str, unhandled: bool) -> None:
        """Count one emitted report against its session.

        Raises ``KeyError`` when *root_id* was never registered.
        """
        counts = self._trackers[root_id].counts
        if unhandled:
            counts.unhandled += 1
        else:
            counts.handled += 1

    def drain(self) -> list[SessionTracker]:
        trackers = list(self._trackers.values())
        self._trackers.clear()
        return trackers
