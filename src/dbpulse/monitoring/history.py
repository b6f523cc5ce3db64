"""
Snapshot history
Append-only, time-ordered, capacity-bounded in-memory buffer
"""

import bisect
import threading
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Callable, Deque, Iterator, List, Optional, Sequence

from dbpulse.core.config import RetentionWindow
from dbpulse.core.logging import LoggerMixin
from dbpulse.monitoring.models import MetricSnapshot


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SnapshotRange:
    """
    Snapshots inside a time window, ascending by timestamp.

    Holds a copy of the store's references taken at query time, so iterating
    is unaffected by later appends or evictions and may be repeated.
    """

    def __init__(self, snapshots: Sequence[MetricSnapshot], since: datetime, until: datetime):
        self._snapshots = snapshots
        self.since = since
        self.until = until

    def __iter__(self) -> Iterator[MetricSnapshot]:
        timestamps = [s.timestamp for s in self._snapshots]
        start = bisect.bisect_left(timestamps, self.since)
        end = bisect.bisect_right(timestamps, self.until)
        for i in range(start, end):
            yield self._snapshots[i]

    def __len__(self) -> int:
        return sum(1 for _ in self)

    def to_list(self) -> List[MetricSnapshot]:
        return list(self)


class HistoryStore(LoggerMixin):
    """
    Bounded snapshot history.

    Count cap is enforced on every append; age cap by ``evict_older_than``.
    Writes come from the collection cadence; reads may come from any caller
    and always see a consistent copy.
    """

    def __init__(
        self,
        max_snapshots: int,
        max_age: Optional[timedelta] = None,
        clock: Callable[[], datetime] = _utcnow
    ):
        if max_snapshots < 1:
            raise ValueError("max_snapshots must be at least 1")
        self.max_snapshots = max_snapshots
        self.max_age = max_age
        self._clock = clock
        self._snapshots: Deque[MetricSnapshot] = deque()
        self._lock = threading.Lock()

    @classmethod
    def for_retention(
        cls,
        retention: RetentionWindow,
        clock: Callable[[], datetime] = _utcnow
    ) -> "HistoryStore":
        return cls(retention.max_snapshot_count, retention.max_age, clock)

    def __len__(self) -> int:
        with self._lock:
            return len(self._snapshots)

    def append(self, snapshot: MetricSnapshot) -> int:
        """Append a snapshot; returns how many old snapshots were evicted"""
        with self._lock:
            if self._snapshots and snapshot.timestamp < self._snapshots[-1].timestamp:
                raise ValueError(
                    f"Snapshot at {snapshot.timestamp.isoformat()} is older than "
                    f"the latest stored snapshot"
                )
            self._snapshots.append(snapshot)

            evicted = 0
            while len(self._snapshots) > self.max_snapshots:
                self._snapshots.popleft()
                evicted += 1
            return evicted

    def latest(self) -> Optional[MetricSnapshot]:
        with self._lock:
            return self._snapshots[-1] if self._snapshots else None

    def range(self, since: timedelta) -> SnapshotRange:
        """Snapshots taken within ``since`` of now, oldest first"""
        now = self._clock()
        try:
            start = now - since
        except OverflowError:
            # Window reaches past the earliest representable time: everything retained
            start = datetime.min.replace(tzinfo=now.tzinfo)
        with self._lock:
            snapshots = tuple(self._snapshots)
        return SnapshotRange(snapshots, start, now)

    def evict_older_than(self, retention_days: Optional[float] = None) -> int:
        """
        Drop snapshots older than the retention window.

        Uses ``retention_days`` when given, else the store's ``max_age``.
        Returns the number of snapshots removed.
        """
        if retention_days is not None:
            max_age = timedelta(days=retention_days)
        elif self.max_age is not None:
            max_age = self.max_age
        else:
            return 0

        cutoff = self._clock() - max_age
        removed = 0
        with self._lock:
            while self._snapshots and self._snapshots[0].timestamp < cutoff:
                self._snapshots.popleft()
                removed += 1

        if removed:
            self.logger.info(
                f"Evicted {removed} snapshots older than {max_age}",
                extra={"removed_count": removed, "cutoff": cutoff.isoformat()}
            )
        return removed

    def clear(self) -> None:
        with self._lock:
            self._snapshots.clear()
