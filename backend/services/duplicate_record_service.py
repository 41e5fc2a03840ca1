"""At-most-one-record-per-day lookups for goal/student pairs.

The lookup only narrows the race window: two writers that both observe "no
existing record" will still both insert. Enforcing the invariant for real needs
a transactional check-and-set in storage.
"""
from __future__ import annotations

import inspect
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Sequence, Union

from services.records import InstanceRecord
from utils.instant_conversion import instant_to_local_date_string, parse_date_string

logger = logging.getLogger(__name__)

CandidateFetch = Callable[[], Union[Sequence[InstanceRecord], Awaitable[Sequence[InstanceRecord]]]]

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class StaleFetchDiscarded(Exception):
    """A lookup finished after a newer lookup was started; its result must not be applied."""

    def __init__(self, request_id: int, current_id: int):
        self.request_id = request_id
        self.current_id = current_id
        super().__init__(f"Lookup {request_id} superseded by {current_id}")


class DuplicateRaceDetected(Exception):
    """More than one record exists for a goal/student/day. Logged, never raised."""

    def __init__(self, goal_id: int, student_id: int, local_date: str, instance_ids: list[Any]):
        self.goal_id = goal_id
        self.student_id = student_id
        self.local_date = local_date
        self.instance_ids = instance_ids
        super().__init__(
            f"{len(instance_ids)} records for goal {goal_id}, student {student_id} on {local_date}: {instance_ids}"
        )


def matching_instances(
    goal_id: int,
    student_id: int,
    local_date: str,
    tz_name: str,
    candidates: Sequence[InstanceRecord],
) -> list[InstanceRecord]:
    """All candidates recorded for the goal/student on ``local_date``, earliest-created first."""
    parse_date_string(local_date)
    hits = [
        (position, inst)
        for position, inst in enumerate(candidates)
        if inst.goal_id == goal_id
        and inst.student_id == student_id
        and instant_to_local_date_string(inst.date, tz_name) == local_date
    ]
    hits.sort(key=lambda item: (item[1].created_at or _EPOCH, item[0]))
    return [inst for _, inst in hits]


def find_existing_instance(
    goal_id: int,
    student_id: int,
    local_date: str,
    tz_name: str,
    candidates: Sequence[InstanceRecord],
) -> InstanceRecord | None:
    hits = matching_instances(goal_id, student_id, local_date, tz_name, candidates)
    if not hits:
        return None
    if len(hits) > 1:
        anomaly = DuplicateRaceDetected(goal_id, student_id, local_date, [inst.id for inst in hits])
        logger.warning("Duplicate records detected, using earliest: %s", anomaly)
    return hits[0]


@dataclass(frozen=True)
class DuplicateLookupResult:
    request_id: int
    existing: InstanceRecord | None = None
    discarded: bool = False


class DuplicateLookupTracker:
    """Issues increasing request ids; only the newest lookup's result is applied.

    One tracker belongs to one form/selection. Starting a lookup for a new
    (goal, student, date, policy) selection supersedes every earlier lookup.
    """

    def __init__(self) -> None:
        self._latest = 0
        self._lock = threading.Lock()

    @property
    def latest(self) -> int:
        with self._lock:
            return self._latest

    def begin(self) -> int:
        with self._lock:
            self._latest += 1
            return self._latest

    def cancel(self) -> None:
        """Invalidate any lookup in flight without starting a new one."""
        self.begin()

    def ensure_current(self, request_id: int) -> None:
        with self._lock:
            current = self._latest
        if request_id != current:
            raise StaleFetchDiscarded(request_id, current)

    async def lookup(
        self,
        *,
        goal_id: int,
        student_id: int,
        local_date: str,
        tz_name: str,
        fetch: CandidateFetch,
    ) -> DuplicateLookupResult:
        request_id = self.begin()
        candidates = fetch()
        if inspect.isawaitable(candidates):
            candidates = await candidates
        try:
            self.ensure_current(request_id)
        except StaleFetchDiscarded as exc:
            logger.debug("Discarding stale duplicate lookup: %s", exc)
            return DuplicateLookupResult(request_id=request_id, discarded=True)
        existing = find_existing_instance(goal_id, student_id, local_date, tz_name, list(candidates))
        return DuplicateLookupResult(request_id=request_id, existing=existing)
