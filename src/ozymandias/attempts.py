from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
import logging
import threading
from typing import Protocol

from ozymandias.models import MergeAttempt, PullRequestRef
from ozymandias.observability import log_event


LOGGER = logging.getLogger("ozymandias.attempts")
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AttemptStore(Protocol):
    def get(self, ref: PullRequestRef) -> MergeAttempt | None: ...

    def put(self, attempt: MergeAttempt) -> MergeAttempt | None: ...

    def put_unless_superseded(self, attempt: MergeAttempt) -> bool: ...

    def delete_if_current(self, attempt: MergeAttempt) -> bool: ...

    def list_attempts(self) -> tuple[MergeAttempt, ...]: ...


class InMemoryAttemptStore:
    """Process-local attempt storage; every operation is a single locked transition."""

    def __init__(self) -> None:
        self._attempts: dict[PullRequestRef, MergeAttempt] = {}
        self._lock = threading.Lock()

    def get(self, ref: PullRequestRef) -> MergeAttempt | None:
        with self._lock:
            return self._attempts.get(ref)

    def put(self, attempt: MergeAttempt) -> MergeAttempt | None:
        with self._lock:
            previous = self._attempts.get(attempt.ref)
            self._attempts[attempt.ref] = attempt
            return previous

    def put_unless_superseded(self, attempt: MergeAttempt) -> bool:
        with self._lock:
            current = self._attempts.get(attempt.ref)
            if current is not None and current != attempt:
                return False
            self._attempts[attempt.ref] = attempt
            return True

    def delete_if_current(self, attempt: MergeAttempt) -> bool:
        with self._lock:
            if self._attempts.get(attempt.ref) != attempt:
                return False
            del self._attempts[attempt.ref]
            return True

    def list_attempts(self) -> tuple[MergeAttempt, ...]:
        with self._lock:
            return tuple(self._attempts.values())


class AttemptRegistry:
    def __init__(self, store: AttemptStore | None = None, *, clock: Clock = utc_now) -> None:
        self._store: AttemptStore = store if store is not None else InMemoryAttemptStore()
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    def register(self, ref: PullRequestRef, *, job_name: str | None = None) -> MergeAttempt:
        """Start (or restart) monitoring `ref`; a newer attempt replaces any older one."""
        attempt = MergeAttempt(ref=ref, started_at=self._clock(), job_name=job_name)
        previous = self._store.put(attempt)
        log_event(
            LOGGER,
            "merge_attempt_registered",
            pr=str(ref),
            job_name=job_name,
            replaced=previous is not None,
        )
        return attempt

    def get(self, ref: PullRequestRef) -> MergeAttempt | None:
        return self._store.get(ref)

    def requeue(self, attempt: MergeAttempt) -> bool:
        """Keep waiting on `attempt` with its original start time.

        Returns False when a newer attempt for the same PR was registered in
        the meantime; the newer one wins.
        """
        kept = self._store.put_unless_superseded(attempt)
        if not kept:
            log_event(LOGGER, "merge_attempt_superseded", pr=str(attempt.ref))
        return kept

    def resolve(self, attempt: MergeAttempt, *, outcome: str) -> bool:
        removed = self._store.delete_if_current(attempt)
        log_event(
            LOGGER,
            "merge_attempt_resolved",
            pr=str(attempt.ref),
            outcome=outcome,
            removed=removed,
        )
        return removed

    def pending(self) -> tuple[MergeAttempt, ...]:
        return self._store.list_attempts()

    def age(self, attempt: MergeAttempt) -> timedelta:
        return self._clock() - attempt.started_at

    def __len__(self) -> int:
        return len(self._store.list_attempts())
