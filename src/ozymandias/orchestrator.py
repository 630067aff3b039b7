from __future__ import annotations

from collections.abc import Mapping
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import timedelta
import logging
import threading
import time

from ozymandias.attempts import AttemptRegistry
from ozymandias.comment_commands import parse_merge_command
from ozymandias.config import AppConfig
from ozymandias.evaluator import MergeEvaluator
from ozymandias.github_gateway import GitHubGateway, repo_full_name_from_api_url
from ozymandias.job_dispatch import JobDispatcher
from ozymandias.models import EvaluationOutcome, MergeAttempt, PullRequestRef
from ozymandias.observability import log_event, logging_pr_context


LOGGER = logging.getLogger("ozymandias.orchestrator")
_WAIT_POLL_SECONDS = 0.5


@dataclass(frozen=True)
class _DispatchFuture:
    ref: PullRequestRef
    job_name: str
    future: Future[MergeAttempt]


class MergeOrchestrator:
    """Accepts merge requests and keeps re-evaluating them until they resolve.

    Work runs on a thread pool so a slow GitHub or CI call only blocks its own
    worker. At most one evaluation pass per pull request is in flight at a
    time; `run` re-schedules every attempt still in the registry on each poll.
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        github_by_repo_full_name: Mapping[str, GitHubGateway],
        registry: AttemptRegistry | None = None,
        dispatcher: JobDispatcher | None = None,
    ) -> None:
        self._config = config
        self._registry = registry if registry is not None else AttemptRegistry()
        self._dispatcher = dispatcher
        self._evaluator = MergeEvaluator(
            registry=self._registry,
            github_by_repo_full_name=github_by_repo_full_name,
            timeout=timedelta(minutes=config.runtime.merge_timeout_minutes),
        )
        self._pool = ThreadPoolExecutor(
            max_workers=config.runtime.worker_count,
            thread_name_prefix="ozymandias",
        )
        self._running: dict[PullRequestRef, Future[EvaluationOutcome]] = {}
        self._running_dispatches: list[_DispatchFuture] = []
        self._running_lock = threading.Lock()

    @property
    def registry(self) -> AttemptRegistry:
        return self._registry

    def begin_green_merge(self, ref: PullRequestRef) -> Future[EvaluationOutcome]:
        attempt = self._registry.register(ref)
        future = self._schedule_pass(attempt)
        if future is not None:
            return future
        # A pass for an older attempt is still running; the next poll evaluates this one.
        deferred: Future[EvaluationOutcome] = Future()
        deferred.set_result("pending")
        return deferred

    def begin_run_then_merge(
        self, dispatcher: JobDispatcher, ref: PullRequestRef, job_name: str
    ) -> Future[MergeAttempt]:
        future = self._pool.submit(self.run_job_then_merge, dispatcher, ref, job_name)
        with self._running_lock:
            self._running_dispatches.append(
                _DispatchFuture(ref=ref, job_name=job_name, future=future)
            )
        log_event(LOGGER, "job_dispatch_enqueued", pr=str(ref), job_name=job_name)
        return future

    def run_job_then_merge(
        self, dispatcher: JobDispatcher, ref: PullRequestRef, job_name: str
    ) -> MergeAttempt:
        """Dispatch `job_name` on the PR head, then hand the PR to merge monitoring.

        Dispatch failures propagate to the caller and nothing is registered.
        """
        with logging_pr_context(str(ref)):
            github = self._evaluator.github_for(ref)
            pr = github.get_pull_request(ref.number)
            repo_full_name = repo_full_name_from_api_url(pr.base_repo_url)
            try:
                dispatcher.dispatch(repo_full_name, job_name, pr.head_sha)
            except Exception as exc:
                log_event(
                    LOGGER,
                    "job_dispatch_failed",
                    pr=str(ref),
                    job_name=job_name,
                    error_type=type(exc).__name__,
                )
                raise
            return self._registry.register(ref, job_name=job_name)

    def handle_comment(
        self, ref: PullRequestRef, body: str, author_association: str | None
    ) -> str:
        repo = self._config.repo_for(ref.full_name)
        if repo is None:
            return f"Repository {ref.full_name} is not configured."
        if not repo.authorizes(author_association):
            return "Author not authorized to trigger an action."

        command = parse_merge_command(body)
        if command is None:
            return "No action detected."
        if command.kind == "merge_on_green":
            self.begin_green_merge(ref)
            return "Triggering merge on green."

        job_name = command.job_name or ""
        if self._dispatcher is None:
            return f"Cannot trigger job [{job_name}]: no CI job dispatcher is configured."
        self.begin_run_then_merge(self._dispatcher, ref, job_name)
        return f"Attempting to trigger job [{job_name}] then merge on green."

    def run(self, *, once: bool = False, exit_when_idle: bool = False) -> None:
        while True:
            log_event(LOGGER, "poll_started", once=once, pending_attempts=len(self._registry))
            self._reap_finished()
            self._enqueue_pending_attempts()
            with self._running_lock:
                running_pass_count = len(self._running)
                running_dispatch_count = len(self._running_dispatches)
            log_event(
                LOGGER,
                "poll_completed",
                running_pass_count=running_pass_count,
                running_dispatch_count=running_dispatch_count,
            )

            if once:
                self._wait_for_all()
                return
            if exit_when_idle and self.is_idle():
                return

            time.sleep(self._config.runtime.poll_interval_seconds)

    def is_idle(self) -> bool:
        self._reap_finished()
        with self._running_lock:
            if self._running or self._running_dispatches:
                return False
        return len(self._registry) == 0

    def close(self) -> None:
        self._pool.shutdown(wait=True)

    def __enter__(self) -> MergeOrchestrator:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _schedule_pass(self, attempt: MergeAttempt) -> Future[EvaluationOutcome] | None:
        with self._running_lock:
            existing = self._running.get(attempt.ref)
            if existing is not None and not existing.done():
                log_event(
                    LOGGER,
                    "merge_pass_skipped",
                    pr=str(attempt.ref),
                    reason="already_running",
                )
                return None
            future = self._pool.submit(self._evaluator.evaluate, attempt)
            self._running[attempt.ref] = future
        return future

    def _enqueue_pending_attempts(self) -> None:
        for attempt in self._registry.pending():
            self._schedule_pass(attempt)

    def _reap_finished(self) -> None:
        with self._running_lock:
            finished_refs = [ref for ref, fut in self._running.items() if fut.done()]
            for ref in finished_refs:
                fut = self._running.pop(ref)
                try:
                    outcome = fut.result()
                    log_event(LOGGER, "merge_pass_completed", pr=str(ref), outcome=outcome)
                except Exception as exc:  # noqa: BLE001
                    log_event(
                        LOGGER,
                        "merge_pass_crashed",
                        pr=str(ref),
                        error_type=type(exc).__name__,
                    )

            still_running: list[_DispatchFuture] = []
            for handle in self._running_dispatches:
                if not handle.future.done():
                    still_running.append(handle)
                    continue
                exc = handle.future.exception()
                log_event(
                    LOGGER,
                    "job_dispatch_completed",
                    pr=str(handle.ref),
                    job_name=handle.job_name,
                    accepted=exc is None,
                )
            self._running_dispatches = still_running

    def _wait_for_all(self) -> None:
        while True:
            self._reap_finished()
            with self._running_lock:
                if not self._running and not self._running_dispatches:
                    return
            time.sleep(_WAIT_POLL_SECONDS)
