from __future__ import annotations

from collections.abc import Mapping
from datetime import timedelta
import logging

from ozymandias.attempts import AttemptRegistry
from ozymandias.commit_message import compose_merge_commit
from ozymandias.github_gateway import GitHubGateway
from ozymandias.mergeability import classify_combined_status, classify_mergeability
from ozymandias.models import EvaluationOutcome, MergeAttempt, MergeOutcome, PullRequestRef
from ozymandias.observability import log_event, logging_pr_context


LOGGER = logging.getLogger("ozymandias.evaluator")
DEFAULT_MERGE_TIMEOUT = timedelta(minutes=60)

NOT_MERGEABLE_COMMENT = (
    "This pull request is not mergeable: it conflicts with the base branch. "
    "Resolve the conflicts and ask again."
)
BLOCKED_COMMENT = (
    "All status checks passed, but GitHub reports the merge as blocked "
    "(for example by a missing required review). Resolve the block and retry."
)


class MergeEvaluator:
    """Runs one evaluation pass over a registered merge attempt.

    A pass fetches the pull request, enforces the monitoring timeout, and then
    either merges, keeps the attempt registered for the next pass, or posts a
    diagnostic comment and drops the attempt. Passes are safe to repeat: the
    only state they touch is the attempt's own registry entry.
    """

    def __init__(
        self,
        *,
        registry: AttemptRegistry,
        github_by_repo_full_name: Mapping[str, GitHubGateway],
        timeout: timedelta = DEFAULT_MERGE_TIMEOUT,
    ) -> None:
        self._registry = registry
        self._github_by_repo_full_name = github_by_repo_full_name
        self._timeout = timeout

    def evaluate(self, attempt: MergeAttempt) -> EvaluationOutcome:
        with logging_pr_context(str(attempt.ref)):
            try:
                return self._evaluate(attempt)
            except Exception as exc:  # noqa: BLE001
                # Leave the registry untouched; the next poll tries again.
                log_event(
                    LOGGER,
                    "merge_evaluation_failed",
                    pr=str(attempt.ref),
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                return "errored"

    def _evaluate(self, attempt: MergeAttempt) -> EvaluationOutcome:
        github = self.github_for(attempt.ref)
        pr = github.get_pull_request(attempt.ref.number)

        age = self._registry.age(attempt)
        if age > self._timeout:
            log_event(
                LOGGER,
                "merge_timed_out",
                pr=str(attempt.ref),
                age_seconds=int(age.total_seconds()),
            )
            self._comment(github, attempt.ref, _render_timeout_comment(self._timeout))
            self._resolve(github, attempt, outcome="timed_out")
            return "timed_out"

        if pr.merged or pr.state != "open":
            outcome: EvaluationOutcome = "merged" if pr.merged else "rejected"
            log_event(
                LOGGER,
                "merge_attempt_abandoned",
                pr=str(attempt.ref),
                state=pr.state,
                merged=pr.merged,
            )
            self._resolve(github, attempt, outcome=outcome)
            return outcome

        commit = compose_merge_commit(
            pr_number=pr.number,
            base_repo_full_name=pr.base_repo_full_name,
            title=pr.title,
            body=pr.body,
        )
        verdict = classify_mergeability(pr.mergeable, pr.mergeable_state)
        log_event(
            LOGGER,
            "mergeability_classified",
            pr=str(attempt.ref),
            mergeable=pr.mergeable,
            mergeable_state=pr.mergeable_state,
            verdict=verdict,
        )

        if verdict == "merge_now":
            merge = github.merge_pull_request(
                attempt.ref.number,
                commit_title=commit.title,
                commit_message=commit.body,
                sha=pr.head_sha,
            )
            if merge.merged:
                log_event(LOGGER, "merge_submitted", pr=str(attempt.ref), sha=merge.sha)
                self._comment(github, attempt.ref, _render_merged_comment(merge))
                self._resolve(github, attempt, outcome="merged")
                return "merged"
            return self._reject(
                github,
                attempt,
                reason=f"merge_http_{merge.status_code}",
                comment=render_merge_failure_comment(merge),
            )

        if verdict == "still_computing":
            return self._keep_waiting(attempt, reason="mergeability_unknown")

        if verdict == "not_mergeable":
            return self._reject(
                github, attempt, reason="not_mergeable", comment=NOT_MERGEABLE_COMMENT
            )

        status = github.get_combined_status(pr.statuses_url)
        status_verdict = classify_combined_status(status.state)
        if status_verdict == "keep_waiting":
            return self._keep_waiting(attempt, reason="checks_pending")
        if status_verdict == "blocked":
            return self._reject(github, attempt, reason="blocked", comment=BLOCKED_COMMENT)
        return self._reject(
            github,
            attempt,
            reason="checks_failed",
            comment=(
                f"Required status checks failed (combined status: {status.state}); "
                "aborting merge."
            ),
        )

    def github_for(self, ref: PullRequestRef) -> GitHubGateway:
        github = self._github_by_repo_full_name.get(ref.full_name)
        if github is None:
            raise RuntimeError(f"Repository {ref.full_name} is not configured")
        return github

    def _keep_waiting(self, attempt: MergeAttempt, *, reason: str) -> EvaluationOutcome:
        self._registry.requeue(attempt)
        log_event(LOGGER, "merge_attempt_waiting", pr=str(attempt.ref), reason=reason)
        return "pending"

    def _reject(
        self,
        github: GitHubGateway,
        attempt: MergeAttempt,
        *,
        reason: str,
        comment: str,
    ) -> EvaluationOutcome:
        log_event(LOGGER, "merge_rejected", pr=str(attempt.ref), reason=reason)
        self._comment(github, attempt.ref, comment)
        self._resolve(github, attempt, outcome="rejected")
        return "rejected"

    def _resolve(
        self, github: GitHubGateway, attempt: MergeAttempt, *, outcome: EvaluationOutcome
    ) -> None:
        if self._registry.resolve(attempt, outcome=outcome):
            github.forget_pull_request(attempt.ref.number)

    def _comment(self, github: GitHubGateway, ref: PullRequestRef, body: str) -> None:
        try:
            github.post_issue_comment(ref.number, body)
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "pr_comment_failed",
                pr=str(ref),
                error_type=type(exc).__name__,
                error=str(exc),
            )


def render_merge_failure_comment(merge: MergeOutcome) -> str:
    if merge.status_code == 409 and merge.message:
        return f"Merge failed: {merge.message}"
    if merge.documentation_url:
        return f"Merge failed (HTTP {merge.status_code}), see {merge.documentation_url}"
    if merge.message:
        return f"Merge failed (HTTP {merge.status_code}): {merge.message}"
    raw = merge.raw_body.strip() or "<empty response>"
    return (
        f"Merge failed (HTTP {merge.status_code}) with an unexpected response:\n\n"
        f"```\n{raw}\n```"
    )


def _render_merged_comment(merge: MergeOutcome) -> str:
    if merge.sha:
        return f"Merged on green as {merge.sha}."
    return "Merged on green."


def _render_timeout_comment(timeout: timedelta) -> str:
    minutes = int(timeout.total_seconds() // 60)
    return (
        f"Gave up waiting to merge: the pull request did not turn green within {minutes} "
        "minutes. Ask again to restart monitoring."
    )
