from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import re
from typing import Literal


MergeableState = Literal[
    "behind",
    "blocked",
    "clean",
    "dirty",
    "has_hooks",
    "unknown",
    "unstable",
]
CombinedStatusState = Literal["pending", "success", "failure", "error"]
EvaluationOutcome = Literal["pending", "merged", "rejected", "timed_out", "errored"]

MERGEABLE_STATES: frozenset[str] = frozenset(
    {"behind", "blocked", "clean", "dirty", "has_hooks", "unknown", "unstable"}
)

_API_URL_PATTERN = re.compile(
    r"^https?://[^/]+(?:/api/v3)?/repos/([^/\s]+)/([^/\s]+)/(?:pulls|issues)/(\d+)/?$"
)
_SHORT_REF_PATTERN = re.compile(r"^([A-Za-z0-9_.-]+)/([A-Za-z0-9_.-]+)#(\d+)$")


class InvalidPullRequestRef(ValueError):
    pass


@dataclass(frozen=True)
class PullRequestRef:
    owner: str
    name: str
    number: int

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    def __str__(self) -> str:
        return f"{self.owner}/{self.name}#{self.number}"

    @classmethod
    def parse(cls, raw: str) -> PullRequestRef:
        """Accept `owner/name#number` or a REST API pull/issue URL."""
        candidate = raw.strip()
        match = _SHORT_REF_PATTERN.match(candidate) or _API_URL_PATTERN.match(candidate)
        if match is None:
            raise InvalidPullRequestRef(
                f"Expected owner/name#number or an API pull request URL, got {raw!r}"
            )
        owner, name, number = match.groups()
        return cls(owner=owner, name=name, number=int(number))


@dataclass(frozen=True)
class MergeAttempt:
    ref: PullRequestRef
    started_at: datetime
    job_name: str | None = None


@dataclass(frozen=True)
class PullRequestSnapshot:
    number: int
    title: str
    body: str
    mergeable: bool | None
    mergeable_state: MergeableState
    head_sha: str
    base_repo_full_name: str
    base_repo_url: str
    statuses_url: str
    state: str
    merged: bool


@dataclass(frozen=True)
class CombinedStatus:
    state: CombinedStatusState
    sha: str
    total_count: int


@dataclass(frozen=True)
class MergeOutcome:
    merged: bool
    status_code: int
    sha: str | None = None
    message: str | None = None
    documentation_url: str | None = None
    raw_body: str = ""
