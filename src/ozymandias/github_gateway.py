from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
import re
from typing import cast

from ozymandias.models import (
    MERGEABLE_STATES,
    CombinedStatus,
    CombinedStatusState,
    MergeableState,
    MergeOutcome,
    PullRequestSnapshot,
)
from ozymandias.observability import log_event
from ozymandias.shell import run


LOGGER = logging.getLogger("ozymandias.github_gateway")
_API_PREFIX_PATTERN = re.compile(r"^https?://[^/]+(?:/api/v3)?(?=/)")
_REPO_URL_PATTERN = re.compile(r"^/repos/([^/]+/[^/]+?)/?$")
_STATUSES_PATH_PATTERN = re.compile(r"^(/repos/[^/]+/[^/]+)/statuses/([^/?#]+)$")
_COMBINED_STATUS_STATES = {"pending", "success", "failure", "error"}


class GitHubRequestError(RuntimeError):
    """Transport or HTTP failure talking to GitHub; the caller may retry later."""


def api_path_from_url(url: str) -> str:
    """Strip the scheme, host and GHE `/api/v3` prefix from a REST API URL."""
    stripped = _API_PREFIX_PATTERN.sub("", url.strip(), count=1)
    if not stripped.startswith("/"):
        raise ValueError(f"Not a GitHub REST API URL: {url!r}")
    return stripped


def repo_full_name_from_api_url(repo_url: str) -> str:
    match = _REPO_URL_PATTERN.match(api_path_from_url(repo_url))
    if match is None:
        raise ValueError(f"Not a GitHub repository API URL: {repo_url!r}")
    return match.group(1)


def combined_status_path(statuses_url: str) -> str:
    # statuses_url names the per-commit list; the combined verdict lives under commits/<sha>/status.
    match = _STATUSES_PATH_PATTERN.match(api_path_from_url(statuses_url))
    if match is None:
        raise ValueError(f"Not a GitHub statuses URL: {statuses_url!r}")
    repo_path, sha = match.groups()
    return f"{repo_path}/commits/{sha}/status"


@dataclass(frozen=True)
class GitHubGateway:
    owner: str
    name: str
    _etags_by_path: dict[str, str] = field(
        default_factory=dict,
        init=False,
        repr=False,
        compare=False,
    )
    _cached_get_payload_by_path: dict[str, object] = field(
        default_factory=dict,
        init=False,
        repr=False,
        compare=False,
    )
    _status_path_by_pr: dict[int, str] = field(
        default_factory=dict,
        init=False,
        repr=False,
        compare=False,
    )

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    def forget_pull_request(self, pr_number: int) -> None:
        """Drop cached reads for a pull request that is no longer monitored."""
        self._forget_path(f"/repos/{self.owner}/{self.name}/pulls/{pr_number}")
        status_path = self._status_path_by_pr.pop(pr_number, None)
        if status_path is not None:
            self._forget_path(status_path)
        log_event(LOGGER, "github_cache_pruned", pr_number=pr_number)

    def get_pull_request(self, pr_number: int) -> PullRequestSnapshot:
        path = f"/repos/{self.owner}/{self.name}/pulls/{pr_number}"
        payload_obj = _as_object_dict(self._api_json("GET", path))
        if payload_obj is None:
            raise GitHubRequestError("Unexpected GitHub response: expected object for pull request")

        head = _as_object_dict(payload_obj.get("head"))
        base = _as_object_dict(payload_obj.get("base"))
        if head is None or base is None:
            raise GitHubRequestError("Unexpected GitHub response: missing pull request head/base")
        base_repo = _as_object_dict(base.get("repo"))
        if base_repo is None:
            raise GitHubRequestError("Unexpected GitHub response: missing base repository")

        snapshot = PullRequestSnapshot(
            number=_as_int(payload_obj.get("number"), field="number"),
            title=_as_string(payload_obj.get("title")),
            body=_as_string(payload_obj.get("body")),
            mergeable=_as_optional_bool(payload_obj.get("mergeable")),
            mergeable_state=_as_mergeable_state(payload_obj.get("mergeable_state")),
            head_sha=_as_string(head.get("sha")),
            base_repo_full_name=_as_string(base_repo.get("full_name")),
            base_repo_url=_as_string(base_repo.get("url")),
            statuses_url=_as_string(payload_obj.get("statuses_url")),
            state=_as_string(payload_obj.get("state")),
            merged=bool(payload_obj.get("merged")),
        )
        log_event(
            LOGGER,
            "github_read",
            endpoint="pull_request",
            pr_number=snapshot.number,
            mergeable=snapshot.mergeable,
            mergeable_state=snapshot.mergeable_state,
        )
        self._remember_status_path(pr_number, snapshot.statuses_url)
        return snapshot

    def get_combined_status(self, statuses_url: str) -> CombinedStatus:
        path = combined_status_path(statuses_url)
        payload_obj = _as_object_dict(self._api_json("GET", path))
        if payload_obj is None:
            raise GitHubRequestError(
                "Unexpected GitHub response: expected object for combined status"
            )

        state_raw = _as_string(payload_obj.get("state")).strip().lower()
        if state_raw not in _COMBINED_STATUS_STATES:
            raise GitHubRequestError(f"Unexpected GitHub combined status state: {state_raw!r}")
        status = CombinedStatus(
            state=cast(CombinedStatusState, state_raw),
            sha=_as_string(payload_obj.get("sha")),
            total_count=_as_int(payload_obj.get("total_count", 0), field="total_count"),
        )
        log_event(
            LOGGER,
            "github_read",
            endpoint="combined_status",
            sha=status.sha,
            state=status.state,
            total_count=status.total_count,
        )
        return status

    def merge_pull_request(
        self,
        pr_number: int,
        *,
        commit_title: str,
        commit_message: str,
        sha: str,
    ) -> MergeOutcome:
        path = f"/repos/{self.owner}/{self.name}/pulls/{pr_number}/merge"
        status_code, body = self._api_request(
            "PUT",
            path,
            payload={"commit_title": commit_title, "commit_message": commit_message, "sha": sha},
        )
        body_obj = _parse_json_object(body)
        message = _as_optional_str(body_obj.get("message")) if body_obj else None
        if 200 <= status_code < 300:
            outcome = MergeOutcome(
                merged=bool(body_obj.get("merged", True)) if body_obj else True,
                status_code=status_code,
                sha=_as_optional_str(body_obj.get("sha")) if body_obj else None,
                message=message,
                raw_body=body,
            )
        else:
            outcome = MergeOutcome(
                merged=False,
                status_code=status_code,
                message=message,
                documentation_url=(
                    _as_optional_str(body_obj.get("documentation_url")) if body_obj else None
                ),
                raw_body=body,
            )
        log_event(
            LOGGER,
            "github_merge_response",
            repo_full_name=self.full_name,
            pr_number=pr_number,
            status_code=status_code,
            merged=outcome.merged,
        )
        return outcome

    def post_issue_comment(self, issue_number: int, body: str) -> None:
        path = f"/repos/{self.owner}/{self.name}/issues/{issue_number}/comments"
        try:
            self._api_json("POST", path, payload={"body": body})
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "github_issue_comment_failed",
                repo_full_name=self.full_name,
                issue_number=issue_number,
                error_type=type(exc).__name__,
            )
            raise
        log_event(LOGGER, "github_issue_comment_posted", issue_number=issue_number)

    def _remember_status_path(self, pr_number: int, statuses_url: str) -> None:
        # A new head commit makes the previous commit's status entry unreachable.
        try:
            status_path = combined_status_path(statuses_url)
        except ValueError:
            # get_combined_status reports the malformed URL if it is ever used.
            return
        previous = self._status_path_by_pr.get(pr_number)
        if previous is not None and previous != status_path:
            self._forget_path(previous)
        self._status_path_by_pr[pr_number] = status_path

    def _forget_path(self, path: str) -> None:
        self._etags_by_path.pop(path, None)
        self._cached_get_payload_by_path.pop(path, None)

    def _api_request(
        self, method: str, path: str, payload: dict[str, object] | None = None
    ) -> tuple[int, str]:
        """Issue a request and return the HTTP status and body, even for non-2xx answers."""
        cmd = ["gh", "api", "--method", method.upper(), "--include", path]
        stdin_payload: str | None = None
        if payload is not None:
            cmd.extend(["--input", "-"])
            stdin_payload = json.dumps(payload)
        raw = run(cmd, input_text=stdin_payload, check=False)
        try:
            status_code, _headers, body = _parse_http_response(raw)
        except Exception as exc:
            log_event(
                LOGGER,
                "github_request_failed",
                method=method.upper(),
                path=path,
                error_type=type(exc).__name__,
                raw_preview=_preview_for_log(raw),
            )
            raise GitHubRequestError(
                f"GitHub {method.upper()} failed for path {path}: {exc}"
            ) from exc
        return status_code, body

    def _api_json(self, method: str, path: str, payload: dict[str, object] | None = None) -> object:
        method_upper = method.upper()
        if method_upper == "GET":
            cmd = ["gh", "api", "--method", method_upper]
            etag = self._etags_by_path.get(path)
            if etag:
                cmd.extend(["--header", f"If-None-Match: {etag}"])
            cmd.extend(["--include", path])

            raw = run(cmd, check=False)
            try:
                status_code, headers, body = _parse_http_response(raw)

                if status_code == 304:
                    cached_payload = self._cached_get_payload_by_path.get(path)
                    if cached_payload is None:
                        raise RuntimeError(f"GitHub returned 304 for uncached path: {path}")
                    return cached_payload

                if status_code < 200 or status_code >= 300:
                    message = body.strip() or "<empty>"
                    raise RuntimeError(
                        f"GitHub API request failed with status {status_code}: {message}"
                    )

                payload_obj = json.loads(body)
                etag = headers.get("etag")
                if etag:
                    self._etags_by_path[path] = etag
                    self._cached_get_payload_by_path[path] = payload_obj
                return payload_obj
            except Exception as exc:
                log_event(
                    LOGGER,
                    "github_get_failed",
                    path=path,
                    error_type=type(exc).__name__,
                    error=str(exc),
                    raw_preview=_preview_for_log(raw),
                )
                raise GitHubRequestError(f"GitHub GET failed for path {path}: {exc}") from exc

        cmd = ["gh", "api", "--method", method_upper, path]
        stdin_payload: str | None = None
        if payload is not None:
            cmd.extend(["--input", "-"])
            stdin_payload = json.dumps(payload)
        raw = run(cmd, input_text=stdin_payload)
        return json.loads(raw) if raw.strip() else None


def _parse_http_response(raw: str) -> tuple[int, dict[str, str], str]:
    normalized = raw.replace("\r\n", "\n")
    lines = normalized.split("\n")

    status_line_index = -1
    for index, line in enumerate(lines):
        if line.startswith("HTTP/"):
            status_line_index = index

    if status_line_index < 0:
        raise RuntimeError("Unexpected GitHub response: missing HTTP status line")

    status_line = lines[status_line_index]
    status_parts = status_line.split(" ", 2)
    if len(status_parts) < 2:
        raise RuntimeError(f"Unexpected GitHub response status line: {status_line!r}")

    try:
        status_code = int(status_parts[1])
    except ValueError as exc:
        raise RuntimeError(f"Unexpected GitHub response status line: {status_line!r}") from exc

    headers: dict[str, str] = {}
    body_start = len(lines)
    for index in range(status_line_index + 1, len(lines)):
        line = lines[index]
        if line == "":
            body_start = index + 1
            break
        if ":" not in line:
            continue
        key, value = line.split(":", 1)
        headers[key.strip().lower()] = value.strip()

    body = "\n".join(lines[body_start:])
    return status_code, headers, body


def _parse_json_object(body: str) -> dict[str, object] | None:
    try:
        return _as_object_dict(json.loads(body))
    except ValueError:
        return None


def _preview_for_log(text: str, *, limit: int = 240) -> str:
    compact = text.replace("\n", "\\n").strip()
    if not compact:
        return "<empty>"
    if len(compact) <= limit:
        return compact
    return f"{compact[:limit]}..."


def _as_object_dict(value: object) -> dict[str, object] | None:
    if not isinstance(value, dict):
        return None
    if not all(isinstance(key, str) for key in value.keys()):
        return None
    return cast(dict[str, object], value)


def _as_string(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return str(value)


def _as_optional_str(value: object) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return str(value)


def _as_int(value: object, *, field: str) -> int:
    if isinstance(value, bool):
        raise GitHubRequestError(f"Unexpected GitHub response type for {field}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError as exc:
            raise GitHubRequestError(
                f"Unexpected GitHub response value for {field}: {value}"
            ) from exc
    raise GitHubRequestError(f"Unexpected GitHub response type for {field}")


def _as_optional_bool(value: object) -> bool | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    raise GitHubRequestError("Unexpected GitHub response type for mergeable")


def _as_mergeable_state(value: object) -> MergeableState:
    normalized = _as_string(value).strip().lower()
    if normalized not in MERGEABLE_STATES:
        return "unknown"
    return cast(MergeableState, normalized)
