from __future__ import annotations

import logging
import os
from typing import Protocol

import httpx

from ozymandias.config import CircleCIConfig
from ozymandias.observability import log_event


LOGGER = logging.getLogger("ozymandias.job_dispatch")


class JobDispatchError(RuntimeError):
    """The CI provider did not accept the job; nothing was scheduled."""


class JobDispatcher(Protocol):
    """Starts a CI job for a commit.

    Returning means the provider accepted the job. The provider, not the
    caller, is responsible for reporting the job's result as a commit status
    on `commit_sha`.
    """

    def dispatch(self, repo_full_name: str, job_name: str, commit_sha: str) -> None: ...


class CircleCIJobDispatcher:
    def __init__(
        self,
        config: CircleCIConfig,
        *,
        token: str,
        client: httpx.Client | None = None,
    ) -> None:
        self._config = config
        self._token = token
        self._client = client or httpx.Client(timeout=config.request_timeout_seconds)

    @classmethod
    def from_config(cls, config: CircleCIConfig) -> CircleCIJobDispatcher:
        token = os.environ.get(config.token_env, "").strip()
        if not token:
            raise JobDispatchError(
                f"CircleCI token is missing: set the {config.token_env} environment variable"
            )
        return cls(config, token=token)

    def dispatch(self, repo_full_name: str, job_name: str, commit_sha: str) -> None:
        owner, _, project = repo_full_name.partition("/")
        if not owner or not project:
            raise JobDispatchError(f"Expected owner/name repository, got {repo_full_name!r}")
        url = f"{self._config.api_base_url}/project/{self._config.vcs_type}/{owner}/{project}/build"
        try:
            response = self._client.post(
                url,
                params={"circle-token": self._token},
                json={"revision": commit_sha, "build_parameters": {"CIRCLE_JOB": job_name}},
            )
        except httpx.HTTPError as exc:
            log_event(
                LOGGER,
                "job_dispatch_failed",
                repo_full_name=repo_full_name,
                job_name=job_name,
                sha=commit_sha,
                error_type=type(exc).__name__,
            )
            raise JobDispatchError(
                f"Could not reach CircleCI to run {job_name} on {repo_full_name}: {exc}"
            ) from exc

        if response.is_error:
            log_event(
                LOGGER,
                "job_dispatch_failed",
                repo_full_name=repo_full_name,
                job_name=job_name,
                sha=commit_sha,
                status_code=response.status_code,
            )
            raise JobDispatchError(
                f"CircleCI rejected job {job_name} for {repo_full_name}@{commit_sha}: "
                f"HTTP {response.status_code}: {response.text.strip() or '<empty>'}"
            )

        build_num: object = None
        try:
            payload = response.json()
        except ValueError:
            payload = None
        if isinstance(payload, dict):
            build_num = payload.get("build_num")
        log_event(
            LOGGER,
            "job_dispatched",
            repo_full_name=repo_full_name,
            job_name=job_name,
            sha=commit_sha,
            build_num=build_num if isinstance(build_num, int) else None,
        )

    def close(self) -> None:
        self._client.close()
