from __future__ import annotations

from collections.abc import Iterator
import json

import httpx
from httpx import Response
import pytest
import respx

from ozymandias.config import CircleCIConfig
from ozymandias.job_dispatch import CircleCIJobDispatcher, JobDispatchError


BUILD_URL = "https://circleci.com/api/v1.1/project/github/acme/app/build"


@pytest.fixture
def mock_circleci() -> Iterator[respx.MockRouter]:
    with respx.mock(assert_all_called=False) as respx_mock:
        yield respx_mock


@pytest.fixture
def dispatcher() -> Iterator[CircleCIJobDispatcher]:
    instance = CircleCIJobDispatcher(CircleCIConfig(), token="secret-token")
    try:
        yield instance
    finally:
        instance.close()


def test_dispatch_posts_build_request(
    mock_circleci: respx.MockRouter, dispatcher: CircleCIJobDispatcher
) -> None:
    route = mock_circleci.post(url__startswith=BUILD_URL).mock(
        return_value=Response(201, json={"build_num": 42})
    )

    dispatcher.dispatch("acme/app", "integration", "abc123")

    assert route.called
    request = route.calls.last.request
    assert request.url.params["circle-token"] == "secret-token"
    assert json.loads(request.content) == {
        "revision": "abc123",
        "build_parameters": {"CIRCLE_JOB": "integration"},
    }


def test_dispatch_honors_configured_base_url_and_vcs(mock_circleci: respx.MockRouter) -> None:
    config = CircleCIConfig(api_base_url="https://circle.example/api/v1.1", vcs_type="bitbucket")
    route = mock_circleci.post(
        url__startswith="https://circle.example/api/v1.1/project/bitbucket/acme/app/build"
    ).mock(return_value=Response(200, text="not json"))

    dispatcher = CircleCIJobDispatcher(config, token="t")
    try:
        dispatcher.dispatch("acme/app", "lint", "abc123")
    finally:
        dispatcher.close()

    assert route.called


def test_dispatch_rejected_by_circleci(
    mock_circleci: respx.MockRouter, dispatcher: CircleCIJobDispatcher
) -> None:
    mock_circleci.post(url__startswith=BUILD_URL).mock(
        return_value=Response(400, json={"message": "Job 'nope' not found"})
    )

    with pytest.raises(JobDispatchError, match="HTTP 400") as exc_info:
        dispatcher.dispatch("acme/app", "nope", "abc123")
    assert "Job 'nope' not found" in str(exc_info.value)


def test_dispatch_network_failure(
    mock_circleci: respx.MockRouter, dispatcher: CircleCIJobDispatcher
) -> None:
    mock_circleci.post(url__startswith=BUILD_URL).mock(
        side_effect=httpx.ConnectError("connection refused")
    )

    with pytest.raises(JobDispatchError, match="Could not reach CircleCI"):
        dispatcher.dispatch("acme/app", "lint", "abc123")


@pytest.mark.parametrize("repo_full_name", ["acme", "/app", "acme/"])
def test_dispatch_rejects_malformed_repo_names(
    mock_circleci: respx.MockRouter, dispatcher: CircleCIJobDispatcher, repo_full_name: str
) -> None:
    route = mock_circleci.post(url__startswith="https://circleci.com/")

    with pytest.raises(JobDispatchError, match="Expected owner/name"):
        dispatcher.dispatch(repo_full_name, "lint", "abc123")
    assert not route.called


def test_from_config_reads_token_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MY_CIRCLE_TOKEN", " tok ")

    dispatcher = CircleCIJobDispatcher.from_config(CircleCIConfig(token_env="MY_CIRCLE_TOKEN"))
    try:
        assert dispatcher._token == "tok"
    finally:
        dispatcher.close()


def test_from_config_requires_token(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("CIRCLE_TOKEN", raising=False)

    with pytest.raises(JobDispatchError, match="set the CIRCLE_TOKEN environment variable"):
        CircleCIJobDispatcher.from_config(CircleCIConfig())
