from __future__ import annotations

import pytest

from ozymandias.comment_commands import MergeCommand, parse_merge_command


@pytest.mark.parametrize(
    "body",
    ["merge on green", "@ozy please merge on green thanks", "LGTM\nmerge on green"],
)
def test_merge_on_green_anywhere_in_body(body: str) -> None:
    assert parse_merge_command(body) == MergeCommand(kind="merge_on_green")


def test_run_and_merge_captures_job_name() -> None:
    assert parse_merge_command("please run integration-tests and merge") == MergeCommand(
        kind="run_then_merge", job_name="integration-tests"
    )


def test_merge_on_green_takes_precedence() -> None:
    command = parse_merge_command("run lint and merge, or just merge on green")
    assert command == MergeCommand(kind="merge_on_green")


@pytest.mark.parametrize(
    "body",
    ["", "LGTM", "Merge On Green", "run  and merge", "merge when green"],
)
def test_unrecognized_comments(body: str) -> None:
    assert parse_merge_command(body) is None
