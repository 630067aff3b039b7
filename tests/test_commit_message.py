from __future__ import annotations

from hypothesis import given, strategies as st

from ozymandias.commit_message import (
    compose_merge_commit,
    truncate_at_horizontal_rule,
    wrap_text,
)


def test_compose_drops_everything_after_horizontal_rule() -> None:
    commit = compose_merge_commit(
        pr_number=7,
        base_repo_full_name="acme/app",
        title="Add retry to uploader",
        body="Fixes #1\n\n---\n\nInternal notes",
    )

    assert commit.title == "Merge pull request #7 from acme/app"
    assert commit.body == "Add retry to uploader\n\nFixes #1"


def test_compose_with_empty_body_is_title_only() -> None:
    commit = compose_merge_commit(
        pr_number=1, base_repo_full_name="acme/app", title="Tidy", body=None
    )
    assert commit.body == "Tidy"


def test_truncate_handles_longer_rules_and_crlf() -> None:
    body = "Summary line\r\n\r\n-----\r\n\r\nChecklist"
    assert truncate_at_horizontal_rule(body) == "Summary line"


def test_truncate_ignores_setext_heading_underline() -> None:
    body = "Heading\n---\n\nDetails stay"
    assert truncate_at_horizontal_rule(body) == body


def test_truncate_ignores_indented_dashes_in_code_block() -> None:
    body = "Steps:\n\n    $ run\n\n    ---\n\n    output\n\nMore text"
    assert truncate_at_horizontal_rule(body) == body


def test_truncate_allows_trailing_spaces_after_rule() -> None:
    assert truncate_at_horizontal_rule("Keep\n\n---  \n\nDrop") == "Keep"


def test_truncate_rule_at_start_drops_whole_body() -> None:
    assert truncate_at_horizontal_rule("---\n\nall private") == ""


def test_truncate_without_rule_only_trims() -> None:
    assert truncate_at_horizontal_rule("\n  keep me\n\n") == "keep me"


def test_wrap_text_wraps_each_paragraph_at_72_columns() -> None:
    long_line = " ".join(["word"] * 30)
    wrapped = wrap_text(f"Title\n\n{long_line}", width=72)

    lines = wrapped.split("\n")
    assert lines[0] == "Title"
    assert lines[1] == ""
    assert all(len(line) <= 72 for line in lines)
    assert " ".join(lines[2:]) == long_line


def test_wrap_text_does_not_break_long_urls() -> None:
    url = "https://example.com/" + "x" * 100
    assert wrap_text(url, width=72) == url


_BODY_TEXT = st.text(alphabet="abc #\n ", max_size=400)


@given(st.text(min_size=1, max_size=80).filter(lambda t: "\n" not in t), _BODY_TEXT)
def test_compose_is_deterministic(title: str, body: str) -> None:
    first = compose_merge_commit(pr_number=3, base_repo_full_name="o/r", title=title, body=body)
    second = compose_merge_commit(pr_number=3, base_repo_full_name="o/r", title=title, body=body)
    assert first == second


@given(_BODY_TEXT)
def test_wrapped_lines_fit_unless_a_single_word_is_longer(body: str) -> None:
    for line in wrap_text(body, width=72).split("\n"):
        assert len(line) <= 72 or " " not in line.strip()
