from __future__ import annotations

from dataclasses import dataclass
import re
import textwrap


COMMIT_WRAP_WIDTH = 72
_HORIZONTAL_RULE_PATTERN = re.compile(r"^-{3,}[ \t]*$")


@dataclass(frozen=True)
class MergeCommitMessage:
    title: str
    body: str


def compose_merge_commit(
    *,
    pr_number: int,
    base_repo_full_name: str,
    title: str,
    body: str | None,
) -> MergeCommitMessage:
    description = truncate_at_horizontal_rule(body or "")
    text = title if not description else f"{title}\n\n{description}"
    return MergeCommitMessage(
        title=f"Merge pull request #{pr_number} from {base_repo_full_name}",
        body=wrap_text(text, width=COMMIT_WRAP_WIDTH),
    )


def truncate_at_horizontal_rule(body: str) -> str:
    """Keep only the description above the first Markdown horizontal rule.

    A rule is a line of three or more dashes starting at column 0, with a blank
    line (or the edge of the text) on both sides. A dash line glued to text
    above it is a setext heading underline, and an indented one belongs to a
    code block; both are left alone.
    """
    lines = body.replace("\r\n", "\n").split("\n")
    for index, line in enumerate(lines):
        if not _HORIZONTAL_RULE_PATTERN.match(line):
            continue
        blank_before = index == 0 or not lines[index - 1].strip()
        blank_after = index == len(lines) - 1 or not lines[index + 1].strip()
        if blank_before and blank_after:
            return "\n".join(lines[:index]).strip()
    return body.replace("\r\n", "\n").strip()


def wrap_text(text: str, *, width: int) -> str:
    wrapped: list[str] = []
    for line in text.split("\n"):
        if not line.strip():
            wrapped.append("")
            continue
        wrapped.append(
            textwrap.fill(
                line.rstrip(),
                width=width,
                break_long_words=False,
                break_on_hyphens=False,
                replace_whitespace=False,
                drop_whitespace=True,
            )
        )
    return "\n".join(wrapped)
