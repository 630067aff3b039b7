from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Literal


MergeCommandKind = Literal["merge_on_green", "run_then_merge"]

_GREEN_MERGE_PATTERN = re.compile(r"merge on green")
_RUN_THEN_MERGE_PATTERN = re.compile(r"run ([^ ]+) and merge")


@dataclass(frozen=True)
class MergeCommand:
    kind: MergeCommandKind
    job_name: str | None = None


def parse_merge_command(body: str) -> MergeCommand | None:
    if _GREEN_MERGE_PATTERN.search(body):
        return MergeCommand(kind="merge_on_green")
    match = _RUN_THEN_MERGE_PATTERN.search(body)
    if match is not None:
        return MergeCommand(kind="run_then_merge", job_name=match.group(1))
    return None
