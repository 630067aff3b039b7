from __future__ import annotations

from typing import Literal

from ozymandias.models import CombinedStatusState, MergeableState


MergeabilityVerdict = Literal["merge_now", "check_status", "not_mergeable", "still_computing"]
StatusVerdict = Literal["keep_waiting", "blocked", "checks_failed"]


def classify_mergeability(
    mergeable: bool | None, mergeable_state: MergeableState
) -> MergeabilityVerdict:
    """Map GitHub's tri-state `mergeable` and `mergeable_state` onto the next action.

    `mergeable=None` means GitHub has not finished computing the test merge yet,
    so the only safe answer is to look again later. A mergeable PR that is not
    `clean` needs the combined commit status to tell pending checks apart from
    failed ones or from some other blocker.
    """
    if mergeable is None:
        return "still_computing"
    if not mergeable:
        return "not_mergeable"
    if mergeable_state == "clean":
        return "merge_now"
    return "check_status"


def classify_combined_status(state: CombinedStatusState) -> StatusVerdict:
    if state == "pending":
        return "keep_waiting"
    # Checks are green yet GitHub will not call the PR clean: something else blocks it.
    if state == "success":
        return "blocked"
    return "checks_failed"
