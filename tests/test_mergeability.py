from __future__ import annotations

from hypothesis import given, strategies as st

from ozymandias.mergeability import classify_combined_status, classify_mergeability
from ozymandias.models import MergeableState


_STATES: tuple[MergeableState, ...] = (
    "behind",
    "blocked",
    "clean",
    "dirty",
    "has_hooks",
    "unknown",
    "unstable",
)


def test_mergeable_and_clean_merges_now() -> None:
    assert classify_mergeability(True, "clean") == "merge_now"


@given(st.sampled_from([state for state in _STATES if state != "clean"]))
def test_mergeable_but_not_clean_needs_status_check(state: MergeableState) -> None:
    assert classify_mergeability(True, state) == "check_status"


@given(st.sampled_from(_STATES))
def test_not_mergeable_wins_over_any_state(state: MergeableState) -> None:
    assert classify_mergeability(False, state) == "not_mergeable"


@given(st.sampled_from(_STATES))
def test_unknown_mergeable_keeps_waiting(state: MergeableState) -> None:
    assert classify_mergeability(None, state) == "still_computing"


def test_combined_status_classification() -> None:
    assert classify_combined_status("pending") == "keep_waiting"
    assert classify_combined_status("success") == "blocked"
    assert classify_combined_status("failure") == "checks_failed"
    assert classify_combined_status("error") == "checks_failed"
