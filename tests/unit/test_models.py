"""Tests for the generation state machine and bulk result models."""

from __future__ import annotations

import pytest

from contractforge.models.bulk import BulkItemResult, BulkProgress, BulkResult
from contractforge.models.stages import (
    TERMINAL_STAGES,
    VALID_TRANSITIONS,
    GenerationStage,
    InvalidStageTransitionError,
    check_transition,
)


class TestStages:
    def test_happy_path_is_allowed(self):
        path = [
            GenerationStage.START,
            GenerationStage.MERGE,
            GenerationStage.PACKAGE,
            GenerationStage.LOCAL_SAVE,
            GenerationStage.REMOTE_STORE,
            GenerationStage.SUCCESS,
        ]
        for current, target in zip(path, path[1:]):
            check_transition(current, target)

    @pytest.mark.parametrize(
        "current",
        [GenerationStage.LOCAL_SAVE, GenerationStage.REMOTE_STORE],
    )
    def test_cannot_fail_after_document_exists(self, current):
        with pytest.raises(InvalidStageTransitionError):
            check_transition(current, GenerationStage.FAILED)

    def test_terminal_stages_have_no_exits(self):
        for stage in TERMINAL_STAGES:
            assert VALID_TRANSITIONS[stage] == set()

    def test_cannot_skip_packaging(self):
        with pytest.raises(InvalidStageTransitionError, match="merge -> local_save"):
            check_transition(GenerationStage.MERGE, GenerationStage.LOCAL_SAVE)


class TestBulkModels:
    def test_progress_fraction(self):
        assert BulkProgress(completed=1, total=4).fraction == 0.25
        assert BulkProgress(completed=0, total=0).fraction == 1.0

    def test_empty_result(self):
        result = BulkResult.from_items([])
        assert (result.total_processed, result.successful, result.failed) == (0, 0, 0)

    def test_counts_add_up(self):
        items = [BulkItemResult(id=str(n), success=n % 3 != 0) for n in range(7)]
        result = BulkResult.from_items(items)
        assert result.successful + result.failed == result.total_processed == 7
