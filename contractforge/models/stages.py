"""Generation state machine: stages and the transitions allowed between them."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class GenerationStage(str, Enum):
    START = "start"
    MERGE = "merge"
    PACKAGE = "package"
    LOCAL_SAVE = "local_save"
    REMOTE_STORE = "remote_store"
    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"
    FAILED = "failed"


# FAILED is reachable only while merging or packaging; once a document
# exists the generation ends in SUCCESS or PARTIAL_SUCCESS.
VALID_TRANSITIONS: dict[GenerationStage, set[GenerationStage]] = {
    GenerationStage.START: {GenerationStage.MERGE},
    GenerationStage.MERGE: {GenerationStage.PACKAGE, GenerationStage.FAILED},
    GenerationStage.PACKAGE: {GenerationStage.LOCAL_SAVE, GenerationStage.FAILED},
    GenerationStage.LOCAL_SAVE: {GenerationStage.REMOTE_STORE},
    GenerationStage.REMOTE_STORE: {GenerationStage.SUCCESS, GenerationStage.PARTIAL_SUCCESS},
    GenerationStage.SUCCESS: set(),  # terminal
    GenerationStage.PARTIAL_SUCCESS: set(),  # terminal
    GenerationStage.FAILED: set(),  # terminal
}

TERMINAL_STAGES = frozenset(
    {GenerationStage.SUCCESS, GenerationStage.PARTIAL_SUCCESS, GenerationStage.FAILED}
)


class InvalidStageTransitionError(RuntimeError):
    """Raised when a transition is not in VALID_TRANSITIONS."""


class StageTransition(BaseModel):
    """One recorded step of a generation."""

    model_config = ConfigDict(frozen=True)

    from_stage: GenerationStage
    to_stage: GenerationStage
    detail: str = ""


def check_transition(current: GenerationStage, target: GenerationStage) -> None:
    if target not in VALID_TRANSITIONS[current]:
        raise InvalidStageTransitionError(
            f"Invalid generation transition: {current.value} -> {target.value}. "
            f"Valid targets: {sorted(s.value for s in VALID_TRANSITIONS[current])}"
        )
