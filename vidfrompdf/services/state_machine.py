"""Legal lifecycle transitions of a project."""

from typing import Optional

from vidfrompdf.exceptions import InvalidStateError
from vidfrompdf.models.project import ProjectState, Stage

# Failed(stage) is expanded to its own key so a failed project can only retry
# the stage that failed.
_StateKey = tuple[ProjectState, Optional[Stage]]

TRANSITIONS: dict[_StateKey, frozenset[ProjectState]] = {
    (ProjectState.NEW, None): frozenset({ProjectState.EXTRACTING}),
    (ProjectState.EXTRACTING, None): frozenset({ProjectState.READY, ProjectState.FAILED}),
    (ProjectState.READY, None): frozenset({ProjectState.RENDERING}),
    (ProjectState.RENDERING, None): frozenset(
        {ProjectState.RENDERED, ProjectState.READY, ProjectState.FAILED}
    ),
    (ProjectState.RENDERED, None): frozenset({ProjectState.RENDERING}),
    (ProjectState.FAILED, Stage.EXTRACTING): frozenset({ProjectState.EXTRACTING}),
    (ProjectState.FAILED, Stage.RENDERING): frozenset({ProjectState.RENDERING}),
}

AUDIO_EDITABLE_STATES = frozenset({ProjectState.READY, ProjectState.RENDERED})


def _key(state: ProjectState, failed_stage: Optional[Stage]) -> _StateKey:
    return (state, failed_stage if state == ProjectState.FAILED else None)


def can_transition(
    state: ProjectState, failed_stage: Optional[Stage], target: ProjectState
) -> bool:
    return target in TRANSITIONS.get(_key(state, failed_stage), frozenset())


def ensure_transition(
    state: ProjectState, failed_stage: Optional[Stage], target: ProjectState
) -> None:
    """Raise InvalidStateError unless state -> target is legal."""
    if not can_transition(state, failed_stage, target):
        current = state.value
        if state == ProjectState.FAILED and failed_stage is not None:
            current = f"failed({failed_stage.value})"
        raise InvalidStateError(
            f"Cannot move project from '{current}' to '{target.value}'"
        )


def can_attach_audio(state: ProjectState) -> bool:
    return state in AUDIO_EDITABLE_STATES
