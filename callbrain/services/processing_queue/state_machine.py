r"""
Recording lifecycle.

    processing -> transcribing -> summarizing -> complete
          \              \              \
           +--------------+--------------+--> failed

``complete`` and ``failed`` are terminal for the automatic pipeline. Only a
manual retry moves ``failed`` back to ``processing``.
"""

from callbrain.server.sql_models import RecordingStatus
from callbrain.services.common.errors import IllegalTransitionError

TERMINAL_STATES = frozenset({RecordingStatus.COMPLETE, RecordingStatus.FAILED})

# states a recording can be resumed from after a restart
RESUMABLE_STATES = (
    RecordingStatus.PROCESSING,
    RecordingStatus.TRANSCRIBING,
    RecordingStatus.SUMMARIZING,
)

LEGAL_TRANSITIONS: dict[RecordingStatus, frozenset[RecordingStatus]] = {
    RecordingStatus.PROCESSING: frozenset({RecordingStatus.TRANSCRIBING, RecordingStatus.FAILED}),
    RecordingStatus.TRANSCRIBING: frozenset({RecordingStatus.SUMMARIZING, RecordingStatus.FAILED}),
    RecordingStatus.SUMMARIZING: frozenset({RecordingStatus.COMPLETE, RecordingStatus.FAILED}),
    RecordingStatus.COMPLETE: frozenset(),
    RecordingStatus.FAILED: frozenset(),
}

MANUAL_TRANSITIONS: dict[RecordingStatus, frozenset[RecordingStatus]] = {
    RecordingStatus.FAILED: frozenset({RecordingStatus.PROCESSING}),
}


def is_terminal(status: RecordingStatus) -> bool:
    return status in TERMINAL_STATES


def can_transition(
    current: RecordingStatus, target: RecordingStatus, manual: bool = False
) -> bool:
    """Check whether ``current -> target`` is part of the lifecycle."""
    if target in LEGAL_TRANSITIONS[current]:
        return True
    return manual and target in MANUAL_TRANSITIONS.get(current, frozenset())


def validate_transition(
    current: RecordingStatus, target: RecordingStatus, manual: bool = False
) -> RecordingStatus:
    """
    Validate a status change.

    Args:
        current: Status the recording is in
        target: Status to move to
        manual: Whether a person requested the change (manual retry)

    Returns:
        The target status

    Raises:
        IllegalTransitionError: If the change is not allowed
    """
    if not can_transition(current, target, manual=manual):
        raise IllegalTransitionError(current, target)
    return target
