from __future__ import annotations

from visual_dataset.domain.states import ALLOWED_TRANSITIONS, SubmissionStatus


class InvalidTransitionError(ValueError):
    pass


class StateMachine:
    def transition(self, current: SubmissionStatus, target: SubmissionStatus) -> SubmissionStatus:
        allowed = ALLOWED_TRANSITIONS.get(current, set())
        if target not in allowed:
            raise InvalidTransitionError(f"Invalid transition {current.value} -> {target.value}")
        return target
