from __future__ import annotations

from enum import Enum


class SubmissionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


ALLOWED_TRANSITIONS: dict[SubmissionStatus, set[SubmissionStatus]] = {
    SubmissionStatus.PENDING: {SubmissionStatus.APPROVED, SubmissionStatus.REJECTED},
    SubmissionStatus.APPROVED: set(),
    SubmissionStatus.REJECTED: set(),
}


def is_terminal(status: SubmissionStatus) -> bool:
    return not ALLOWED_TRANSITIONS.get(status)
