from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
from typing import Iterable

from visual_dataset.config import settings
from visual_dataset.domain.models import CoverageAggregate, Submission, coverage_progress
from visual_dataset.domain.state_machine import StateMachine
from visual_dataset.domain.states import SubmissionStatus
from visual_dataset.infra.repositories import DatasetRepository, LoadError

logger = logging.getLogger(__name__)

ALL = "all"


@dataclass(frozen=True)
class FilterCriteria:
    status: str = ALL
    state: str = ALL
    search: str = ""


@dataclass(frozen=True)
class ReviewSnapshot:
    submissions: list[Submission] = field(default_factory=list)
    coverage: list[CoverageAggregate] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def find(self, submission_id: str) -> Submission | None:
        return next((s for s in self.submissions if s.id == submission_id), None)


def _matches_search(submission: Submission, term: str) -> bool:
    return (
        term in submission.description.lower()
        or term in submission.contributor_name.lower()
        or term in submission.district_name.lower()
    )


def apply_filters(submissions: Iterable[Submission], criteria: FilterCriteria) -> list[Submission]:
    out = list(submissions)
    if criteria.status and criteria.status != ALL:
        out = [s for s in out if s.status.value == criteria.status]
    if criteria.state and criteria.state != ALL:
        out = [s for s in out if s.state_name == criteria.state]
    term = (criteria.search or "").strip().lower()
    if term:
        out = [s for s in out if _matches_search(s, term)]
    return out


def states_of(submissions: Iterable[Submission]) -> list[str]:
    return list(dict.fromkeys(s.state_name for s in submissions if s.state_name))


def status_totals(submissions: Iterable[Submission]) -> dict[str, int]:
    totals = {"total": 0, **{status.value: 0 for status in SubmissionStatus}}
    for submission in submissions:
        totals["total"] += 1
        totals[submission.status.value] += 1
    return totals


class ReviewService:
    def __init__(self, repo: DatasetRepository, *, reviewer: str | None = None, target: int | None = None) -> None:
        self.repo = repo
        self.sm = StateMachine()
        self.reviewer = reviewer or settings.reviewer_identity
        self.target = target or settings.coverage_target

    def load(self) -> ReviewSnapshot:
        errors: list[str] = []
        try:
            submissions = [Submission.from_row(r) for r in self.repo.list_submissions()]
        except LoadError as exc:
            logger.warning("review.submissions_load_failed error=%s", exc)
            errors.append(str(exc))
            submissions = []
        try:
            coverage = [CoverageAggregate.from_row(r) for r in self.repo.list_coverage()]
        except LoadError as exc:
            logger.warning("review.coverage_load_failed error=%s", exc)
            errors.append(str(exc))
            coverage = []
        return ReviewSnapshot(submissions=submissions, coverage=coverage, errors=errors)

    def review(self, submission_id: str, target: SubmissionStatus | str, notes: str | None = None) -> ReviewSnapshot:
        target_status = SubmissionStatus(target)
        row = self.repo.get_submission(submission_id)
        if not row:
            raise ValueError(f"Submission not found: {submission_id}")
        current = SubmissionStatus(str(row.get("status")))
        self.sm.transition(current, target_status)

        self.repo.update_submission_status(
            submission_id,
            target_status.value,
            reviewed_at=datetime.now(timezone.utc).isoformat(),
            reviewed_by=self.reviewer,
            admin_notes=(notes or "").strip() or None,
        )
        logger.info(
            "review.status_changed id=%s from=%s to=%s reviewer=%s",
            submission_id,
            current.value,
            target_status.value,
            self.reviewer,
        )
        return self.load()

    def progress(self, aggregate: CoverageAggregate) -> float:
        return coverage_progress(aggregate.approved, self.target)
