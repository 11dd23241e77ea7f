from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from visual_dataset.domain.states import SubmissionStatus

COVERAGE_TARGET = 1000


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _opt_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    return float(value)


@dataclass(frozen=True)
class District:
    id: str
    state: str
    district_name: str

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "District":
        return cls(
            id=str(row["id"]),
            state=str(row.get("state") or ""),
            district_name=str(row.get("district_name") or ""),
        )

    @property
    def label(self) -> str:
        return f"{self.district_name}, {self.state}"


@dataclass(frozen=True)
class Coordinates:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class ImageUpload:
    file_name: str
    content: bytes = field(repr=False)
    content_type: str = ""

    @property
    def extension(self) -> str:
        if "." not in self.file_name:
            return "jpg"
        ext = self.file_name.rsplit(".", 1)[1].strip().lower()
        return ext or "jpg"

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass(frozen=True)
class Submission:
    id: str
    district_id: str
    image_url: str
    description: str
    contributor_name: str
    status: SubmissionStatus
    submitted_at: str
    district: District | None = None
    contributor_contact: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    reviewed_at: str | None = None
    reviewed_by: str | None = None
    admin_notes: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Submission":
        embedded = row.get("districts")
        district = District.from_row(embedded) if isinstance(embedded, dict) and embedded.get("id") else None
        return cls(
            id=str(row["id"]),
            district_id=str(row.get("district_id") or ""),
            image_url=str(row.get("image_url") or ""),
            description=str(row.get("description") or ""),
            contributor_name=str(row.get("contributor_name") or ""),
            status=SubmissionStatus(str(row.get("status") or SubmissionStatus.PENDING.value)),
            submitted_at=str(row.get("submitted_at") or ""),
            district=district,
            contributor_contact=row.get("contributor_contact") or None,
            latitude=_opt_float(row.get("latitude")),
            longitude=_opt_float(row.get("longitude")),
            reviewed_at=row.get("reviewed_at"),
            reviewed_by=row.get("reviewed_by"),
            admin_notes=row.get("admin_notes"),
        )

    @property
    def coordinates(self) -> Coordinates | None:
        if self.latitude is None or self.longitude is None:
            return None
        return Coordinates(self.latitude, self.longitude)

    @property
    def state_name(self) -> str:
        return self.district.state if self.district else ""

    @property
    def district_name(self) -> str:
        return self.district.district_name if self.district else ""


@dataclass(frozen=True)
class CoverageAggregate:
    district_id: str
    total: int
    pending: int
    approved: int
    rejected: int
    district: District | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "CoverageAggregate":
        embedded = row.get("districts")
        district = District.from_row(embedded) if isinstance(embedded, dict) and embedded.get("id") else None
        return cls(
            district_id=str(row.get("district_id") or ""),
            total=int(row.get("total_submissions") or 0),
            pending=int(row.get("pending_count") or 0),
            approved=int(row.get("approved_count") or 0),
            rejected=int(row.get("rejected_count") or 0),
            district=district,
        )

    def progress(self, target: int = COVERAGE_TARGET) -> float:
        return coverage_progress(self.approved, target)

    def progress_percent(self, target: int = COVERAGE_TARGET) -> float:
        return round(self.progress(target) * 100, 1)


def coverage_progress(approved: int, target: int = COVERAGE_TARGET) -> float:
    if target <= 0:
        return 1.0
    return min(max(approved, 0) / target, 1.0)
