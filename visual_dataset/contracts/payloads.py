from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, field_validator

from visual_dataset.domain.wizard import DESCRIPTION_MAX, DESCRIPTION_MIN


class SubmissionInsert(BaseModel):
    district_id: str = Field(min_length=1)
    image_url: str = Field(min_length=1)
    description: str = Field(min_length=DESCRIPTION_MIN, max_length=DESCRIPTION_MAX)
    contributor_name: str = Field(min_length=1)
    contributor_contact: str | None = None
    latitude: float | None = Field(default=None, ge=-90.0, le=90.0)
    longitude: float | None = Field(default=None, ge=-180.0, le=180.0)
    status: Literal["pending"] = "pending"

    @field_validator("contributor_name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("contributor_name must not be blank")
        return value.strip()

    @field_validator("contributor_contact")
    @classmethod
    def _blank_contact_is_none(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return value.strip()


class ReviewRequest(BaseModel):
    status: Literal["approved", "rejected"]
    notes: str | None = None


class CoverageRow(BaseModel):
    district_id: str
    state: str
    district_name: str
    total: int
    pending: int
    approved: int
    rejected: int
    target: int
    progress_percent: float
