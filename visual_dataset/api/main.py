from __future__ import annotations

from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from visual_dataset.config import settings
from visual_dataset.contracts.payloads import CoverageRow, ReviewRequest
from visual_dataset.domain.models import Submission
from visual_dataset.domain.state_machine import InvalidTransitionError
from visual_dataset.infra.repositories import DatasetRepository, RepositoryError, build_repository
from visual_dataset.logging_setup import configure_logging
from visual_dataset.services.catalog_service import DistrictCatalog
from visual_dataset.services.review_service import FilterCriteria, ReviewService, apply_filters

configure_logging(settings.log_level)

app = FastAPI(title="India Visual Dataset API", version="1.0.0")
repo, using_supabase, repo_error = build_repository()


def get_repository() -> DatasetRepository:
    return repo


def _submission_out(s: Submission) -> dict[str, Any]:
    return {
        "id": s.id,
        "district_id": s.district_id,
        "state": s.state_name,
        "district_name": s.district_name,
        "image_url": s.image_url,
        "description": s.description,
        "contributor_name": s.contributor_name,
        "contributor_contact": s.contributor_contact,
        "latitude": s.latitude,
        "longitude": s.longitude,
        "status": s.status.value,
        "submitted_at": s.submitted_at,
        "reviewed_at": s.reviewed_at,
        "reviewed_by": s.reviewed_by,
        "admin_notes": s.admin_notes,
    }


@app.exception_handler(InvalidTransitionError)
async def invalid_transition_handler(_request: Request, exc: InvalidTransitionError) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(ValueError)
async def value_error_handler(_request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(RepositoryError)
async def repository_error_handler(_request: Request, exc: RepositoryError) -> JSONResponse:
    return JSONResponse(status_code=502, content={"detail": str(exc)})


@app.get("/health")
def health() -> dict[str, Any]:
    return {
        "status": "ok",
        "persistence": "supabase" if using_supabase else "memory",
        "persistence_note": repo_error,
    }


@app.get("/districts")
def list_districts(state: str | None = None, r: DatasetRepository = Depends(get_repository)) -> list[dict[str, Any]]:
    catalog = DistrictCatalog(r).load()
    districts = catalog.districts_for_state(state) if state else catalog.all_districts
    return [{"id": d.id, "state": d.state, "district_name": d.district_name} for d in districts]


@app.get("/states")
def list_states(r: DatasetRepository = Depends(get_repository)) -> list[str]:
    return DistrictCatalog(r).load().states_in_order


@app.get("/submissions")
def list_submissions(
    status: str = "all",
    state: str = "all",
    search: str = "",
    r: DatasetRepository = Depends(get_repository),
) -> dict[str, Any]:
    snapshot = ReviewService(r).load()
    rows = apply_filters(snapshot.submissions, FilterCriteria(status=status, state=state, search=search))
    return {"items": [_submission_out(s) for s in rows], "errors": snapshot.errors}


@app.get("/coverage")
def list_coverage(r: DatasetRepository = Depends(get_repository)) -> list[CoverageRow]:
    service = ReviewService(r)
    rows: list[CoverageRow] = []
    for agg in service.load().coverage:
        rows.append(
            CoverageRow(
                district_id=agg.district_id,
                state=agg.district.state if agg.district else "",
                district_name=agg.district.district_name if agg.district else "",
                total=agg.total,
                pending=agg.pending,
                approved=agg.approved,
                rejected=agg.rejected,
                target=service.target,
                progress_percent=agg.progress_percent(service.target),
            )
        )
    return rows


@app.post("/submissions/{submission_id}/review")
def review_submission(
    submission_id: str,
    payload: ReviewRequest,
    r: DatasetRepository = Depends(get_repository),
) -> dict[str, Any]:
    snapshot = ReviewService(r).review(submission_id, payload.status, payload.notes)
    updated = snapshot.find(submission_id)
    if updated is None:
        raise HTTPException(status_code=404, detail="Submission not found after review")
    return _submission_out(updated)
