from __future__ import annotations

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.orm import Session

from cifan.api.deps import get_db, require_permission
from cifan.api.routes import http_error
from cifan.api.schemas import ReviewUpdateRequest
from cifan.core.export import CONTENT_TYPES, ExportService, export_filename
from cifan.core.review import (
    EXPORT_DATA,
    SCORE_APPLICATIONS,
    VIEW_APPLICATIONS,
    VIEW_DASHBOARD,
    ReviewService,
)
from cifan.errors import ApplicationNotFoundError, ApplicationStateError, PermissionDeniedError
from cifan.types import (
    ApplicationRecord,
    ApplicationStatus,
    Category,
    DashboardStats,
    ExportOptions,
    Identity,
    ReviewFilters,
    ReviewPage,
    ReviewSort,
    ReviewStatus,
    ScoreEntry,
    ScoreInput,
)

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.get("/applications", response_model=ReviewPage)
def list_applications(
    search: str = "",
    category: Category | None = None,
    status: ApplicationStatus | None = None,
    review_status: ReviewStatus | None = None,
    nationality: str | None = None,
    date_start: datetime | None = None,
    date_end: datetime | None = None,
    sort_by: ReviewSort = "newest",
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=200),
    admin: Identity = Depends(require_permission(VIEW_APPLICATIONS)),
    db: Session = Depends(get_db),
) -> ReviewPage:
    filters = ReviewFilters(
        search=search,
        category=category,
        status=status,
        review_status=review_status,
        nationality=nationality,
        date_start=date_start,
        date_end=date_end,
        sort_by=sort_by,
        page=page,
        per_page=per_page,
    )
    return ReviewService(db, admin).list_for_review(filters)


@router.get("/applications/{application_id}", response_model=ApplicationRecord)
def get_application(
    application_id: str,
    admin: Identity = Depends(require_permission(VIEW_APPLICATIONS)),
    db: Session = Depends(get_db),
) -> ApplicationRecord:
    try:
        return ReviewService(db, admin).get_application(application_id)
    except ApplicationNotFoundError as exc:
        raise http_error(exc) from exc


@router.put("/applications/{application_id}/scores", response_model=ScoreEntry)
def save_score(
    application_id: str,
    payload: ScoreInput,
    admin: Identity = Depends(require_permission(SCORE_APPLICATIONS)),
    db: Session = Depends(get_db),
) -> ScoreEntry:
    try:
        return ReviewService(db, admin).save_score(application_id, payload)
    except (ApplicationNotFoundError, ApplicationStateError, PermissionDeniedError) as exc:
        raise http_error(exc) from exc


@router.patch("/applications/{application_id}/review", response_model=ApplicationRecord)
def update_review(
    application_id: str,
    payload: ReviewUpdateRequest,
    admin: Identity = Depends(require_permission(VIEW_APPLICATIONS)),
    db: Session = Depends(get_db),
) -> ApplicationRecord:
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(status_code=400, detail="No review changes supplied")

    try:
        return ReviewService(db, admin).apply_review_update(application_id, changes)
    except (ApplicationNotFoundError, PermissionDeniedError) as exc:
        raise http_error(exc) from exc


@router.get("/dashboard", response_model=DashboardStats)
def dashboard(
    admin: Identity = Depends(require_permission(VIEW_DASHBOARD)),
    db: Session = Depends(get_db),
) -> DashboardStats:
    return ReviewService(db, admin).dashboard_stats()


@router.get("/export")
def export_applications(
    format: str = Query("csv", pattern="^(csv|excel)$"),
    include_scores: bool = False,
    include_notes: bool = False,
    categories: list[Category] | None = Query(None),
    statuses: list[ApplicationStatus] | None = Query(None),
    date_start: datetime | None = None,
    date_end: datetime | None = None,
    admin: Identity = Depends(require_permission(EXPORT_DATA)),
    db: Session = Depends(get_db),
) -> Response:
    options = ExportOptions(
        format=format,
        include_scores=include_scores,
        include_notes=include_notes,
        categories=categories or [],
        statuses=statuses or [],
        date_start=date_start,
        date_end=date_end,
    )
    records = ReviewService(db, admin).all_records()
    content = ExportService().export_applications(records, options)
    filename = export_filename(options, datetime.now(UTC))
    return Response(
        content=content,
        media_type=CONTENT_TYPES[options.format],
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
