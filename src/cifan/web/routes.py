from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates
from sqlalchemy.orm import Session

from cifan.api.deps import get_db, get_language, require_permission
from cifan.config import get_settings
from cifan.core.export import REPORT_COLUMNS, category_breakdown, filter_applications, report_filename, report_rows
from cifan.core.review import EXPORT_DATA, VIEW_APPLICATIONS, VIEW_DASHBOARD, ReviewService
from cifan.errors import ApplicationNotFoundError
from cifan.i18n import CATEGORY_LABELS, STATUS_LABELS, label
from cifan.types import ApplicationStatus, Category, ExportOptions, Identity, Language

router = APIRouter(tags=["web"])
templates = Jinja2Templates(directory=str(Path(__file__).resolve().parent / "templates"))


@router.get("/admin/applications/{application_id}/print", response_class=HTMLResponse)
def print_application(
    application_id: str,
    request: Request,
    lang: Language = Depends(get_language),
    admin: Identity = Depends(require_permission(VIEW_APPLICATIONS)),
    db: Session = Depends(get_db),
) -> HTMLResponse:
    try:
        record = ReviewService(db, admin).get_application(application_id)
    except ApplicationNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    return templates.TemplateResponse(
        request,
        "print_application.html",
        {
            "application": record,
            "lang": lang,
            "category_label": label(CATEGORY_LABELS, record.category, lang),
            "status_label": label(STATUS_LABELS, record.status, lang),
            "role_title": "Director" if record.category == "world" else "Submitter",
        },
    )


def _report_response(request: Request, template: str, context: dict, kind: str) -> HTMLResponse:
    response = templates.TemplateResponse(request, template, context)
    response.headers["Content-Disposition"] = f'inline; filename="{report_filename(kind)}"'
    return response


@router.get("/admin/reports/applications", response_class=HTMLResponse)
def applications_report(
    request: Request,
    categories: list[Category] | None = Query(None),
    statuses: list[ApplicationStatus] | None = Query(None),
    date_start: datetime | None = None,
    date_end: datetime | None = None,
    lang: Language = Depends(get_language),
    admin: Identity = Depends(require_permission(EXPORT_DATA)),
    db: Session = Depends(get_db),
) -> HTMLResponse:
    options = ExportOptions(
        categories=categories or [],
        statuses=statuses or [],
        date_start=date_start,
        date_end=date_end,
    )
    records = filter_applications(ReviewService(db, admin).all_records(), options)
    return _report_response(
        request,
        "report_applications.html",
        {
            "lang": lang,
            "generated": datetime.now(UTC),
            "total": len(records),
            "columns": REPORT_COLUMNS,
            "rows": report_rows(records),
        },
        "applications",
    )


@router.get("/admin/reports/dashboard", response_class=HTMLResponse)
def dashboard_report(
    request: Request,
    lang: Language = Depends(get_language),
    admin: Identity = Depends(require_permission(VIEW_DASHBOARD)),
    db: Session = Depends(get_db),
) -> HTMLResponse:
    stats = ReviewService(db, admin).dashboard_stats()
    breakdown = [
        (label(CATEGORY_LABELS, category, lang), count, share)
        for category, count, share in category_breakdown(stats)
    ]
    return _report_response(
        request,
        "report_dashboard.html",
        {
            "lang": lang,
            "generated": datetime.now(UTC),
            "stats": stats,
            "recent_days": get_settings().recent_submission_days,
            "categories": breakdown,
        },
        "dashboard",
    )
