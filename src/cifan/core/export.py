from __future__ import annotations

import csv
import io
import logging
from collections.abc import Callable
from datetime import UTC, datetime

import pandas as pd

from cifan.types import ApplicationRecord, DashboardStats, ExportOptions, ExportProgress, ExportStage

logger = logging.getLogger(__name__)

ExportListener = Callable[[ExportProgress], None]

CSV_HEADERS = [
    "Application ID",
    "Film Title (EN)",
    "Film Title (TH)",
    "Director Name",
    "Category",
    "Status",
    "Duration (min)",
    "Format",
    "Country",
    "Submitted Date",
    "Created Date",
]

SCORE_HEADERS = [
    "Average Score",
    "Total Judges",
    "Technical Avg",
    "Story Avg",
    "Creativity Avg",
    "Overall Avg",
]

NOTES_HEADERS = ["Review Status", "Flagged", "Admin Notes"]

CONTENT_TYPES = {
    "csv": "text/csv; charset=utf-8",
    "excel": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}

FILE_EXTENSIONS = {"csv": "csv", "excel": "xlsx"}

EXCEL_SHEET_NAME = "Applications"

REPORT_COLUMNS = ["Title", "Director", "Category", "Status", "Date"]


def _aware(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _date(value: datetime | None) -> str:
    return value.strftime("%Y-%m-%d") if value else ""


def _average(values: list[int]) -> str:
    return f"{sum(values) / len(values):.1f}" if values else ""


def _clip(value: str, limit: int) -> str:
    return value if len(value) <= limit else value[:limit] + "..."


def filter_applications(
    records: list[ApplicationRecord], options: ExportOptions
) -> list[ApplicationRecord]:
    filtered = list(records)
    if options.categories:
        filtered = [record for record in filtered if record.category in options.categories]
    if options.statuses:
        filtered = [record for record in filtered if record.status in options.statuses]

    start, end = _aware(options.date_start), _aware(options.date_end)
    if start or end:

        def in_range(record: ApplicationRecord) -> bool:
            moment = _aware(record.submitted_at or record.created_at)
            if moment is None:
                return False
            if start and moment < start:
                return False
            if end and moment > end:
                return False
            return True

        filtered = [record for record in filtered if in_range(record)]
    return filtered


def export_filename(options: ExportOptions, today: datetime | None = None) -> str:
    today = today or datetime.now(UTC)
    return f"CIFAN_Applications_{today.strftime('%Y-%m-%d')}.{FILE_EXTENSIONS[options.format]}"


def report_filename(kind: str, today: datetime | None = None) -> str:
    today = today or datetime.now(UTC)
    return f"CIFAN_{kind.capitalize()}_Report_{today.strftime('%Y-%m-%d')}.html"


def export_headers(options: ExportOptions) -> list[str]:
    headers = list(CSV_HEADERS)
    if options.include_scores:
        headers += SCORE_HEADERS
    if options.include_notes:
        headers += NOTES_HEADERS
    return headers


def _row(record: ApplicationRecord, options: ExportOptions) -> list[str]:
    row = [
        record.id,
        record.film_title,
        record.film_title_th or "",
        record.role_holder.name,
        record.category,
        record.status,
        "" if record.duration is None else str(record.duration),
        record.format or "",
        record.nationality or "International",
        _date(record.submitted_at),
        _date(record.created_at),
    ]
    if options.include_scores:
        scores = record.scores
        if scores:
            row += [
                f"{record.average_score:.1f}",
                str(len(scores)),
                _average([score.technical for score in scores]),
                _average([score.story for score in scores]),
                _average([score.creativity for score in scores]),
                _average([score.overall for score in scores]),
            ]
        else:
            row += ["", "0", "", "", "", ""]
    if options.include_notes:
        row += [record.review_status, "yes" if record.flagged else "no", record.admin_notes]
    return row


def report_rows(records: list[ApplicationRecord]) -> list[list[str]]:
    """Rows of the printable applications report, titles and names clipped to fit."""
    rows = []
    for record in records:
        moment = record.submitted_at or record.created_at
        rows.append(
            [
                _clip(record.film_title, 30),
                _clip(record.role_holder.name, 25),
                record.category,
                record.status,
                moment.strftime("%m/%d/%Y") if moment else "",
            ]
        )
    return rows


def category_breakdown(stats: DashboardStats) -> list[tuple[str, int, str]]:
    total = stats.total_applications
    return [
        (category, count, f"{count / total * 100:.1f}%" if total else "0.0%")
        for category, count in stats.by_category.items()
    ]


def _csv_bytes(headers: list[str], rows: list[list[str]]) -> bytes:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(headers)
    writer.writerows(rows)
    return buffer.getvalue().encode("utf-8")


def _excel_bytes(headers: list[str], rows: list[list[str]]) -> bytes:
    output = io.BytesIO()
    frame = pd.DataFrame(rows, columns=headers)
    with pd.ExcelWriter(output, engine="openpyxl") as writer:
        frame.to_excel(writer, index=False, sheet_name=EXCEL_SHEET_NAME)
    return output.getvalue()


class ExportService:
    def __init__(self, on_progress: ExportListener | None = None):
        self.on_progress = on_progress

    def export_applications(self, records: list[ApplicationRecord], options: ExportOptions) -> bytes:
        try:
            self._update("preparing", 0, "Preparing export...")
            filtered = filter_applications(records, options)

            self._update("processing", 20, "Processing data...", total=len(filtered))
            headers = export_headers(options)
            rows = []
            for index, record in enumerate(filtered, start=1):
                rows.append(_row(record, options))
                self._update(
                    "processing",
                    20 + 40 * index / len(filtered),
                    "Processing data...",
                    total=len(filtered),
                    current=index,
                )

            if options.format == "excel":
                self._update("generating", 60, "Generating Excel file...", total=len(filtered))
                content = _excel_bytes(headers, rows)
            else:
                self._update("generating", 60, "Generating CSV...", total=len(filtered))
                content = _csv_bytes(headers, rows)

            self._update("complete", 100, "Export completed successfully!", total=len(filtered))
            logger.info("Exported %d application(s) format=%s", len(filtered), options.format)
            return content
        except Exception:
            logger.exception("Export failed")
            self._update("error", 0, "Export failed. Please try again.")
            raise

    def _update(
        self,
        stage: ExportStage,
        progress: float,
        message: str,
        *,
        total: int | None = None,
        current: int | None = None,
    ) -> None:
        if self.on_progress is not None:
            self.on_progress(
                ExportProgress(stage=stage, progress=progress, message=message, total=total, current=current)
            )
