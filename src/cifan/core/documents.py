from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from cifan.db.models import ApplicationScore
from cifan.db.repositories import SERVER_TIMESTAMP, Repository
from cifan.errors import SubmissionError
from cifan.types import (
    FILE_SLOTS,
    FORM_CLASSES,
    ApplicationRecord,
    BaseForm,
    CrewMember,
    FileMetadata,
    FileSlot,
    FutureForm,
    RoleHolder,
    ScoreEntry,
    WorldForm,
    YouthForm,
)

logger = logging.getLogger(__name__)

_PERMISSION_MARKERS = (
    "permission denied",
    "insufficient permissions",
    "readonly database",
    "read-only",
    "access denied",
)

# older documents were written with camelCase keys
_LEGACY_KEYS: dict[str, tuple[str, ...]] = {
    "user_id": ("userId",),
    "application_id": ("applicationId",),
    "competition_category": ("category", "competitionCategory"),
    "film_title": ("filmTitle",),
    "film_title_th": ("filmTitleTh",),
    "chiangmai_connection": ("chiangmaiConnection",),
    "crew_members": ("crewMembers",),
    "created_at": ("createdAt",),
    "last_modified": ("lastModified",),
    "submitted_at": ("submittedAt",),
    "admin_notes": ("adminNotes",),
    "review_status": ("reviewStatus",),
    "flag_reason": ("flagReason",),
    "assigned_reviewers": ("assignedReviewers",),
}


def _optional(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _crew_record(member: CrewMember) -> dict[str, Any]:
    return {
        "id": member.id,
        "full_name": member.full_name,
        "full_name_th": _optional(member.full_name_th),
        "role": member.role,
        "custom_role": _optional(member.custom_role),
        "age": member.age,
        "phone": _optional(member.phone),
        "email": _optional(member.email),
        "school_name": _optional(member.school_name),
        "student_id": _optional(member.student_id),
    }


def _file_record(metadata: FileMetadata | None) -> dict[str, Any] | None:
    if metadata is None:
        return None
    return {**metadata.model_dump(mode="json"), "uploaded_at": SERVER_TIMESTAMP}


def build_form_fields(form: BaseForm) -> dict[str, Any]:
    """Editable fields of a form in document shape, absent optionals as explicit None."""
    fields: dict[str, Any] = {
        "film_title": form.film_title,
        "film_title_th": _optional(form.film_title_th),
        "genres": list(form.genres),
        "format": form.format,
        "duration": form.duration,
        "synopsis": form.synopsis,
        "chiangmai_connection": _optional(form.chiangmai_connection),
        "crew_members": [_crew_record(member) for member in form.crew_members],
        "agreements": form.agreements(),
    }

    holder = form.role_holder()
    prefix = "director" if isinstance(form, WorldForm) else "submitter"
    fields.update(
        {
            f"{prefix}_name": holder.name,
            f"{prefix}_name_th": _optional(holder.name_th),
            f"{prefix}_age": holder.age,
            f"{prefix}_phone": holder.phone,
            f"{prefix}_email": holder.email,
            f"{prefix}_role": holder.role,
            f"{prefix}_custom_role": _optional(holder.custom_role),
        }
    )
    if isinstance(form, (YouthForm, FutureForm)):
        fields["nationality"] = form.nationality or "International"
    fields.update(form.affiliation())
    return fields


def _build_document(
    form: BaseForm,
    files: dict[FileSlot, FileMetadata] | None,
    application_id: str,
    *,
    draft: bool,
) -> dict[str, Any]:
    files = files or {}
    document: dict[str, Any] = {
        "user_id": form.user_id,
        "application_id": form.application_id or application_id,
        "competition_category": form.category,
        "category": form.category,
        "status": "draft" if draft else "submitted",
        "submitted_at": None if draft else SERVER_TIMESTAMP,
        "created_at": form.created_at or SERVER_TIMESTAMP,
        "last_modified": SERVER_TIMESTAMP,
        "files": {slot: _file_record(files.get(slot)) for slot in FILE_SLOTS},
    }
    document.update(build_form_fields(form))
    return document


def build_draft_document(
    form: BaseForm, files: dict[FileSlot, FileMetadata] | None, application_id: str
) -> dict[str, Any]:
    return _build_document(form, files, application_id, draft=True)


def build_submitted_document(
    form: BaseForm, files: dict[FileSlot, FileMetadata], application_id: str
) -> dict[str, Any]:
    missing = [slot for slot in FILE_SLOTS if files.get(slot) is None]
    if missing:
        raise SubmissionError(
            f"Failed to save submission: missing file metadata for {', '.join(missing)}",
            "database-error",
            "saving",
        )
    return _build_document(form, files, application_id, draft=False)


def save_draft_document(
    repo: Repository,
    form: BaseForm,
    files: dict[FileSlot, FileMetadata] | None,
    application_id: str,
) -> str:
    return _write(repo, build_draft_document(form, files, application_id), "Failed to save draft")


def save_document(
    repo: Repository,
    form: BaseForm,
    files: dict[FileSlot, FileMetadata],
    application_id: str,
) -> str:
    return _write(
        repo, build_submitted_document(form, files, application_id), "Failed to save submission"
    )


def _write(repo: Repository, document: dict[str, Any], failure: str) -> str:
    try:
        return repo.create_document(document).id
    except SQLAlchemyError as exc:
        repo.session.rollback()
        raise classify_persistence_error(exc, failure) from exc


def classify_persistence_error(exc: Exception, failure: str) -> SubmissionError:
    text = str(exc).lower()
    logger.error("Document write failed: %s", exc)
    if any(marker in text for marker in _PERMISSION_MARKERS):
        return SubmissionError(
            "Database permission error. Please ensure the service can write to the submissions "
            "store. Contact support if this persists.",
            "database-unauthorized",
            "saving",
        )
    return SubmissionError(f"{failure}: {exc}", "database-error", "saving")


def _pick(document: dict[str, Any], key: str, default: Any = None) -> Any:
    if document.get(key) is not None:
        return document[key]
    for legacy in _LEGACY_KEYS.get(key, ()):
        if document.get(legacy) is not None:
            return document[legacy]
    return default


def _timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return None
    return None


def _int_or_none(value: Any) -> int | None:
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _file_metadata(raw: Any) -> FileMetadata | None:
    if not isinstance(raw, dict) or not (raw.get("storage_path") or raw.get("storagePath")):
        return None
    try:
        return FileMetadata(
            file_name=raw.get("file_name") or raw.get("fileName") or "",
            file_size=int(raw.get("file_size") or raw.get("fileSize") or 0),
            file_type=raw.get("file_type") or raw.get("fileType") or "",
            storage_path=raw.get("storage_path") or raw.get("storagePath"),
            download_url=raw.get("download_url") or raw.get("downloadURL") or "",
            uploaded_at=_timestamp(raw.get("uploaded_at") or raw.get("uploadedAt")) or datetime.min,
        )
    except ValidationError:
        logger.warning("Ignoring malformed file metadata: %s", raw)
        return None


def _crew_member(raw: dict[str, Any], index: int) -> CrewMember:
    return CrewMember(
        id=str(raw.get("id") or index),
        full_name=raw.get("full_name") or raw.get("fullName") or "",
        full_name_th=raw.get("full_name_th") or raw.get("fullNameTh"),
        role=raw.get("role") or "",
        custom_role=raw.get("custom_role") or raw.get("customRole"),
        age=_int_or_none(raw.get("age")),
        phone=raw.get("phone"),
        email=raw.get("email"),
        school_name=raw.get("school_name") or raw.get("schoolName"),
        student_id=raw.get("student_id") or raw.get("studentId"),
    )


def _score_entry(row: ApplicationScore) -> ScoreEntry:
    return ScoreEntry(
        technical=row.technical,
        story=row.story,
        creativity=row.creativity,
        overall=row.overall,
        comments=row.comments,
        admin_id=row.admin_id,
        admin_name=row.admin_name,
        scored_at=row.scored_at,
    )


def normalize_document(
    document: dict[str, Any], scores: list[ApplicationScore] | None = None
) -> ApplicationRecord:
    """The one place a raw document is turned into a typed record."""
    category = _pick(document, "competition_category", "youth")
    prefix = "director" if category == "world" else "submitter"
    holder = RoleHolder(
        name=_pick(document, f"{prefix}_name", "") or "",
        name_th=_pick(document, f"{prefix}_name_th"),
        age=_int_or_none(_pick(document, f"{prefix}_age")),
        phone=_pick(document, f"{prefix}_phone", "") or "",
        email=_pick(document, f"{prefix}_email", "") or "",
        role=_pick(document, f"{prefix}_role", "") or "",
        custom_role=_pick(document, f"{prefix}_custom_role"),
    )

    affiliation_keys = {
        "youth": ("school_name", "student_id"),
        "future": ("university_name", "faculty", "university_id"),
        "world": (),
    }.get(category, ())

    raw_files = document.get("files") or {}
    raw_agreements = document.get("agreements") or {}

    return ApplicationRecord(
        id=document["id"],
        user_id=_pick(document, "user_id", ""),
        application_id=_pick(document, "application_id", "") or document["id"],
        category=category,
        status=document.get("status") or "draft",
        film_title=_pick(document, "film_title", "") or "",
        film_title_th=_pick(document, "film_title_th"),
        genres=list(document.get("genres") or []),
        format=document.get("format") or None,
        duration=_int_or_none(document.get("duration")),
        synopsis=document.get("synopsis") or "",
        chiangmai_connection=_pick(document, "chiangmai_connection"),
        nationality=document.get("nationality"),
        role_holder=holder,
        affiliation={key: document.get(key) for key in affiliation_keys},
        crew_members=[
            _crew_member(raw, index)
            for index, raw in enumerate(_pick(document, "crew_members", []) or [])
            if isinstance(raw, dict)
        ],
        files={slot: _file_metadata(raw_files.get(slot)) for slot in FILE_SLOTS},
        agreements={
            "copyright": bool(raw_agreements.get("copyright")),
            "terms": bool(raw_agreements.get("terms")),
            "promotional": bool(raw_agreements.get("promotional")),
            "final_decision": bool(
                raw_agreements.get("final_decision") or raw_agreements.get("finalDecision")
            ),
        },
        created_at=_timestamp(_pick(document, "created_at")),
        last_modified=_timestamp(_pick(document, "last_modified")),
        submitted_at=_timestamp(_pick(document, "submitted_at")),
        withdrawn_at=_timestamp(document.get("withdrawn_at")),
        deleted_at=_timestamp(document.get("deleted_at")),
        scores=[_score_entry(row) for row in scores or []],
        admin_notes=_pick(document, "admin_notes", "") or "",
        review_status=_pick(document, "review_status", "pending") or "pending",
        flagged=bool(document.get("flagged")),
        flag_reason=_pick(document, "flag_reason"),
        assigned_reviewers=list(_pick(document, "assigned_reviewers", []) or []),
        last_reviewed_at=_timestamp(document.get("last_reviewed_at")),
    )


def record_to_form_values(record: ApplicationRecord) -> dict[str, Any]:
    """Inverse of build_form_fields: the editable values of a record in form shape."""
    prefix = "director" if record.category == "world" else "submitter"
    holder = record.role_holder
    values: dict[str, Any] = {
        "category": record.category,
        "user_id": record.user_id,
        "application_id": record.application_id,
        "film_title": record.film_title,
        "film_title_th": record.film_title_th,
        "genres": list(record.genres),
        "format": record.format,
        "duration": record.duration,
        "synopsis": record.synopsis,
        "chiangmai_connection": record.chiangmai_connection,
        "crew_members": [member.model_dump() for member in record.crew_members],
        "agreement1": record.agreements.get("copyright", False),
        "agreement2": record.agreements.get("terms", False),
        "agreement3": record.agreements.get("promotional", False),
        "agreement4": record.agreements.get("final_decision", False),
        f"{prefix}_name": holder.name,
        f"{prefix}_name_th": holder.name_th,
        f"{prefix}_age": holder.age,
        f"{prefix}_phone": holder.phone,
        f"{prefix}_email": holder.email,
        f"{prefix}_role": holder.role,
        f"{prefix}_custom_role": holder.custom_role,
    }
    if record.category != "world":
        values["nationality"] = record.nationality or "International"
    values.update({key: value or "" for key, value in record.affiliation.items()})
    return values


_READ_ONLY_FORM_FIELDS = frozenset(
    {"category", "user_id", "application_id", "created_at", *FILE_SLOTS}
)


def editable_fields(category: str) -> set[str]:
    return set(FORM_CLASSES[category].model_fields) - _READ_ONLY_FORM_FIELDS


def build_edit_update(record: ApplicationRecord, changes: dict[str, Any]) -> dict[str, Any]:
    """Merge partial form changes into a record and return the document update."""
    unknown = sorted(set(changes) - editable_fields(record.category))
    if unknown:
        raise ValueError(f"Fields cannot be edited: {', '.join(unknown)}")

    form = FORM_CLASSES[record.category].model_validate({**record_to_form_values(record), **changes})
    return {**build_form_fields(form), "last_modified": SERVER_TIMESTAMP}
