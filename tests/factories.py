from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

from sqlalchemy.orm import Session

from cifan.core.documents import build_draft_document
from cifan.db.repositories import SERVER_TIMESTAMP, Repository
from cifan.storage.local import LocalFile
from cifan.types import FORM_CLASSES, BaseForm, FileMetadata, Identity

PNG_HEADER = b"\x89PNG\r\n\x1a\n"


def film_file(name: str = "night-market.mp4", size: int = 4096) -> LocalFile:
    return LocalFile.from_bytes(name, b"\x00" * size, "video/mp4")


def poster_file(name: str = "poster.png", size: int = 1024) -> LocalFile:
    return LocalFile.from_bytes(name, PNG_HEADER + b"\x01" * size, "image/png")


def proof_file(name: str = "student-card.pdf", size: int = 512) -> LocalFile:
    return LocalFile.from_bytes(name, b"%PDF-1.4" + b"\x02" * size, "application/pdf")


FILE_FACTORIES: dict[str, Callable[[], LocalFile]] = {
    "film_file": film_file,
    "poster_file": poster_file,
    "proof_file": proof_file,
}

ALL_FILES = ("film_file", "poster_file", "proof_file")


def form_values(category: str = "youth", **overrides: Any) -> dict[str, Any]:
    values: dict[str, Any] = {
        "category": category,
        "user_id": "user-1",
        "application_id": "app-1",
        "film_title": "Night Market",
        "film_title_th": "ตลาดกลางคืน",
        "genres": ["Horror", "Fantasy"],
        "format": "live-action",
        "duration": 8,
        "synopsis": "A vendor sells lanterns that show the dead.",
        "chiangmai_connection": "Shot around Warorot market.",
        "crew_members": [],
        "agreement1": True,
        "agreement2": True,
        "agreement3": True,
        "agreement4": True,
    }
    if category == "world":
        values.update(
            director_name="Ana Souza",
            director_age=34,
            director_phone="+55 11 5555 0100",
            director_email="ana@example.org",
            director_role="Director",
        )
    else:
        values.update(
            nationality="Thai",
            submitter_name="Somchai Jaidee",
            submitter_age=16 if category == "youth" else 21,
            submitter_phone="0812345678",
            submitter_email="somchai@example.org",
            submitter_role="Director",
        )
    if category == "youth":
        values.update(school_name="Chiang Mai Wittayalai", student_id="S-1024")
    elif category == "future":
        values.update(
            university_name="Chiang Mai University",
            faculty="Mass Communication",
            university_id="U-2048",
        )
    values.update(overrides)
    return values


def make_form(category: str = "youth", files: tuple[str, ...] = (), **overrides: Any) -> BaseForm:
    values = form_values(category, **overrides)
    values.update({slot: FILE_FACTORIES[slot]() for slot in files})
    return FORM_CLASSES[category].model_validate(values)


def file_metadata(slot: str, application_id: str = "app-1") -> FileMetadata:
    kind = slot.removesuffix("_file")
    return FileMetadata(
        file_name=f"{kind}.bin",
        file_size=1024,
        file_type="application/octet-stream",
        storage_path=f"submissions/{application_id}/{kind}/1700000000000_{kind}.bin",
        download_url=f"http://testserver/files/submissions/{application_id}/{kind}/{kind}.bin",
        uploaded_at="2025-01-01T00:00:00+00:00",
    )


def create_document(
    db: Session,
    *,
    category: str = "youth",
    status: str = "draft",
    files: tuple[str, ...] = ALL_FILES,
    user_id: str = "user-1",
    **overrides: Any,
) -> str:
    """Store an application document directly, bypassing the upload pipeline."""
    form = make_form(category, user_id=user_id, **overrides)
    document = build_draft_document(
        form, {slot: file_metadata(slot) for slot in files}, f"{category}_draft_test"
    )
    document["status"] = status
    if status != "draft":
        document["submitted_at"] = SERVER_TIMESTAMP
    return Repository(db).create_document(document).id


def admin_identity(role: str = "admin", uid: str = "admin-1") -> Identity:
    return Identity(
        uid=uid,
        email=f"{uid}@cifan.example",
        email_verified=True,
        display_name=uid.replace("-", " ").title(),
        role=role,
    )


def stored_files(root: Path) -> list[Path]:
    if not root.exists():
        return []
    return sorted(path for path in root.rglob("*") if path.is_file())
