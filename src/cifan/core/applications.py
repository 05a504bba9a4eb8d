from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from sqlalchemy.orm import Session

from cifan.core.documents import build_edit_update, normalize_document
from cifan.core.events import EventBus, publish_nowait
from cifan.core.file_transfer import (
    FILE_VALIDATION_RULES,
    delete_file,
    delete_files_quietly,
    generate_file_path,
    upload_file,
    validate_file,
)
from cifan.core.runtime import get_event_bus
from cifan.core.validation import validate_before_submit
from cifan.db.repositories import SERVER_TIMESTAMP, Repository
from cifan.errors import (
    ApplicationNotFoundError,
    ApplicationStateError,
    ApplicationValidationError,
    PermissionDeniedError,
    UploadError,
)
from cifan.storage.local import LocalFile, LocalObjectStorage, ProgressCallback
from cifan.types import (
    SLOT_KINDS,
    ApplicationRecord,
    FileMetadata,
    FileSlot,
    ProgressStage,
    SubmissionProgress,
    ValidationResult,
)

logger = logging.getLogger(__name__)

ProgressListener = Callable[[SubmissionProgress], None]

MY_APPLICATION_STATUSES = ("draft", "submitted")


class ApplicationService:
    """Operations on applications that already exist in the document store.

    Status moves draft -> submitted -> withdrawn, or draft -> deleted. Every
    transition is checked before anything is written.
    """

    def __init__(
        self,
        session: Session,
        on_progress: ProgressListener | None = None,
        *,
        storage: LocalObjectStorage | None = None,
        event_bus: EventBus | None = None,
    ):
        self.repo = Repository(session)
        self.on_progress = on_progress
        self.storage = storage
        self.event_bus = event_bus or get_event_bus()

    def get_application(self, application_id: str, *, user_id: str | None = None) -> ApplicationRecord:
        document = self.repo.get_document(application_id)
        if document is None:
            raise ApplicationNotFoundError("Application not found")
        record = normalize_document(document, self.repo.list_scores([application_id]))
        if user_id is not None and record.user_id != user_id:
            raise PermissionDeniedError("You do not have access to this application")
        return record

    def list_applications(self, user_id: str) -> list[ApplicationRecord]:
        documents = self.repo.list_documents(user_id=user_id, statuses=MY_APPLICATION_STATUSES)
        return [normalize_document(document) for document in documents]

    def validate_before_submit(self, record: ApplicationRecord) -> ValidationResult:
        return validate_before_submit(record)

    def can_submit_application(self, record: ApplicationRecord) -> bool:
        if record.status != "draft":
            return False
        return validate_before_submit(record).is_valid

    def submit_application(self, application_id: str, *, user_id: str | None = None) -> ApplicationRecord:
        try:
            self._update(application_id, "validating", 0, "Validating application...")
            record = self.get_application(application_id, user_id=user_id)
            if record.status != "draft":
                raise ApplicationStateError("Only draft applications can be submitted")

            validation = validate_before_submit(record)
            if not validation.is_valid:
                raise ApplicationValidationError(validation.errors)
            for warning in validation.warnings:
                logger.info("Submit warning application_id=%s: %s", application_id, warning)

            self._update(application_id, "updating", 50, "Submitting application...")
            self.repo.update_document(
                application_id,
                {
                    "status": "submitted",
                    "submitted_at": SERVER_TIMESTAMP,
                    "last_modified": SERVER_TIMESTAMP,
                },
            )
            self._update(application_id, "complete", 100, "Application submitted successfully!")
        except Exception as exc:
            logger.exception("Error submitting application application_id=%s", application_id)
            self._update(application_id, "error", 0, str(exc) or "Unknown error occurred")
            raise

        return self.get_application(application_id)

    def update_draft(
        self, application_id: str, changes: dict[str, Any], *, user_id: str | None = None
    ) -> ApplicationRecord:
        record = self.get_application(application_id, user_id=user_id)
        if record.status != "draft":
            raise ApplicationStateError("Cannot edit submitted applications")

        self.repo.update_document(application_id, build_edit_update(record, changes))
        logger.info("Draft updated application_id=%s fields=%s", application_id, sorted(changes))
        return self.get_application(application_id)

    async def replace_file(
        self,
        application_id: str,
        slot: FileSlot,
        new_file: LocalFile,
        on_progress: ProgressCallback | None = None,
        *,
        user_id: str | None = None,
    ) -> FileMetadata:
        metadata: FileMetadata | None = None
        try:
            record = await asyncio.to_thread(self.get_application, application_id, user_id=user_id)
            if record.status != "draft":
                raise ApplicationStateError("Cannot replace files in submitted applications")

            kind = SLOT_KINDS[slot]
            result = await asyncio.to_thread(validate_file, new_file, FILE_VALIDATION_RULES[kind])
            if not result.is_valid:
                raise ValueError(f"File validation failed: {result.error}")

            old_file = record.files.get(slot)
            new_path = generate_file_path(record.application_id, kind, new_file.name)
            metadata = await upload_file(new_file, new_path, on_progress, storage=self.storage)

            await asyncio.to_thread(
                self.repo.update_document,
                application_id,
                {
                    f"files.{slot}": {
                        **metadata.model_dump(mode="json"),
                        "uploaded_at": SERVER_TIMESTAMP,
                    },
                    "last_modified": SERVER_TIMESTAMP,
                },
            )
        except Exception:
            logger.exception("Error replacing file application_id=%s slot=%s", application_id, slot)
            if metadata is not None:
                await delete_files_quietly([metadata.storage_path], storage=self.storage)
            raise

        if old_file is not None and old_file.storage_path != new_path:
            try:
                await delete_file(old_file.storage_path, storage=self.storage)
            except UploadError as exc:
                logger.warning("Failed to delete old file path=%s: %s", old_file.storage_path, exc)

        return metadata

    async def delete_application(self, application_id: str, *, user_id: str | None = None) -> None:
        record = await asyncio.to_thread(self.get_application, application_id, user_id=user_id)
        if record.status != "draft":
            raise ApplicationStateError("Cannot delete submitted applications")

        paths = [metadata.storage_path for metadata in record.files.values() if metadata is not None]
        results = await asyncio.gather(
            *(delete_file(path, storage=self.storage) for path in paths),
            return_exceptions=True,
        )
        for path, outcome in zip(paths, results):
            if isinstance(outcome, Exception):
                logger.warning("Failed to delete file path=%s: %s", path, outcome)

        await asyncio.to_thread(
            self.repo.update_document,
            application_id,
            {
                "status": "deleted",
                "deleted_at": SERVER_TIMESTAMP,
                "last_modified": SERVER_TIMESTAMP,
            },
        )
        logger.info("Application deleted application_id=%s files=%d", application_id, len(paths))

    def withdraw_application(self, application_id: str, *, user_id: str | None = None) -> ApplicationRecord:
        record = self.get_application(application_id, user_id=user_id)
        if record.status != "submitted":
            raise ApplicationStateError("Can only withdraw submitted applications")

        self.repo.update_document(
            application_id,
            {
                "status": "withdrawn",
                "withdrawn_at": SERVER_TIMESTAMP,
                "last_modified": SERVER_TIMESTAMP,
            },
        )
        logger.info("Application withdrawn application_id=%s", application_id)
        return self.get_application(application_id)

    def _update(self, application_id: str, stage: ProgressStage, progress: float, message: str) -> None:
        event = SubmissionProgress(stage=stage, progress=progress, message=message)
        if self.on_progress is not None:
            self.on_progress(event)
        publish_nowait(self.event_bus, application_id, event.model_dump())
