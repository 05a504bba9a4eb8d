from __future__ import annotations

import asyncio
import logging
import secrets
import string
import time
from collections.abc import Callable

from sqlalchemy.orm import Session

from cifan.config import get_settings
from cifan.core.documents import save_document, save_draft_document
from cifan.core.events import EventBus, publish_nowait
from cifan.core.file_transfer import delete_files_quietly
from cifan.core.runtime import get_event_bus
from cifan.core.uploads import upload_files, upload_files_for_draft
from cifan.core.validation import validate_form_data, validate_form_fields
from cifan.db.repositories import Repository
from cifan.errors import SubmissionError
from cifan.i18n import failure_message
from cifan.storage.local import LocalObjectStorage
from cifan.types import BaseForm, FileMetadata, Language, ProgressStage, SubmissionProgress, SubmissionResult

logger = logging.getLogger(__name__)

ProgressListener = Callable[[SubmissionProgress], None]

UPLOAD_START = 20.0
UPLOAD_SPAN = 50.0

_ID_ALPHABET = string.ascii_lowercase + string.digits


def new_submission_id(category: str, *, draft: bool) -> str:
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    middle = "_draft" if draft else ""
    return f"{category}{middle}_{int(time.time() * 1000)}_{suffix}"


class SubmissionOrchestrator:
    """Runs one save-draft or submit action: validate, upload, persist, report.

    An instance is single shot. Files uploaded during the run are remembered
    only so they can be removed again if a later stage fails.
    """

    def __init__(
        self,
        session: Session,
        on_progress: ProgressListener | None = None,
        *,
        storage: LocalObjectStorage | None = None,
        event_bus: EventBus | None = None,
        lang: Language | None = None,
    ):
        self.repo = Repository(session)
        self.on_progress = on_progress
        self.storage = storage
        self.event_bus = event_bus or get_event_bus()
        self.lang: Language = lang or get_settings().default_language
        self.uploaded_files: list[FileMetadata] = []
        self.submission_id: str | None = None
        self._progress_key: str | None = None

    async def save_draft(self, form: BaseForm) -> SubmissionResult:
        self._start(form, draft=True)
        try:
            self._update("validating", 0, "Validating draft data...")
            await asyncio.to_thread(validate_form_data, form, is_draft=True)

            files: dict | None = None
            if form.present_files():
                self._update("uploading", UPLOAD_START, "Uploading files...")
                files = await upload_files_for_draft(
                    form,
                    self.submission_id,
                    on_progress=self._upload_progress,
                    on_uploaded=self.uploaded_files.append,
                    storage=self.storage,
                )
                self._update("saving", UPLOAD_START + UPLOAD_SPAN, "Saving draft with files...")
            else:
                self._update("saving", 50, "Saving draft...")

            document_id = await asyncio.to_thread(
                save_draft_document, self.repo, form, files, self.submission_id
            )
            self._update("complete", 100, "Draft saved successfully!")
            logger.info("Draft saved document_id=%s category=%s", document_id, form.category)
            return SubmissionResult(success=True, submission_id=document_id, is_draft=True)
        except SubmissionError as exc:
            logger.exception("Draft save failed submission_id=%s", self.submission_id)
            return await self._fail(exc, draft=True)
        except Exception as exc:
            logger.exception("Unexpected error submission_id=%s", self.submission_id)
            return await self._fail(SubmissionError(str(exc), "unknown-error", "unknown"), draft=True)

    async def submit(self, form: BaseForm) -> SubmissionResult:
        self._start(form, draft=False)
        try:
            self._update("validating", 0, "Validating form data and files...")
            await asyncio.to_thread(validate_form_data, form)
            field_errors = validate_form_fields(form, self.lang)
            if field_errors:
                raise SubmissionError(
                    f"The form contains invalid fields: {', '.join(sorted(field_errors))}",
                    "invalid-form",
                    "validation",
                )

            self._update("uploading", UPLOAD_START, "Uploading files...")
            files = await upload_files(
                form,
                self.submission_id,
                on_progress=self._upload_progress,
                on_uploaded=self.uploaded_files.append,
                storage=self.storage,
            )

            self._update("saving", UPLOAD_START + UPLOAD_SPAN, "Saving submission...")
            document_id = await asyncio.to_thread(save_document, self.repo, form, files, self.submission_id)
            self._update("complete", 100, "Submission completed successfully!")
            logger.info("Submission saved document_id=%s category=%s", document_id, form.category)
            return SubmissionResult(success=True, submission_id=document_id, is_draft=False)
        except SubmissionError as exc:
            logger.exception("Submission failed submission_id=%s", self.submission_id)
            return await self._fail(exc, draft=False)
        except Exception as exc:
            logger.exception("Unexpected error submission_id=%s", self.submission_id)
            return await self._fail(SubmissionError(str(exc), "unknown-error", "unknown"), draft=False)

    def _start(self, form: BaseForm, *, draft: bool) -> None:
        if self.submission_id is not None:
            raise RuntimeError("SubmissionOrchestrator instances are single use")
        self.submission_id = new_submission_id(form.category, draft=draft)
        self._progress_key = form.application_id

    async def _fail(self, exc: SubmissionError, *, draft: bool) -> SubmissionResult:
        await self._cleanup()
        message = failure_message(exc.code, self.lang, exc.message, exc.detail_code)
        self._update("error", 0, message)
        return SubmissionResult(
            success=False,
            error=message,
            error_code=exc.code or "unknown-error",
            is_draft=draft,
        )

    async def _cleanup(self) -> None:
        if not self.uploaded_files:
            return
        paths = [metadata.storage_path for metadata in self.uploaded_files]
        logger.info("Removing %d uploaded file(s) after failure", len(paths))
        await delete_files_quietly(paths, storage=self.storage)
        self.uploaded_files.clear()

    def _upload_progress(self, aggregate: float, file_progress: dict[str, float]) -> None:
        self._update(
            "uploading",
            UPLOAD_START + aggregate * UPLOAD_SPAN / 100,
            f"Uploading files... {round(aggregate)}%",
            file_progress,
        )

    def _update(
        self,
        stage: ProgressStage,
        progress: float,
        message: str,
        file_progress: dict[str, float] | None = None,
    ) -> None:
        event = SubmissionProgress(
            stage=stage, progress=progress, message=message, file_progress=file_progress
        )
        if self.on_progress is not None:
            self.on_progress(event)
        if self._progress_key:
            publish_nowait(self.event_bus, self._progress_key, event.model_dump())
