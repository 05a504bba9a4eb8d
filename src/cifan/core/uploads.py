from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from cifan.core.file_transfer import generate_file_path, upload_file
from cifan.errors import SubmissionError, UploadError
from cifan.storage.local import LocalFile, LocalObjectStorage
from cifan.types import SLOT_KINDS, BaseForm, FileMetadata, FileSlot

logger = logging.getLogger(__name__)

AggregateCallback = Callable[[float, dict[str, float]], None]


@dataclass(slots=True)
class UploadRequest:
    slot: FileSlot
    file: LocalFile
    path: str


@dataclass
class UploadBatch:
    """Concurrent upload of named file slots with one aggregate progress figure.

    The aggregate is the unweighted mean of every slot registered in the batch,
    so it only reaches 100 once each slot has. Slots are registered before any
    transfer starts, which keeps the aggregate non-decreasing.
    """

    requests: list[UploadRequest]
    on_progress: AggregateCallback | None = None
    on_uploaded: Callable[[FileMetadata], None] | None = None
    storage: LocalObjectStorage | None = None
    slot_progress: dict[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for request in self.requests:
            self.slot_progress[SLOT_KINDS[request.slot]] = 0.0

    @property
    def aggregate(self) -> float:
        if not self.slot_progress:
            return 100.0
        return sum(self.slot_progress.values()) / len(self.slot_progress)

    def _progress_for(self, slot: FileSlot) -> Callable[[float], None]:
        kind = SLOT_KINDS[slot]

        def update(percent: float) -> None:
            self.slot_progress[kind] = max(self.slot_progress[kind], percent)
            if self.on_progress is not None:
                self.on_progress(self.aggregate, dict(self.slot_progress))

        return update

    async def _upload_one(self, request: UploadRequest) -> FileMetadata:
        metadata = await upload_file(
            request.file,
            request.path,
            self._progress_for(request.slot),
            storage=self.storage,
        )
        if self.on_uploaded is not None:
            self.on_uploaded(metadata)
        return metadata

    async def run(self) -> dict[FileSlot, FileMetadata]:
        if not self.requests:
            return {}

        logger.debug("Starting upload batch slots=%s", [request.slot for request in self.requests])
        tasks = [asyncio.create_task(self._upload_one(request)) for request in self.requests]
        try:
            results = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        return {request.slot: metadata for request, metadata in zip(self.requests, results)}


def build_requests(files: dict[FileSlot, LocalFile], submission_id: str) -> list[UploadRequest]:
    return [
        UploadRequest(slot=slot, file=file, path=generate_file_path(submission_id, SLOT_KINDS[slot], file.name))
        for slot, file in files.items()
    ]


async def upload_files_for_draft(
    form: BaseForm,
    submission_id: str,
    *,
    on_progress: AggregateCallback | None = None,
    on_uploaded: Callable[[FileMetadata], None] | None = None,
    storage: LocalObjectStorage | None = None,
) -> dict[FileSlot, FileMetadata]:
    """Upload only the slots the draft actually carries."""
    batch = UploadBatch(
        build_requests(form.present_files(), submission_id),
        on_progress=on_progress,
        on_uploaded=on_uploaded,
        storage=storage,
    )
    return await _run_wrapped(batch)


async def upload_files(
    form: BaseForm,
    submission_id: str,
    *,
    on_progress: AggregateCallback | None = None,
    on_uploaded: Callable[[FileMetadata], None] | None = None,
    storage: LocalObjectStorage | None = None,
) -> dict[FileSlot, FileMetadata]:
    files = form.files()
    missing = [slot for slot, file in files.items() if file is None]
    if missing:
        raise SubmissionError(
            f"File upload failed: missing {', '.join(missing)}", "upload-failed", "uploading"
        )
    batch = UploadBatch(
        build_requests(files, submission_id),
        on_progress=on_progress,
        on_uploaded=on_uploaded,
        storage=storage,
    )
    return await _run_wrapped(batch)


async def _run_wrapped(batch: UploadBatch) -> dict[FileSlot, FileMetadata]:
    try:
        return await batch.run()
    except UploadError as exc:
        raise SubmissionError(
            f"File upload failed: {exc.message}", "upload-failed", "uploading", detail_code=exc.code
        ) from exc
    except (OSError, ValueError) as exc:
        raise SubmissionError(f"File upload failed: {exc}", "upload-failed", "uploading") from exc
