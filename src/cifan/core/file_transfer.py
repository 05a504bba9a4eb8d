from __future__ import annotations

import asyncio
import json
import logging
import re
import shutil
import subprocess
import tempfile
import time
from datetime import UTC, datetime
from pathlib import Path

from cifan.config import get_settings
from cifan.core.runtime import get_storage
from cifan.errors import StorageError, StoragePermissionError, UploadError
from cifan.storage.local import LocalFile, LocalObjectStorage, ProgressCallback
from cifan.types import FileKind, FileMetadata, FileValidationResult, ValidationRules

logger = logging.getLogger(__name__)

MB = 1024 * 1024

FILE_VALIDATION_RULES: dict[FileKind, ValidationRules] = {
    "film": ValidationRules(max_size=500 * MB, allowed_types=["video/mp4", "video/quicktime"]),
    "poster": ValidationRules(max_size=10 * MB, allowed_types=["image/jpeg", "image/png"]),
    "proof": ValidationRules(
        max_size=5 * MB, allowed_types=["application/pdf", "image/jpeg", "image/png"]
    ),
}

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9.-]")


def validate_file(file: LocalFile, rules: ValidationRules) -> FileValidationResult:
    if file.size > rules.max_size:
        max_size_mb = round(rules.max_size / MB)
        return FileValidationResult(is_valid=False, error=f"File size exceeds {max_size_mb}MB limit")

    if file.content_type not in rules.allowed_types:
        return FileValidationResult(
            is_valid=False,
            error=f"Invalid file type. Allowed types: {', '.join(rules.allowed_types)}",
        )

    if file.content_type.startswith("video/") and (rules.min_duration or rules.max_duration):
        try:
            duration = probe_video_duration(file)
        except (OSError, ValueError, subprocess.SubprocessError) as exc:
            logger.warning("Duration probe failed file=%s: %s", file.name, exc)
            return FileValidationResult(is_valid=False, error="Failed to validate video duration")

        if rules.min_duration and duration < rules.min_duration:
            return FileValidationResult(
                is_valid=False,
                error=f"Video duration must be at least {rules.min_duration:g} minutes",
            )
        if rules.max_duration and duration > rules.max_duration:
            return FileValidationResult(
                is_valid=False,
                error=f"Video duration must not exceed {rules.max_duration:g} minutes",
            )

    return FileValidationResult(is_valid=True)


def probe_video_duration(file: LocalFile) -> float:
    """Return the media duration in minutes, decoding container metadata only."""
    settings = get_settings()
    ffprobe = shutil.which(settings.ffprobe_path)
    if ffprobe is None:
        raise OSError(f"ffprobe executable '{settings.ffprobe_path}' not found")

    if file.path is not None:
        return _run_ffprobe(ffprobe, file.path)

    suffix = Path(file.name).suffix or ".bin"
    with tempfile.NamedTemporaryFile(suffix=suffix) as handle:
        file.rewind()
        shutil.copyfileobj(file.stream, handle)
        handle.flush()
        file.rewind()
        return _run_ffprobe(ffprobe, Path(handle.name))


def _run_ffprobe(executable: str, path: Path) -> float:
    result = subprocess.run(
        [executable, "-v", "error", "-show_entries", "format=duration", "-of", "json", str(path)],
        capture_output=True,
        text=True,
        check=True,
        timeout=30,
    )
    payload = json.loads(result.stdout or "{}")
    seconds = float(payload.get("format", {}).get("duration", "nan"))
    if seconds != seconds:
        raise ValueError("ffprobe reported no duration")
    return seconds / 60


async def upload_file(
    file: LocalFile,
    path: str,
    on_progress: ProgressCallback | None = None,
    *,
    storage: LocalObjectStorage | None = None,
) -> FileMetadata:
    storage = storage or get_storage()
    last_reported = 0.0

    def report(percent: float) -> None:
        nonlocal last_reported
        last_reported = max(last_reported, percent)
        if on_progress is not None:
            on_progress(last_reported)

    file.rewind()
    try:
        await storage.write(path, file.stream, total=file.size, on_progress=report)
    except StoragePermissionError as exc:
        logger.error("Upload rejected file=%s path=%s: %s", file.name, path, exc)
        raise UploadError(
            f"File storage permission error. Please contact support. File: {file.name}",
            "storage-unauthorized",
            file.name,
        ) from exc
    except StorageError as exc:
        logger.error("Upload failed file=%s path=%s: %s", file.name, path, exc)
        raise UploadError(f"Failed to upload {file.name}: {exc}", "transfer-failed", file.name) from exc

    try:
        download_url = storage.public_url(path)
    except StoragePermissionError as exc:
        raise UploadError(
            f"File storage permission error. Please contact support. File: {file.name}",
            "storage-unauthorized",
            file.name,
        ) from exc
    except StorageError as exc:
        raise UploadError(
            f"Failed to get download URL for {file.name}: {exc}", "download-url-error", file.name
        ) from exc

    return FileMetadata(
        file_name=file.name,
        file_size=file.size,
        file_type=file.content_type,
        storage_path=path,
        download_url=download_url,
        uploaded_at=datetime.now(UTC),
    )


async def delete_file(storage_path: str, *, storage: LocalObjectStorage | None = None) -> None:
    storage = storage or get_storage()
    try:
        await storage.delete(storage_path)
    except StorageError as exc:
        logger.error("Delete error path=%s: %s", storage_path, exc)
        raise UploadError(f"Failed to delete file at {storage_path}", "delete-error") from exc


async def delete_files_quietly(
    storage_paths: list[str], *, storage: LocalObjectStorage | None = None
) -> None:
    """Best-effort removal; a failed delete never masks the caller's own outcome."""
    results = await asyncio.gather(
        *(delete_file(path, storage=storage) for path in storage_paths),
        return_exceptions=True,
    )
    for path, result in zip(storage_paths, results):
        if isinstance(result, Exception):
            logger.warning("Failed to delete file path=%s: %s", path, result)


def generate_file_path(submission_id: str, file_kind: FileKind, file_name: str) -> str:
    timestamp = int(time.time() * 1000)
    sanitized = _UNSAFE_CHARS.sub("_", file_name)
    return f"submissions/{submission_id}/{file_kind}/{timestamp}_{sanitized}"
