from __future__ import annotations

import asyncio
import re
from pathlib import Path

import pytest

from cifan.core.file_transfer import (
    FILE_VALIDATION_RULES,
    delete_file,
    delete_files_quietly,
    generate_file_path,
    upload_file,
    validate_file,
)
from cifan.errors import UploadError
from cifan.storage.local import LocalFile, LocalObjectStorage
from cifan.types import ValidationRules


def _storage(tmp_path: Path, chunk_size: int = 256) -> LocalObjectStorage:
    return LocalObjectStorage(tmp_path / "bucket", "http://files.test", chunk_size=chunk_size)


def test_validate_file_accepts_allowed_poster() -> None:
    poster = LocalFile.from_bytes("poster.jpg", b"x" * 100, "image/jpeg")
    assert validate_file(poster, FILE_VALIDATION_RULES["poster"]).is_valid


def test_validate_file_rejects_oversized_file_before_type() -> None:
    rules = ValidationRules(max_size=1024 * 1024, allowed_types=["image/png"])
    big = LocalFile.from_bytes("huge.gif", b"x" * (1024 * 1024 + 1), "image/gif")
    result = validate_file(big, rules)
    assert not result.is_valid
    assert result.error == "File size exceeds 1MB limit"


def test_validate_file_rejects_wrong_type() -> None:
    proof = LocalFile.from_bytes("proof.docx", b"x", "application/msword")
    result = validate_file(proof, FILE_VALIDATION_RULES["proof"])
    assert not result.is_valid
    assert result.error.startswith("Invalid file type. Allowed types: application/pdf")


def test_validate_file_reports_failed_duration_probe(monkeypatch) -> None:
    def broken_probe(file):
        raise OSError("ffprobe executable 'ffprobe' not found")

    monkeypatch.setattr("cifan.core.file_transfer.probe_video_duration", broken_probe)
    rules = ValidationRules(max_size=1024, allowed_types=["video/mp4"], max_duration=10)
    film = LocalFile.from_bytes("film.mp4", b"x" * 10, "video/mp4")
    result = validate_file(film, rules)
    assert result.error == "Failed to validate video duration"


def test_validate_file_checks_duration_bounds(monkeypatch) -> None:
    monkeypatch.setattr("cifan.core.file_transfer.probe_video_duration", lambda file: 12.5)
    rules = ValidationRules(max_size=1024, allowed_types=["video/mp4"], min_duration=1, max_duration=10)
    film = LocalFile.from_bytes("film.mp4", b"x" * 10, "video/mp4")
    result = validate_file(film, rules)
    assert result.error == "Video duration must not exceed 10 minutes"


def test_generate_file_path_sanitizes_name() -> None:
    path = generate_file_path("youth_123_abc", "poster", "โปสเตอร์ final (v2).png")
    assert re.fullmatch(r"submissions/youth_123_abc/poster/\d+_[A-Za-z0-9._-]+", path)
    assert path.endswith("_final__v2_.png")


def test_upload_file_streams_with_monotonic_progress(tmp_path: Path) -> None:
    storage = _storage(tmp_path, chunk_size=100)
    data = bytes(range(256)) * 4
    seen: list[float] = []

    metadata = asyncio.run(
        upload_file(
            LocalFile.from_bytes("film.mp4", data, "video/mp4"),
            "submissions/s1/film/1_film.mp4",
            seen.append,
            storage=storage,
        )
    )

    assert seen == sorted(seen)
    assert seen[-1] == 100.0
    assert metadata.file_size == len(data)
    assert metadata.download_url == "http://files.test/submissions/s1/film/1_film.mp4"
    assert (tmp_path / "bucket" / "submissions/s1/film/1_film.mp4").read_bytes() == data


def test_upload_file_maps_rejected_path_to_storage_unauthorized(tmp_path: Path) -> None:
    with pytest.raises(UploadError) as exc_info:
        asyncio.run(
            upload_file(
                LocalFile.from_bytes("poster.png", b"x", "image/png"),
                "../outside.png",
                storage=_storage(tmp_path),
            )
        )
    assert exc_info.value.code == "storage-unauthorized"
    assert exc_info.value.file_name == "poster.png"


def test_delete_file_missing_object_raises_delete_error(tmp_path: Path) -> None:
    with pytest.raises(UploadError) as exc_info:
        asyncio.run(delete_file("submissions/none/poster/x.png", storage=_storage(tmp_path)))
    assert exc_info.value.code == "delete-error"


def test_delete_files_quietly_ignores_failures(tmp_path: Path) -> None:
    storage = _storage(tmp_path)
    asyncio.run(
        upload_file(LocalFile.from_bytes("a.png", b"a", "image/png"), "submissions/s/poster/a.png", storage=storage)
    )

    asyncio.run(delete_files_quietly(["submissions/s/poster/a.png", "submissions/s/poster/gone.png"], storage=storage))

    assert not storage.exists("submissions/s/poster/a.png")
