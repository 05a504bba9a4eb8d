from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from cifan.core.uploads import UploadBatch, build_requests, upload_files, upload_files_for_draft
from cifan.errors import StorageError, SubmissionError
from cifan.storage.local import LocalObjectStorage
from factories import ALL_FILES, film_file, make_form, poster_file, proof_file


class _SlowPosterStorage(LocalObjectStorage):
    """Poster writes hang until cancelled; proof writes fail outright."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.cancelled: list[str] = []

    async def write(self, path, stream, *, total, on_progress=None):
        if "/poster/" in path:
            try:
                await asyncio.sleep(30)
            except asyncio.CancelledError:
                self.cancelled.append(path)
                raise
        if "/proof/" in path:
            raise StorageError("bucket unavailable")
        return await super().write(path, stream, total=total, on_progress=on_progress)


def test_aggregate_progress_is_monotonic_and_completes_last(tmp_path: Path) -> None:
    storage = LocalObjectStorage(tmp_path, "http://files.test", chunk_size=64)
    files = {
        "film_file": film_file(size=2048),
        "poster_file": poster_file(size=300),
        "proof_file": proof_file(size=90),
    }
    events: list[tuple[float, dict[str, float]]] = []
    batch = UploadBatch(
        build_requests(files, "youth_1_abc"),
        on_progress=lambda aggregate, slots: events.append((aggregate, slots)),
        storage=storage,
    )

    results = asyncio.run(batch.run())

    aggregates = [aggregate for aggregate, _ in events]
    assert aggregates == sorted(aggregates)
    assert aggregates[-1] == pytest.approx(100.0)
    for aggregate, slots in events:
        if aggregate >= 100.0:
            assert set(slots.values()) == {100.0}
    assert set(results) == set(ALL_FILES)


def test_aggregate_is_unweighted_mean_of_registered_slots() -> None:
    batch = UploadBatch(build_requests({"film_file": film_file(), "poster_file": poster_file()}, "s"))
    assert batch.aggregate == 0.0
    batch.slot_progress["film"] = 100.0
    assert batch.aggregate == 50.0


def test_empty_batch_is_complete() -> None:
    batch = UploadBatch([])
    assert batch.aggregate == 100.0
    assert asyncio.run(batch.run()) == {}


def test_first_failure_cancels_remaining_uploads(tmp_path: Path) -> None:
    storage = _SlowPosterStorage(tmp_path, "http://files.test")
    form = make_form(files=("poster_file", "proof_file"))

    with pytest.raises(SubmissionError) as exc_info:
        asyncio.run(upload_files_for_draft(form, "youth_draft_1_abc", storage=storage))

    assert exc_info.value.code == "upload-failed"
    assert exc_info.value.stage == "uploading"
    assert exc_info.value.detail_code == "transfer-failed"
    assert len(storage.cancelled) == 1


def test_upload_files_refuses_partial_file_set(tmp_path: Path) -> None:
    storage = LocalObjectStorage(tmp_path, "http://files.test")
    form = make_form(files=("film_file", "proof_file"))
    with pytest.raises(SubmissionError) as exc_info:
        asyncio.run(upload_files(form, "youth_1_abc", storage=storage))
    assert "poster_file" in exc_info.value.message
    assert not any(tmp_path.rglob("*.png"))


def test_draft_upload_skips_absent_slots(tmp_path: Path) -> None:
    storage = LocalObjectStorage(tmp_path, "http://files.test")
    uploaded = []
    form = make_form(files=("poster_file",))

    results = asyncio.run(
        upload_files_for_draft(form, "youth_draft_1_abc", on_uploaded=uploaded.append, storage=storage)
    )

    assert list(results) == ["poster_file"]
    assert [metadata.storage_path for metadata in uploaded] == [results["poster_file"].storage_path]
    assert results["poster_file"].storage_path.startswith("submissions/youth_draft_1_abc/poster/")
