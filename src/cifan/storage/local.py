from __future__ import annotations

import asyncio
import io
import logging
import mimetypes
from collections.abc import Callable
from pathlib import Path, PurePosixPath
from typing import BinaryIO
from urllib.parse import quote

from cifan.errors import StorageError, StoragePermissionError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]


class LocalFile:
    """A file held by the caller before it is uploaded."""

    __slots__ = ("name", "content_type", "size", "stream", "path")

    def __init__(
        self,
        name: str,
        content_type: str,
        size: int,
        stream: BinaryIO,
        path: Path | None = None,
    ):
        self.name = name
        self.content_type = content_type
        self.size = size
        self.stream = stream
        self.path = path

    def __repr__(self) -> str:
        return f"LocalFile(name={self.name!r}, content_type={self.content_type!r}, size={self.size})"

    @classmethod
    def from_path(cls, path: Path, content_type: str | None = None) -> LocalFile:
        guessed, _ = mimetypes.guess_type(path.name)
        return cls(
            name=path.name,
            content_type=content_type or guessed or "application/octet-stream",
            size=path.stat().st_size,
            stream=path.open("rb"),
            path=path,
        )

    @classmethod
    def from_bytes(cls, name: str, data: bytes, content_type: str) -> LocalFile:
        return cls(name=name, content_type=content_type, size=len(data), stream=io.BytesIO(data))

    def rewind(self) -> None:
        if self.stream.seekable():
            self.stream.seek(0)

    def close(self) -> None:
        self.stream.close()


class LocalObjectStorage:
    """Object store keyed by opaque slash-separated paths below a root directory."""

    def __init__(self, root: Path, public_base_url: str, chunk_size: int = 1024 * 1024):
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")
        self.chunk_size = max(1, chunk_size)

    def resolve(self, path: str) -> Path:
        relative = PurePosixPath(path)
        if relative.is_absolute() or ".." in relative.parts or not relative.parts:
            raise StoragePermissionError(f"storage path '{path}' is outside the bucket")
        return self.root.joinpath(*relative.parts)

    def exists(self, path: str) -> bool:
        return self.resolve(path).is_file()

    def open(self, path: str) -> BinaryIO:
        target = self.resolve(path)
        if not target.is_file():
            raise StorageError(f"object '{path}' does not exist")
        return target.open("rb")

    async def write(
        self,
        path: str,
        stream: BinaryIO,
        *,
        total: int,
        on_progress: ProgressCallback | None = None,
    ) -> int:
        target = self.resolve(path)
        # no await until the handle is guarded, so a cancelled write always unlinks
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            handle = target.open("wb")
        except PermissionError as exc:
            raise StoragePermissionError(f"permission denied writing '{path}'") from exc
        except OSError as exc:
            raise StorageError(f"failed to open '{path}': {exc}") from exc

        written = 0
        try:
            with handle:
                while True:
                    chunk = await asyncio.to_thread(stream.read, self.chunk_size)
                    if not chunk:
                        break
                    await asyncio.to_thread(handle.write, chunk)
                    written += len(chunk)
                    if on_progress is not None:
                        on_progress(_percent(written, total))
        except BaseException as exc:
            target.unlink(missing_ok=True)
            if isinstance(exc, PermissionError):
                raise StoragePermissionError(f"permission denied writing '{path}'") from exc
            if isinstance(exc, OSError):
                raise StorageError(f"failed to write '{path}': {exc}") from exc
            raise

        if on_progress is not None and total == 0:
            on_progress(100.0)
        return written

    async def delete(self, path: str) -> None:
        target = self.resolve(path)
        try:
            await asyncio.to_thread(target.unlink)
        except FileNotFoundError as exc:
            raise StorageError(f"object '{path}' does not exist") from exc
        except PermissionError as exc:
            raise StoragePermissionError(f"permission denied deleting '{path}'") from exc
        logger.debug("Deleted object path=%s", path)

        parent = target.parent
        while parent != self.root and parent.is_dir() and not any(parent.iterdir()):
            parent.rmdir()
            parent = parent.parent

    def public_url(self, path: str) -> str:
        target = self.resolve(path)
        if not target.is_file():
            raise StorageError(f"object '{path}' does not exist")
        return f"{self.public_base_url}/{quote(path)}"


def _percent(done: int, total: int) -> float:
    if total <= 0:
        return 100.0
    return min(100.0, done / total * 100)
