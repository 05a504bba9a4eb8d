from __future__ import annotations

from cifan.config import get_settings
from cifan.core.events import EventBus
from cifan.storage.local import LocalObjectStorage

_EVENT_BUS: EventBus | None = None
_STORAGE: LocalObjectStorage | None = None


def get_event_bus() -> EventBus:
    global _EVENT_BUS
    if _EVENT_BUS is None:
        _EVENT_BUS = EventBus()
    return _EVENT_BUS


def get_storage() -> LocalObjectStorage:
    global _STORAGE
    if _STORAGE is None:
        settings = get_settings()
        _STORAGE = LocalObjectStorage(
            settings.storage_dir,
            settings.storage_public_base_url,
            chunk_size=settings.storage_chunk_size,
        )
    return _STORAGE
