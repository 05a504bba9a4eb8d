from __future__ import annotations

from pathlib import Path

from cifan.config import get_settings
from cifan.db.base import Base
from cifan.db.session import engine
from cifan.db import models  # noqa: F401


def ensure_data_directories() -> None:
    settings = get_settings()
    paths: list[Path] = [settings.data_dir, settings.storage_dir]
    for path in paths:
        path.mkdir(parents=True, exist_ok=True)


def init_database() -> dict[str, list[str]]:
    ensure_data_directories()
    Base.metadata.create_all(bind=engine)
    return {"tables": sorted(Base.metadata.tables)}
