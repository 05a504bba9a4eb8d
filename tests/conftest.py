from __future__ import annotations

import os
import shutil
import tempfile
from pathlib import Path

_TEST_ROOT = Path(tempfile.mkdtemp(prefix="cifan-tests-"))
os.environ["APP_ENV"] = "test"
os.environ["DATABASE_URL"] = f"sqlite:///{_TEST_ROOT / 'cifan-test.db'}"
os.environ["DATA_DIR"] = str(_TEST_ROOT)
os.environ["STORAGE_DIR"] = str(_TEST_ROOT / "storage")
os.environ["STORAGE_PUBLIC_BASE_URL"] = "http://testserver/files"
os.environ["DEFAULT_LANGUAGE"] = "en"
os.environ["EMAIL_VERIFICATION_REQUIRED"] = "true"
os.environ["SMTP_HOST"] = ""
os.environ["ADMIN_EMAILS"] = ""

import pytest  # noqa: E402

from cifan.config import get_settings  # noqa: E402
from cifan.db import models  # noqa: E402,F401
from cifan.db.base import Base  # noqa: E402
from cifan.db.session import engine  # noqa: E402


@pytest.fixture(autouse=True)
def reset_db() -> None:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    storage_dir = get_settings().storage_dir
    shutil.rmtree(storage_dir, ignore_errors=True)
    storage_dir.mkdir(parents=True, exist_ok=True)
    yield


@pytest.fixture
def storage_root() -> Path:
    return get_settings().storage_dir
