from __future__ import annotations

import logging
from pathlib import Path
from typing import Generator

import pytest

from project_index_repair.repair import LOGGER_NAME


@pytest.fixture
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[Path, None, None]:
    """
    Point every setting at tmp_path and detach logging handlers afterwards.

    Yields the index file path (not created).
    """
    for key in (
        "PROJECT_INDEX_FLAVOR",
        "PROJECT_INDEX_IGNORE_CASE",
        "PROJECT_INDEX_WATCH",
        "PROJECT_INDEX_BACKUP",
    ):
        monkeypatch.delenv(key, raising=False)
    index = tmp_path / "projects.json"
    monkeypatch.setenv("PROJECT_INDEX_PATH", str(index))
    monkeypatch.setenv("PROJECT_INDEX_REPAIR_CONFIG", str(tmp_path / "config.yaml"))
    monkeypatch.setenv("BACKUP_DIR", str(tmp_path / "backups"))
    monkeypatch.setenv("LOG_FILE", str(tmp_path / "logs" / "repair.log"))
    monkeypatch.setenv("OPS_LOG_FILE", str(tmp_path / "logs" / "ops.log"))

    yield index

    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
