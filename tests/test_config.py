from __future__ import annotations

import logging
from pathlib import Path

from pydantic import ValidationError
import pytest

from sheetcore.config import CoreConfig, configure_logging


def test_defaults_follow_sheets_quotas() -> None:
    config = CoreConfig.from_env({})
    assert config.quota.read_capacity == 300
    assert config.quota.write_capacity == 60
    assert config.quota.policy == "block"
    assert config.batch.max_batch_bytes == 9_000_000
    assert config.history.capacity == 100
    assert config.log_file is None


def test_from_env_reads_prefixed_variables(tmp_path: Path) -> None:
    log_file = tmp_path / "core.log"
    config = CoreConfig.from_env(
        {
            "SHEETCORE_WRITE_CAPACITY": "10",
            "SHEETCORE_QUOTA_POLICY": "fail_fast",
            "SHEETCORE_CACHE_TTL": "2.5",
            "SHEETCORE_TIMEOUT": "7",
            "SHEETCORE_HISTORY_CAPACITY": "5",
            "SHEETCORE_LOG_LEVEL": "debug",
            "SHEETCORE_LOG_FILE": str(log_file),
            "SHEETCORE_CACHE_MAX_ENTRIES": "",
            "UNRELATED": "1",
        }
    )
    assert config.quota.write_capacity == 10
    assert config.quota.read_capacity == 300
    assert config.quota.policy == "fail_fast"
    assert config.cache.ttl_seconds == 2.5
    assert config.cache.max_entries == 500
    assert config.dispatch.timeout_seconds == 7.0
    assert config.history.capacity == 5
    assert config.log_level == "debug"
    assert config.log_file == log_file


@pytest.mark.parametrize(
    "name, value",
    [
        ("SHEETCORE_WRITE_CAPACITY", "0"),
        ("SHEETCORE_QUOTA_POLICY", "sometimes"),
        ("SHEETCORE_TIMEOUT", "soon"),
    ],
)
def test_from_env_rejects_invalid_values(name: str, value: str) -> None:
    with pytest.raises(ValidationError):
        CoreConfig.from_env({name: value})


def test_configure_logging_writes_to_file(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    root = logging.getLogger()
    monkeypatch.setattr(root, "handlers", [])
    monkeypatch.setattr(root, "level", logging.WARNING)
    log_file = tmp_path / "core.log"

    configure_logging(CoreConfig(log_level="debug", log_file=log_file))
    logging.getLogger("sheetcore.test").debug("configured")
    for handler in root.handlers:
        handler.flush()

    assert root.level == logging.DEBUG
    assert "sheetcore.test: configured" in log_file.read_text(encoding="utf-8")
    for handler in root.handlers:
        handler.close()
