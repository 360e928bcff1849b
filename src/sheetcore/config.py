from __future__ import annotations

from collections.abc import Mapping
import logging
import os
from pathlib import Path
from typing import Any, Final

from pydantic import BaseModel, Field

from .ops.types import QuotaPolicy

ENV_PREFIX: Final = "SHEETCORE_"
LOG_FORMAT: Final = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# environment suffix -> (section, field)
_ENV_FIELDS: Final[dict[str, tuple[str | None, str]]] = {
    "READ_CAPACITY": ("quota", "read_capacity"),
    "READ_WINDOW": ("quota", "read_window_seconds"),
    "WRITE_CAPACITY": ("quota", "write_capacity"),
    "WRITE_WINDOW": ("quota", "write_window_seconds"),
    "QUOTA_POLICY": ("quota", "policy"),
    "CACHE_TTL": ("cache", "ttl_seconds"),
    "CACHE_MAX_ENTRIES": ("cache", "max_entries"),
    "CACHE_MAX_BYTES": ("cache", "max_bytes"),
    "TIMEOUT": ("dispatch", "timeout_seconds"),
    "MAX_ATTEMPTS": ("dispatch", "max_attempts"),
    "BASE_DELAY": ("dispatch", "base_delay"),
    "MAX_DELAY": ("dispatch", "max_delay"),
    "MAX_BATCH_BYTES": ("batch", "max_batch_bytes"),
    "MAX_BATCH_REQUESTS": ("batch", "max_batch_requests"),
    "TRANSACTION_TTL": ("transactions", "idle_ttl_seconds"),
    "TRANSACTION_RETENTION": ("transactions", "retention_seconds"),
    "HISTORY_CAPACITY": ("history", "capacity"),
    "LOG_LEVEL": (None, "log_level"),
    "LOG_FILE": (None, "log_file"),
}


class QuotaConfig(BaseModel):
    """Token bucket sizes; defaults follow Google's per-user minute quotas."""

    read_capacity: int = Field(default=300, gt=0, description="Read tokens per window.")
    read_window_seconds: float = Field(default=60.0, gt=0)
    write_capacity: int = Field(default=60, gt=0, description="Write tokens per window.")
    write_window_seconds: float = Field(default=60.0, gt=0)
    policy: QuotaPolicy = Field(
        default="block", description="Wait for tokens (block) or fail immediately."
    )


class CacheConfig(BaseModel):
    ttl_seconds: float = Field(default=30.0, ge=0)
    max_entries: int = Field(default=500, gt=0)
    max_bytes: int = Field(default=50 * 1024 * 1024, gt=0)


class DispatchConfig(BaseModel):
    timeout_seconds: float = Field(default=30.0, gt=0, description="Per-call timeout.")
    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = Field(default=0.5, ge=0)
    max_delay: float = Field(default=8.0, ge=0)
    jitter: float = Field(default=0.25, ge=0, description="Jitter as a delay fraction.")


class BatchConfig(BaseModel):
    max_batch_bytes: int = Field(default=9_000_000, gt=15)
    max_batch_requests: int = Field(default=1000, gt=0)
    warning_bytes: int = Field(default=7_000_000, gt=0)


class TransactionConfig(BaseModel):
    idle_ttl_seconds: float = Field(default=300.0, gt=0)
    retention_seconds: float = Field(default=600.0, ge=0)


class HistoryConfig(BaseModel):
    capacity: int = Field(default=100, ge=1, description="Entries kept per spreadsheet.")


class CoreConfig(BaseModel):
    """Configuration for one SheetCore instance."""

    quota: QuotaConfig = Field(default_factory=QuotaConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    dispatch: DispatchConfig = Field(default_factory=DispatchConfig)
    batch: BatchConfig = Field(default_factory=BatchConfig)
    transactions: TransactionConfig = Field(default_factory=TransactionConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    log_level: str = Field(default="INFO", description="Logging level.")
    log_file: Path | None = Field(default=None, description="Optional log file path.")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> CoreConfig:
        """Build a config from ``SHEETCORE_*`` environment variables.

        Args:
            environ: Mapping to read instead of ``os.environ``.

        Returns:
            Validated configuration. Unset variables keep their defaults.
        """
        source = os.environ if environ is None else environ
        data: dict[str, Any] = {}
        for suffix, (section, name) in _ENV_FIELDS.items():
            raw = source.get(f"{ENV_PREFIX}{suffix}")
            if raw is None or raw == "":
                continue
            if section is None:
                data[name] = raw
            else:
                data.setdefault(section, {})[name] = raw
        return cls.model_validate(data)


def configure_logging(config: CoreConfig) -> None:
    """Configure logging for a process embedding the core.

    Args:
        config: Core configuration.
    """
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if config.log_file is not None:
        handlers.append(logging.FileHandler(config.log_file))
    logging.basicConfig(
        level=config.log_level.upper(),
        handlers=handlers,
        format=LOG_FORMAT,
    )


__all__ = [
    "BatchConfig",
    "CacheConfig",
    "CoreConfig",
    "DispatchConfig",
    "HistoryConfig",
    "QuotaConfig",
    "TransactionConfig",
    "configure_logging",
]
