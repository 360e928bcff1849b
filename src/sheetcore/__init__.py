"""Execution core for Google Sheets automation."""

from __future__ import annotations

from .backend import (
    CredentialProvider,
    GoogleCredentialProvider,
    GspreadBackend,
    SheetsBackend,
)
from .config import CoreConfig, configure_logging
from .engine import SheetCore
from .errors import ErrorDetail, SheetCoreError, classify_exception
from .metrics import CoreSnapshot
from .ops import GridRange, HistoryEntry, Operation, OperationResult, Transaction

__all__ = [
    "CoreConfig",
    "CoreSnapshot",
    "CredentialProvider",
    "ErrorDetail",
    "GoogleCredentialProvider",
    "GridRange",
    "GspreadBackend",
    "HistoryEntry",
    "Operation",
    "OperationResult",
    "SheetCore",
    "SheetCoreError",
    "SheetsBackend",
    "Transaction",
    "classify_exception",
    "configure_logging",
]
