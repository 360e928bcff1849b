from __future__ import annotations

from .models import (
    Batch,
    CompiledRequest,
    ConflictCheck,
    GridRange,
    HistoryEntry,
    InverseStep,
    Operation,
    OperationResult,
    Transaction,
)
from .normalize import normalize_operation, normalize_params
from .specs import ACTION_SPECS, ActionSpec, get_action_spec

__all__ = [
    "ACTION_SPECS",
    "ActionSpec",
    "Batch",
    "CompiledRequest",
    "ConflictCheck",
    "GridRange",
    "HistoryEntry",
    "InverseStep",
    "Operation",
    "OperationResult",
    "Transaction",
    "get_action_spec",
    "normalize_operation",
    "normalize_params",
]
