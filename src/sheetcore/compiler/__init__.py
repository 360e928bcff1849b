from __future__ import annotations

from .batch import BatchCompiler, BatchPlan
from .requests import compile_operation, derive_id

__all__ = ["BatchCompiler", "BatchPlan", "compile_operation", "derive_id"]
