from __future__ import annotations

from collections import Counter
from collections.abc import Callable
from functools import partial
import logging
import random
from typing import Any

import anyio

from .backend import CredentialProvider, SheetsBackend
from .errors import SheetCoreError, classify_exception
from .ops.models import Batch

logger = logging.getLogger(__name__)


class Dispatcher:
    """Send batches and standalone calls under a timeout with bounded retry.

    Only ``RATE_LIMIT_EXCEEDED`` and transient transport failures are
    retried, with exponential backoff plus jitter. Every other failure is
    classified and raised on the first attempt.
    """

    def __init__(
        self,
        backend: SheetsBackend,
        *,
        credentials: CredentialProvider | None = None,
        timeout_seconds: float = 30.0,
        max_attempts: int = 3,
        base_delay: float = 0.5,
        max_delay: float = 8.0,
        jitter: float = 0.25,
        rng: random.Random | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1.")
        self.backend = backend
        self.credentials = credentials
        self.timeout_seconds = timeout_seconds
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self._rng = rng or random.Random()
        self.calls = 0
        self.retries = 0
        self.failures: Counter[str] = Counter()

    async def send_batch(self, batch: Batch) -> dict[str, Any]:
        """Dispatch one atomic batchUpdate and return the raw reply."""
        logger.debug(
            "Dispatching batch of %d requests (%d bytes) to %s.",
            len(batch.requests),
            batch.size_bytes,
            batch.spreadsheet_id,
        )
        return await self._call(
            "batchUpdate",
            partial(self.backend.batch_update, batch.spreadsheet_id, batch.body()),
        )

    async def send_call(
        self, spreadsheet_id: str, request: dict[str, Any]
    ) -> dict[str, Any]:
        """Dispatch one values-route call described by a compiled request."""
        call = request["call"]
        params = request.get("params", {})
        backend = self.backend
        target: Callable[[], dict[str, Any]]
        if call == "values_get":
            target = partial(backend.values_get, spreadsheet_id, request["range"], params)
        elif call == "values_batch_get":
            target = partial(
                backend.values_batch_get, spreadsheet_id, request["ranges"], params
            )
        elif call == "values_update":
            target = partial(
                backend.values_update,
                spreadsheet_id,
                request["range"],
                params,
                request["body"],
            )
        elif call == "values_append":
            target = partial(
                backend.values_append,
                spreadsheet_id,
                request["range"],
                params,
                request["body"],
            )
        elif call == "values_clear":
            target = partial(backend.values_clear, spreadsheet_id, request["range"])
        elif call == "get_spreadsheet":
            target = partial(backend.get_spreadsheet, spreadsheet_id, params)
        else:
            raise SheetCoreError.of("UNSUPPORTED_ACTION", f"Unknown values call: {call}")
        return await self._call(call, target)

    async def _call(self, label: str, target: Callable[[], dict[str, Any]]) -> dict[str, Any]:
        for attempt in range(self.max_attempts):
            self.calls += 1
            try:
                if self.credentials is not None:
                    self.credentials.ensure_valid()
                with anyio.fail_after(self.timeout_seconds):
                    reply = await anyio.to_thread.run_sync(
                        target, abandon_on_cancel=True
                    )
                return reply if isinstance(reply, dict) else {}
            except Exception as exc:
                error = classify_exception(exc)
            retryable = error.code != "AUTH_EXPIRED" and (
                error.code == "RATE_LIMIT_EXCEEDED" or error.transient
            )
            if not retryable or attempt + 1 >= self.max_attempts:
                self.failures[error.code] += 1
                raise error
            delay = self._backoff(attempt)
            self.retries += 1
            logger.warning(
                "%s failed with %s (attempt %d/%d); retrying in %.2fs.",
                label,
                error.code,
                attempt + 1,
                self.max_attempts,
                delay,
            )
            await anyio.sleep(delay)
        raise SheetCoreError.of("INTERNAL", f"{label} exhausted retries.")

    def _backoff(self, attempt: int) -> float:
        delay = min(self.max_delay, self.base_delay * (2**attempt))
        return delay + self._rng.uniform(0, delay * self.jitter)


__all__ = ["Dispatcher"]
