"""Cooperative cancellation for long-running ingestion jobs."""

from __future__ import annotations

import asyncio

from src.equipment_rag.errors import IngestionCancelledError


class CancellationToken:
    """Flag shared between the caller and a running job.

    The caller invokes cancel(); the job calls raise_if_cancelled() between
    stages so no further OCR, AI or embedding calls are issued.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise IngestionCancelledError("Ingestion cancelled by caller")
