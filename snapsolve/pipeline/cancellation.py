from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, TypeVar

from snapsolve.pipeline.types import PIPELINE_MODES, PipelineMode
from snapsolve.utils.error_taxonomy import OperationCanceledError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """Single-use handle; once signaled it never resets."""

    def __init__(self, mode: PipelineMode) -> None:
        self.mode = mode
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> bool:
        if self._event.is_set():
            return False
        self._event.set()
        return True

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise OperationCanceledError(f"{self.mode} processing was canceled")

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await `awaitable` unless the token is signaled first.

        On cancellation the in-flight request is cancelled and awaited before
        `OperationCanceledError` is raised. A result that is already available
        wins over a signal that arrives in the same loop iteration.
        """
        request = asyncio.ensure_future(awaitable)
        if self.cancelled:
            request.cancel()
            await asyncio.gather(request, return_exceptions=True)
            self.raise_if_cancelled()

        signal = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({request, signal}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if not request.done():
                request.cancel()
                await asyncio.gather(request, return_exceptions=True)
            if not signal.done():
                signal.cancel()
                await asyncio.gather(signal, return_exceptions=True)

        if request.cancelled():
            self.raise_if_cancelled()
            raise OperationCanceledError(f"{self.mode} request was cancelled")
        return request.result()


class CancellationController:
    """One live token per pipeline mode."""

    def __init__(self) -> None:
        self._tokens: dict[PipelineMode, CancellationToken | None] = {
            mode: None for mode in PIPELINE_MODES
        }

    def begin(self, mode: PipelineMode) -> CancellationToken:
        previous = self._tokens.get(mode)
        token = CancellationToken(mode)
        self._tokens[mode] = token
        if previous is not None and previous.cancel():
            logger.info("Superseded in-flight %s run", mode)
        return token

    def active(self, mode: PipelineMode) -> CancellationToken | None:
        return self._tokens.get(mode)

    def cancel(self, mode: PipelineMode) -> bool:
        token = self._tokens.get(mode)
        self._tokens[mode] = None
        if token is None:
            return False
        return token.cancel()

    def cancel_all(self) -> bool:
        was_cancelled = False
        for mode in PIPELINE_MODES:
            if self.cancel(mode):
                was_cancelled = True
        return was_cancelled

    def release(self, mode: PipelineMode, token: CancellationToken) -> None:
        if self._tokens.get(mode) is token:
            self._tokens[mode] = None
