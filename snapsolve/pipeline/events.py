from __future__ import annotations

import logging
from typing import Callable, Protocol

from snapsolve.pipeline.types import PipelineEvent, View

logger = logging.getLogger(__name__)

INITIAL_START = "initial_start"
PROBLEM_EXTRACTED = "problem_extracted"
SOLUTION_SUCCESS = "solution_success"
INITIAL_SOLUTION_ERROR = "initial_solution_error"
DEBUG_START = "debug_start"
DEBUG_SUCCESS = "debug_success"
DEBUG_ERROR = "debug_error"
NO_SCREENSHOTS = "no_screenshots"
API_KEY_INVALID = "api_key_invalid"
PROCESSING_STATUS = "processing_status"
PROCESSING_CANCELED = "processing_canceled"
RESET = "reset"

EventListener = Callable[[PipelineEvent], None]


class PresentationSink(Protocol):
    def emit(self, event: PipelineEvent) -> None: ...

    def set_view(self, view: View) -> None: ...

    def set_has_debugged(self, value: bool) -> None: ...


class EventChannel:
    """Ordered fan-out of pipeline events to any number of subscribers.

    Also keeps the last view and has-debugged flag so that a late subscriber can
    read the current presentation state.
    """

    def __init__(self) -> None:
        self._listeners: list[EventListener] = []
        self.view: View = "queue"
        self.has_debugged = False

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, event: PipelineEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:  # noqa: BLE001
                # A broken subscriber must not abort the run that emitted the event.
                logger.exception("Event listener failed for %s", event.name)

    def set_view(self, view: View) -> None:
        self.view = view

    def set_has_debugged(self, value: bool) -> None:
        self.has_debugged = value
