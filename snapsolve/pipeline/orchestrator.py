from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Sequence

from snapsolve.config.provider_config import ProviderConfig
from snapsolve.config.store import ConfigProvider
from snapsolve.llm_client.base import ProviderClient
from snapsolve.llm_client.session import ProviderSession, build_provider_session
from snapsolve.logging import clear_log_context, set_log_context
from snapsolve.pipeline import events
from snapsolve.pipeline.cancellation import CancellationController, CancellationToken
from snapsolve.pipeline.events import EventChannel, PresentationSink
from snapsolve.pipeline.response_parser import (
    PROBLEM_PARSE_ERROR,
    parse_debug,
    parse_problem_info,
    parse_solution,
)
from snapsolve.pipeline.types import (
    ImagePayload,
    PipelineEvent,
    PipelineMode,
    PipelineResult,
    ProblemInfo,
    SolutionResult,
    View,
    load_image_payload,
)
from snapsolve.prompts.templates import build_debug_prompt, build_solution_prompt
from snapsolve.screenshots import ScreenshotQueue
from snapsolve.utils.error_taxonomy import (
    MalformedResponseError,
    NoInputImagesError,
    PreconditionFailedError,
    build_error_details,
    classify_error,
    friendly_message,
    is_retryable_error_code,
)

logger = logging.getLogger(__name__)

SessionFactory = Callable[[ProviderConfig], ProviderSession]

_LOG_CONTEXT_KEYS = ["run_id", "mode", "stage"]


@dataclass(slots=True)
class _RunContext:
    mode: PipelineMode
    run_id: str
    token: CancellationToken
    started_at: float = field(default_factory=time.perf_counter)
    stage: str = "preflight"
    provider: str | None = None
    progress: int = 0
    stored_problem: ProblemInfo | None = None
    session: ProviderSession | None = None


class SolvePipelineOrchestrator:
    """Runs the extract -> solve and debug pipelines against the active provider.

    Every public run returns a `PipelineResult` and emits exactly one terminal
    event; failures are classified, never raised.
    """

    def __init__(
        self,
        *,
        screenshot_queue: ScreenshotQueue,
        config_provider: ConfigProvider,
        sink: PresentationSink | None = None,
        session_factory: SessionFactory = build_provider_session,
        cancellation: CancellationController | None = None,
    ) -> None:
        self.screenshot_queue = screenshot_queue
        self.config_provider = config_provider
        self.sink = sink or EventChannel()
        self.session_factory = session_factory
        self.cancellation = cancellation or CancellationController()

        self.problem_info: ProblemInfo | None = None
        self.view: View = "queue"
        self.has_debugged = False

        self._session: ProviderSession | None = None
        self._config_override: ProviderConfig | None = None
        self._retired_sessions: list[ProviderSession] = []
        self._session_runs: dict[int, int] = {}
        self._unsubscribe_config = config_provider.subscribe(self._on_config_updated)

    async def process_screenshots(self) -> PipelineResult:
        if self.view == "queue":
            return await self.run_initial_solve()
        return await self.run_debug()

    async def run_initial_solve(self) -> PipelineResult:
        run = self._begin_run("initial")
        try:
            session = await self._prepare_session(run)
            run.provider = session.provider
            client = session.client()
            self._emit(run, events.INITIAL_START)

            images = await self._stage_images(self.screenshot_queue.list_queued())
            if not images:
                raise NoInputImagesError("No screenshots found in queue")

            language = session.config.resolved_language
            self.problem_info = None
            self._report_progress(run, "Analyzing screenshots...", 30)

            run.stage = "extraction"
            set_log_context(stage=run.stage)
            extraction = await run.token.guard(client.extract(images, language=language))
            parsed = parse_problem_info(extraction.raw_text)
            if not parsed.valid or parsed.problem_info is None:
                logger.warning(
                    "Problem extraction output could not be parsed: %s",
                    "; ".join(parsed.errors),
                )
                raise MalformedResponseError(PROBLEM_PARSE_ERROR)

            run.stored_problem = parsed.problem_info
            self.problem_info = parsed.problem_info
            self._emit(run, events.PROBLEM_EXTRACTED, parsed.problem_info.to_dict())
            self._report_progress(
                run,
                "Problem analyzed successfully. Preparing to generate solution...",
                40,
            )

            solution = await self._solve_stage(run, client, parsed.problem_info, language)
            return self._finish_solution(run, parsed.problem_info, solution)
        except Exception as error:  # noqa: BLE001
            return self._fail(run, error)
        finally:
            await self._end_run(run)

    async def retry_solution(self) -> PipelineResult:
        """Re-run only the solution stage against the stored problem info."""
        run = self._begin_run("initial")
        try:
            problem_info = self.problem_info
            if problem_info is None:
                raise PreconditionFailedError("No problem info available")

            session = await self._prepare_session(run)
            run.provider = session.provider
            client = session.client()
            self._emit(run, events.INITIAL_START)

            solution = await self._solve_stage(
                run, client, problem_info, session.config.resolved_language
            )
            return self._finish_solution(run, problem_info, solution)
        except Exception as error:  # noqa: BLE001
            return self._fail(run, error)
        finally:
            await self._end_run(run)

    async def run_debug(self) -> PipelineResult:
        run = self._begin_run("debug")
        try:
            problem_info = self.problem_info
            if problem_info is None:
                raise PreconditionFailedError("No problem info available")

            session = await self._prepare_session(run)
            run.provider = session.provider
            client = session.client()

            extra_paths = [
                path for path in self.screenshot_queue.list_extra() if Path(path).is_file()
            ]
            if not extra_paths:
                raise NoInputImagesError("No extra screenshots found in queue")

            self._emit(run, events.DEBUG_START)
            images = await self._stage_images(
                [*self.screenshot_queue.list_queued(), *extra_paths]
            )
            if not images:
                raise NoInputImagesError("Failed to load screenshot data for debugging")

            language = session.config.resolved_language
            self._report_progress(run, "Processing debug screenshots...", 30)
            prompt_text = build_debug_prompt(problem_info, language)

            run.stage = "debugging"
            set_log_context(stage=run.stage)
            self._report_progress(
                run, "Analyzing code and generating debug feedback...", 60
            )
            response = await run.token.guard(
                client.debug(prompt_text, images, language=language)
            )
            debug_result = parse_debug(response.raw_text)
            self._report_progress(run, "Debug analysis complete", 100)

            self.has_debugged = True
            self.sink.set_has_debugged(True)
            self._emit(run, events.DEBUG_SUCCESS, debug_result.to_dict(), terminal=True)
            self._log_finished(run, "succeeded")
            return PipelineResult(
                mode=run.mode,
                status="succeeded",
                run_id=run.run_id,
                problem_info=problem_info,
                debug=debug_result,
            )
        except Exception as error:  # noqa: BLE001
            return self._fail(run, error)
        finally:
            await self._end_run(run)

    def cancel_all(self) -> bool:
        was_cancelled = self.cancellation.cancel_all()

        self.has_debugged = False
        self.sink.set_has_debugged(False)
        self.problem_info = None

        if was_cancelled:
            logger.info("Canceled in-flight processing")
            self._set_view("queue")
            self.sink.emit(PipelineEvent(name=events.RESET))
        return was_cancelled

    async def reconfigure(self, config: ProviderConfig | None = None) -> None:
        """Drop the current provider session and rebuild it.

        An explicit `config` pins the session to that snapshot until the config
        provider reports an update; otherwise a fresh snapshot is loaded.
        """
        self._config_override = config
        self._retire_session()
        await self._close_retired_sessions()
        self._session = self.session_factory(self._current_config())

    async def aclose(self) -> None:
        self._unsubscribe_config()
        self.cancellation.cancel_all()
        self._retire_session()
        await self._close_retired_sessions()

    async def _solve_stage(
        self,
        run: _RunContext,
        client: ProviderClient,
        problem_info: ProblemInfo,
        language: str,
    ) -> SolutionResult:
        run.stage = "solution"
        set_log_context(stage=run.stage)
        self._report_progress(
            run, "Creating optimal solution with detailed explanations...", 60
        )
        prompt_text = build_solution_prompt(problem_info, language)
        response = await run.token.guard(client.solve(prompt_text))
        return parse_solution(response.raw_text)

    def _finish_solution(
        self, run: _RunContext, problem_info: ProblemInfo, solution: SolutionResult
    ) -> PipelineResult:
        self.screenshot_queue.clear_extra()
        self._report_progress(run, "Solution generated successfully", 100)
        self._set_view("solutions")
        self._emit(run, events.SOLUTION_SUCCESS, solution.to_dict(), terminal=True)
        self._log_finished(run, "succeeded")
        return PipelineResult(
            mode=run.mode,
            status="succeeded",
            run_id=run.run_id,
            problem_info=problem_info,
            solution=solution,
        )

    def _fail(self, run: _RunContext, error: Exception) -> PipelineResult:
        error_code = classify_error(error)
        error_details = build_error_details(error)

        if error_code == "CANCELED":
            # A run that stored problem info must not leave it behind once canceled,
            # unless a newer run has already replaced it.
            if run.stored_problem is not None and self.problem_info is run.stored_problem:
                self.problem_info = None
            self._emit(run, events.PROCESSING_CANCELED, {}, terminal=True)
            self._log_finished(run, "canceled", error_code=error_code)
            return PipelineResult(
                mode=run.mode,
                status="canceled",
                run_id=run.run_id,
                error_code=error_code,
                error_message=error_details,
                user_message=friendly_message(error_code, run.provider),
            )

        if error_code in ("PRECONDITION_FAILED", "MALFORMED_UPSTREAM_RESPONSE"):
            user_message = str(error)
        else:
            user_message = friendly_message(error_code, run.provider)

        if error_code in ("AUTHENTICATION_MISSING", "AUTHENTICATION_INVALID"):
            event_name = events.API_KEY_INVALID
        elif isinstance(error, NoInputImagesError):
            event_name = events.NO_SCREENSHOTS
        elif run.mode == "debug":
            event_name = events.DEBUG_ERROR
        else:
            event_name = events.INITIAL_SOLUTION_ERROR

        if run.mode == "initial":
            self._set_view("queue")

        log = logger.exception if error_code == "UNKNOWN_ERROR" else logger.warning
        log(
            "Run failed at %s: %s",
            run.stage,
            error_details,
            extra={"error_code": error_code},
        )
        self._emit(
            run,
            event_name,
            {
                "error_code": error_code,
                "message": user_message,
                "retryable": is_retryable_error_code(error_code),
            },
            terminal=True,
        )
        self._log_finished(run, "failed", error_code=error_code)
        return PipelineResult(
            mode=run.mode,
            status="failed",
            run_id=run.run_id,
            problem_info=self.problem_info if run.mode == "initial" else None,
            error_code=error_code,
            error_message=error_details,
            user_message=user_message,
        )

    async def _stage_images(self, paths: Sequence[str]) -> list[ImagePayload]:
        loaded = await asyncio.gather(*(self._load_image(path) for path in paths))
        return [image for image in loaded if image is not None]

    async def _load_image(self, path: str) -> ImagePayload | None:
        if not Path(path).is_file():
            logger.warning("Screenshot file does not exist: %s", path)
            return None
        try:
            preview = await asyncio.to_thread(self.screenshot_queue.load_preview, path)
            return await load_image_payload(path, preview=preview)
        except OSError as error:
            logger.warning("Error reading screenshot %s: %s", path, error)
            return None

    def _current_config(self) -> ProviderConfig:
        if self._config_override is not None:
            return self._config_override
        return self.config_provider.load()

    async def _prepare_session(self, run: _RunContext) -> ProviderSession:
        config = self._current_config()
        if self._session is not None and self._session.config != config:
            logger.info(
                "Provider configuration changed (%s -> %s)",
                self._session.provider,
                config.api_provider,
            )
            self._retire_session()
        await self._close_retired_sessions()

        if self._session is None:
            self._session = self.session_factory(config)
        session = self._session
        run.session = session
        self._session_runs[id(session)] = self._session_runs.get(id(session), 0) + 1
        return session

    def _on_config_updated(self, config: ProviderConfig) -> None:
        logger.info("Received config update for provider %s", config.api_provider)
        self._config_override = None
        self._retire_session()

    def _retire_session(self) -> None:
        if self._session is not None:
            self._retired_sessions.append(self._session)
            self._session = None

    async def _close_retired_sessions(self) -> None:
        # A retired session stays open while a run of either mode still holds it.
        retired, self._retired_sessions = self._retired_sessions, []
        idle: list[ProviderSession] = []
        for session in retired:
            if id(session) in self._session_runs:
                self._retired_sessions.append(session)
            else:
                idle.append(session)
        for session in idle:
            await session.aclose()

    def _begin_run(self, mode: PipelineMode) -> _RunContext:
        run = _RunContext(
            mode=mode,
            run_id=uuid.uuid4().hex,
            token=self.cancellation.begin(mode),
        )
        set_log_context(run_id=run.run_id, mode=mode, stage=run.stage)
        logger.info("Run started")
        return run

    async def _end_run(self, run: _RunContext) -> None:
        self.cancellation.release(run.mode, run.token)
        try:
            if run.session is not None:
                key = id(run.session)
                remaining = self._session_runs.pop(key, 0) - 1
                if remaining > 0:
                    self._session_runs[key] = remaining
                run.session = None
                await self._close_retired_sessions()
        finally:
            clear_log_context(_LOG_CONTEXT_KEYS)

    def _report_progress(self, run: _RunContext, message: str, progress: int) -> None:
        run.progress = max(run.progress, progress)
        self._emit(
            run,
            events.PROCESSING_STATUS,
            {"message": message, "progress": run.progress},
        )

    def _emit(
        self,
        run: _RunContext,
        name: str,
        payload: dict[str, Any] | None = None,
        *,
        terminal: bool = False,
    ) -> None:
        self.sink.emit(
            PipelineEvent(
                name=name,
                mode=run.mode,
                payload={"run_id": run.run_id, **(payload or {})},
                terminal=terminal,
            )
        )

    def _set_view(self, view: View) -> None:
        self.view = view
        self.sink.set_view(view)

    def _log_finished(
        self, run: _RunContext, status: str, *, error_code: str | None = None
    ) -> None:
        logger.info(
            "Run finished with status=%s",
            status,
            extra={
                "duration_ms": round((time.perf_counter() - run.started_at) * 1000, 1),
                "error_code": error_code,
            },
        )
