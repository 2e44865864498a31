from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Sequence

from dotenv import load_dotenv
from pydantic import ValidationError

from snapsolve.config.provider_config import ProviderConfig
from snapsolve.config.settings import Settings
from snapsolve.config.store import YamlConfigStore
from snapsolve.llm_client.session import build_provider_session
from snapsolve.logging import setup_logging
from snapsolve.pipeline.events import EventChannel
from snapsolve.pipeline.orchestrator import SolvePipelineOrchestrator
from snapsolve.pipeline.types import PipelineEvent, PipelineResult
from snapsolve.screenshots import FileScreenshotQueue

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="snapsolve")
    parser.add_argument("--env-file", type=str, default=".env", help="Path to .env file")
    parser.add_argument("--config", type=str, default=None, help="Path to YAML config")
    parser.add_argument("--log-level", type=str, default=None)
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_solve = subparsers.add_parser("solve", help="Extract and solve a problem from screenshots")
    p_solve.add_argument("images", nargs="+", help="Problem screenshots, in order")
    p_solve.add_argument(
        "--debug-image",
        action="append",
        default=[],
        help="Screenshot of attempted code; triggers a debug run after the solution",
    )
    p_solve.add_argument("--provider", choices=["openai", "gemini"], default=None)
    p_solve.add_argument("--language", type=str, default=None)
    p_solve.add_argument(
        "--events", action="store_true", help="Print pipeline events to stderr"
    )

    subparsers.add_parser("show-config", help="Print the effective provider config")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    if os.path.exists(args.env_file):
        load_dotenv(dotenv_path=args.env_file)

    try:
        settings = Settings()
        if args.config:
            settings = settings.model_copy(update={"config_path": Path(args.config)})
        store = YamlConfigStore(
            settings.resolved_config_path, defaults=settings.provider_config()
        )
        config = _apply_overrides(store.load(), settings, args)
    except (ValidationError, ValueError) as e:
        print(f"Config validation error:\n{e}", file=sys.stderr)
        return 1

    setup_logging(
        level=(args.log_level or settings.log_level).upper(),
        log_file=str(settings.log_file) if settings.log_file else None,
    )

    if args.command == "show-config":
        print(json.dumps(config.masked(), indent=2, ensure_ascii=False))
        return 0

    results = asyncio.run(_run_solve(args, store, config))
    print(json.dumps([result.to_dict() for result in results], indent=2, ensure_ascii=False))
    return 0 if all(result.succeeded for result in results) else 1


async def _run_solve(
    args: argparse.Namespace, store: YamlConfigStore, config: ProviderConfig
) -> list[PipelineResult]:
    queue = FileScreenshotQueue(args.images)
    channel = EventChannel()
    if args.events:
        channel.subscribe(_print_event)

    orchestrator = SolvePipelineOrchestrator(
        screenshot_queue=queue,
        config_provider=store,
        sink=channel,
        session_factory=build_provider_session,
    )
    logger.info(
        "Solving from %d screenshot(s) with %s", len(args.images), config.api_provider
    )
    try:
        await orchestrator.reconfigure(config)
        results = [await orchestrator.run_initial_solve()]
        if results[0].succeeded and args.debug_image:
            for path in args.debug_image:
                queue.add_extra(path)
            results.append(await orchestrator.run_debug())
        return results
    finally:
        await orchestrator.aclose()


def _apply_overrides(
    config: ProviderConfig, settings: Settings, args: argparse.Namespace
) -> ProviderConfig:
    updates: dict[str, object] = {}
    provider = getattr(args, "provider", None)
    if provider and provider != config.api_provider:
        updates["api_provider"] = provider
        updates["api_key"] = settings.credential_for(provider)
    language = getattr(args, "language", None)
    if language:
        updates["language"] = language
    if not updates:
        return config
    return ProviderConfig.model_validate({**config.model_dump(), **updates})


def _print_event(event: PipelineEvent) -> None:
    print(
        json.dumps({"event": event.name, "mode": event.mode, **event.payload}, default=str),
        file=sys.stderr,
    )


if __name__ == "__main__":
    sys.exit(main())
