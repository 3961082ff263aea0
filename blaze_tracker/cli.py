"""blaze-tracker command line.

    blaze-tracker extract --chat ID [--message N] [--data-dir DIR] [--settings FILE]
                          [--non-interactive]
    blaze-tracker project --chat ID --message N [--data-dir DIR]

Backend connection comes from the environment (.env is loaded first):
BLAZE_LLM_URL, BLAZE_LLM_API_KEY, BLAZE_LLM_FORMAT, BLAZE_LLM_MODEL,
BLAZE_MAX_REQS_PER_MINUTE and BLAZE_DATA_DIR.

Ctrl+C during extract aborts the turn; nothing is saved.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path

from dotenv import load_dotenv

from blaze_tracker.llm import HttpGenerator
from blaze_tracker.models import SwipeContext
from blaze_tracker.orchestrator import ExtractionOrchestrator, ExtractionResult
from blaze_tracker.resolution import NameDisambiguator, NameMapping, NullDisambiguator
from blaze_tracker.settings import FileSettings
from blaze_tracker.storage import Storage

logger = logging.getLogger(__name__)


class ConsoleDisambiguator:
    """Asks on stdin which known character an unresolved name refers to."""

    async def resolve(
        self, unresolved_names: list[str], canonical_names: list[str],
    ) -> list[NameMapping]:
        mappings = []
        for name in unresolved_names:
            print(f"\nUnknown character name: {name!r}")
            for i, canonical in enumerate(canonical_names, 1):
                print(f"  {i}. {canonical}")
            answer = (await asyncio.to_thread(input, "Number (empty to skip): ")).strip()
            resolved = None
            if answer.isdigit() and 1 <= int(answer) <= len(canonical_names):
                resolved = canonical_names[int(answer) - 1]
            mappings.append(NameMapping(unresolved_name=name, resolved_to=resolved))
        return mappings


def _data_dir(arg: Path | None) -> Path:
    return arg or Path(os.getenv("BLAZE_DATA_DIR", "data"))


def _generator_from_env() -> HttpGenerator:
    url = os.getenv("BLAZE_LLM_URL")
    if not url:
        raise SystemExit("BLAZE_LLM_URL is not set")
    return HttpGenerator(
        provider_url=url,
        api_key=os.getenv("BLAZE_LLM_API_KEY", ""),
        provider_format=os.getenv("BLAZE_LLM_FORMAT", "koboldcpp"),
        model=os.getenv("BLAZE_LLM_MODEL", ""),
        max_requests_per_minute=int(os.getenv("BLAZE_MAX_REQS_PER_MINUTE", "0")),
    )


def _print_result(result: ExtractionResult) -> None:
    if result.aborted:
        print("Extraction aborted; nothing was saved.")
        return
    print(f"{len(result.new_events)} events committed.")
    for event in result.new_events:
        print(f"  {event.kind}:{event.subkind}")
    if result.chapter_ended:
        print("Chapter ended.")
    for failure in result.errors:
        print(f"  error in {failure.extractor}: {failure.error}", file=sys.stderr)


async def run_extract(args: argparse.Namespace) -> int:
    storage = Storage(_data_dir(args.data_dir))
    context = storage.get_context(args.chat)
    if not context.chat:
        print(f"Chat {args.chat!r} has no messages", file=sys.stderr)
        return 1
    message = args.message if args.message is not None else len(context.chat) - 1
    if not 0 <= message < len(context.chat):
        print(f"Message {message} is out of range", file=sys.stderr)
        return 1

    store = storage.load_store(args.chat)
    disambiguator: NameDisambiguator = (
        NullDisambiguator() if args.non_interactive else ConsoleDisambiguator()
    )
    orchestrator = ExtractionOrchestrator(
        generator=_generator_from_env(),
        store=store,
        settings=FileSettings(args.settings or storage.settings_path),
        disambiguator=disambiguator,
    )

    abort = asyncio.Event()
    loop = asyncio.get_running_loop()

    def interrupt(signum, frame):
        logger.info("interrupt received, aborting extraction")
        loop.call_soon_threadsafe(abort.set)

    previous = signal.signal(signal.SIGINT, interrupt)
    try:
        result = await orchestrator.extract_events(
            context, message, abort=abort, on_status=lambda s: logger.info("%s", s),
        )
    finally:
        signal.signal(signal.SIGINT, previous)
    if not result.aborted:
        storage.save_store(args.chat, store)
    _print_result(result)
    return 0


def run_project(args: argparse.Namespace) -> int:
    storage = Storage(_data_dir(args.data_dir))
    store = storage.load_store(args.chat)
    swipes = SwipeContext.from_chat(storage.get_messages(args.chat))
    state = store.project_state_at_message(args.message, swipes)
    print(state.model_dump_json(indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="blaze-tracker", description="Narrative state tracking for chat roleplay",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    extract = sub.add_parser("extract", help="Run one extraction turn and commit it")
    extract.add_argument("--chat", required=True, help="Chat id under DATA_DIR/chats")
    extract.add_argument("--message", type=int, default=None,
                         help="Message id to extract for (default: last message)")
    extract.add_argument("--data-dir", type=Path, default=None,
                         help="Data storage directory (default: $BLAZE_DATA_DIR or ./data)")
    extract.add_argument("--settings", type=Path, default=None,
                         help="Settings JSON file (default: DATA_DIR/settings.json)")
    extract.add_argument("--non-interactive", action="store_true",
                         help="Leave unknown names unresolved instead of asking")

    project = sub.add_parser("project", help="Print the narrative state at a message")
    project.add_argument("--chat", required=True)
    project.add_argument("--message", type=int, required=True)
    project.add_argument("--data-dir", type=Path, default=None)
    return parser


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    if args.command == "extract":
        return asyncio.run(run_extract(args))
    return run_project(args)


if __name__ == "__main__":
    sys.exit(main())
