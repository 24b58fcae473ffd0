"""Book Quotes command-line launcher. Finds one authentic passage in a novel."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from book_quotes import (
    Character,
    HttpLLM,
    OfflineLLM,
    QuoteEngine,
    QuoteRequest,
    TargetEnding,
    load_config,
)

ROOT = Path(__file__).parent
load_dotenv(ROOT / ".env")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Find an authentic passage in a novel")
    parser.add_argument("novel", type=Path, help="Path to the novel (UTF-8 text)")
    parser.add_argument("--character", required=True, help="Character name as written in the book")
    parser.add_argument("--kind", choices=["dialogue", "action"], default="dialogue")
    parser.add_argument("--step", type=int, default=1, help="Current narrative step (1-based)")
    parser.add_argument("--total-steps", type=int, default=10)
    parser.add_argument("--ending-type", choices=["source", "inverted", "novel"], default="source")
    parser.add_argument("--ending", default="", help="Description of the target ending")
    parser.add_argument("--percentage", type=float, default=100.0,
                        help="Target authenticity rate, 0-100 (default: 100)")
    parser.add_argument("--config", type=Path, default=None, help="JSON config file")
    parser.add_argument("--min-window", type=int, default=None,
                        help="Smallest context window in characters (overrides config)")
    parser.add_argument("--offline", action="store_true",
                        help="Use neutral judgments instead of an LLM backend")
    parser.add_argument("--locate-only", action="store_true",
                        help="Print the located context and exit")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


async def run(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    if args.min_window is not None:
        config = config.model_copy(update={"min_window": max(1, args.min_window)})
    if args.offline:
        llm = OfflineLLM()
    else:
        llm = HttpLLM(
            provider_url=config.llm_url,
            api_key=config.llm_api_key,
            provider_format=config.llm_format,
            model=config.llm_model,
            timeout=config.llm_timeout,
        )
    character = Character(id=args.character.lower(), name=args.character)
    engine = QuoteEngine.from_file(args.novel, llm=llm, characters=[character], config=config)

    if args.locate_only:
        context = engine.locate(args.step, args.total_steps)
        print(context.model_dump_json(indent=2))
        return 0

    request = QuoteRequest(
        character=character,
        kind=args.kind,
        step=args.step,
        total_steps=args.total_steps,
        ending=TargetEnding(id="cli", type=args.ending_type, description=args.ending),
        target_percentage=args.percentage,
    )
    result = await engine.find_passage(request)
    if result is None:
        print("(no authentic passage)")
        return 1
    print(result.as_option_text())
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
