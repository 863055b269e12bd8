"""Command-line knowledge search against a bot configuration."""

import argparse
import asyncio
import logging
import sys
from uuid import UUID

from dotenv import load_dotenv

from app.bots.repository import resolve_bot_config
from app.config import get_settings
from app.core.runtime import ChatRuntime, build_runtime

logger = logging.getLogger(__name__)


def _echo(message: str) -> None:
    sys.stdout.write(f"{message}\n")


def _preview(text: str, limit: int = 600) -> str:
    flat = text.strip().replace("\n", " ")
    return (flat[:limit] + "…") if len(flat) > limit else flat


async def _run(runtime: ChatRuntime, args: argparse.Namespace) -> int:
    bot = resolve_bot_config(runtime.bots, args.bot_config_id)
    results = await runtime.retrieval.search(
        args.q, bot_config_id=bot.id, limit=args.k, threshold=args.threshold
    )

    if args.answer:
        reply = await runtime.orchestrator.respond(args.q, [], bot.id)
        _echo("=" * 80)
        _echo("Assistant reply:")
        _echo(reply.text)
        if reply.escalate:
            _echo(f"(would escalate to a human agent{': ' + reply.reason if reply.reason else ''})")
    _echo("=" * 80)
    _echo(f"Top {len(results)} knowledge entries for {args.q!r} (bot {bot.id})\n")
    for i, result in enumerate(results, 1):
        _echo(f"[{i}] {result.source_label}  (similarity={result.similarity:.2f})")
        _echo(_preview(result.text))
        _echo("-" * 80)
    return 0 if results else 1


def main() -> int:
    load_dotenv()
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Semantic search over a bot's knowledge base")
    parser.add_argument("--q", type=str, required=True, help="Search query")
    parser.add_argument("--k", type=int, default=settings.retrieval_top_k, help="Maximum results")
    parser.add_argument(
        "--threshold",
        type=float,
        default=settings.retrieval_threshold,
        help="Minimum cosine similarity (0-1)",
    )
    parser.add_argument(
        "--bot-config-id",
        type=UUID,
        default=None,
        help="Bot configuration to search (defaults to the most recent one)",
    )
    parser.add_argument(
        "--answer",
        action="store_true",
        help="Also generate the assistant reply the widget would receive",
    )
    args = parser.parse_args()
    if not 1 <= args.k <= 50:
        parser.error("--k must be between 1 and 50")
    if not 0.0 <= args.threshold <= 1.0:
        parser.error("--threshold must be between 0 and 1")

    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")
    if settings.in_memory:
        parser.error("DATABASE_URL must be set to query a knowledge base")

    runtime = build_runtime(settings)

    async def run() -> int:
        try:
            return await _run(runtime, args)
        finally:
            await runtime.stop()

    return asyncio.run(run())


if __name__ == "__main__":
    sys.exit(main())
