"""Command-line entry point: stream one practitioner search and print results."""
from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Sequence

from ai.explanation import match_quality, parse
from client.config import settings
from client.logging_config import setup_logging
from client.models import ExplanationStatus, StreamingMatchQuery
from client.session import QuerySession, SessionSnapshot, Stage
from client.transport import StreamTransport, TransportError


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Stream practitioner matches for a query")
    parser.add_argument("query", nargs="?", help="Search query, e.g. \"COBOL mainframe\"")
    parser.add_argument(
        "--limit",
        type=int,
        default=settings.stream.default_limit,
        help=f"Maximum matches to return (default: {settings.stream.default_limit})",
    )
    parser.add_argument(
        "--no-explanations",
        action="store_true",
        help="Skip per-practitioner explanation generation",
    )
    parser.add_argument(
        "--raw",
        action="store_true",
        help="Print explanation text as received instead of parsed evidence",
    )
    parser.add_argument(
        "--probe",
        action="store_true",
        help="Check the backend test stream and exit",
    )
    return parser


class StatusPrinter:
    """Prints a line whenever the status message or stage changes."""

    def __init__(self) -> None:
        self._last: tuple[str, Stage] | None = None

    def __call__(self, snapshot: SessionSnapshot) -> None:
        key = (snapshot.status_message, snapshot.stage)
        if key == self._last or not snapshot.status_message:
            return
        self._last = key
        progress = ""
        if snapshot.stage == Stage.ENRICHING and snapshot.explanations_total:
            progress = f" [{snapshot.progress}%]"
        print(f"{snapshot.stage.value:>10}: {snapshot.status_message}{progress}")


def print_results(snapshot: SessionSnapshot, *, raw: bool = False) -> None:
    print("-" * 60)
    print(f"{len(snapshot.items)} of {snapshot.total_results} matches for {snapshot.query!r}")
    if snapshot.llm_search_terms and snapshot.llm_search_terms.primary_concepts:
        print(f"Concepts: {', '.join(snapshot.llm_search_terms.primary_concepts)}")

    for rank, item in enumerate(snapshot.items, start=1):
        boost = f" (+{item.boost_percent}% boost)" if item.boost_percent else ""
        print(f"\n{rank}. {item.name or item.practitioner_id} - {item.match_score:.2f}{boost}")
        if item.headline:
            print(f"   {item.headline}")

        if item.explanation_status == ExplanationStatus.ERROR:
            print("   Explanation unavailable")
            continue
        if not item.explanation:
            continue

        parsed = parse(item.explanation)
        if raw or not parsed.parsed:
            for line in item.explanation.strip().splitlines():
                print(f"   | {line}")
            continue

        print(f"   {match_quality(parsed.combined_score)} ({parsed.combined_score}/10)")
        for source in ("linkedin", "crosslake"):
            bucket = parsed.bucket(source)
            print(f"   {source}: score {bucket.score}")
            for evidence in bucket.explicit:
                print(f"     + {evidence}")
            for evidence in bucket.inferred:
                print(f"     ~ {evidence}")

    if snapshot.elapsed_ms is not None:
        print(f"\nDone in {snapshot.elapsed_ms / 1000:.1f}s")


async def run_search(query: StreamingMatchQuery, *, raw: bool = False) -> int:
    session = QuerySession()
    session.subscribe(StatusPrinter())
    try:
        await session.start(query)
        await session.wait()
    except asyncio.CancelledError:
        session.cancel()
        raise
    finally:
        snapshot = session.snapshot()
        await session.aclose()

    print_results(snapshot, raw=raw)
    return 1 if snapshot.stage == Stage.ERROR else 0


async def run_probe() -> int:
    async with StreamTransport() as transport:
        try:
            frames = await transport.probe()
        except TransportError as e:
            print(f"Test stream failed: {e.message}", file=sys.stderr)
            return 1
    print(f"Test stream OK: {frames} frames")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    setup_logging()

    if args.probe:
        return asyncio.run(run_probe())
    if not args.query:
        parser.error("a query is required unless --probe is given")

    query = StreamingMatchQuery(
        query=args.query,
        limit=args.limit,
        include_explanations=not args.no_explanations,
    )
    try:
        return asyncio.run(run_search(query, raw=args.raw))
    except KeyboardInterrupt:
        print("Search cancelled", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
