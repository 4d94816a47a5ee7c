"""Research Engine

Simple CLI for running a single research query.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from research_engine.agents.orchestrator import ResearchOrchestrator
from research_engine.config import ResearchConfig
from research_engine.services.consumer import StreamWatchdog


def _load_context(path: str | None) -> list[dict] | None:
    if not path:
        return None
    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(payload, list):
        raise SystemExit("--context-file must contain a JSON list of {query, response} objects")
    return payload


async def run_research(query: str, model: str | None = None, context: list[dict] | None = None) -> int:
    """Run research on the given query and print progress."""
    print(f"Research query: {query}")
    print("-" * 50)

    config = ResearchConfig.from_settings()
    if model:
        config = config.with_overrides(model=model)
    orchestrator = ResearchOrchestrator(config)
    run = orchestrator.start(query, context)
    watchdog = StreamWatchdog(run, config.idle_timeout)
    exit_code = 1

    async for event in watchdog.events():
        event_type = event.event.value
        data = event.data

        if event_type == "searching":
            print(f"\n[~] Searching: {data.get('query')}")

        elif event_type == "found":
            sources = data.get("sources", [])
            print(f"[+] Found {len(sources)} sources via {data.get('provider') or 'n/a'}")

        elif event_type == "scraping":
            print(f"  [{data.get('index')}/{data.get('total')}] {data.get('url')}")

        elif event_type == "source-complete":
            print(f"  [+] {data.get('summary') or data.get('url')}")

        elif event_type == "analyzing":
            print(f"\n[+] Writing answer from {data.get('sourceCount')} sources...\n")

        elif event_type == "content-chunk":
            print(data.get("chunk", ""), end="", flush=True)

        elif event_type == "final-result":
            print(f"\n\n{'=' * 50}")
            if data.get("partial"):
                print("[!] Answer is partial")
            for i, source in enumerate(data.get("sources", []), 1):
                print(f"  [{i}] {source.get('title')} - {source.get('url')}")
            questions = data.get("followUpQuestions", [])
            if questions:
                print("\nFollow-up questions:")
                for question in questions:
                    print(f"  - {question}")
            exit_code = 0

        elif event_type == "error":
            print(f"\n[!] Error: {data.get('message', 'Unknown error')}", file=sys.stderr)

    return exit_code


def main():
    parser = argparse.ArgumentParser(description="Research Engine")
    parser.add_argument("--query", "-q", required=True, help="Research query")
    parser.add_argument("--model", "-m", help="Model to use (default: from config)")
    parser.add_argument("--context-file", help="JSON file with previous {query, response} turns")

    args = parser.parse_args()

    sys.exit(asyncio.run(run_research(args.query, args.model, _load_context(args.context_file))))


if __name__ == "__main__":
    main()
