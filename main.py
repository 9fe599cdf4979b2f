"""Deep Research - command line runner.

Runs one research session and prints its progress and final answer.
"""

import argparse
import asyncio
import sys

from deep_research.agents.classifier import should_trigger_research
from deep_research.agents.orchestrator import ResearchOrchestrator
from deep_research.config import settings
from deep_research.models.research import QueryComplexity
from deep_research.research_config import ResearchConfig


async def run_research(
    query: str,
    *,
    force: bool = False,
    complexity: QueryComplexity | None = None,
    skip_round2: bool = False,
    max_cost: float | None = None,
) -> int:
    """Run research on the given query; return a process exit code."""
    config = ResearchConfig.from_settings(settings).with_overrides(
        max_cost=max_cost,
        skip_round2=skip_round2 or None,
    )
    if not force and not should_trigger_research(query, config):
        print("[!] Query does not look like a research request; use --force to run anyway.")
        return 2

    print(f"Research query: {query}")
    print("-" * 50)

    orchestrator = ResearchOrchestrator(config)
    status = "failed"

    async for event in orchestrator.research(query, complexity):
        event_type = event.event.value
        data = event.data

        if event_type == "classify":
            print(
                f"[*] Complexity: {data.get('complexity')} "
                f"(est. ${data.get('estimated_cost_usd', 0):.4f}, ~{data.get('estimated_time_s')}s)"
            )

        elif event_type == "plan":
            sub_questions = data.get("sub_questions", [])
            label = " (fast path)" if data.get("fast_path") else " (fallback)" if data.get("fallback") else ""
            print(f"\n[*] Round {data.get('round')} plan{label}, {len(sub_questions)} sub-questions:")
            for sq in sub_questions:
                print(f"  {sq.get('id')} [{sq.get('priority')}] {sq.get('question', '')[:80]}")

        elif event_type == "search_complete":
            print(f"  [+] {data.get('sub_question_id')}: {data.get('sources_count')} sources")

        elif event_type == "search_failed":
            print(f"  [-] {data.get('sub_question_id')}: {data.get('error')}")

        elif event_type == "synthesize_start":
            print(f"\n[+] Synthesizing round {data.get('round')}...")

        elif event_type == "synthesize_progress":
            print(".", end="", flush=True)

        elif event_type == "gap_found":
            gap = data.get("gap", {})
            print(f"\n  [?] Gap ({gap.get('priority')}): {gap.get('description')}")

        elif event_type == "round2_start":
            print(f"\n[~] Starting round 2 with {len(data.get('new_queries', []))} queries...")

        elif event_type == "error":
            print(f"\n[!] {data.get('code', 'ERROR')}: {data.get('message', 'Unknown error')}")

        elif event_type == "research_complete":
            status = data.get("status", "failed")
            print(f"\n\n[*] Research {status}: {data.get('message')}")
            print(f"   Rounds: {data.get('roundsCompleted')}")
            print(f"   Cost: ${data.get('costIncurred', 0):.4f}")
            print(f"   Confidence: {data.get('confidence', 0):.2f}")
            print(f"\n{'='*50}")
            print("ANSWER:")
            print(f"{'='*50}")
            print(data.get("answerText", ""))
            sources = data.get("sources", [])
            if sources:
                print("\nSources:")
                for i, source in enumerate(sources, 1):
                    print(f"  [{i}] {source.get('title')} - {source.get('url')}")

    return 0 if status in ("completed", "partial") else 1


def main():
    parser = argparse.ArgumentParser(description="Deep Research runner")
    parser.add_argument("--query", "-q", required=True, help="Research query")
    parser.add_argument("--force", "-f", action="store_true", help="Skip the research trigger check")
    parser.add_argument(
        "--complexity",
        "-c",
        choices=[c.value for c in QueryComplexity],
        help="Force a complexity instead of classifying the query",
    )
    parser.add_argument("--skip-round2", action="store_true", help="Stop after the first round")
    parser.add_argument("--max-cost", type=float, help="Cost ceiling in USD for this session")

    args = parser.parse_args()
    if args.max_cost is not None and args.max_cost <= 0:
        parser.error("--max-cost must be positive")

    complexity = QueryComplexity(args.complexity) if args.complexity else None
    sys.exit(
        asyncio.run(
            run_research(
                args.query,
                force=args.force,
                complexity=complexity,
                skip_round2=args.skip_round2,
                max_cost=args.max_cost,
            )
        )
    )


if __name__ == "__main__":
    main()
