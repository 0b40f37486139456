#!/usr/bin/env python3
"""
Seed script: build a programme, schedule it and write it out as JSON/XML/CSV.

By default the site-establishment sample is used; --nodes generates a large
wave-structured DAG for performance testing instead.

Usage:
    python -m scripts.seed [--nodes 500] [--format json] [--out programme.json]

Options:
    --nodes N     Generate N random tasks instead of the sample programme
    --format F    Export format: json, xml or csv (default: json)
    --out PATH    Output file (default: stdout)
    --baseline    Create a baseline after scheduling (included in JSON output)
    --seed S      Random seed for --nodes
"""

import argparse
import asyncio
import sys
import time

from programme.config import get_settings
from programme.logging_config import setup_logging
from programme.sample import build_random_programme, build_site_establishment
from programme.services.engine import ProgrammeEngine, build_baseline_store


async def main():
    parser = argparse.ArgumentParser(description="Seed and export a programme")
    parser.add_argument("--nodes", type=int, default=0, help="Number of random tasks to create")
    parser.add_argument("--format", choices=["json", "xml", "csv"], default="json")
    parser.add_argument("--out", type=str, default=None, help="Output file")
    parser.add_argument("--project", type=str, default="Site Establishment", help="Project name")
    parser.add_argument("--baseline", action="store_true", help="Create a baseline after scheduling")
    parser.add_argument("--seed", type=int, default=None, help="Random seed")

    args = parser.parse_args()
    setup_logging()
    settings = get_settings()

    engine = ProgrammeEngine("seed", build_baseline_store(settings), settings, project_name=args.project)

    start_time = time.time()
    with engine.write() as store:
        if args.nodes:
            links = build_random_programme(store, args.nodes, seed=args.seed)
            print(f"Generated {args.nodes} tasks with {links} links", file=sys.stderr)
        else:
            build_site_establishment(store)
    print(f"Generation time: {time.time() - start_time:.2f}s", file=sys.stderr)

    start_time = time.time()
    result = engine.auto_schedule()
    print(f"Auto-schedule: {result.message} in {time.time() - start_time:.2f}s", file=sys.stderr)
    for warning in result.data["warnings"]:
        print(f"  warning: {warning}", file=sys.stderr)

    analysis = engine.critical_path(apply=True)
    if analysis:
        print(
            f"Critical path: {len(analysis.critical_path_task_ids)} task(s), "
            f"project end {analysis.project_end_date}",
            file=sys.stderr,
        )

    if args.baseline:
        baseline = await engine.create_baseline(f"{args.project} baseline")
        await engine.baselines.set_active(baseline.id)
        print(f"Created baseline {baseline.id}", file=sys.stderr)

    content = await engine.export(args.format)
    if args.out:
        with open(args.out, "w", encoding="utf-8") as f:
            f.write(content)
        print(f"Wrote {args.out}", file=sys.stderr)
    else:
        sys.stdout.write(content)


if __name__ == "__main__":
    asyncio.run(main())
