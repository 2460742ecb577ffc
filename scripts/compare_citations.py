"""
Compare citation sources on a random sample of stored publications.

  python scripts/compare_citations.py [--sample 50] [--delay 0.1] [--show 15]
"""
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from dotenv import load_dotenv

# Allow running directly (python scripts/compare_citations.py)
HERE = Path(__file__).resolve()
REPO_ROOT = HERE.parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

load_dotenv()

from pub_sync.citations import rank_sources
from pub_sync.pipeline import compare_citation_sources
from pub_sync.runtime_config import RUNTIME_CONFIG


def _print_table(report, show: int) -> None:
    names = list(report.sources)
    print("DOI".ljust(40) + "".join(n.rjust(12) for n in names))
    print("-" * (40 + 12 * len(names)))
    for row in report.observations[:show]:
        cells = ["N/A" if row["counts"].get(n) is None else str(row["counts"][n]) for n in names]
        print(row["doi"][:38].ljust(40) + "".join(c.rjust(12) for c in cells))


def main() -> int:
    ap = argparse.ArgumentParser(description="Compare citation counts across sources.")
    ap.add_argument("--sample", type=int, default=RUNTIME_CONFIG.citations.sample_size)
    ap.add_argument("--delay", type=float, default=RUNTIME_CONFIG.citations.request_delay_seconds)
    ap.add_argument("--show", type=int, default=15, help="Rows of per-DOI detail to print")
    ap.add_argument("--seed", type=int, default=None)
    ap.add_argument("--json", action="store_true", help="Print the report as JSON only")
    ap.add_argument("--no-store", action="store_true", help="Do not store the resulting source ranking")
    args = ap.parse_args()

    report = compare_citation_sources(
        sample_size=args.sample, delay_seconds=args.delay, seed=args.seed, persist=not args.no_store
    )
    if args.json:
        out = report.to_dict(include_observations=True)
        out["ranking"] = rank_sources(report)
        print(json.dumps(out, ensure_ascii=False, indent=2))
        return 0

    print(f"Sample size: {report.sample_size} publications with DOIs\n")
    for s in report.sources.values():
        print(f"  {s.name:<10} coverage {s.hits}/{report.sample_size} ({s.coverage_pct:.1f}%)"
              f"  total {s.total:,}  mean {s.mean:.1f}")
    if report.compared:
        print(f"\nWhen every source found the DOI ({report.compared} publications):")
        for name, n in report.higher.items():
            print(f"  {name} highest: {n} ({n / report.compared * 100:.1f}%)")
        print(f"  equal: {report.equal} ({report.equal / report.compared * 100:.1f}%)")
    print()
    _print_table(report, args.show)
    print(f"\nRecommendation: {report.recommendation}")
    print(f"Preference order: {', '.join(rank_sources(report))}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
