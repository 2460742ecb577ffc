"""
Report journal names that the normalization tables do not cover yet.

  python scripts/analyze_journals.py [--threshold 90] [--from-json counts.json]
"""
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from dotenv import load_dotenv

# Allow running directly (python scripts/analyze_journals.py)
HERE = Path(__file__).resolve()
REPO_ROOT = HERE.parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

load_dotenv()

from pub_sync.dynamo.publications_repo import PublicationsRepo
from pub_sync.journal_report import NEAR_DUPLICATE_THRESHOLD, build_report
from pub_sync.journals import validate_journal_groups


def main() -> int:
    ap = argparse.ArgumentParser(description="Find unmapped and near-duplicate journal names.")
    ap.add_argument("--threshold", type=int, default=NEAR_DUPLICATE_THRESHOLD,
                    help="token_sort_ratio cutoff for near-duplicates")
    ap.add_argument("--from-json", default=None,
                    help="Read {journal: count} from a JSON file instead of DynamoDB")
    args = ap.parse_args()

    if args.from_json:
        counts = json.loads(Path(args.from_json).read_text(encoding="utf-8"))
    else:
        counts = PublicationsRepo().journal_counts()

    report = build_report(counts, threshold=args.threshold)
    report["table_problems"] = validate_journal_groups()
    print(json.dumps(report, ensure_ascii=False, indent=2))
    return 1 if report["table_problems"] else 0


if __name__ == "__main__":
    raise SystemExit(main())
