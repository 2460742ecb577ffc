"""
Operator report for growing the journal tables.

Lists stored journal names that no table entry touches, pairs of canonical
names that look like the same venue, and names that share a family prefix
without being registered as that family's children.
"""
from __future__ import annotations

import re
from itertools import combinations
from typing import Any, Dict, List, Mapping

from thefuzz import fuzz

from .journals import JOURNAL_GROUPS, JOURNAL_NORMALIZATIONS, aggregate_journal_counts, find_parent_group

NEAR_DUPLICATE_THRESHOLD = 90

_PUNCT = re.compile(r"[^\w\s&]")
_WS = re.compile(r"\s+")


def _fold(name: str) -> str:
    return _WS.sub(" ", _PUNCT.sub(" ", name.lower())).strip()


def unmapped_names(counts: Mapping[str, int]) -> List[str]:
    """Raw names that are neither a known variant nor a known canonical name."""
    canonical = set(JOURNAL_NORMALIZATIONS.values())
    out = []
    for raw in counts:
        name = (raw or "").strip()
        if not name or name.lower() in JOURNAL_NORMALIZATIONS or name in canonical:
            continue
        if find_parent_group(name) is None:
            out.append(name)
    return sorted(out)


def near_duplicates(counts: Mapping[str, int], threshold: int = NEAR_DUPLICATE_THRESHOLD) -> List[Dict[str, Any]]:
    merged = aggregate_journal_counts(counts)
    pairs = []
    for a, b in combinations(sorted(merged), 2):
        score = fuzz.token_sort_ratio(_fold(a), _fold(b))
        if score < threshold:
            continue
        # sibling imprints of one family are expected to look alike
        ga, gb = find_parent_group(a), find_parent_group(b)
        if ga is not None and ga == gb:
            continue
        pairs.append({"a": a, "b": b, "score": score, "count_a": merged[a], "count_b": merged[b]})
    pairs.sort(key=lambda p: (-p["score"], p["a"]))
    return pairs


def family_candidates(counts: Mapping[str, int]) -> Dict[str, List[str]]:
    """Names starting with a family parent's title but not registered under it."""
    merged = aggregate_journal_counts(counts)
    out: Dict[str, List[str]] = {}
    for group in JOURNAL_GROUPS:
        prefix = group.parent.lower() + " "
        found = [
            name for name in merged
            if name.lower().startswith(prefix) and name not in group.children and find_parent_group(name) is None
        ]
        if found:
            out[group.parent] = sorted(found)
    return out


def build_report(counts: Mapping[str, int], threshold: int = NEAR_DUPLICATE_THRESHOLD) -> Dict[str, Any]:
    merged = aggregate_journal_counts(counts)
    return {
        "distinct_raw": len(counts),
        "distinct_canonical": len(merged),
        "unmapped": unmapped_names(counts),
        "near_duplicates": near_duplicates(counts, threshold),
        "family_candidates": family_candidates(counts),
    }
