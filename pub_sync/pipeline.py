from __future__ import annotations

import argparse
import datetime as dt
import json
import logging
import os
import random
import sys
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import requests

from .abstracts import render_plain, segment_abstract
from .citations import (
    OPENALEX_BATCH_SIZE,
    ComparisonReport,
    Fetcher,
    compare_sources,
    default_sources,
    normalize_doi,
    observe,
    preference_order,
    prefetch,
    rank_sources,
    reconcile,
)
from .db import init_db
from .dynamo.publications_repo import PublicationsRepo
from .journals import aggregate_journal_counts, group_journal_counts, normalize_journal_name
from .logging_setup import get_logger, with_extras
from .pubmed import PubMedClient
from .runtime_config import RUNTIME_CONFIG
from .sanitize import sanitize_text
from .sync_tracker import (
    KIND_FULL,
    KIND_INCREMENTAL,
    AbstractRefreshTracker,
    AlreadyRunningError,
    CitationTracker,
    JobTracker,
    SyncTracker,
    abstract_refresh_tracker,
    citation_tracker,
    sync_tracker,
)

SLACK_WEBHOOK = os.environ.get("SLACK_WEBHOOK_URL")
SOURCE_KEY_SYNC = "pubmed:sync"
SOURCE_KEY_CITATIONS = "citations:refresh"

logger = get_logger(__name__)


def _slack(msg: str, *, level: str = "info", extra: Optional[Dict[str, Any]] = None) -> None:
    if not SLACK_WEBHOOK:
        return
    payload = {"text": f"*[{level.upper()}]* {msg}"}
    if extra:
        payload["attachments"] = [
            {"text": "```" + json.dumps(extra, ensure_ascii=False, indent=2, default=str) + "```"}
        ]
    try:
        requests.post(SLACK_WEBHOOK, json=payload, timeout=10)
    except Exception:
        logger.debug("Slack send failed", exc_info=True)


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _finish(tracker: JobTracker, out: Dict[str, Any]) -> Dict[str, Any]:
    """End a run cooperatively: cancelled if asked to stop, completed otherwise."""
    if tracker.is_cancel_requested():
        tracker.cancelled()
    else:
        tracker.complete()
    out["status"] = tracker.get_status()["status"]
    return out


# -------------------------------
# Publication sync
# -------------------------------
def review_status(pub: Mapping[str, Any]) -> str:
    """Records missing a title or venue are held for manual review."""
    if pub.get("status") == "pending" or not pub.get("title") or not pub.get("journal"):
        return "pending"
    return "approved"


def prepare_publication(pub: Mapping[str, Any]) -> Dict[str, Any]:
    out = dict(pub)
    out["title"] = sanitize_text(pub.get("title"))
    out["authors"] = sanitize_text(pub.get("authors")) or "Unknown"
    journal = sanitize_text(pub.get("journal"))
    out["journal"] = normalize_journal_name(journal) or journal
    if pub.get("abstract"):
        out["abstract"] = sanitize_text(pub.get("abstract"))
    out["status"] = review_status(out)
    return out


def resolve_incremental_since(
    tracker: Optional[JobTracker] = None,
    repo: Optional[PublicationsRepo] = None,
    now: Optional[dt.datetime] = None,
) -> dt.datetime:
    """
    Lower bound for an incremental sync: the in-process success watermark,
    then the persisted one, then a fixed lookback from ``now``.
    """
    tracker = tracker or sync_tracker
    if tracker.last_success_time is not None:
        return tracker.last_success_time
    if repo is not None:
        persisted = repo.get_watermark(SOURCE_KEY_SYNC)
        if persisted is not None:
            return persisted
    now = now or _utcnow()
    return now - dt.timedelta(days=RUNTIME_CONFIG.sync.incremental_lookback_days)


def _ingest_one(pub: Dict[str, Any], repo: PublicationsRepo, dry_run: bool, stats: Dict[str, int]) -> None:
    existing = repo.get_by_pmid(pub["pmid"])
    if existing is None and pub.get("doi"):
        existing = repo.get_by_doi(pub["doi"])

    if existing is not None:
        stats["skipped"] += 1
        if not dry_run:
            repo.update_publication(existing["id"], {
                "title": pub.get("title"),
                "authors": pub.get("authors"),
                "journal": pub.get("journal"),
                "abstract": pub.get("abstract"),
                "doi": pub.get("doi"),
                "publication_date": pub.get("publication_date"),
            })
        return

    stats["imported"] += 1
    stats[pub["status"]] += 1
    if not dry_run:
        repo.create_publication(pub)


def run_sync(
    kind: str = KIND_FULL,
    *,
    tracker: Optional[SyncTracker] = None,
    client: Optional[PubMedClient] = None,
    repo: Optional[PublicationsRepo] = None,
    dry_run: bool = False,
    max_per_term: Optional[int] = None,
    since: Optional[dt.datetime] = None,
    search_terms: Optional[Sequence[str]] = None,
) -> Dict[str, Any]:
    """
    Import publications for every configured search term.

    Raises ``AlreadyRunningError`` when a sync is in progress; every other
    failure ends the run in the ``error`` state.
    """
    tracker = tracker or sync_tracker
    tracker.start(kind, dry_run=dry_run)

    stats = {"imported": 0, "skipped": 0, "approved": 0, "pending": 0}
    out: Dict[str, Any] = {"kind": kind, "dry_run": dry_run, "since": None, "processed": 0, "total": 0}
    started_at = tracker.start_time or _utcnow()
    try:
        client = client or PubMedClient()
        repo = repo or PublicationsRepo()
        per_term = max_per_term or RUNTIME_CONFIG.pubmed.max_per_term
        terms = list(search_terms or RUNTIME_CONFIG.pubmed.search_terms)
        if kind == KIND_INCREMENTAL and since is None:
            since = resolve_incremental_since(tracker, repo)
        window = since if kind == KIND_INCREMENTAL else None
        out["since"] = window.isoformat() if window else None

        seen: set = set()
        processed = total = 0
        for term in terms:
            if tracker.is_cancel_requested():
                break
            tracker.update_phase(f"Searching PubMed: {term[:60]}")
            ids = [i for i in client.search(term, per_term, since=window) if i not in seen]
            seen.update(ids)
            total += len(ids)
            tracker.update_progress(processed, total)
            if not ids or tracker.is_cancel_requested():
                continue

            tracker.update_phase(f"Fetching details for {len(ids)} publications...")
            for raw in client.fetch_details(ids, should_stop=tracker.is_cancel_requested):
                if tracker.is_cancel_requested():
                    break
                _ingest_one(prepare_publication(raw), repo, dry_run, stats)
                processed += 1
                tracker.update_progress(processed, total)
                tracker.update_stats(**stats)

        out.update(processed=processed, total=total, **stats)
        if not dry_run and not tracker.is_cancel_requested():
            repo.set_watermark(SOURCE_KEY_SYNC, started_at, kind=kind, **stats)
        _finish(tracker, out)
    except Exception as e:
        with_extras(logger, kind=kind, dry_run=dry_run).exception("sync failed")
        tracker.error(str(e))
        out.update(stats)
        out.update(status=tracker.get_status()["status"], error=str(e))

    _slack("Publication sync finished", level="error" if out["status"] == "error" else "info", extra=out)
    return out


# -------------------------------
# Citation refresh
# -------------------------------
def compare_citation_sources(
    *,
    repo: Optional[PublicationsRepo] = None,
    sources: Optional[Mapping[str, Fetcher]] = None,
    sample_size: Optional[int] = None,
    delay_seconds: Optional[float] = None,
    seed: Optional[int] = None,
    persist: bool = True,
    sleep: Callable[[float], None] = time.sleep,
) -> ComparisonReport:
    """
    Compare the sources on a random sample of stored DOIs and, unless
    ``persist`` is false, store the resulting preference order for
    ``refresh_citations``.
    """
    repo = repo or PublicationsRepo()
    sources = sources or default_sources()
    cfg = RUNTIME_CONFIG.citations
    items = list(repo.iter_with_doi())
    n = sample_size or cfg.sample_size
    sample = random.Random(seed).sample(items, min(n, len(items)))
    delay = cfg.request_delay_seconds if delay_seconds is None else delay_seconds

    report = compare_sources(sample, sources, delay_seconds=delay, sleep=sleep)
    ranking = rank_sources(report)
    if persist and report.sample_size:
        repo.set_source_ranking(ranking, sample_size=report.sample_size, recommended=report.recommended)
    with_extras(logger, sample_size=report.sample_size, ranking=ranking, persisted=persist).info(
        "citation source comparison done"
    )
    return report


def refresh_citations(
    *,
    tracker: Optional[CitationTracker] = None,
    repo: Optional[PublicationsRepo] = None,
    sources: Optional[Mapping[str, Fetcher]] = None,
    preference: Optional[Sequence[str]] = None,
    limit: Optional[int] = None,
    dry_run: bool = False,
    delay_seconds: Optional[float] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, Any]:
    """
    Re-fetch and reconcile citation counts for every stored DOI.

    Sources are preferred in the order given, else the ranking stored by the
    last ``compare_citation_sources`` run, else configured order. Sources
    with a batch lookup are asked once per page of DOIs.
    """
    tracker = tracker or citation_tracker
    tracker.start(0, dry_run=dry_run)

    out: Dict[str, Any] = {"dry_run": dry_run, "processed": 0, "total": 0, "updated": 0, "no_data": 0}
    try:
        repo = repo or PublicationsRepo()
        sources = sources or default_sources()
        order = preference_order(preference or repo.get_source_ranking(), sources)
        out["preference"] = order
        delay = RUNTIME_CONFIG.citations.request_delay_seconds if delay_seconds is None else delay_seconds
        items = list(repo.iter_with_doi(limit=limit))
        out["total"] = len(items)
        tracker.update_progress(0, 0, total=len(items))

        for start in range(0, len(items), OPENALEX_BATCH_SIZE):
            if tracker.is_cancel_requested():
                break
            page = items[start:start + OPENALEX_BATCH_SIZE]
            prefetched = prefetch([normalize_doi(it.get("doi")) for it in page], sources, sleep=sleep)
            per_doi_calls = len(prefetched) < len(sources)

            for item in page:
                if tracker.is_cancel_requested():
                    break
                doi = normalize_doi(item.get("doi"))
                result = reconcile(observe(doi, sources, prefetched=prefetched), order)
                if result.value is None:
                    out["no_data"] += 1
                elif result.value != int(item.get("citation_count") or 0) or result.source != item.get("citation_source"):
                    if not dry_run:
                        repo.update_publication(item["id"], {
                            "citation_count": result.value,
                            "citation_source": result.source,
                            "citations_updated_at": _utcnow().isoformat(),
                        })
                    out["updated"] += 1
                out["processed"] += 1
                tracker.update_progress(out["processed"], out["updated"])
                if per_doi_calls and out["processed"] < len(items) and delay > 0:
                    sleep(delay)

        if not dry_run and not tracker.is_cancel_requested():
            repo.set_watermark(SOURCE_KEY_CITATIONS, tracker.start_time or _utcnow(), updated=out["updated"])
        _finish(tracker, out)
    except Exception as e:
        with_extras(logger, dry_run=dry_run).exception("citation refresh failed")
        tracker.error(str(e))
        out.update(status=tracker.get_status()["status"], error=str(e))

    _slack("Citation refresh finished", extra=out)
    return out


# -------------------------------
# Abstract refresh
# -------------------------------
def refresh_abstracts(
    *,
    tracker: Optional[AbstractRefreshTracker] = None,
    client: Optional[PubMedClient] = None,
    repo: Optional[PublicationsRepo] = None,
    limit: Optional[int] = None,
    dry_run: bool = False,
) -> Dict[str, Any]:
    """Re-fetch abstracts for stored publications that have none."""
    tracker = tracker or abstract_refresh_tracker
    tracker.start(0, dry_run=dry_run)

    out: Dict[str, Any] = {"dry_run": dry_run, "processed": 0, "total": 0, "updated": 0, "failed": 0}
    try:
        client = client or PubMedClient()
        repo = repo or PublicationsRepo()
        items = list(repo.iter_missing_abstract(limit=limit))
        out["total"] = len(items)
        tracker.update_progress(0, 0, 0, total=len(items))

        batch_size = RUNTIME_CONFIG.pubmed.fetch_batch_size
        for start in range(0, len(items), batch_size):
            if tracker.is_cancel_requested():
                break
            batch = items[start:start + batch_size]
            fetched = {
                p["pmid"]: p
                for p in client.fetch_details([it["pmid"] for it in batch], should_stop=tracker.is_cancel_requested)
            }
            for item in batch:
                pub = fetched.get(item["pmid"])
                abstract = sanitize_text(pub.get("abstract")) if pub else ""
                if abstract:
                    if not dry_run:
                        repo.update_publication(item["id"], {"abstract": abstract})
                    out["updated"] += 1
                else:
                    out["failed"] += 1
                out["processed"] += 1
            tracker.update_progress(out["processed"], out["updated"], out["failed"])

        _finish(tracker, out)
    except Exception as e:
        with_extras(logger, dry_run=dry_run).exception("abstract refresh failed")
        tracker.error(str(e))
        out.update(status=tracker.get_status()["status"], error=str(e))
    return out


# -------------------------------
# Journal names
# -------------------------------
def renormalize_journals(*, repo: Optional[PublicationsRepo] = None, dry_run: bool = False) -> Dict[str, Any]:
    """Rewrite stored journal names that have a canonical form."""
    repo = repo or PublicationsRepo()
    counts = repo.journal_counts()
    changes: Dict[str, str] = {}
    for raw in counts:
        canonical = normalize_journal_name(raw)
        if canonical and canonical != raw:
            changes[raw] = canonical

    updated = 0
    if not dry_run:
        for raw, canonical in changes.items():
            updated += repo.update_journal_name(raw, canonical)

    canonical_counts = aggregate_journal_counts(counts)
    out = {
        "dry_run": dry_run,
        "distinct_before": len(counts),
        "distinct_after": len(canonical_counts),
        "renamed": changes,
        "records_updated": updated,
        "families": group_journal_counts(canonical_counts),
    }
    with_extras(logger, renamed=len(changes), records_updated=updated, dry_run=dry_run).info("journal renormalization done")
    return out


# -------------------------------
# CLI
# -------------------------------
def _cmd_sync(args: argparse.Namespace) -> Dict[str, Any]:
    return run_sync(args.kind, dry_run=args.dry_run, max_per_term=args.max_per_term)


def _cmd_compare(args: argparse.Namespace) -> Dict[str, Any]:
    report = compare_citation_sources(sample_size=args.sample, seed=args.seed, persist=not args.no_store)
    out = report.to_dict()
    out["ranking"] = rank_sources(report)
    return out


def _cmd_segment(args: argparse.Namespace) -> Dict[str, Any]:
    text = args.text if args.text is not None else sys.stdin.read()
    fragments = segment_abstract(text)
    return {"fragments": [f.to_dict() for f in fragments], "plain": render_plain(fragments)}


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Publication ingestion and normalization jobs")
    sub = p.add_subparsers(dest="cmd", required=True)

    p_sync = sub.add_parser("sync", help="Full import for every configured search term")
    p_sync.add_argument("--max-per-term", type=int, default=None)
    p_sync.add_argument("--dry-run", action="store_true")
    p_sync.add_argument("--debug", action="store_true")
    p_sync.set_defaults(func=_cmd_sync, kind=KIND_FULL)

    p_inc = sub.add_parser("sync-incremental", help="Import publications added since the last successful sync")
    p_inc.add_argument("--max-per-term", type=int, default=None)
    p_inc.add_argument("--dry-run", action="store_true")
    p_inc.add_argument("--debug", action="store_true")
    p_inc.set_defaults(func=_cmd_sync, kind=KIND_INCREMENTAL)

    p_cit = sub.add_parser("refresh-citations", help="Re-fetch and reconcile citation counts")
    p_cit.add_argument("--limit", type=int, default=None)
    p_cit.add_argument("--dry-run", action="store_true")
    p_cit.set_defaults(func=lambda args: refresh_citations(limit=args.limit, dry_run=args.dry_run))

    p_cmp = sub.add_parser("compare-citations", help="Compare citation sources on a sample and store the ranking")
    p_cmp.add_argument("--sample", type=int, default=None)
    p_cmp.add_argument("--seed", type=int, default=None)
    p_cmp.add_argument("--no-store", action="store_true", help="Report only; keep the stored ranking")
    p_cmp.set_defaults(func=_cmd_compare)

    p_abs = sub.add_parser("refresh-abstracts", help="Fill in missing abstracts from PubMed")
    p_abs.add_argument("--limit", type=int, default=None)
    p_abs.add_argument("--dry-run", action="store_true")
    p_abs.set_defaults(func=lambda args: refresh_abstracts(limit=args.limit, dry_run=args.dry_run))

    p_jn = sub.add_parser("normalize-journals", help="Rewrite stored journal names to canonical form")
    p_jn.add_argument("--dry-run", action="store_true")
    p_jn.set_defaults(func=lambda args: renormalize_journals(dry_run=args.dry_run))

    p_seg = sub.add_parser("segment-abstract", help="Split an abstract (argument or stdin) into sections")
    p_seg.add_argument("--text", default=None)
    p_seg.set_defaults(func=_cmd_segment, needs_db=False)

    return p


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if getattr(args, "debug", False):
        logger.logger.setLevel(logging.DEBUG)

    if getattr(args, "needs_db", True):
        init_db()
    try:
        out = args.func(args)
    except AlreadyRunningError as e:
        print(json.dumps({"error": str(e)}, ensure_ascii=False))
        return 1
    print(json.dumps(out, ensure_ascii=False, indent=2, default=str))
    return 1 if out.get("status") == "error" else 0


if __name__ == "__main__":
    raise SystemExit(main())
