from __future__ import annotations

from typing import Any, Dict, Optional

from .celery_app import app
from .citations import rank_sources
from .db import init_db
from .logging_setup import get_logger, with_extras
from .pipeline import (
    compare_citation_sources,
    refresh_abstracts,
    refresh_citations,
    renormalize_journals,
    run_sync,
)
from .sync_tracker import AlreadyRunningError, KIND_INCREMENTAL

logger = get_logger(__name__)


def _skipped(job: str, err: AlreadyRunningError) -> Dict[str, Any]:
    with_extras(logger, job=job).warning("job already running; skipping scheduled run")
    return {"status": "skipped", "reason": str(err)}


@app.task
def init_schema() -> str:
    init_db()
    return "OK"


@app.task(bind=True)
def sync_publications(self, kind: str = KIND_INCREMENTAL, dry_run: bool = False,
                      max_per_term: Optional[int] = None) -> Dict[str, Any]:
    init_db()
    try:
        return run_sync(kind, dry_run=dry_run, max_per_term=max_per_term)
    except AlreadyRunningError as e:
        return _skipped("sync", e)


@app.task(bind=True)
def refresh_citation_counts(self, limit: Optional[int] = None, dry_run: bool = False) -> Dict[str, Any]:
    init_db()
    try:
        return refresh_citations(limit=limit, dry_run=dry_run)
    except AlreadyRunningError as e:
        return _skipped("citations", e)


@app.task(bind=True)
def refresh_missing_abstracts(self, limit: Optional[int] = None, dry_run: bool = False) -> Dict[str, Any]:
    init_db()
    try:
        return refresh_abstracts(limit=limit, dry_run=dry_run)
    except AlreadyRunningError as e:
        return _skipped("abstracts", e)


@app.task(bind=True)
def normalize_journal_names(self, dry_run: bool = False) -> Dict[str, Any]:
    init_db()
    return renormalize_journals(dry_run=dry_run)


@app.task(bind=True)
def rank_citation_sources(self, sample_size: Optional[int] = None) -> Dict[str, Any]:
    init_db()
    report = compare_citation_sources(sample_size=sample_size)
    return {"ranking": rank_sources(report), "recommendation": report.recommendation}
