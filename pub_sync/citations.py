"""
Citation counts from several bibliometric sources, and how to combine them.

Each source is a callable ``source(doi) -> Optional[int]`` that never raises:
network errors, non-2xx responses and malformed payloads are logged and
folded into ``None`` ("no data"). ``observe`` fans one DOI out to every
source concurrently; ``compare_sources`` walks a sample serially, with a
fixed delay between DOIs, and reports which source to trust.
"""
from __future__ import annotations

import os
import re
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

import requests
from requests.adapters import HTTPAdapter, Retry

from .logging_setup import get_logger, with_extras
from .runtime_config import RUNTIME_CONFIG

logger = get_logger(__name__)


def _info(msg: str, **extras):
    if extras:
        with_extras(logger, **extras).info(msg)
    else:
        logger.info(msg)


def _warn(msg: str, **extras):
    if extras:
        with_extras(logger, **extras).warning(msg)
    else:
        logger.warning(msg)


OPENALEX_BASE = "https://api.openalex.org"
CROSSREF_BASE = "https://api.crossref.org/works"
OPENALEX_BATCH_SIZE = 50
OPENALEX_BATCH_DELAY = 0.1

HTTP_RETRIES = Retry(
    total=5, backoff_factor=0.6,
    status_forcelist=(429, 500, 502, 503, 504),
    allowed_methods=("GET",),
)
HTTP_TIMEOUT = 30

_DOI_PREFIX = re.compile(r"^(?:https?://(?:dx\.)?doi\.org/|doi:)", re.IGNORECASE)

CitationObservation = Dict[str, Optional[int]]
Fetcher = Callable[[str], Optional[int]]


def normalize_doi(doi: Optional[str]) -> str:
    if not doi or not isinstance(doi, str):
        return ""
    return _DOI_PREFIX.sub("", doi.strip()).strip().lower()


def _mailto() -> str:
    return os.environ.get("OPENALEX_EMAIL") or os.environ.get("CROSSREF_MAILTO") or RUNTIME_CONFIG.citations.mailto


def make_session(user_agent: Optional[str] = None, mailto: Optional[str] = None) -> requests.Session:
    s = requests.Session()
    s.mount("https://", HTTPAdapter(max_retries=HTTP_RETRIES))
    s.mount("http://", HTTPAdapter(max_retries=HTTP_RETRIES))
    agent = user_agent or RUNTIME_CONFIG.citations.user_agent
    s.headers.update({"User-Agent": f"{agent} (mailto:{mailto or _mailto()})"})
    return s


def _as_count(value: Any) -> Optional[int]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)) and value >= 0:
        return int(value)
    return None


class CitationSource:
    name = "source"

    def __init__(self, session: Optional[requests.Session] = None, *, mailto: Optional[str] = None,
                 timeout: int = HTTP_TIMEOUT):
        self.mailto = mailto or _mailto()
        self.session = session or make_session(mailto=self.mailto)
        self.timeout = timeout

    def url_for(self, doi: str) -> str:
        raise NotImplementedError

    def extract(self, payload: Dict[str, Any]) -> Any:
        raise NotImplementedError

    def __call__(self, doi: str) -> Optional[int]:
        clean = normalize_doi(doi)
        if not clean:
            return None
        try:
            r = self.session.get(self.url_for(clean), params={"mailto": self.mailto}, timeout=self.timeout)
        except requests.RequestException as e:
            _warn("Citation source network error", source=self.name, doi=clean, error=str(e))
            return None
        if r.status_code == 404:
            return None
        if not r.ok:
            _warn("Citation source HTTP error", source=self.name, doi=clean, status=r.status_code)
            return None
        try:
            payload = r.json()
        except ValueError as e:
            _warn("Citation source returned malformed JSON", source=self.name, doi=clean, error=str(e))
            return None
        if not isinstance(payload, dict):
            return None
        return _as_count(self.extract(payload))


class OpenAlexSource(CitationSource):
    name = "openalex"

    def url_for(self, doi: str) -> str:
        return f"{OPENALEX_BASE}/works/doi:{doi}"

    def extract(self, payload: Dict[str, Any]) -> Any:
        return payload.get("cited_by_count")

    def fetch_batch(
        self,
        dois: Sequence[str],
        *,
        page_size: int = OPENALEX_BATCH_SIZE,
        delay_seconds: float = OPENALEX_BATCH_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ) -> Dict[str, int]:
        """
        Look up many DOIs with the ``doi:a|b|...`` filter, one page at a time.

        Returns lowercase DOI -> ``cited_by_count``. DOIs OpenAlex does not
        know are simply absent; a failed page is logged and skipped.
        """
        cleaned = [d for d in (normalize_doi(x) for x in dois) if d]
        results: Dict[str, int] = {}
        for start in range(0, len(cleaned), page_size):
            page = cleaned[start:start + page_size]
            params = {
                "filter": "doi:" + "|".join(page),
                "per-page": str(page_size),
                "select": "doi,cited_by_count",
                "mailto": self.mailto,
            }
            try:
                r = self.session.get(f"{OPENALEX_BASE}/works", params=params, timeout=self.timeout)
                r.raise_for_status()
                payload = r.json() or {}
                for work in payload.get("results") or []:
                    doi = normalize_doi(work.get("doi"))
                    if doi:
                        results[doi] = _as_count(work.get("cited_by_count")) or 0
            except (requests.RequestException, ValueError) as e:
                _warn("OpenAlex batch lookup failed", page_start=start, size=len(page), error=str(e))
            if start + page_size < len(cleaned):
                sleep(delay_seconds)
        _info("OpenAlex batch lookup done", requested=len(cleaned), found=len(results))
        return results


class CrossrefSource(CitationSource):
    name = "crossref"

    def url_for(self, doi: str) -> str:
        return f"{CROSSREF_BASE}/{doi}"

    def extract(self, payload: Dict[str, Any]) -> Any:
        message = payload.get("message")
        return message.get("is-referenced-by-count") if isinstance(message, dict) else None


SOURCE_TYPES = {
    OpenAlexSource.name: OpenAlexSource,
    CrossrefSource.name: CrossrefSource,
}


def default_sources(session: Optional[requests.Session] = None) -> Dict[str, CitationSource]:
    """Instantiate the configured sources, in configured (preference) order."""
    sess = session or make_session()
    out: Dict[str, CitationSource] = {}
    for name in RUNTIME_CONFIG.citations.sources:
        cls = SOURCE_TYPES.get(name)
        if cls is None:
            _warn("Unknown citation source in config; skipping", source=name)
            continue
        out[name] = cls(session=sess)
    return out


# -------------------------------
# Reconciliation
# -------------------------------
@dataclass(frozen=True)
class ReconciledCount:
    value: Optional[int]
    source: Optional[str]
    coverage: int

    def to_dict(self) -> Dict[str, Any]:
        return {"value": self.value, "source": self.source, "coverage": self.coverage}


def prefetch(
    dois: Sequence[str],
    sources: Mapping[str, Fetcher],
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, Dict[str, int]]:
    """
    Ask every source that supports batch lookup (``fetch_batch``) for a whole
    page of DOIs at once. Returns source name -> lowercase DOI -> count.
    """
    out: Dict[str, Dict[str, int]] = {}
    for name, source in sources.items():
        fetch_batch = getattr(source, "fetch_batch", None)
        if callable(fetch_batch):
            out[name] = fetch_batch(dois, sleep=sleep)
    return out


def observe(
    doi: str,
    sources: Mapping[str, Fetcher],
    max_workers: Optional[int] = None,
    prefetched: Optional[Mapping[str, Mapping[str, int]]] = None,
) -> CitationObservation:
    """
    Query every source for one DOI concurrently. Sources present in
    ``prefetched`` are not called; their value is read from the page lookup.
    """
    if not sources:
        return {}
    prefetched = prefetched or {}
    found: CitationObservation = {
        name: _as_count(prefetched[name].get(normalize_doi(doi))) for name in sources if name in prefetched
    }
    live = {name: fetch for name, fetch in sources.items() if name not in prefetched}
    if live:
        with ThreadPoolExecutor(max_workers=max_workers or len(live)) as executor:
            futures = {executor.submit(fetch, doi): name for name, fetch in live.items()}
            for future in as_completed(futures):
                name = futures[future]
                try:
                    found[name] = _as_count(future.result())
                except Exception as e:
                    # a misbehaving fetcher only costs its own observation
                    _warn("Citation source raised", source=name, doi=doi, error=str(e))
                    found[name] = None
    return {name: found.get(name) for name in sources}


def coverage(observation: Mapping[str, Optional[int]]) -> int:
    return sum(1 for v in observation.values() if v is not None)


def reconcile(observation: Mapping[str, Optional[int]], preference: Optional[Sequence[str]] = None) -> ReconciledCount:
    """
    Pick one count: the first source in ``preference`` that has a value,
    then any other source in observation order.
    """
    order = list(preference or [])
    order += [name for name in observation if name not in order]
    for name in order:
        value = observation.get(name)
        if value is not None:
            return ReconciledCount(value=value, source=name, coverage=coverage(observation))
    return ReconciledCount(value=None, source=None, coverage=0)


# -------------------------------
# Comparative evaluation
# -------------------------------
@dataclass
class SourceStats:
    name: str
    hits: int = 0
    total: int = 0
    coverage_pct: float = 0.0
    mean: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "hits": self.hits,
            "total": self.total,
            "coverage_pct": round(self.coverage_pct, 1),
            "mean": round(self.mean, 2),
        }


@dataclass
class ComparisonReport:
    sample_size: int
    sources: Dict[str, SourceStats]
    compared: int = 0
    higher: Dict[str, int] = field(default_factory=dict)
    equal: int = 0
    coverage_leader: Optional[str] = None
    total_leader: Optional[str] = None
    recommended: Optional[str] = None
    recommendation: str = ""
    observations: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self, include_observations: bool = False) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "sample_size": self.sample_size,
            "sources": {name: s.to_dict() for name, s in self.sources.items()},
            "compared": self.compared,
            "higher": dict(self.higher),
            "equal": self.equal,
            "coverage_leader": self.coverage_leader,
            "total_leader": self.total_leader,
            "recommended": self.recommended,
            "recommendation": self.recommendation,
        }
        if include_observations:
            out["observations"] = list(self.observations)
        return out


def _unique_leader(values: Mapping[str, float]) -> Optional[str]:
    if not values:
        return None
    best = max(values.values())
    leaders = [name for name, v in values.items() if v == best]
    return leaders[0] if len(leaders) == 1 else None


def _recommendation_text(report: ComparisonReport) -> str:
    if report.sample_size == 0:
        return "No publications with DOIs were sampled; nothing to recommend."
    if report.recommended:
        s = report.sources[report.recommended]
        return (
            f"{s.name} has the best coverage ({s.coverage_pct:.1f}%) and reports the most "
            f"total citations ({s.total}); prefer {s.name}."
        )
    parts = []
    if report.coverage_leader:
        s = report.sources[report.coverage_leader]
        parts.append(f"{s.name} has better coverage ({s.coverage_pct:.1f}%)")
    else:
        parts.append("coverage is tied")
    if report.total_leader:
        s = report.sources[report.total_leader]
        parts.append(f"{s.name} reports more total citations ({s.total})")
    else:
        parts.append("total citations are tied")
    return "; ".join(parts) + ". No single source wins both; choose based on which matters more."


def rank_sources(report: ComparisonReport) -> List[str]:
    """Preference order: coverage first, then total reported citations."""
    ranked = sorted(report.sources.values(), key=lambda s: (-s.hits, -s.total, s.name))
    return [s.name for s in ranked]


def preference_order(ranking: Optional[Sequence[str]], sources: Iterable[str]) -> List[str]:
    """A stored ranking first, restricted to configured sources, then the rest in configured order."""
    names = list(sources)
    order = [name for name in (ranking or []) if name in names]
    return order + [name for name in names if name not in order]


def _item_doi(item: Union[str, Mapping[str, Any]]) -> str:
    if isinstance(item, Mapping):
        return normalize_doi(item.get("doi"))
    return normalize_doi(item)


def compare_sources(
    items: Iterable[Union[str, Mapping[str, Any]]],
    sources: Mapping[str, Fetcher],
    delay_seconds: Optional[float] = None,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> ComparisonReport:
    """Query every source for every sampled DOI and summarize agreement and coverage."""
    delay = RUNTIME_CONFIG.citations.request_delay_seconds if delay_seconds is None else delay_seconds
    dois = [d for d in (_item_doi(i) for i in items) if d]
    report = ComparisonReport(
        sample_size=len(dois),
        sources={name: SourceStats(name=name) for name in sources},
        higher={name: 0 for name in sources},
    )

    for idx, doi in enumerate(dois):
        obs = observe(doi, sources)
        report.observations.append({"doi": doi, "counts": dict(obs)})
        for name, value in obs.items():
            if value is not None:
                report.sources[name].hits += 1
                report.sources[name].total += value
        if sources and coverage(obs) == len(sources):
            report.compared += 1
            top = max(obs.values())
            winners = [name for name, v in obs.items() if v == top]
            if len(winners) == 1:
                report.higher[winners[0]] += 1
            else:
                report.equal += 1
        if idx + 1 < len(dois) and delay > 0:
            sleep(delay)

    for s in report.sources.values():
        s.coverage_pct = (s.hits / report.sample_size * 100.0) if report.sample_size else 0.0
        s.mean = (s.total / s.hits) if s.hits else 0.0

    if report.sample_size:
        report.coverage_leader = _unique_leader({n: s.hits for n, s in report.sources.items()})
        report.total_leader = _unique_leader({n: s.total for n, s in report.sources.items()})
    if report.coverage_leader and report.coverage_leader == report.total_leader:
        report.recommended = report.coverage_leader
    report.recommendation = _recommendation_text(report)

    _info(
        "Citation source comparison done",
        sample_size=report.sample_size,
        compared=report.compared,
        coverage_leader=report.coverage_leader,
        total_leader=report.total_leader,
    )
    return report
