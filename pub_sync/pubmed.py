"""
Minimal NCBI E-utilities client: esearch for ids, efetch for article XML.
"""
from __future__ import annotations

import datetime as dt
import os
import re
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

import requests
from lxml import etree
from requests.adapters import HTTPAdapter, Retry

from .logging_setup import get_logger, with_extras
from .runtime_config import RUNTIME_CONFIG
from .sanitize import sanitize_text

logger = get_logger(__name__)

HTTP_RETRIES = Retry(
    total=5, backoff_factor=0.6,
    status_forcelist=(429, 500, 502, 503, 504),
    allowed_methods=("GET",),
)
HTTP_TIMEOUT = 60

_MONTHS = {m: i for i, m in enumerate(
    ["jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec"], start=1)}
_YEAR = re.compile(r"(\d{4})")

KEYWORD_TERMS = (
    "arterial stiffness",
    "pulse wave velocity",
    "pulse wave analysis",
    "central blood pressure",
    "augmentation index",
    "sphygmocor",
    "hypertension",
    "cardiovascular",
    "vascular aging",
    "hemodynamic",
    "aortic pressure",
    "arterial compliance",
)


def _make_session() -> requests.Session:
    s = requests.Session()
    s.mount("https://", HTTPAdapter(max_retries=HTTP_RETRIES))
    s.mount("http://", HTTPAdapter(max_retries=HTTP_RETRIES))
    s.headers.update({"User-Agent": RUNTIME_CONFIG.citations.user_agent})
    return s


def _text(elem: Optional[etree._Element]) -> str:
    if elem is None:
        return ""
    return "".join(elem.itertext()).strip()


def parse_month(value: str) -> int:
    v = (value or "").strip().lower()
    if v.isdigit():
        n = int(v)
        return n if 1 <= n <= 12 else 1
    return _MONTHS.get(v[:3], 1)


def parse_pub_date(pub_date: Optional[etree._Element]) -> Optional[str]:
    """ISO date from a ``PubDate`` element; MedlineDate ranges collapse to Jan 1 of their year."""
    if pub_date is None:
        return None
    year = _text(pub_date.find("Year"))
    if year.isdigit():
        month = parse_month(_text(pub_date.find("Month")))
        day_raw = _text(pub_date.find("Day"))
        day = int(day_raw) if day_raw.isdigit() else 1
        try:
            return dt.date(int(year), month, day).isoformat()
        except ValueError:
            return dt.date(int(year), month, 1).isoformat()
    m = _YEAR.search(_text(pub_date.find("MedlineDate")))
    if m:
        return dt.date(int(m.group(1)), 1, 1).isoformat()
    return None


def parse_authors(author_list: Optional[etree._Element]) -> str:
    if author_list is None:
        return "Unknown"
    names = []
    for author in author_list.findall("Author"):
        last = _text(author.find("LastName"))
        initials = _text(author.find("Initials")) or _text(author.find("ForeName"))
        if last and initials:
            names.append(f"{last} {initials}")
        elif last:
            names.append(last)
        else:
            collective = _text(author.find("CollectiveName"))
            if collective:
                names.append(collective)
    return ", ".join(names) or "Unknown"


def parse_abstract(abstract: Optional[etree._Element]) -> Optional[str]:
    # structured abstracts keep their labels so they can be re-segmented later
    if abstract is None:
        return None
    parts = []
    for node in abstract.findall("AbstractText"):
        body = _text(node)
        if not body:
            continue
        label = (node.get("Label") or "").strip()
        parts.append(f"{label}: {body}" if label else body)
    return " ".join(parts) or None


def parse_doi(article: etree._Element) -> Optional[str]:
    for loc in article.findall("ELocationID"):
        if (loc.get("EIdType") or "").lower() == "doi" and _text(loc):
            return _text(loc)
    return None


def extract_keywords(title: str, abstract: Optional[str]) -> List[str]:
    text = f"{title} {abstract or ''}".lower()
    return [term for term in KEYWORD_TERMS if term in text]


def parse_article(node: etree._Element) -> Optional[Dict[str, Any]]:
    citation = node.find("MedlineCitation")
    if citation is None:
        return None
    pmid = _text(citation.find("PMID"))
    article = citation.find("Article")
    if not pmid or article is None:
        return None
    title = sanitize_text(_text(article.find("ArticleTitle")))
    abstract = parse_abstract(article.find("Abstract"))
    return {
        "pmid": pmid,
        "title": title,
        "authors": parse_authors(article.find("AuthorList")),
        "journal": _text(article.find("Journal/Title")),
        "publication_date": parse_pub_date(article.find("Journal/JournalIssue/PubDate")),
        "abstract": abstract,
        "doi": parse_doi(article),
        "keywords": extract_keywords(title, abstract),
        "pubmed_url": f"https://pubmed.ncbi.nlm.nih.gov/{pmid}/",
        "status": "approved",
    }


class PubMedClient:
    def __init__(
        self,
        session: Optional[requests.Session] = None,
        *,
        base_url: Optional[str] = None,
        database: Optional[str] = None,
        batch_size: Optional[int] = None,
        delay_seconds: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        cfg = RUNTIME_CONFIG.pubmed
        self.session = session or _make_session()
        self.base_url = (base_url or cfg.base_url).rstrip("/")
        self.database = database or cfg.database
        self.batch_size = batch_size or cfg.fetch_batch_size
        self.delay_seconds = cfg.request_delay_seconds if delay_seconds is None else delay_seconds
        self.api_key = os.environ.get("NCBI_API_KEY")
        self._sleep = sleep

    def _params(self, **extra: Any) -> Dict[str, Any]:
        params: Dict[str, Any] = {"db": self.database, "retmode": "xml"}
        if self.api_key:
            params["api_key"] = self.api_key
        params.update(extra)
        return params

    def search(self, term: str, max_results: int = 100, since: Optional[dt.datetime] = None) -> List[str]:
        extra: Dict[str, Any] = {"term": term, "retmax": max_results}
        if since is not None:
            extra.update({"datetype": "edat", "mindate": since.strftime("%Y/%m/%d"), "maxdate": "3000"})
        log = with_extras(logger, term=term, max_results=max_results, since=since)
        try:
            r = self.session.get(f"{self.base_url}/esearch.fcgi", params=self._params(**extra), timeout=HTTP_TIMEOUT)
            r.raise_for_status()
            root = etree.fromstring(r.content)
        except (requests.RequestException, etree.XMLSyntaxError) as e:
            log.warning(f"PubMed search failed: {e}")
            return []
        ids = [_text(node) for node in root.findall("IdList/Id")]
        ids = [i for i in ids if i]
        log.info(f"PubMed search returned {len(ids)} ids")
        return ids

    def fetch_details(
        self,
        ids: Sequence[str],
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> List[Dict[str, Any]]:
        """
        Fetch article records in batches; a failed batch is logged and skipped.

        ``should_stop`` is polled before every efetch request. Once it returns
        true no further request is made and the records fetched so far are
        returned.
        """
        stop = should_stop or (lambda: False)
        out: List[Dict[str, Any]] = []
        ids = [i for i in ids if i]
        for start in range(0, len(ids), self.batch_size):
            if stop():
                with_extras(logger, fetched=len(out), remaining=len(ids) - start).info("PubMed fetch stopped early")
                break
            batch = ids[start:start + self.batch_size]
            try:
                r = self.session.get(
                    f"{self.base_url}/efetch.fcgi",
                    params=self._params(id=",".join(batch)),
                    timeout=HTTP_TIMEOUT,
                )
                r.raise_for_status()
                root = etree.fromstring(r.content)
                for node in root.findall("PubmedArticle"):
                    pub = parse_article(node)
                    if pub:
                        out.append(pub)
            except (requests.RequestException, etree.XMLSyntaxError) as e:
                with_extras(logger, start=start, size=len(batch)).warning(f"PubMed fetch batch failed: {e}")
            if start + self.batch_size < len(ids) and not stop():
                self._sleep(self.delay_seconds)
        return out
