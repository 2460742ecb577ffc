from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Tuple
import logging
import tomllib

logger = logging.getLogger(__name__)

_DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[1] / "config" / "runtime.toml"


@dataclass(frozen=True)
class SyncConfig:
    grace_seconds: float
    history_limit: int
    incremental_lookback_days: int


@dataclass(frozen=True)
class CitationsConfig:
    sources: Tuple[str, ...]
    request_delay_seconds: float
    sample_size: int
    mailto: str
    user_agent: str


@dataclass(frozen=True)
class PubMedConfig:
    base_url: str
    database: str
    search_terms: Tuple[str, ...]
    max_per_term: int
    fetch_batch_size: int
    request_delay_seconds: float


@dataclass(frozen=True)
class RuntimeConfig:
    sync: SyncConfig
    citations: CitationsConfig
    pubmed: PubMedConfig


def _default_config() -> RuntimeConfig:
    return RuntimeConfig(
        sync=SyncConfig(grace_seconds=60.0, history_limit=20, incremental_lookback_days=365),
        citations=CitationsConfig(
            sources=("openalex", "crossref"),
            request_delay_seconds=0.1,
            sample_size=50,
            mailto="research@example.org",
            user_agent="pub_sync/1.0",
        ),
        pubmed=PubMedConfig(
            base_url="https://eutils.ncbi.nlm.nih.gov/entrez/eutils",
            database="pubmed",
            search_terms=(
                '("sphygmoCor XCEL" OR "sphygmoCor CVMS" OR "Atcor medical" OR cardiex OR "oscar 2")',
            ),
            max_per_term=100,
            fetch_batch_size=200,
            request_delay_seconds=0.35,
        ),
    )


def _safe_int(value: Any, fallback: int) -> int:
    try:
        parsed = int(value)
        return parsed if parsed > 0 else fallback
    except Exception:
        return fallback


def _safe_float(value: Any, fallback: float) -> float:
    try:
        parsed = float(value)
        return parsed if parsed >= 0 else fallback
    except Exception:
        return fallback


def _str_field(d: dict, key: str, default: str) -> str:
    val = d.get(key, default)
    if not isinstance(val, str) or not val.strip():
        return default
    return val.strip()


def _str_tuple(value: Any, fallback: Tuple[str, ...]) -> Tuple[str, ...]:
    if not isinstance(value, (list, tuple)):
        return fallback
    out = tuple(v.strip() for v in value if isinstance(v, str) and v.strip())
    return out or fallback


def _section(raw: Any, name: str) -> dict:
    sect = raw.get(name) if isinstance(raw, dict) else None
    return sect if isinstance(sect, dict) else {}


def load_runtime_config(config_path: Optional[Path] = None) -> RuntimeConfig:
    cfg = _default_config()
    path = config_path or _DEFAULT_CONFIG_PATH
    try:
        with path.open("rb") as handle:
            raw = tomllib.load(handle)
    except FileNotFoundError:
        logger.warning("Runtime config file not found; using defaults", extra={"path": str(path)})
        return cfg
    except tomllib.TOMLDecodeError:
        logger.exception("Runtime config parse failed; using defaults", extra={"path": str(path)})
        return cfg
    except Exception:
        logger.exception("Runtime config load failed; using defaults", extra={"path": str(path)})
        return cfg

    sync_raw = _section(raw, "sync")
    citations_raw = _section(raw, "citations")
    pubmed_raw = _section(raw, "pubmed")

    sync = SyncConfig(
        grace_seconds=_safe_float(sync_raw.get("grace_seconds", cfg.sync.grace_seconds), cfg.sync.grace_seconds),
        history_limit=_safe_int(sync_raw.get("history_limit", cfg.sync.history_limit), cfg.sync.history_limit),
        incremental_lookback_days=_safe_int(
            sync_raw.get("incremental_lookback_days", cfg.sync.incremental_lookback_days),
            cfg.sync.incremental_lookback_days,
        ),
    )

    citations = CitationsConfig(
        sources=_str_tuple(citations_raw.get("sources"), cfg.citations.sources),
        request_delay_seconds=_safe_float(
            citations_raw.get("request_delay_seconds", cfg.citations.request_delay_seconds),
            cfg.citations.request_delay_seconds,
        ),
        sample_size=_safe_int(citations_raw.get("sample_size", cfg.citations.sample_size), cfg.citations.sample_size),
        mailto=_str_field(citations_raw, "mailto", cfg.citations.mailto),
        user_agent=_str_field(citations_raw, "user_agent", cfg.citations.user_agent),
    )

    pubmed = PubMedConfig(
        base_url=_str_field(pubmed_raw, "base_url", cfg.pubmed.base_url),
        database=_str_field(pubmed_raw, "database", cfg.pubmed.database),
        search_terms=_str_tuple(pubmed_raw.get("search_terms"), cfg.pubmed.search_terms),
        max_per_term=_safe_int(pubmed_raw.get("max_per_term", cfg.pubmed.max_per_term), cfg.pubmed.max_per_term),
        fetch_batch_size=_safe_int(
            pubmed_raw.get("fetch_batch_size", cfg.pubmed.fetch_batch_size), cfg.pubmed.fetch_batch_size
        ),
        request_delay_seconds=_safe_float(
            pubmed_raw.get("request_delay_seconds", cfg.pubmed.request_delay_seconds),
            cfg.pubmed.request_delay_seconds,
        ),
    )

    return RuntimeConfig(sync=sync, citations=citations, pubmed=pubmed)


RUNTIME_CONFIG = load_runtime_config()
