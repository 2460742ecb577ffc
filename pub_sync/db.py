from __future__ import annotations

import threading

from .dynamo.client import get_dynamo_resource
from .dynamo.tables import TABLES, ensure_tables
from .logging_setup import get_logger, with_extras

logger = get_logger(__name__)

_init_lock = threading.Lock()
_initialized = False


def init_db(force: bool = False) -> None:
    """
    Make sure the publications and sync_state tables exist.

    Celery tasks and the CLI call this before every job; after the first
    successful call in a process it returns immediately unless ``force``.
    """
    global _initialized
    with _init_lock:
        if _initialized and not force:
            return
        ensure_tables()
        _initialized = True
    with_extras(logger, tables=sorted(TABLES)).info("datastore ready")


__all__ = ["init_db", "get_dynamo_resource"]
