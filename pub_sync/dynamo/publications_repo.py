from __future__ import annotations

import datetime as dt
import uuid
from collections import Counter
from typing import Any, Dict, Iterator, List, Optional

from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError

from ..citations import normalize_doi
from ..logging_setup import get_logger, with_extras
from .client import get_dynamo_resource, table_name

log = get_logger(__name__)

# attributes that back an index; DynamoDB rejects empty strings for them
_INDEX_KEYS = ("pmid", "doi_key", "journal", "publication_date")

# sync_state row holding the source preference order from the last comparison
SOURCE_RANKING_KEY = "citations:ranking"


def _now_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat()


def _clean_item(d: Dict[str, Any]) -> Dict[str, Any]:
    out = {k: v for k, v in d.items() if v is not None}
    for k in _INDEX_KEYS:
        if k in out and out[k] == "":
            del out[k]
    return out


def _parse_iso(value: Optional[str]) -> Optional[dt.datetime]:
    if not value:
        return None
    try:
        d = dt.datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if d.tzinfo is None:
        d = d.replace(tzinfo=dt.timezone.utc)
    return d


class PublicationsRepo:
    def __init__(self):
        ddb = get_dynamo_resource()
        self.t_pubs = ddb.Table(table_name("publications"))
        self.t_sync = ddb.Table(table_name("sync_state"))

    # --- lookups ---
    def _first(self, index: str, key: str, value: str) -> Optional[Dict[str, Any]]:
        if not value:
            return None
        resp = self.t_pubs.query(IndexName=index, KeyConditionExpression=Key(key).eq(value), Limit=1)
        items = resp.get("Items", [])
        return items[0] if items else None

    def get_by_pmid(self, pmid: str) -> Optional[Dict[str, Any]]:
        return self._first("by_pmid", "pmid", str(pmid or ""))

    def get_by_doi(self, doi: str) -> Optional[Dict[str, Any]]:
        return self._first("by_doi", "doi_key", normalize_doi(doi))

    def get(self, pub_id: str) -> Optional[Dict[str, Any]]:
        return self.t_pubs.get_item(Key={"id": pub_id}).get("Item")

    # --- writes ---
    def create_publication(self, pub: Dict[str, Any]) -> Dict[str, Any]:
        now = _now_iso()
        item = {
            "citation_count": 0,
            **pub,
            "id": pub.get("id") or str(uuid.uuid4()),
            "doi_key": normalize_doi(pub.get("doi")),
            "created_at": now,
            "updated_at": now,
        }
        item = _clean_item(item)
        self.t_pubs.put_item(Item=item, ConditionExpression="attribute_not_exists(id)")
        return item

    def update_publication(self, pub_id: str, fields: Dict[str, Any]) -> bool:
        fields = {k: v for k, v in fields.items() if k != "id" and v is not None}
        if "doi" in fields:
            fields["doi_key"] = normalize_doi(fields["doi"])
        fields = _clean_item(fields)
        fields["updated_at"] = _now_iso()
        names = {f"#f{i}": k for i, k in enumerate(fields)}
        values = {f":v{i}": v for i, v in enumerate(fields.values())}
        expr = "SET " + ", ".join(f"#f{i} = :v{i}" for i in range(len(fields)))
        try:
            self.t_pubs.update_item(
                Key={"id": pub_id},
                UpdateExpression=expr,
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
                ConditionExpression="attribute_exists(id)",
            )
            return True
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
                with_extras(log, id=pub_id).warning("update skipped; publication not found")
                return False
            raise

    # --- scans ---
    def _scan(self, **kwargs) -> Iterator[Dict[str, Any]]:
        last_key = None
        while True:
            if last_key:
                kwargs["ExclusiveStartKey"] = last_key
            resp = self.t_pubs.scan(**kwargs)
            yield from resp.get("Items", [])
            last_key = resp.get("LastEvaluatedKey")
            if not last_key:
                break

    def iter_with_doi(self, limit: Optional[int] = None) -> Iterator[Dict[str, Any]]:
        for n, item in enumerate(self._scan(FilterExpression=Attr("doi_key").exists()), start=1):
            yield item
            if limit and n >= limit:
                return

    def iter_missing_abstract(self, limit: Optional[int] = None) -> Iterator[Dict[str, Any]]:
        fe = Attr("pmid").exists() & (Attr("abstract").not_exists() | Attr("abstract").eq(""))
        for n, item in enumerate(self._scan(FilterExpression=fe), start=1):
            yield item
            if limit and n >= limit:
                return

    def journal_counts(self) -> Dict[str, int]:
        counts: Counter = Counter()
        for item in self._scan(ProjectionExpression="journal"):
            journal = item.get("journal")
            if journal:
                counts[journal] += 1
        return dict(counts)

    def iter_by_journal(self, journal: str) -> Iterator[Dict[str, Any]]:
        last_key = None
        while True:
            kwargs = {"IndexName": "by_journal", "KeyConditionExpression": Key("journal").eq(journal)}
            if last_key:
                kwargs["ExclusiveStartKey"] = last_key
            resp = self.t_pubs.query(**kwargs)
            yield from resp.get("Items", [])
            last_key = resp.get("LastEvaluatedKey")
            if not last_key:
                break

    def update_journal_name(self, old: str, new: str) -> int:
        if not old or not new or old == new:
            return 0
        ids: List[str] = [it["id"] for it in self.iter_by_journal(old)]
        updated = 0
        for pub_id in ids:
            if self.update_publication(pub_id, {"journal": new}):
                updated += 1
        with_extras(log, old=old, new=new, updated=updated).info("journal renamed")
        return updated

    # --- watermarks (sync_state) ---
    def get_watermark(self, source_key: str) -> Optional[dt.datetime]:
        item = self.t_sync.get_item(Key={"source_key": source_key}).get("Item")
        return _parse_iso(item.get("last_success_at")) if item else None

    def set_watermark(self, source_key: str, when: dt.datetime, **meta: Any) -> None:
        self.t_sync.put_item(Item=_clean_item({
            "source_key": source_key,
            "last_success_at": when.isoformat(),
            "last_run_at": _now_iso(),
            **meta,
        }))

    # --- citation source ranking (sync_state) ---
    def get_source_ranking(self) -> List[str]:
        item = self.t_sync.get_item(Key={"source_key": SOURCE_RANKING_KEY}).get("Item")
        ranking = item.get("ranking") if item else None
        if not isinstance(ranking, list):
            return []
        return [str(name) for name in ranking if name]

    def set_source_ranking(self, ranking: List[str], **meta: Any) -> None:
        self.t_sync.put_item(Item=_clean_item({
            "source_key": SOURCE_RANKING_KEY,
            "ranking": list(ranking),
            "ranked_at": _now_iso(),
            **meta,
        }))
        with_extras(log, ranking=list(ranking)).info("citation source ranking stored")
