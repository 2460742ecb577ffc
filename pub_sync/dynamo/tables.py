import time
from typing import Optional

from botocore.exceptions import ClientError

from .client import get_dynamo_resource, table_name

_THROUGHPUT = {"ReadCapacityUnits": 5, "WriteCapacityUnits": 5}


def _gsi(index_name: str, hash_key: str, range_key: Optional[str] = None) -> dict:
    key_schema = [{"AttributeName": hash_key, "KeyType": "HASH"}]
    if range_key:
        key_schema.append({"AttributeName": range_key, "KeyType": "RANGE"})
    return {
        "IndexName": index_name,
        "KeySchema": key_schema,
        "Projection": {"ProjectionType": "ALL"},
        "ProvisionedThroughput": dict(_THROUGHPUT),
    }


TABLES = {
    "publications": {
        "KeySchema": [{"AttributeName": "id", "KeyType": "HASH"}],
        "AttributeDefinitions": [
            {"AttributeName": "id", "AttributeType": "S"},
            {"AttributeName": "pmid", "AttributeType": "S"},
            {"AttributeName": "doi_key", "AttributeType": "S"},
            {"AttributeName": "journal", "AttributeType": "S"},
            {"AttributeName": "publication_date", "AttributeType": "S"},
        ],
        "GlobalSecondaryIndexes": [
            _gsi("by_pmid", "pmid"),
            _gsi("by_doi", "doi_key"),
            _gsi("by_journal", "journal", "publication_date"),
        ],
        "ProvisionedThroughput": dict(_THROUGHPUT),
    },
    # one item per job: last successful run watermark and run metadata
    "sync_state": {
        "KeySchema": [{"AttributeName": "source_key", "KeyType": "HASH"}],
        "AttributeDefinitions": [{"AttributeName": "source_key", "AttributeType": "S"}],
        "ProvisionedThroughput": dict(_THROUGHPUT),
    },
}


def ensure_tables():
    ddb = get_dynamo_resource()
    existing = {t.name for t in ddb.tables.all()}
    for name, spec in TABLES.items():
        physical = table_name(name)
        if physical not in existing:
            try:
                ddb.create_table(TableName=physical, **spec).wait_until_exists()
            except ClientError as e:
                if e.response["Error"]["Code"] != "ResourceInUseException":
                    raise
        _ensure_gsis(ddb, physical, spec)


def _ensure_gsis(ddb, physical_name: str, spec: dict) -> None:
    """Add any index from ``spec`` that an existing table is missing."""
    client = ddb.meta.client
    try:
        desc = client.describe_table(TableName=physical_name)["Table"]
    except ClientError:
        return

    present = {g["IndexName"] for g in (desc.get("GlobalSecondaryIndexes") or [])}
    missing = [g for g in spec.get("GlobalSecondaryIndexes", []) if g["IndexName"] not in present]
    if not missing:
        return

    have_attrs = {a["AttributeName"] for a in (desc.get("AttributeDefinitions") or [])}
    spec_attrs = {a["AttributeName"]: a["AttributeType"] for a in spec.get("AttributeDefinitions", [])}

    for gsi in missing:
        new_defs = [
            {"AttributeName": k["AttributeName"], "AttributeType": spec_attrs[k["AttributeName"]]}
            for k in gsi["KeySchema"]
            if k["AttributeName"] not in have_attrs and k["AttributeName"] in spec_attrs
        ]
        params = {"TableName": physical_name, "GlobalSecondaryIndexUpdates": [{"Create": gsi}]}
        if new_defs:
            params["AttributeDefinitions"] = new_defs
        try:
            client.update_table(**params)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in {"ResourceInUseException", "ValidationException"}:
                continue
            raise
        # DynamoDB only accepts one index creation at a time per table
        time.sleep(0.2)
