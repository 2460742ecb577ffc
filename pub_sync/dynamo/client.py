import os

import boto3
from botocore.config import Config


def table_name(name: str) -> str:
    """Physical table name; DYNAMO_TABLE_PREFIX lets staging and prod share an account."""
    return f"{os.getenv('DYNAMO_TABLE_PREFIX', '')}{name}"


def get_dynamo_resource():
    """
    DynamoDB resource for the publications store.
    - Local development: set DYNAMO_LOCAL_URL (e.g. http://localhost:8000)
    - AWS: set AWS_REGION and the usual credential variables
    """
    region = os.getenv("AWS_REGION", "us-east-1")
    cfg = Config(retries={"max_attempts": 10, "mode": "standard"})
    local_url = os.getenv("DYNAMO_LOCAL_URL")
    if not local_url:
        return boto3.resource("dynamodb", region_name=region, config=cfg)
    return boto3.resource(
        "dynamodb",
        region_name=region,
        endpoint_url=local_url,
        aws_access_key_id=os.getenv("AWS_ACCESS_KEY_ID", "local"),
        aws_secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY", "local"),
        config=cfg,
    )
