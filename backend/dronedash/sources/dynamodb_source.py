"""Batch-scan telemetry source backed by a DynamoDB table.

The telemetry bridge writes raw MAVLink-derived items into the table, one per
message. A scan returns up to `limit` items in no particular order, so the
adapter sorts them newest first and keeps the first item of each kind.
"""
import logging
from typing import Any, Dict, List, Mapping, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from dronedash.schemas import KNOWN_KINDS, TelemetryFragment, effective_timestamp
from dronedash.sources.base import FetchResult


class DynamoDBSource:
    """Reads the newest battery/altitude/state items with a single scan."""

    name = "DYNAMODB"

    def __init__(self, table_name: str = "drone-telemetry", region: str = "us-east-1",
                 access_key_id: Optional[str] = None, secret_access_key: Optional[str] = None,
                 limit: int = 100, table=None):
        """Create the source.

        Args:
            table_name: DynamoDB table holding raw telemetry items.
            region: AWS region of the table.
            access_key_id: optional static credentials; both keys must be set,
                otherwise the default credential chain (IAM role) is used.
            secret_access_key: see `access_key_id`.
            limit: maximum number of items per scan.
            table: pre-built ``Table`` resource, mainly for tests.
        """
        self.table_name = table_name
        self.limit = limit
        self.logger = logging.getLogger(__name__)
        if table is None:
            kwargs: Dict[str, Any] = {"region_name": region}
            if access_key_id and secret_access_key:
                kwargs["aws_access_key_id"] = access_key_id
                kwargs["aws_secret_access_key"] = secret_access_key
            else:
                self.logger.info("No static AWS credentials configured; using default credential chain")
            table = boto3.resource("dynamodb", **kwargs).Table(table_name)
        self.table = table

    def fetch(self) -> FetchResult:
        """Scan the table and return the newest fragment of each kind."""
        try:
            response = self.table.scan(Limit=self.limit)
        except (ClientError, BotoCoreError) as e:
            self.logger.error("DynamoDB scan of %s failed: %s", self.table_name, e)
            return FetchResult.failed(str(e))

        items = response.get("Items") or []
        records = [item for item in items if isinstance(item, Mapping)]
        if len(records) != len(items):
            self.logger.warning("Skipped %d malformed items", len(items) - len(records))
        return FetchResult(fragments=select_latest(records))


def select_latest(records: List[Mapping[str, Any]]) -> List[TelemetryFragment]:
    """Newest record per kind, newest first.

    The pass stops once battery, altitude and state have each been seen. Kinds
    outside that set are kept when encountered before the stop but never
    extend the scan.
    """
    ordered = sorted(records, key=effective_timestamp, reverse=True)
    latest: Dict[str, TelemetryFragment] = {}
    for record in ordered:
        fragment = TelemetryFragment.from_record(record)
        if fragment.kind not in latest:
            latest[fragment.kind] = fragment
        if all(kind in latest for kind in KNOWN_KINDS):
            break
    return list(latest.values())
