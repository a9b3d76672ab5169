from __future__ import annotations

import logging
import math
from typing import Any, Dict, Iterable, List, Optional

from botocore.exceptions import BotoCoreError, ClientError, WaiterError

from ..errors import PermanentCallFailure, StoreCallError, TransientCallError, classify_client_error, error_code
from ..schema import ExistingTable, KeyAttribute, KeyType, TableSpec

log = logging.getLogger(__name__)


def create_table_params(spec: TableSpec) -> Dict[str, Any]:
    """CreateTable request for a TableSpec (hash key, optional range key, provisioned throughput)."""
    key_schema = [{"AttributeName": spec.primary_key.name, "KeyType": "HASH"}]
    attr_defs = [{"AttributeName": spec.primary_key.name, "AttributeType": spec.primary_key.type.value}]
    if spec.sort_key is not None:
        key_schema.append({"AttributeName": spec.sort_key.name, "KeyType": "RANGE"})
        attr_defs.append({"AttributeName": spec.sort_key.name, "AttributeType": spec.sort_key.type.value})
    return {
        "TableName": spec.name,
        "KeySchema": key_schema,
        "AttributeDefinitions": attr_defs,
        "BillingMode": "PROVISIONED",
        "ProvisionedThroughput": {
            "ReadCapacityUnits": spec.read_capacity,
            "WriteCapacityUnits": spec.write_capacity,
        },
    }


def existing_from_description(desc: Dict[str, Any]) -> ExistingTable:
    """Build an ExistingTable from a DescribeTable `Table` payload."""
    types = {a["AttributeName"]: a["AttributeType"] for a in (desc.get("AttributeDefinitions") or [])}
    hash_key = range_key = None
    for k in desc.get("KeySchema") or []:
        name = k["AttributeName"]
        key_type = KeyType.parse(types.get(name))
        if key_type is None:
            raise PermanentCallFailure(
                f"table {desc.get('TableName')!r} reports no attribute type for key {name!r}",
                operation="DescribeTable",
                table_name=desc.get("TableName"),
            )
        if k["KeyType"] == "HASH":
            hash_key = KeyAttribute(name, key_type)
        elif k["KeyType"] == "RANGE":
            range_key = KeyAttribute(name, key_type)
    if hash_key is None:
        raise PermanentCallFailure(
            f"table {desc.get('TableName')!r} reports no HASH key",
            operation="DescribeTable",
            table_name=desc.get("TableName"),
        )
    return ExistingTable(
        name=desc["TableName"],
        primary_key=hash_key,
        sort_key=range_key,
        status=desc.get("TableStatus"),
    )


class TableStore:
    """
    Administrative calls against a DynamoDB(-compatible) endpoint.
    Every botocore failure surfaces as a TransientCallError or PermanentCallFailure.
    """

    def __init__(self, client) -> None:
        self.client = client

    def _call(self, operation: str, method: str, table_name: Optional[str] = None, **params):
        try:
            return getattr(self.client, method)(**params)
        except (ClientError, BotoCoreError) as exc:
            raise classify_client_error(exc, operation=operation, table_name=table_name) from exc

    def ping(self) -> List[str]:
        """Cheapest control call; raises on anything but a well-formed ListTables answer."""
        resp = self._call("ListTables", "list_tables", Limit=1)
        names = resp.get("TableNames") if isinstance(resp, dict) else None
        if not isinstance(names, list):
            raise TransientCallError(f"malformed ListTables response: {resp!r}", operation="ListTables")
        return names

    def list_table_names(self) -> List[str]:
        names: List[str] = []
        params: Dict[str, Any] = {}
        while True:
            resp = self._call("ListTables", "list_tables", **params)
            names.extend(resp.get("TableNames", []))
            last = resp.get("LastEvaluatedTableName")
            if not last:
                return names
            params = {"ExclusiveStartTableName": last}

    def describe(self, table_name: str) -> Optional[ExistingTable]:
        """Current definition of `table_name`, or None if it does not exist."""
        try:
            resp = self.client.describe_table(TableName=table_name)
        except ClientError as exc:
            if error_code(exc) == "ResourceNotFoundException":
                return None
            raise classify_client_error(exc, operation="DescribeTable", table_name=table_name) from exc
        except BotoCoreError as exc:
            raise classify_client_error(exc, operation="DescribeTable", table_name=table_name) from exc
        return existing_from_description(resp["Table"])

    def snapshot(self, names: Iterable[str]) -> Dict[str, ExistingTable]:
        """Describe every table in `names` that currently exists."""
        wanted = list(names)
        present = set(self.list_table_names())
        out: Dict[str, ExistingTable] = {}
        for name in wanted:
            if name not in present:
                continue
            table = self.describe(name)
            # may have been deleted between the two calls
            if table is not None:
                out[name] = table
        log.debug("snapshot fetched", extra={"present": sorted(out)})
        return out

    def create_table(self, spec: TableSpec) -> Dict[str, Any]:
        resp = self._call("CreateTable", "create_table", table_name=spec.name, **create_table_params(spec))
        return resp.get("TableDescription", {})

    def wait_until_active(self, table_name: str, *, timeout: float, delay: float = 1.0) -> None:
        """Block until the table reports ACTIVE, at most `timeout` seconds."""
        delay = max(delay, 0.1)
        attempts = max(1, int(math.ceil(timeout / delay)))
        waiter = self.client.get_waiter("table_exists")
        try:
            waiter.wait(
                TableName=table_name,
                # botocore sleeps in whole seconds
                WaiterConfig={"Delay": max(1, int(round(delay))), "MaxAttempts": attempts},
            )
        except WaiterError as exc:
            raise StoreCallError(
                f"table did not become ACTIVE within {timeout:g}s: {exc}",
                operation="DescribeTable",
                table_name=table_name,
                cause=exc,
            ) from exc
