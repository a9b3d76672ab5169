"""In-memory stand-in for a boto3 DynamoDB client (admin calls only)."""
from typing import Any, Dict, List, Optional

from botocore.exceptions import ClientError, WaiterError


def client_error(code: str, operation: str = "CreateTable", message: str = "boom") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


def table_description(
    name: str,
    hash_key: str,
    hash_type: str = "S",
    range_key: Optional[str] = None,
    range_type: Optional[str] = None,
    status: str = "ACTIVE",
) -> Dict[str, Any]:
    key_schema = [{"AttributeName": hash_key, "KeyType": "HASH"}]
    attrs = [{"AttributeName": hash_key, "AttributeType": hash_type}]
    if range_key:
        key_schema.append({"AttributeName": range_key, "KeyType": "RANGE"})
        attrs.append({"AttributeName": range_key, "AttributeType": range_type})
    return {
        "TableName": name,
        "KeySchema": key_schema,
        "AttributeDefinitions": attrs,
        "TableStatus": status,
    }


class _FakeWaiter:
    def __init__(self, client: "FakeDynamoClient") -> None:
        self.client = client

    def wait(self, TableName: str, WaiterConfig: Optional[Dict[str, Any]] = None) -> None:
        self.client.calls.append(("wait_table_exists", TableName))
        desc = self.client.tables.get(TableName)
        if desc is None or desc["TableStatus"] != "ACTIVE" or TableName in self.client.never_active:
            raise WaiterError(name="TableExists", reason="Max attempts exceeded", last_response={})


class FakeDynamoClient:
    def __init__(self) -> None:
        self.tables: Dict[str, Dict[str, Any]] = {}
        self.calls: List[tuple] = []
        self.create_errors: Dict[str, List[Exception]] = {}
        self.never_active: set = set()

    def add_table(self, name: str, hash_key: str, hash_type: str = "S", **kwargs: Any) -> None:
        self.tables[name] = table_description(name, hash_key, hash_type, **kwargs)

    def create_calls(self) -> List[str]:
        return [c[1] for c in self.calls if c[0] == "create_table"]

    def list_tables(self, **params: Any) -> Dict[str, Any]:
        self.calls.append(("list_tables", params))
        names = sorted(self.tables)
        start = params.get("ExclusiveStartTableName")
        if start:
            names = [n for n in names if n > start]
        limit = params.get("Limit")
        resp: Dict[str, Any] = {"TableNames": names[:limit] if limit else names}
        if limit and len(names) > limit:
            resp["LastEvaluatedTableName"] = names[limit - 1]
        return resp

    def describe_table(self, TableName: str) -> Dict[str, Any]:
        self.calls.append(("describe_table", TableName))
        if TableName not in self.tables:
            raise client_error("ResourceNotFoundException", "DescribeTable", f"Table not found: {TableName}")
        return {"Table": dict(self.tables[TableName])}

    def create_table(self, **params: Any) -> Dict[str, Any]:
        name = params["TableName"]
        self.calls.append(("create_table", name))
        queued = self.create_errors.get(name)
        if queued:
            raise queued.pop(0)
        if name in self.tables:
            raise client_error("ResourceInUseException", "CreateTable", f"Table already exists: {name}")
        desc = {
            "TableName": name,
            "KeySchema": params["KeySchema"],
            "AttributeDefinitions": params["AttributeDefinitions"],
            "TableStatus": "ACTIVE",
        }
        self.tables[name] = desc
        return {"TableDescription": dict(desc, TableStatus="CREATING")}

    def get_waiter(self, name: str) -> _FakeWaiter:
        assert name == "table_exists"
        return _FakeWaiter(self)
