from __future__ import annotations

import json
import logging
import tomllib
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .errors import InvalidSchema

logger = logging.getLogger(__name__)


class KeyType(str, Enum):
    STRING = "S"
    NUMBER = "N"
    BINARY = "B"

    @classmethod
    def parse(cls, value: Any) -> Optional["KeyType"]:
        """Accept the long name or the DynamoDB letter, case-insensitively."""
        if not isinstance(value, str):
            return None
        v = value.strip().upper()
        for member in cls:
            if v in (member.name, member.value):
                return member
        return None


@dataclass(frozen=True)
class KeyAttribute:
    name: str
    type: KeyType

    def render(self) -> str:
        return f"{self.name}:{self.type.name}"


@dataclass(frozen=True)
class TableSpec:
    name: str
    primary_key: KeyAttribute
    read_capacity: int
    write_capacity: int
    sort_key: Optional[KeyAttribute] = None

    def key_schema(self) -> Tuple[KeyAttribute, Optional[KeyAttribute]]:
        return (self.primary_key, self.sort_key)


@dataclass(frozen=True)
class ExistingTable:
    """A table as the store currently reports it."""

    name: str
    primary_key: KeyAttribute
    sort_key: Optional[KeyAttribute] = None
    status: Optional[str] = None

    def key_schema(self) -> Tuple[KeyAttribute, Optional[KeyAttribute]]:
        return (self.primary_key, self.sort_key)


@dataclass(frozen=True)
class Descriptor:
    """Desired-state schema: ordered, uniquely named tables."""

    tables: Tuple[TableSpec, ...] = ()

    def __iter__(self) -> Iterator[TableSpec]:
        return iter(self.tables)

    def __len__(self) -> int:
        return len(self.tables)

    @property
    def names(self) -> List[str]:
        return [t.name for t in self.tables]


# camelCase (as written in schema documents) -> field name
_ALIASES = {
    "name": "name",
    "tableName": "name",
    "table_name": "name",
    "primaryKeyAttribute": "primary_key_attribute",
    "primary_key_attribute": "primary_key_attribute",
    "primaryKeyType": "primary_key_type",
    "primary_key_type": "primary_key_type",
    "readCapacity": "read_capacity",
    "read_capacity": "read_capacity",
    "writeCapacity": "write_capacity",
    "write_capacity": "write_capacity",
    "sortKeyAttribute": "sort_key_attribute",
    "sort_key_attribute": "sort_key_attribute",
    "sortKeyType": "sort_key_type",
    "sort_key_type": "sort_key_type",
}


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _str_field(entry: Dict[str, Any], key: str) -> Optional[str]:
    val = entry.get(key)
    if not isinstance(val, str) or not val.strip():
        return None
    return val.strip()


def _normalize(raw: Dict[str, Any], where: str, problems: List[str]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for key, value in raw.items():
        field = _ALIASES.get(key)
        if field is None:
            problems.append(f"{where}: unknown field {key!r}")
            continue
        out[field] = value
    return out


def _parse_key(
    entry: Dict[str, Any], attr_field: str, type_field: str, where: str, label: str, problems: List[str]
) -> Optional[KeyAttribute]:
    attr = _str_field(entry, attr_field)
    raw_type = entry.get(type_field)
    if attr is None:
        problems.append(f"{where}: missing {label} key attribute")
    if raw_type is None:
        problems.append(f"{where}: missing {label} key type")
        return None
    key_type = KeyType.parse(raw_type)
    if key_type is None:
        problems.append(f"{where}: unknown {label} key type {raw_type!r} (expected STRING, NUMBER or BINARY)")
        return None
    if attr is None:
        return None
    return KeyAttribute(attr, key_type)


def _parse_capacity(entry: Dict[str, Any], field: str, where: str, problems: List[str]) -> Optional[int]:
    if field not in entry:
        problems.append(f"{where}: missing {field}")
        return None
    value = entry[field]
    if not _is_int(value):
        problems.append(f"{where}: {field} must be an integer, got {value!r}")
        return None
    if value < 1:
        problems.append(f"{where}: {field} must be >= 1, got {value}")
        return None
    return value


def parse(document: Any) -> Descriptor:
    """
    Build a Descriptor from a decoded schema document.

    The document is a list of table mappings, or a mapping with a `tables`
    list. Every structural problem is collected before raising, so a
    hand-edited file can be fixed in one go.
    """
    problems: List[str] = []
    if isinstance(document, dict):
        extra = sorted(k for k in document if k != "tables")
        if extra:
            problems.append(f"unknown top-level keys: {', '.join(extra)}")
        entries = document.get("tables")
        if entries is None:
            problems.append("missing 'tables' list")
            entries = []
    else:
        entries = document
    if not isinstance(entries, list):
        raise InvalidSchema(problems + [f"expected a list of tables, got {type(entries).__name__}"])

    specs: List[TableSpec] = []
    seen: Dict[str, int] = {}
    for idx, raw in enumerate(entries):
        where = f"tables[{idx}]"
        if not isinstance(raw, dict):
            problems.append(f"{where}: expected a mapping, got {type(raw).__name__}")
            continue
        entry = _normalize(raw, where, problems)

        name = _str_field(entry, "name")
        if name is None:
            problems.append(f"{where}: missing table name")
        else:
            where = f"{where} ({name})"
            if name in seen:
                problems.append(f"{where}: duplicate table name (first defined at tables[{seen[name]}])")
            else:
                seen[name] = idx

        primary = _parse_key(entry, "primary_key_attribute", "primary_key_type", where, "primary", problems)

        sort_key = None
        if "sort_key_attribute" in entry or "sort_key_type" in entry:
            sort_key = _parse_key(entry, "sort_key_attribute", "sort_key_type", where, "sort", problems)
            if sort_key is not None and primary is not None and sort_key.name == primary.name:
                problems.append(f"{where}: sort key attribute must differ from the primary key attribute")
                sort_key = None

        rcu = _parse_capacity(entry, "read_capacity", where, problems)
        wcu = _parse_capacity(entry, "write_capacity", where, problems)

        if name is None or primary is None or rcu is None or wcu is None:
            continue
        specs.append(TableSpec(name=name, primary_key=primary, read_capacity=rcu, write_capacity=wcu, sort_key=sort_key))

    if problems:
        raise InvalidSchema(problems)
    return Descriptor(tuple(specs))


def _decode_file(path: Path) -> Any:
    try:
        if path.suffix.lower() == ".toml":
            with path.open("rb") as handle:
                return tomllib.load(handle)
        return json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise InvalidSchema([f"schema file not found: {path}"]) from None
    except tomllib.TOMLDecodeError as exc:
        raise InvalidSchema([f"{path}: TOML parse error: {exc}"]) from exc
    except json.JSONDecodeError as exc:
        raise InvalidSchema([f"{path}: JSON parse error: {exc}"]) from exc
    except OSError as exc:
        raise InvalidSchema([f"{path}: cannot read schema file: {exc}"]) from exc


def load_descriptor(source: str) -> Descriptor:
    """Parse `source` as inline JSON when it starts with [ or {, else as a file path."""
    text = (source or "").strip()
    if not text:
        raise InvalidSchema(["empty schema source"])
    if text[0] in "[{":
        try:
            document = json.loads(text)
        except json.JSONDecodeError as exc:
            raise InvalidSchema([f"inline schema: JSON parse error: {exc}"]) from exc
        origin = "inline"
    else:
        document = _decode_file(Path(text))
        origin = text
    descriptor = parse(document)
    logger.debug("schema loaded", extra={"source": origin, "tables": descriptor.names})
    return descriptor
