from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Mapping, Optional, Tuple, Union

from .schema import Descriptor, ExistingTable, KeyAttribute, TableSpec

ALREADY_PROVISIONED = "already provisioned"


@dataclass(frozen=True)
class Create:
    spec: TableSpec

    kind = "create"

    @property
    def name(self) -> str:
        return self.spec.name


@dataclass(frozen=True)
class Skip:
    name: str
    reason: str = ALREADY_PROVISIONED

    kind = "skip"


@dataclass(frozen=True)
class Conflict:
    """Same table name, different key schema. Never auto-resolved: key schema is immutable in the store."""

    name: str
    expected: str
    actual: str

    kind = "conflict"


Action = Union[Create, Skip, Conflict]


def render_key_schema(keys: Tuple[KeyAttribute, Optional[KeyAttribute]]) -> str:
    return ",".join(k.render() for k in keys if k is not None)


def diff(
    desired: Descriptor,
    existing: Union[Iterable[ExistingTable], Mapping[str, ExistingTable]],
) -> List[Action]:
    """Reconcile desired tables against the live snapshot, in descriptor order."""
    if isinstance(existing, Mapping):
        by_name = dict(existing)
    else:
        by_name = {t.name: t for t in existing}

    actions: List[Action] = []
    for spec in desired:
        current = by_name.get(spec.name)
        if current is None:
            actions.append(Create(spec))
        elif current.key_schema() == spec.key_schema():
            actions.append(Skip(spec.name))
        else:
            actions.append(Conflict(
                spec.name,
                expected=render_key_schema(spec.key_schema()),
                actual=render_key_schema(current.key_schema()),
            ))
    return actions
