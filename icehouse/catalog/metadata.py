from __future__ import annotations

import uuid
from dataclasses import dataclass
from dataclasses import field
from typing import Any
from typing import Dict
from typing import List
from typing import NamedTuple
from typing import Optional
from typing import Sequence
from typing import Tuple
from typing import Union

from ..schema import Schema


class TableIdentifier(NamedTuple):
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}.{self.name}"


def to_identifier(identifier: Union[str, Tuple[str, str], TableIdentifier]) -> TableIdentifier:
    """Normalise 'namespace.table' strings and (namespace, table) tuples."""
    if isinstance(identifier, TableIdentifier):
        return identifier
    if isinstance(identifier, (tuple, list)):
        if len(identifier) != 2:
            raise ValueError(f"identifier must be (namespace, table), got {identifier!r}")
        namespace, name = identifier
    else:
        if "." not in identifier:
            raise ValueError("identifier must be 'namespace.table'")
        namespace, name = identifier.rsplit(".", 1)
    if not namespace or not name:
        raise ValueError(f"identifier has an empty part: {identifier!r}")
    return TableIdentifier(namespace, name)


@dataclass(frozen=True)
class Snapshot:
    snapshot_id: int
    sequence_number: int
    timestamp_ms: int
    manifest_list: Optional[str] = None
    parent_snapshot_id: Optional[int] = None
    schema_id: Optional[int] = None
    operation_type: str = "append"
    author: Optional[str] = None
    commit_message: str = ""
    summary: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "snapshot-id": self.snapshot_id,
            "sequence-number": self.sequence_number,
            "timestamp-ms": self.timestamp_ms,
            "manifest": self.manifest_list,
            "parent-snapshot-id": self.parent_snapshot_id,
            "schema-id": self.schema_id,
            "operation-type": self.operation_type,
            "author": self.author,
            "commit-message": self.commit_message,
            "summary": dict(self.summary),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Snapshot":
        summary = {k: 0 for k in SUMMARY_KEYS}
        summary.update(data.get("summary") or {})
        return cls(
            snapshot_id=int(data["snapshot-id"]),
            sequence_number=int(data["sequence-number"]),
            timestamp_ms=int(data.get("timestamp-ms") or 0),
            manifest_list=data.get("manifest"),
            parent_snapshot_id=data.get("parent-snapshot-id"),
            schema_id=data.get("schema-id"),
            operation_type=data.get("operation-type") or "append",
            author=data.get("author"),
            commit_message=data.get("commit-message") or "",
            summary=summary,
        )


@dataclass
class TableMetadata:
    """Table metadata as loaded from the catalog.

    `snapshots` is kept in commit order (oldest first).
    """

    table_identifier: TableIdentifier
    location: str
    schema: Schema
    properties: Dict[str, str] = field(default_factory=dict)
    format_version: int = 2
    current_schema_id: int = 0
    current_snapshot_id: Optional[int] = None
    snapshots: List[Snapshot] = field(default_factory=list)
    timestamp_ms: Optional[int] = None
    author: Optional[str] = None

    def current_snapshot(self) -> Optional[Snapshot]:
        if self.current_snapshot_id is None:
            return None
        return self.snapshot_by_id(self.current_snapshot_id)

    def snapshot_by_id(self, snapshot_id: int) -> Optional[Snapshot]:
        for snap in self.snapshots:
            if snap.snapshot_id == snapshot_id:
                return snap
        return None

    def next_sequence_number(self) -> int:
        return max((s.sequence_number for s in self.snapshots), default=0) + 1


SUMMARY_KEYS = (
    "added-data-files",
    "added-files-size",
    "added-records",
    "deleted-data-files",
    "deleted-files-size",
    "deleted-records",
    "total-data-files",
    "total-files-size",
    "total-records",
)


def new_snapshot_id() -> int:
    """Random positive 63-bit id; snapshot ids are never derived from time."""
    return uuid.uuid4().int & ((1 << 63) - 1)


def summarise(previous: Optional[Snapshot], data_files: Sequence[Any]) -> Dict[str, int]:
    """Build an append snapshot summary on top of the previous snapshot's totals."""
    prev = previous.summary if previous else {}
    added_data_files = len(data_files)
    added_files_size = sum(int(f.file_size_in_bytes) for f in data_files)
    added_records = sum(int(f.record_count) for f in data_files)

    return {
        "added-data-files": added_data_files,
        "added-files-size": added_files_size,
        "added-records": added_records,
        "deleted-data-files": 0,
        "deleted-files-size": 0,
        "deleted-records": 0,
        "total-data-files": int(prev.get("total-data-files", 0)) + added_data_files,
        "total-files-size": int(prev.get("total-files-size", 0)) + added_files_size,
        "total-records": int(prev.get("total-records", 0)) + added_records,
    }
