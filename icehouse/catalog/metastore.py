from __future__ import annotations

from abc import ABC
from abc import abstractmethod
from typing import Any
from typing import Iterable
from typing import Iterator
from typing import List
from typing import Optional
from typing import Sequence

from ..schema import Schema
from .manifest import DataFile
from .metadata import Snapshot
from .metadata import TableIdentifier
from .metadata import TableMetadata


class Metastore(ABC):
    """Abstract catalog interface (Iceberg-like).

    Implementations own namespace and table records and must make
    `commit_snapshot` atomic: either the new snapshot is visible to every
    later `load_table` or the commit raises and the previous snapshot stays
    current. Losing a race to another writer raises ConflictingCommit.
    """

    @abstractmethod
    def namespace_exists(self, namespace: str) -> bool:
        raise NotImplementedError()

    @abstractmethod
    def create_namespace(self, namespace: str, properties: dict | None = None) -> None:
        raise NotImplementedError()

    @abstractmethod
    def create_table(self, identifier, schema: Schema, properties: dict | None = None) -> "Table":
        raise NotImplementedError()

    @abstractmethod
    def load_table(self, identifier) -> "Table":
        raise NotImplementedError()

    @abstractmethod
    def drop_table(self, identifier) -> None:
        raise NotImplementedError()

    @abstractmethod
    def list_tables(self, namespace: str) -> List[TableIdentifier]:
        raise NotImplementedError()

    @abstractmethod
    def table_exists(self, identifier) -> bool:
        raise NotImplementedError()

    @abstractmethod
    def commit_snapshot(
        self,
        table: "Table",
        data_files: Sequence[DataFile],
        author: Optional[str] = None,
        commit_message: Optional[str] = None,
    ) -> TableMetadata:
        raise NotImplementedError()


class Table(ABC):
    """Abstract table interface: metadata, snapshots, append and snapshot reads."""

    @property
    @abstractmethod
    def metadata(self) -> TableMetadata:
        raise NotImplementedError()

    @abstractmethod
    def current_snapshot(self) -> Optional[Snapshot]:
        raise NotImplementedError()

    @abstractmethod
    def snapshots(self) -> Iterable[Snapshot]:
        raise NotImplementedError()

    @abstractmethod
    def append(self, rows: Any, schema: Optional[Schema] = None) -> Snapshot:
        raise NotImplementedError()

    @abstractmethod
    def read_at_snapshot(self, snapshot_id: int) -> Iterator[Any]:
        raise NotImplementedError()
