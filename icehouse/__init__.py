"""icehouse: a table lifecycle and I/O manager for Iceberg-style tables.

Tables are recorded in a Firestore catalog; data lives in immutable Parquet
files on local disk or GCS, addressed through append-only snapshots.

Start with `TableManager.open(catalog, namespace)` or
`TableManager.from_config()`.
"""

from .catalog.manifest import DataFile
from .catalog.manifest import ManifestEntry
from .catalog.metadata import Snapshot
from .catalog.metadata import TableIdentifier
from .catalog.metadata import TableMetadata
from .catalog.metastore import Metastore
from .catalog.metastore import Table
from .catalog.table import SimpleTable
from .config import CatalogConfig
from .exceptions import AlreadyExists
from .exceptions import ConflictingCommit
from .exceptions import FileReadError
from .exceptions import FileWriteError
from .exceptions import IcehouseError
from .exceptions import NamespaceAlreadyExists
from .exceptions import NamespaceNotFound
from .exceptions import NotFound
from .exceptions import SchemaInvalid
from .exceptions import SchemaMismatch
from .exceptions import SnapshotNotFound
from .exceptions import TableAlreadyExists
from .exceptions import TableNotFound
from .exceptions import TransportError
from .manager import TableManager
from .manager import list_snapshots
from .manager import snapshot_log
from .schema import DEFAULT_SCHEMA
from .schema import ListType
from .schema import NestedField
from .schema import PrimitiveType
from .schema import Schema

__all__ = [
    "TableManager",
    "list_snapshots",
    "snapshot_log",
    "Metastore",
    "Table",
    "SimpleTable",
    "TableIdentifier",
    "TableMetadata",
    "Snapshot",
    "DataFile",
    "ManifestEntry",
    "CatalogConfig",
    "Schema",
    "NestedField",
    "PrimitiveType",
    "ListType",
    "DEFAULT_SCHEMA",
    "IcehouseError",
    "NotFound",
    "NamespaceNotFound",
    "TableNotFound",
    "SnapshotNotFound",
    "AlreadyExists",
    "NamespaceAlreadyExists",
    "TableAlreadyExists",
    "SchemaInvalid",
    "SchemaMismatch",
    "ConflictingCommit",
    "FileReadError",
    "FileWriteError",
    "TransportError",
]
