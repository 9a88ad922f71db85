"""Error types raised by icehouse.

Every expected failure is one of the classes below. Each carries the
identifier, snapshot id and/or file location it relates to so a caller can
decide on recovery without parsing the message.
"""

from __future__ import annotations

from typing import Optional


class IcehouseError(Exception):
    def __init__(
        self,
        message: str,
        *,
        identifier: Optional[str] = None,
        snapshot_id: Optional[int] = None,
        location: Optional[str] = None,
    ):
        super().__init__(message)
        self.identifier = identifier
        self.snapshot_id = snapshot_id
        self.location = location


class NotFound(IcehouseError):
    pass


class NamespaceNotFound(NotFound):
    pass


class TableNotFound(NotFound):
    pass


class SnapshotNotFound(NotFound):
    pass


class AlreadyExists(IcehouseError):
    pass


class NamespaceAlreadyExists(AlreadyExists):
    pass


class TableAlreadyExists(AlreadyExists):
    pass


class SchemaInvalid(IcehouseError):
    """The schema itself is malformed (duplicate ids or names, unknown types)."""


class SchemaMismatch(IcehouseError):
    """Rows or a file do not match the schema they are checked against."""


class ConflictingCommit(IcehouseError):
    """Another writer committed to the table first."""


class FileReadError(IcehouseError):
    pass


class FileWriteError(IcehouseError):
    pass


class TransportError(IcehouseError):
    """The catalog service could not be reached or returned an error."""
