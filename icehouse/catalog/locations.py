"""Where new data files go and what they are called.

File names combine a per-generator counter, a node id for this process and a
random uuid, so no two writers (in this process or any other) produce the
same name for a table. Names are never reused.
"""

from __future__ import annotations

import itertools
import os
import uuid
from typing import Optional

from .metadata import TableMetadata

# Stable node identifier for this process (hex-mac-hex-pid)
_NODE = f"{uuid.getnode():x}-{os.getpid():x}"

WRITE_DATA_PATH = "write.data.path"

_EXTENSIONS = {"PARQUET": "parquet", "AVRO": "avro", "ORC": "orc"}


class DefaultLocationGenerator:
    def __init__(self, metadata: TableMetadata):
        path = metadata.properties.get(WRITE_DATA_PATH)
        self.data_location = (path or f"{metadata.location}/data").rstrip("/")

    def generate_location(self, file_name: str) -> str:
        return f"{self.data_location}/{file_name}"


class DefaultFileNameGenerator:
    def __init__(self, prefix: str = "", suffix: Optional[str] = None, file_format: str = "PARQUET"):
        fmt = file_format.upper()
        if fmt not in _EXTENSIONS:
            raise ValueError(f"Unsupported file format: {file_format}")
        self.prefix = prefix
        self.suffix = suffix
        self.file_format = fmt
        self._counter = itertools.count()

    def generate_file_name(self) -> str:
        parts = [f"{next(self._counter):05d}", _NODE, uuid.uuid4().hex]
        if self.prefix:
            parts.insert(0, self.prefix)
        if self.suffix:
            parts.append(self.suffix)
        return f"{'-'.join(parts)}.{_EXTENSIONS[self.file_format]}"


def new_data_file_location(metadata: TableMetadata, file_format: str = "PARQUET") -> str:
    return DefaultLocationGenerator(metadata).generate_location(
        DefaultFileNameGenerator(file_format=file_format).generate_file_name()
    )
