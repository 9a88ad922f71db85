from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field
from typing import Dict
from typing import Iterable
from typing import List
from typing import Optional

import pyarrow as pa
import pyarrow.parquet as pq

from ..exceptions import FileReadError
from ..exceptions import FileWriteError

# Explicit manifest schema so pyarrow does not have to infer nested types.
MANIFEST_SCHEMA = pa.schema(
    [
        ("file_path", pa.string()),
        ("file_format", pa.string()),
        ("record_count", pa.int64()),
        ("file_size_in_bytes", pa.int64()),
        ("added_snapshot_id", pa.int64()),
        (
            "column_bounds",
            pa.list_(
                pa.struct(
                    [
                        ("field_id", pa.int32()),
                        ("lower", pa.string()),
                        ("upper", pa.string()),
                    ]
                )
            ),
        ),
    ]
)


@dataclass(frozen=True)
class DataFile:
    file_path: str
    file_format: str = "PARQUET"
    record_count: int = 0
    file_size_in_bytes: int = 0
    lower_bounds: Dict[int, str] = field(default_factory=dict)
    upper_bounds: Dict[int, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ManifestEntry:
    snapshot_id: Optional[int]
    data_file: DataFile
    status: str = "added"

    def to_row(self) -> dict:
        df = self.data_file
        ids = sorted(set(df.lower_bounds) | set(df.upper_bounds))
        return {
            "file_path": df.file_path,
            "file_format": df.file_format,
            "record_count": df.record_count,
            "file_size_in_bytes": df.file_size_in_bytes,
            "added_snapshot_id": self.snapshot_id,
            "column_bounds": [
                {
                    "field_id": i,
                    "lower": df.lower_bounds.get(i),
                    "upper": df.upper_bounds.get(i),
                }
                for i in ids
            ],
        }

    @classmethod
    def from_row(cls, row: dict) -> "ManifestEntry":
        bounds = row.get("column_bounds") or []
        return cls(
            snapshot_id=row.get("added_snapshot_id"),
            data_file=DataFile(
                file_path=row["file_path"],
                file_format=row.get("file_format") or "PARQUET",
                record_count=int(row.get("record_count") or 0),
                file_size_in_bytes=int(row.get("file_size_in_bytes") or 0),
                lower_bounds={b["field_id"]: b["lower"] for b in bounds if b["lower"] is not None},
                upper_bounds={b["field_id"]: b["upper"] for b in bounds if b["upper"] is not None},
            ),
            status="existing",
        )


def write_manifest(io, path: str, entries: Iterable[ManifestEntry]) -> str:
    """Write a Parquet manifest listing `entries` to `path`.

    An empty entry list still produces a (zero row) manifest.
    """
    table = pa.Table.from_pylist([e.to_row() for e in entries], schema=MANIFEST_SCHEMA)
    buf = pa.BufferOutputStream()
    pq.write_table(table, buf, compression="zstd")
    data = buf.getvalue().to_pybytes()

    out = io.new_output(path).create()
    try:
        out.write(data)
        out.close()
    except OSError as err:
        out.abort()
        raise FileWriteError(f"Failed to write manifest '{path}': {err}", location=path) from err
    return path


def read_manifest(io, path: str) -> List[ManifestEntry]:
    try:
        data = io.new_input(path).read()
        table = pq.read_table(pa.BufferReader(data))
    except (OSError, pa.ArrowException) as err:
        raise FileReadError(f"Unable to read manifest '{path}': {err}", location=path) from err
    return [ManifestEntry.from_row(r) for r in table.to_pylist()]
