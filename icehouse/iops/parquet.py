"""Parquet data file writer and reader.

The writer is a scoped session: the file only becomes visible in storage
when the session exits cleanly. On any error the output is aborted and no
object is left at the target location.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any
from typing import Dict
from typing import Iterator
from typing import List
from typing import Mapping
from typing import Optional

import pyarrow as pa
import pyarrow.compute as pc
import pyarrow.parquet as pq

from ..catalog.manifest import DataFile
from ..exceptions import FileReadError
from ..exceptions import FileWriteError
from ..schema import FIELD_ID_KEY
from ..schema import PrimitiveType
from ..schema import Schema
from ..schema import same_arrow_type
from .base import FileIO

logger = logging.getLogger(__name__)

DEFAULT_COMPRESSION = "zstd"
DEFAULT_READ_BATCH_SIZE = 65536

# types whose min/max are recorded as column bounds
_BOUNDED_TYPES = {
    PrimitiveType.BOOLEAN,
    PrimitiveType.INT,
    PrimitiveType.LONG,
    PrimitiveType.FLOAT,
    PrimitiveType.DOUBLE,
    PrimitiveType.STRING,
    PrimitiveType.DATE,
    PrimitiveType.TIMESTAMP,
}


@dataclass(frozen=True)
class WriterProperties:
    compression: str = DEFAULT_COMPRESSION
    compression_level: Optional[int] = None
    row_group_size: Optional[int] = None

    @classmethod
    def from_table_properties(
        cls, properties: Mapping[str, Any], location: Optional[str] = None
    ) -> "WriterProperties":
        """Read `write.parquet.*` table properties; bad values raise FileWriteError."""

        def _int_property(key: str, minimum: int) -> Optional[int]:
            raw = properties.get(key)
            if raw in (None, ""):
                return None
            try:
                value = int(raw)
            except (TypeError, ValueError) as err:
                raise FileWriteError(
                    f"Table property {key}={raw!r} is not an integer", location=location
                ) from err
            if value < minimum:
                raise FileWriteError(
                    f"Table property {key}={raw!r} must be at least {minimum}",
                    location=location,
                )
            return value

        return cls(
            compression=properties.get("write.parquet.compression-codec") or DEFAULT_COMPRESSION,
            compression_level=_int_property("write.parquet.compression-level", minimum=-131072),
            row_group_size=_int_property("write.parquet.row-group-limit", minimum=1),
        )


class ParquetFileWriter:
    """Write one Parquet data file.

        with ParquetFileWriter(io, location, schema) as writer:
            writer.write(batch)
        data_file = writer.data_file
    """

    def __init__(
        self,
        io: FileIO,
        location: str,
        schema: Schema,
        properties: Optional[WriterProperties] = None,
    ):
        self.io = io
        self.location = location
        self.schema = schema
        self.properties = properties or WriterProperties()
        self.data_file: Optional[DataFile] = None
        self._buffer: Optional[pa.BufferOutputStream] = None
        self._writer: Optional[pq.ParquetWriter] = None
        self._record_count = 0
        self._lower: Dict[int, Any] = {}
        self._upper: Dict[int, Any] = {}

    def __enter__(self) -> "ParquetFileWriter":
        self._buffer = pa.BufferOutputStream()
        try:
            self._writer = pq.ParquetWriter(
                self._buffer,
                self.schema.as_arrow(),
                compression=self.properties.compression,
                compression_level=self.properties.compression_level,
            )
        except (pa.ArrowException, ValueError) as err:
            raise FileWriteError(
                f"Unable to open writer for '{self.location}': {err}", location=self.location
            ) from err
        return self

    def write(self, batch: pa.RecordBatch) -> None:
        if self._writer is None:
            raise FileWriteError("Writer session is not open", location=self.location)
        try:
            self._writer.write_batch(batch, row_group_size=self.properties.row_group_size)
        except (pa.ArrowException, ValueError) as err:
            raise FileWriteError(
                f"Failed to encode batch for '{self.location}': {err}", location=self.location
            ) from err
        self._record_count += batch.num_rows
        self._track_bounds(batch)

    def _track_bounds(self, batch: pa.RecordBatch) -> None:
        for index, f in enumerate(self.schema.fields):
            if f.field_type not in _BOUNDED_TYPES:
                continue
            column = batch.column(index)
            if len(column) == column.null_count:
                continue
            result = pc.min_max(column).as_py()
            low, high = result["min"], result["max"]
            if f.field_id not in self._lower or low < self._lower[f.field_id]:
                self._lower[f.field_id] = low
            if f.field_id not in self._upper or high > self._upper[f.field_id]:
                self._upper[f.field_id] = high

    def __exit__(self, exc_type, exc, tb):
        writer, self._writer = self._writer, None
        if exc_type is not None:
            # nothing has been handed to storage yet; dropping the buffer is the abort
            logger.debug(f"aborting write of {self.location}: {exc}")
            self._buffer = None
            return False

        try:
            writer.close()
            data = self._buffer.getvalue().to_pybytes()
        except pa.ArrowException as err:
            raise FileWriteError(
                f"Failed to finalise '{self.location}': {err}", location=self.location
            ) from err
        finally:
            self._buffer = None

        out = self.io.new_output(self.location).create()
        try:
            out.write(data)
            out.close()
        except OSError as err:
            out.abort()
            raise FileWriteError(
                f"Failed to store '{self.location}': {err}", location=self.location
            ) from err

        self.data_file = DataFile(
            file_path=self.location,
            file_format="PARQUET",
            record_count=self._record_count,
            file_size_in_bytes=len(data),
            lower_bounds={k: str(v) for k, v in self._lower.items()},
            upper_bounds={k: str(v) for k, v in self._upper.items()},
        )
        return False


def _field_ids(arrow_schema: pa.Schema) -> Dict[int, str]:
    ids = {}
    for f in arrow_schema:
        raw = (f.metadata or {}).get(FIELD_ID_KEY)
        if raw is not None:
            ids[int(raw)] = f.name
    return ids


def _projection(file_schema: pa.Schema, schema: Schema, location: str) -> List[Optional[str]]:
    """Map each schema field to the file column holding it (None if absent)."""
    by_id = _field_ids(file_schema)
    expected = schema.as_arrow()
    columns: List[Optional[str]] = []
    for f, arrow_field in zip(schema.fields, expected):
        if by_id:
            name = by_id.get(f.field_id)
        else:
            name = f.name if f.name in file_schema.names else None
        if name is None:
            if f.required:
                raise FileReadError(
                    f"Data file '{location}' has no column for required field "
                    f"{f.name!r} (id {f.field_id})",
                    location=location,
                )
        elif not same_arrow_type(file_schema.field(name).type, arrow_field.type):
            raise FileReadError(
                f"Column {name!r} in '{location}' has type {file_schema.field(name).type}, "
                f"expected {arrow_field.type}",
                location=location,
            )
        columns.append(name)
    return columns


def read_batches(
    io: FileIO,
    data_file: DataFile,
    schema: Schema,
    batch_size: int = DEFAULT_READ_BATCH_SIZE,
) -> Iterator[pa.RecordBatch]:
    """Lazily yield the rows of one data file laid out in `schema`."""
    location = data_file.file_path
    expected = schema.as_arrow()
    try:
        content = io.new_input(location).read()
        parquet_file = pq.ParquetFile(pa.BufferReader(content))
        columns = _projection(parquet_file.schema_arrow, schema, location)
        present = [c for c in columns if c is not None]
        for batch in parquet_file.iter_batches(batch_size=batch_size, columns=present):
            arrays = []
            for name, arrow_field in zip(columns, expected):
                if name is None:
                    arrays.append(pa.nulls(batch.num_rows, type=arrow_field.type))
                    continue
                array = batch.column(name)
                if not array.type.equals(arrow_field.type):
                    array = array.cast(arrow_field.type)
                arrays.append(array)
            yield pa.RecordBatch.from_arrays(arrays, schema=expected)
    except FileReadError:
        raise
    except (OSError, pa.ArrowException) as err:
        raise FileReadError(f"Unable to read '{location}': {err}", location=location) from err
