"""Sample rows for the default (id, value) schema."""

from __future__ import annotations

import random
import string
from typing import Dict
from typing import List
from typing import Optional

import pyarrow as pa

from .schema import DEFAULT_SCHEMA
from .schema import Schema
from .schema import to_record_batch


class DataGen:
    def __init__(self, start_id: int = 0, value_length: int = 8, seed: Optional[int] = None):
        self.next_id = start_id
        self.value_length = value_length
        self.schema: Schema = DEFAULT_SCHEMA
        self.arrow_schema = self.schema.as_arrow()
        self._random = random.Random(seed)

    def gen_n_data(self, n: int) -> List[Dict[str, object]]:
        rows = []
        for _ in range(n):
            value = "".join(self._random.choices(string.ascii_lowercase, k=self.value_length))
            rows.append({"id": self.next_id, "value": value})
            self.next_id += 1
        return rows

    def convert_to_arrow_record_batch(self, rows: List[Dict[str, object]]) -> pa.RecordBatch:
        return to_record_batch(self.schema, rows)
