"""FileIO primitives and the local-filesystem implementation.

Output streams buffer in memory and only make the object visible on
``close()``: a stream that is aborted, or never closed, leaves nothing at the
target location.
"""

from __future__ import annotations

import io
import logging
import os
import uuid
from typing import Optional
from typing import Union

logger = logging.getLogger(__name__)


def _local_path(location: str) -> str:
    if location.startswith("file://"):
        return location[len("file://") :]
    return location


class InputFile:
    def __init__(self, location: str, content: Optional[bytes] = None):
        self.location = location
        self._content = content

    def exists(self) -> bool:
        return self._content is not None

    def open(self) -> io.BytesIO:
        if self._content is None:
            raise FileNotFoundError(self.location)
        return io.BytesIO(self._content)

    def read(self) -> bytes:
        with self.open() as f:
            return f.read()


class OutputFile:
    def __init__(self, location: str):
        self.location = location

    def create(self) -> "OutputStream":
        raise NotImplementedError()


class OutputStream(io.BytesIO):
    """Buffered output that is committed by `close()` and discarded by `abort()`."""

    def __init__(self, location: str):
        super().__init__()
        self.location = location
        self._finished = False

    def _commit(self, data: bytes) -> None:
        raise NotImplementedError()

    def close(self):
        if self._finished:
            return
        self._commit(self.getvalue())
        self._finished = True
        super().close()

    def abort(self) -> None:
        self._finished = True
        super().close()

    def __del__(self):
        # IOBase.__del__ would close(), and so commit, an abandoned stream
        if not getattr(self, "_finished", True):
            self.abort()


class _LocalOutputStream(OutputStream):
    def _commit(self, data: bytes) -> None:
        path = _local_path(self.location)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp_path = f"{path}.{uuid.uuid4().hex}.tmp"
        try:
            with open(tmp_path, "wb") as f:
                f.write(data)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise


class _LocalInputFile(InputFile):
    def __init__(self, location: str):
        super().__init__(location)
        self._path = _local_path(location)

    def exists(self) -> bool:
        return os.path.isfile(self._path)

    def open(self) -> io.BytesIO:
        with open(self._path, "rb") as f:
            return io.BytesIO(f.read())


class _LocalOutputFile(OutputFile):
    def create(self) -> OutputStream:
        return _LocalOutputStream(self.location)


class FileIO:
    """Local filesystem FileIO; locations may be plain paths or file:// URIs."""

    def new_input(self, location: str) -> InputFile:
        return _LocalInputFile(location)

    def new_output(self, location: str) -> OutputFile:
        logger.info(f"new_output -> {location}")
        return _LocalOutputFile(location)

    def delete(self, location: Union[str, InputFile, OutputFile]) -> None:
        if isinstance(location, (InputFile, OutputFile)):
            location = location.location
        path = _local_path(location)
        if os.path.exists(path):
            os.remove(path)

    def exists(self, location: str) -> bool:
        return os.path.isfile(_local_path(location))
