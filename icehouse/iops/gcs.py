"""
HTTP-backed GCS FileIO for icehouse.iops

Talks to the GCS JSON/XML endpoints directly over a pooled requests session
rather than going through the storage client for every object.
"""

import logging
import os
import urllib.parse
from typing import Tuple
from typing import Union

import requests
from google.auth.transport.requests import Request
from requests.adapters import HTTPAdapter

from .base import FileIO
from .base import InputFile
from .base import OutputFile
from .base import OutputStream

logger = logging.getLogger(__name__)


def _get_storage_credentials():
    from google.cloud import storage

    if os.environ.get("STORAGE_EMULATOR_HOST"):
        from google.auth.credentials import AnonymousCredentials

        storage_client = storage.Client(credentials=AnonymousCredentials())
    else:
        storage_client = storage.Client()
    return storage_client._credentials


def _split(location: str) -> Tuple[str, str]:
    """Split gs://bucket/path into (bucket, path)."""
    path = location
    if path.startswith("gs://"):
        path = path[5:]
    bucket = path.split("/", 1)[0]
    return bucket, path[(len(bucket) + 1) :]


class _GcsOutputStream(OutputStream):
    def __init__(self, location: str, session: requests.Session, access_token: str):
        super().__init__(location)
        self._session = session
        self._access_token = access_token

    def _commit(self, data: bytes) -> None:
        bucket, object_name = _split(self.location)
        url = f"https://storage.googleapis.com/upload/storage/v1/b/{bucket}/o"

        response = self._session.post(
            url,
            params={"uploadType": "media", "name": object_name},
            headers={
                "Authorization": f"Bearer {self._access_token}",
                "Content-Type": "application/octet-stream",
                "Content-Length": str(len(data)),
            },
            data=data,
            timeout=60,
        )

        if response.status_code not in (200, 201):
            raise IOError(
                f"Failed to write '{self.location}' - status {response.status_code}: {response.text}"
            )


class _GcsInputFile(InputFile):
    def __init__(self, location: str, session: requests.Session, access_token: str):
        bucket, object_name = _split(location)
        url = f"https://storage.googleapis.com/{bucket}/{urllib.parse.quote(object_name, safe='')}"

        response = session.get(
            url,
            headers={"Authorization": f"Bearer {access_token}", "Accept-Encoding": "identity"},
            timeout=30,
        )

        if response.status_code == 404:
            super().__init__(location, None)
        elif response.status_code != 200:
            raise IOError(f"Unable to read '{location}' - status {response.status_code}")
        else:
            super().__init__(location, response.content)


class _GcsOutputFile(OutputFile):
    def __init__(self, location: str, session: requests.Session, access_token: str):
        super().__init__(location)
        self._session = session
        self._access_token = access_token

    def create(self) -> OutputStream:
        return _GcsOutputStream(self.location, self._session, self._access_token)


class GcsFileIO(FileIO):
    """HTTP-backed GCS FileIO.

    Exposes `new_input`, `new_output`, `delete`, `exists`. Objects are only
    uploaded when an output stream is closed.
    """

    def __init__(self):
        self._credentials = _get_storage_credentials()
        if not self._credentials.valid:
            req = Request()
            self._credentials.refresh(req)
        self._access_token = self._credentials.token

        self._session = requests.session()
        adapter = HTTPAdapter(pool_connections=100, pool_maxsize=100)
        self._session.mount("https://", adapter)

    def new_input(self, location: str) -> InputFile:
        return _GcsInputFile(location, self._session, self._access_token)

    def new_output(self, location: str) -> OutputFile:
        logger.info(f"new_output -> {location}")

        return _GcsOutputFile(location, self._session, self._access_token)

    def delete(self, location: Union[str, InputFile, OutputFile]) -> None:
        if isinstance(location, (InputFile, OutputFile)):
            location = location.location

        bucket, object_name = _split(location)
        object_full_path = urllib.parse.quote(object_name, safe="")
        url = f"https://storage.googleapis.com/storage/v1/b/{bucket}/o/{object_full_path}"

        response = self._session.delete(
            url, headers={"Authorization": f"Bearer {self._access_token}"}, timeout=10
        )

        if response.status_code not in (204, 404):
            raise IOError(f"Failed to delete '{location}' - status {response.status_code}")

    def exists(self, location: str) -> bool:
        bucket, object_name = _split(location)
        object_full_path = urllib.parse.quote(object_name, safe="")
        url = f"https://storage.googleapis.com/{bucket}/{object_full_path}"

        response = self._session.head(
            url, headers={"Authorization": f"Bearer {self._access_token}"}, timeout=10
        )
        return response.status_code == 200
