from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping
from typing import Optional


@dataclass(frozen=True)
class CatalogConfig:
    """Connection settings for the catalog and storage.

    Either `gcs_bucket` or `warehouse` must be set; tables live under
    ``gs://<bucket>/<workspace>/...`` or ``<warehouse>/<workspace>/...``.
    """

    workspace: str = "icehouse"
    namespace: str = "default"
    firestore_project: Optional[str] = None
    firestore_database: Optional[str] = None
    gcs_bucket: Optional[str] = None
    warehouse: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "CatalogConfig":
        env = os.environ if environ is None else environ
        return cls(
            workspace=env.get("ICEHOUSE_WORKSPACE") or "icehouse",
            namespace=env.get("ICEHOUSE_NAMESPACE") or "default",
            firestore_project=env.get("GCP_PROJECT_ID") or None,
            firestore_database=env.get("FIRESTORE_DATABASE") or None,
            gcs_bucket=env.get("GCS_BUCKET") or None,
            warehouse=env.get("ICEHOUSE_WAREHOUSE") or None,
        )
