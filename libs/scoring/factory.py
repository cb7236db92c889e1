"""Storage client factory.

Centralizes creation of ``StorageClient`` backends so the adapter, the
service and the scripts don't depend on implementation details.
"""

from enum import Enum
from typing import Dict

import structlog

from libs.common.config import BaseConfig
from .minio_storage import MinioStorageClient
from .storage import CompositeStorageClient, LocalStorageClient, StorageClient

logger = structlog.get_logger("scoring.factory")


class StorageBackend(Enum):
    """Supported storage backends."""
    LOCAL = "local"
    MINIO = "minio"


def create_storage_client(backend: str, config: BaseConfig) -> StorageClient:
    """Create a storage client for a backend name.

    ``local`` only resolves filesystem references. ``minio`` additionally
    resolves ``s3://`` references against the configured MinIO endpoint.
    """
    try:
        backend_enum = StorageBackend(backend)
    except ValueError:
        raise ValueError(f"Unsupported storage backend: {backend}")

    clients: Dict[str, StorageClient] = {"file": LocalStorageClient()}

    if backend_enum == StorageBackend.MINIO:
        clients["s3"] = MinioStorageClient(
            endpoint=config.ml_minio_endpoint,
            access_key=config.ml_minio_access_key,
            secret_key=config.ml_minio_secret_key,
            region=config.ml_minio_region,
        )

    logger.info("Created storage client", backend=backend_enum.value, schemes=sorted(clients))
    return CompositeStorageClient(clients)


def create_storage_client_from_config(config: BaseConfig) -> StorageClient:
    """Create the storage client named by ``ml_batch_storage_backend``."""
    backend = getattr(config, "ml_batch_storage_backend", StorageBackend.LOCAL.value)
    return create_storage_client(backend, config)
