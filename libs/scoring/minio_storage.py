"""MinIO / S3-compatible storage client.

References look like ``s3://bucket/key``. A key may name a single object or
a prefix; prefixes are treated as directories so a model artifact saved as a
folder can be staged in one call.
"""

from pathlib import Path
from typing import Optional, Tuple
from urllib.parse import urlparse

from minio import Minio
from minio.error import S3Error
import structlog
import urllib3

from .errors import StorageError
from .storage import StorageClient, path_size, reference_scheme

logger = structlog.get_logger("scoring.storage.minio")

_MISSING_CODES = {"NoSuchKey", "NoSuchObject", "NoSuchBucket"}


def parse_s3_reference(reference: str) -> Tuple[str, str]:
    """Split ``s3://bucket/key`` into ``(bucket, key)``."""
    parsed = urlparse(reference)
    if parsed.scheme != "s3" or not parsed.netloc:
        raise StorageError(f"Not an s3:// reference: {reference}")
    return parsed.netloc, parsed.path.lstrip("/")


class MinioStorageClient(StorageClient):
    """Object storage client backed by the ``minio`` SDK."""

    def __init__(
        self,
        endpoint: str,
        access_key: str,
        secret_key: str,
        region: Optional[str] = None,
        client: Optional[Minio] = None,
    ):
        """Create a client for an endpoint such as ``http://localhost:9000``.

        A pre-built ``Minio`` instance can be injected for tests.
        """
        if client is None:
            parsed = urlparse(endpoint)
            secure = parsed.scheme == "https"
            host = parsed.netloc or parsed.path  # allow bare host:port
            client = Minio(
                host,
                access_key=access_key,
                secret_key=secret_key,
                secure=secure,
                region=region or None,
            )
        self.client = client
        self.endpoint = endpoint

    def handles(self, reference: str) -> bool:
        return reference_scheme(reference) == "s3"

    def local_path(self, reference: str) -> Optional[Path]:
        return None

    def _object_exists(self, bucket: str, key: str) -> bool:
        try:
            self.client.stat_object(bucket_name=bucket, object_name=key)
            return True
        except S3Error as e:
            if e.code in _MISSING_CODES:
                return False
            raise

    def _list_prefix(self, bucket: str, key: str):
        prefix = key.rstrip("/") + "/" if key else ""
        return self.client.list_objects(bucket_name=bucket, prefix=prefix, recursive=True)

    def exists(self, reference: str) -> bool:
        bucket, key = parse_s3_reference(reference)
        try:
            if not self.client.bucket_exists(bucket_name=bucket):
                return False
            if key and self._object_exists(bucket, key):
                return True
            return any(True for _ in self._list_prefix(bucket, key))
        except (S3Error, urllib3.exceptions.HTTPError) as e:
            raise StorageError(f"Cannot reach {reference}: {e}") from e

    def download(self, reference: str, local_path: Path) -> int:
        bucket, key = parse_s3_reference(reference)
        try:
            if key and self._object_exists(bucket, key):
                local_path.parent.mkdir(parents=True, exist_ok=True)
                self.client.fget_object(bucket_name=bucket, object_name=key, file_path=str(local_path))
            else:
                found = False
                prefix = key.rstrip("/") + "/" if key else ""
                for obj in self._list_prefix(bucket, key):
                    if obj.is_dir:
                        continue
                    found = True
                    target = local_path / obj.object_name[len(prefix):]
                    target.parent.mkdir(parents=True, exist_ok=True)
                    self.client.fget_object(
                        bucket_name=bucket,
                        object_name=obj.object_name,
                        file_path=str(target),
                    )
                if not found:
                    raise StorageError(f"{reference} does not exist")
        except (S3Error, urllib3.exceptions.HTTPError, OSError) as e:
            raise StorageError(f"Failed to download {reference}: {e}") from e

        size = path_size(local_path)
        logger.debug("Downloaded object", reference=reference, bytes=size)
        return size

    def upload(self, local_path: Path, reference: str) -> int:
        bucket, key = parse_s3_reference(reference)
        try:
            if local_path.is_dir():
                for item in sorted(local_path.rglob("*")):
                    if not item.is_file():
                        continue
                    relative = item.relative_to(local_path).as_posix()
                    object_name = f"{key.rstrip('/')}/{relative}" if key else relative
                    self.client.fput_object(bucket_name=bucket, object_name=object_name, file_path=str(item))
            else:
                self.client.fput_object(bucket_name=bucket, object_name=key, file_path=str(local_path))
        except (S3Error, urllib3.exceptions.HTTPError, OSError) as e:
            raise StorageError(f"Failed to upload to {reference}: {e}") from e

        size = path_size(local_path)
        logger.debug("Uploaded object", reference=reference, bytes=size)
        return size

    def delete(self, reference: str) -> None:
        bucket, key = parse_s3_reference(reference)
        try:
            if key and self._object_exists(bucket, key):
                self.client.remove_object(bucket_name=bucket, object_name=key)
            for obj in self._list_prefix(bucket, key):
                self.client.remove_object(bucket_name=bucket, object_name=obj.object_name)
        except (S3Error, urllib3.exceptions.HTTPError) as e:
            raise StorageError(f"Failed to delete {reference}: {e}") from e

    def check_writable(self, reference: str) -> None:
        bucket, key = parse_s3_reference(reference)
        if not key:
            raise StorageError(f"{reference} has no object key")
        try:
            if not self.client.bucket_exists(bucket_name=bucket):
                raise StorageError(f"Bucket '{bucket}' does not exist")
        except (S3Error, urllib3.exceptions.HTTPError) as e:
            raise StorageError(f"Cannot reach bucket '{bucket}': {e}") from e
