"""Storage client interface for scoring inputs and outputs.

The adapter never opens data itself. It asks a ``StorageClient`` whether a
reference exists, where a local copy lives, and how to move staged files to
their final destination. References are plain filesystem paths, ``file://``
URIs, or remote object-storage URIs such as ``s3://bucket/key``.

Implementations:
- ``LocalStorageClient``: paths and ``file://`` URIs
- ``MinioStorageClient`` (``minio_storage``): ``s3://`` URIs
- ``CompositeStorageClient``: routes each reference by scheme
"""

import os
import shutil
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional
from urllib.parse import unquote, urlparse

import structlog

from .errors import StorageError

logger = structlog.get_logger("scoring.storage")


def reference_scheme(reference: str) -> str:
    """Return the URI scheme of a reference, ``file`` for plain paths."""
    parsed = urlparse(str(reference))
    # Single-letter schemes are Windows drive letters, not URIs.
    if len(parsed.scheme) <= 1:
        return "file"
    return parsed.scheme.lower()


def path_size(path: Path) -> int:
    """Size in bytes of a file or of every file under a directory."""
    if path.is_file():
        return path.stat().st_size
    return sum(item.stat().st_size for item in path.rglob("*") if item.is_file())


class StorageClient(ABC):
    """Abstract access to data references.

    ``download`` and ``upload`` return the number of bytes moved so callers
    can record staging traffic. Failures raise ``StorageError``.
    """

    @abstractmethod
    def handles(self, reference: str) -> bool:
        """Whether this client understands the reference's scheme."""
        pass

    @abstractmethod
    def exists(self, reference: str) -> bool:
        """Whether the reference points at an existing file or directory."""
        pass

    @abstractmethod
    def local_path(self, reference: str) -> Optional[Path]:
        """Local path of the reference, or ``None`` if it must be downloaded."""
        pass

    @abstractmethod
    def download(self, reference: str, local_path: Path) -> int:
        """Copy the referenced data to ``local_path``."""
        pass

    @abstractmethod
    def upload(self, local_path: Path, reference: str) -> int:
        """Write the file or directory at ``local_path`` to the reference."""
        pass

    @abstractmethod
    def delete(self, reference: str) -> None:
        """Remove whatever the reference points at, if anything."""
        pass

    @abstractmethod
    def check_writable(self, reference: str) -> None:
        """Raise ``StorageError`` if the reference cannot be written."""
        pass

    def is_remote(self, reference: str) -> bool:
        return self.local_path(reference) is None


class LocalStorageClient(StorageClient):
    """Filesystem-backed storage for plain paths and ``file://`` URIs."""

    def handles(self, reference: str) -> bool:
        return reference_scheme(reference) == "file"

    def _to_path(self, reference: str) -> Path:
        reference = str(reference)
        if reference.startswith("file://"):
            parsed = urlparse(reference)
            reference = unquote(parsed.netloc + parsed.path)
        if "\x00" in reference:
            raise StorageError(f"{reference!r} contains a NUL byte")
        try:
            return Path(reference).expanduser()
        except RuntimeError as e:
            raise StorageError(f"Cannot resolve {reference}: {e}") from e

    def exists(self, reference: str) -> bool:
        target = self._to_path(reference)
        try:
            return target.exists()
        except (OSError, ValueError) as e:
            raise StorageError(f"Cannot inspect {target}: {e}") from e

    def local_path(self, reference: str) -> Optional[Path]:
        return self._to_path(reference)

    def download(self, reference: str, local_path: Path) -> int:
        source = self._to_path(reference)
        if not source.exists():
            raise StorageError(f"{source} does not exist")
        try:
            local_path.parent.mkdir(parents=True, exist_ok=True)
            if source.is_dir():
                shutil.copytree(source, local_path, dirs_exist_ok=True)
            else:
                shutil.copy2(source, local_path)
        except OSError as e:
            raise StorageError(f"Failed to copy {source}: {e}") from e
        return path_size(local_path)

    def upload(self, local_path: Path, reference: str) -> int:
        target = self._to_path(reference)
        size = path_size(local_path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            if local_path.is_dir():
                shutil.copytree(local_path, target, dirs_exist_ok=True)
            else:
                shutil.copy2(local_path, target)
        except OSError as e:
            raise StorageError(f"Failed to write {target}: {e}") from e
        logger.debug("Wrote local output", target=str(target), bytes=size)
        return size

    def delete(self, reference: str) -> None:
        target = self._to_path(reference)
        try:
            if target.is_dir():
                shutil.rmtree(target)
            elif target.exists():
                target.unlink()
        except OSError as e:
            raise StorageError(f"Failed to delete {target}: {e}") from e

    def check_writable(self, reference: str) -> None:
        target = self._to_path(reference)
        ancestor = target.parent
        while not ancestor.exists():
            if ancestor.parent == ancestor:
                break
            ancestor = ancestor.parent
        if not ancestor.is_dir():
            raise StorageError(f"{ancestor} is not a directory")
        if not os.access(ancestor, os.W_OK):
            raise StorageError(f"{ancestor} is not writable")


class CompositeStorageClient(StorageClient):
    """Routes each reference to the first client that handles its scheme."""

    def __init__(self, clients: Dict[str, StorageClient]):
        self.clients = clients

    def _client_for(self, reference: str) -> StorageClient:
        scheme = reference_scheme(reference)
        client = self.clients.get(scheme)
        if client is None:
            raise StorageError(f"No storage client configured for '{scheme}://' references")
        return client

    def handles(self, reference: str) -> bool:
        return reference_scheme(reference) in self.clients

    def exists(self, reference: str) -> bool:
        return self._client_for(reference).exists(reference)

    def local_path(self, reference: str) -> Optional[Path]:
        return self._client_for(reference).local_path(reference)

    def download(self, reference: str, local_path: Path) -> int:
        return self._client_for(reference).download(reference, local_path)

    def upload(self, local_path: Path, reference: str) -> int:
        return self._client_for(reference).upload(local_path, reference)

    def delete(self, reference: str) -> None:
        self._client_for(reference).delete(reference)

    def check_writable(self, reference: str) -> None:
        self._client_for(reference).check_writable(reference)
