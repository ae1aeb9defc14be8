"""
Copy one layer blob between registries through a local staging file.

Layers are content addressed, so a digest that already exists at the
destination is byte-identical to the source blob and is skipped. That skip is
what makes re-running an interrupted migration cheap.
"""

import os
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, Optional

from registry_migrator.connection import RegistryConnection
from registry_migrator.error_utils import LayerErrorKind, create_layer_error
from registry_migrator.logging_utils import get_logger
from registry_migrator.models import LayerDescriptor

DEFAULT_CHUNK_SIZE = 1024 * 1024
STAGING_PREFIX = "docker-image"


class LayerAction(Enum):
    SKIPPED = "skipped"
    COPIED = "copied"
    WOULD_COPY = "would copy"


@dataclass
class LayerTransfer:
    """Outcome of migrating one layer."""

    digest: str
    action: LayerAction
    size: int = 0


@contextmanager
def staging_file(staging_dir: Optional[str] = None) -> Iterator[str]:
    """Yield the path of a fresh temp file and delete it on the way out.

    A file that cannot be removed is logged and left behind; it never fails
    the migration.
    """
    logger = get_logger(__name__)
    fd, path = tempfile.mkstemp(prefix=STAGING_PREFIX, dir=staging_dir)
    os.close(fd)
    try:
        yield path
    finally:
        try:
            os.remove(path)
        except OSError as e:
            logger.warning(f"Failed to remove image layer temp file {path}. {e}")


class LayerMigrator:
    """Moves layers from a source connection to a destination connection."""

    def __init__(
        self,
        source: RegistryConnection,
        destination: RegistryConnection,
        staging_dir: Optional[str] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        self.source = source
        self.destination = destination
        self.staging_dir = staging_dir
        self.chunk_size = chunk_size
        self.logger = get_logger(self.__class__.__name__)

    def check_layer(self, dest_repo: str, layer: LayerDescriptor) -> bool:
        """Return True if the destination already holds the layer.

        Raises:
            LayerError: kind CHECK if the registry query failed
        """
        try:
            return self.destination.client.has_layer(dest_repo, layer.digest)
        except Exception as e:
            raise create_layer_error(LayerErrorKind.CHECK, layer.digest, self.destination.url, dest_repo, e) from e

    def migrate_layer(self, src_repo: str, dest_repo: str, layer: LayerDescriptor) -> LayerTransfer:
        """Make sure the destination repository holds the layer.

        Raises:
            LayerError: on existence-check, download or upload failure
        """
        self.logger.info(f"Checking if layer {layer.digest} exists in destination registry")
        if self.check_layer(dest_repo, layer):
            self.logger.info(f"Layer {layer.digest} already exists in the destination")
            return LayerTransfer(digest=layer.digest, action=LayerAction.SKIPPED)

        self.logger.info(f"Need to upload layer {layer.digest} to the destination")
        with staging_file(self.staging_dir) as path:
            size = self._download(src_repo, layer, path)
            self._upload(dest_repo, layer, path)

        self.logger.info(f"Copied layer {layer.digest} ({size} bytes)")
        return LayerTransfer(digest=layer.digest, action=LayerAction.COPIED, size=size)

    def _download(self, src_repo: str, layer: LayerDescriptor, path: str) -> int:
        """Stream the blob into path; it is flushed, synced and closed on return."""
        size = 0
        try:
            stream = self.source.client.download_layer(src_repo, layer.digest)
            try:
                with open(path, "wb") as staged:
                    for chunk in iter(lambda: stream.read(self.chunk_size), b""):
                        staged.write(chunk)
                        size += len(chunk)
                    staged.flush()
                    os.fsync(staged.fileno())
            finally:
                stream.close()
        except Exception as e:
            raise create_layer_error(LayerErrorKind.DOWNLOAD, layer.digest, self.source.url, src_repo, e) from e
        return size

    def _upload(self, dest_repo: str, layer: LayerDescriptor, path: str) -> None:
        try:
            with open(path, "rb") as staged:
                self.destination.client.upload_layer(dest_repo, layer.digest, staged)
        except Exception as e:
            raise create_layer_error(LayerErrorKind.UPLOAD, layer.digest, self.destination.url, dest_repo, e) from e
