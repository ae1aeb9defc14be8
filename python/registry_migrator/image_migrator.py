"""
Migrate one image (manifest plus every layer) between registries.

Workflow:
1. Validate source and destination repository names (before any I/O)
2. Resolve credentials and connect: source first, then destination
3. Fetch the source manifest
4. Migrate each layer in manifest order, stopping at the first failure
5. Re-address a copy of the manifest to the destination repository
6. Publish it under the destination tag

A failure in step 4 or 6 can leave the destination partially migrated. The
registry API has no multi-object transaction, so re-running is the recovery:
layers that already arrived are skipped.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from registry_migrator.auth.providers import resolve_registry_endpoint, with_static_credentials
from registry_migrator.connection import RegistryConnection, connect
from registry_migrator.error_utils import ManifestFetchError, ManifestPublishError, MigrationError
from registry_migrator.layer_migrator import LayerAction, LayerMigrator, LayerTransfer
from registry_migrator.logging_utils import get_logger
from registry_migrator.models import Manifest, RegistryEndpoint, RepositoryReference

Resolver = Callable[[str], RegistryEndpoint]
Connector = Callable[..., RegistryConnection]


@dataclass
class MigrationResult:
    """What a migration did, layer by layer, in manifest order."""

    source: RepositoryReference
    destination: RepositoryReference
    dry_run: bool = False
    layers: List[LayerTransfer] = field(default_factory=list)
    published_digests: List[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None

    @property
    def copied(self) -> int:
        return sum(1 for layer in self.layers if layer.action is LayerAction.COPIED)

    @property
    def skipped(self) -> int:
        return sum(1 for layer in self.layers if layer.action is LayerAction.SKIPPED)

    @property
    def would_copy(self) -> int:
        return sum(1 for layer in self.layers if layer.action is LayerAction.WOULD_COPY)

    @property
    def bytes_copied(self) -> int:
        return sum(layer.size for layer in self.layers)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": {
                "total_layers": len(self.layers),
                "layers_copied": self.copied,
                "layers_skipped": self.skipped,
                "layers_would_copy": self.would_copy,
                "bytes_copied": self.bytes_copied,
                "dry_run": self.dry_run,
            },
            "layers": [
                {"digest": layer.digest, "action": layer.action.value, "size": layer.size} for layer in self.layers
            ],
            "published_digests": list(self.published_digests),
            "metadata": {
                "source_registry": self.source.endpoint.base_url,
                "source_repository": self.source.repository_name,
                "source_tag": self.source.tag,
                "dest_registry": self.destination.endpoint.base_url,
                "dest_repository": self.destination.repository_name,
                "dest_tag": self.destination.tag,
                "started_at": self.started_at,
                "finished_at": self.finished_at,
            },
        }


class ImageMigrator:
    """Drives a whole-image migration from source to destination."""

    def __init__(
        self,
        resolver: Resolver = resolve_registry_endpoint,
        connector: Connector = connect,
        layer_migrator_factory: Callable[..., LayerMigrator] = LayerMigrator,
        staging_dir: Optional[str] = None,
        chunk_size: Optional[int] = None,
        client_options: Optional[Dict[str, Any]] = None,
    ):
        self.resolver = resolver
        self.connector = connector
        self.layer_migrator_factory = layer_migrator_factory
        self.staging_dir = staging_dir
        self.chunk_size = chunk_size
        self.client_options = client_options or {}
        self.logger = get_logger(self.__class__.__name__)

    def open_connection(self, ref: RepositoryReference, role: str) -> RegistryConnection:
        """Resolve credentials for the reference's endpoint and connect to it.

        Static credentials already on the endpoint are kept when the resolver
        hands back an anonymous endpoint.
        """
        endpoint = self.resolver(ref.endpoint.base_url)
        endpoint = with_static_credentials(endpoint, ref.endpoint.username, ref.endpoint.password)
        return self.connector(endpoint, role, **self.client_options)

    def fetch_manifest(self, connection: RegistryConnection, ref: RepositoryReference) -> Manifest:
        try:
            manifest = connection.client.manifest(ref.repository_name, ref.tag)
        except Exception as e:
            raise ManifestFetchError(
                f"Failed to fetch the manifest for {connection.url}/{ref.repository_name}:{ref.tag}",
                cause=e,
                details={"registry_url": connection.url, "repository": ref.repository_name, "tag": ref.tag},
            ) from e
        self.logger.info(f"Fetched manifest for {ref.repository_name}:{ref.tag} with {len(manifest.fs_layers)} layers")
        return manifest

    def publish_manifest(self, connection: RegistryConnection, ref: RepositoryReference, manifest: Manifest) -> None:
        try:
            connection.client.put_manifest(ref.repository_name, ref.tag, manifest)
        except Exception as e:
            raise ManifestPublishError(
                f"Failed to upload manifest to {connection.url}/{ref.repository_name}:{ref.tag}",
                cause=e,
                details={"registry_url": connection.url, "repository": ref.repository_name, "tag": ref.tag},
            ) from e
        self.logger.info(f"Published manifest to {connection.url}/{ref.repository_name}:{ref.tag}")

    def _build_layer_migrator(self, source: RegistryConnection, destination: RegistryConnection) -> LayerMigrator:
        kwargs: Dict[str, Any] = {"staging_dir": self.staging_dir}
        if self.chunk_size:
            kwargs["chunk_size"] = self.chunk_size
        return self.layer_migrator_factory(source, destination, **kwargs)

    def migrate_image(
        self, src_ref: RepositoryReference, dest_ref: RepositoryReference, dry_run: bool = False
    ) -> MigrationResult:
        """Copy the image at src_ref to dest_ref.

        Raises:
            MigrationError: the subclass names the stage that failed
        """
        src_ref.validate("source")
        dest_ref.validate("destination")

        result = MigrationResult(source=src_ref, destination=dest_ref, dry_run=dry_run)

        source = self.open_connection(src_ref, "source")
        destination = self.open_connection(dest_ref, "destination")

        manifest = self.fetch_manifest(source, src_ref)
        layer_migrator = self._build_layer_migrator(source, destination)

        total = len(manifest.fs_layers)
        for index, layer in enumerate(manifest.fs_layers, 1):
            self.logger.info(f"[{index}/{total}] Layer {layer.digest}")
            if dry_run:
                present = layer_migrator.check_layer(dest_ref.repository_name, layer)
                action = LayerAction.SKIPPED if present else LayerAction.WOULD_COPY
                result.layers.append(LayerTransfer(digest=layer.digest, action=action))
            else:
                result.layers.append(
                    layer_migrator.migrate_layer(src_ref.repository_name, dest_ref.repository_name, layer)
                )

        dest_manifest = manifest.with_repository_name(dest_ref.repository_name)
        if dry_run:
            self.logger.info(f"Dry run: not publishing manifest to {dest_ref}")
        else:
            self.publish_manifest(destination, dest_ref, dest_manifest)
            result.published_digests = dest_manifest.digests

        result.finished_at = datetime.now()
        return result


@dataclass
class MigrationOutcome:
    """Either a result or the error that stopped the migration."""

    result: Optional[MigrationResult] = None
    error: Optional[MigrationError] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

    @property
    def exit_code(self) -> int:
        return 0 if self.error is None else self.error.exit_code


def run_migration(
    src_ref: RepositoryReference,
    dest_ref: RepositoryReference,
    migrator: Optional[ImageMigrator] = None,
    dry_run: bool = False,
) -> MigrationOutcome:
    """Run a migration and return its outcome instead of raising MigrationError."""
    migrator = migrator or ImageMigrator()
    try:
        return MigrationOutcome(result=migrator.migrate_image(src_ref, dest_ref, dry_run=dry_run))
    except MigrationError as e:
        return MigrationOutcome(error=e)
