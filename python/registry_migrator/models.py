"""
Data model for a single image migration.

Everything here is transient: built for one run and thrown away afterwards.
"""

import copy
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Tuple

SCHEMA1_VERSION = 1
DEFAULT_TAG = "latest"


@dataclass(frozen=True)
class RegistryEndpoint:
    """A registry base URL plus the credentials to use against it.

    Anonymous endpoints carry empty strings for both username and password.
    """

    base_url: str
    username: str = ""
    password: str = ""

    def __post_init__(self):
        if bool(self.username) != bool(self.password):
            raise ValueError(f"Registry endpoint {self.base_url} needs both a username and a password, or neither")

    @property
    def is_anonymous(self) -> bool:
        return not self.username

    def __repr__(self) -> str:
        # Never leak the password into logs or tracebacks
        user = self.username or "<anonymous>"
        return f"RegistryEndpoint(base_url={self.base_url!r}, username={user!r})"


@dataclass
class RepositoryReference:
    """Where an image lives: registry endpoint, repository and tag."""

    endpoint: RegistryEndpoint
    repository_name: str
    tag: str = DEFAULT_TAG

    def validate(self, role: str = "source") -> None:
        """Raise ConfigError if the repository name is missing."""
        if not self.repository_name or not self.repository_name.strip():
            from registry_migrator.error_utils import create_missing_repository_error

            raise create_missing_repository_error(role)

    def __str__(self) -> str:
        return f"{self.endpoint.base_url}/{self.repository_name}:{self.tag}"


@dataclass(frozen=True)
class LayerDescriptor:
    """A content-addressed layer blob, identified by its digest (blobSum)."""

    digest: str


@dataclass(frozen=True)
class Manifest:
    """A schema 1 image manifest.

    fs_layers keeps the order returned by the registry; that order encodes the
    filesystem stacking and must reach the destination unchanged.
    """

    name: str
    tag: str
    fs_layers: Tuple[LayerDescriptor, ...]
    architecture: str = ""
    history: Tuple[Dict[str, Any], ...] = ()
    schema_version: int = SCHEMA1_VERSION
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Manifest":
        """Parse a schema 1 manifest document, signed or not.

        Raises:
            ValueError: If the document is not a usable schema 1 manifest
        """
        if not isinstance(data, dict):
            raise ValueError("Manifest document must be a JSON object")

        schema_version = data.get("schemaVersion")
        if schema_version != SCHEMA1_VERSION:
            raise ValueError(f"Unsupported manifest schemaVersion {schema_version!r} (only schema 1 is supported)")

        fs_layers = data.get("fsLayers")
        if not isinstance(fs_layers, list):
            raise ValueError("Manifest has no fsLayers list")

        layers = []
        for index, entry in enumerate(fs_layers):
            blob_sum = entry.get("blobSum") if isinstance(entry, dict) else None
            if not blob_sum:
                raise ValueError(f"Manifest layer {index} has no blobSum")
            layers.append(LayerDescriptor(digest=blob_sum))

        history = data.get("history") or []
        if not isinstance(history, list) or not all(isinstance(entry, dict) for entry in history):
            raise ValueError("Manifest history must be a list of objects")

        known = {"schemaVersion", "name", "tag", "architecture", "fsLayers", "history", "signatures"}
        extra = {key: value for key, value in data.items() if key not in known}

        return cls(
            name=data.get("name", ""),
            tag=data.get("tag", ""),
            fs_layers=tuple(layers),
            architecture=data.get("architecture", ""),
            history=tuple(history),
            schema_version=schema_version,
            extra=extra,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Render as an unsigned schema 1 document.

        Signatures are not carried over: they cover the repository name and
        stop being valid as soon as it changes.
        """
        document: Dict[str, Any] = {
            "schemaVersion": self.schema_version,
            "name": self.name,
            "tag": self.tag,
            "architecture": self.architecture,
            "fsLayers": [{"blobSum": layer.digest} for layer in self.fs_layers],
            "history": [dict(entry) for entry in self.history],
        }
        document.update(copy.deepcopy(self.extra))
        return document

    def with_repository_name(self, name: str) -> "Manifest":
        """Return a copy addressed to another repository; self is left untouched."""
        return replace(
            self,
            name=name,
            history=tuple(dict(entry) for entry in self.history),
            extra=copy.deepcopy(self.extra),
        )

    @property
    def digests(self) -> List[str]:
        return [layer.digest for layer in self.fs_layers]
