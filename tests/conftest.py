"""
Pytest configuration file.

Sets up the Python path so test files can import from the python/ directory,
and provides an in-memory registry that implements RegistryClient.
"""
import io
import sys
from pathlib import Path

import pytest

# Add python directory to path for all tests
_python_dir = Path(__file__).parent.parent / "python"
_python_dir_abs = str(_python_dir.absolute())
if _python_dir_abs not in sys.path:
    sys.path.insert(0, _python_dir_abs)

from registry_migrator.models import LayerDescriptor, Manifest  # noqa: E402
from registry_migrator.registry_client import RegistryClient  # noqa: E402


class FakeRegistryClient(RegistryClient):
    """Registry held in dictionaries. Every call is recorded in self.calls.

    Set self.failures[<operation name>] to an exception to make that
    operation raise it.
    """

    def __init__(self, url="https://registry.example.com", username="", password="", **options):
        self.url = url
        self.username = username
        self.password = password
        self.options = options
        self.blobs = {}
        self.manifests = {}
        self.calls = []
        self.failures = {}
        self.uploaded_from = []

    def _record(self, operation, *args):
        self.calls.append((operation,) + args)
        if operation in self.failures:
            raise self.failures[operation]

    def calls_to(self, operation):
        return [call for call in self.calls if call[0] == operation]

    def ping(self):
        self._record("ping")

    def has_layer(self, repository, digest):
        self._record("has_layer", repository, digest)
        return (repository, digest) in self.blobs

    def download_layer(self, repository, digest):
        self._record("download_layer", repository, digest)
        return io.BytesIO(self.blobs[(repository, digest)])

    def upload_layer(self, repository, digest, stream):
        self.uploaded_from.append(getattr(stream, "name", None))
        self._record("upload_layer", repository, digest)
        self.blobs[(repository, digest)] = stream.read()

    def manifest(self, repository, tag):
        self._record("manifest", repository, tag)
        return self.manifests[(repository, tag)]

    def put_manifest(self, repository, tag, manifest):
        self._record("put_manifest", repository, tag)
        self.manifests[(repository, tag)] = manifest


def make_manifest(name, tag, digests):
    return Manifest(
        name=name,
        tag=tag,
        architecture="amd64",
        fs_layers=tuple(LayerDescriptor(digest=digest) for digest in digests),
        history=tuple({"v1Compatibility": f'{{"id": "{i}"}}'} for i in range(len(digests))),
    )


@pytest.fixture
def fake_registry_factory():
    """Return a factory creating FakeRegistryClient instances."""
    return FakeRegistryClient
