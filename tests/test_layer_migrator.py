"""Unit tests for registry_migrator/layer_migrator.py"""

import os
from unittest.mock import patch

import pytest

from registry_migrator.connection import RegistryConnection
from registry_migrator.error_utils import LayerError, LayerErrorKind
from registry_migrator.layer_migrator import LayerAction, LayerMigrator, staging_file
from registry_migrator.models import LayerDescriptor, RegistryEndpoint

from conftest import FakeRegistryClient

DIGEST = "sha256:3b4f7e"


def _connection(role):
    client = FakeRegistryClient(url=f"https://{role}.example.com")
    return RegistryConnection(endpoint=RegistryEndpoint(client.url), client=client, role=role)


@pytest.fixture
def source():
    connection = _connection("source")
    connection.client.blobs[("team/app", DIGEST)] = b"layer-content" * 100
    return connection


@pytest.fixture
def destination():
    return _connection("destination")


@pytest.fixture
def migrator(source, destination, tmp_path):
    return LayerMigrator(source, destination, staging_dir=str(tmp_path), chunk_size=64)


class TestStagingFile:
    """Tests for the staging_file context manager"""

    def test_file_removed_after_use(self, tmp_path):
        with staging_file(str(tmp_path)) as path:
            assert os.path.exists(path)
            assert os.path.basename(path).startswith("docker-image")
            assert os.path.dirname(path) == str(tmp_path)
        assert not os.path.exists(path)

    def test_file_removed_when_body_raises(self, tmp_path):
        with pytest.raises(RuntimeError):
            with staging_file(str(tmp_path)) as path:
                raise RuntimeError("boom")
        assert not os.path.exists(path)

    def test_removal_failure_is_logged_not_raised(self, tmp_path, caplog):
        with patch("registry_migrator.layer_migrator.os.remove", side_effect=OSError("busy")):
            with staging_file(str(tmp_path)) as path:
                pass
        assert "Failed to remove image layer temp file" in caplog.text
        os.unlink(path)


class TestMigrateLayer:
    """Tests for LayerMigrator.migrate_layer"""

    def test_present_layer_is_skipped(self, migrator, source, destination):
        """Test that a layer already at the destination is neither downloaded nor uploaded"""
        destination.client.blobs[("mirror/app", DIGEST)] = b"already-there"

        transfer = migrator.migrate_layer("team/app", "mirror/app", LayerDescriptor(DIGEST))

        assert transfer.action is LayerAction.SKIPPED
        assert transfer.size == 0
        assert source.client.calls_to("download_layer") == []
        assert destination.client.calls_to("upload_layer") == []

    def test_missing_layer_is_copied(self, migrator, source, destination, tmp_path):
        transfer = migrator.migrate_layer("team/app", "mirror/app", LayerDescriptor(DIGEST))

        assert transfer.action is LayerAction.COPIED
        assert transfer.size == len(b"layer-content" * 100)
        assert source.client.calls_to("download_layer") == [("download_layer", "team/app", DIGEST)]
        assert destination.client.calls_to("upload_layer") == [("upload_layer", "mirror/app", DIGEST)]
        assert destination.client.blobs[("mirror/app", DIGEST)] == b"layer-content" * 100

        # Uploaded from a staging file which is gone afterwards
        staged_path = destination.client.uploaded_from[0]
        assert os.path.dirname(staged_path) == str(tmp_path)
        assert not os.path.exists(staged_path)
        assert os.listdir(tmp_path) == []

    def test_check_failure(self, migrator, destination):
        destination.client.failures["has_layer"] = RuntimeError("503 Service Unavailable")

        with pytest.raises(LayerError) as exc_info:
            migrator.migrate_layer("team/app", "mirror/app", LayerDescriptor(DIGEST))

        assert exc_info.value.kind is LayerErrorKind.CHECK
        assert exc_info.value.digest == DIGEST

    def test_download_failure_cleans_up(self, migrator, source, destination, tmp_path):
        source.client.failures["download_layer"] = RuntimeError("connection reset")

        with pytest.raises(LayerError) as exc_info:
            migrator.migrate_layer("team/app", "mirror/app", LayerDescriptor(DIGEST))

        assert exc_info.value.kind is LayerErrorKind.DOWNLOAD
        assert DIGEST in exc_info.value.message
        assert destination.client.calls_to("upload_layer") == []
        assert os.listdir(tmp_path) == []

    def test_upload_failure_cleans_up(self, migrator, destination, tmp_path):
        """Test that the staging file is removed even when the upload fails"""
        destination.client.failures["upload_layer"] = RuntimeError("403 denied")

        with pytest.raises(LayerError) as exc_info:
            migrator.migrate_layer("team/app", "mirror/app", LayerDescriptor(DIGEST))

        assert exc_info.value.kind is LayerErrorKind.UPLOAD
        assert exc_info.value.exit_code == 6
        assert "Verify the credentials allow push access" in exc_info.value.suggestions
        assert os.listdir(tmp_path) == []

    def test_check_layer(self, migrator, destination):
        assert migrator.check_layer("mirror/app", LayerDescriptor(DIGEST)) is False
        destination.client.blobs[("mirror/app", DIGEST)] = b"x"
        assert migrator.check_layer("mirror/app", LayerDescriptor(DIGEST)) is True
