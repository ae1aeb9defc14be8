"""Unit tests for registry_migrator/config_manager.py"""

import logging
import os
import sys
import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml

_python_dir = Path(__file__).parent.parent / "python"
if str(_python_dir.absolute()) not in sys.path:
    sys.path.insert(0, str(_python_dir.absolute()))


@pytest.fixture
def clean_env():
    """Remove environment overrides that would mask config file values"""
    overrides = ("REGISTRY_TIMEOUT", "REGISTRY_VERIFY_TLS", "STAGING_DIR", "K8S_NAMESPACE", "LOG_LEVEL")
    env = {key: value for key, value in os.environ.items() if key not in overrides}
    with patch.dict(os.environ, env, clear=True):
        yield


def _write_config(config):
    with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
        yaml.dump(config, f)
        return f.name


class TestConfigManagerInitialization:
    """Tests for ConfigManager initialization"""

    def test_loads_default_config_when_file_not_found(self, clean_env):
        """Test that defaults are used when config file doesn't exist"""
        from registry_migrator.config_manager import ConfigManager

        cm = ConfigManager(config_file="/nonexistent/config.yaml", validate=False)

        assert cm.get_registry_timeout() == 300
        assert cm.get_registry_verify_tls() is True
        assert cm.get_staging_dir() is None
        assert cm.get_chunk_size() == 1024 * 1024
        assert cm.get_kubernetes_namespace() == "default"
        assert cm.get_default_tag() == "latest"
        assert cm.get_log_level() == "INFO"

    def test_merges_user_config_with_defaults(self, clean_env):
        """Test that user config is merged with defaults"""
        from registry_migrator.config_manager import ConfigManager

        temp_path = _write_config({"registry": {"timeout": 60}, "migration": {"default_tag": "stable"}})
        try:
            cm = ConfigManager(config_file=temp_path, validate=False)
            # Custom values
            assert cm.get_registry_timeout() == 60
            assert cm.get_default_tag() == "stable"
            # Defaults preserved
            assert cm.get_registry_verify_tls() is True
            assert cm.get_kubernetes_namespace() == "default"
        finally:
            os.unlink(temp_path)

    def test_invalid_yaml_falls_back_to_defaults(self, clean_env):
        from registry_migrator.config_manager import ConfigManager

        with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
            f.write("registry: [unclosed")
            temp_path = f.name
        try:
            cm = ConfigManager(config_file=temp_path, validate=False)
            assert cm.get_registry_timeout() == 300
        finally:
            os.unlink(temp_path)

    def test_config_file_from_environment(self, clean_env):
        from registry_migrator.config_manager import ConfigManager

        temp_path = _write_config({"kubernetes": {"namespace": "ci"}})
        try:
            with patch.dict(os.environ, {"CONFIG_FILE": temp_path}):
                cm = ConfigManager(validate=False)
            assert cm.config_file == temp_path
            assert cm.get_kubernetes_namespace() == "ci"
        finally:
            os.unlink(temp_path)


class TestEnvironmentOverrides:
    """Tests for environment variable overrides"""

    def test_environment_variables_override_config(self, clean_env, tmp_path):
        from registry_migrator.config_manager import ConfigManager

        env = {
            "REGISTRY_TIMEOUT": "45",
            "REGISTRY_VERIFY_TLS": "false",
            "STAGING_DIR": str(tmp_path),
            "K8S_NAMESPACE": "registry",
            "LOG_LEVEL": "debug",
        }
        with patch.dict(os.environ, env):
            cm = ConfigManager(config_file="/nonexistent/config.yaml", validate=False)

            assert cm.get_registry_timeout() == 45
            assert cm.get_registry_verify_tls() is False
            assert cm.get_staging_dir() == str(tmp_path)
            assert cm.get_kubernetes_namespace() == "registry"
            assert cm.get_log_level() == "DEBUG"

    def test_client_options(self, clean_env):
        from registry_migrator.config_manager import ConfigManager

        temp_path = _write_config({"registry": {"timeout": "90", "verify_tls": "no"}})
        try:
            cm = ConfigManager(config_file=temp_path, validate=False)
            assert cm.get_client_options() == {"timeout": 90, "verify_tls": False}
        finally:
            os.unlink(temp_path)

    def test_non_integer_timeout_raises(self, clean_env):
        from registry_migrator.config_manager import ConfigManager, ConfigValidationError

        with patch.dict(os.environ, {"REGISTRY_TIMEOUT": "soon"}):
            cm = ConfigManager(config_file="/nonexistent/config.yaml", validate=False)
            with pytest.raises(ConfigValidationError, match="registry.timeout must be an integer"):
                cm.get_registry_timeout()


class TestConfigValidation:
    """Tests for ConfigManager.validate_config"""

    def _manager(self, config):
        from registry_migrator.config_manager import ConfigManager

        temp_path = _write_config(config)
        try:
            return ConfigManager(config_file=temp_path, validate=False)
        finally:
            os.unlink(temp_path)

    def test_defaults_are_valid(self, clean_env):
        from registry_migrator.config_manager import ConfigManager

        ConfigManager(config_file="/nonexistent/config.yaml", validate=True)

    @pytest.mark.parametrize(
        "config,expected",
        [
            ({"registry": {"timeout": 0}}, "registry.timeout must be a positive integer"),
            ({"transfer": {"chunk_size": -1}}, "transfer.chunk_size must be a positive integer"),
            ({"transfer": {"staging_dir": "/nonexistent/staging"}}, "does not exist or is not a directory"),
            ({"kubernetes": {"namespace": ""}}, "kubernetes.namespace cannot be empty"),
            ({"migration": {"default_tag": " "}}, "migration.default_tag cannot be empty"),
            ({"logging": {"level": "LOUD"}}, "logging.level must be one of"),
        ],
    )
    def test_invalid_values(self, clean_env, config, expected):
        from registry_migrator.config_manager import ConfigValidationError

        cm = self._manager(config)
        with pytest.raises(ConfigValidationError) as exc_info:
            cm.validate_config()
        assert expected in str(exc_info.value)

    def test_print_config(self, clean_env, caplog):
        cm = self._manager({"kubernetes": {"namespace": "ci"}})

        with caplog.at_level(logging.INFO):
            cm.print_config()

        assert "K8s namespace:      ci" in caplog.text
        assert "Registry timeout:   300s" in caplog.text

    def test_warnings_do_not_fail(self, clean_env, caplog):
        cm = self._manager({"registry": {"timeout": 7200, "verify_tls": False}})

        cm.validate_config()

        assert "registry.timeout is very high" in caplog.text
        assert "TLS verification is disabled" in caplog.text
