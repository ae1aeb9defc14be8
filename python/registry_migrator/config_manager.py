#!/usr/bin/env python3
"""
Configuration Manager for the registry image migrator

This module handles loading and managing configuration from config.yaml
and environment variables.
"""

import logging
import os
from typing import Any, Dict, Optional

import yaml

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigValidationError(Exception):
    """Raised when configuration validation fails"""


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes", "on")


class ConfigManager:
    """Manages configuration for image migrations"""

    def __init__(self, config_file: Optional[str] = None, validate: bool = True):
        """Initialize ConfigManager

        Args:
            config_file: Path to configuration YAML file (defaults to config.yaml or CONFIG_FILE env var)
            validate: If True, validate configuration on initialization
        """
        if config_file is None:
            config_file = os.environ.get("CONFIG_FILE", "config.yaml")
        self.config_file = config_file
        self.config = self._load_config()

        if validate:
            self.validate_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file with defaults"""
        default_config = {
            "registry": {"timeout": 300, "verify_tls": True},
            "transfer": {"staging_dir": None, "chunk_size": 1024 * 1024},
            "kubernetes": {"namespace": "default"},
            "migration": {"default_tag": "latest"},
            "logging": {"level": "INFO"},
        }

        try:
            if os.path.exists(self.config_file):
                with open(self.config_file, "r") as f:
                    user_config = yaml.safe_load(f) or {}
                return self._merge_config(default_config, user_config)
            else:
                logging.debug(f"Config file {self.config_file} not found, using defaults")
                return default_config
        except (OSError, yaml.YAMLError) as e:
            logging.error(f"Error loading config file {self.config_file}: {e}")
            return default_config

    def _merge_config(self, default: Dict[str, Any], user: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge user config with defaults"""
        result = default.copy()
        for key, value in user.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value
        return result

    # Registry configuration
    def get_registry_timeout(self) -> int:
        """Get HTTP timeout (seconds) for registry calls, with type coercion"""
        timeout = os.environ.get("REGISTRY_TIMEOUT") or self.config["registry"]["timeout"]
        try:
            return int(timeout)
        except (ValueError, TypeError):
            raise ConfigValidationError(
                f"registry.timeout must be an integer, got: {timeout} (type: {type(timeout).__name__})"
            )

    def get_registry_verify_tls(self) -> bool:
        env_value = os.environ.get("REGISTRY_VERIFY_TLS")
        if env_value is not None:
            return _parse_bool(env_value)
        return _parse_bool(self.config["registry"]["verify_tls"])

    # Transfer configuration
    def get_staging_dir(self) -> Optional[str]:
        """Get the directory for layer staging files (None means the system temp dir)"""
        return os.environ.get("STAGING_DIR") or self.config["transfer"].get("staging_dir")

    def get_chunk_size(self) -> int:
        chunk_size = self.config["transfer"]["chunk_size"]
        try:
            return int(chunk_size)
        except (ValueError, TypeError):
            raise ConfigValidationError(
                f"transfer.chunk_size must be an integer, got: {chunk_size} (type: {type(chunk_size).__name__})"
            )

    # Kubernetes configuration
    def get_kubernetes_namespace(self) -> str:
        """Namespace holding registry pull secrets"""
        return os.environ.get("K8S_NAMESPACE") or self.config["kubernetes"]["namespace"]

    # Migration defaults
    def get_default_tag(self) -> str:
        return self.config["migration"]["default_tag"]

    # Logging
    def get_log_level(self) -> str:
        return str(os.environ.get("LOG_LEVEL") or self.config["logging"]["level"]).upper()

    def get_client_options(self) -> Dict[str, Any]:
        """Keyword arguments for building registry clients"""
        return {"timeout": self.get_registry_timeout(), "verify_tls": self.get_registry_verify_tls()}

    def validate_config(self) -> None:
        """Validate configuration values

        Raises:
            ConfigValidationError: If configuration is invalid
        """
        errors = []
        warnings = []

        timeout = self.get_registry_timeout()
        if timeout < 1:
            errors.append(f"registry.timeout must be a positive integer (seconds), got: {timeout}")
        elif timeout > 3600:
            warnings.append(f"registry.timeout is very high ({timeout}s), a hung registry will block for a long time")

        if not self.get_registry_verify_tls():
            warnings.append("TLS verification is disabled for registry connections")

        chunk_size = self.get_chunk_size()
        if chunk_size < 1:
            errors.append(f"transfer.chunk_size must be a positive integer, got: {chunk_size}")

        staging_dir = self.get_staging_dir()
        if staging_dir and not os.path.isdir(staging_dir):
            errors.append(f"transfer.staging_dir '{staging_dir}' does not exist or is not a directory")

        namespace = self.get_kubernetes_namespace()
        if not namespace or not str(namespace).strip():
            errors.append("kubernetes.namespace cannot be empty")

        default_tag = self.get_default_tag()
        if not default_tag or not str(default_tag).strip():
            errors.append("migration.default_tag cannot be empty")

        log_level = self.get_log_level()
        if log_level not in VALID_LOG_LEVELS:
            errors.append(f"logging.level must be one of {', '.join(VALID_LOG_LEVELS)}, got: {log_level}")

        for warning in warnings:
            logging.warning(f"Configuration warning: {warning}")

        if errors:
            error_msg = "Configuration validation failed:\n  " + "\n  ".join(errors)
            logging.error(error_msg)
            raise ConfigValidationError(error_msg)

    def print_config(self):
        """Log the effective configuration"""
        logging.info("Current configuration:")
        logging.info(f"  Config file:        {self.config_file}")
        logging.info(f"  Registry timeout:   {self.get_registry_timeout()}s")
        logging.info(f"  Verify TLS:         {self.get_registry_verify_tls()}")
        logging.info(f"  Staging directory:  {self.get_staging_dir() or '<system temp>'}")
        logging.info(f"  Chunk size:         {self.get_chunk_size()}")
        logging.info(f"  K8s namespace:      {self.get_kubernetes_namespace()}")
        logging.info(f"  Default tag:        {self.get_default_tag()}")
        logging.info(f"  Log level:          {self.get_log_level()}")


# Global config manager instance
# Not validated on import; callers run validate_config() where they can report failures
config_manager = ConfigManager(validate=False)
