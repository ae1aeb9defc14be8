"""
Credential resolution for Docker registries.

- AWS ECR: temporary credentials and proxy endpoint from GetAuthorizationToken
- Static credentials from the command line, environment or Kubernetes secrets
"""

from registry_migrator.auth.providers import (
    EcrRegistry,
    get_credentials_from_env,
    get_credentials_from_k8s_secret,
    parse_credentials,
    parse_ecr_registry_url,
    resolve_registry_endpoint,
    with_static_credentials,
)

__all__ = [
    "EcrRegistry",
    "get_credentials_from_env",
    "get_credentials_from_k8s_secret",
    "parse_credentials",
    "parse_ecr_registry_url",
    "resolve_registry_endpoint",
    "with_static_credentials",
]
