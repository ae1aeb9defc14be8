"""
Error types for image migration, with actionable guidance for users.

Every stage of a migration fails with its own MigrationError subclass so the
caller can tell which stage broke and map it to an exit status. Each error
keeps enough context (registry URL, repository, tag, digest) to diagnose the
failure without re-running in debug mode.
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCategory(Enum):
    """Categories of errors for better error handling"""

    CONNECTION = "connection"
    AUTHENTICATION = "authentication"
    CONFIGURATION = "configuration"
    NETWORK = "network"
    RESOURCE = "resource"
    UNKNOWN = "unknown"


class ActionableError(Exception):
    """Exception with actionable guidance for users"""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        suggestions: Optional[List[str]] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        """Initialize actionable error

        Args:
            message: Primary error message
            category: Error category for classification
            suggestions: List of suggested fixes
            details: Additional context information
        """
        self.message = message
        self.category = category
        self.suggestions = suggestions or []
        self.details = details or {}
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format the complete error message with suggestions"""
        lines = [self.message]

        if self.suggestions:
            lines.append("\nSuggested fixes:")
            for i, suggestion in enumerate(self.suggestions, 1):
                lines.append(f"   {i}. {suggestion}")

        if self.details:
            lines.append("\nAdditional details:")
            for key, value in self.details.items():
                lines.append(f"   {key}: {value}")

        return "\n".join(lines)


class MigrationError(ActionableError):
    """Base class for every failure that aborts an image migration."""

    stage = "migration"
    exit_code = 1

    def __init__(self, message: str, cause: Optional[BaseException] = None, **kwargs):
        self.cause = cause
        if cause is not None:
            details = kwargs.setdefault("details", {})
            details.setdefault("error_type", type(cause).__name__)
            details.setdefault("error_message", str(cause))
        super().__init__(message, **kwargs)

    def summary(self) -> str:
        """One diagnostic line: the failed stage and the underlying cause."""
        line = f"[{self.stage}] {self.message}"
        if self.cause is not None:
            line = f"{line}. {self.cause}"
        return line


class ConfigError(MigrationError):
    """A required setting (such as a repository name) is missing or invalid."""

    stage = "configuration"
    exit_code = 2

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("category", ErrorCategory.CONFIGURATION)
        super().__init__(message, **kwargs)


class AuthResolutionError(MigrationError):
    """Exchanging cloud credentials for registry credentials failed."""

    stage = "credential resolution"
    exit_code = 3

    def __init__(self, message: str, registry_url: str = "", **kwargs):
        self.registry_url = registry_url
        kwargs.setdefault("category", ErrorCategory.AUTHENTICATION)
        super().__init__(message, **kwargs)


class ConnectionErrorKind(Enum):
    CLIENT_BUILD = "could not build client"
    PING = "could not reach server"


class RegistryConnectionError(MigrationError):
    """A registry client could not be built, or the server did not answer the ping.

    Named so it does not shadow the builtin ConnectionError.
    """

    stage = "connection"
    exit_code = 4

    def __init__(self, message: str, kind: ConnectionErrorKind, role: str, registry_url: str, **kwargs):
        self.kind = kind
        self.role = role
        self.registry_url = registry_url
        kwargs.setdefault("category", ErrorCategory.CONNECTION)
        super().__init__(message, **kwargs)


class ManifestFetchError(MigrationError):
    stage = "manifest fetch"
    exit_code = 5

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("category", ErrorCategory.RESOURCE)
        super().__init__(message, **kwargs)


class LayerErrorKind(Enum):
    CHECK = "existence check"
    DOWNLOAD = "download"
    UPLOAD = "upload"


class LayerError(MigrationError):
    """A single layer could not be checked, downloaded or uploaded."""

    stage = "layer migration"
    exit_code = 6

    def __init__(self, message: str, kind: LayerErrorKind, digest: str, **kwargs):
        self.kind = kind
        self.digest = digest
        kwargs.setdefault("category", ErrorCategory.NETWORK)
        super().__init__(message, **kwargs)


class ManifestPublishError(MigrationError):
    stage = "manifest publish"
    exit_code = 7

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("category", ErrorCategory.RESOURCE)
        super().__init__(message, **kwargs)


def create_missing_repository_error(role: str) -> ConfigError:
    """Create actionable error for a missing source or destination repository name"""
    flag = "--src-repo" if role == "source" else "--dest-repo"
    return ConfigError(
        message=f"A {role} repository name is required either with {flag} or --repo",
        suggestions=[
            f"Pass {flag} <name> to name the {role} repository",
            "Or pass --repo <name> when source and destination share a repository name",
        ],
        details={"role": role},
    )


def create_auth_resolution_error(
    registry_url: str, message: str, error: Optional[Exception] = None
) -> AuthResolutionError:
    """Create actionable error for a failed registry token exchange"""
    suggestions = [
        "Verify AWS credentials are configured (aws configure, or AWS_ACCESS_KEY_ID/AWS_SECRET_ACCESS_KEY)",
        "Check the IAM policy allows ecr:GetAuthorizationToken",
        "Verify the account id and region in the registry URL are correct",
    ]

    error_str = str(error).lower() if error is not None else ""
    if "credentials" in error_str:
        suggestions.insert(0, "No usable AWS credentials were found; run 'aws sts get-caller-identity' to check")
    if "accessdenied" in error_str or "not authorized" in error_str:
        suggestions.insert(0, "The AWS identity is not allowed to request ECR tokens for this registry")

    return AuthResolutionError(
        message=message,
        registry_url=registry_url,
        cause=error,
        suggestions=suggestions,
        details={"registry_url": registry_url},
    )


def create_connection_error(
    role: str, registry_url: str, kind: ConnectionErrorKind, error: Exception
) -> RegistryConnectionError:
    """Create actionable error for registry client construction or ping failures"""
    error_str = str(error).lower()

    if kind is ConnectionErrorKind.CLIENT_BUILD:
        message = f"Failed to create registry connection for {role} registry {registry_url}"
        suggestions = [
            f"Verify the registry URL is well formed: {registry_url}",
            "URLs look like https://registry.example.com or registry.example.com:5000",
        ]
    else:
        message = f"Failed to ping {role} registry {registry_url} as a connection test"
        suggestions = [
            f"Verify the registry URL is correct: {registry_url}",
            "Check network connectivity to the registry",
            "Verify firewall rules allow access to the registry",
        ]
        if "401" in error_str or "unauthorized" in error_str:
            suggestions.insert(0, "The registry rejected the credentials; check --src-creds/--dest-creds")
        if "timeout" in error_str or "timed out" in error_str:
            suggestions.insert(1, "Increase registry.timeout in config.yaml if the registry is slow")
        if "certificate" in error_str or "ssl" in error_str:
            suggestions.insert(0, "Set registry.verify_tls to false for registries with self-signed certificates")

    return RegistryConnectionError(
        message=message,
        kind=kind,
        role=role,
        registry_url=registry_url,
        cause=error,
        suggestions=suggestions,
        details={"role": role, "registry_url": registry_url, "kind": kind.value},
    )


def create_layer_error(
    kind: LayerErrorKind, digest: str, registry_url: str, repository: str, error: Exception
) -> LayerError:
    """Create actionable error for a failed layer check, download or upload"""
    messages = {
        LayerErrorKind.CHECK: "Failure while checking if the destination registry contained an image layer",
        LayerErrorKind.DOWNLOAD: "Failure while downloading an image layer to a temp file",
        LayerErrorKind.UPLOAD: "Failure while uploading an image layer",
    }
    suggestions = ["Re-run the migration; layers already present at the destination are skipped"]
    if kind is LayerErrorKind.DOWNLOAD:
        suggestions.append("Check free space in the staging directory (transfer.staging_dir)")
    if "403" in str(error) or "denied" in str(error).lower():
        access = "push" if kind is LayerErrorKind.UPLOAD else "pull"
        suggestions.insert(0, f"Verify the credentials allow {access} access")

    return LayerError(
        message=f"{messages[kind]} {digest}",
        kind=kind,
        digest=digest,
        cause=error,
        suggestions=suggestions,
        details={"digest": digest, "registry_url": registry_url, "repository": repository},
    )
