"""
Verified registry connections.

A connection is only handed out after the registry answered a ping, so a
migration never starts against an endpoint it cannot reach.
"""

from dataclasses import dataclass
from typing import Any, Callable

from registry_migrator.error_utils import ConnectionErrorKind, create_connection_error
from registry_migrator.logging_utils import get_logger
from registry_migrator.models import RegistryEndpoint
from registry_migrator.registry_client import DockerRegistryClient, RegistryClient

logger = get_logger(__name__)

ClientFactory = Callable[..., RegistryClient]


@dataclass
class RegistryConnection:
    """A pinged registry client together with the endpoint it was built from."""

    endpoint: RegistryEndpoint
    client: RegistryClient
    role: str

    @property
    def url(self) -> str:
        return self.endpoint.base_url


def connect(
    endpoint: RegistryEndpoint,
    role: str = "source",
    client_factory: ClientFactory = DockerRegistryClient,
    **client_options: Any,
) -> RegistryConnection:
    """Build a client for the endpoint and ping it.

    Raises:
        RegistryConnectionError: kind CLIENT_BUILD if the client could not be
            created, kind PING if the registry did not answer
    """
    try:
        client = client_factory(endpoint.base_url, endpoint.username, endpoint.password, **client_options)
    except Exception as e:
        raise create_connection_error(role, endpoint.base_url, ConnectionErrorKind.CLIENT_BUILD, e) from e

    auth_mode = "anonymously" if endpoint.is_anonymous else f"as {endpoint.username}"
    logger.info(f"Pinging {role} registry {endpoint.base_url} {auth_mode}")
    try:
        client.ping()
    except Exception as e:
        raise create_connection_error(role, endpoint.base_url, ConnectionErrorKind.PING, e) from e

    return RegistryConnection(endpoint=endpoint, client=client, role=role)
