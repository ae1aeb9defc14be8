"""
Credential sources for Docker registries.

ECR registries never accept static passwords; their short-lived tokens are
requested through boto3 for the account and region named in the hostname.
Every other registry is used anonymously unless static credentials are
supplied from the command line, the environment or a Kubernetes pull secret.
"""

import base64
import binascii
import json
import logging
import os
import re
from dataclasses import dataclass, replace
from typing import Callable, Optional, Tuple

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from registry_migrator.error_utils import ConfigError, create_auth_resolution_error
from registry_migrator.models import RegistryEndpoint

ECR_REGISTRY_PATTERN = re.compile(r"(?P<account_id>[0-9]{12})\.dkr\.ecr\.(?P<region>[\w\d-]+)\.amazonaws\.com")


@dataclass(frozen=True)
class EcrRegistry:
    account_id: str
    region: str


def parse_ecr_registry_url(url: str) -> Optional[EcrRegistry]:
    """Extract the account id and region from an ECR registry URL.

    Returns None for anything that is not an ECR hostname.
    """
    match = ECR_REGISTRY_PATTERN.search(url or "")
    if match is None:
        return None
    return EcrRegistry(account_id=match.group("account_id"), region=match.group("region"))


def decode_authorization_token(token: str, registry_url: str = "") -> Tuple[str, str]:
    """Decode a base64 "username:password" token, splitting on the first colon."""
    try:
        decoded = base64.b64decode(token, validate=True).decode("utf-8")
    except (binascii.Error, ValueError, TypeError) as e:
        raise create_auth_resolution_error(
            registry_url, f"Failed to decode base64 encoded authorization data for registry {registry_url}", e
        )

    username, separator, password = decoded.partition(":")
    if not separator or not username or not password:
        raise create_auth_resolution_error(
            registry_url, f"Authorization data for registry {registry_url} is not a username:password pair"
        )
    return username, password


def get_ecr_authorization(
    registry: EcrRegistry, registry_url: str = "", session_factory: Optional[Callable[..., object]] = None
) -> Tuple[str, str]:
    """Request a short-lived ECR token.

    Returns:
        Tuple of (base64 token, proxy endpoint URL)
    """
    session_factory = session_factory or boto3.session.Session
    logging.info(f"Requesting ECR authorization token for account {registry.account_id} in {registry.region}")

    try:
        session = session_factory(region_name=registry.region)
        client = session.client("ecr")
    except BotoCoreError as e:
        raise create_auth_resolution_error(registry_url, "Failed to create new AWS SDK session", e)

    try:
        response = client.get_authorization_token(registryIds=[registry.account_id])
    except (BotoCoreError, ClientError) as e:
        raise create_auth_resolution_error(
            registry_url, f"Failed to get ECR authorization token for registry {registry.account_id}", e
        )

    authorization_data = response.get("authorizationData") or []
    if not authorization_data:
        raise create_auth_resolution_error(
            registry_url, f"ECR returned no authorization data for registry {registry.account_id}"
        )

    entry = authorization_data[0]
    token = entry.get("authorizationToken")
    proxy_endpoint = entry.get("proxyEndpoint")
    if not token or not proxy_endpoint:
        raise create_auth_resolution_error(
            registry_url, f"ECR authorization data for registry {registry.account_id} is incomplete"
        )
    return token, proxy_endpoint


def resolve_registry_endpoint(url: str, session_factory: Optional[Callable[..., object]] = None) -> RegistryEndpoint:
    """Turn a registry URL into an endpoint with usable credentials.

    ECR URLs are swapped for the proxy endpoint returned with the token; the
    original hostname may only be an alias. Other URLs pass through untouched
    and anonymous.
    """
    registry = parse_ecr_registry_url(url)
    if registry is None:
        logging.debug(f"{url} is not an ECR registry, connecting without registry token")
        return RegistryEndpoint(base_url=url)

    token, proxy_endpoint = get_ecr_authorization(registry, url, session_factory)
    username, password = decode_authorization_token(token, url)
    logging.info(f"Resolved ECR registry {url} to {proxy_endpoint}")
    return RegistryEndpoint(base_url=proxy_endpoint, username=username, password=password)


def parse_credentials(creds: str) -> Tuple[str, str]:
    """Parse a "username:password" command line value."""
    username, separator, password = (creds or "").partition(":")
    if not separator or not username or not password:
        raise ConfigError(
            "Registry credentials must be given as username:password",
            suggestions=["Pass --src-creds/--dest-creds as user:password"],
        )
    return username, password


def get_credentials_from_env(prefix: str) -> Tuple[Optional[str], Optional[str]]:
    """Read <PREFIX>_REGISTRY_USERNAME and <PREFIX>_REGISTRY_PASSWORD."""
    prefix = prefix.upper()
    return os.environ.get(f"{prefix}_REGISTRY_USERNAME"), os.environ.get(f"{prefix}_REGISTRY_PASSWORD")


def _registry_host(url: str) -> str:
    """Hostname without scheme, port or path."""
    return re.sub(r"^[a-z][a-z0-9+.-]*://", "", url or "", flags=re.IGNORECASE).split("/")[0].split(":")[0]


def get_credentials_from_k8s_secret(
    secret_name: str,
    namespace: str,
    registry_url: str,
) -> Tuple[Optional[str], Optional[str]]:
    """Get registry username and password from a Kubernetes pull secret.

    The secret must hold a .dockerconfigjson entry. Entries are matched on the
    registry hostname, ignoring scheme and port.

    Returns:
        Tuple of (username, password); (None, None) when nothing matches
    """
    from kubernetes import client as k8s_client
    from kubernetes import config as k8s_config
    from kubernetes.client.rest import ApiException
    from kubernetes.config.config_exception import ConfigException

    try:
        k8s_config.load_incluster_config()
    except ConfigException:
        k8s_config.load_kube_config()

    core_v1 = k8s_client.CoreV1Api()
    logging.debug(f"Reading {secret_name} secret from namespace {namespace}")

    try:
        secret = core_v1.read_namespaced_secret(name=secret_name, namespace=namespace)
    except ApiException as e:
        if e.status == 404:
            logging.warning(f"Secret {secret_name} not found in namespace {namespace}")
        else:
            logging.warning(f"Error reading secret {secret_name}: {e}")
        return None, None

    if not secret.data or ".dockerconfigjson" not in secret.data:
        logging.warning(f"Secret {secret_name} does not contain .dockerconfigjson")
        return None, None

    dockerconfig = json.loads(base64.b64decode(secret.data[".dockerconfigjson"]).decode("utf-8"))
    registry_host = _registry_host(registry_url)

    for auth_url, auth_data in dockerconfig.get("auths", {}).items():
        if _registry_host(auth_url) != registry_host:
            continue

        username = auth_data.get("username")
        password = auth_data.get("password")
        if (not username or not password) and "auth" in auth_data:
            decoded_user, _, decoded_pass = base64.b64decode(auth_data["auth"]).decode("utf-8").partition(":")
            username = username or decoded_user
            password = password or decoded_pass

        if username and password:
            logging.info(f"Found registry credentials for {registry_host} in {secret_name} secret")
            return username, password

    logging.warning(f"No matching registry credentials found in {secret_name} secret for {registry_host}")
    return None, None


def with_static_credentials(
    endpoint: RegistryEndpoint, username: Optional[str], password: Optional[str]
) -> RegistryEndpoint:
    """Attach static credentials to an anonymous endpoint.

    Endpoints that already carry credentials (ECR tokens) are returned as is.
    """
    if not endpoint.is_anonymous or not (username and password):
        return endpoint
    return replace(endpoint, username=username, password=password)
