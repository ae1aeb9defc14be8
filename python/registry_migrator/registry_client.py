"""
Docker Registry V2 client.

RegistryClient is the capability set a migration needs from a registry;
anything implementing these six operations can stand in for the HTTP client,
test doubles included. DockerRegistryClient implements them with requests,
using basic auth and answering bearer-token challenges the way Docker Hub and
most hosted registries expect.
"""

import json
import re
from abc import ABC, abstractmethod
from typing import BinaryIO, Dict, Optional, Tuple
from urllib.parse import parse_qsl, urlencode, urljoin, urlparse, urlunparse

import requests

from registry_migrator.logging_utils import get_logger
from registry_migrator.models import Manifest

MANIFEST_V1_MEDIA_TYPE = "application/vnd.docker.distribution.manifest.v1+json"
MANIFEST_V1_SIGNED_MEDIA_TYPE = "application/vnd.docker.distribution.manifest.v1+prettyjws"


class RegistryError(Exception):
    """The registry answered with an unexpected HTTP status."""

    def __init__(self, status_code: int, url: str, message: str = ""):
        self.status_code = status_code
        self.url = url
        text = f"{status_code} from {url}"
        if message:
            text = f"{text}: {message}"
        super().__init__(text)


class RegistryClient(ABC):
    """Operations a migration performs against one registry."""

    url: str

    @abstractmethod
    def ping(self) -> None:
        """Raise if the registry cannot be reached or rejects the credentials."""

    @abstractmethod
    def has_layer(self, repository: str, digest: str) -> bool:
        ...

    @abstractmethod
    def download_layer(self, repository: str, digest: str) -> BinaryIO:
        """Return a readable stream over the blob; the caller closes it."""

    @abstractmethod
    def upload_layer(self, repository: str, digest: str, stream: BinaryIO) -> None:
        ...

    @abstractmethod
    def manifest(self, repository: str, tag: str) -> Manifest:
        ...

    @abstractmethod
    def put_manifest(self, repository: str, tag: str, manifest: Manifest) -> None:
        ...


def normalize_registry_url(url: str) -> str:
    """Default the scheme to https and drop trailing slashes.

    Raises:
        ValueError: If no host can be derived from the URL
    """
    url = (url or "").strip()
    if not url:
        raise ValueError("Registry URL is empty")
    if "://" not in url:
        url = f"https://{url}"

    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise ValueError(f"Malformed registry URL: {url}")
    return url.rstrip("/")


def parse_bearer_challenge(header: Optional[str]) -> Optional[Dict[str, str]]:
    """Parse 'Bearer realm="...",service="...",scope="..."' into a dict."""
    if not header or not header.lower().startswith("bearer "):
        return None
    return dict(re.findall(r'(\w+)="([^"]*)"', header[len("bearer ") :]))


def _with_query(url: str, **params: str) -> str:
    parsed = urlparse(url)
    query = parse_qsl(parsed.query, keep_blank_values=True)
    query.extend(params.items())
    return urlunparse(parsed._replace(query=urlencode(query)))


class DockerRegistryClient(RegistryClient):
    """Registry V2 API over HTTP."""

    def __init__(
        self,
        url: str,
        username: str = "",
        password: str = "",
        timeout: int = 300,
        verify_tls: bool = True,
        session: Optional[requests.Session] = None,
    ):
        self.url = normalize_registry_url(url)
        self.username = username
        self.password = password
        self.timeout = timeout
        self.verify_tls = verify_tls
        self.session = session or requests.Session()
        self.logger = get_logger(self.__class__.__name__)
        # Bearer tokens keyed by repository ("" for registry-wide calls such as ping)
        self._tokens: Dict[str, str] = {}

    @property
    def _basic_auth(self) -> Optional[Tuple[str, str]]:
        if self.username and self.password:
            return self.username, self.password
        return None

    def _fetch_token(self, challenge: Dict[str, str]) -> str:
        realm = challenge.get("realm")
        if not realm:
            raise RegistryError(401, self.url, "bearer challenge without realm")

        params = {key: value for key, value in challenge.items() if key in ("service", "scope")}
        self.logger.debug(f"Requesting bearer token from {realm} for scope {params.get('scope', '<none>')}")
        response = self.session.get(
            realm, params=params, auth=self._basic_auth, timeout=self.timeout, verify=self.verify_tls
        )
        if response.status_code != 200:
            raise RegistryError(response.status_code, realm, "token request was rejected")

        body = response.json()
        token = body.get("token") or body.get("access_token")
        if not token:
            raise RegistryError(response.status_code, realm, "token response did not contain a token")
        return token

    def _request(self, method: str, path: str, repository: str = "", **kwargs) -> requests.Response:
        # Keep any path prefix of the base URL
        url = f"{self.url}{path}" if path.startswith("/") else path
        headers = dict(kwargs.pop("headers", None) or {})
        kwargs.setdefault("timeout", self.timeout)
        kwargs.setdefault("verify", self.verify_tls)

        body = kwargs.get("data")
        start = body.tell() if hasattr(body, "tell") else None
        retried = False

        while True:
            token = self._tokens.get(repository)
            if token:
                headers["Authorization"] = f"Bearer {token}"
                auth = None
            else:
                auth = self._basic_auth

            response = self.session.request(method, url, headers=headers, auth=auth, **kwargs)
            if response.status_code != 401 or retried:
                return response

            challenge = parse_bearer_challenge(response.headers.get("WWW-Authenticate"))
            if challenge is None:
                return response

            response.close()
            self._tokens[repository] = self._fetch_token(challenge)
            retried = True
            if start is not None:
                body.seek(start)

    @staticmethod
    def _check(response: requests.Response, expected: Tuple[int, ...]) -> None:
        if response.status_code not in expected:
            message = (response.text or "")[:200]
            raise RegistryError(response.status_code, response.url, message)

    def ping(self) -> None:
        response = self._request("GET", "/v2/")
        self._check(response, (200,))

    def has_layer(self, repository: str, digest: str) -> bool:
        response = self._request("HEAD", f"/v2/{repository}/blobs/{digest}", repository, allow_redirects=True)
        if response.status_code == 404:
            return False
        self._check(response, (200,))
        return True

    def download_layer(self, repository: str, digest: str) -> BinaryIO:
        response = self._request("GET", f"/v2/{repository}/blobs/{digest}", repository, stream=True)
        if response.status_code != 200:
            response.close()
            raise RegistryError(response.status_code, response.url, f"could not download {digest}")
        # Blobs are copied byte for byte; never let urllib3 decompress them
        response.raw.decode_content = False
        return response.raw

    def upload_layer(self, repository: str, digest: str, stream: BinaryIO) -> None:
        response = self._request("POST", f"/v2/{repository}/blobs/uploads/", repository)
        self._check(response, (202,))

        location = response.headers.get("Location")
        if not location:
            raise RegistryError(response.status_code, response.url, "upload slot response had no Location header")

        upload_url = _with_query(urljoin(f"{self.url}/", location), digest=digest)
        response = self._request(
            "PUT",
            upload_url,
            repository,
            data=stream,
            headers={"Content-Type": "application/octet-stream"},
        )
        self._check(response, (201,))
        self.logger.debug(f"Uploaded {digest} to {repository}")

    def manifest(self, repository: str, tag: str) -> Manifest:
        response = self._request(
            "GET",
            f"/v2/{repository}/manifests/{tag}",
            repository,
            headers={"Accept": f"{MANIFEST_V1_SIGNED_MEDIA_TYPE}, {MANIFEST_V1_MEDIA_TYPE}"},
        )
        self._check(response, (200,))
        return Manifest.from_dict(response.json())

    def put_manifest(self, repository: str, tag: str, manifest: Manifest) -> None:
        response = self._request(
            "PUT",
            f"/v2/{repository}/manifests/{tag}",
            repository,
            data=json.dumps(manifest.to_dict(), indent=3),
            headers={"Content-Type": MANIFEST_V1_MEDIA_TYPE},
        )
        self._check(response, (200, 201, 202))
