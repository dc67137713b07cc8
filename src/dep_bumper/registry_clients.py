"""
Registry clients for resolving the latest version of a dependency.

Each client pairs the parse rule for one registry's specifier shape with the
lookup strategy for that registry's version-listing endpoint. The set of
clients is closed: adding a registry means adding one class to
REGISTRY_CLIENTS.
"""

import asyncio
import os
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple, Type
from urllib.parse import SplitResult, quote

import httpx
from httpx import HTTPStatusError, RequestError

from .cache_manager import get_cache_manager
from .cli_config import get_config
from .dependency import (
    Dependency,
    create_url,
    is_prerelease,
    semver_key,
)
from .error_handling import log_credential_error, log_network_error
from .structured_logging import log_registry_check

CREDENTIAL_PATTERN = re.compile(r"^[a-zA-Z0-9_\-+=/.]+$")

# Version token inside a URL path: semver with an optional tag letter
_VERSION_TOKEN = r"[a-zA-Z]?\d+\.\d+\.\d+(?:-[0-9A-Za-z.-]+)?(?:\+[0-9A-Za-z.-]+)?"

DENO_STD_PATTERN = re.compile(
    rf"^/std@(?P<version>{_VERSION_TOKEN})(?P<path>/.*)?$"
)
DENO_LAND_X_PATTERN = re.compile(
    rf"^/x/(?P<module>[^/@]+)@(?P<version>{_VERSION_TOKEN})(?P<path>/.*)?$"
)
PACKAGE_PATTERN = re.compile(
    r"^/?(?P<name>(?:@[^@/]+/)?[^@/]+)@(?P<version>[^/]+)(?P<path>/.*)?$"
)


class RegistryKind(Enum):
    """Naming and versioning conventions a specifier may follow."""

    DENO_STD = "deno_std"
    DENO_LAND_X = "deno_land_x"
    NPM = "npm"
    NODE = "node"


def _validate_credential(credential: str, credential_type: str = "token") -> str:
    """
    Validate and sanitize credential inputs.

    Raises:
        ValueError: If credential is invalid or unsafe
    """
    if not credential or not isinstance(credential, str):
        raise ValueError(f"Invalid {credential_type}: must be a non-empty string")

    credential = credential.strip()
    if len(credential) > 500:
        raise ValueError(f"{credential_type} too long: {len(credential)} chars")
    if not CREDENTIAL_PATTERN.match(credential):
        raise ValueError(f"Invalid {credential_type}: contains unsafe characters")

    return credential


def _load_token_from_env(*env_vars: str) -> Optional[str]:
    for env_var in env_vars:
        value = os.getenv(env_var)
        if not value:
            continue
        try:
            return _validate_credential(value, f"environment variable {env_var}")
        except ValueError as e:
            log_credential_error(
                "Invalid credential format in environment variable",
                "registry_clients",
                "_load_token_from_env",
                credential_type="environment_variable",
                exception=e,
            )
    return None


@dataclass(frozen=True)
class RegistryConfig:
    """Base URL and optional bearer token for one registry."""

    base_url: str
    token: Optional[str] = None

    def __post_init__(self):
        if not self.base_url or not isinstance(self.base_url, str):
            raise ValueError("base_url must be a non-empty string")
        object.__setattr__(self, "base_url", self.base_url.rstrip("/"))
        if self.token:
            object.__setattr__(self, "token", _validate_credential(self.token))

    def get_auth_headers(self) -> Dict[str, str]:
        if self.token:
            return {"Authorization": f"Bearer {self.token}"}
        return {}


@dataclass(frozen=True)
class VersionCheckResult:
    """Result of looking up the latest version of a dependency."""

    package_name: str
    registry_type: str
    latest_version: Optional[str] = None
    versions_count: int = 0
    error: Optional[str] = None
    check_duration_ms: Optional[int] = None


def select_latest_version(
    versions: Iterable[Any], include_prereleases: bool = False
) -> Optional[str]:
    """
    Pick the highest semantic version out of a registry's version list.

    Non-semver entries are ignored. Pre-releases are only considered when
    `include_prereleases` is set or nothing else is available.
    """
    candidates: List[Tuple[Tuple[Any, ...], str]] = []
    for version in versions:
        if not isinstance(version, str):
            continue
        key = semver_key(version)
        if key is not None:
            candidates.append((key, version))

    if not candidates:
        return None

    if not include_prereleases:
        stable = [c for c in candidates if not is_prerelease(c[1])]
        if stable:
            candidates = stable

    return max(candidates, key=lambda c: c[0])[1]


class RateLimiter:
    """Simple rate limiter to prevent overwhelming registries."""

    def __init__(self, requests_per_second: float = 10.0):
        self.requests_per_second = requests_per_second
        self.min_interval = 1.0 / requests_per_second
        self.last_request_time = 0.0
        self._lock: Optional[asyncio.Lock] = None

    async def acquire(self) -> None:
        """Wait if necessary to respect rate limits."""
        if self._lock is None:
            self._lock = asyncio.Lock()

        async with self._lock:
            time_since_last = time.monotonic() - self.last_request_time
            if time_since_last < self.min_interval:
                await asyncio.sleep(self.min_interval - time_since_last)
            self.last_request_time = time.monotonic()


class BaseRegistryClient(ABC):
    """
    Base class for registry clients.

    Uses the async context manager pattern for httpx.AsyncClient resource
    management: the HTTP client is created on entry and closed on exit.
    """

    kind: RegistryKind

    def __init__(
        self,
        rate_limit_rps: float = 10.0,
        timeout: float = 30.0,
        registry_config: Optional[RegistryConfig] = None,
        include_prereleases: Optional[bool] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        config = get_config()

        self.rate_limiter = RateLimiter(rate_limit_rps)
        self.timeout = httpx.Timeout(timeout, connect=config.network.connect_timeout)
        self.registry_config = registry_config
        self.include_prereleases = (
            include_prereleases
            if include_prereleases is not None
            else config.update.include_prereleases
        )
        self.transport = transport
        self.client: Optional[httpx.AsyncClient] = None

        self._headers = {
            "User-Agent": config.network.user_agent,
            "Accept": "application/json",
        }
        if self.registry_config:
            self._headers.update(self.registry_config.get_auth_headers())

    async def __aenter__(self):
        """Initialize the HTTP client when entering the context."""
        self.client = httpx.AsyncClient(
            timeout=self.timeout,
            headers=self._headers,
            transport=self.transport,
            follow_redirects=True,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Clean up the HTTP client when exiting the context."""
        if self.client:
            await self.client.aclose()
            self.client = None

    def get_registry_type(self) -> str:
        return self.kind.value

    @property
    def cache_namespace(self) -> str:
        # Stable-only and pre-release lookups of one package differ
        if self.include_prereleases:
            return f"{self.kind.value}+prerelease"
        return self.kind.value

    @classmethod
    @abstractmethod
    def matches(cls, url: SplitResult) -> bool:
        """Whether a specifier URL follows this registry's conventions."""

    @classmethod
    @abstractmethod
    def parse_props(cls, url: SplitResult) -> Optional[Dependency]:
        """Split a matching specifier URL into name, version and path."""

    @abstractmethod
    def get_versions_url(self, package_name: str) -> str:
        """URL of the version-listing endpoint for a dependency name."""

    @abstractmethod
    def extract_versions(self, data: Any) -> List[str]:
        """Pull the list of published versions out of the endpoint's JSON."""

    async def check_latest_version(self, package_name: str) -> VersionCheckResult:
        """
        Look up the latest published version of a dependency.

        Args:
            package_name: Registry-qualified dependency name

        Returns:
            VersionCheckResult with the latest version or error details
        """
        start_time = time.time()

        if not package_name or not isinstance(package_name, str):
            return VersionCheckResult(
                package_name=package_name,
                registry_type=self.get_registry_type(),
                error="Invalid package name",
            )

        cache_manager = get_cache_manager()
        cached_version = cache_manager.get(package_name, self.cache_namespace)
        if cached_version is not None:
            return VersionCheckResult(
                package_name=package_name,
                registry_type=self.get_registry_type(),
                latest_version=cached_version,
                check_duration_ms=int((time.time() - start_time) * 1000),
            )

        if self.client is None:
            return VersionCheckResult(
                package_name=package_name,
                registry_type=self.get_registry_type(),
                error="HTTP client not initialized - use within async context manager",
            )

        url = self.get_versions_url(package_name)

        try:
            await self.rate_limiter.acquire()
            response = await self.client.get(url)
            duration_ms = int((time.time() - start_time) * 1000)

            if response.status_code == 404:
                return VersionCheckResult(
                    package_name=package_name,
                    registry_type=self.get_registry_type(),
                    error="Package not found in registry",
                    check_duration_ms=duration_ms,
                )

            response.raise_for_status()
            versions = self.extract_versions(response.json())
            latest_version = select_latest_version(versions, self.include_prereleases)

            log_registry_check(
                package_name, self.get_registry_type(), latest_version, duration_ms
            )

            if latest_version is not None:
                cache_manager.put(package_name, self.cache_namespace, latest_version)

            return VersionCheckResult(
                package_name=package_name,
                registry_type=self.get_registry_type(),
                latest_version=latest_version,
                versions_count=len(versions),
                check_duration_ms=duration_ms,
            )

        except HTTPStatusError as e:
            return VersionCheckResult(
                package_name=package_name,
                registry_type=self.get_registry_type(),
                error=f"HTTP {e.response.status_code}: {e.response.text[:100]}",
            )
        except RequestError as e:
            return VersionCheckResult(
                package_name=package_name,
                registry_type=self.get_registry_type(),
                error=f"Network error: {str(e)}",
            )
        except ValueError as e:
            return VersionCheckResult(
                package_name=package_name,
                registry_type=self.get_registry_type(),
                error=f"Malformed registry response: {str(e)}",
            )

    async def get_latest_version(self, package_name: str) -> Optional[str]:
        """Latest version of a dependency, or None if it cannot be resolved."""
        result = await self.check_latest_version(package_name)
        if result.error:
            log_network_error(
                f"Could not resolve latest version of {package_name}: {result.error}",
                "registry_clients",
                "get_latest_version",
                url=self.get_versions_url(package_name),
            )
            return None
        return result.latest_version


class _DenoRegistryClient(BaseRegistryClient):
    """Shared lookup for modules served from the Deno CDN."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        if self.registry_config is None:
            self.registry_config = RegistryConfig(
                base_url=get_config().network.registry_urls["deno"]
            )
        self.base_url = self.registry_config.base_url

    def extract_versions(self, data: Any) -> List[str]:
        if not isinstance(data, dict):
            raise ValueError("expected a JSON object")
        versions = data.get("versions") or []
        if not isinstance(versions, list):
            raise ValueError("'versions' is not a list")
        return versions


class DenoStdClient(_DenoRegistryClient):
    """Client for the Deno standard library (`https://<host>/std@<version>`)."""

    kind = RegistryKind.DENO_STD

    @classmethod
    def matches(cls, url: SplitResult) -> bool:
        return url.scheme in ("http", "https") and (
            url.path == "/std" or url.path.startswith(("/std@", "/std/"))
        )

    @classmethod
    def parse_props(cls, url: SplitResult) -> Optional[Dependency]:
        match = DENO_STD_PATTERN.match(url.path)
        if not match:
            return None
        return Dependency(
            name=f"{url.netloc}/std",
            version=match.group("version"),
            path=match.group("path") or "",
        )

    def get_versions_url(self, package_name: str) -> str:
        return f"{self.base_url}/std/meta/versions.json"


class DenoLandXClient(_DenoRegistryClient):
    """Client for third-party Deno modules (`https://<host>/x/<name>@<version>`)."""

    kind = RegistryKind.DENO_LAND_X

    @classmethod
    def matches(cls, url: SplitResult) -> bool:
        return url.scheme in ("http", "https") and url.path.startswith("/x/")

    @classmethod
    def parse_props(cls, url: SplitResult) -> Optional[Dependency]:
        match = DENO_LAND_X_PATTERN.match(url.path)
        if not match:
            return None
        return Dependency(
            name=f"{url.netloc}/x/{match.group('module')}",
            version=match.group("version"),
            path=match.group("path") or "",
        )

    def get_versions_url(self, package_name: str) -> str:
        module = package_name.rsplit("/", 1)[-1]
        return f"{self.base_url}/{quote(module)}/meta/versions.json"


def _parse_package_specifier(url: SplitResult) -> Optional[Dependency]:
    match = PACKAGE_PATTERN.match(url.path)
    if not match:
        return None
    return Dependency(
        name=match.group("name"),
        version=match.group("version"),
        path=match.group("path") or "",
    )


class NPMClient(BaseRegistryClient):
    """Client for the npm registry (`npm:<name>@<version>`)."""

    kind = RegistryKind.NPM

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        if self.registry_config is None:
            self.registry_config = RegistryConfig(
                base_url=get_config().network.registry_urls["npm"],
                token=_load_token_from_env("DEP_BUMPER_NPM_TOKEN", "NPM_TOKEN"),
            )
            self._headers.update(self.registry_config.get_auth_headers())
        self.base_url = self.registry_config.base_url

    @classmethod
    def matches(cls, url: SplitResult) -> bool:
        return url.scheme == "npm"

    @classmethod
    def parse_props(cls, url: SplitResult) -> Optional[Dependency]:
        return _parse_package_specifier(url)

    def get_versions_url(self, package_name: str) -> str:
        return f"{self.base_url}/{quote(package_name, safe='@')}"

    def extract_versions(self, data: Any) -> List[str]:
        if not isinstance(data, dict):
            raise ValueError("expected a JSON object")
        versions = data.get("versions") or {}
        if not isinstance(versions, dict):
            raise ValueError("'versions' is not an object")
        return list(versions.keys())


class NodeBuiltinClient(BaseRegistryClient):
    """
    Built-in runtime modules (`node:<name>`).

    Built-ins ship with the runtime and have no registry, so lookups never
    produce a version.
    """

    kind = RegistryKind.NODE

    @classmethod
    def matches(cls, url: SplitResult) -> bool:
        return url.scheme == "node"

    @classmethod
    def parse_props(cls, url: SplitResult) -> Optional[Dependency]:
        return _parse_package_specifier(url)

    def get_versions_url(self, package_name: str) -> str:
        return f"node:{package_name}"

    def extract_versions(self, data: Any) -> List[str]:
        return []

    async def check_latest_version(self, package_name: str) -> VersionCheckResult:
        return VersionCheckResult(
            package_name=package_name, registry_type=self.get_registry_type()
        )


REGISTRY_CLIENTS: Tuple[Type[BaseRegistryClient], ...] = (
    DenoStdClient,
    DenoLandXClient,
    NPMClient,
    NodeBuiltinClient,
)


def find_registry_client_class(specifier: str) -> Optional[Type[BaseRegistryClient]]:
    """Registry client class whose conventions the specifier follows."""
    url = create_url(specifier)
    if url is None:
        return None
    for client_class in REGISTRY_CLIENTS:
        if client_class.matches(url):
            return client_class
    return None


def parse_props(specifier: str) -> Optional[Dependency]:
    """
    Parse a specifier into name, version and sub-path.

    Returns None when the specifier is not an absolute URL, follows no known
    registry convention, or carries no version token. This is an expected
    outcome for relative and unpinned imports, not an error.
    """
    url = create_url(specifier)
    if url is None:
        return None
    for client_class in REGISTRY_CLIENTS:
        if client_class.matches(url):
            return client_class.parse_props(url)
    return None


def get_registry_client(
    registry_type: RegistryKind,
    rate_limit_rps: float = 10.0,
    timeout: float = 30.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> BaseRegistryClient:
    """
    Factory function to get the client for a registry kind.

    Raises:
        ValueError: If registry_type is not supported
    """
    for client_class in REGISTRY_CLIENTS:
        if client_class.kind == registry_type:
            return client_class(rate_limit_rps, timeout, transport=transport)
    raise ValueError(f"Unsupported registry type: {registry_type}")
