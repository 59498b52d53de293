"""Container registry client for tag listing, digest resolution and re-tagging.

RegistryClient talks the OCI distribution API through the ORAS SDK
(``oras``): tags are listed with ``OrasClient.get_tags`` and manifests are
read and written as raw bytes through ``OrasClient.do_request``, so a
manifest pushed under a new tag is byte-identical and keeps its digest.

Every call runs inside a span (``hoist.registry.<operation>``), is counted in
metrics, and is protected by the retry policy and circuit breaker.

Example:
    >>> client = RegistryClient(RegistryConfig(uri="oci://localhost:32000", plain_http=True))
    >>> client.latest_dev_tag("shop").tag
    '1.2.0-dev2'
"""

from __future__ import annotations

import hashlib
import json
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

import requests
import structlog
from oras.client import OrasClient

from hoist_core.errors import (
    ArtifactNotFoundError,
    AuthenticationError,
    DevTagNotFoundError,
    DigestMismatchError,
    HoistError,
    RegistryUnavailableError,
    TagImmutableError,
)
from hoist_core.registry.auth import AuthProvider, create_auth_provider
from hoist_core.registry.resilience import CircuitBreaker, RetryPolicy, with_resilience
from hoist_core.release.tags import select_latest_dev
from hoist_core.schemas.registry import ACCEPTED_MANIFEST_TYPES, AuthType, RegistryConfig
from hoist_core.telemetry.metrics import ReleaseMetrics, get_release_metrics
from hoist_core.telemetry.sanitization import sanitize_error_message
from hoist_core.telemetry.tracing import create_span

if TYPE_CHECKING:
    from hoist_core.release.tags import TagPolicy
    from hoist_core.schemas.release import ImageTag

logger = structlog.get_logger(__name__)

T = TypeVar("T")

DIGEST_HEADER = "Docker-Content-Digest"

_IMMUTABLE_MARKERS = ("tag_invalid", "imagetagalreadyexists", "immutable")
_AUTH_MARKERS = ("unauthorized", "forbidden", "authentication")
_NOT_FOUND_MARKERS = ("manifest unknown", "name unknown", "not found")
_UNAVAILABLE_MARKERS = (
    "too many requests",
    "internal server error",
    "bad gateway",
    "service unavailable",
    "gateway timeout",
)


@dataclass(frozen=True)
class ManifestBlob:
    """Raw manifest bytes as served by the registry.

    Attributes:
        content: Exact manifest bytes (the digest is their SHA-256).
        media_type: Manifest media type (Content-Type on push).
        digest: ``sha256:<hex>`` digest of ``content``.
    """

    content: bytes
    media_type: str
    digest: str

    @property
    def size(self) -> int:
        """Manifest size in bytes."""
        return len(self.content)


def compute_digest(content: bytes) -> str:
    """Return the ``sha256:<hex>`` digest of ``content``."""
    return "sha256:" + hashlib.sha256(content).hexdigest()


class RegistryClient:
    """Client for one container registry.

    Repositories are addressed relative to the configured registry URI:
    ``oci://host/team`` + ``shop`` is ``host/team/shop``.

    Dependencies are injectable; each defaults lazily from the registry config.
    """

    def __init__(
        self,
        config: RegistryConfig,
        *,
        auth_provider: AuthProvider | None = None,
        circuit_breaker: CircuitBreaker | None = None,
        retry_policy: RetryPolicy | None = None,
        metrics: ReleaseMetrics | None = None,
        oras_client_factory: Callable[..., OrasClient] | None = None,
    ) -> None:
        """Initialize RegistryClient.

        Args:
            config: Registry configuration.
            auth_provider: Pre-configured auth provider (default from config.auth).
            circuit_breaker: Pre-configured circuit breaker (default from config).
            retry_policy: Pre-configured retry policy (default from config).
            metrics: Metrics collector (default: module singleton).
            oras_client_factory: Callable building the OrasClient (for tests).
        """
        self._config = config
        self._auth_provider = auth_provider
        self._circuit_breaker = circuit_breaker
        self._retry_policy = retry_policy
        self._metrics = metrics
        self._oras_client_factory = oras_client_factory or OrasClient
        self._oras_client: OrasClient | None = None

        logger.debug(
            "registry_client_initialized",
            registry=config.host,
            auth_type=config.auth.type.value,
            plain_http=config.plain_http,
        )

    @property
    def config(self) -> RegistryConfig:
        """Return the registry configuration."""
        return self._config

    @property
    def host(self) -> str:
        """Registry host (with port, if any)."""
        return self._config.host

    @property
    def auth_provider(self) -> AuthProvider:
        """Get or create the authentication provider."""
        if self._auth_provider is None:
            self._auth_provider = create_auth_provider(self._config)
        return self._auth_provider

    @property
    def circuit_breaker(self) -> CircuitBreaker | None:
        """Get or create the circuit breaker (None when disabled)."""
        if self._circuit_breaker is None and self._config.resilience.circuit_breaker.enabled:
            self._circuit_breaker = CircuitBreaker(
                self.host,
                self._config.resilience.circuit_breaker,
                metrics=self.metrics,
            )
        return self._circuit_breaker

    @property
    def retry_policy(self) -> RetryPolicy:
        """Get or create the retry policy."""
        if self._retry_policy is None:
            self._retry_policy = RetryPolicy(self._config.resilience.retry)
        return self._retry_policy

    @property
    def metrics(self) -> ReleaseMetrics:
        """Get the metrics collector."""
        if self._metrics is None:
            self._metrics = get_release_metrics()
        return self._metrics

    # ------------------------------------------------------------------
    # References
    # ------------------------------------------------------------------

    def repository_path(self, repository: str) -> str:
        """Repository path below the host (``namespace/repository``)."""
        repository = repository.strip("/")
        if not repository:
            raise ValueError("repository must not be empty")
        namespace = self._config.namespace
        return f"{namespace}/{repository}" if namespace else repository

    def image_reference(
        self,
        repository: str,
        tag: str | None = None,
        digest: str | None = None,
    ) -> str:
        """Pullable image reference: ``host/path:tag`` or ``host/path@digest``.

        Raises:
            ValueError: Unless exactly one of tag and digest is given.
        """
        if (tag is None) == (digest is None):
            raise ValueError("exactly one of tag or digest is required")
        base = f"{self.host}/{self.repository_path(repository)}"
        return f"{base}@{digest}" if digest is not None else f"{base}:{tag}"

    def _manifest_url(self, repository: str, reference: str) -> str:
        scheme = "http" if self._config.plain_http else "https"
        return f"{scheme}://{self.host}/v2/{self.repository_path(repository)}/manifests/{reference}"

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _create_oras_client(self) -> OrasClient:
        """Create and authenticate the ORAS client.

        Raises:
            AuthenticationError: If login fails.
        """
        auth_backend = "basic" if self.auth_provider.auth_type == AuthType.BASIC else "token"
        oras_client = self._oras_client_factory(
            insecure=self._config.plain_http,
            tls_verify=self._config.tls_verify,
            auth_backend=auth_backend,
        )

        credentials = self.auth_provider.get_credentials()
        if credentials is not None:
            try:
                oras_client.login(
                    hostname=self.host,
                    username=credentials.username,
                    password=credentials.password,
                    insecure=self._config.plain_http,
                )
            except Exception as e:
                raise AuthenticationError(
                    self.host,
                    f"login failed: {sanitize_error_message(str(e))}",
                ) from e

        return oras_client

    def _client(self) -> OrasClient:
        """Return the cached ORAS client, re-logging in after a credential refresh."""
        if self._oras_client is None or self.auth_provider.refresh_if_needed():
            self._oras_client = self._create_oras_client()
        return self._oras_client

    def _record_operation_metrics(self, operation: str, start_time: float, success: bool) -> float:
        duration = time.monotonic() - start_time
        self.metrics.record_duration(operation, self.host, duration)
        self.metrics.record_operation(operation, self.host, success=success)
        return duration

    def _execute(
        self,
        operation: str,
        repository: str,
        func: Callable[[], T],
        **attributes: Any,
    ) -> T:
        """Run one registry operation with span, metrics, retry and circuit breaker."""
        log = logger.bind(registry=self.host, repository=repository, operation=operation)
        start_time = time.monotonic()
        span_attributes = {
            "hoist.registry": self.host,
            "hoist.repository": repository,
            **{f"hoist.{key}": value for key, value in attributes.items()},
        }
        with create_span(f"hoist.registry.{operation}", attributes=span_attributes):
            try:
                result = with_resilience(self.retry_policy, self.circuit_breaker)(func)()
            except HoistError as e:
                duration = self._record_operation_metrics(operation, start_time, success=False)
                log.debug(
                    "registry_operation_failed",
                    error_type=type(e).__name__,
                    duration_ms=int(duration * 1000),
                )
                raise
            duration = self._record_operation_metrics(operation, start_time, success=True)
            log.debug("registry_operation_completed", duration_ms=int(duration * 1000))
            return result

    def _send(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        data: bytes | None = None,
    ) -> requests.Response:
        """Issue one HTTP request through ORAS and classify transport failures.

        Raises:
            RegistryUnavailableError: Connection errors, timeouts, 429 and 5xx.
            AuthenticationError: 401 and 403.
        """
        try:
            response: requests.Response = self._client().do_request(
                url, method, data=data, headers=headers or {}
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            raise RegistryUnavailableError(
                self.host, sanitize_error_message(f"{type(e).__name__}: {e}")
            ) from e

        status = response.status_code
        if status in (401, 403):
            raise AuthenticationError(self.host, f"HTTP {status} on {method} {url}")
        if status == 429 or status >= 500:
            raise RegistryUnavailableError(self.host, f"HTTP {status} on {method} {url}")
        return response

    def _classify_error(self, error: Exception, reference: str, repository: str) -> HoistError:
        """Map an ORAS error to the hoist taxonomy by its message."""
        message = str(error).lower()
        sanitized = sanitize_error_message(str(error))
        if isinstance(error, (requests.ConnectionError, requests.Timeout)):
            return RegistryUnavailableError(self.host, sanitized)
        if any(marker in message for marker in _AUTH_MARKERS):
            return AuthenticationError(self.host, sanitized)
        if any(marker in message for marker in _NOT_FOUND_MARKERS):
            return ArtifactNotFoundError(reference, repository)
        if any(marker in message for marker in _UNAVAILABLE_MARKERS):
            return RegistryUnavailableError(self.host, sanitized)
        return HoistError(f"Registry error for {repository}: {sanitized}")

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def list_tags(self, repository: str) -> list[str]:
        """List all tags of a repository.

        Raises:
            ArtifactNotFoundError: If the repository does not exist.
            AuthenticationError: If the registry rejects the credentials.
            RegistryUnavailableError: If the registry stays unreachable.
        """
        container = f"{self.host}/{self.repository_path(repository)}"

        def _list() -> list[str]:
            try:
                tags = self._client().get_tags(container=container)
            except HoistError:
                raise
            except Exception as e:
                raise self._classify_error(e, "tags", repository) from e
            return list(tags or [])

        tags = self._execute("list_tags", repository, _list)
        logger.debug("tags_listed", repository=repository, tag_count=len(tags))
        return tags

    def latest_dev_tag(
        self,
        repository: str,
        *,
        policy: TagPolicy | None = None,
        version_prefix: str | None = None,
    ) -> ImageTag:
        """Return the dev tag with the highest (major, minor, patch, build).

        Args:
            repository: Repository to search.
            policy: Tag policy deciding what is a dev tag.
            version_prefix: Only consider versions under this prefix (``"1.2"``).

        Raises:
            DevTagNotFoundError: If the repository has no matching dev tag.
        """
        tags = self.list_tags(repository)
        latest = select_latest_dev(tags, repository, policy, version_prefix)
        if latest is None:
            raise DevTagNotFoundError(repository, version_prefix, available_tags=sorted(tags))
        logger.info(
            "latest_dev_tag_resolved",
            repository=repository,
            tag=latest.tag,
            candidates=len(tags),
        )
        return latest

    def resolve_digest(self, repository: str, reference: str) -> str | None:
        """Resolve a tag (or digest) to its manifest digest.

        Returns:
            ``sha256:<hex>`` digest, or None if the reference does not exist.
        """
        url = self._manifest_url(repository, reference)
        headers = {"Accept": ", ".join(ACCEPTED_MANIFEST_TYPES)}

        def _resolve() -> str | None:
            response = self._send("HEAD", url, headers=headers)
            if response.status_code == 404:
                return None
            if response.status_code != 200:
                raise HoistError(
                    f"Unexpected HTTP {response.status_code} resolving {repository}:{reference}"
                )
            digest = response.headers.get(DIGEST_HEADER)
            if digest:
                return str(digest)
            # Some registries omit the digest header on HEAD
            response = self._send("GET", url, headers=headers)
            if response.status_code == 404:
                return None
            return compute_digest(response.content)

        return self._execute("resolve_digest", repository, _resolve, reference=reference)

    def fetch_manifest(self, repository: str, digest: str) -> ManifestBlob:
        """Fetch a manifest by digest and verify its content.

        Raises:
            ArtifactNotFoundError: If no manifest has this digest.
            DigestMismatchError: If the returned bytes do not hash to ``digest``.
        """
        url = self._manifest_url(repository, digest)
        headers = {"Accept": ", ".join(ACCEPTED_MANIFEST_TYPES)}

        def _fetch() -> ManifestBlob:
            response = self._send("GET", url, headers=headers)
            if response.status_code == 404:
                raise ArtifactNotFoundError(digest, repository)
            if response.status_code != 200:
                raise HoistError(
                    f"Unexpected HTTP {response.status_code} fetching {repository}@{digest}"
                )
            content = response.content
            actual = compute_digest(content)
            if actual != digest:
                raise DigestMismatchError(digest, actual, f"{repository}@{digest}")
            return ManifestBlob(
                content=content,
                media_type=self._media_type_of(response, content),
                digest=actual,
            )

        return self._execute("fetch_manifest", repository, _fetch, digest=digest)

    @staticmethod
    def _media_type_of(response: requests.Response, content: bytes) -> str:
        content_type = response.headers.get("Content-Type", "").split(";", 1)[0].strip()
        if content_type in ACCEPTED_MANIFEST_TYPES:
            return content_type
        try:
            media_type = json.loads(content).get("mediaType")
        except (ValueError, AttributeError):
            media_type = None
        return str(media_type) if media_type else ACCEPTED_MANIFEST_TYPES[0]

    def push_manifest(self, repository: str, blob: ManifestBlob, tag: str) -> str:
        """Push manifest bytes under ``tag``.

        Returns:
            The digest the registry stored the manifest under.

        Raises:
            TagImmutableError: If the registry refuses to overwrite ``tag``.
        """
        url = self._manifest_url(repository, tag)
        headers = {"Content-Type": blob.media_type}

        def _push() -> str:
            response = self._send("PUT", url, headers=headers, data=blob.content)
            status = response.status_code
            if status in (200, 201, 202):
                return str(response.headers.get(DIGEST_HEADER) or blob.digest)
            body = (response.text or "").lower()
            if status == 409 or (
                status == 400 and any(marker in body for marker in _IMMUTABLE_MARKERS)
            ):
                raise TagImmutableError(tag, repository, f"HTTP {status}")
            if status == 404:
                raise ArtifactNotFoundError(tag, repository)
            raise HoistError(
                f"Unexpected HTTP {status} pushing {repository}:{tag}: "
                f"{sanitize_error_message(response.text or '', max_length=200)}"
            )

        digest = self._execute("push_manifest", repository, _push, tag=tag)
        logger.info("manifest_pushed", repository=repository, tag=tag, digest=digest)
        return digest


__all__ = [
    "DIGEST_HEADER",
    "ManifestBlob",
    "RegistryClient",
    "compute_digest",
]
