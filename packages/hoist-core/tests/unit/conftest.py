"""Unit test fixtures for hoist-core.

Unit tests run without a registry or a cluster:
- FakeOrasClient stands in for ``oras.client.OrasClient`` and serves an
  in-memory OCI distribution API through ``do_request``/``get_tags``
- FakeOrchestrator scripts deployment statuses for the rollout driver
- FakeClock drives timeouts without sleeping
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Callable
from typing import Any
from unittest.mock import MagicMock

import pytest
import requests

from hoist_core.registry.auth import AnonymousAuthProvider
from hoist_core.registry.client import DIGEST_HEADER, RegistryClient
from hoist_core.registry.resilience import RetryPolicy
from hoist_core.rollout.orchestrator import Orchestrator
from hoist_core.schemas.registry import (
    OCI_MANIFEST_TYPE,
    RegistryConfig,
    ResilienceConfig,
    RetryConfig,
)
from hoist_core.schemas.release import DeploymentStatus, DeploymentTarget
from hoist_core.telemetry.metrics import ReleaseMetrics

REGISTRY_HOST = "registry.test"
REGISTRY_URI = f"oci://{REGISTRY_HOST}/team"
SHOP_PATH = "team/shop"
PREVIOUS_IMAGE = f"{REGISTRY_HOST}/{SHOP_PATH}:1.1.0"
READY_STATUS = DeploymentStatus(
    desired_replicas=2, updated_replicas=2, ready_replicas=2, available_replicas=2
)


def make_response(
    status_code: int,
    *,
    headers: dict[str, str] | None = None,
    content: bytes = b"",
    text: str | None = None,
) -> requests.Response:
    """Build a real requests.Response without a network round trip."""
    response = requests.Response()
    response.status_code = status_code
    response.headers.update(headers or {})
    response._content = text.encode("utf-8") if text is not None else content
    response.encoding = "utf-8"
    return response


def manifest_bytes(seed: str) -> bytes:
    """A small OCI image manifest whose config digest depends on ``seed``."""
    config_digest = "sha256:" + hashlib.sha256(seed.encode()).hexdigest()
    return json.dumps(
        {
            "schemaVersion": 2,
            "mediaType": OCI_MANIFEST_TYPE,
            "config": {
                "mediaType": "application/vnd.oci.image.config.v1+json",
                "digest": config_digest,
                "size": 7023,
            },
            "layers": [],
        },
        separators=(",", ":"),
    ).encode("utf-8")


class FakeOrasClient:
    """In-memory registry behind the OrasClient surface RegistryClient uses."""

    def __init__(self) -> None:
        self.manifests: dict[str, tuple[bytes, str]] = {}
        self.tags: dict[str, dict[str, str]] = {}
        self.requests: list[tuple[str, str]] = []
        self.pushes: list[tuple[str, str, str]] = []
        self.logins: list[dict[str, Any]] = []
        self.failures: list[int | Exception] = []
        self.immutable_tags = False
        self.omit_digest_header = False

    def add_image(self, path: str, tag: str, content: bytes | None = None) -> str:
        """Store a manifest under ``path:tag`` and return its digest."""
        content = content if content is not None else manifest_bytes(f"{path}:{tag}")
        digest = "sha256:" + hashlib.sha256(content).hexdigest()
        self.manifests[digest] = (content, OCI_MANIFEST_TYPE)
        self.tags.setdefault(path, {})[tag] = digest
        return digest

    def login(self, hostname: str, username: str, password: str, insecure: bool = False) -> None:
        self.logins.append(
            {"hostname": hostname, "username": username, "password": password, "insecure": insecure}
        )

    def get_tags(self, container: str) -> list[str]:
        path = container.split("/", 1)[1]
        if self.failures:
            failure = self.failures.pop(0)
            if isinstance(failure, Exception):
                raise failure
        if path not in self.tags:
            raise ValueError("name unknown: repository name not known to registry")
        return list(self.tags[path])

    def do_request(
        self,
        url: str,
        method: str = "GET",
        data: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> requests.Response:
        self.requests.append((method, url))
        if self.failures:
            failure = self.failures.pop(0)
            if isinstance(failure, Exception):
                raise failure
            return make_response(failure)

        path, reference = url.split("/v2/", 1)[1].rsplit("/manifests/", 1)
        if method == "PUT":
            return self._put(path, reference, data or b"", (headers or {}).get("Content-Type", ""))

        if reference.startswith("sha256:"):
            digest: str | None = reference if reference in self.manifests else None
        else:
            digest = self.tags.get(path, {}).get(reference)
        if digest is None:
            return make_response(404, text='{"errors":[{"code":"MANIFEST_UNKNOWN"}]}')

        content, media_type = self.manifests[digest]
        response_headers = {"Content-Type": media_type}
        if not self.omit_digest_header:
            response_headers[DIGEST_HEADER] = digest
        return make_response(
            200,
            headers=response_headers,
            content=b"" if method == "HEAD" else content,
        )

    def _put(self, path: str, tag: str, content: bytes, media_type: str) -> requests.Response:
        if self.immutable_tags and tag in self.tags.get(path, {}):
            return make_response(
                400,
                text='{"errors":[{"code":"TAG_INVALID","message":"tag is immutable"}]}',
            )
        digest = "sha256:" + hashlib.sha256(content).hexdigest()
        self.manifests[digest] = (content, media_type)
        self.tags.setdefault(path, {})[tag] = digest
        self.pushes.append((path, tag, digest))
        return make_response(201, headers={DIGEST_HEADER: digest})


class FakeOrchestrator(Orchestrator):
    """Scripted orchestrator: statuses are served in order, the last repeats."""

    def __init__(
        self,
        image: str = PREVIOUS_IMAGE,
        statuses: list[DeploymentStatus | Exception] | None = None,
    ) -> None:
        self.image = image
        self.statuses: list[DeploymentStatus | Exception] = list(statuses or [READY_STATUS])
        self.get_image_error: Exception | None = None
        self.set_image_errors: list[Exception | None] = []
        self.set_image_calls: list[str] = []
        self.status_calls: list[str | None] = []

    def get_image(self, target: DeploymentTarget) -> str:
        if self.get_image_error is not None:
            raise self.get_image_error
        return self.image

    def set_image(self, target: DeploymentTarget, image: str) -> None:
        self.set_image_calls.append(image)
        if self.set_image_errors:
            error = self.set_image_errors.pop(0)
            if error is not None:
                raise error
        self.image = image

    def get_status(self, target: DeploymentTarget, image: str | None = None) -> DeploymentStatus:
        self.status_calls.append(image)
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if isinstance(status, Exception):
            raise status
        return status


class FakeClock:
    """Monotonic clock advanced only by ``sleep``."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def fake_oras() -> FakeOrasClient:
    """Empty in-memory registry."""
    return FakeOrasClient()


@pytest.fixture
def shop_digests(fake_oras: FakeOrasClient) -> dict[str, str]:
    """Seed ``team/shop`` with three dev tags. Returns tag -> digest."""
    return {
        tag: fake_oras.add_image(SHOP_PATH, tag)
        for tag in ("1.2.0-dev1", "1.2.0-dev2", "1.1.9-dev5")
    }


@pytest.fixture
def registry_config() -> RegistryConfig:
    """Registry config with instant, jitter-free retries."""
    return RegistryConfig(
        uri=REGISTRY_URI,
        resilience=ResilienceConfig(
            retry=RetryConfig(max_attempts=3, initial_delay_ms=100, jitter=False),
        ),
    )


@pytest.fixture
def retry_sleeps() -> list[float]:
    """Delays the retry policy slept for."""
    return []


@pytest.fixture
def metrics() -> MagicMock:
    """Metrics collector double."""
    return MagicMock(spec=ReleaseMetrics)


@pytest.fixture
def make_registry_client(
    fake_oras: FakeOrasClient,
    retry_sleeps: list[float],
    metrics: MagicMock,
) -> Callable[..., RegistryClient]:
    """Factory building a RegistryClient wired to ``fake_oras``."""

    def _create(config: RegistryConfig | None = None, **kwargs: Any) -> RegistryClient:
        config = config or RegistryConfig(
            uri=REGISTRY_URI,
            resilience=ResilienceConfig(
                retry=RetryConfig(max_attempts=3, initial_delay_ms=100, jitter=False),
            ),
        )
        kwargs.setdefault("auth_provider", AnonymousAuthProvider())
        kwargs.setdefault(
            "retry_policy", RetryPolicy(config.resilience.retry, sleep=retry_sleeps.append)
        )
        kwargs.setdefault("metrics", metrics)
        kwargs.setdefault("oras_client_factory", lambda **_: fake_oras)
        return RegistryClient(config, **kwargs)

    return _create


@pytest.fixture
def registry_client(
    make_registry_client: Callable[..., RegistryClient],
    registry_config: RegistryConfig,
) -> RegistryClient:
    """RegistryClient talking to the in-memory registry."""
    return make_registry_client(registry_config)


@pytest.fixture
def fake_orchestrator() -> FakeOrchestrator:
    """Orchestrator running PREVIOUS_IMAGE, ready on the first poll."""
    return FakeOrchestrator()


@pytest.fixture
def fake_clock() -> FakeClock:
    """Clock starting at 0 seconds."""
    return FakeClock()


@pytest.fixture
def target() -> DeploymentTarget:
    """The shop/web deployment."""
    return DeploymentTarget(namespace="shop", name="web")
