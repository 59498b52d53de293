"""Registry configuration schemas.

This module defines the Pydantic v2 schemas for container registry access:
authentication, retry, circuit breaker, and transport settings.

Key Components:
    RegistryConfig: Top-level `registry` section of the hoist settings file
    RegistryAuth: Authentication type and credential source
    ResilienceConfig: Retry policy and circuit breaker settings

Example:
    >>> config = RegistryConfig(
    ...     uri="oci://123456789.dkr.ecr.us-east-1.amazonaws.com/team",
    ...     auth=RegistryAuth(type=AuthType.AWS_ECR),
    ... )
    >>> config.resilience.retry.max_attempts
    3
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

# =============================================================================
# Constants
# =============================================================================

OCI_MANIFEST_TYPE = "application/vnd.oci.image.manifest.v1+json"
"""Media type for OCI image manifests."""

OCI_INDEX_TYPE = "application/vnd.oci.image.index.v1+json"
"""Media type for OCI image indexes (multi-arch images)."""

DOCKER_MANIFEST_TYPE = "application/vnd.docker.distribution.manifest.v2+json"
"""Media type for Docker v2 schema 2 manifests."""

DOCKER_MANIFEST_LIST_TYPE = "application/vnd.docker.distribution.manifest.list.v2+json"
"""Media type for Docker manifest lists."""

ACCEPTED_MANIFEST_TYPES = (
    OCI_MANIFEST_TYPE,
    OCI_INDEX_TYPE,
    DOCKER_MANIFEST_TYPE,
    DOCKER_MANIFEST_LIST_TYPE,
)
"""Manifest media types requested on every manifest read."""


# =============================================================================
# Authentication
# =============================================================================


class AuthType(str, Enum):
    """Authentication types for container registries."""

    ANONYMOUS = "anonymous"
    BASIC = "basic"
    TOKEN = "token"
    AWS_ECR = "aws-ecr"


class RegistryAuth(BaseModel):
    """Authentication configuration for a container registry.

    For basic/token auth the credentials are read from environment variables
    whose names are configured here, so the settings file never holds secrets.
    For ECR the token is fetched with the ambient AWS credentials.

    Examples:
        >>> auth = RegistryAuth(type=AuthType.BASIC)
        >>> auth.username_env
        'HOIST_REGISTRY_USERNAME'
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: AuthType = Field(
        default=AuthType.ANONYMOUS,
        description="Authentication type for registry access",
    )
    username_env: str = Field(
        default="HOIST_REGISTRY_USERNAME",
        min_length=1,
        description="Environment variable holding the registry username (basic auth)",
    )
    password_env: str = Field(
        default="HOIST_REGISTRY_PASSWORD",
        min_length=1,
        description="Environment variable holding the registry password or token",
    )
    aws_region: str | None = Field(
        default=None,
        description="AWS region for ECR (parsed from the registry host when omitted)",
    )

    @field_validator("aws_region")
    @classmethod
    def validate_aws_region(cls, v: str | None, info: ValidationInfo) -> str | None:
        """Reject an AWS region for non-ECR auth types."""
        data: dict[str, Any] = info.data if info.data else {}
        auth_type = data.get("type")
        if v is not None and auth_type != AuthType.AWS_ECR:
            raise ValueError(f"aws_region only applies to auth type '{AuthType.AWS_ECR.value}'")
        return v


# =============================================================================
# Resilience
# =============================================================================


class RetryConfig(BaseModel):
    """Retry policy configuration for transient registry failures.

    Uses exponential backoff with optional jitter.

    Examples:
        >>> config = RetryConfig(max_attempts=5, initial_delay_ms=500)
        >>> config.initial_delay_ms
        500
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Maximum number of attempts (first call included)",
    )
    initial_delay_ms: int = Field(
        default=1000,
        ge=0,
        description="Initial delay between attempts in milliseconds",
    )
    backoff_multiplier: float = Field(
        default=2.0,
        ge=1.0,
        le=5.0,
        description="Multiplier for exponential backoff",
    )
    max_delay_ms: int = Field(
        default=30000,
        ge=0,
        description="Maximum delay cap in milliseconds",
    )
    jitter: bool = Field(
        default=True,
        description="Add random jitter to delays",
    )


class CircuitBreakerConfig(BaseModel):
    """Circuit breaker configuration for registry availability.

    State transitions:
    - CLOSED -> OPEN: After failure_threshold consecutive failures
    - OPEN -> HALF_OPEN: After recovery_timeout_ms
    - HALF_OPEN -> CLOSED: On successful probe
    - HALF_OPEN -> OPEN: On failed probe

    Examples:
        >>> CircuitBreakerConfig(failure_threshold=3).recovery_timeout_ms
        60000
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    enabled: bool = Field(default=True, description="Enable circuit breaker pattern")
    failure_threshold: int = Field(
        default=5,
        ge=1,
        description="Consecutive failures before opening the circuit",
    )
    recovery_timeout_ms: int = Field(
        default=60000,
        ge=0,
        description="Time in OPEN state before transitioning to HALF_OPEN",
    )
    half_open_requests: int = Field(
        default=1,
        ge=1,
        description="Probe requests allowed in HALF_OPEN state",
    )


class ResilienceConfig(BaseModel):
    """Retry and circuit breaker settings combined."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    retry: RetryConfig = Field(default_factory=RetryConfig)
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)


# =============================================================================
# Registry
# =============================================================================


class RegistryConfig(BaseModel):
    """Complete container registry configuration.

    The URI names the registry host and an optional namespace; repositories
    are addressed relative to it (``oci://host/namespace`` + ``app`` ->
    ``host/namespace/app``).

    Examples:
        >>> config = RegistryConfig(uri="oci://localhost:32000", plain_http=True)
        >>> config.host
        'localhost:32000'
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    uri: str = Field(
        ...,
        min_length=1,
        pattern=r"^oci://[a-zA-Z0-9][a-zA-Z0-9.-]*[a-zA-Z0-9](:[0-9]+)?(/[a-zA-Z0-9._-]+)*$",
        description="Registry URI (e.g., oci://harbor.example.com/namespace)",
        examples=[
            "oci://harbor.example.com/platform",
            "oci://123456789.dkr.ecr.us-east-1.amazonaws.com/team",
            "oci://localhost:32000",
        ],
    )
    auth: RegistryAuth = Field(
        default_factory=RegistryAuth,
        description="Authentication configuration",
    )
    tls_verify: bool = Field(
        default=True,
        description="Verify TLS certificates (disable only for local testing)",
    )
    plain_http: bool = Field(
        default=False,
        description="Talk plain HTTP (e.g. the MicroK8s built-in registry)",
    )
    resilience: ResilienceConfig = Field(
        default_factory=ResilienceConfig,
        description="Retry and circuit breaker configuration",
    )

    @field_validator("uri")
    @classmethod
    def validate_uri(cls, v: str) -> str:
        """Validate and normalize the registry URI."""
        if not v.startswith("oci://"):
            raise ValueError("Registry URI must start with 'oci://'")
        return v.rstrip("/")

    @property
    def host(self) -> str:
        """Registry hostname (with port, if any)."""
        return self.uri[len("oci://") :].split("/", 1)[0]

    @property
    def namespace(self) -> str:
        """Namespace path below the host, or empty string."""
        parts = self.uri[len("oci://") :].split("/", 1)
        return parts[1] if len(parts) > 1 else ""


__all__ = [
    "ACCEPTED_MANIFEST_TYPES",
    "AuthType",
    "CircuitBreakerConfig",
    "DOCKER_MANIFEST_LIST_TYPE",
    "DOCKER_MANIFEST_TYPE",
    "OCI_INDEX_TYPE",
    "OCI_MANIFEST_TYPE",
    "RegistryAuth",
    "RegistryConfig",
    "ResilienceConfig",
    "RetryConfig",
]
