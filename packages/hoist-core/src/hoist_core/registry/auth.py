"""Authentication providers for container registry access.

Supported Authentication Types:
- AnonymousAuthProvider: No credentials (public or local registries)
- BasicAuthProvider: Username/password read from environment variables
- TokenAuthProvider: Bearer token read from an environment variable
- EcrAuthProvider: Amazon ECR authorization token via boto3

Secrets never live in the settings file; RegistryAuth only names the
environment variables to read.

Example:
    >>> provider = create_auth_provider(registry_config)
    >>> creds = provider.get_credentials()
"""

from __future__ import annotations

import base64
import os
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import structlog

from hoist_core.errors import AuthenticationError
from hoist_core.schemas.registry import AuthType, RegistryConfig

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Credentials:
    """Registry credentials.

    Attributes:
        username: Username (a fixed value for token and ECR auth).
        password: Password or token.
        expires_at: Expiry time for token credentials (None if non-expiring).
    """

    username: str
    password: str
    expires_at: datetime | None = None

    @property
    def is_expired(self) -> bool:
        """Check if credentials have expired."""
        if self.expires_at is None:
            return False
        return datetime.now(timezone.utc) > self.expires_at

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password='<REDACTED>')"


class AuthProvider(ABC):
    """Abstract base class for registry authentication providers."""

    @abstractmethod
    def get_credentials(self) -> Credentials | None:
        """Return current credentials, or None for anonymous access.

        Raises:
            AuthenticationError: If credentials cannot be obtained.
        """
        ...

    @abstractmethod
    def refresh_if_needed(self) -> bool:
        """Refresh credentials if expired or about to expire.

        Returns:
            True if credentials were refreshed.
        """
        ...

    @property
    @abstractmethod
    def auth_type(self) -> AuthType:
        """Return the authentication type for this provider."""
        ...


class AnonymousAuthProvider(AuthProvider):
    """No authentication (e.g. the MicroK8s built-in registry)."""

    @property
    def auth_type(self) -> AuthType:
        return AuthType.ANONYMOUS

    def get_credentials(self) -> Credentials | None:
        return None

    def refresh_if_needed(self) -> bool:
        return False


class BasicAuthProvider(AuthProvider):
    """Username/password authentication from environment variables.

    Example:
        >>> provider = BasicAuthProvider(
        ...     "harbor.example.com",
        ...     username_env="HOIST_REGISTRY_USERNAME",
        ...     password_env="HOIST_REGISTRY_PASSWORD",
        ... )
    """

    def __init__(
        self,
        registry: str,
        *,
        username_env: str,
        password_env: str,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self._registry = registry
        self._username_env = username_env
        self._password_env = password_env
        self._environ = environ if environ is not None else os.environ
        self._credentials: Credentials | None = None

    @property
    def auth_type(self) -> AuthType:
        return AuthType.BASIC

    def get_credentials(self) -> Credentials:
        """Read username and password from the configured variables.

        Raises:
            AuthenticationError: If either variable is unset or empty.
        """
        if self._credentials is not None:
            return self._credentials

        username = self._environ.get(self._username_env)
        password = self._environ.get(self._password_env)
        missing = [
            name
            for name, value in ((self._username_env, username), (self._password_env, password))
            if not value
        ]
        if missing:
            raise AuthenticationError(
                self._registry,
                f"environment variable(s) not set: {', '.join(missing)}",
            )

        assert username is not None and password is not None
        self._credentials = Credentials(username=username, password=password)
        logger.debug(
            "basic_auth_credentials_loaded",
            registry=self._registry,
            username_env=self._username_env,
        )
        return self._credentials

    def refresh_if_needed(self) -> bool:
        """Basic credentials never expire."""
        return False


class TokenAuthProvider(AuthProvider):
    """Bearer token authentication from an environment variable.

    The token is presented as the password of a fixed username, which is
    what registries accepting token auth over basic auth expect.
    """

    TOKEN_USERNAME = "__token__"

    def __init__(
        self,
        registry: str,
        *,
        token_env: str,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self._registry = registry
        self._token_env = token_env
        self._environ = environ if environ is not None else os.environ
        self._credentials: Credentials | None = None

    @property
    def auth_type(self) -> AuthType:
        return AuthType.TOKEN

    def get_credentials(self) -> Credentials:
        """Read the token from the configured variable.

        Raises:
            AuthenticationError: If the variable is unset or empty.
        """
        if self._credentials is not None:
            return self._credentials

        token = self._environ.get(self._token_env)
        if not token:
            raise AuthenticationError(
                self._registry,
                f"environment variable not set: {self._token_env}",
            )

        self._credentials = Credentials(username=self.TOKEN_USERNAME, password=token)
        logger.debug("token_auth_credentials_loaded", registry=self._registry)
        return self._credentials

    def refresh_if_needed(self) -> bool:
        """Static tokens never expire."""
        return False


class EcrAuthProvider(AuthProvider):
    """Amazon ECR authentication using the ambient AWS credentials.

    Requires boto3 at runtime (``pip install hoist[aws]``).

    Example:
        >>> provider = EcrAuthProvider("123456789.dkr.ecr.us-east-1.amazonaws.com")
        >>> provider.region
        'us-east-1'
    """

    # ECR tokens expire after 12 hours; refresh 30 minutes early
    REFRESH_BUFFER_MINUTES = 30

    def __init__(self, registry: str, *, region: str | None = None) -> None:
        self._registry = registry
        self._region = region
        self._credentials: Credentials | None = None

    @property
    def auth_type(self) -> AuthType:
        return AuthType.AWS_ECR

    @property
    def region(self) -> str:
        """AWS region, explicit or parsed from the ECR host.

        Raises:
            AuthenticationError: If the host is not an ECR host and no region is set.
        """
        if self._region is not None:
            return self._region
        # <account>.dkr.ecr.<region>.amazonaws.com
        parts = self._registry.split(":", 1)[0].split(".")
        if len(parts) >= 4 and parts[1] == "dkr" and parts[2] == "ecr":
            return parts[3]
        raise AuthenticationError(
            self._registry,
            "cannot extract AWS region from registry host (set registry.auth.aws_region)",
        )

    def get_credentials(self) -> Credentials:
        """Fetch (or reuse) an ECR authorization token.

        Raises:
            AuthenticationError: If boto3 is missing or the token request fails.
        """
        if self._credentials is not None and not self._should_refresh():
            return self._credentials

        try:
            import boto3
        except ImportError as e:
            raise AuthenticationError(
                self._registry,
                "boto3 required for aws-ecr auth. Install with: pip install 'hoist[aws]'",
            ) from e

        region = self.region
        try:
            ecr_client = boto3.client("ecr", region_name=region)
            response = ecr_client.get_authorization_token()
            auth_data = response["authorizationData"][0]
            token = base64.b64decode(auth_data["authorizationToken"]).decode("utf-8")
            username, password = token.split(":", 1)
        except Exception as e:
            raise AuthenticationError(
                self._registry,
                f"failed to get ECR authorization token: {type(e).__name__}",
            ) from e

        expires_at = auth_data.get("expiresAt")
        if isinstance(expires_at, datetime):
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=timezone.utc)
        else:
            expires_at = None

        self._credentials = Credentials(username=username, password=password, expires_at=expires_at)
        logger.debug(
            "ecr_credentials_obtained",
            registry=self._registry,
            region=region,
            expires_at=expires_at.isoformat() if expires_at else None,
        )
        return self._credentials

    def refresh_if_needed(self) -> bool:
        """Refresh the token when it expires within the buffer."""
        if not self._should_refresh():
            return False
        self._credentials = None
        self.get_credentials()
        return True

    def _should_refresh(self) -> bool:
        if self._credentials is None:
            return True
        if self._credentials.expires_at is None:
            return False
        buffer = timedelta(minutes=self.REFRESH_BUFFER_MINUTES)
        return datetime.now(timezone.utc) > (self._credentials.expires_at - buffer)


def create_auth_provider(
    config: RegistryConfig,
    *,
    environ: Mapping[str, str] | None = None,
) -> AuthProvider:
    """Create the auth provider configured for a registry.

    Args:
        config: Registry configuration.
        environ: Environment mapping (defaults to os.environ).

    Returns:
        AuthProvider for ``config.auth.type``.

    Raises:
        ValueError: If the auth type is unknown.
    """
    auth = config.auth
    host = config.host

    if auth.type == AuthType.ANONYMOUS:
        return AnonymousAuthProvider()

    if auth.type == AuthType.BASIC:
        return BasicAuthProvider(
            host,
            username_env=auth.username_env,
            password_env=auth.password_env,
            environ=environ,
        )

    if auth.type == AuthType.TOKEN:
        return TokenAuthProvider(host, token_env=auth.password_env, environ=environ)

    if auth.type == AuthType.AWS_ECR:
        return EcrAuthProvider(host, region=auth.aws_region)

    raise ValueError(f"Unknown auth type: {auth.type}")


__all__ = [
    "AnonymousAuthProvider",
    "AuthProvider",
    "BasicAuthProvider",
    "Credentials",
    "EcrAuthProvider",
    "TokenAuthProvider",
    "create_auth_provider",
]
