"""Container registry access for hoist.

- RegistryClient: list tags, resolve digests, fetch and push raw manifests
- Auth providers: anonymous, basic, token, aws-ecr
- RetryPolicy / CircuitBreaker: resilience for transient registry failures
"""

from __future__ import annotations

from hoist_core.registry.auth import (
    AnonymousAuthProvider,
    AuthProvider,
    BasicAuthProvider,
    Credentials,
    EcrAuthProvider,
    TokenAuthProvider,
    create_auth_provider,
)
from hoist_core.registry.client import ManifestBlob, RegistryClient, compute_digest
from hoist_core.registry.resilience import (
    CircuitBreaker,
    CircuitState,
    RetryPolicy,
    with_resilience,
)

__all__ = [
    "AnonymousAuthProvider",
    "AuthProvider",
    "BasicAuthProvider",
    "CircuitBreaker",
    "CircuitState",
    "Credentials",
    "EcrAuthProvider",
    "ManifestBlob",
    "RegistryClient",
    "RetryPolicy",
    "TokenAuthProvider",
    "compute_digest",
    "create_auth_provider",
    "with_resilience",
]
