"""Exception hierarchy for hoist.

All exceptions inherit from HoistError. Each class carries the CLI exit code
used when it escapes to the command line.

Exception Hierarchy:
    HoistError (base)
    ├── AuthenticationError          # Registry authentication failed
    ├── ArtifactNotFoundError        # Requested tag or digest not found
    │   └── DevTagNotFoundError      # No dev tag to promote
    ├── MalformedTagError            # Tag does not match the expected pattern
    ├── RegistryUnavailableError     # Registry not reachable (retryable)
    ├── CircuitBreakerOpenError      # Circuit breaker is open, failing fast
    ├── DigestMismatchError          # Pulled content does not match its digest
    ├── TagImmutableError            # Registry refused to overwrite a tag
    ├── PromotionConflictError       # Stable tag holds a different digest
    ├── OrchestratorError            # Orchestrator API call failed
    │   └── DeploymentNotFoundError  # Deployment target does not exist
    ├── RolloutFailedError           # Rollout did not become healthy
    │   ├── RolloutTimeoutError      # Replicas not ready before the deadline
    │   └── RolloutCrashLoopError    # New pods are crash looping
    ├── RollbackFailedError          # Automatic rollback failed
    ├── InvalidStateTransitionError  # Illegal rollout state transition
    └── ConfigurationError           # Settings could not be loaded

Exit Codes:
    0  - Success
    1  - General error (HoistError)
    2  - Authentication error
    3  - Not found
    4  - Malformed tag
    5  - Registry unavailable / circuit breaker open
    6  - Promotion conflict
    7  - Rollout failed
    8  - Rolled back (reported via RolloutState, not an exception)
    9  - Rollback failed
    10 - Configuration error

Example:
    >>> from hoist_core.errors import MalformedTagError
    >>> raise MalformedTagError("1.2.0", "not a dev tag")
    Traceback (most recent call last):
        ...
    MalformedTagError: Malformed tag '1.2.0': not a dev tag
"""

from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Exit codes of the hoist CLI. Part of its public contract."""

    SUCCESS = 0
    """Command completed successfully; rollout healthy."""

    GENERAL_ERROR = 1
    """General error (catch-all)."""

    USAGE_ERROR = 2
    """Invalid usage, or registry authentication failed."""

    AUTHENTICATION_ERROR = 2

    NOT_FOUND = 3
    """Tag, digest or deployment not found."""

    MALFORMED_TAG = 4
    """Tag does not match the dev/stable pattern."""

    REGISTRY_UNAVAILABLE = 5
    """Registry unreachable or circuit breaker open."""

    PROMOTION_CONFLICT = 6
    """Stable tag already holds a different digest."""

    ROLLOUT_FAILED = 7
    """Rollout failed and nothing was changed."""

    ROLLED_BACK = 8
    """Rollout failed and the previous image was restored."""

    ROLLBACK_FAILED = 9
    """Rollout failed and the rollback failed too."""

    CONFIGURATION_ERROR = 10
    """Settings could not be loaded or validated."""


class HoistError(Exception):
    """Base exception for all hoist errors.

    Attributes:
        exit_code: CLI exit code for this error type (default: 1).
    """

    exit_code: int = ExitCode.GENERAL_ERROR


class AuthenticationError(HoistError):
    """Raised when registry authentication fails.

    Attributes:
        registry: The registry where authentication failed.
        reason: Description of why authentication failed.
        exit_code: CLI exit code (2).
    """

    exit_code: int = ExitCode.AUTHENTICATION_ERROR

    def __init__(self, registry: str, reason: str) -> None:
        """Initialize AuthenticationError.

        Args:
            registry: The registry where authentication failed.
            reason: Description of why authentication failed.
        """
        self.registry = registry
        self.reason = reason
        super().__init__(f"Authentication failed for {registry}: {reason}")


class ArtifactNotFoundError(HoistError):
    """Raised when a requested tag or digest is not found.

    Attributes:
        reference: The tag or digest that was not found.
        repository: The repository where it was sought.
        available_tags: Optional list of available tags for a helpful message.
        exit_code: CLI exit code (3).
    """

    exit_code: int = ExitCode.NOT_FOUND

    def __init__(
        self,
        reference: str,
        repository: str,
        available_tags: list[str] | None = None,
    ) -> None:
        """Initialize ArtifactNotFoundError.

        Args:
            reference: The tag or digest that was not found.
            repository: The repository where it was sought.
            available_tags: Optional list of available tags.
        """
        self.reference = reference
        self.repository = repository
        self.available_tags = available_tags

        msg = f"Artifact not found: {reference} in {repository}"
        if available_tags:
            tags_preview = ", ".join(available_tags[:5])
            if len(available_tags) > 5:
                tags_preview += f" (and {len(available_tags) - 5} more)"
            msg += f". Available tags: {tags_preview}"
        super().__init__(msg)


class DevTagNotFoundError(ArtifactNotFoundError):
    """Raised when a repository has no dev tag to promote.

    Fatal to a promotion run: there is nothing to promote.
    """

    def __init__(
        self,
        repository: str,
        version_prefix: str | None = None,
        available_tags: list[str] | None = None,
    ) -> None:
        """Initialize DevTagNotFoundError.

        Args:
            repository: The repository that was searched.
            version_prefix: Optional version prefix the search was limited to.
            available_tags: Tags that exist but are not dev tags.
        """
        self.version_prefix = version_prefix
        reference = f"dev tag matching '{version_prefix}*'" if version_prefix else "dev tag"
        super().__init__(reference, repository, available_tags)


class MalformedTagError(HoistError):
    """Raised when a tag does not match the expected pattern.

    Non-retryable: guessing a stable tag from malformed input risks shipping
    the wrong artifact.

    Attributes:
        tag: The offending tag.
        reason: What was wrong with it.
        exit_code: CLI exit code (4).
    """

    exit_code: int = ExitCode.MALFORMED_TAG

    def __init__(self, tag: str, reason: str) -> None:
        self.tag = tag
        self.reason = reason
        super().__init__(f"Malformed tag '{tag}': {reason}")


class RegistryUnavailableError(HoistError):
    """Raised when the registry is not reachable.

    The registry client retries this error with exponential backoff before
    letting it escape.

    Attributes:
        registry: The registry that is unreachable.
        reason: Description of the connectivity failure.
        exit_code: CLI exit code (5).
    """

    exit_code: int = ExitCode.REGISTRY_UNAVAILABLE

    def __init__(self, registry: str, reason: str) -> None:
        self.registry = registry
        self.reason = reason
        super().__init__(f"Registry unavailable: {registry}: {reason}")


class CircuitBreakerOpenError(HoistError):
    """Raised when the circuit breaker is open and failing fast.

    Attributes:
        registry: The registry with the open circuit breaker.
        failure_count: Consecutive failures that opened the circuit.
        recovery_at: ISO timestamp when half-open probing will begin.
        exit_code: CLI exit code (5).
    """

    exit_code: int = ExitCode.REGISTRY_UNAVAILABLE

    def __init__(
        self,
        registry: str,
        failure_count: int = 0,
        recovery_at: str | None = None,
    ) -> None:
        self.registry = registry
        self.failure_count = failure_count
        self.recovery_at = recovery_at

        msg = f"Circuit breaker open for {registry}"
        if failure_count > 0:
            msg += f" (after {failure_count} failures)"
        if recovery_at:
            msg += f". Retry after {recovery_at}"
        super().__init__(msg)


class DigestMismatchError(HoistError):
    """Raised when pulled manifest bytes do not hash to the requested digest.

    Attributes:
        expected: The requested digest.
        actual: The digest computed from the received content.
        reference: The artifact reference being verified.
    """

    def __init__(self, expected: str, actual: str, reference: str) -> None:
        self.expected = expected
        self.actual = actual
        self.reference = reference
        super().__init__(
            f"Digest mismatch for {reference}: expected {expected[:19]}..., got {actual[:19]}..."
        )


class TagImmutableError(HoistError):
    """Raised when the registry refuses to overwrite an existing tag.

    The Promoter translates this into either an idempotent success or a
    PromotionConflictError after re-reading the tag.

    Attributes:
        tag: The tag the registry refused to write.
        repository: The repository holding the tag.
    """

    def __init__(self, tag: str, repository: str, reason: str = "") -> None:
        self.tag = tag
        self.repository = repository
        self.reason = reason
        msg = f"Registry refused to overwrite tag {tag} in {repository}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class PromotionConflictError(HoistError):
    """Raised when the stable tag already holds a different digest.

    Requires a human decision; never retried.

    Attributes:
        tag: The stable tag in conflict.
        repository: The repository holding the tag.
        existing_digest: Digest currently under the stable tag.
        source_digest: Digest that was being promoted.
        exit_code: CLI exit code (6).
    """

    exit_code: int = ExitCode.PROMOTION_CONFLICT

    def __init__(
        self,
        tag: str,
        repository: str,
        existing_digest: str | None,
        source_digest: str,
    ) -> None:
        self.tag = tag
        self.repository = repository
        self.existing_digest = existing_digest
        self.source_digest = source_digest

        msg = f"Cannot promote to {repository}:{tag}: tag already holds a different image"
        if existing_digest:
            msg += f" (existing digest: {existing_digest[:19]}..., source: {source_digest[:19]}...)"
        msg += ". Manual intervention required."
        super().__init__(msg)


class OrchestratorError(HoistError):
    """Raised when an orchestrator API call fails.

    Attributes:
        target: The deployment target reference.
        operation: The API operation that failed.
        reason: Sanitized failure description.
        exit_code: CLI exit code (7).
    """

    exit_code: int = ExitCode.ROLLOUT_FAILED

    def __init__(self, target: str, operation: str, reason: str) -> None:
        self.target = target
        self.operation = operation
        self.reason = reason
        super().__init__(f"Orchestrator {operation} failed for {target}: {reason}")


class DeploymentNotFoundError(OrchestratorError):
    """Raised when the deployment target does not exist.

    Attributes:
        exit_code: CLI exit code (3).
    """

    exit_code: int = ExitCode.NOT_FOUND

    def __init__(self, target: str, operation: str = "read") -> None:
        super().__init__(target, operation, "deployment not found")


class RolloutFailedError(HoistError):
    """Raised when a rollout does not become healthy.

    Attributes:
        target: The deployment target reference.
        image: The image being rolled out.
        reason: Why the rollout failed.
        exit_code: CLI exit code (7).
    """

    exit_code: int = ExitCode.ROLLOUT_FAILED

    def __init__(self, target: str, image: str, reason: str) -> None:
        self.target = target
        self.image = image
        self.reason = reason
        super().__init__(f"Rollout of {image} to {target} failed: {reason}")


class RolloutTimeoutError(RolloutFailedError):
    """Raised when replicas are not ready before the rollout deadline."""

    def __init__(self, target: str, image: str, timeout_seconds: float) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(
            target,
            image,
            f"replicas not ready within {timeout_seconds:g}s",
        )


class RolloutCrashLoopError(RolloutFailedError):
    """Raised when pods running the new image are crash looping."""

    def __init__(self, target: str, image: str, detail: str) -> None:
        self.detail = detail
        super().__init__(target, image, f"crash loop detected: {detail}")


class RollbackFailedError(HoistError):
    """Raised when the automatic rollback itself fails.

    Escalate immediately: the rollback is attempted once and never looped.

    Attributes:
        target: The deployment target reference.
        previous_image: The image the rollback tried to restore.
        reason: Why the rollback failed.
        exit_code: CLI exit code (9).
    """

    exit_code: int = ExitCode.ROLLBACK_FAILED

    def __init__(self, target: str, previous_image: str, reason: str) -> None:
        self.target = target
        self.previous_image = previous_image
        self.reason = reason
        super().__init__(
            f"Rollback of {target} to {previous_image} failed: {reason}. "
            "Escalate: the deployment may be serving a broken image."
        )


class InvalidStateTransitionError(HoistError):
    """Raised on an illegal rollout state transition."""

    def __init__(self, from_state: str, to_state: str) -> None:
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid rollout state transition: {from_state} -> {to_state}")


class ConfigurationError(HoistError):
    """Raised when settings cannot be loaded or validated.

    Attributes:
        source: Where the settings came from (file path or 'cli').
        exit_code: CLI exit code (10).
    """

    exit_code: int = ExitCode.CONFIGURATION_ERROR

    def __init__(self, source: str, reason: str) -> None:
        self.source = source
        self.reason = reason
        super().__init__(f"Invalid configuration ({source}): {reason}")


__all__ = [
    "ArtifactNotFoundError",
    "AuthenticationError",
    "CircuitBreakerOpenError",
    "ConfigurationError",
    "DeploymentNotFoundError",
    "DevTagNotFoundError",
    "DigestMismatchError",
    "ExitCode",
    "HoistError",
    "InvalidStateTransitionError",
    "MalformedTagError",
    "OrchestratorError",
    "PromotionConflictError",
    "RegistryUnavailableError",
    "RollbackFailedError",
    "RolloutCrashLoopError",
    "RolloutFailedError",
    "RolloutTimeoutError",
    "TagImmutableError",
]
