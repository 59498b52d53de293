"""Release lifecycle schemas: image tags, promotion records, rollout reports.

These schemas are the data passed explicitly through the promote-then-deploy
call chain.

Key Components:
    ImageTag: Parsed `{repository}:{version}-dev{N}` / stable image tag
    PromotionRecord: Immutable audit record of one promotion
    RolloutState: Rollout state machine states
    DeploymentTarget: `[namespace/]name[:container]` deployment reference
    DeploymentStatus: Snapshot of orchestrator readiness
    RolloutReport: Result of one rollout
    DeploymentOutcome: Result of a full promote-and-deploy run

Example:
    >>> tag = ImageTag(repository="shop", version="1.2.0", channel=ReleaseChannel.DEV, build=2)
    >>> tag.tag
    '1.2.0-dev2'
    >>> tag.reference
    'shop:1.2.0-dev2'
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from hoist_core.errors import ExitCode

SHA256_DIGEST_PATTERN = r"^sha256:[a-f0-9]{64}$"
"""Regex pattern for valid SHA256 digest format (sha256:<64 hex chars>)."""

VERSION_PATTERN = r"^\d+\.\d+\.\d+$"
"""Regex pattern for the `major.minor.patch` core of a tag."""

_TARGET_PATTERN = re.compile(
    r"^(?:(?P<namespace>[a-z0-9]([-a-z0-9]*[a-z0-9])?)/)?"
    r"(?P<name>[a-z0-9]([-a-z0-9.]*[a-z0-9])?)"
    r"(?::(?P<container>[a-z0-9]([-a-z0-9]*[a-z0-9])?))?$"
)


def _utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


# =============================================================================
# Tags
# =============================================================================


class ReleaseChannel(str, Enum):
    """Release channel an image tag belongs to."""

    DEV = "dev"
    STABLE = "stable"


class ImageTag(BaseModel):
    """A parsed image tag.

    Dev tags render as ``{prefix}{version}-{dev_marker}{build}``; stable tags
    as ``{prefix}{version}`` or ``{prefix}{version}-{suffix}`` when the tag
    policy configures a stable suffix.

    Examples:
        >>> ImageTag(repository="shop", version="1.2.0", channel="stable").tag
        '1.2.0'
        >>> ImageTag(repository="shop", version="1.2.0", channel="dev", build=7, prefix="v").tag
        'v1.2.0-dev7'
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    repository: str = Field(default="", description="Repository name (empty for a bare tag)")
    version: str = Field(..., pattern=VERSION_PATTERN, description="major.minor.patch")
    channel: ReleaseChannel = Field(..., description="Release channel")
    build: int | None = Field(default=None, ge=0, description="Dev build counter")
    prefix: str = Field(default="", pattern=r"^v?$", description="Version prefix ('' or 'v')")
    marker: str = Field(
        default="dev",
        pattern=r"^[a-z]+$",
        description="Dev channel marker preceding the build counter",
    )
    suffix: str | None = Field(
        default=None,
        pattern=r"^[a-z0-9]+$",
        description="Stable tag suffix, if the tag policy uses one",
    )

    @model_validator(mode="after")
    def validate_channel_fields(self) -> ImageTag:
        """Dev tags carry a build counter; stable tags never do."""
        if self.channel == ReleaseChannel.DEV and self.build is None:
            raise ValueError("dev tags require a build counter")
        if self.channel == ReleaseChannel.STABLE and self.build is not None:
            raise ValueError("stable tags cannot carry a build counter")
        return self

    @property
    def tag(self) -> str:
        """The rendered tag string."""
        if self.channel == ReleaseChannel.DEV:
            return f"{self.prefix}{self.version}-{self.marker}{self.build}"
        if self.suffix:
            return f"{self.prefix}{self.version}-{self.suffix}"
        return f"{self.prefix}{self.version}"

    @property
    def reference(self) -> str:
        """``{repository}:{tag}``, or the bare tag without a repository."""
        if not self.repository:
            return self.tag
        return f"{self.repository}:{self.tag}"

    @property
    def version_tuple(self) -> tuple[int, int, int]:
        """(major, minor, patch) as integers."""
        major, minor, patch = (int(part) for part in self.version.split("."))
        return major, minor, patch

    @property
    def sort_key(self) -> tuple[int, int, int, int]:
        """Numeric ordering key: (major, minor, patch, build)."""
        return (*self.version_tuple, self.build if self.build is not None else -1)

    def __str__(self) -> str:
        return self.reference


# =============================================================================
# Promotion
# =============================================================================


class PromotionOutcome(str, Enum):
    """How a promotion request was resolved."""

    PROMOTED = "promoted"
    ALREADY_PROMOTED = "already_promoted"
    DRY_RUN = "dry_run"


class PromotionRecord(BaseModel):
    """Audit record of one promotion. Never mutated after creation.

    Attributes:
        promotion_id: Unique promotion identifier (UUID).
        repository: Repository the tags belong to.
        source_tag: Dev tag that was promoted (e.g., 1.2.0-dev2).
        derived_tag: Stable tag it was promoted to (e.g., 1.2.0).
        source_digest: Manifest digest shared by both tags.
        promoted_at: Promotion timestamp (UTC).
        outcome: promoted, already_promoted or dry_run.
        trace_id: OpenTelemetry trace ID for linking.

    Examples:
        >>> from uuid import uuid4
        >>> record = PromotionRecord(
        ...     promotion_id=uuid4(),
        ...     repository="shop",
        ...     source_tag="1.2.0-dev2",
        ...     derived_tag="1.2.0",
        ...     source_digest="sha256:" + "a" * 64,
        ...     outcome=PromotionOutcome.PROMOTED,
        ... )
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    promotion_id: UUID = Field(..., description="Unique promotion identifier")
    repository: str = Field(..., min_length=1, description="Repository name")
    source_tag: str = Field(..., min_length=1, description="Dev tag promoted from")
    derived_tag: str = Field(..., min_length=1, description="Stable tag promoted to")
    source_digest: str = Field(
        ...,
        pattern=SHA256_DIGEST_PATTERN,
        description="SHA256 manifest digest of the promoted image",
    )
    promoted_at: datetime = Field(default_factory=_utc_now, description="Promotion time (UTC)")
    outcome: PromotionOutcome = Field(..., description="How the promotion was resolved")
    trace_id: str = Field(default="", description="OpenTelemetry trace ID")

    def matches(self, source_digest: str, derived_tag: str) -> bool:
        """Check whether this record covers a (digest, stable tag) pair."""
        return self.source_digest == source_digest and self.derived_tag == derived_tag


# =============================================================================
# Rollout
# =============================================================================


class RolloutState(str, Enum):
    """Rollout state machine states.

    Terminal states: HEALTHY, FAILED, ROLLED_BACK.
    """

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    HEALTHY = "healthy"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"

    @property
    def is_terminal(self) -> bool:
        """Whether no further transition is expected."""
        return self in (RolloutState.HEALTHY, RolloutState.FAILED, RolloutState.ROLLED_BACK)


class DeploymentTarget(BaseModel):
    """Reference to a deployment: ``[namespace/]name[:container]``.

    Examples:
        >>> DeploymentTarget.parse("shop/web:app").namespace
        'shop'
        >>> str(DeploymentTarget.parse("web"))
        'default/web'
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    namespace: str = Field(default="default", min_length=1)
    name: str = Field(..., min_length=1)
    container: str | None = Field(
        default=None,
        description="Container to patch; the first container when omitted",
    )

    @classmethod
    def parse(cls, ref: str) -> DeploymentTarget:
        """Parse ``[namespace/]name[:container]``.

        Raises:
            ValueError: If the reference is not a valid deployment reference.
        """
        match = _TARGET_PATTERN.match(ref.strip())
        if match is None:
            raise ValueError(
                f"Invalid deployment reference '{ref}' (expected [namespace/]name[:container])"
            )
        return cls(
            namespace=match.group("namespace") or "default",
            name=match.group("name"),
            container=match.group("container"),
        )

    def __str__(self) -> str:
        ref = f"{self.namespace}/{self.name}"
        if self.container:
            ref += f":{self.container}"
        return ref


class DeploymentStatus(BaseModel):
    """Snapshot of a deployment's rollout progress."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    generation: int = Field(default=0, ge=0)
    observed_generation: int = Field(default=0, ge=0)
    desired_replicas: int = Field(default=0, ge=0)
    updated_replicas: int = Field(default=0, ge=0)
    ready_replicas: int = Field(default=0, ge=0)
    available_replicas: int = Field(default=0, ge=0)
    crash_looping: bool = Field(default=False)
    crash_loop_reason: str | None = Field(default=None)

    @property
    def is_ready(self) -> bool:
        """All desired replicas run the latest spec and report ready."""
        if self.observed_generation < self.generation:
            return False
        return (
            self.updated_replicas >= self.desired_replicas
            and self.ready_replicas >= self.desired_replicas
            and self.available_replicas >= self.desired_replicas
        )


class RolloutReport(BaseModel):
    """Result of one rollout attempt.

    Attributes:
        target: Deployment reference.
        image: Image that was rolled out.
        previous_image: Image recorded before the patch (rollback value).
        state: Terminal state reached.
        transitions: Every state visited, in order.
        reason: One-line reason for a non-healthy outcome.
        polls: Number of status polls performed.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    target: str = Field(..., min_length=1)
    image: str = Field(..., min_length=1)
    previous_image: str | None = Field(default=None)
    state: RolloutState
    transitions: list[RolloutState] = Field(default_factory=list)
    reason: str = Field(default="")
    polls: int = Field(default=0, ge=0)
    started_at: datetime = Field(default_factory=_utc_now)
    finished_at: datetime = Field(default_factory=_utc_now)

    @property
    def duration_seconds(self) -> float:
        """Wall-clock duration of the rollout."""
        return (self.finished_at - self.started_at).total_seconds()


class DeploymentOutcome(BaseModel):
    """Result of a full promote-and-deploy run."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    repository: str
    target: str
    dev_tag: str
    stable_tag: str
    image: str
    promotion: PromotionRecord
    rollout: RolloutReport

    @property
    def state(self) -> RolloutState:
        """Terminal state of the run (the rollout's)."""
        return self.rollout.state

    @property
    def succeeded(self) -> bool:
        """True when the deployment ended healthy."""
        return self.state == RolloutState.HEALTHY

    @property
    def exit_code(self) -> int:
        """CLI exit code for this outcome."""
        return int(ROLLOUT_STATE_EXIT_CODES.get(self.state, ExitCode.GENERAL_ERROR))


ROLLOUT_STATE_EXIT_CODES: dict[RolloutState, int] = {
    RolloutState.PENDING: ExitCode.SUCCESS,  # dry run, nothing rolled out
    RolloutState.HEALTHY: ExitCode.SUCCESS,
    RolloutState.FAILED: ExitCode.ROLLOUT_FAILED,
    RolloutState.ROLLED_BACK: ExitCode.ROLLED_BACK,
}
"""Exit codes for terminal rollout states."""


__all__ = [
    "DeploymentOutcome",
    "DeploymentStatus",
    "DeploymentTarget",
    "ImageTag",
    "PromotionOutcome",
    "PromotionRecord",
    "ROLLOUT_STATE_EXIT_CODES",
    "ReleaseChannel",
    "RolloutReport",
    "RolloutState",
    "SHA256_DIGEST_PATTERN",
]
