"""Settings schema and loader for hoist.

Settings come from a YAML file (``--config`` or ``HOIST_CONFIG``) and are
overridden by CLI flags. Every section has defaults except the registry URI.

Example:
    >>> settings = load_settings(Path("hoist.yaml"), registry_uri="oci://localhost:32000")
    >>> settings.rollout.timeout_seconds
    300.0
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from hoist_core.errors import ConfigurationError
from hoist_core.schemas.registry import RegistryConfig

logger = structlog.get_logger(__name__)


class RolloutConfig(BaseModel):
    """Rollout polling and failure detection settings.

    Examples:
        >>> RolloutConfig().poll_interval_seconds
        5.0
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    timeout_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Time allowed for all replicas to become ready",
    )
    poll_interval_seconds: float = Field(
        default=5.0,
        ge=0,
        description="Delay between status polls",
    )
    crash_loop_restart_threshold: int = Field(
        default=3,
        ge=1,
        description="Container restarts on the new image treated as a crash loop",
    )


class TagPolicyConfig(BaseModel):
    """Dev -> stable tag derivation policy.

    The default strips ``-devN`` (``1.2.0-dev2`` -> ``1.2.0``). A stable
    suffix renders stable tags as ``1.2.0-<suffix>``.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    dev_marker: str = Field(default="dev", pattern=r"^[a-z]+$")
    stable_suffix: str | None = Field(default=None, pattern=r"^[a-z0-9]+$")

    @model_validator(mode="after")
    def validate_distinct(self) -> TagPolicyConfig:
        """A stable suffix equal to the dev marker would make channels ambiguous."""
        if self.stable_suffix is not None and self.stable_suffix == self.dev_marker:
            raise ValueError("stable_suffix must differ from dev_marker")
        return self


class AuditConfig(BaseModel):
    """Promotion audit log location. In-memory only when path is None."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    path: Path | None = Field(
        default=Path(".hoist/promotions.jsonl"),
        description="JSON Lines file promotion records are appended to",
    )


class HoistSettings(BaseModel):
    """Top-level hoist settings."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    registry: RegistryConfig
    rollout: RolloutConfig = Field(default_factory=RolloutConfig)
    tag_policy: TagPolicyConfig = Field(default_factory=TagPolicyConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)
    deploy_by_digest: bool = Field(
        default=False,
        description="Deploy image@digest instead of image:stable-tag",
    )


def _read_settings_file(path: Path) -> dict[str, Any]:
    """Read a YAML settings file into a dict.

    Raises:
        ConfigurationError: If the file is missing, unreadable or not a mapping.
    """
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(str(path), f"cannot read file: {e.strerror or e}") from e

    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigurationError(str(path), f"invalid YAML: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(str(path), "top level must be a mapping")
    return data


def _merge(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge overrides into base (overrides win)."""
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_settings(
    path: Path | None = None,
    *,
    registry_uri: str | None = None,
    overrides: dict[str, Any] | None = None,
) -> HoistSettings:
    """Load settings from an optional YAML file plus overrides.

    Args:
        path: Settings file, or None to use defaults only.
        registry_uri: Registry URI overriding ``registry.uri``.
        overrides: Nested mapping merged over the file contents.

    Returns:
        Validated HoistSettings.

    Raises:
        ConfigurationError: If the file cannot be read or validation fails.
    """
    source = str(path) if path is not None else "cli"
    data = _read_settings_file(path) if path is not None else {}

    if registry_uri is not None:
        data = _merge(data, {"registry": {"uri": registry_uri}})
    if overrides:
        data = _merge(data, overrides)

    registry = data.get("registry")
    if not isinstance(registry, dict) or not registry.get("uri"):
        raise ConfigurationError(
            source, "registry.uri is required (use --registry or HOIST_REGISTRY)"
        )

    try:
        settings = HoistSettings.model_validate(data)
    except ValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(loc) for loc in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ConfigurationError(source, errors) from e

    logger.debug(
        "settings_loaded",
        source=source,
        registry=settings.registry.host,
        auth_type=settings.registry.auth.type.value,
    )
    return settings


def load_rollout_settings(
    path: Path | None = None,
    *,
    overrides: dict[str, Any] | None = None,
) -> RolloutConfig:
    """Load only the ``rollout`` section; no registry is required.

    Raises:
        ConfigurationError: If the file cannot be read or validation fails.
    """
    source = str(path) if path is not None else "cli"
    data: Any = {}
    if path is not None:
        data = _read_settings_file(path).get("rollout") or {}
    if not isinstance(data, dict):
        raise ConfigurationError(source, "rollout must be a mapping")
    if overrides:
        data = _merge(data, overrides)
    try:
        return RolloutConfig.model_validate(data)
    except ValidationError as e:
        errors = "; ".join(
            f"rollout.{'.'.join(str(loc) for loc in err['loc'])}: {err['msg']}"
            for err in e.errors()
        )
        raise ConfigurationError(source, errors) from e


__all__ = [
    "AuditConfig",
    "HoistSettings",
    "RolloutConfig",
    "TagPolicyConfig",
    "load_rollout_settings",
    "load_settings",
]
