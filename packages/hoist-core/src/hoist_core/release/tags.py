"""Dev/stable tag parsing, ordering and derivation.

Everything here is pure: no I/O, no clock. The derivation rule is a
``TagPolicy``; the default ``StripDevSuffixPolicy`` turns ``1.2.0-dev2`` into
``1.2.0`` (or ``1.2.0-<suffix>`` when a stable suffix is configured).

Example:
    >>> derive_stable_tag("1.2.0-dev2").tag
    '1.2.0'
    >>> select_latest_dev(["1.2.0-dev1", "1.2.0-dev2", "1.1.9-dev5"]).tag
    '1.2.0-dev2'
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from collections.abc import Iterable

from hoist_core.errors import MalformedTagError
from hoist_core.schemas.release import ImageTag, ReleaseChannel
from hoist_core.schemas.settings import TagPolicyConfig

_TAG_PATTERN = re.compile(
    r"^(?P<prefix>v?)(?P<version>\d+\.\d+\.\d+)(?:-(?P<qualifier>[a-z0-9]+))?$"
)


class TagPolicy(ABC):
    """Rule for recognising dev tags and deriving their stable tag."""

    @abstractmethod
    def parse(self, tag: str, repository: str = "") -> ImageTag:
        """Parse a dev or stable tag.

        Raises:
            MalformedTagError: If the tag belongs to neither channel.
        """
        ...

    @abstractmethod
    def derive_stable(self, dev_tag: ImageTag) -> ImageTag:
        """Derive the stable tag for a parsed dev tag.

        Raises:
            MalformedTagError: If ``dev_tag`` is not a dev tag.
        """
        ...


class StripDevSuffixPolicy(TagPolicy):
    """Default policy: ``[v]X.Y.Z-<marker>N`` -> ``[v]X.Y.Z[-<suffix>]``.

    Examples:
        >>> policy = StripDevSuffixPolicy(stable_suffix="stable")
        >>> policy.derive_stable(policy.parse("v1.2.0-dev3")).tag
        'v1.2.0-stable'
    """

    def __init__(self, dev_marker: str = "dev", stable_suffix: str | None = None) -> None:
        if stable_suffix is not None and stable_suffix == dev_marker:
            raise ValueError("stable_suffix must differ from dev_marker")
        self._dev_marker = dev_marker
        self._stable_suffix = stable_suffix
        self._dev_qualifier = re.compile(rf"^{re.escape(dev_marker)}(?P<build>0|[1-9]\d*)$")

    @classmethod
    def from_config(cls, config: TagPolicyConfig) -> StripDevSuffixPolicy:
        """Build the policy from the ``tag_policy`` settings section."""
        return cls(dev_marker=config.dev_marker, stable_suffix=config.stable_suffix)

    @property
    def dev_marker(self) -> str:
        return self._dev_marker

    @property
    def stable_suffix(self) -> str | None:
        return self._stable_suffix

    def parse(self, tag: str, repository: str = "") -> ImageTag:
        match = _TAG_PATTERN.match(tag)
        if match is None:
            raise MalformedTagError(tag, "expected [v]MAJOR.MINOR.PATCH[-QUALIFIER]")

        prefix = match.group("prefix")
        version = match.group("version")
        qualifier = match.group("qualifier")

        if qualifier is not None:
            dev = self._dev_qualifier.match(qualifier)
            if dev is not None:
                return ImageTag(
                    repository=repository,
                    version=version,
                    channel=ReleaseChannel.DEV,
                    build=int(dev.group("build")),
                    prefix=prefix,
                    marker=self._dev_marker,
                )
            counter = qualifier[len(self._dev_marker) :]
            if qualifier.startswith(self._dev_marker) and counter.isdigit():
                raise MalformedTagError(tag, "build counter must not have leading zeros")

        if qualifier == self._stable_suffix:
            return ImageTag(
                repository=repository,
                version=version,
                channel=ReleaseChannel.STABLE,
                prefix=prefix,
                suffix=self._stable_suffix,
            )

        if qualifier is None:
            raise MalformedTagError(tag, f"stable tags carry the '-{self._stable_suffix}' suffix")
        raise MalformedTagError(
            tag,
            f"qualifier '{qualifier}' is neither '{self._dev_marker}<N>' nor a stable tag",
        )

    def derive_stable(self, dev_tag: ImageTag) -> ImageTag:
        if dev_tag.channel != ReleaseChannel.DEV:
            raise MalformedTagError(dev_tag.tag, "already a stable tag")
        return ImageTag(
            repository=dev_tag.repository,
            version=dev_tag.version,
            channel=ReleaseChannel.STABLE,
            prefix=dev_tag.prefix,
            suffix=self._stable_suffix,
        )

    def __repr__(self) -> str:
        return (
            f"StripDevSuffixPolicy(dev_marker={self._dev_marker!r}, "
            f"stable_suffix={self._stable_suffix!r})"
        )


DEFAULT_POLICY: TagPolicy = StripDevSuffixPolicy()


def parse_tag(tag: str, repository: str = "", policy: TagPolicy | None = None) -> ImageTag:
    """Parse a dev or stable tag under ``policy`` (default policy if None)."""
    return (policy or DEFAULT_POLICY).parse(tag, repository)


def parse_dev_tag(tag: str, repository: str = "", policy: TagPolicy | None = None) -> ImageTag:
    """Parse a tag that must be a dev tag.

    Raises:
        MalformedTagError: If the tag is malformed or a stable tag.
    """
    parsed = parse_tag(tag, repository, policy)
    if parsed.channel != ReleaseChannel.DEV:
        raise MalformedTagError(tag, "already a stable tag")
    return parsed


def is_dev_tag(tag: str, policy: TagPolicy | None = None) -> bool:
    """Whether ``tag`` parses as a dev tag."""
    try:
        parse_dev_tag(tag, policy=policy)
    except MalformedTagError:
        return False
    return True


def derive_stable_tag(
    dev_tag: ImageTag | str,
    policy: TagPolicy | None = None,
    *,
    repository: str = "",
) -> ImageTag:
    """Derive the stable tag for a dev tag.

    Deterministic: the same input always yields the same stable tag.

    Args:
        dev_tag: Parsed dev tag or tag string.
        policy: Derivation policy (default strips ``-devN``).
        repository: Repository for a tag string input.

    Raises:
        MalformedTagError: If the input is not a dev tag, including stable tags.
    """
    active = policy or DEFAULT_POLICY
    parsed = parse_dev_tag(dev_tag, repository, active) if isinstance(dev_tag, str) else dev_tag
    return active.derive_stable(parsed)


def _matches_version_prefix(tag: ImageTag, version_prefix: str) -> bool:
    wanted = version_prefix.lstrip("v")
    return tag.version == wanted or tag.version.startswith(wanted + ".")


def select_latest_dev(
    tags: Iterable[str],
    repository: str = "",
    policy: TagPolicy | None = None,
    version_prefix: str | None = None,
) -> ImageTag | None:
    """Pick the highest dev tag by (major, minor, patch, build).

    Tags that are not dev tags under ``policy`` are ignored. Comparison is
    numeric, so ``1.10.0`` beats ``1.9.0`` and ``dev10`` beats ``dev9``; equal
    keys (``1.2.0-dev2`` vs ``v1.2.0-dev2``) fall back to the tag string.

    Args:
        tags: Raw tag strings.
        repository: Repository the tags belong to.
        policy: Tag policy.
        version_prefix: Only consider versions equal to or under this prefix
            (``"1.2"`` matches ``1.2.x``, not ``1.20.x``).

    Returns:
        The latest dev tag, or None if there is none.
    """
    active = policy or DEFAULT_POLICY
    candidates: list[ImageTag] = []
    for raw in tags:
        try:
            parsed = active.parse(raw, repository)
        except MalformedTagError:
            continue
        if parsed.channel != ReleaseChannel.DEV:
            continue
        if version_prefix and not _matches_version_prefix(parsed, version_prefix):
            continue
        candidates.append(parsed)

    if not candidates:
        return None
    return max(candidates, key=lambda t: (t.sort_key, t.tag))


def policy_from_config(config: TagPolicyConfig | None) -> TagPolicy:
    """Build a TagPolicy from settings (default policy when None)."""
    if config is None:
        return DEFAULT_POLICY
    return StripDevSuffixPolicy.from_config(config)


__all__ = [
    "DEFAULT_POLICY",
    "StripDevSuffixPolicy",
    "TagPolicy",
    "derive_stable_tag",
    "is_dev_tag",
    "parse_dev_tag",
    "parse_tag",
    "policy_from_config",
    "select_latest_dev",
]
