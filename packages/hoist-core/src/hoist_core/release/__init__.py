"""Release promotion: tag derivation, promotion and its audit log."""

from __future__ import annotations

from hoist_core.release.audit import PromotionAuditLog
from hoist_core.release.promoter import Promoter
from hoist_core.release.tags import (
    DEFAULT_POLICY,
    StripDevSuffixPolicy,
    TagPolicy,
    derive_stable_tag,
    is_dev_tag,
    parse_dev_tag,
    parse_tag,
    policy_from_config,
    select_latest_dev,
)

__all__ = [
    "DEFAULT_POLICY",
    "PromotionAuditLog",
    "Promoter",
    "StripDevSuffixPolicy",
    "TagPolicy",
    "derive_stable_tag",
    "is_dev_tag",
    "parse_dev_tag",
    "parse_tag",
    "policy_from_config",
    "select_latest_dev",
]
