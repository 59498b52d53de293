"""Promote a dev image to its stable tag by digest.

Promotion re-tags the exact manifest of the dev tag under the derived stable
tag. It is idempotent (promoting the same digest again is a no-op returning
the original record) and refuses to move a stable tag that already points at
a different digest.

Example:
    >>> promoter = Promoter(registry, audit_log=PromotionAuditLog(path))
    >>> record = promoter.promote(registry.latest_dev_tag("shop"))
    >>> record.derived_tag
    '1.2.0'
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import uuid4

import structlog

from hoist_core.errors import ArtifactNotFoundError, PromotionConflictError, TagImmutableError
from hoist_core.release.audit import PromotionAuditLog
from hoist_core.release.tags import derive_stable_tag, parse_dev_tag
from hoist_core.schemas.release import ImageTag, PromotionOutcome, PromotionRecord
from hoist_core.telemetry.metrics import ReleaseMetrics, get_release_metrics
from hoist_core.telemetry.tracing import create_span, trace_id_of

if TYPE_CHECKING:
    from hoist_core.registry.client import RegistryClient
    from hoist_core.release.tags import TagPolicy

logger = structlog.get_logger(__name__)


class Promoter:
    """Re-tags dev images as stable, idempotently.

    Args:
        registry: Registry client.
        policy: Tag policy (default strips ``-devN``).
        audit_log: Where promotion records go (in-memory when None).
        dry_run: Resolve and check everything but write nothing.
        metrics: Metrics collector (default: module singleton).
    """

    def __init__(
        self,
        registry: RegistryClient,
        *,
        policy: TagPolicy | None = None,
        audit_log: PromotionAuditLog | None = None,
        dry_run: bool = False,
        metrics: ReleaseMetrics | None = None,
    ) -> None:
        self._registry = registry
        self._policy = policy
        self._audit_log = audit_log if audit_log is not None else PromotionAuditLog()
        self._dry_run = dry_run
        self._metrics = metrics

    @property
    def audit_log(self) -> PromotionAuditLog:
        return self._audit_log

    @property
    def dry_run(self) -> bool:
        return self._dry_run

    @property
    def metrics(self) -> ReleaseMetrics:
        if self._metrics is None:
            self._metrics = get_release_metrics()
        return self._metrics

    def promote(
        self, source_tag: ImageTag | str, *, repository: str | None = None
    ) -> PromotionRecord:
        """Promote a dev tag to its stable tag.

        Args:
            source_tag: Dev tag (parsed, or a tag string with ``repository``).
            repository: Repository for a tag string; overrides the parsed tag's.

        Returns:
            The PromotionRecord (the original one on a repeated promotion).

        Raises:
            MalformedTagError: If the source is not a dev tag.
            ArtifactNotFoundError: If the dev tag does not exist.
            PromotionConflictError: If the stable tag holds a different digest.
        """
        if isinstance(source_tag, str):
            dev = parse_dev_tag(source_tag, repository or "", self._policy)
        elif repository is not None:
            dev = source_tag.model_copy(update={"repository": repository})
        else:
            dev = source_tag
        if not dev.repository:
            raise ValueError("repository is required to promote a tag")

        stable = derive_stable_tag(dev, self._policy)
        repo = dev.repository
        log = logger.bind(repository=repo, source_tag=dev.tag, derived_tag=stable.tag)

        with create_span(
            "hoist.promote",
            attributes={
                "hoist.repository": repo,
                "hoist.source_tag": dev.tag,
                "hoist.derived_tag": stable.tag,
                "hoist.dry_run": self._dry_run,
            },
        ) as span:
            trace_id = trace_id_of(span)
            log.info("promotion_started", dry_run=self._dry_run)

            source_digest = self._registry.resolve_digest(repo, dev.tag)
            if source_digest is None:
                raise ArtifactNotFoundError(dev.tag, repo)
            span.set_attribute("hoist.source_digest", source_digest)

            existing_digest = self._registry.resolve_digest(repo, stable.tag)
            if existing_digest is not None:
                if existing_digest != source_digest:
                    log.error(
                        "promotion_conflict",
                        existing_digest=existing_digest,
                        source_digest=source_digest,
                    )
                    raise PromotionConflictError(stable.tag, repo, existing_digest, source_digest)
                return self._already_promoted(dev, stable, source_digest, trace_id)

            if self._dry_run:
                record = self._new_record(
                    dev, stable, source_digest, PromotionOutcome.DRY_RUN, trace_id
                )
                log.info("promotion_dry_run", source_digest=source_digest)
                self.metrics.record_promotion(repo, record.outcome.value)
                return record

            blob = self._registry.fetch_manifest(repo, source_digest)
            try:
                pushed_digest: str | None = self._registry.push_manifest(repo, blob, stable.tag)
            except TagImmutableError:
                log.warning("promotion_push_refused")
                pushed_digest = None

            if pushed_digest != source_digest:
                # The registry refused the write or stored something else: trust a fresh read.
                current = self._registry.resolve_digest(repo, stable.tag)
                if current != source_digest:
                    raise PromotionConflictError(stable.tag, repo, current, source_digest)
                log.info("promotion_won_by_concurrent_run", source_digest=source_digest)
                return self._already_promoted(dev, stable, source_digest, trace_id)

            record = self._audit_log.record_once(
                self._new_record(dev, stable, source_digest, PromotionOutcome.PROMOTED, trace_id)
            )
            self.metrics.record_promotion(repo, record.outcome.value)
            log.info(
                "promotion_completed",
                source_digest=source_digest,
                promotion_id=str(record.promotion_id),
            )
            return record

    def _already_promoted(
        self,
        dev: ImageTag,
        stable: ImageTag,
        source_digest: str,
        trace_id: str,
    ) -> PromotionRecord:
        prior = self._audit_log.find(dev.repository, source_digest, stable.tag)
        if prior is not None:
            record = prior
        else:
            record = self._new_record(
                dev, stable, source_digest, PromotionOutcome.ALREADY_PROMOTED, trace_id
            )
            if not self._dry_run:
                record = self._audit_log.record_once(record)

        self.metrics.record_promotion(dev.repository, PromotionOutcome.ALREADY_PROMOTED.value)
        logger.info(
            "promotion_idempotent",
            repository=dev.repository,
            derived_tag=stable.tag,
            source_digest=source_digest,
            promotion_id=str(record.promotion_id),
        )
        return record

    @staticmethod
    def _new_record(
        dev: ImageTag,
        stable: ImageTag,
        source_digest: str,
        outcome: PromotionOutcome,
        trace_id: str,
    ) -> PromotionRecord:
        return PromotionRecord(
            promotion_id=uuid4(),
            repository=dev.repository,
            source_tag=dev.tag,
            derived_tag=stable.tag,
            source_digest=source_digest,
            outcome=outcome,
            trace_id=trace_id,
        )


__all__ = ["Promoter"]
