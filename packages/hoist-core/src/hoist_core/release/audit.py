"""Append-only promotion audit log.

Records are stored as JSON Lines. Appends and lookups happen under an
exclusive ``fcntl`` lock on a sidecar ``.lock`` file, so concurrent
promoters on one host agree on a single record per (repository, source
digest, stable tag). Without a path the log lives in memory.

Example:
    >>> log = PromotionAuditLog(Path(".hoist/promotions.jsonl"))
    >>> record = log.record_once(record)
    >>> log.find("shop", record.source_digest, "1.2.0") == record
    True
"""

from __future__ import annotations

import fcntl
import os
import threading
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

import structlog
from pydantic import ValidationError

from hoist_core.schemas.release import PromotionOutcome, PromotionRecord

logger = structlog.get_logger(__name__)

_PERSISTED_OUTCOMES = (PromotionOutcome.PROMOTED, PromotionOutcome.ALREADY_PROMOTED)


class PromotionAuditLog:
    """Append-only store of PromotionRecords.

    Dry-run records are never persisted.
    """

    def __init__(self, path: Path | None = None) -> None:
        self._path = path
        self._memory: list[PromotionRecord] = []
        self._thread_lock = threading.Lock()

    @property
    def path(self) -> Path | None:
        return self._path

    @contextmanager
    def _lock(self) -> Generator[None, None, None]:
        with self._thread_lock:
            if self._path is None:
                yield
                return

            self._path.parent.mkdir(parents=True, exist_ok=True)
            lock_path = self._path.with_name(self._path.name + ".lock")
            lock_path.touch(exist_ok=True)

            lock_fd = os.open(str(lock_path), os.O_RDWR)
            try:
                fcntl.flock(lock_fd, fcntl.LOCK_EX)
                yield
            finally:
                fcntl.flock(lock_fd, fcntl.LOCK_UN)
                os.close(lock_fd)

    def _read(self) -> list[PromotionRecord]:
        if self._path is None:
            return list(self._memory)
        if not self._path.exists():
            return []

        records: list[PromotionRecord] = []
        with self._path.open(encoding="utf-8", errors="replace") as fh:
            for line_number, line in enumerate(fh, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    records.append(PromotionRecord.model_validate_json(line))
                except ValidationError:
                    logger.warning(
                        "audit_record_unreadable",
                        path=str(self._path),
                        line=line_number,
                    )
        return records

    def _write(self, record: PromotionRecord) -> None:
        if self._path is None:
            self._memory.append(record)
        else:
            with self._path.open("a", encoding="utf-8") as fh:
                fh.write(record.model_dump_json() + "\n")
                fh.flush()
                os.fsync(fh.fileno())

        logger.info(
            "promotion_recorded",
            audit_event=True,
            promotion_id=str(record.promotion_id),
            repository=record.repository,
            source_tag=record.source_tag,
            derived_tag=record.derived_tag,
            source_digest=record.source_digest,
            outcome=record.outcome.value,
        )

    @staticmethod
    def _lookup(
        records: list[PromotionRecord],
        repository: str,
        source_digest: str,
        derived_tag: str,
    ) -> PromotionRecord | None:
        for record in records:
            if record.repository == repository and record.matches(source_digest, derived_tag):
                return record
        return None

    def find(self, repository: str, source_digest: str, derived_tag: str) -> PromotionRecord | None:
        """Return the first record for (repository, digest, stable tag), if any."""
        with self._lock():
            return self._lookup(self._read(), repository, source_digest, derived_tag)

    def append(self, record: PromotionRecord) -> None:
        """Append a record unconditionally (dry runs are ignored)."""
        if record.outcome not in _PERSISTED_OUTCOMES:
            return
        with self._lock():
            self._write(record)

    def record_once(self, record: PromotionRecord) -> PromotionRecord:
        """Append ``record`` unless its (repository, digest, stable tag) is recorded.

        Returns:
            The stored record: the earlier one when it exists, else ``record``.
        """
        if record.outcome not in _PERSISTED_OUTCOMES:
            return record
        with self._lock():
            existing = self._lookup(
                self._read(), record.repository, record.source_digest, record.derived_tag
            )
            if existing is not None:
                logger.debug(
                    "promotion_already_recorded",
                    promotion_id=str(existing.promotion_id),
                    derived_tag=existing.derived_tag,
                )
                return existing
            self._write(record)
            return record

    def records(self, repository: str | None = None) -> list[PromotionRecord]:
        """All records in append order, optionally for one repository."""
        with self._lock():
            records = self._read()
        if repository is None:
            return records
        return [r for r in records if r.repository == repository]


__all__ = ["PromotionAuditLog"]
