"""Rollout state machine and driver.

State transitions:
    pending     -> in_progress | failed
    in_progress -> healthy | failed
    failed      -> rolled_back

A failure after the image was patched reverts the image exactly once. If
the revert itself fails, RollbackFailedError is raised immediately: the
deployment may be serving a broken image and needs a human.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import datetime, timezone

import structlog

from hoist_core.errors import (
    DeploymentNotFoundError,
    HoistError,
    InvalidStateTransitionError,
    OrchestratorError,
    RollbackFailedError,
    RolloutCrashLoopError,
    RolloutFailedError,
    RolloutTimeoutError,
)
from hoist_core.rollout.orchestrator import Orchestrator
from hoist_core.schemas.release import (
    DeploymentStatus,
    DeploymentTarget,
    RolloutReport,
    RolloutState,
)
from hoist_core.schemas.settings import RolloutConfig
from hoist_core.telemetry.metrics import ReleaseMetrics, get_release_metrics
from hoist_core.telemetry.tracing import create_span

logger = structlog.get_logger(__name__)

ALLOWED_TRANSITIONS: dict[RolloutState, frozenset[RolloutState]] = {
    RolloutState.PENDING: frozenset({RolloutState.IN_PROGRESS, RolloutState.FAILED}),
    RolloutState.IN_PROGRESS: frozenset({RolloutState.HEALTHY, RolloutState.FAILED}),
    RolloutState.FAILED: frozenset({RolloutState.ROLLED_BACK}),
    RolloutState.HEALTHY: frozenset(),
    RolloutState.ROLLED_BACK: frozenset(),
}


class RolloutStateMachine:
    """Tracks the current rollout state and every state visited."""

    def __init__(self) -> None:
        self._state = RolloutState.PENDING
        self._transitions: list[RolloutState] = [RolloutState.PENDING]

    @property
    def state(self) -> RolloutState:
        return self._state

    @property
    def transitions(self) -> list[RolloutState]:
        return list(self._transitions)

    def transition(self, to_state: RolloutState) -> None:
        """Move to ``to_state``.

        Raises:
            InvalidStateTransitionError: If the move is not allowed.
        """
        if to_state not in ALLOWED_TRANSITIONS[self._state]:
            raise InvalidStateTransitionError(self._state.value, to_state.value)
        logger.debug("rollout_state_changed", from_state=self._state.value, to_state=to_state.value)
        self._state = to_state
        self._transitions.append(to_state)


class RolloutDriver:
    """Rolls an image out to a deployment and waits for it to become healthy.

    Args:
        orchestrator: Orchestrator the deployment lives in.
        config: Timeout, poll interval and crash loop settings.
        clock: Monotonic clock in seconds (injectable for tests).
        sleep: Sleep function (injectable for tests).
        metrics: Metrics collector (default: module singleton).
    """

    def __init__(
        self,
        orchestrator: Orchestrator,
        config: RolloutConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        metrics: ReleaseMetrics | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._config = config or RolloutConfig()
        self._clock = clock
        self._sleep = sleep
        self._metrics = metrics

    @property
    def config(self) -> RolloutConfig:
        return self._config

    @property
    def metrics(self) -> ReleaseMetrics:
        if self._metrics is None:
            self._metrics = get_release_metrics()
        return self._metrics

    def rollout(self, target: DeploymentTarget, image: str) -> RolloutReport:
        """Roll ``image`` out to ``target``.

        Returns:
            RolloutReport in a terminal state: healthy, failed (nothing was
            changed) or rolled_back (the previous image was restored).

        Raises:
            DeploymentNotFoundError: If the deployment does not exist.
            RollbackFailedError: If restoring the previous image failed.
        """
        machine = RolloutStateMachine()
        started_at = datetime.now(timezone.utc)
        log = logger.bind(target=str(target), image=image)

        with create_span(
            "hoist.rollout",
            attributes={"hoist.target": str(target), "hoist.image": image},
        ) as span:
            log.info("rollout_started")
            previous_image: str | None = None
            reason = ""
            polls = 0

            try:
                previous_image = self._orchestrator.get_image(target)
            except DeploymentNotFoundError:
                raise
            except OrchestratorError as e:
                machine.transition(RolloutState.FAILED)
                reason = f"cannot read current image: {e.reason}"
                log.error("rollout_failed", reason=reason)
            else:
                reason, polls = self._apply_and_wait(machine, target, image, previous_image, log)

            report = RolloutReport(
                target=str(target),
                image=image,
                previous_image=previous_image,
                state=machine.state,
                transitions=machine.transitions,
                reason=reason,
                polls=polls,
                started_at=started_at,
                finished_at=datetime.now(timezone.utc),
            )
            span.set_attribute("hoist.rollout.state", report.state.value)
            span.set_attribute("hoist.rollout.polls", report.polls)
            self.metrics.record_rollout(report.target, report.state.value, report.duration_seconds)
            log.info(
                "rollout_finished",
                state=report.state.value,
                reason=report.reason or None,
                polls=report.polls,
                duration_seconds=round(report.duration_seconds, 3),
            )
            return report

    def _apply_and_wait(
        self,
        machine: RolloutStateMachine,
        target: DeploymentTarget,
        image: str,
        previous_image: str,
        log: structlog.typing.FilteringBoundLogger,
    ) -> tuple[str, int]:
        """Patch the image, poll for readiness, roll back on failure.

        Returns:
            (reason, polls) for the report.
        """
        patched = previous_image != image
        if patched:
            try:
                self._orchestrator.set_image(target, image)
            except OrchestratorError as e:
                machine.transition(RolloutState.FAILED)
                log.error("rollout_failed", reason=e.reason, previous_image=previous_image)
                return f"cannot set image: {e.reason}", 0
        else:
            log.info("rollout_image_unchanged")
        machine.transition(RolloutState.IN_PROGRESS)

        failure, polls = self._wait_until_ready(target, image, log)
        if failure is None:
            machine.transition(RolloutState.HEALTHY)
            return "", polls

        machine.transition(RolloutState.FAILED)
        log.error("rollout_failed", reason=failure.reason, previous_image=previous_image)
        if not patched:
            return failure.reason, polls

        try:
            self._orchestrator.set_image(target, previous_image)
        except HoistError as e:
            log.critical("rollback_failed", previous_image=previous_image, error=str(e))
            raise RollbackFailedError(str(target), previous_image, str(e)) from e
        machine.transition(RolloutState.ROLLED_BACK)
        log.warning("rollout_rolled_back", previous_image=previous_image)
        return failure.reason, polls

    def _wait_until_ready(
        self,
        target: DeploymentTarget,
        image: str,
        log: structlog.typing.FilteringBoundLogger,
    ) -> tuple[RolloutFailedError | None, int]:
        """Poll until ready, crash looping, or out of time."""
        timeout = self._config.timeout_seconds
        deadline = self._clock() + timeout
        polls = 0

        while True:
            polls += 1
            status: DeploymentStatus | None
            try:
                status = self._orchestrator.get_status(target, image)
            except OrchestratorError as e:
                # Transient read failures do not fail the rollout; the deadline does.
                log.warning("rollout_status_unavailable", poll=polls, error=str(e))
                status = None

            if status is not None:
                log.debug(
                    "rollout_polled",
                    poll=polls,
                    desired=status.desired_replicas,
                    updated=status.updated_replicas,
                    ready=status.ready_replicas,
                    available=status.available_replicas,
                )
                if status.crash_looping:
                    return RolloutCrashLoopError(
                        str(target), image, status.crash_loop_reason or "container restarting"
                    ), polls
                if status.is_ready:
                    return None, polls

            remaining = deadline - self._clock()
            if remaining <= 0:
                return RolloutTimeoutError(str(target), image, timeout), polls
            self._sleep(min(self._config.poll_interval_seconds, remaining))


__all__ = ["ALLOWED_TRANSITIONS", "RolloutDriver", "RolloutStateMachine"]
