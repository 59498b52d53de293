"""Orchestrator abstraction and its Kubernetes implementation.

The rollout driver only needs three things from an orchestrator: read the
image a deployment runs, set it, and report rollout progress. The Kubernetes
implementation uses the ``kubernetes`` client (AppsV1Api for Deployments,
CoreV1Api for the pods they select).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import structlog

from hoist_core.errors import ConfigurationError, DeploymentNotFoundError, OrchestratorError
from hoist_core.schemas.release import DeploymentStatus, DeploymentTarget
from hoist_core.telemetry.sanitization import sanitize_error_message

logger = structlog.get_logger(__name__)

CRASH_LOOP_REASON = "CrashLoopBackOff"


def _api_failures() -> tuple[type[Exception], ...]:
    """Exceptions a kubernetes client call raises when it fails.

    ``ApiException`` carries an HTTP answer; an unreachable API server surfaces
    as urllib3 or socket errors instead.
    """
    from kubernetes.client.exceptions import ApiException
    from urllib3.exceptions import HTTPError

    return (ApiException, HTTPError, OSError)


class Orchestrator(ABC):
    """Deployment operations the rollout driver depends on."""

    @abstractmethod
    def get_image(self, target: DeploymentTarget) -> str:
        """Return the image currently configured for the target container.

        Raises:
            DeploymentNotFoundError: If the deployment does not exist.
            OrchestratorError: If the API call fails.
        """
        ...

    @abstractmethod
    def set_image(self, target: DeploymentTarget, image: str) -> None:
        """Set the target container's image, triggering a rolling update.

        Raises:
            OrchestratorError: If the API call fails.
        """
        ...

    @abstractmethod
    def get_status(self, target: DeploymentTarget, image: str | None = None) -> DeploymentStatus:
        """Report rollout progress; crash loops are checked on pods running ``image``.

        Raises:
            OrchestratorError: If the API call fails.
        """
        ...


class KubernetesOrchestrator(Orchestrator):
    """Orchestrator backed by the Kubernetes API.

    Example:
        >>> orchestrator = KubernetesOrchestrator.from_kubeconfig(Path("~/.kube/microk8s"))
        >>> orchestrator.get_image(DeploymentTarget.parse("shop/web"))
        'localhost:32000/shop:1.1.0'
    """

    def __init__(
        self,
        apps_api: Any,
        core_api: Any,
        *,
        crash_loop_restart_threshold: int = 3,
    ) -> None:
        """Initialize KubernetesOrchestrator.

        Args:
            apps_api: ``kubernetes.client.AppsV1Api`` instance.
            core_api: ``kubernetes.client.CoreV1Api`` instance.
            crash_loop_restart_threshold: Restarts on the new image treated as a crash loop.
        """
        self._apps_api = apps_api
        self._core_api = core_api
        self._restart_threshold = crash_loop_restart_threshold

    @classmethod
    def from_kubeconfig(
        cls,
        kubeconfig: Path | None = None,
        context: str | None = None,
        *,
        crash_loop_restart_threshold: int = 3,
    ) -> KubernetesOrchestrator:
        """Build an orchestrator from kubeconfig or in-cluster configuration.

        An explicit kubeconfig (or context) wins; otherwise the in-cluster
        service account is tried before the default kubeconfig.

        Raises:
            ConfigurationError: If no usable cluster configuration is found.
        """
        from kubernetes import client
        from kubernetes import config as k8s_config

        source = str(kubeconfig) if kubeconfig else "kubeconfig"
        try:
            if kubeconfig or context:
                k8s_config.load_kube_config(
                    config_file=str(kubeconfig.expanduser()) if kubeconfig else None,
                    context=context,
                )
            else:
                try:
                    k8s_config.load_incluster_config()
                except k8s_config.ConfigException:
                    k8s_config.load_kube_config()
        except (k8s_config.ConfigException, OSError) as e:
            raise ConfigurationError(source, f"cannot load cluster configuration: {e}") from e

        return cls(
            client.AppsV1Api(),
            client.CoreV1Api(),
            crash_loop_restart_threshold=crash_loop_restart_threshold,
        )

    def _api_error(
        self, target: DeploymentTarget, operation: str, error: Exception
    ) -> OrchestratorError:
        status = getattr(error, "status", None)
        if status == 404:
            return DeploymentNotFoundError(str(target), operation)
        reason = str(getattr(error, "reason", None) or error)
        if status is not None:
            reason = f"HTTP {status}: {reason}"
        return OrchestratorError(str(target), operation, sanitize_error_message(reason))

    def _read_deployment(self, target: DeploymentTarget, operation: str) -> Any:
        try:
            return self._apps_api.read_namespaced_deployment(
                name=target.name, namespace=target.namespace
            )
        except _api_failures() as e:
            raise self._api_error(target, operation, e) from e

    @staticmethod
    def _container(deployment: Any, target: DeploymentTarget) -> Any:
        containers = deployment.spec.template.spec.containers or []
        if not containers:
            raise OrchestratorError(str(target), "read", "deployment has no containers")
        if target.container is None:
            return containers[0]
        for container in containers:
            if container.name == target.container:
                return container
        names = ", ".join(c.name for c in containers)
        raise OrchestratorError(
            str(target), "read", f"container '{target.container}' not found (have: {names})"
        )

    def get_image(self, target: DeploymentTarget) -> str:
        deployment = self._read_deployment(target, "get_image")
        return str(self._container(deployment, target).image)

    def set_image(self, target: DeploymentTarget, image: str) -> None:
        container_name = target.container
        if container_name is None:
            deployment = self._read_deployment(target, "set_image")
            container_name = self._container(deployment, target).name

        container = {"name": container_name, "image": image}
        body = {"spec": {"template": {"spec": {"containers": [container]}}}}
        try:
            self._apps_api.patch_namespaced_deployment(
                name=target.name, namespace=target.namespace, body=body
            )
        except _api_failures() as e:
            raise self._api_error(target, "set_image", e) from e
        logger.info(
            "deployment_image_set",
            target=str(target),
            container=container_name,
            image=image,
        )

    def get_status(self, target: DeploymentTarget, image: str | None = None) -> DeploymentStatus:
        deployment = self._read_deployment(target, "get_status")
        container_name = self._container(deployment, target).name
        status = deployment.status
        desired = deployment.spec.replicas if deployment.spec.replicas is not None else 1

        crash_reason = self._crash_loop_reason(deployment, target, container_name, image)

        return DeploymentStatus(
            generation=deployment.metadata.generation or 0,
            observed_generation=(status.observed_generation or 0) if status else 0,
            desired_replicas=desired,
            updated_replicas=(status.updated_replicas or 0) if status else 0,
            ready_replicas=(status.ready_replicas or 0) if status else 0,
            available_replicas=(status.available_replicas or 0) if status else 0,
            crash_looping=crash_reason is not None,
            crash_loop_reason=crash_reason,
        )

    def _crash_loop_reason(
        self,
        deployment: Any,
        target: DeploymentTarget,
        container_name: str,
        image: str | None,
    ) -> str | None:
        """Inspect the deployment's pods for a crash-looping container on ``image``."""
        selector = deployment.spec.selector
        match_labels = (selector.match_labels or {}) if selector else {}
        if not match_labels:
            return None
        label_selector = ",".join(f"{k}={v}" for k, v in sorted(match_labels.items()))

        try:
            pods = self._core_api.list_namespaced_pod(
                namespace=target.namespace, label_selector=label_selector
            )
        except _api_failures() as e:
            raise self._api_error(target, "list_pods", e) from e

        for pod in pods.items or []:
            if image is not None and not self._pod_runs_image(pod, container_name, image):
                continue
            for cs in (pod.status.container_statuses or []) if pod.status else []:
                if cs.name != container_name:
                    continue
                waiting = cs.state.waiting if cs.state else None
                if waiting is not None and waiting.reason == CRASH_LOOP_REASON:
                    return f"pod {pod.metadata.name}: {CRASH_LOOP_REASON}"
                if (cs.restart_count or 0) >= self._restart_threshold:
                    return f"pod {pod.metadata.name}: {cs.restart_count} restarts"
        return None

    @staticmethod
    def _pod_runs_image(pod: Any, container_name: str, image: str) -> bool:
        for container in pod.spec.containers or []:
            if container.name == container_name:
                return bool(container.image == image)
        return False


__all__ = ["CRASH_LOOP_REASON", "KubernetesOrchestrator", "Orchestrator"]
