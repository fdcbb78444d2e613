"""Kubernetes observation source built on kubernetes-asyncio.

Lists Deployments, StatefulSets and DaemonSets in the configured namespaces
and reads the running digest of each container from a ready container status
of a running pod that belongs to the workload.
"""

from __future__ import annotations

from typing import Any

import structlog

from krelease.collector.source import Observation
from krelease.models.config import CollectorConfig
from krelease.models.releases import Component

_log = structlog.get_logger(component="collector.kubernetes")

WORKLOAD_KINDS = ("Deployment", "StatefulSet", "DaemonSet")

_SHA256_PREFIX = "sha256:"
_SHA256_HEX_LEN = 64


def extract_digest(image_id: str) -> str:
    """Bare sha256 hex from a container status ``imageID``, or "".

    Handles ``docker-pullable://reg/img@sha256:<hex>``,
    ``docker://sha256:<hex>`` and plain ``sha256:<hex>``.
    """
    idx = image_id.find(_SHA256_PREFIX)
    if idx == -1:
        return ""
    return image_id[idx + len(_SHA256_PREFIX) :][:_SHA256_HEX_LEN]


class KubernetesObservationSource:
    """Observation source over the apps/v1 and core/v1 APIs.

    Args:
        apps_v1:    kubernetes_asyncio ``AppsV1Api`` instance.
        core_v1:    kubernetes_asyncio ``CoreV1Api`` instance.
        namespaces: Namespaces to observe, in order.
    """

    def __init__(self, apps_v1: Any, core_v1: Any, namespaces: list[str]) -> None:
        self._apps = apps_v1
        self._core = core_v1
        self._namespaces = namespaces
        self._api_client: Any = None

    @classmethod
    async def from_config(cls, config: CollectorConfig) -> KubernetesObservationSource:
        """Load in-cluster or kubeconfig credentials and build the API clients."""
        import kubernetes_asyncio.config as k8s_config  # type: ignore[import-untyped]
        from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]

        if config.in_cluster:
            # load_incluster_config() is synchronous in kubernetes-asyncio
            k8s_config.load_incluster_config()
            _log.info("k8s_client_configured", source="in_cluster")
        else:
            await k8s_config.load_kube_config(config_file=config.kubeconfig_path or None)
            _log.info("k8s_client_configured", source="kubeconfig")

        api_client = k8s_client.ApiClient()
        source = cls(k8s_client.AppsV1Api(api_client), k8s_client.CoreV1Api(api_client), config.namespaces)
        source._api_client = api_client
        return source

    async def stop(self) -> None:
        if self._api_client is not None:
            await self._api_client.close()
            self._api_client = None

    async def observe(self) -> list[Observation]:
        observations: list[Observation] = []
        for namespace in self._namespaces:
            try:
                observations.extend(await self._observe_namespace(namespace))
            except Exception as exc:
                # One unreadable namespace must not hide the others.
                _log.warning("namespace_observation_failed", namespace=namespace, error=str(exc))
        return observations

    async def _observe_namespace(self, namespace: str) -> list[Observation]:
        listers = {
            "Deployment": self._apps.list_namespaced_deployment,
            "StatefulSet": self._apps.list_namespaced_stateful_set,
            "DaemonSet": self._apps.list_namespaced_daemon_set,
        }
        observations: list[Observation] = []
        for kind in WORKLOAD_KINDS:
            workloads = await listers[kind](namespace)
            for workload in workloads.items:
                observations.extend(await self._observe_workload(namespace, kind, workload))
        _log.debug("namespace_observed", namespace=namespace, containers=len(observations))
        return observations

    async def _observe_workload(self, namespace: str, kind: str, workload: Any) -> list[Observation]:
        name = workload.metadata.name
        containers = workload.spec.template.spec.containers or []
        pods = await self._pods_for(namespace, kind, name)

        observations = []
        for container in containers:
            digest = _running_digest(pods, container.name)
            if not digest:
                _log.info(
                    "container_digest_unavailable",
                    namespace=namespace,
                    workload_kind=kind,
                    workload_name=name,
                    container=container.name,
                )
            observations.append(
                Observation(
                    component=Component(namespace, kind, name, container.name),
                    image=container.image or "",
                    digest=digest,
                )
            )
        return observations

    async def _pods_for(self, namespace: str, kind: str, name: str) -> list[Any]:
        """Pods of a workload: ``app=`` label, then ``app.kubernetes.io/name=``, then owner refs."""
        for selector in (f"app={name}", f"app.kubernetes.io/name={name}"):
            pods = await self._core.list_namespaced_pod(namespace, label_selector=selector)
            if pods.items:
                return list(pods.items)

        all_pods = await self._core.list_namespaced_pod(namespace)
        owned = []
        replica_set_owners: dict[str, bool] = {}
        for pod in all_pods.items:
            for ref in pod.metadata.owner_references or []:
                if ref.kind == kind and ref.name == name:
                    owned.append(pod)
                    break
                if kind == "Deployment" and ref.kind == "ReplicaSet":
                    if ref.name not in replica_set_owners:
                        replica_set_owners[ref.name] = await self._replica_set_owned_by(namespace, ref.name, name)
                    if replica_set_owners[ref.name]:
                        owned.append(pod)
                        break
        return owned

    async def _replica_set_owned_by(self, namespace: str, replica_set: str, deployment: str) -> bool:
        try:
            rs = await self._apps.read_namespaced_replica_set(replica_set, namespace)
        except Exception as exc:
            _log.debug("replica_set_lookup_failed", namespace=namespace, replica_set=replica_set, error=str(exc))
            return False
        return any(
            ref.kind == "Deployment" and ref.name == deployment for ref in rs.metadata.owner_references or []
        )


def _running_digest(pods: list[Any], container_name: str) -> str:
    for pod in pods:
        if pod.status is None or pod.status.phase != "Running":
            continue
        for status in pod.status.container_statuses or []:
            if status.name != container_name or not status.ready or not status.image_id:
                continue
            digest = extract_digest(status.image_id)
            if digest:
                return digest
    return ""
