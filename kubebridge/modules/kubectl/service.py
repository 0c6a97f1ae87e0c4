"""Kubernetes resource queries routed through a cluster's bastion connection."""

import logging
from typing import Any, Optional

from .commands import KubectlCommands

logger = logging.getLogger(__name__)


class KubernetesService:
    """Read and scale Kubernetes resources on connected clusters.

    Each call connects first if needed; an existing connection is reused.
    """

    def __init__(self, manager, commands: Optional[KubectlCommands] = None):
        self.manager = manager
        self.commands = commands or KubectlCommands()

    async def _query(self, cluster_id: str, command: str) -> Any:
        await self.manager.connect(cluster_id)
        return await self.manager.run_structured(cluster_id, command)

    async def list_namespaces(self, cluster_id: str) -> Any:
        return await self._query(cluster_id, self.commands.list_resources("namespaces"))

    async def list_pods(self, cluster_id: str, namespace: str) -> Any:
        return await self._query(cluster_id, self.commands.list_resources("pods", namespace))

    async def get_pod(self, cluster_id: str, namespace: str, pod: str) -> Any:
        return await self._query(cluster_id, self.commands.get_resource("pod", pod, namespace))

    async def get_pod_logs(
        self,
        cluster_id: str,
        namespace: str,
        pod: str,
        tail: int = 100,
        container: Optional[str] = None,
        previous: bool = False,
    ) -> Any:
        command = self.commands.logs(pod, namespace, tail=tail, container=container, previous=previous)
        return await self._query(cluster_id, command)

    async def list_deployments(self, cluster_id: str, namespace: str) -> Any:
        return await self._query(cluster_id, self.commands.list_resources("deployments", namespace))

    async def scale_deployment(
        self, cluster_id: str, namespace: str, deployment: str, replicas: int
    ) -> Any:
        command = self.commands.scale(deployment, namespace, replicas)
        logger.info(f"Scaling {namespace}/{deployment} on {cluster_id} to {replicas} replicas")
        return await self._query(cluster_id, command)

    async def list_services(self, cluster_id: str, namespace: str) -> Any:
        return await self._query(cluster_id, self.commands.list_resources("services", namespace))

    async def list_configmaps(self, cluster_id: str, namespace: str) -> Any:
        return await self._query(cluster_id, self.commands.list_resources("configmaps", namespace))

    async def list_secrets(self, cluster_id: str, namespace: str) -> Any:
        return await self._query(cluster_id, self.commands.list_resources("secrets", namespace))

    async def list_service_accounts(self, cluster_id: str, namespace: str) -> Any:
        return await self._query(
            cluster_id, self.commands.list_resources("serviceaccounts", namespace)
        )

    async def run_kubectl(self, cluster_id: str, command: str) -> Any:
        """Run a validated free-form kubectl command."""
        rendered = self.commands.free_form(command)
        return await self._query(cluster_id, rendered)
