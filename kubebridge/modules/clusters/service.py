import logging
from typing import Any, Dict, List

from kubebridge.modules.api.models import ClusterConfig, ClusterSummary, TestResult
from kubebridge.modules.connection.errors import ClusterExistsError, NotFoundError
from kubebridge.modules.connection.provisioner import decode_remote_config, lint_remote_config

logger = logging.getLogger(__name__)


class ClusterService:
    def __init__(self, store, manager, tester):
        """
        Initialize cluster service.

        Args:
            store: Cluster store
            manager: Connection lifecycle manager
            tester: Connection tester for unsaved configurations
        """
        self.store = store
        self.manager = manager
        self.tester = tester

    async def add_cluster(self, cluster: ClusterConfig) -> ClusterConfig:
        """
        Register a new cluster.

        Raises:
            ClusterExistsError: The name is already taken
        """
        if await self.store.get(cluster.id):
            raise ClusterExistsError(f"Cluster name already exists: {cluster.name}")

        stored = await self.store.save(
            cluster.model_copy(update={"created_at": None, "last_accessed": None})
        )
        logger.info(f"Added cluster: {stored.name} ({stored.id})")
        return stored

    async def get_cluster(self, cluster_id: str) -> ClusterConfig:
        cluster = await self.store.get(cluster_id)
        if not cluster:
            raise NotFoundError(f"Cluster {cluster_id} not found")
        return cluster

    async def get_summary(self, cluster_id: str) -> ClusterSummary:
        cluster = await self.get_cluster(cluster_id)
        record = await self.store.get_connection_record(cluster_id)
        return self._with_live_state(ClusterSummary.from_cluster(cluster, record))

    async def list_clusters(self) -> List[ClusterSummary]:
        summaries = await self.store.list_with_status()
        return [self._with_live_state(summary) for summary in summaries]

    def _with_live_state(self, summary: ClusterSummary) -> ClusterSummary:
        # Connection records can lag the manager; its registry decides
        live = self.manager.connection_info(summary.id)
        return summary.model_copy(
            update={
                "is_connected": live is not None,
                "connected_at": live.connected_at if live else None,
            }
        )

    async def update_cluster(self, cluster_id: str, cluster: ClusterConfig) -> ClusterConfig:
        """
        Replace a cluster's configuration, closing its connection first.

        A changed name renames the cluster: the new name must be free and the
        old entry is removed.

        Raises:
            NotFoundError: cluster_id is not registered
            ClusterExistsError: Renaming onto an existing cluster
        """
        existing = await self.get_cluster(cluster_id)
        renamed = cluster.id != cluster_id
        if renamed and await self.store.get(cluster.id):
            raise ClusterExistsError(f"Cluster name already exists: {cluster.name}")

        updated = cluster.model_copy(
            update={
                "created_at": existing.created_at,
                "last_accessed": existing.last_accessed,
            }
        )
        async with self.manager.suspended(cluster_id):
            stored = await self.store.save(updated)
            if renamed:
                await self.store.delete(cluster_id)

        if renamed:
            logger.info(f"Renamed cluster {cluster_id} to {stored.id}")
        else:
            logger.info(f"Updated cluster: {stored.name} ({stored.id})")
        return stored

    async def remove_cluster(self, cluster_id: str) -> None:
        """
        Close the cluster's connection and delete it.

        Raises:
            NotFoundError: cluster_id is not registered
        """
        await self.manager.disconnect(cluster_id)

        if not await self.store.delete(cluster_id):
            raise NotFoundError(f"Cluster {cluster_id} not found")
        logger.info(f"Removed cluster: {cluster_id}")

    async def test_connection(self, cluster: ClusterConfig) -> TestResult:
        """Check a configuration without storing it."""
        return await self.tester.test(cluster)

    async def debug_kubeconfig(self, cluster_id: str) -> Dict[str, Any]:
        """
        Stored kubeconfig with line numbers, for diagnosing provisioning failures.

        Raises:
            NotFoundError: cluster_id is not registered
            ConfigValidationError: The stored blob does not decode
        """
        cluster = await self.get_cluster(cluster_id)
        text = decode_remote_config(cluster.remote_config)
        lines = text.split("\n")
        return {
            "kubeconfig": "\n".join(f"{n:>3}: {line}" for n, line in enumerate(lines, start=1)),
            "line_count": len(lines),
            "potential_issues": lint_remote_config(text),
        }
