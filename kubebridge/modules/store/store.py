import json
import logging
from datetime import UTC, datetime
from typing import List, Optional

from kubebridge.modules.api.models import (
    ClusterConfig,
    ClusterSummary,
    ConnectionRecord,
    ConnectionState,
)

logger = logging.getLogger(__name__)

CLUSTERS_KEY = "clusters:all"
CONNECTIONS_KEY = "connections:active"
EVENTS_CHANNEL = "events:connection"
EVENTS_HISTORY_KEY = "connection:events"


def _cluster_key(cluster_id: str) -> str:
    return f"cluster:config:{cluster_id}"


def _connection_key(cluster_id: str) -> str:
    return f"cluster:connection:{cluster_id}"


class ClusterStore:
    def __init__(self, redis_client):
        """
        Initialize cluster store.

        Args:
            redis_client: Async Redis client (decode_responses=True)
        """
        self.redis = redis_client

    async def get(self, cluster_id: str) -> Optional[ClusterConfig]:
        """
        Get a cluster configuration.

        Returns:
            ClusterConfig or None if not registered
        """
        data = await self.redis.get(_cluster_key(cluster_id))
        if data:
            return ClusterConfig.model_validate_json(data)
        return None

    async def save(self, cluster: ClusterConfig) -> ClusterConfig:
        """
        Insert or replace a cluster configuration.

        Logic:
        1. Keep the stored creation time if the caller did not set one
        2. Stamp updated_at
        3. Write the document and index the id

        Returns:
            The stored configuration
        """
        now = datetime.now(UTC)
        created_at = cluster.created_at
        if created_at is None:
            existing = await self.get(cluster.id)
            created_at = existing.created_at if existing and existing.created_at else now

        stored = cluster.model_copy(update={"created_at": created_at, "updated_at": now})
        await self.redis.set(_cluster_key(stored.id), stored.model_dump_json())
        await self.redis.sadd(CLUSTERS_KEY, stored.id)

        logger.info(f"Saved cluster: {stored.name} ({stored.id})")
        return stored

    async def delete(self, cluster_id: str) -> bool:
        """
        Delete a cluster and its connection record.

        Returns:
            True if a cluster was deleted
        """
        deleted = await self.redis.delete(_cluster_key(cluster_id))
        await self.redis.srem(CLUSTERS_KEY, cluster_id)

        if deleted:
            logger.info(f"Deleted cluster: {cluster_id}")
            await self.remove_connection_record(cluster_id)
        return deleted > 0

    async def list_clusters(self) -> List[ClusterConfig]:
        """
        List all clusters, newest first.

        Ids whose document has disappeared are dropped from the index.
        """
        cluster_ids = await self.redis.smembers(CLUSTERS_KEY)

        clusters = []
        for cluster_id in cluster_ids:
            data = await self.redis.get(_cluster_key(cluster_id))
            if data:
                clusters.append(ClusterConfig.model_validate_json(data))
            else:
                await self.redis.srem(CLUSTERS_KEY, cluster_id)

        epoch = datetime.min.replace(tzinfo=UTC)
        clusters.sort(key=lambda c: c.created_at or epoch, reverse=True)
        return clusters

    async def list_with_status(self) -> List[ClusterSummary]:
        """List clusters without credentials, joined with their connection records."""
        summaries = []
        for cluster in await self.list_clusters():
            record = await self.get_connection_record(cluster.id)
            summaries.append(ClusterSummary.from_cluster(cluster, record))
        return summaries

    async def touch_last_accessed(self, cluster_id: str) -> None:
        """Stamp the cluster's last_accessed time."""
        cluster = await self.get(cluster_id)
        if not cluster:
            return
        cluster.last_accessed = datetime.now(UTC)
        await self.redis.set(_cluster_key(cluster_id), cluster.model_dump_json())

    # Connection records

    async def save_connection_record(
        self, cluster_id: str, connected_at: Optional[datetime] = None
    ) -> ConnectionRecord:
        """
        Mark a cluster as connected.

        Args:
            cluster_id: Cluster identifier
            connected_at: Time the connection was established (defaults to now)
        """
        now = datetime.now(UTC)
        record = ConnectionRecord(
            cluster_id=cluster_id,
            status=ConnectionState.CONNECTED,
            connected_at=connected_at or now,
            last_activity=now,
        )
        await self.redis.set(_connection_key(cluster_id), record.model_dump_json())
        await self.redis.sadd(CONNECTIONS_KEY, cluster_id)

        logger.info(f"Saved connection record for: {cluster_id}")
        await self._publish_event("connection.opened", record.model_dump(mode="json"))
        return record

    async def get_connection_record(self, cluster_id: str) -> Optional[ConnectionRecord]:
        data = await self.redis.get(_connection_key(cluster_id))
        if data:
            return ConnectionRecord.model_validate_json(data)
        return None

    async def remove_connection_record(self, cluster_id: str) -> None:
        """Remove a cluster's connection record, if any."""
        deleted = await self.redis.delete(_connection_key(cluster_id))
        await self.redis.srem(CONNECTIONS_KEY, cluster_id)

        if deleted:
            logger.info(f"Removed connection record for: {cluster_id}")
            await self._publish_event(
                "connection.closed",
                {"cluster_id": cluster_id, "closed_at": datetime.now(UTC).isoformat()},
            )

    async def touch_last_activity(self, cluster_id: str) -> bool:
        """
        Update the last_activity time of a connection record.

        Returns:
            True if the record exists and was updated
        """
        record = await self.get_connection_record(cluster_id)
        if not record:
            return False

        record.last_activity = datetime.now(UTC)
        await self.redis.set(_connection_key(cluster_id), record.model_dump_json())
        return True

    async def clear_connection_records(self) -> int:
        """
        Drop every connection record.

        Called at startup: records left by a previous process describe
        channels that no longer exist.

        Returns:
            Number of records removed
        """
        cluster_ids = await self.redis.smembers(CONNECTIONS_KEY)
        if not cluster_ids:
            return 0

        await self.redis.delete(*[_connection_key(cid) for cid in cluster_ids])
        await self.redis.delete(CONNECTIONS_KEY)
        logger.info(f"Cleared {len(cluster_ids)} stale connection record(s)")
        return len(cluster_ids)

    async def _publish_event(self, event_type: str, data: dict):
        """Publish connection event for monitoring"""
        event = {"type": event_type, "timestamp": datetime.now(UTC).isoformat(), "data": data}

        await self.redis.publish(EVENTS_CHANNEL, json.dumps(event))

        await self.redis.lpush(EVENTS_HISTORY_KEY, json.dumps(event))
        await self.redis.ltrim(EVENTS_HISTORY_KEY, 0, 999)
