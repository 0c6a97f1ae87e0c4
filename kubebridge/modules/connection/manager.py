"""Connection lifecycle for registered clusters.

Per cluster: disconnected -> connecting -> connected -> disconnected.
The manager is the only owner of the live-connection registry; the SSH layer
reports closes through channel events and the manager evicts on its own.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, AsyncIterator, Dict, List, Optional, Set

from kubebridge.modules.api.models import (
    ClusterConfig,
    ConnectionState,
    ConnectResult,
    ShellResult,
)
from kubebridge.modules.config import ConnectionSettings

from .errors import NetworkError, NotActiveConnectionError, NotFoundError
from .executor import CommandExecutor
from .provisioner import RemoteProvisioner
from .ssh import SSHConnector

logger = logging.getLogger(__name__)


@dataclass
class ActiveConnection:
    """A live channel and the configuration it was opened with."""

    cluster_id: str
    channel: Any
    cluster: ClusterConfig
    connected_at: datetime

    def descriptor(self) -> ConnectResult:
        return ConnectResult(
            cluster_id=self.cluster_id,
            status=ConnectionState.CONNECTED,
            connected_at=self.connected_at,
        )


class ConnectionRegistry:
    """Keyed map of live connections.

    No method awaits, so every call completes atomically on the event loop,
    whether it comes from a coroutine or from a channel event callback.
    """

    def __init__(self):
        self._entries: Dict[str, ActiveConnection] = {}

    def get(self, cluster_id: str) -> Optional[ActiveConnection]:
        return self._entries.get(cluster_id)

    def add(self, entry: ActiveConnection) -> None:
        self._entries[entry.cluster_id] = entry

    def remove(self, cluster_id: str, channel: Any = None) -> Optional[ActiveConnection]:
        """Remove an entry; with ``channel`` given, only if it still owns the slot."""
        entry = self._entries.get(cluster_id)
        if entry is None:
            return None
        if channel is not None and entry.channel is not channel:
            return None
        return self._entries.pop(cluster_id)

    def ids(self) -> List[str]:
        return list(self._entries)

    def __contains__(self, cluster_id: str) -> bool:
        return cluster_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class ConnectionLifecycleManager:
    """Opens, tracks and tears down one bastion connection per cluster."""

    def __init__(
        self,
        store,
        connector: SSHConnector,
        provisioner: RemoteProvisioner,
        executor: CommandExecutor,
        settings: Optional[ConnectionSettings] = None,
    ):
        """
        Initialize the manager.

        Args:
            store: Cluster store (see kubebridge.modules.store)
            connector: Opens SSH channels
            provisioner: Installs the kubeconfig after connecting
            executor: Runs commands on open channels
            settings: Timeouts and limits
        """
        self.store = store
        self.connector = connector
        self.provisioner = provisioner
        self.executor = executor
        self.settings = settings or ConnectionSettings()

        self._registry = ConnectionRegistry()
        self._pending: Dict[str, asyncio.Task] = {}
        self._background: Set[asyncio.Task] = set()
        self._suspended: Dict[str, asyncio.Event] = {}

    # State

    def state(self, cluster_id: str) -> ConnectionState:
        if cluster_id in self._registry:
            return ConnectionState.CONNECTED
        if cluster_id in self._pending:
            return ConnectionState.CONNECTING
        return ConnectionState.DISCONNECTED

    def is_connected(self, cluster_id: str) -> bool:
        return cluster_id in self._registry

    def connected_clusters(self) -> List[str]:
        return self._registry.ids()

    def connection_info(self, cluster_id: str) -> Optional[ConnectResult]:
        entry = self._registry.get(cluster_id)
        return entry.descriptor() if entry else None

    # Lifecycle

    async def start(self) -> None:
        """
        Reconcile persisted state at startup.

        Connection records from a previous process point at channels that
        died with it, so they are all dropped.
        """
        cleared = await self.store.clear_connection_records()
        if cleared:
            logger.info(f"Discarded {cleared} connection record(s) from a previous run")

    async def connect(self, cluster_id: str) -> ConnectResult:
        """
        Connect to a cluster, or return the existing connection.

        Concurrent calls for the same cluster share one connection attempt.

        Returns:
            ConnectResult with the time the connection was established

        Raises:
            NotFoundError: Cluster is not registered
            ConfigValidationError, AuthenticationError, NetworkError,
            ConnectionTimeoutError, ProvisioningError: Connection attempt failed
        """
        hold = self._suspended.get(cluster_id)
        while hold is not None:
            logger.info(f"Waiting for configuration change on {cluster_id}")
            await hold.wait()
            hold = self._suspended.get(cluster_id)

        entry = self._registry.get(cluster_id)
        if entry is not None:
            logger.info(f"Reusing existing connection for {cluster_id}")
            return entry.descriptor()

        task = self._pending.get(cluster_id)
        if task is None:
            task = asyncio.create_task(self._establish(cluster_id), name=f"connect:{cluster_id}")
            self._pending[cluster_id] = task
            task.add_done_callback(lambda t, cid=cluster_id: self._attempt_finished(cid, t))
        else:
            logger.info(f"Waiting for in-flight connection attempt to {cluster_id}")

        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if task.cancelled() and (current is None or not current.cancelling()):
                raise NetworkError(f"Connection attempt to {cluster_id} was aborted") from None
            raise

    async def disconnect(self, cluster_id: str) -> None:
        """
        Close a cluster's connection. Unknown or idle clusters are a no-op.

        An in-flight connection attempt is aborted as well.
        """
        task = self._pending.get(cluster_id)
        if task is not None and not task.done():
            logger.info(f"Aborting connection attempt to {cluster_id}")
            task.cancel()
            await asyncio.wait({task})

        entry = self._registry.remove(cluster_id)
        if entry is None:
            return
        await self._release(entry)

    @asynccontextmanager
    async def suspended(self, cluster_id: str) -> AsyncIterator[None]:
        """
        Disconnect a cluster and hold back new connects until the block exits.

        Used while a cluster's stored configuration is replaced, so no
        connection can be opened with (or write back) the old document.
        """
        released = asyncio.Event()
        self._suspended[cluster_id] = released
        try:
            await self.disconnect(cluster_id)
            yield
        finally:
            if self._suspended.get(cluster_id) is released:
                del self._suspended[cluster_id]
            released.set()

    async def close_all(self) -> None:
        """Close every connection, used at shutdown."""
        cluster_ids = set(self._registry.ids()) | set(self._pending)
        for cluster_id in cluster_ids:
            await self.disconnect(cluster_id)

        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    # Commands

    async def run_shell(
        self, cluster_id: str, command: str, timeout: Optional[float] = None
    ) -> ShellResult:
        """
        Run a raw shell command on the cluster's bastion host.

        Raises:
            NotActiveConnectionError: Cluster is not connected
            CommandExecutionError: Command could not be run to completion
        """
        entry = self._require(cluster_id)
        logger.info(f"Executing shell command on {cluster_id}")
        await self._touch(cluster_id)

        result = await self.executor.run(
            entry.channel, command, timeout=self._command_timeout(timeout)
        )
        return result.to_shell_result()

    async def run_structured(
        self, cluster_id: str, command: str, timeout: Optional[float] = None
    ) -> Any:
        """
        Run a command and return its output as parsed JSON (or ``{"raw": ...}``).

        Raises:
            NotActiveConnectionError: Cluster is not connected
            CommandExecutionError: Command could not be run to completion
            NonZeroExitError: Command exited non-zero
        """
        entry = self._require(cluster_id)
        logger.info(f"Executing command on {cluster_id}")
        await self._touch(cluster_id)

        return await self.executor.run_structured(
            entry.channel, command, timeout=self._command_timeout(timeout)
        )

    # Internals

    async def _establish(self, cluster_id: str) -> ConnectResult:
        cluster = await self.store.get(cluster_id)
        if cluster is None:
            raise NotFoundError(f"Cluster {cluster_id} not found")

        logger.info(f"Connecting to cluster: {cluster.name}")
        channel = await self.connector.open(
            cluster.ssh_config, timeout=self.settings.connect_timeout, label=cluster_id
        )

        record_saved = False
        try:
            await self.provisioner.provision(channel, cluster.remote_config)

            connected_at = datetime.now(UTC)
            await self.store.touch_last_accessed(cluster_id)
            await self.store.save_connection_record(cluster_id, connected_at)
            record_saved = True

            if channel.is_closed:
                raise NetworkError(f"Connection to {cluster_id} closed during setup")
        except BaseException:
            channel.close()
            if record_saved:
                await self._remove_record(cluster_id)
            raise

        entry = ActiveConnection(
            cluster_id=cluster_id,
            channel=channel,
            cluster=cluster,
            connected_at=connected_at,
        )
        self._registry.add(entry)
        channel.on_closed(lambda exc, ch=channel: self._on_channel_closed(cluster_id, ch, exc))

        logger.info(f"Connected to cluster: {cluster.name}")
        return entry.descriptor()

    def _attempt_finished(self, cluster_id: str, task: asyncio.Task) -> None:
        if self._pending.get(cluster_id) is task:
            del self._pending[cluster_id]
        # Mark the outcome retrieved; waiters get it through the shield
        if not task.cancelled():
            exc = task.exception()
            if exc is not None:
                logger.error(f"Connection to {cluster_id} failed: {exc}")

    def _on_channel_closed(self, cluster_id: str, channel: Any, exc: Optional[Exception]) -> None:
        entry = self._registry.remove(cluster_id, channel)
        if entry is None:
            return

        if exc is not None:
            logger.warning(f"Connection to {cluster_id} dropped: {exc}")
        else:
            logger.info(f"Connection to {cluster_id} ended")
        self._spawn(self._remove_record(cluster_id))

    async def _release(self, entry: ActiveConnection) -> None:
        """Release channel and connection record; each step is attempted regardless of the other."""
        try:
            entry.channel.close()
        except Exception as e:
            logger.warning(f"Error closing channel for {entry.cluster_id}: {e}")
        await self._remove_record(entry.cluster_id)
        logger.info(f"Closed connection to cluster {entry.cluster_id}")

    async def _remove_record(self, cluster_id: str) -> None:
        try:
            await self.store.remove_connection_record(cluster_id)
        except Exception as e:
            logger.error(f"Failed to remove connection record for {cluster_id}: {e}")

    async def _touch(self, cluster_id: str) -> None:
        try:
            await self.store.touch_last_activity(cluster_id)
        except Exception as e:
            logger.error(f"Failed to update last activity for {cluster_id}: {e}")

    def _require(self, cluster_id: str) -> ActiveConnection:
        entry = self._registry.get(cluster_id)
        if entry is None:
            raise NotActiveConnectionError(f"No active connection to cluster {cluster_id}")
        return entry

    def _command_timeout(self, timeout: Optional[float]) -> Optional[float]:
        return timeout if timeout is not None else self.settings.command_timeout

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
