"""SSH channel to a cluster's bastion host.

The connector authenticates with the cluster's private key and hands back an
``SSHChannel``. The channel multiplexes exec sessions over the one SSH
connection and publishes ``closed``/``failed`` events; it knows nothing about
who owns it.
"""

import asyncio
import base64
import binascii
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, List, Optional

import asyncssh

from kubebridge.modules.api.models import SSHConfig

from .errors import (
    AuthenticationError,
    ChannelClosedError,
    CommandExecutionError,
    ConfigValidationError,
    ConnectionTimeoutError,
    NetworkError,
)

logger = logging.getLogger(__name__)

ClosedCallback = Callable[[Optional[Exception]], None]
FailedCallback = Callable[[Exception], None]


def load_private_key(encoded: str, passphrase: Optional[str] = None) -> asyncssh.SSHKey:
    """Decode transport-encoded key material into an asyncssh key.

    Keys arrive base64 encoded; a raw PEM/OpenSSH block is accepted as well.
    """
    if encoded.lstrip().startswith("-----BEGIN"):
        key_data = encoded.encode("utf-8")
    else:
        try:
            key_data = base64.b64decode("".join(encoded.split()), validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ConfigValidationError("Private key is not valid base64") from exc

    try:
        return asyncssh.import_private_key(key_data, passphrase)
    except (asyncssh.KeyImportError, asyncssh.KeyEncryptionError) as exc:
        raise ConfigValidationError(f"Unable to load private key: {exc}") from exc


class _ChannelClient(asyncssh.SSHClient):
    """Forwards connection loss from asyncssh to the owning channel."""

    def __init__(self, channel: "SSHChannel"):
        self._channel = channel

    def connection_lost(self, exc: Optional[Exception]) -> None:
        self._channel._connection_lost(exc)


class SSHChannel:
    """An authenticated connection to one bastion host."""

    def __init__(self, label: str, max_sessions: int = 8):
        self.label = label
        self._conn: Optional[asyncssh.SSHClientConnection] = None
        self._closed = asyncio.Event()
        self._close_error: Optional[Exception] = None
        self._sessions = asyncio.Semaphore(max_sessions)
        self._closed_callbacks: List[ClosedCallback] = []
        self._failed_callbacks: List[FailedCallback] = []

    def attach(self, conn: asyncssh.SSHClientConnection) -> None:
        self._conn = conn

    @property
    def is_closed(self) -> bool:
        return self._closed.is_set()

    @property
    def close_error(self) -> Optional[Exception]:
        return self._close_error

    def on_closed(self, callback: ClosedCallback) -> None:
        """Subscribe to the channel closing for any reason.

        Subscribing after the channel closed invokes the callback at once.
        """
        if self.is_closed:
            self._notify(callback, self._close_error)
            return
        self._closed_callbacks.append(callback)

    def on_failed(self, callback: FailedCallback) -> None:
        """Subscribe to the channel closing because of an error."""
        self._failed_callbacks.append(callback)

    async def wait_closed(self) -> None:
        await self._closed.wait()

    def close(self) -> None:
        """Close the connection and fire the closed event immediately."""
        if self._conn is not None:
            try:
                self._conn.close()
            except Exception as e:
                logger.warning(f"Error closing SSH connection to {self.label}: {e}")
        self._connection_lost(None)

    def _connection_lost(self, exc: Optional[Exception]) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        self._close_error = exc

        if exc is not None:
            logger.warning(f"SSH connection to {self.label} lost: {exc}")
            for callback in self._failed_callbacks:
                self._notify(callback, exc)
        else:
            logger.info(f"SSH connection to {self.label} closed")

        callbacks, self._closed_callbacks = self._closed_callbacks, []
        for callback in callbacks:
            self._notify(callback, exc)
        self._failed_callbacks = []

    def _notify(self, callback: Callable, exc: Optional[Exception]) -> None:
        # Runs inside asyncssh's connection_lost; must not raise
        try:
            callback(exc)
        except Exception as e:
            logger.error(f"Channel event handler failed for {self.label}: {e}")

    @asynccontextmanager
    async def process(self, command: str) -> AsyncIterator[asyncssh.SSHClientProcess]:
        """Start ``command`` in its own exec session.

        The session slot is held until the context exits.

        Raises:
            ChannelClosedError: The connection is already closed
            CommandExecutionError: The server refused the exec request
        """
        if self.is_closed or self._conn is None:
            raise ChannelClosedError(f"Connection to {self.label} is closed")

        async with self._sessions:
            try:
                process = await self._conn.create_process(command, errors="replace")
            except asyncssh.ChannelOpenError as exc:
                raise CommandExecutionError(
                    f"Failed to execute command on {self.label}: {exc.reason}"
                ) from exc
            except (OSError, asyncssh.Error) as exc:
                if self.is_closed:
                    raise ChannelClosedError(f"Connection to {self.label} is closed") from exc
                raise CommandExecutionError(
                    f"Failed to execute command on {self.label}: {exc}"
                ) from exc

            try:
                yield process
            finally:
                process.close()


class SSHConnector:
    """Opens SSH channels to bastion hosts."""

    def __init__(
        self,
        keepalive_interval: Optional[float] = 30.0,
        known_hosts: Optional[str] = None,
        max_sessions: int = 8,
    ):
        """
        Args:
            keepalive_interval: Seconds between keepalive requests (None disables)
            known_hosts: known_hosts file; None disables host key checking
            max_sessions: Concurrent exec sessions allowed per connection
        """
        self.keepalive_interval = keepalive_interval
        self.known_hosts = known_hosts
        self.max_sessions = max_sessions

    async def open(
        self, ssh_config: SSHConfig, timeout: float, label: Optional[str] = None
    ) -> SSHChannel:
        """
        Authenticate against the bastion host and return an open channel.

        Raises:
            ConfigValidationError: Key material cannot be decoded
            AuthenticationError: Credentials or host key rejected
            NetworkError: Host unreachable or connection dropped
            ConnectionTimeoutError: Not authenticated within ``timeout`` seconds
        """
        key = load_private_key(ssh_config.private_key, ssh_config.passphrase)
        target = f"{ssh_config.username}@{ssh_config.host}:{ssh_config.port}"
        channel = SSHChannel(label or target, max_sessions=self.max_sessions)

        options = {
            "host": ssh_config.host,
            "port": ssh_config.port,
            "username": ssh_config.username,
            "client_keys": [key],
            "agent_path": None,
            "preferred_auth": "publickey",
            "known_hosts": self.known_hosts,
            "keepalive_interval": self.keepalive_interval or 0,
            "login_timeout": timeout,
            "client_factory": lambda: _ChannelClient(channel),
        }

        logger.debug(f"Opening SSH connection to {target}")
        # Cancelling the pending handshake tears down the partial transport
        try:
            conn = await asyncio.wait_for(asyncssh.connect(**options), timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise ConnectionTimeoutError(
                f"SSH connection to {target} timed out after {timeout:g}s"
            ) from exc
        except asyncssh.PermissionDenied as exc:
            raise AuthenticationError(
                f"SSH authentication failed for {target}: {exc.reason}"
            ) from exc
        except asyncssh.HostKeyNotVerifiable as exc:
            raise AuthenticationError(
                f"Host key verification failed for {target}: {exc.reason}"
            ) from exc
        except (OSError, asyncssh.Error) as exc:
            raise NetworkError(f"SSH connection to {target} failed: {exc}") from exc

        channel.attach(conn)
        logger.info(f"SSH connection established to {target}")
        return channel
