"""
Connection Module - Black Box Interface

Purpose: Keep one SSH control channel per cluster to its bastion host
Interface: ConnectionLifecycleManager.connect(), disconnect(), run_shell(),
           run_structured(); ConnectionTester.test()
Hidden: asyncssh specifics, kubeconfig install script, registry bookkeeping

Build with build_connection_services() or wire the parts by hand.
"""

from kubebridge.modules.config import ConnectionSettings

from .errors import (
    AuthenticationError,
    ChannelClosedError,
    ClusterExistsError,
    CommandExecutionError,
    CommandRejectedError,
    CommandTimeoutError,
    ConfigValidationError,
    ConnectionTimeoutError,
    KubeBridgeError,
    NetworkError,
    NonZeroExitError,
    NotActiveConnectionError,
    NotFoundError,
    ProvisioningError,
)
from .executor import CommandExecutor, CommandResult
from .manager import ActiveConnection, ConnectionLifecycleManager, ConnectionRegistry
from .provisioner import RemoteProvisioner, validate_remote_config
from .ssh import SSHChannel, SSHConnector
from .tester import ConnectionTester


def build_connection_services(store, settings: ConnectionSettings):
    """
    Wire connector, provisioner and executor into a manager and a tester.

    Returns:
        Tuple of (ConnectionLifecycleManager, ConnectionTester)
    """
    connector = SSHConnector(
        keepalive_interval=settings.keepalive_interval,
        known_hosts=settings.known_hosts,
        max_sessions=settings.max_sessions,
    )
    executor = CommandExecutor()
    provisioner = RemoteProvisioner(
        executor,
        config_path=settings.remote_config_path,
        timeout=settings.command_timeout,
    )
    manager = ConnectionLifecycleManager(store, connector, provisioner, executor, settings)
    tester = ConnectionTester(connector, provisioner, timeout=settings.test_connect_timeout)
    return manager, tester


__all__ = [
    "ActiveConnection",
    "AuthenticationError",
    "ChannelClosedError",
    "ClusterExistsError",
    "CommandExecutionError",
    "CommandExecutor",
    "CommandRejectedError",
    "CommandResult",
    "CommandTimeoutError",
    "ConfigValidationError",
    "ConnectionLifecycleManager",
    "ConnectionRegistry",
    "ConnectionTester",
    "ConnectionTimeoutError",
    "KubeBridgeError",
    "NetworkError",
    "NonZeroExitError",
    "NotActiveConnectionError",
    "NotFoundError",
    "ProvisioningError",
    "RemoteProvisioner",
    "SSHChannel",
    "SSHConnector",
    "build_connection_services",
    "validate_remote_config",
]
