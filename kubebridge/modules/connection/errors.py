"""Exceptions raised by the connection module.

Every error surfaces to the caller unchanged; nothing in this package retries.
"""

from typing import Optional


class KubeBridgeError(Exception):
    """Base exception for cluster connection failures."""


class ConfigValidationError(KubeBridgeError):
    """Configuration is malformed or incomplete (detected before any I/O)."""


class AuthenticationError(KubeBridgeError):
    """The bastion host rejected the supplied credentials."""


class NetworkError(KubeBridgeError):
    """The bastion host could not be reached or dropped the connection."""


class ConnectionTimeoutError(KubeBridgeError):
    """Connecting and authenticating took longer than allowed."""


class ProvisioningError(KubeBridgeError):
    """The remote kubeconfig installation script exited non-zero."""

    def __init__(self, message: str, exit_code: Optional[int] = None, stderr: str = ""):
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr


class CommandExecutionError(KubeBridgeError):
    """The remote process could not be started or did not run to completion."""


class ChannelClosedError(CommandExecutionError):
    """The connection was torn down while a command was running."""


class CommandTimeoutError(CommandExecutionError):
    """A remote command exceeded its timeout."""


class NonZeroExitError(KubeBridgeError):
    """A command whose output was requested as structured data failed."""

    def __init__(self, message: str, exit_code: Optional[int], stderr: str = ""):
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr


class NotFoundError(KubeBridgeError):
    """No cluster is registered under the requested id."""


class ClusterExistsError(KubeBridgeError):
    """A cluster with the requested name already exists."""


class NotActiveConnectionError(KubeBridgeError):
    """A command was issued for a cluster with no live connection."""


class CommandRejectedError(KubeBridgeError):
    """A kubectl command or one of its arguments failed validation."""
