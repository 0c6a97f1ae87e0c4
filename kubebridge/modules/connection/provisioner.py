"""Install a kubeconfig on the bastion host over an open channel.

The document is checked locally first (cheap marker scan, no YAML parse), then
written in one ``&&`` chained remote command whose last step reads the file
back through kubectl. Content travels as a single base64 word so no heredoc
quoting is involved.
"""

import base64
import binascii
import logging
import shlex
from typing import List, Optional

from .errors import CommandExecutionError, ConfigValidationError, ProvisioningError
from .executor import CommandExecutor

logger = logging.getLogger(__name__)

REQUIRED_MARKERS = (
    ("apiVersion:", "missing apiVersion"),
    ("clusters:", "missing clusters section"),
    ("users:", "missing users section"),
    ("contexts:", "missing contexts section"),
)

DEFAULT_VERIFY_COMMAND = "kubectl config view --minify >/dev/null"


def decode_remote_config(blob: str) -> str:
    """Decode a base64 kubeconfig blob to text."""
    try:
        raw = base64.b64decode("".join(blob.split()), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ConfigValidationError("Invalid kubeconfig: not valid base64") from exc
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ConfigValidationError("Invalid kubeconfig: not UTF-8 text") from exc


def validate_remote_config(blob: str) -> str:
    """
    Decode the blob and require the four top-level kubeconfig markers.

    Returns:
        The decoded document

    Raises:
        ConfigValidationError: Undecodable blob or a missing marker
    """
    text = decode_remote_config(blob)
    for marker, problem in REQUIRED_MARKERS:
        if marker not in text:
            raise ConfigValidationError(f"Kubeconfig validation failed: {problem}")

    for warning in lint_remote_config(text):
        logger.warning(f"Kubeconfig lint: {warning}")
    return text


def lint_remote_config(text: str) -> List[str]:
    """Report suspicious lines that the marker check lets through."""
    warnings = []
    for number, line in enumerate(text.splitlines(), start=1):
        if not line.strip() or line.lstrip().startswith("#"):
            continue
        indent = line[: len(line) - len(line.lstrip())]
        if "\t" in indent:
            warnings.append(f"line {number}: tab indentation")
    return warnings


def remote_path(path: str) -> str:
    """Shell-quote a remote path, anchoring relative paths at $HOME."""
    if path.startswith("~/"):
        path = path[2:]
    if path.startswith("/"):
        return shlex.quote(path)
    return '"$HOME"/' + shlex.quote(path)


def remote_parent(path: str) -> str:
    parent = path.rstrip("/").rpartition("/")[0]
    if not parent:
        return '"$HOME"' if not path.startswith("/") else "/"
    return remote_path(parent)


def build_install_command(
    text: str,
    config_path: str,
    verify_command: Optional[str] = None,
    backup: bool = True,
) -> str:
    """Compose the install script. Each step only runs if the previous one succeeded."""
    target = remote_path(config_path)
    payload = base64.b64encode(text.encode("utf-8")).decode("ascii")
    verify = verify_command or DEFAULT_VERIFY_COMMAND

    steps = [f"mkdir -p {remote_parent(config_path)}"]
    if backup:
        # Grouped so '|| true' cannot swallow a failure of the mkdir
        steps.append(f"{{ cp {target} {target}.backup 2>/dev/null || true; }}")
    steps.extend(
        [
            f"echo {payload} | base64 -d > {target}",
            f"chmod 600 {target}",
            f"KUBECONFIG={target} {verify}",
        ]
    )
    return " && ".join(steps)


class RemoteProvisioner:
    """Validates and installs kubeconfig documents on bastion hosts."""

    def __init__(
        self,
        executor: CommandExecutor,
        config_path: str = ".kube/config",
        timeout: Optional[float] = None,
    ):
        self.executor = executor
        self.config_path = config_path
        self.timeout = timeout

    async def provision(
        self,
        channel,
        remote_config: str,
        config_path: Optional[str] = None,
        verify_command: Optional[str] = None,
        backup: bool = True,
    ) -> None:
        """
        Install ``remote_config`` on the host behind ``channel``.

        Args:
            channel: Open SSH channel
            remote_config: Base64 encoded kubeconfig
            config_path: Target file, defaults to the configured path
            verify_command: Read-only kubectl command run against the new file
            backup: Keep a copy of an existing file as ``<path>.backup``

        Raises:
            ConfigValidationError: Blob fails local validation; nothing was sent
            ProvisioningError: The remote script exited non-zero
        """
        text = validate_remote_config(remote_config)
        target = config_path or self.config_path
        command = build_install_command(text, target, verify_command, backup)

        try:
            result = await self.executor.run(channel, command, timeout=self.timeout)
        except CommandExecutionError as exc:
            raise ProvisioningError(f"Kubeconfig setup failed: {exc}") from exc

        if result.exit_code != 0:
            stderr = result.stderr.strip()
            logger.error(
                f"Kubeconfig setup failed on {channel.label} "
                f"(exit code {result.exit_code}): {stderr}"
            )
            raise ProvisioningError(
                f"Kubeconfig setup failed (exit code {result.exit_code}): {stderr}",
                exit_code=result.exit_code,
                stderr=stderr,
            )
        logger.info(f"Kubeconfig installed on {channel.label} at {target}")

    async def cleanup(self, channel, directory: str) -> None:
        """Remove a scratch directory. Failures are logged only."""
        try:
            result = await self.executor.run(
                channel, f"rm -rf {remote_path(directory)}", timeout=self.timeout
            )
        except Exception as e:
            logger.warning(f"Failed to remove {directory} on {channel.label}: {e}")
            return
        if result.exit_code != 0:
            logger.warning(
                f"Failed to remove {directory} on {channel.label}: {result.stderr.strip()}"
            )
