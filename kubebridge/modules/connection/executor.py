"""Run one command over an open channel and capture what it printed."""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

import asyncssh

from kubebridge.modules.api.models import ShellResult

from .errors import (
    ChannelClosedError,
    CommandExecutionError,
    CommandTimeoutError,
    NonZeroExitError,
)

logger = logging.getLogger(__name__)

READ_CHUNK = 65536

OutputCallback = Callable[[str, str], None]


@dataclass
class CommandResult:
    """Result of a remote command execution."""

    exit_code: Optional[int]
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = 0

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    def to_shell_result(self) -> ShellResult:
        return ShellResult(
            exit_code=self.exit_code,
            stdout=self.stdout.strip(),
            stderr=self.stderr.strip(),
            success=self.success,
        )


def parse_output(stdout: str) -> Any:
    """Parse JSON output, falling back to ``{"raw": <trimmed text>}``."""
    try:
        return json.loads(stdout)
    except (json.JSONDecodeError, ValueError):
        return {"raw": stdout.strip()}


class CommandExecutor:
    """Runs commands on channels. Holds no per-channel state."""

    async def run(
        self,
        channel,
        command: str,
        timeout: Optional[float] = None,
        on_output: Optional[OutputCallback] = None,
    ) -> CommandResult:
        """
        Execute ``command`` and wait for it to exit.

        A non-zero exit code is a normal result, not an error.

        Args:
            channel: Open SSH channel
            command: Shell command line
            timeout: Seconds before the remote process is abandoned (None waits forever)
            on_output: Called with ``(stream, chunk)`` as output arrives

        Raises:
            CommandExecutionError: The exec request was refused
            ChannelClosedError: The channel closed before the command finished
            CommandTimeoutError: ``timeout`` elapsed
        """
        start = time.monotonic()

        async with channel.process(command) as process:
            collector = asyncio.create_task(self._collect(channel, process, on_output))
            closed = asyncio.create_task(channel.wait_closed())
            try:
                done, _ = await asyncio.wait(
                    {collector, closed},
                    timeout=timeout,
                    return_when=asyncio.FIRST_COMPLETED,
                )
            finally:
                closed.cancel()
                if not collector.done():
                    collector.cancel()

            if collector in done:
                exit_code, stdout, stderr = collector.result()
                if exit_code is None and channel.is_closed:
                    raise ChannelClosedError(
                        f"Connection to {channel.label} closed while running command"
                    )
            elif closed in done:
                raise ChannelClosedError(
                    f"Connection to {channel.label} closed while running command"
                )
            else:
                raise CommandTimeoutError(
                    f"Command timed out after {timeout:g}s on {channel.label}"
                )

        return CommandResult(
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
            duration_ms=int((time.monotonic() - start) * 1000),
        )

    async def run_structured(
        self, channel, command: str, timeout: Optional[float] = None
    ) -> Any:
        """
        Execute ``command`` and return its stdout parsed as JSON.

        Output that is not JSON comes back as ``{"raw": <trimmed stdout>}``.

        Raises:
            NonZeroExitError: The command exited non-zero
            (Plus everything ``run()`` raises.)
        """
        result = await self.run(channel, command, timeout=timeout)
        if result.exit_code != 0:
            stderr = result.stderr.strip()
            raise NonZeroExitError(
                f"Command failed (exit code {result.exit_code}): {stderr}",
                exit_code=result.exit_code,
                stderr=stderr,
            )
        return parse_output(result.stdout)

    async def _collect(self, channel, process, on_output: Optional[OutputCallback]):
        try:
            stdout, stderr = await asyncio.gather(
                self._drain(process.stdout, "stdout", on_output),
                self._drain(process.stderr, "stderr", on_output),
            )
            await process.wait()
        except (OSError, asyncssh.Error) as exc:
            if channel.is_closed:
                raise ChannelClosedError(
                    f"Connection to {channel.label} closed while running command"
                ) from exc
            raise CommandExecutionError(f"Command failed on {channel.label}: {exc}") from exc
        return process.returncode, stdout, stderr

    @staticmethod
    async def _drain(stream, name: str, on_output: Optional[OutputCallback]) -> str:
        chunks = []
        while True:
            chunk = await stream.read(READ_CHUNK)
            if not chunk:
                break
            chunks.append(chunk)
            if on_output:
                on_output(name, chunk)
        return "".join(chunks)
