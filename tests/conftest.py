"""
Shared pytest fixtures for KubeBridge tests.

This module provides common fixtures including:
- FakeConnection: Stands in for an asyncssh connection with canned command output
- FakeConnector: Hands out real SSHChannel objects backed by FakeConnection
- Redis and store mocks
- Sample cluster configurations
"""

import asyncio
import base64
import os
import sys
from typing import Dict, List, Optional, Tuple, Union
from unittest.mock import AsyncMock

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from kubebridge.modules.api.models import ClusterConfig, SSHConfig
from kubebridge.modules.config import ConnectionSettings
from kubebridge.modules.connection import (
    CommandExecutor,
    ConnectionLifecycleManager,
    RemoteProvisioner,
    SSHChannel,
)


# =============================================================================
# Remote Host Simulation
# =============================================================================

HANG = "hang"

Response = Union[Tuple[str, str, int], str]


class FakeStream:
    """Readable stream returning its data once, then EOF."""

    def __init__(self, data: str = "", hang: bool = False):
        self._data = data
        self._hang = hang

    async def read(self, n: int = -1) -> str:
        if self._hang:
            await asyncio.Event().wait()
        if n < 0:
            n = len(self._data)
        chunk, self._data = self._data[:n], self._data[n:]
        return chunk


class FakeProcess:
    """Mimics asyncssh.SSHClientProcess for a single exec session."""

    def __init__(self, stdout: str = "", stderr: str = "", exit_status: int = 0, hang: bool = False):
        self.stdout = FakeStream(stdout, hang)
        self.stderr = FakeStream(stderr, hang)
        self.returncode: Optional[int] = None
        self.closed = False
        self._exit_status = exit_status
        self._hang = hang

    async def wait(self):
        if self._hang:
            await asyncio.Event().wait()
        self.returncode = self._exit_status

    def close(self):
        self.closed = True


class FakeConnection:
    """
    Stand-in for asyncssh.SSHClientConnection.

    Responses are matched by substring against the command line; the first
    match wins. Unmatched commands succeed with empty output.
    """

    def __init__(self, responses: Optional[Dict[str, Response]] = None):
        self.responses = dict(responses or {})
        self.commands: List[str] = []
        self.processes: List[FakeProcess] = []
        self.closed = False

    async def create_process(self, command: str, **kwargs) -> FakeProcess:
        self.commands.append(command)
        response: Response = ("", "", 0)
        for pattern, canned in self.responses.items():
            if pattern in command:
                response = canned
                break

        if response == HANG:
            process = FakeProcess(hang=True)
        else:
            stdout, stderr, exit_status = response
            process = FakeProcess(stdout, stderr, exit_status)
        self.processes.append(process)
        return process

    def close(self):
        self.closed = True


class FakeConnector:
    """Opens SSHChannel objects over FakeConnection instead of the network."""

    def __init__(
        self,
        responses: Optional[Dict[str, Response]] = None,
        delay: float = 0,
        error: Optional[Exception] = None,
    ):
        self.responses = responses or {}
        self.delay = delay
        self.error = error
        self.handshakes = 0
        self.channels: List[SSHChannel] = []

    async def open(self, ssh_config, timeout: float, label: Optional[str] = None) -> SSHChannel:
        self.handshakes += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error

        channel = SSHChannel(label or ssh_config.host)
        channel.attach(FakeConnection(self.responses))
        self.channels.append(channel)
        return channel


def make_channel(responses: Optional[Dict[str, Response]] = None, max_sessions: int = 8):
    """Return an open channel and the fake connection behind it."""
    conn = FakeConnection(responses)
    channel = SSHChannel("test-host", max_sessions=max_sessions)
    channel.attach(conn)
    return channel, conn


# =============================================================================
# Sample Data
# =============================================================================

KUBECONFIG_TEXT = """apiVersion: v1
kind: Config
clusters:
- name: prod-east
  cluster:
    server: https://10.0.0.10:6443
contexts:
- name: prod-east
  context:
    cluster: prod-east
    user: admin
current-context: prod-east
users:
- name: admin
  user:
    token: not-a-real-token
"""


def encode(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def make_cluster(name: str = "prod-east", remote_config: Optional[str] = None) -> ClusterConfig:
    return ClusterConfig(
        name=name,
        region="us-east-1",
        environment="prod",
        ssh_config=SSHConfig(
            host="bastion.example.com",
            username="ubuntu",
            private_key=encode("not a real key"),
        ),
        remote_config=remote_config or encode(KUBECONFIG_TEXT),
    )


@pytest.fixture
def kubeconfig_b64():
    """Base64 encoded, structurally valid kubeconfig."""
    return encode(KUBECONFIG_TEXT)


@pytest.fixture
def cluster():
    """Registered cluster named prod-east."""
    return make_cluster()


# =============================================================================
# Store and Manager Fixtures
# =============================================================================


@pytest.fixture
def mock_redis():
    """Create a mock Redis client."""
    redis = AsyncMock()
    redis.get = AsyncMock(return_value=None)
    redis.set = AsyncMock()
    redis.delete = AsyncMock(return_value=0)
    redis.sadd = AsyncMock()
    redis.srem = AsyncMock()
    redis.smembers = AsyncMock(return_value=set())
    redis.publish = AsyncMock()
    redis.lpush = AsyncMock()
    redis.ltrim = AsyncMock()
    return redis


@pytest.fixture
def mock_store(cluster):
    """Cluster store mock that knows the prod-east cluster."""
    store = AsyncMock()
    store.get = AsyncMock(side_effect=lambda cid: cluster if cid == cluster.id else None)
    store.clear_connection_records = AsyncMock(return_value=0)
    store.touch_last_activity = AsyncMock(return_value=True)
    return store


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def settings():
    return ConnectionSettings(connect_timeout=5.0, test_connect_timeout=5.0, command_timeout=5.0)


@pytest.fixture
def manager(mock_store, connector, settings):
    """Lifecycle manager over the fake connector and a mocked store."""
    executor = CommandExecutor()
    provisioner = RemoteProvisioner(executor)
    return ConnectionLifecycleManager(mock_store, connector, provisioner, executor, settings)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "fake_ssh: Tests running against the in-memory SSH connection"
    )
