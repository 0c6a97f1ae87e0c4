"""
API Module - Shared data models

Purpose: Define the payloads exchanged between modules and with HTTP callers
Interface: pydantic models only, no behaviour
"""

from .models import (
    ClusterConfig,
    ClusterRequest,
    ClusterSummary,
    ConnectionRecord,
    ConnectionState,
    ConnectResult,
    DataResponse,
    Environment,
    KubectlRequest,
    MessageResponse,
    ScaleRequest,
    ShellRequest,
    ShellResult,
    SSHConfig,
    TestResult,
)

__all__ = [
    "ClusterConfig",
    "ClusterRequest",
    "ClusterSummary",
    "ConnectionRecord",
    "ConnectionState",
    "ConnectResult",
    "DataResponse",
    "Environment",
    "KubectlRequest",
    "MessageResponse",
    "ScaleRequest",
    "ShellRequest",
    "ShellResult",
    "SSHConfig",
    "TestResult",
]
