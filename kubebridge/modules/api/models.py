"""
KubeBridge shared data models.

These models define the structure of all data passed between
components in the KubeBridge system.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Enums


class Environment(str, Enum):
    """Deployment stage a cluster belongs to."""

    DEV = "dev"
    STAGING = "staging"
    PROD = "prod"
    TEST = "test"


class ConnectionState(str, Enum):
    """Lifecycle state of a cluster connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


# Stored Models


class SSHConfig(BaseModel):
    """How to reach the bastion host of a cluster."""

    model_config = ConfigDict(populate_by_name=True)

    host: str = Field(..., min_length=1, description="Bastion hostname or address")
    username: str = Field(..., min_length=1, description="Login user on the bastion")
    port: int = Field(default=22, ge=1, le=65535)
    private_key: str = Field(
        ...,
        alias="pemFile",
        min_length=1,
        description="Base64 encoded private key (PEM or OpenSSH format)",
    )
    passphrase: Optional[str] = Field(None, description="Private key passphrase")

    @field_validator("host", "username")
    @classmethod
    def strip_value(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class ClusterConfig(BaseModel):
    """A registered cluster. The name doubles as the unique identifier."""

    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = Field(None, description="Cluster identifier, always equal to name")
    name: str = Field(..., min_length=1, max_length=253)
    region: str = Field(default="")
    environment: Environment = Field(default=Environment.DEV)
    ssh_config: SSHConfig = Field(..., alias="sshConfig")
    remote_config: str = Field(
        ...,
        alias="kubeconfig",
        min_length=1,
        description="Base64 encoded kubeconfig installed on the bastion",
    )
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_accessed: Optional[datetime] = None

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Cluster name is required")
        return v

    @model_validator(mode="after")
    def id_matches_name(self) -> "ClusterConfig":
        if self.id is None:
            self.id = self.name
        elif self.id != self.name:
            raise ValueError(f"Cluster id '{self.id}' must equal its name '{self.name}'")
        return self


class ConnectionRecord(BaseModel):
    """Persisted marker for a cluster that has a live connection."""

    cluster_id: str
    status: ConnectionState = ConnectionState.CONNECTED
    connected_at: datetime
    last_activity: datetime


# Response Models (API Output)


class ConnectResult(BaseModel):
    """Descriptor returned by a successful connect."""

    cluster_id: str
    status: ConnectionState = ConnectionState.CONNECTED
    connected_at: datetime


class ShellResult(BaseModel):
    """Outcome of a raw shell command."""

    exit_code: Optional[int]
    stdout: str = ""
    stderr: str = ""
    success: bool


class TestResult(BaseModel):
    """Outcome of a connection test. Never carries an exception."""

    __test__ = False  # not a pytest test class

    success: bool
    message: str


class ClusterSummary(BaseModel):
    """Public view of a cluster without credentials."""

    id: str
    name: str
    region: str = ""
    environment: Environment
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_accessed: Optional[datetime] = None
    is_connected: bool = False
    connected_at: Optional[datetime] = None

    @classmethod
    def from_cluster(
        cls, cluster: ClusterConfig, record: Optional[ConnectionRecord] = None
    ) -> "ClusterSummary":
        return cls(
            id=cluster.id,
            name=cluster.name,
            region=cluster.region,
            environment=cluster.environment,
            created_at=cluster.created_at,
            updated_at=cluster.updated_at,
            last_accessed=cluster.last_accessed,
            is_connected=record is not None,
            connected_at=record.connected_at if record else None,
        )


# Request Models (API Input)


class ClusterRequest(BaseModel):
    """Create, update or test a cluster."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1, max_length=253)
    region: str = Field(default="")
    environment: Environment = Field(default=Environment.DEV)
    ssh_config: SSHConfig = Field(..., alias="sshConfig")
    remote_config: str = Field(..., alias="kubeconfig", min_length=1)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Cluster name is required")
        return v

    def to_cluster(self) -> ClusterConfig:
        return ClusterConfig(
            name=self.name,
            region=self.region,
            environment=self.environment,
            ssh_config=self.ssh_config,
            remote_config=self.remote_config,
        )


class ScaleRequest(BaseModel):
    """Scale a deployment."""

    replicas: int = Field(..., ge=0, le=1000)


class KubectlRequest(BaseModel):
    """Free form kubectl invocation (without the leading 'kubectl')."""

    command: str = Field(..., min_length=1, max_length=2048)


class ShellRequest(BaseModel):
    """Raw shell command on the bastion host."""

    command: str = Field(..., min_length=1, max_length=4096)
    timeout_seconds: Optional[float] = Field(None, gt=0, le=3600)


class DataResponse(BaseModel):
    """Envelope for kubectl query results."""

    success: bool = True
    data: Any


class MessageResponse(BaseModel):
    """Envelope for simple acknowledgements."""

    success: bool = True
    message: str
    details: Optional[Dict[str, Any]] = None
