"""
KubeBridge - Kubernetes Access Through Bastion Hosts

Manages outbound SSH control channels to one bastion host per registered
cluster, installs the cluster's kubeconfig on that host and runs kubectl
commands through the channel.

Architecture:
- Each module is self-contained with clear interfaces
- Modules are completely replaceable
- No module knows the internals of another
- All communication through defined interfaces

Modules:
- api: Shared data models
- config: Application configuration
- storage: Redis connection handling
- store: Cluster configuration and connection record persistence
- connection: SSH channels, kubeconfig provisioning, command execution
- kubectl: Safe kubectl command construction and resource queries
- clusters: Cluster registration workflows
"""

__version__ = "1.0.0"
