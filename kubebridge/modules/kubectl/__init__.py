"""
Kubectl Module - Black Box Interface

Purpose: Query and scale Kubernetes resources through bastion connections
Interface: KubernetesService (list_*/get_*/scale_deployment/run_kubectl)
Hidden: Command construction, argument validation and quoting
"""

from .commands import KubectlCommands
from .service import KubernetesService

__all__ = ["KubectlCommands", "KubernetesService"]
