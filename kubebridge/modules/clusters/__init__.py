"""
Clusters Module - Black Box Interface

Purpose: Register, edit and remove clusters
Interface: add_cluster(), update_cluster(), remove_cluster(), list_clusters(), test_connection()
Hidden: Interplay between persisted configuration and live connections
"""

from .service import ClusterService

__all__ = ["ClusterService"]
