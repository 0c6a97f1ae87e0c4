"""
Store Module - Black Box Interface

Purpose: Persist cluster configurations and "currently connected" markers
Interface: get(), save(), delete(), save_connection_record(), remove_connection_record()
Hidden: Redis key layout, JSON serialization, event publication

Connection records are hints for visibility across restarts, never live
channel handles.
"""

from .store import ClusterStore

__all__ = ["ClusterStore"]
