"""
KubeBridge modules.

Each module exposes its interface from its package ``__init__`` and keeps
the implementation in sibling files. Dependencies run one way:
api <- connection <- kubectl, clusters; store and storage sit beside them.
"""
