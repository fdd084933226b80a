"""
Remote backing store abstraction for recordsync.

This package provides a pluggable remote client interface supporting:
- CloudKit Web Services (production)
- In-memory (for testing and local development)

The remote store is a mirror and a sharing channel. The local store stays
authoritative for what the user sees; the pull side only folds remote
changes into it.

Invariants:
    - fetch_changes() pages internally and returns one aggregate
    - Transport exceptions never escape a client unconverted
    - Foreign shared zones are enumerated, never configured

How to change safely:
    - New backends must implement the RemoteFetchClient protocol
    - Keep error mapping at the client boundary
"""

from .base import (
    DEFAULT_OWNER,
    DEFAULT_ZONE_NAME,
    Partition,
    RemoteFetchClient,
    RemoteRecord,
    RemoteRecordID,
    ShareMetadata,
    Zone,
    ZoneChanges,
    create_remote_client,
)
from .cloudkit import CloudKitClient
from .memory import InMemoryRemoteStore

__all__ = [
    # Protocol and types
    "RemoteFetchClient",
    "RemoteRecord",
    "RemoteRecordID",
    "ShareMetadata",
    "Zone",
    "ZoneChanges",
    "Partition",
    "DEFAULT_OWNER",
    "DEFAULT_ZONE_NAME",
    # Factory
    "create_remote_client",
    # Implementations
    "CloudKitClient",
    "InMemoryRemoteStore",
]
