"""
Base protocol and types for the remote backing store.

This module defines the RemoteFetchClient protocol that all remote
backends must implement, along with the types that cross it: zones,
remote records, change sets and share metadata.

Invariants:
    - A Zone is identified by (name, owner) within a partition
    - A change token is only valid against the zone that issued it
    - fetch_changes() returns the whole change set, paging internally
    - Implementations raise only errors from recordsync.errors

How to change safely:
    - Protocol changes require updating all implementations
    - Keep RemoteRecord ephemeral, never persist it directly
"""

from __future__ import annotations

import logging
from abc import abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..config import AppConfig

logger = logging.getLogger(__name__)

DEFAULT_OWNER = "__defaultOwner__"
DEFAULT_ZONE_NAME = "_defaultZone"


class Partition(Enum):
    """Partitions of the remote store."""

    PRIVATE = "private"
    SHARED = "shared"


@dataclass(frozen=True)
class Zone:
    """A named, independently versioned area of the remote store.

    Attributes:
        name: Zone name
        owner: Owner record name (DEFAULT_OWNER for the current user)
        partition: Partition the zone is read from
    """

    name: str
    owner: str = DEFAULT_OWNER
    partition: Partition = Partition.PRIVATE

    @property
    def key(self) -> str:
        """Stable key used to persist this zone's cursor."""
        return f"{self.partition.value}/{self.owner}/{self.name}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {"name": self.name, "owner": self.owner, "partition": self.partition.value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Zone:
        """Create from dictionary."""
        return cls(
            name=data["name"],
            owner=data.get("owner", DEFAULT_OWNER),
            partition=Partition(data.get("partition", Partition.PRIVATE.value)),
        )

    def __str__(self) -> str:
        return self.key


@dataclass(frozen=True)
class RemoteRecordID:
    """Identity of a remote record: record name within a zone."""

    record_name: str
    zone: Zone


@dataclass
class RemoteRecord:
    """A record as delivered by the remote store.

    Attributes:
        record_name: Backing-store-assigned record name
        zone: Zone the record lives in
        fields: Untyped field bag
        updated_at: Mutation timestamp (Unix ms, 0 when unknown)
        share_record_name: Name of the share object, if the record is shared
        record_type: Remote record type
    """

    record_name: str
    zone: Zone
    fields: Dict[str, Any] = field(default_factory=dict)
    updated_at: int = 0
    share_record_name: Optional[str] = None
    record_type: str = "MedicalRecord"

    @property
    def id(self) -> RemoteRecordID:
        return RemoteRecordID(self.record_name, self.zone)


@dataclass
class ZoneChanges:
    """Aggregated result of an incremental fetch.

    Attributes:
        zone: Zone the changes belong to
        changed: Records created or modified since the token
        deleted: Records deleted since the token
        new_token: Token to persist once the changes are merged
        more_coming: True only on a partial result
    """

    zone: Zone
    changed: List[RemoteRecord] = field(default_factory=list)
    deleted: List[RemoteRecordID] = field(default_factory=list)
    new_token: Optional[bytes] = None
    more_coming: bool = False

    def extend(self, page: ZoneChanges) -> None:
        """Fold one page into the aggregate."""
        self.changed.extend(page.changed)
        self.deleted.extend(page.deleted)
        if page.new_token is not None:
            self.new_token = page.new_token
        self.more_coming = page.more_coming

    @property
    def is_empty(self) -> bool:
        return not self.changed and not self.deleted


@dataclass
class ShareMetadata:
    """Resolved description of an inbound share.

    Attributes:
        share_record_name: Record name of the share object
        zone: Shared-partition zone holding the shared records
        root_record_name: Hierarchical root record, if known
        owner_name: Display name of the sharer
        url: Share URL the metadata was resolved from
        participants: Participant descriptions (email, name, role)
    """

    share_record_name: str
    zone: Zone
    root_record_name: Optional[str] = None
    owner_name: Optional[str] = None
    url: Optional[str] = None
    participants: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def root_record(self) -> str:
        """Root record name, falling back to the share record."""
        return self.root_record_name or self.share_record_name

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "share_record_name": self.share_record_name,
            "zone": self.zone.to_dict(),
            "root_record_name": self.root_record_name,
            "owner_name": self.owner_name,
            "url": self.url,
            "participants": list(self.participants),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ShareMetadata:
        """Create from dictionary."""
        return cls(
            share_record_name=data["share_record_name"],
            zone=Zone.from_dict({"partition": Partition.SHARED.value, **data["zone"]}),
            root_record_name=data.get("root_record_name"),
            owner_name=data.get("owner_name"),
            url=data.get("url"),
            participants=list(data.get("participants") or []),
        )


@runtime_checkable
class RemoteFetchClient(Protocol):
    """Protocol for remote backing store clients.

    All implementations must provide:
    - Incremental change fetching with internal paging
    - Full zone scans
    - Zone enumeration
    - Share resolution and acceptance

    Errors:
        - TokenExpiredError: since_token is no longer honored
        - ZoneNotFoundError: the zone does not exist
        - TransportFailure: network, timeout or unexpected response
        - ShareAcceptanceFailure: share rejected by the remote store
    """

    @abstractmethod
    async def connect(self) -> None:
        """Open the underlying transport."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the underlying transport."""
        ...

    @abstractmethod
    async def fetch_changes(self, zone: Zone, since_token: Optional[bytes]) -> ZoneChanges:
        """Fetch everything that changed in a zone since a token.

        Pages until the remote reports no more changes. If a page fails
        after earlier pages succeeded, the TransportFailure carries the
        accumulated changes as ``partial``.

        Args:
            zone: Zone to read
            since_token: Token from the previous pass, or None for all changes

        Returns:
            Aggregated changes with the newest token
        """
        ...

    @abstractmethod
    async def fetch_all(self, zone: Zone) -> List[RemoteRecord]:
        """Fetch every record currently in a zone."""
        ...

    @abstractmethod
    async def enumerate_zones(self, partition: Partition) -> List[Zone]:
        """List all zones visible in a partition."""
        ...

    @abstractmethod
    async def fetch_share_metadata(self, url: str) -> ShareMetadata:
        """Resolve a share URL to its metadata."""
        ...

    @abstractmethod
    async def accept_share(self, metadata: ShareMetadata) -> None:
        """Accept a share so its zone becomes visible in the shared partition."""
        ...


def create_remote_client(config: "AppConfig") -> RemoteFetchClient:
    """Factory function to create a remote client from configuration.

    Args:
        config: Service configuration

    Returns:
        Appropriate RemoteFetchClient implementation

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import RemoteBackend
    from .cloudkit import CloudKitClient
    from .memory import InMemoryRemoteStore

    if config.remote_backend == RemoteBackend.CLOUDKIT:
        return CloudKitClient(config.remote)
    elif config.remote_backend == RemoteBackend.MEMORY:
        return InMemoryRemoteStore()
    else:
        raise ValueError(f"Unsupported remote backend: {config.remote_backend}")
