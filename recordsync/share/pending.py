"""
Pending share references.

Platform delivery hooks can hand over a share before the primary surface
is ready to process it. The reference is parked in a single-slot box and
drained once when the surface comes up.

Invariants:
    - At most one URL and one metadata blob are held at a time
    - A newer reference overwrites an unconsumed one of the same kind
    - Every read is a read-and-clear under the lock
    - Once consumed, a slot stays empty until a new reference arrives

How to change safely:
    - Delivery hooks may run on any thread, keep threading.Lock
    - Turning the slots into queues changes observable behavior; callers
      rely on "latest wins"
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Optional

from ..remote.base import ShareMetadata

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ShareReference:
    """An inbound share: a URL to resolve, or metadata already resolved.

    Attributes:
        url: Share URL (needs a network round trip)
        metadata: Pre-resolved share metadata (preferred)
    """

    url: Optional[str] = None
    metadata: Optional[ShareMetadata] = None

    def __post_init__(self) -> None:
        if (self.url is None) == (self.metadata is None):
            raise ValueError("ShareReference needs exactly one of url or metadata")

    @classmethod
    def from_url(cls, url: str) -> ShareReference:
        return cls(url=url)

    @classmethod
    def from_metadata(cls, metadata: ShareMetadata) -> ShareReference:
        return cls(metadata=metadata)

    @property
    def kind(self) -> str:
        return "metadata" if self.metadata is not None else "url"

    @property
    def label(self) -> str:
        """Short identifier for logs and errors."""
        if self.metadata is not None:
            return self.metadata.url or self.metadata.share_record_name
        return self.url  # type: ignore[return-value]

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "url": self.url,
            "metadata": self.metadata.to_dict() if self.metadata else None,
        }


class PendingShareReference:
    """Single-slot mailbox for share references.

    Example:
        >>> box = PendingShareReference()
        >>> box.put_url("https://www.icloud.com/share/0abc#Record")
        >>> box.consume()
        ShareReference(url='https://www.icloud.com/share/0abc#Record', metadata=None)
        >>> box.consume() is None
        True
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._url: Optional[str] = None
        self._metadata: Optional[ShareMetadata] = None

    def put(self, reference: ShareReference) -> None:
        """Park a reference, overwriting any unconsumed one of the same kind."""
        with self._lock:
            if reference.metadata is not None:
                replaced = self._metadata is not None
                self._metadata = reference.metadata
            else:
                replaced = self._url is not None
                self._url = reference.url
        if replaced:
            logger.warning(
                "Unconsumed share reference overwritten", extra={"kind": reference.kind}
            )

    def put_url(self, url: str) -> None:
        self.put(ShareReference.from_url(url))

    def put_metadata(self, metadata: ShareMetadata) -> None:
        self.put(ShareReference.from_metadata(metadata))

    def consume_url(self) -> Optional[str]:
        """Take the parked URL, leaving the slot empty."""
        with self._lock:
            url, self._url = self._url, None
        return url

    def consume_metadata(self) -> Optional[ShareMetadata]:
        """Take the parked metadata, leaving the slot empty."""
        with self._lock:
            metadata, self._metadata = self._metadata, None
        return metadata

    def consume(self) -> Optional[ShareReference]:
        """Take one reference, metadata first. None if the box is empty."""
        with self._lock:
            if self._metadata is not None:
                metadata, self._metadata = self._metadata, None
                return ShareReference.from_metadata(metadata)
            if self._url is not None:
                url, self._url = self._url, None
                return ShareReference.from_url(url)
        return None

    def drain(self) -> list[ShareReference]:
        """Take everything parked, metadata first, in one atomic step."""
        with self._lock:
            metadata, self._metadata = self._metadata, None
            url, self._url = self._url, None
        drained = []
        if metadata is not None:
            drained.append(ShareReference.from_metadata(metadata))
        if url is not None:
            drained.append(ShareReference.from_url(url))
        return drained

    @property
    def has_pending(self) -> bool:
        with self._lock:
            return self._url is not None or self._metadata is not None
