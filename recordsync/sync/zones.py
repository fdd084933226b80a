"""
Zone directory: which zones a sync pass visits.

Owned zones come from configuration. Foreign shared zones (one per
accepted share) are enumerated from the remote store on every call,
because shares can be added or revoked between passes.
"""

from __future__ import annotations

import logging

from ..config import SyncConfig
from ..remote.base import DEFAULT_ZONE_NAME, Partition, RemoteFetchClient, Zone

logger = logging.getLogger(__name__)


class ZoneDirectory:
    """Resolves the zones to synchronize.

    Example:
        >>> directory = ZoneDirectory(remote, SyncConfig())
        >>> directory.owned_zones()
        [Zone(name='_defaultZone', ...), Zone(name='SimplyHealthShareZone', ...)]
        >>> await directory.foreign_shared_zones()
    """

    def __init__(self, remote: RemoteFetchClient, config: SyncConfig) -> None:
        self.remote = remote
        self._owned = []
        if config.include_default_zone:
            self._owned.append(Zone(name=DEFAULT_ZONE_NAME))
        self._owned.append(Zone(name=config.share_zone_name))

    def owned_zones(self) -> list[Zone]:
        """The user's own zones in the private partition."""
        return list(self._owned)

    async def foreign_shared_zones(self) -> list[Zone]:
        """Live enumeration of the shared partition.

        Raises:
            SyncError: Enumeration failed; the caller decides if it is fatal
        """
        zones = await self.remote.enumerate_zones(Partition.SHARED)
        logger.debug("Enumerated shared zones", extra={"count": len(zones)})
        return [
            z if z.partition == Partition.SHARED else Zone(z.name, z.owner, Partition.SHARED)
            for z in zones
        ]
