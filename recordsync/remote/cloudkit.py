"""
CloudKit Web Services remote client.

Talks to the JSON web services API of the cloud backing store over
httpx. Only the pull side is implemented: zone changes, record queries,
zone listing and share resolution/acceptance.

Requires httpx: pip install httpx

Endpoints (relative to /database/1/<container>/<environment>/<database>):
    POST changes/zone     incremental changes since a sync token
    POST records/query    full scan of a zone
    GET  zones/list       zones visible in a database
    POST records/resolve  share URL -> share metadata (public database)
    POST records/accept   accept a share (public database)

Invariants:
    - No httpx exception leaves this module, all map to recordsync.errors
    - Sync tokens are passed through untouched (utf-8 bytes locally)
    - The API token is sent as a query parameter and never logged

How to change safely:
    - Map new server error codes in _raise_for_server_error
    - Test against the development environment before production
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import httpx

from ..config import RemoteConfig
from ..errors import (
    ShareAcceptanceFailure,
    TokenExpiredError,
    TransportFailure,
    ZoneNotFoundError,
)
from .base import (
    DEFAULT_OWNER,
    Partition,
    RemoteRecord,
    RemoteRecordID,
    ShareMetadata,
    Zone,
    ZoneChanges,
)

logger = logging.getLogger(__name__)

TOKEN_EXPIRED_CODES = frozenset({"CHANGE_TOKEN_EXPIRED", "SYNC_TOKEN_EXPIRED"})
ZONE_NOT_FOUND_CODES = frozenset({"ZONE_NOT_FOUND", "USER_DELETED_ZONE"})


def _zone_id(zone: Zone) -> Dict[str, str]:
    return {"zoneName": zone.name, "ownerRecordName": zone.owner}


def _zone_from_id(data: Dict[str, Any], partition: Partition) -> Zone:
    return Zone(
        name=data["zoneName"],
        owner=data.get("ownerRecordName") or DEFAULT_OWNER,
        partition=partition,
    )


def _participant(data: Dict[str, Any]) -> Dict[str, Any]:
    identity = data.get("userIdentity") or {}
    lookup = identity.get("lookupInfo") or {}
    names = identity.get("nameComponents") or {}
    name = " ".join(p for p in (names.get("givenName"), names.get("familyName")) if p)
    return {
        "email": lookup.get("emailAddress"),
        "name": name or identity.get("userRecordName"),
        "role": data.get("type"),
        "permission": data.get("permission"),
        "status": data.get("acceptanceStatus"),
    }


def short_guid_from_url(url: str) -> str:
    """Extract the share short GUID from a share URL.

    Share URLs look like https://www.icloud.com/share/<guid>#<title>.
    """
    path = urlparse(url).path.rstrip("/")
    guid = path.rsplit("/", 1)[-1] if path else ""
    if not guid or guid == "share":
        raise ShareAcceptanceFailure(f"Not a share URL: {url}", reference=url)
    return guid


class CloudKitClient:
    """RemoteFetchClient backed by the CloudKit Web Services API.

    Example:
        >>> client = CloudKitClient(RemoteConfig(api_token="..."))
        >>> await client.connect()
        >>> changes = await client.fetch_changes(zone, None)
        >>> await client.close()
    """

    def __init__(
        self,
        config: RemoteConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Remote configuration
            transport: Optional httpx transport (tests use MockTransport)
        """
        self.config = config
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    async def connect(self) -> None:
        """Create the HTTP client."""
        if self._client is not None:
            return

        params = {}
        if self.config.api_token:
            params["ckAPIToken"] = self.config.api_token
        if self.config.web_auth_token:
            params["ckWebAuthToken"] = self.config.web_auth_token

        self._client = httpx.AsyncClient(
            base_url=self.config.base_url,
            params=params,
            timeout=self.config.timeout_s,
            transport=self._transport,
            headers={"Content-Type": "application/json"},
        )
        logger.info(
            "Remote client ready",
            extra={
                "base_url": self.config.base_url,
                "container_id": self.config.container_id,
                "environment": self.config.environment,
            },
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("Remote client closed")

    def _path(self, database: str, operation: str) -> str:
        return (
            f"/database/1/{self.config.container_id}/{self.config.environment}"
            f"/{database}/{operation}"
        )

    async def _request(
        self,
        method: str,
        path: str,
        body: Optional[Dict[str, Any]] = None,
        zone: Optional[Zone] = None,
        reference: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Send a request and decode the JSON response.

        Raises:
            TransportFailure: Network, timeout or malformed response
            TokenExpiredError / ZoneNotFoundError: Mapped server error codes
        """
        if self._client is None:
            raise TransportFailure("Remote client not connected")

        try:
            response = await self._client.request(method, path, json=body)
        except httpx.TimeoutException as e:
            raise TransportFailure(f"Remote request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise TransportFailure(f"Remote request failed: {e}") from e

        try:
            payload = response.json()
        except ValueError as e:
            raise TransportFailure(
                f"Malformed response from remote ({response.status_code})",
                status_code=response.status_code,
            ) from e

        if response.status_code >= 400:
            if isinstance(payload, dict):
                self._raise_for_server_error(payload, zone, reference)
            raise TransportFailure(
                f"Remote returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        if not isinstance(payload, dict):
            raise TransportFailure("Unexpected response body from remote")
        return payload

    def _raise_for_server_error(
        self,
        payload: Dict[str, Any],
        zone: Optional[Zone],
        reference: Optional[str] = None,
    ) -> None:
        """Raise the taxonomy error for a serverErrorCode, if present.

        Errors on share endpoints (reference set) are share rejections.
        """
        code = payload.get("serverErrorCode")
        if not code:
            return
        reason = payload.get("reason") or code
        zone_key = zone.key if zone else None
        if code in TOKEN_EXPIRED_CODES:
            raise TokenExpiredError(f"Change token expired: {reason}", zone=zone_key)
        if code in ZONE_NOT_FOUND_CODES:
            raise ZoneNotFoundError(f"Zone not found: {reason}", zone=zone_key)
        if reference is not None:
            raise ShareAcceptanceFailure(f"Share rejected: {reason}", reference=reference)
        raise TransportFailure(f"Remote error {code}: {reason}")

    def _parse_record(self, data: Dict[str, Any], zone: Zone) -> RemoteRecord:
        try:
            fields = {
                name: value.get("value") if isinstance(value, dict) else value
                for name, value in (data.get("fields") or {}).items()
            }
            updated_at = fields.get("updatedAt")
            share = data.get("share") or {}
            return RemoteRecord(
                record_name=data["recordName"],
                zone=zone,
                fields=fields,
                updated_at=int(updated_at) if isinstance(updated_at, (int, float)) else 0,
                share_record_name=share.get("recordName"),
                record_type=data.get("recordType") or self.config.record_type,
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise TransportFailure(f"Malformed record in zone {zone.key}: {e!r}") from e

    # -- RemoteFetchClient --

    async def fetch_changes(self, zone: Zone, since_token: Optional[bytes]) -> ZoneChanges:
        """Fetch zone changes, following moreComing until exhausted."""
        result = ZoneChanges(zone=zone, new_token=since_token)
        token = since_token
        pages = 0

        while True:
            request: Dict[str, Any] = {
                "zoneID": _zone_id(zone),
                "resultsLimit": self.config.results_limit,
            }
            if token:
                request["syncToken"] = token.decode("utf-8")

            try:
                payload = await self._request(
                    "POST",
                    self._path(zone.partition.value, "changes/zone"),
                    {"zones": [request]},
                    zone=zone,
                )
                page = self._parse_changes_page(payload, zone)
            except TransportFailure as e:
                if pages > 0:
                    e.partial = result
                raise

            result.extend(page)
            pages += 1
            token = page.new_token
            if not page.more_coming:
                break

        logger.debug(
            "Fetched zone changes",
            extra={
                "zone": zone.key,
                "changed": len(result.changed),
                "deleted": len(result.deleted),
                "pages": pages,
            },
        )
        return result

    def _parse_changes_page(self, payload: Dict[str, Any], zone: Zone) -> ZoneChanges:
        zones = payload.get("zones") or []
        if not zones:
            raise TransportFailure(f"Empty changes response for zone {zone.key}")
        zone_result = zones[0]
        if not isinstance(zone_result, dict):
            raise TransportFailure(f"Malformed changes response for zone {zone.key}")
        self._raise_for_server_error(zone_result, zone)

        page = ZoneChanges(zone=zone)
        try:
            for data in zone_result.get("records") or []:
                if data.get("deleted"):
                    page.deleted.append(RemoteRecordID(data["recordName"], zone))
                elif data.get("recordType") in (None, self.config.record_type):
                    page.changed.append(self._parse_record(data, zone))

            sync_token = zone_result.get("syncToken")
            page.new_token = sync_token.encode("utf-8") if sync_token else None
        except (KeyError, TypeError, AttributeError) as e:
            raise TransportFailure(
                f"Malformed changes response for zone {zone.key}: {e!r}"
            ) from e
        page.more_coming = bool(zone_result.get("moreComing"))
        return page

    async def fetch_all(self, zone: Zone) -> List[RemoteRecord]:
        """Query every record of the configured type in a zone."""
        records: List[RemoteRecord] = []
        marker: Optional[str] = None

        while True:
            body: Dict[str, Any] = {
                "zoneID": _zone_id(zone),
                "query": {"recordType": self.config.record_type},
                "resultsLimit": self.config.results_limit,
            }
            if marker:
                body["continuationMarker"] = marker

            payload = await self._request(
                "POST", self._path(zone.partition.value, "records/query"), body, zone=zone
            )
            self._raise_for_server_error(payload, zone)
            for data in payload.get("records") or []:
                if not isinstance(data, dict):
                    raise TransportFailure(f"Malformed query response for zone {zone.key}")
                if data.get("serverErrorCode"):
                    logger.warning(
                        "Skipping record with error",
                        extra={"zone": zone.key, "error": data.get("serverErrorCode")},
                    )
                    continue
                records.append(self._parse_record(data, zone))

            marker = payload.get("continuationMarker")
            if not marker:
                break

        logger.debug("Fetched all records", extra={"zone": zone.key, "count": len(records)})
        return records

    async def enumerate_zones(self, partition: Partition) -> List[Zone]:
        """List zones in a database."""
        payload = await self._request("GET", self._path(partition.value, "zones/list"))
        zones = []
        try:
            for data in payload.get("zones") or []:
                zone_id = data.get("zoneID")
                if zone_id:
                    zones.append(_zone_from_id(zone_id, partition))
        except (KeyError, TypeError, AttributeError) as e:
            raise TransportFailure(f"Malformed zones/list response: {e!r}") from e
        return zones

    async def fetch_share_metadata(self, url: str) -> ShareMetadata:
        """Resolve a share URL through the public database."""
        guid = short_guid_from_url(url)
        payload = await self._request(
            "POST",
            self._path("public", "records/resolve"),
            {"shortGUIDs": [{"value": guid}]},
            reference=url,
        )
        results = payload.get("results") or []
        if not results:
            raise ShareAcceptanceFailure(f"Share could not be resolved: {url}", reference=url)

        data = results[0]
        if not isinstance(data, dict):
            raise ShareAcceptanceFailure(f"Malformed resolve response for {url}", reference=url)
        if data.get("serverErrorCode"):
            raise ShareAcceptanceFailure(
                f"Share rejected: {data.get('reason') or data['serverErrorCode']}", reference=url
            )

        try:
            share = data.get("share") or {}
            zone = _zone_from_id(data["zoneID"], Partition.SHARED)
            owner = (data.get("ownerIdentity") or {}).get("nameComponents") or {}
            owner_name = " ".join(
                p for p in (owner.get("givenName"), owner.get("familyName")) if p
            )
            return ShareMetadata(
                share_record_name=share.get("recordName") or data["shareRecordName"],
                zone=zone,
                root_record_name=data.get("rootRecordName"),
                owner_name=owner_name or None,
                url=url,
                participants=[_participant(p) for p in share.get("participants") or []],
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise ShareAcceptanceFailure(
                f"Incomplete share metadata, missing {e}", reference=url
            ) from e

    async def accept_share(self, metadata: ShareMetadata) -> None:
        """Accept a share so its zone appears in the shared database."""
        if not metadata.url:
            raise ShareAcceptanceFailure(
                "Share metadata has no URL to accept", reference=metadata.share_record_name
            )
        guid = short_guid_from_url(metadata.url)
        payload = await self._request(
            "POST",
            self._path("public", "records/accept"),
            {"shortGUIDs": [{"value": guid}]},
            reference=metadata.url,
        )
        for data in payload.get("results") or []:
            if data.get("serverErrorCode"):
                raise ShareAcceptanceFailure(
                    f"Share acceptance rejected: {data.get('reason') or data['serverErrorCode']}",
                    reference=metadata.url,
                )
        logger.info("Share accepted", extra={"share": metadata.share_record_name})

