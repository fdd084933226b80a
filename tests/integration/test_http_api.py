"""
Integration tests for the HTTP surface.

Runs the FastAPI app with the in-memory remote backend.

Tests cover:
- Health and status
- Triggering and running passes
- Record listing
- Share endpoints
- Preferences
"""

import tempfile

import pytest
from fastapi.testclient import TestClient

from recordsync.api.http_server import create_app
from recordsync.config import AppConfig, RemoteBackend, StorageConfig, SyncConfig
from recordsync.remote.base import Partition, RemoteRecord, ShareMetadata, Zone
from recordsync.service import SyncService

OWNED = Zone("SimplyHealthShareZone")
SHARED = Zone("SimplyHealthShareZone", owner="_alice", partition=Partition.SHARED)
URL = "https://www.icloud.com/share/0abc#Bo"


class TestHttpApi:
    """Integration tests for the HTTP API."""

    @pytest.fixture
    def service(self):
        """Service on the in-memory backend with temporary storage."""
        with tempfile.TemporaryDirectory() as tmpdir:
            config = AppConfig(
                remote_backend=RemoteBackend.MEMORY,
                storage=StorageConfig(data_dir=tmpdir),
                sync=SyncConfig(sync_on_startup=False, include_default_zone=False),
            )
            yield SyncService(config)

    @pytest.fixture
    def client(self, service):
        with TestClient(create_app(service=service)) as client:
            yield client

    def register_share(self, service):
        record = RemoteRecord(
            record_name="r2",
            zone=SHARED,
            fields={"uuid": "u2", "personalGivenName": "Bo"},
            updated_at=100,
            share_record_name="s1",
        )
        service.remote.register_share(
            URL, ShareMetadata(share_record_name="s1", zone=SHARED), [record]
        )

    def test_health(self, client):
        """Health reports a running service."""
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "service": "recordsync", "running": True}

    def test_run_sync_and_list_records(self, client, service):
        """A synchronous pass imports records that are then listed."""
        service.remote.put_record(
            RemoteRecord("r1", OWNED, {"uuid": "u1", "personalGivenName": "Ada"}, updated_at=1)
        )

        response = client.post("/v1/sync/run")

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert response.json()["message"] == "Sync complete: 1 imported, 0 updated, 0 deleted"

        records = client.get("/v1/records").json()
        assert records["total"] == 1
        assert records["items"][0]["display_name"] == "Ada"
        assert records["items"][0]["location_status"] == "cloud"

        shared = client.get("/v1/records", params={"status": "shared"}).json()
        assert shared["total"] == 0

    def test_trigger_sync(self, client):
        """The trigger returns immediately."""
        response = client.post("/v1/sync")

        assert response.status_code == 202
        assert response.json()["accepted"] is True

    def test_status(self, client):
        """Status exposes orchestrator and share state."""
        client.post("/v1/sync/run")

        status = client.get("/v1/sync/status").json()

        assert status["running"] is True
        assert status["share_state"] == "no_pending_reference"
        assert status["orchestrator"]["pass_count"] == 1
        assert status["sync_when_no_cloud_records"] is True

    def test_preferences(self, client):
        """The global sync preference can be toggled."""
        path = "/v1/preferences/sync-when-no-cloud-records"
        assert client.get(path).json() == {"enabled": True}

        assert client.put(path, json={"enabled": False}).json() == {"enabled": False}
        assert client.get(path).json() == {"enabled": False}

        report = client.post("/v1/sync/run").json()
        assert report["skipped_reason"] is not None

    def test_accept_share_by_url(self, client, service):
        """Accepting a share imports its records."""
        self.register_share(service)

        response = client.post("/v1/shares/accept", json={"url": URL})

        assert response.status_code == 200
        assert response.json()["imported_names"] == ["Bo"]
        assert client.get("/v1/records", params={"status": "shared"}).json()["total"] == 1

    def test_accept_share_by_metadata(self, client, service):
        """Metadata is accepted in its serialized form."""
        self.register_share(service)
        metadata = ShareMetadata(share_record_name="s1", zone=SHARED, url=URL).to_dict()

        response = client.post("/v1/shares/accept", json={"metadata": metadata})

        assert response.status_code == 200
        assert response.json()["reference"]["kind"] == "metadata"

    def test_accept_unknown_share(self, client):
        """Rejected shares answer 422 with the failure."""
        response = client.post("/v1/shares/accept", json={"url": "https://www.icloud.com/share/x"})

        assert response.status_code == 422
        body = response.json()
        assert body["state"] == "failed"
        assert body["error"]["code"] == "SHARE_ACCEPTANCE_FAILURE"

    def test_accept_requires_one_reference(self, client):
        """Exactly one of url and metadata must be given."""
        assert client.post("/v1/shares/accept", json={}).status_code == 400
        response = client.post(
            "/v1/shares/accept", json={"url": URL, "metadata": {"share_record_name": "s1"}}
        )
        assert response.status_code == 400

    def test_invalid_metadata(self, client):
        """Malformed metadata is a client error."""
        response = client.post("/v1/shares/accept", json={"metadata": {"zone": {}}})

        assert response.status_code == 400

    def test_deliver_parks_until_consumed(self, client, service):
        """A parked reference is consumed exactly once."""
        service.shares.surface_suspended()

        response = client.post("/v1/shares/deliver", json={"url": URL})
        assert response.json() == {"parked": True, "result": None}

        first = client.post("/v1/shares/pending/consume").json()
        second = client.post("/v1/shares/pending/consume").json()

        assert first["reference"]["url"] == URL
        assert second == {"reference": None}

    def test_deliver_when_ready_accepts(self, client, service):
        """With the surface up, deliveries are accepted right away."""
        self.register_share(service)

        response = client.post("/v1/shares/deliver", json={"url": URL})

        assert response.json()["parked"] is False
        assert response.json()["result"]["state"] == "imported"
