import json
from contextlib import asynccontextmanager

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.features.location_enrichment import location_router
from app.features.location_enrichment.repository.contact_repository import ContactStoreError
from app.features.location_enrichment.services.enrichment_queue import (
    QUEUE_KEY,
    LocationEnrichmentQueue,
)
from app.features.location_enrichment.services.entrypoint import (
    LocationEnrichmentEntrypoint,
    QueueEnrichmentStrategy,
)
from app.features.location_enrichment.services.location_writer import ContactLocationWriter
from app.middleware import RequestContextMiddleware


class RecordingStrategy:
    mode = "recording"

    def __init__(self):
        self.calls = []

    async def dispatch(self, owner_id, contact_index, ip_address):
        self.calls.append((owner_id, contact_index, ip_address))

    async def shutdown(self):
        return None


def _app(store, strategy) -> FastAPI:
    app = FastAPI()
    app.add_middleware(RequestContextMiddleware)
    app.include_router(location_router)
    app.state.contact_store = store
    app.state.location_writer = ContactLocationWriter(store)
    app.state.enrichment_entrypoint = LocationEnrichmentEntrypoint(strategy)
    return app


CONTACT = {
    "name": "Dineo",
    "surname": "Mokoena",
    "phone": "+27820000000",
    "email": "dineo@example.com",
    "howWeMet": "Expo stand",
}


def test_create_contact_appends_and_dispatches_enrichment(contact_store):
    strategy = RecordingStrategy()
    client = TestClient(_app(contact_store, strategy))

    response = client.post(
        "/contacts/U1",
        json=CONTACT,
        headers={"X-Forwarded-For": "196.22.10.5, 10.0.0.1"},
    )

    assert response.status_code == 201
    assert response.json() == {"status": "created", "contactIndex": 3}
    assert "X-Request-ID" in response.headers

    stored = contact_store.documents["U1"]["contactList"][3]
    assert stored["name"] == "Dineo"
    assert stored["howWeMet"] == "Expo stand"
    assert "location" not in stored
    assert strategy.calls == [("U1", 3, "196.22.10.5")]


def test_first_contact_creates_document(store_factory):
    store = store_factory()
    strategy = RecordingStrategy()
    client = TestClient(_app(store, strategy))

    response = client.post("/contacts/U9", json=CONTACT)

    assert response.status_code == 201
    assert response.json()["contactIndex"] == 0
    assert len(store.documents["U9"]["contactList"]) == 1
    # TestClient peer address is "testclient", which the resolver later ignores
    assert strategy.calls == [("U9", 0, "testclient")]


def test_create_contact_in_queue_mode_pushes_job(contact_store, fake_redis):
    strategy = QueueEnrichmentStrategy(LocationEnrichmentQueue(redis_client=fake_redis))
    client = TestClient(_app(contact_store, strategy))

    response = client.post(
        "/contacts/U1", json=CONTACT, headers={"X-Forwarded-For": "196.22.10.5"}
    )

    assert response.status_code == 201
    job = json.loads(fake_redis.lists[QUEUE_KEY][0])
    assert (job["owner_id"], job["contact_index"], job["ip_address"]) == ("U1", 3, "196.22.10.5")


def test_store_outage_returns_503():
    class DownStore:
        async def get(self, owner_id):
            raise ContactStoreError("redis down", owner_id=owner_id)

        async def set(self, owner_id, document):
            raise AssertionError("unreachable")

        @asynccontextmanager
        async def lock(self, owner_id):
            raise ContactStoreError("redis down", owner_id=owner_id)
            yield

    strategy = RecordingStrategy()
    client = TestClient(_app(DownStore(), strategy))

    response = client.post("/contacts/U1", json=CONTACT)

    assert response.status_code == 503
    assert strategy.calls == []


def test_invalid_contact_payload_is_rejected(contact_store):
    client = TestClient(_app(contact_store, RecordingStrategy()))

    response = client.post("/contacts/U1", json={"surname": "No name"})

    assert response.status_code == 422


def test_location_analytics_aggregates_points(store_factory, contact_factory):
    tembisa = {"latitude": -25.98, "longitude": 28.25, "city": "Tembisa", "country": "South Africa"}
    store = store_factory(
        {
            "U1": {
                "contactList": [
                    contact_factory("Ann", location=tembisa),
                    contact_factory("Ben", location=tembisa),
                    contact_factory("Cara"),
                ]
            }
        }
    )
    client = TestClient(_app(store, RecordingStrategy()))

    response = client.get("/analytics/locations/U1")

    assert response.status_code == 200
    assert response.json() == [
        {
            "latitude": -25.98,
            "longitude": 28.25,
            "locationName": "Tembisa, South Africa",
            "connectionCount": 2,
        }
    ]


@pytest.mark.parametrize(
    "query,expected_count",
    [
        ("startDate=2025-02-01T00:00:00Z&endDate=2025-03-31T00:00:00Z", 1),
        ("startDate=2025-04-01T00:00:00Z&endDate=2025-05-01T00:00:00Z", 0),
    ],
)
def test_location_analytics_date_range(store_factory, contact_factory, query, expected_count):
    tembisa = {"latitude": -25.98, "longitude": 28.25, "city": "Tembisa", "country": "South Africa"}
    store = store_factory({"U1": {"contactList": [contact_factory("Ann", location=tembisa)]}})
    client = TestClient(_app(store, RecordingStrategy()))

    response = client.get(f"/analytics/locations/U1?{query}")

    assert response.status_code == 200
    assert len(response.json()) == expected_count


def test_location_analytics_unknown_owner(contact_store):
    client = TestClient(_app(contact_store, RecordingStrategy()))

    response = client.get("/analytics/locations/nobody")

    assert response.status_code == 404


def test_location_analytics_skips_malformed_locations(store_factory, contact_factory):
    store = store_factory(
        {"U1": {"contactList": [contact_factory("Ann", location="Tembisa"), {"name": "A"}]}}
    )
    client = TestClient(_app(store, RecordingStrategy()))

    response = client.get("/analytics/locations/U1")

    assert response.status_code == 200
    assert response.json() == []
