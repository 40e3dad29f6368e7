import asyncio
import json

import pytest

from app.config import ENRICHMENT_MODE_DIRECT, ENRICHMENT_MODE_QUEUE
from app.features.location_enrichment.services.enrichment_queue import QUEUE_KEY
from app.features.location_enrichment.services.entrypoint import (
    DirectEnrichmentStrategy,
    LocationEnrichmentEntrypoint,
    QueueEnrichmentStrategy,
    build_enrichment_strategy,
)
from app.features.location_enrichment.services.location_writer import ContactLocationWriter
from app.features.location_enrichment.services.processor import LocationEnrichmentProcessor


class RecordingStrategy:
    mode = "recording"

    def __init__(self, error: Exception | None = None):
        self.error = error
        self.calls = []

    async def dispatch(self, owner_id, contact_index, ip_address):
        self.calls.append((owner_id, contact_index, ip_address))
        if self.error:
            raise self.error

    async def shutdown(self):
        return None


class StaticResolver:
    def __init__(self, location):
        self.location = location

    async def resolve(self, ip):
        return self.location


@pytest.fixture
def processor(contact_store, tembisa_location):
    return LocationEnrichmentProcessor(
        StaticResolver(tembisa_location), ContactLocationWriter(contact_store)
    )


@pytest.mark.parametrize(
    "owner_id,contact_index,ip_address",
    [
        ("", 0, "196.22.10.5"),
        ("U1", None, "196.22.10.5"),
        ("U1", "2", "196.22.10.5"),
        ("U1", True, "196.22.10.5"),
        ("U1", 0, None),
        ("U1", 0, ""),
    ],
)
@pytest.mark.asyncio
async def test_incomplete_requests_are_rejected(owner_id, contact_index, ip_address):
    strategy = RecordingStrategy()
    entrypoint = LocationEnrichmentEntrypoint(strategy)

    assert await entrypoint.enqueue(owner_id, contact_index, ip_address) is False
    assert strategy.calls == []


@pytest.mark.asyncio
async def test_index_zero_is_valid():
    strategy = RecordingStrategy()
    entrypoint = LocationEnrichmentEntrypoint(strategy)

    assert await entrypoint.enqueue("U1", 0, "196.22.10.5") is True
    assert strategy.calls == [("U1", 0, "196.22.10.5")]


@pytest.mark.asyncio
async def test_dispatch_errors_do_not_reach_caller():
    entrypoint = LocationEnrichmentEntrypoint(RecordingStrategy(error=ConnectionError("down")))

    assert await entrypoint.enqueue("U1", 0, "196.22.10.5") is True


@pytest.mark.asyncio
async def test_queue_mode_with_reachable_broker(fake_redis, processor):
    strategy = await build_enrichment_strategy(ENRICHMENT_MODE_QUEUE, processor, fake_redis)
    entrypoint = LocationEnrichmentEntrypoint(strategy)

    assert isinstance(strategy, QueueEnrichmentStrategy)
    assert entrypoint.mode == ENRICHMENT_MODE_QUEUE

    await entrypoint.enqueue("U1", 1, "196.22.10.5")

    payload = json.loads(fake_redis.lists[QUEUE_KEY][0])
    assert (payload["owner_id"], payload["contact_index"]) == ("U1", 1)


@pytest.mark.asyncio
async def test_queue_mode_falls_back_when_broker_unreachable(redis_factory, processor):
    strategy = await build_enrichment_strategy(
        ENRICHMENT_MODE_QUEUE, processor, redis_factory(available=False)
    )

    assert isinstance(strategy, DirectEnrichmentStrategy)


@pytest.mark.asyncio
async def test_queue_mode_falls_back_without_broker(processor):
    strategy = await build_enrichment_strategy(ENRICHMENT_MODE_QUEUE, processor, None)

    assert isinstance(strategy, DirectEnrichmentStrategy)


@pytest.mark.asyncio
async def test_direct_mode_ignores_broker(fake_redis, processor):
    strategy = await build_enrichment_strategy(ENRICHMENT_MODE_DIRECT, processor, fake_redis)

    assert isinstance(strategy, DirectEnrichmentStrategy)
    assert fake_redis.lists == {}


@pytest.mark.asyncio
async def test_direct_mode_enriches_in_background(contact_store, processor):
    strategy = await build_enrichment_strategy(ENRICHMENT_MODE_DIRECT, processor)
    entrypoint = LocationEnrichmentEntrypoint(strategy)

    assert await entrypoint.enqueue("U1", 2, "196.22.10.5") is True
    await entrypoint.shutdown()

    contact_list = contact_store.documents["U1"]["contactList"]
    assert contact_list[2]["location"]["city"] == "Tembisa"
    assert "location" not in contact_list[0]


@pytest.mark.asyncio
async def test_shutdown_drains_direct_work(contact_store, processor):
    strategy = await build_enrichment_strategy(ENRICHMENT_MODE_DIRECT, processor)
    entrypoint = LocationEnrichmentEntrypoint(strategy)

    for index in range(3):
        await entrypoint.enqueue("U1", index, "196.22.10.5")
    await asyncio.wait_for(entrypoint.shutdown(), timeout=2)

    assert strategy.processor.pending == 0
    assert contact_store.set_calls == 3
