"""
Tests for the local FHIR resource store.
"""

import copy
from datetime import timedelta

import pytest

from interop_gateway.database.resource_store import INACTIVE
from interop_gateway.exceptions import InvalidResourceError, NotFoundError
from interop_gateway.fhir.resources import MappedResource


def observation(resource_id, patient_id="pat-1", value=95):
    return {
        "resourceType": "Observation",
        "id": resource_id,
        "status": "final",
        "code": {"text": "Glucose"},
        "subject": {"reference": f"Patient/{patient_id}"},
        "valueQuantity": {"value": value, "unit": "mg/dL"},
    }


@pytest.mark.anyio
async def test_upsert_inserts_and_reads_back(store):
    resource = observation("obs-1")
    stored = await store.upsert(resource, source="LAB")

    assert stored.reference == "Observation/obs-1"
    assert stored.patient_id == "pat-1"
    assert stored.source == "LAB"
    assert stored.data["meta"]["lastUpdated"]
    assert "meta" not in resource

    fetched = await store.get("Observation", "obs-1")
    assert fetched.data["valueQuantity"]["value"] == 95
    assert fetched.last_updated.tzinfo is not None


@pytest.mark.anyio
async def test_upsert_same_key_updates_in_place(store):
    await store.upsert(observation("obs-1", value=95), source="LAB")
    await store.upsert(observation("obs-1", value=101), source="LAB")

    result = await store.search("Observation")
    assert result.total == 1
    assert result.resources[0].data["valueQuantity"]["value"] == 101


@pytest.mark.anyio
async def test_mapped_resource_patient_id_is_kept(store):
    mapped = MappedResource(
        resource_type="Observation",
        resource_id="obs-9",
        data=observation("obs-9", patient_id="other"),
        patient_id="pat-7",
    )
    stored = await store.upsert(mapped, source="HL7")

    assert stored.patient_id == "pat-7"


@pytest.mark.anyio
async def test_patient_is_indexed_by_its_own_id(store):
    stored = await store.upsert({"resourceType": "Patient", "id": "pat-3"}, source="API")

    assert stored.patient_id == "pat-3"


@pytest.mark.anyio
async def test_incomplete_resources_are_rejected(store):
    incomplete = observation("obs-2")
    del incomplete["code"]

    with pytest.raises(InvalidResourceError) as exc_info:
        await store.upsert(incomplete)
    assert exc_info.value.issues == ["Observation.code is required"]

    with pytest.raises(InvalidResourceError):
        await store.upsert({"id": "x"})

    with pytest.raises(InvalidResourceError):
        await store.upsert({"resourceType": "Patient", "id": "bad id/with slash"})

    mapped = MappedResource("Observation", "obs-3", observation("obs-3"), issues=["Observation.status is required"])
    with pytest.raises(InvalidResourceError):
        await store.upsert(mapped)

    assert (await store.search("Observation")).total == 0


@pytest.mark.anyio
async def test_search_filters_and_pages(store):
    for index in range(5):
        await store.upsert(observation(f"obs-{index}", patient_id="pat-1"))
    await store.upsert(observation("obs-other", patient_id="pat-2"))

    result = await store.search("Observation", patient_id="pat-1", offset=1, count=2)

    assert result.total == 5
    # Most recently updated first.
    assert [r.resource_id for r in result.resources] == ["obs-3", "obs-2"]


@pytest.mark.anyio
async def test_search_last_updated_bounds(store):
    first = await store.upsert(observation("obs-a"))
    await store.upsert(observation("obs-b"))

    inclusive = await store.search("Observation", last_updated_from=first.last_updated)
    exclusive = await store.search("Observation", last_updated_from=first.last_updated, inclusive=False)
    future = await store.search("Observation", last_updated_from=first.last_updated + timedelta(days=1))

    assert inclusive.total == 2
    assert [r.resource_id for r in exclusive.resources] == ["obs-b"]
    assert future.total == 0


@pytest.mark.anyio
async def test_deactivated_resources_are_hidden(store):
    await store.upsert(observation("obs-1"))
    deactivated = await store.deactivate("Observation", "obs-1")

    assert deactivated.status == INACTIVE
    assert await store.find("Observation", "obs-1") is None
    with pytest.raises(NotFoundError):
        await store.get("Observation", "obs-1")
    assert (await store.search("Observation")).total == 0


@pytest.mark.anyio
async def test_search_result_renders_bundle(store):
    await store.upsert(observation("obs-1"))
    bundle = (await store.search("Observation")).to_bundle()

    assert bundle["resourceType"] == "Bundle"
    assert bundle["type"] == "searchset"
    assert bundle["total"] == 1
    entry = bundle["entry"][0]
    assert entry["fullUrl"] == "Observation/obs-1"
    assert entry["search"] == {"mode": "match"}
    assert entry["resource"]["id"] == "obs-1"


@pytest.mark.anyio
async def test_stored_document_is_a_copy(store):
    resource = observation("obs-1")
    original = copy.deepcopy(resource)
    await store.upsert(resource)

    assert resource == original
