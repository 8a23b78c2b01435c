"""
Tests for the interop service orchestration.
"""

import anyio
import httpx
import pytest

from interop_gateway.audit import AuditAction, ComplianceAuditor
from interop_gateway.database.message_log import FAILED, PROCESSED, SENT
from interop_gateway.delivery import DeliveryGateway, DeliveryPolicy
from interop_gateway.exceptions import (
    DeliveryFailedError,
    MalformedMessageError,
    NotFoundError,
    SystemBusyError,
)
from interop_gateway.fhir import DomainToFHIRMapper, HL7ToFHIRConverter
from interop_gateway.hl7 import HL7MessageGenerator, HL7MessageParser
from interop_gateway.models import (
    ExternalSystemCreate,
    ExternalSystemUpdate,
    PatientRecord,
    SyncStatus,
    SystemType,
)
from interop_gateway.services import InteropService

from samples import ORU_EXAMPLE


class Partner:
    """Routes mock HTTP requests to per-host handlers."""

    def __init__(self):
        self.routes = {}
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get(request.url.host)
        if handler is None:
            return httpx.Response(200, text="ACK")
        return handler(request)


@pytest.fixture
def partner():
    return Partner()


@pytest.fixture
async def gateway(registry, auditor, clock, partner):
    async def no_sleep(seconds):
        return None

    gateway = DeliveryGateway(
        registry,
        policy=DeliveryPolicy(max_attempts=2),
        auditor=auditor,
        transport=httpx.MockTransport(partner),
        clock=clock,
        sleep=no_sleep,
    )
    try:
        yield gateway
    finally:
        await gateway.aclose()


@pytest.fixture
def service(registry, store, message_log, gateway, auditor):
    return InteropService(
        parser=HL7MessageParser(),
        generator=HL7MessageGenerator(id_factory=lambda: "OUT1"),
        converter=HL7ToFHIRConverter(),
        mapper=DomainToFHIRMapper(),
        store=store,
        registry=registry,
        message_log=message_log,
        gateway=gateway,
        auditor=auditor,
    )


@pytest.fixture
def patient():
    return PatientRecord(id="pat-1", mrn="MRN123", first_name="John", last_name="Doe")


async def add_system(service, name, system_type=SystemType.HL7_ENDPOINT, **fields):
    return await service.create_system(
        ExternalSystemCreate(name=name, type=system_type, base_url=f"http://{name}.test", **fields)
    )


@pytest.mark.anyio
async def test_inbound_oru_is_stored_and_logged(service, store, message_log, audit_sink):
    result = await service.process_inbound(ORU_EXAMPLE, source_system="LAB")

    assert len(result.stored) == 1
    assert result.errors == []
    observation = await store.get("Observation", result.stored[0].resource_id)
    assert observation.data["valueQuantity"]["value"] == 95
    assert observation.source == "LAB"

    entry = await message_log.get(result.log_id)
    assert entry.status == PROCESSED
    assert entry.message_type == "ORU"
    assert entry.patient_id == "MRN123"
    assert entry.parsed_data["message_id"] == "MSG001"

    data = result.to_dict()
    assert data["message_type"] == "ORU"
    assert data["resources"] == [observation.reference]
    assert data["broadcast"] is None

    actions = {event["action"] for event in audit_sink.get_events()}
    assert {"FHIR_RESOURCE_STORED", "HL7_MESSAGE_RECEIVED"} <= actions


@pytest.mark.anyio
async def test_inbound_is_idempotent(service, store):
    first = await service.process_inbound(ORU_EXAMPLE)
    second = await service.process_inbound(ORU_EXAMPLE)

    assert [r.reference for r in first.stored] == [r.reference for r in second.stored]
    assert (await store.search("Observation")).total == 1


@pytest.mark.anyio
async def test_malformed_inbound_is_logged_as_failed(service, message_log):
    with pytest.raises(MalformedMessageError):
        await service.process_inbound("PID|1|MRN123", source_system="LAB")

    (entry,) = await message_log.list(status=FAILED)
    assert entry.raw_message == "PID|1|MRN123"
    assert entry.processing_errors


@pytest.mark.anyio
async def test_incomplete_resources_are_reported_not_stored(service, store, message_log):
    message = (
        "MSH|^~\\&|LAB|HOSP|HIS|HOSP|20240101||ORU^R01|M7|P|2.5\r"
        "PID|1|MRN1\r"
        "OBX|1|NM|||95|mg/dL\r"
        "OBX|2|NM|NA^Sodium||140|mmol/L\r"
    )
    result = await service.process_inbound(message)

    assert len(result.stored) == 1
    assert len(result.errors) == 1
    assert "Observation.code is required" in result.errors[0]

    entry = await message_log.get(result.log_id)
    assert entry.status == PROCESSED
    assert entry.processing_errors == result.errors


@pytest.mark.anyio
async def test_rebroadcast_skips_the_source(service, partner):
    await add_system(service, "lab")
    await add_system(service, "ward")
    await add_system(service, "registry", SystemType.FHIR_SERVER)

    result = await service.process_inbound(ORU_EXAMPLE, source_system="lab", rebroadcast=True)

    assert result.broadcast.delivered == 1
    assert [o.system_name for o in result.broadcast.outcomes] == ["ward"]
    assert [request.url.host for request in partner.requests] == ["ward.test"]
    assert partner.requests[0].content.decode() == ORU_EXAMPLE


@pytest.mark.anyio
async def test_generate_without_destination(service, message_log, patient):
    result = await service.generate_outbound("ADT", patient, {"trigger_event": "A04"})

    assert result.delivery is None
    assert result.to_dict()["sent"] is False
    entry = await message_log.get(result.log_id)
    assert entry.direction == "OUTBOUND"
    assert entry.status == PROCESSED
    assert entry.patient_id == "MRN123"


@pytest.mark.anyio
async def test_generate_and_send(service, message_log, partner, patient, registry):
    system = await add_system(service, "lab")
    result = await service.generate_outbound(
        "ORU",
        patient,
        {"test_code": "GLU", "results": [{"code": "GLU", "value": "95"}]},
        destination=system.id,
    )

    data = result.to_dict()
    assert data["sent"] is True
    assert data["destination"] == "lab"
    assert data["attempts"] == 1
    assert partner.requests[0].content.decode() == result.message.raw

    entry = await message_log.get(result.log_id)
    assert (entry.status, entry.destination_system) == (SENT, "lab")
    assert (await registry.get(system.id)).sync_status == SyncStatus.SUCCESS


@pytest.mark.anyio
async def test_failed_send_marks_log_failed(service, message_log, partner, patient):
    system = await add_system(service, "lab")
    partner.routes["lab.test"] = lambda request: httpx.Response(503)

    with pytest.raises(DeliveryFailedError):
        await service.generate_outbound("ADT", patient, destination=system.id)

    (entry,) = await message_log.list(status=FAILED)
    assert entry.direction == "OUTBOUND"


@pytest.mark.anyio
async def test_sync_patient_stores_server_copy(service, store, partner, patient, audit_sink):
    system = await add_system(service, "fhir", SystemType.FHIR_SERVER)
    partner.routes["fhir.test"] = lambda request: httpx.Response(
        201, json={"resourceType": "Patient", "id": "srv-42", "name": [{"family": "Doe"}]}
    )

    stored = await service.sync_patient(patient, system.id)

    assert stored.resource_id == "srv-42"
    assert stored.source == "fhir"
    assert partner.requests[0].method == "POST"
    assert partner.requests[0].url.path == "/Patient"
    assert (await store.get("Patient", "srv-42")).data["name"][0]["family"] == "Doe"
    assert audit_sink.get_events(action=AuditAction.FHIR_RESOURCE_FORWARDED)


@pytest.mark.anyio
async def test_sync_resource_puts_by_id(service, partner):
    system = await add_system(service, "fhir", SystemType.FHIR_SERVER)
    partner.routes["fhir.test"] = lambda request: httpx.Response(200, content=request.content)
    mapped = DomainToFHIRMapper().patient_to_fhir(
        PatientRecord(id="pat-9", first_name="A", last_name="B")
    )

    delivery = await service.sync_resource(mapped, system.id)

    assert delivery.attempts == 1
    assert partner.requests[0].method == "PUT"
    assert partner.requests[0].url.path == "/Patient/pat-9"


@pytest.mark.anyio
async def test_fetch_prefers_remote_and_falls_back(service, store, partner, audit_sink):
    system = await add_system(service, "fhir", SystemType.FHIR_SERVER)
    partner.routes["fhir.test"] = lambda request: httpx.Response(
        200, json={"resourceType": "Patient", "id": "pat-5", "gender": "female"}
    )

    remote = await service.fetch_resource("Patient", "pat-5", system_id=system.id)
    assert remote.source == "FHIR_SERVER"
    assert remote.data["gender"] == "female"
    stored_events = audit_sink.get_events(action=AuditAction.FHIR_RESOURCE_STORED)
    assert [(e["resource"], e["resource_id"]) for e in stored_events] == [("Patient", "pat-5")]
    assert stored_events[0]["details"]["source"] == "FHIR_SERVER"

    partner.routes["fhir.test"] = lambda request: httpx.Response(500)
    cached = await service.fetch_resource("Patient", "pat-5", system_id=system.id)
    assert cached.data["gender"] == "female"

    with pytest.raises(NotFoundError):
        await service.fetch_resource("Patient", "never-seen", system_id=system.id)
    with pytest.raises(NotFoundError):
        await service.fetch_resource("Patient", "never-seen")


@pytest.mark.anyio
async def test_search_caches_remote_bundle(service, partner, audit_sink):
    system = await add_system(service, "fhir", SystemType.FHIR_SERVER)
    bundle = {
        "resourceType": "Bundle",
        "type": "searchset",
        "entry": [
            {"resource": {"resourceType": "Patient", "id": "r1"}},
            {"resource": {"resourceType": "Patient", "id": "r2"}},
            {"resource": {"resourceType": "Observation", "id": "o1", "status": "final", "code": {"text": "x"}}},
        ],
    }
    partner.routes["fhir.test"] = lambda request: httpx.Response(200, json=bundle)

    result = await service.search_resources("Patient", patient_id="r1", system_id=system.id)

    assert partner.requests[0].url.params["patient"] == "r1"
    assert [r.resource_id for r in result.resources] == ["r1"]
    assert (await service.search_resources("Patient")).total == 2
    stored_events = audit_sink.get_events(action=AuditAction.FHIR_RESOURCE_STORED)
    assert sorted(e["resource_id"] for e in stored_events) == ["r1", "r2"]


@pytest.mark.anyio
async def test_create_patient_assigns_id(service):
    stored = await service.create_patient({"resourceType": "Patient", "name": [{"family": "Roe"}]})

    assert stored.resource_id
    assert stored.source == "API"
    assert stored.data["id"] == stored.resource_id


@pytest.mark.anyio
async def test_test_connection_reports_failures(service, partner):
    ok = await add_system(service, "lab")
    down = await add_system(service, "down")
    partner.routes["down.test"] = lambda request: httpx.Response(503)

    assert (await service.test_connection(ok.id))["success"] is True
    failure = await service.test_connection(down.id)
    assert failure["success"] is False
    assert failure["error_type"] == "delivery_failed"


@pytest.mark.anyio
async def test_deactivating_a_system_drops_its_channel(service, gateway):
    system = await add_system(service, "lab")
    assert gateway.breaker_for(system.id) is not None

    await service.update_system(system.id, ExternalSystemUpdate(is_active=False))
    assert gateway.breaker_for(system.id) is None


@pytest.mark.anyio
async def test_delete_refused_while_in_flight(service, gateway, registry):
    system = await add_system(service, "lab")
    started = anyio.Event()
    release = anyio.Event()

    async def slow(client):
        started.set()
        await release.wait()

    async with anyio.create_task_group() as tg:
        tg.start_soon(gateway.deliver, system.id, slow)
        await started.wait()
        with pytest.raises(SystemBusyError):
            await service.delete_system(system.id)
        release.set()

    await service.delete_system(system.id)
    with pytest.raises(NotFoundError):
        await registry.get(system.id)


@pytest.mark.anyio
async def test_generate_from_dict_patient_logs_patient_id(service, message_log):
    result = await service.generate_outbound(
        "ADT", {"id": "pat-2", "mrn": "MRN777", "first_name": "Ana", "last_name": "Roe"}
    )

    entry = await message_log.get(result.log_id)
    assert entry.patient_id == "MRN777"


class FailingSink:
    def __init__(self):
        self.attempts = 0

    async def record(self, event):
        self.attempts += 1
        raise OSError("audit volume is read-only")


@pytest.mark.anyio
async def test_audit_failures_never_fail_operations(registry, store, message_log, partner, clock):
    sink = FailingSink()
    auditor = ComplianceAuditor(sink)

    async def no_sleep(seconds):
        return None

    gateway = DeliveryGateway(
        registry,
        policy=DeliveryPolicy(max_attempts=2),
        auditor=auditor,
        transport=httpx.MockTransport(partner),
        clock=clock,
        sleep=no_sleep,
    )
    service = InteropService(
        parser=HL7MessageParser(),
        generator=HL7MessageGenerator(),
        converter=HL7ToFHIRConverter(),
        mapper=DomainToFHIRMapper(),
        store=store,
        registry=registry,
        message_log=message_log,
        gateway=gateway,
        auditor=auditor,
    )
    try:
        result = await service.process_inbound(ORU_EXAMPLE, source_system="LAB")
        assert len(result.stored) == 1
        assert (await store.get("Observation", result.stored[0].resource_id)).source == "LAB"
        assert (await message_log.get(result.log_id)).status == PROCESSED

        system = await add_system(service, "lab")
        partner.routes["lab.test"] = lambda request: httpx.Response(503)
        with pytest.raises(DeliveryFailedError) as exc_info:
            await gateway.send_hl7(system.id, ORU_EXAMPLE)
        assert exc_info.value.attempts == 2
    finally:
        await gateway.aclose()

    assert sink.attempts > 0
