import httpx
import pytest
from fastapi.testclient import TestClient

from interop_gateway.audit import ComplianceAuditor, JsonlAuditSink
from interop_gateway.config import GatewaySettings
from interop_gateway.database import (
    Database,
    ExternalSystemRegistry,
    FhirResourceStore,
    HL7MessageLog,
)
from interop_gateway.main import create_app

from samples import FakeClock


@pytest.fixture(scope="session")
def anyio_backend():
    """Restrict anyio tests to the asyncio backend."""

    yield "asyncio"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def database(tmp_path):
    db = Database(f"sqlite+aiosqlite:///{tmp_path}/gateway.db")
    await db.init()
    try:
        yield db
    finally:
        await db.close()


@pytest.fixture
def registry(database):
    return ExternalSystemRegistry(database)


@pytest.fixture
def store(database):
    return FhirResourceStore(database)


@pytest.fixture
def message_log(database):
    return HL7MessageLog(database)


@pytest.fixture
def audit_sink(tmp_path):
    return JsonlAuditSink(log_dir=str(tmp_path / "audit"), console_output=False)


@pytest.fixture
def auditor(audit_sink):
    return ComplianceAuditor(audit_sink)


@pytest.fixture
def gateway_settings(tmp_path):
    return GatewaySettings(
        database_url=f"sqlite+aiosqlite:///{tmp_path}/api.db",
        audit_log_dir=str(tmp_path / "api-audit"),
        delivery_backoff_scale=0,
    )


@pytest.fixture
def remote_requests():
    """Requests seen by the mock partner systems."""

    return []


@pytest.fixture
def remote_handler(remote_requests):
    """
    Default partner behaviour: accept everything.

    Tests replace ``handler.respond`` to script other responses.
    """

    def respond(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/hl7"):
            return httpx.Response(200, text="MSA|AA|OK")
        if request.method == "POST" and request.url.path.endswith("/Patient"):
            return httpx.Response(201, json={"resourceType": "Patient", "id": "remote-1"})
        return httpx.Response(200, json={"resourceType": "CapabilityStatement"})

    def handler(request: httpx.Request) -> httpx.Response:
        remote_requests.append(request)
        return handler.respond(request)

    handler.respond = respond
    return handler


@pytest.fixture
def client(gateway_settings, remote_handler):
    app = create_app(settings=gateway_settings, transport=httpx.MockTransport(remote_handler))
    with TestClient(app) as test_client:
        yield test_client
