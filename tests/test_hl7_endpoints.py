"""
Tests for HL7 v2.x API endpoints.
"""

import dataclasses

import httpx
import pytest
from fastapi.testclient import TestClient

from interop_gateway.main import create_app

from samples import ADT_EXAMPLE, ORU_EXAMPLE

PATIENT = {"id": "pat-1", "mrn": "MRN123", "first_name": "John", "last_name": "Doe", "gender": "male"}


def register(client, name, system_type="HL7_ENDPOINT"):
    response = client.post(
        "/api/v1/systems",
        json={"name": name, "type": system_type, "base_url": f"http://{name}.test"},
    )
    assert response.status_code == 201
    return response.json()["id"]


def test_receive_hl7_message_success(client):
    """Test receiving and processing HL7 message."""
    response = client.post("/api/v1/hl7/receive", json={"message": ORU_EXAMPLE, "source_system": "LAB"})

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "success"
    assert data["message_type"] == "ORU"
    assert data["trigger_event"] == "R01"
    assert data["message_id"] == "MSG001"
    assert len(data["resources"]) == 1
    assert data["resources"][0].startswith("Observation/")
    assert data["errors"] == []
    assert response.headers["X-Correlation-ID"]

    bundle = client.get("/api/v1/fhir/Observation", params={"patient": "MRN123"}).json()
    assert bundle["total"] == 1
    observation = bundle["entry"][0]["resource"]
    assert observation["status"] == "final"
    assert observation["valueQuantity"]["value"] == 95
    assert observation["valueQuantity"]["unit"] == "mg/dL"
    assert observation["interpretation"][0]["coding"][0]["code"] == "N"


def test_receive_adt_creates_patient(client):
    response = client.post("/api/v1/hl7/receive", json={"message": ADT_EXAMPLE})

    assert response.status_code == 200
    resources = response.json()["resources"]
    assert "Patient/P12345" in resources
    assert client.get("/api/v1/fhir/Patient/P12345").json()["gender"] == "female"


def test_receive_hl7_message_invalid(client):
    """Test receiving invalid HL7 message."""
    response = client.post(
        "/api/v1/hl7/receive",
        json={"message": "INVALID|MESSAGE"},
        headers={"X-Correlation-ID": "trace-123"},
    )

    assert response.status_code == 400
    data = response.json()
    assert data["status"] == "error"
    assert data["error_type"] == "malformed_message"
    assert data["correlation_id"] == "trace-123"
    assert data["path"] == "/api/v1/hl7/receive"
    assert "hint" in data

    failed = client.get("/api/v1/hl7/messages", params={"status": "FAILED"}).json()
    assert failed["count"] == 1


def test_receive_requires_message(client):
    response = client.post("/api/v1/hl7/receive", json={})

    assert response.status_code == 422
    assert response.json()["error_type"] == "validation_error"


def test_validate_hl7_message(client):
    valid = client.post("/api/v1/hl7/validate", json={"message": ORU_EXAMPLE}).json()
    assert valid == {"valid": True, "errors": [], "message_type": "ORU^R01"}

    incomplete = client.post(
        "/api/v1/hl7/validate",
        json={"message": "MSH|^~\\&|A|B|C|D|20240101||ADT^A01|1|P|2.5\r"},
    ).json()
    assert incomplete["valid"] is False
    assert incomplete["errors"] == ["ADT message is missing a PID segment"]

    garbage = client.post("/api/v1/hl7/validate", json={"message": "hello"}).json()
    assert garbage["valid"] is False
    assert garbage["message_type"] is None


def test_generate_hl7_message(client):
    response = client.post(
        "/api/v1/hl7/generate",
        json={"message_type": "ADT", "patient": PATIENT, "payload": {"trigger_event": "A04"}},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["sent"] is False
    assert data["trigger_event"] == "A04"
    assert data["message"].startswith("MSH|^~\\&|HMS|HOSPITAL|")
    assert "|ADT^A04|" in data["message"]
    assert "PID|1|MRN123|" in data["message"]

    logged = client.get(f"/api/v1/hl7/messages/{data['log_id']}").json()["message"]
    assert logged["direction"] == "OUTBOUND"
    assert logged["raw_message"] == data["message"]


def test_generate_unsupported_type(client):
    response = client.post("/api/v1/hl7/generate", json={"message_type": "SIU", "patient": PATIENT})

    assert response.status_code == 400
    assert response.json()["error_type"] == "unsupported_message_type"


def test_generate_and_send(client, remote_requests):
    system_id = register(client, "lab")

    response = client.post(
        "/api/v1/hl7/generate",
        json={"message_type": "ADT", "patient": PATIENT, "destination": system_id},
    )

    data = response.json()
    assert data["sent"] is True
    assert data["destination"] == "lab"
    assert remote_requests[-1].url.host == "lab.test"
    assert client.get(f"/api/v1/systems/{system_id}/sync-status").json()["sync_status"] == "SUCCESS"

    sent = client.get("/api/v1/hl7/messages", params={"status": "SENT"}).json()
    assert sent["count"] == 1


def test_send_failure_returns_bad_gateway(client, remote_handler):
    system_id = register(client, "lab")
    remote_handler.respond = lambda request: httpx.Response(503)

    response = client.post(
        "/api/v1/hl7/generate",
        json={"message_type": "ADT", "patient": PATIENT, "destination": system_id},
    )

    assert response.status_code == 502
    data = response.json()
    assert data["error_type"] == "delivery_failed"
    assert data["system_id"] == system_id
    assert data["detail"]["attempts"] == 3

    status = client.get(f"/api/v1/systems/{system_id}/sync-status").json()
    assert status["sync_status"] == "FAILED"
    assert "503" in status["error_message"]


def test_rate_limited_send_sets_retry_after(gateway_settings, remote_handler):
    settings = dataclasses.replace(gateway_settings, rate_limit_requests=1)
    app = create_app(settings=settings, transport=httpx.MockTransport(remote_handler))

    with TestClient(app) as client:
        system_id = register(client, "lab")
        body = {"message_type": "ADT", "patient": PATIENT, "destination": system_id}
        assert client.post("/api/v1/hl7/generate", json=body).status_code == 200

        response = client.post("/api/v1/hl7/generate", json=body)

    assert response.status_code == 429
    assert response.json()["error_type"] == "rate_limit_exceeded"
    assert int(response.headers["Retry-After"]) >= 1


def test_rebroadcast_through_api(client, remote_requests):
    register(client, "lab")
    register(client, "ward")

    response = client.post(
        "/api/v1/hl7/receive",
        json={"message": ORU_EXAMPLE, "source_system": "lab", "rebroadcast": True},
    )

    broadcast = response.json()["broadcast"]
    assert broadcast["delivered"] == 1
    assert broadcast["succeeded"] is True
    assert [r["system_name"] for r in broadcast["results"]] == ["ward"]


def test_list_messages_filters(client):
    client.post("/api/v1/hl7/receive", json={"message": ORU_EXAMPLE})
    client.post("/api/v1/hl7/receive", json={"message": ADT_EXAMPLE})

    everything = client.get("/api/v1/hl7/messages").json()
    assert everything["count"] == 2
    assert "raw_message" not in everything["messages"][0]

    adt = client.get("/api/v1/hl7/messages", params={"message_type": "ADT", "direction": "INBOUND"}).json()
    assert [m["message_id"] for m in adt["messages"]] == ["ADT001"]


def test_get_missing_message(client):
    response = client.get("/api/v1/hl7/messages/does-not-exist")

    assert response.status_code == 404
    assert response.json()["error_type"] == "not_found"
