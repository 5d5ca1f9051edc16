"""Integration Tests for the /phone endpoints

Self-Explanatory: TestClient against the real app wired to a fake KMS client and
in-memory SQLite.
Run: pytest tests/phone/ -v
"""
import base64
import time

import pytest
from botocore.exceptions import ClientError
from fastapi.testclient import TestClient
from sqlalchemy import func, select

from phonevault.config import Settings
from phonevault.main import create_app
from phonevault.records.store import phone_numbers


def _row_count(store):
    with store.engine.connect() as conn:
        return conn.execute(select(func.count()).select_from(phone_numbers)).scalar()


def test_create_then_get(client):
    response = client.post("/phone", json={"phone_number": "+15551234567"})
    assert response.status_code == 201
    body = response.json()
    assert set(body) == {"id", "encrypted_data", "created_at", "updated_at"}
    assert body["id"]
    assert body["encrypted_data"] != "+15551234567"
    base64.b64decode(body["encrypted_data"], validate=True)

    response = client.get(f"/phone/{body['id']}")
    assert response.status_code == 200
    fetched = response.json()
    assert fetched == {
        "id": body["id"],
        "phone_number": "+15551234567",
        "created_at": body["created_at"],
        "updated_at": body["updated_at"],
    }


def test_same_number_twice_gives_distinct_records(client):
    first = client.post("/phone", json={"phone_number": "+15551234567"}).json()
    second = client.post("/phone", json={"phone_number": "+15551234567"}).json()
    assert first["id"] != second["id"]
    assert first["encrypted_data"] != second["encrypted_data"]


@pytest.mark.parametrize("payload", [{}, {"phone_number": ""}, {"phone_number": None}, {"phone_number": 15551234567}, {"number": "+1555"}])
def test_invalid_body_is_400_without_side_effects(client, fake_kms, store, payload):
    response = client.post("/phone", json=payload)
    assert response.status_code == 400
    assert response.json()["error"] == "Invalid request body"
    assert fake_kms.calls == []
    assert _row_count(store) == 0


def test_malformed_json_is_400(client, fake_kms):
    response = client.post("/phone", content=b"{not json", headers={"Content-Type": "application/json"})
    assert response.status_code == 400
    assert fake_kms.calls == []


def test_unknown_id_is_404(client, fake_kms):
    response = client.get("/phone/00000000-0000-0000-0000-000000000000")
    assert response.status_code == 404
    assert response.json()["error"] == "The Phone number not found"
    assert fake_kms.count("decrypt") == 0


def test_encryption_failure_is_500(client, fake_kms, store, mocker):
    mocker.patch.object(fake_kms, "encrypt", side_effect=ClientError(
        {"Error": {"Code": "AccessDeniedException", "Message": "not allowed"}}, "Encrypt"
    ))
    response = client.post("/phone", json={"phone_number": "+15551234567"})
    assert response.status_code == 500
    body = response.json()
    assert body["error"] == "Failed to encrypt data"
    assert "AccessDeniedException" in body["details"]
    assert _row_count(store) == 0


def test_decryption_failure_is_500(client, fake_kms, mocker):
    record_id = client.post("/phone", json={"phone_number": "+15551234567"}).json()["id"]
    mocker.patch.object(fake_kms, "decrypt", side_effect=ClientError(
        {"Error": {"Code": "KMSInvalidStateException", "Message": "key disabled"}}, "Decrypt"
    ))
    response = client.get(f"/phone/{record_id}")
    assert response.status_code == 500
    assert response.json()["error"] == "Failed to decrypt data"
    assert "+15551234567" not in response.text


def test_corrupt_payload_is_500(client, store):
    record = store.create("%%% not base64 %%%")
    response = client.get(f"/phone/{record.id}")
    assert response.status_code == 500
    assert response.json()["error"] == "Failed to decode encrypted data"


def test_slow_key_service_hits_request_deadline(service, store, fake_kms, mocker):
    original = fake_kms.encrypt

    def slow_encrypt(**kwargs):
        time.sleep(0.3)
        return original(**kwargs)

    encrypt = mocker.patch.object(fake_kms, "encrypt", side_effect=slow_encrypt)
    app = create_app(service=service, settings=Settings(request_timeout_seconds=0.05))
    with TestClient(app) as client:
        response = client.post("/phone", json={"phone_number": "+15551234567"})
        assert response.status_code == 504
        assert response.json()["error"] == "Request timed out"

        # let the abandoned worker finish its encrypt
        time.sleep(0.6)
        assert encrypt.call_count == 1
        assert _row_count(store) == 0


def test_longest_phone_number_kms_accepts(client):
    number = "9" * 4096
    created = client.post("/phone", json={"phone_number": number})
    assert created.status_code == 201
    assert client.get(f"/phone/{created.json()['id']}").json()["phone_number"] == number


@pytest.mark.parametrize("number", ["9" * 4097, "☎" * 1366])
def test_phone_number_over_kms_limit_is_400(client, fake_kms, store, number):
    response = client.post("/phone", json={"phone_number": number})
    assert response.status_code == 400
    assert "phone_number" in response.json()["details"]
    assert fake_kms.count("encrypt") == 0
    assert _row_count(store) == 0


def test_request_id_is_echoed(client):
    response = client.get("/health/live", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"
