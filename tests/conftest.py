"""Shared fixtures: fake KMS client, in-memory store, wired service and app

Run: pytest tests/ -v
"""
import json
import os

import pytest
from botocore.exceptions import ClientError
from fastapi.testclient import TestClient

from phonevault.config import Settings
from phonevault.main import create_app
from phonevault.records.service import RecordService
from phonevault.records.store import RecordStore
from phonevault.security.kms_registry import KeyClientRegistry, KeyHandle
from phonevault.security.purposes import KeyPurpose

TEST_KEY_PATH = "arn:aws:kms:ap-south-1:111122223333:key/phone-test"


class FakeKMSClient:
    """Stand-in for a boto3 KMS client

    Ciphertext embeds the key id and encryption context, so decrypting under a
    different key or context fails the way KMS does. Plaintext size is held to
    the same 1..4096 byte range KMS enforces server side.
    """

    def __init__(self, key_state="Enabled", key_usage="ENCRYPT_DECRYPT"):
        self.key_state = key_state
        self.key_usage = key_usage
        self.calls = []

    def describe_key(self, KeyId):
        self.calls.append(("describe_key", KeyId))
        return {"KeyMetadata": {"KeyId": KeyId, "KeyState": self.key_state, "KeyUsage": self.key_usage}}

    def encrypt(self, KeyId, Plaintext, EncryptionContext=None):
        self.calls.append(("encrypt", KeyId))
        if not 1 <= len(Plaintext) <= 4096:
            raise ClientError(
                {"Error": {"Code": "ValidationException", "Message": "Plaintext must be 1 to 4096 bytes"}},
                "Encrypt",
            )
        nonce = os.urandom(8)
        header = json.dumps({"k": KeyId, "c": EncryptionContext or {}}).encode()
        body = bytes(b ^ nonce[i % len(nonce)] for i, b in enumerate(Plaintext))
        return {"CiphertextBlob": len(header).to_bytes(2, "big") + header + nonce + body, "KeyId": KeyId}

    def decrypt(self, CiphertextBlob, KeyId=None, EncryptionContext=None):
        self.calls.append(("decrypt", KeyId))
        try:
            size = int.from_bytes(CiphertextBlob[:2], "big")
            header = json.loads(CiphertextBlob[2:2 + size])
        except ValueError:
            header = None
        if header is None or header["k"] != KeyId or header["c"] != (EncryptionContext or {}):
            raise ClientError(
                {"Error": {"Code": "InvalidCiphertextException", "Message": "ciphertext does not match key"}},
                "Decrypt",
            )
        nonce = CiphertextBlob[2 + size:10 + size]
        body = CiphertextBlob[10 + size:]
        return {"Plaintext": bytes(b ^ nonce[i % len(nonce)] for i, b in enumerate(body)), "KeyId": KeyId}

    def count(self, operation):
        return sum(1 for name, _ in self.calls if name == operation)


@pytest.fixture
def fake_kms():
    return FakeKMSClient()


@pytest.fixture
def handle(fake_kms):
    return KeyHandle(purpose=KeyPurpose.PHONE_ENCRYPTION, key_path=TEST_KEY_PATH, client=fake_kms)


@pytest.fixture
def registry(handle):
    return KeyClientRegistry([handle])


@pytest.fixture
def store():
    record_store = RecordStore.from_url("sqlite://")
    record_store.ensure_schema()
    yield record_store
    record_store.dispose()


@pytest.fixture
def service(registry, store):
    return RecordService(registry, store)


@pytest.fixture
def settings():
    return Settings(request_timeout_seconds=5.0)


@pytest.fixture
def client(service, settings):
    with TestClient(create_app(service=service, settings=settings)) as test_client:
        yield test_client
