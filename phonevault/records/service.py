"""Record Service - Encrypt-then-store and load-then-decrypt"""

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

import structlog

from phonevault.errors import (
    DecodingFailure,
    DecryptionFailure,
    RecordNotFound,
    RequestTimeout,
    ValidationError,
)
from phonevault.records.store import EncryptedRecord, RecordStore
from phonevault.security.envelope import MAX_PLAINTEXT_BYTES, EnvelopeCipher
from phonevault.security.kms_registry import KeyClientRegistry
from phonevault.security.purposes import KeyPurpose
from phonevault.utils.metrics import record_fetch

logger = structlog.get_logger()


@dataclass(frozen=True)
class DecryptedPhoneNumber:
    id: str
    phone_number: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "phone_number": self.phone_number,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


class RecordService:
    """Phone number submit/fetch

    Encryption always runs before anything is written, so a failed encrypt
    leaves no row behind.
    """

    purpose = KeyPurpose.PHONE_ENCRYPTION

    def __init__(self, registry: KeyClientRegistry, store: RecordStore, cipher: EnvelopeCipher = None):
        self.registry = registry
        self.store = store
        self.cipher = cipher or EnvelopeCipher()

    def submit(self, phone_number: str, deadline: Optional[float] = None) -> EncryptedRecord:
        """Encrypt a phone number and persist it

        Args:
            phone_number: Plaintext to protect
            deadline: time.monotonic() value after which nothing is written

        Raises:
            ValidationError: empty or oversized input
            RequestTimeout: deadline passed before the insert
            KeyNotRegistered, EncryptionFailure, StorageFailure
        """
        if not phone_number:
            raise ValidationError("phone_number is required")
        plaintext = phone_number.encode("utf-8")
        if len(plaintext) > MAX_PLAINTEXT_BYTES:
            raise ValidationError(
                "phone_number is too long",
                details=f"at most {MAX_PLAINTEXT_BYTES} bytes of UTF-8",
            )

        handle = self.registry.resolve(self.purpose)
        encrypted = self.cipher.encrypt(handle, plaintext)
        if deadline is not None and time.monotonic() >= deadline:
            logger.warning("Deadline passed after encrypt, record not stored")
            raise RequestTimeout("Request timed out", details="deadline passed before insert")
        return self.store.create(encrypted)

    def fetch(self, record_id: str) -> DecryptedPhoneNumber:
        """Load a record and return its decrypted phone number

        Raises:
            RecordNotFound, DecodingFailure, DecryptionFailure, StorageFailure
        """
        try:
            record = self.store.get_by_id(record_id)
        except RecordNotFound:
            record_fetch("not_found")
            raise

        handle = self.registry.resolve(self.purpose)
        try:
            plaintext = self.cipher.decrypt(handle, record.encrypted_data)
            phone_number = plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            record_fetch("error")
            raise DecryptionFailure("Failed to decrypt phone number", details=f"plaintext is not UTF-8: {e}")
        except (DecodingFailure, DecryptionFailure):
            record_fetch("error")
            raise

        record_fetch("found")
        logger.info("Record decrypted", record_id=record.id)
        return DecryptedPhoneNumber(
            id=record.id,
            phone_number=phone_number,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )
