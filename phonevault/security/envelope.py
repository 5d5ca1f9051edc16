"""Envelope Cipher - Encrypt/decrypt through the remote KMS

Self-Explanatory: Sends plaintext to KMS under a handle's key and stores the
returned ciphertext blob as standard base64 text.
How: KMS Encrypt/Decrypt with the purpose bound as encryption context. The key
never leaves KMS; no nonce or IV is kept locally.
"""

import base64
import binascii
from typing import Dict

import structlog
from botocore.exceptions import BotoCoreError, ClientError

from phonevault.errors import DecodingFailure, DecryptionFailure, EncryptionFailure
from phonevault.security.kms_registry import KeyHandle
from phonevault.utils.metrics import record_kms_operation, track_kms_call

logger = structlog.get_logger()

# KMS Encrypt rejects plaintext outside 1..4096 bytes
MAX_PLAINTEXT_BYTES = 4096


def encode_ciphertext(ciphertext: bytes) -> str:
    return base64.b64encode(ciphertext).decode("ascii")


def decode_ciphertext(encoded: str) -> bytes:
    """Strict standard-base64 decode

    Raises:
        DecodingFailure: input contains non-alphabet characters or bad padding
    """
    try:
        if isinstance(encoded, str):
            encoded = encoded.encode("ascii")
        return base64.b64decode(encoded, validate=True)
    except (binascii.Error, UnicodeEncodeError, TypeError) as e:
        raise DecodingFailure("Failed to decode encrypted data", details=str(e))


class EnvelopeCipher:
    """Stateless encrypt/decrypt against a KeyHandle"""

    def __init__(self, bind_context: bool = True):
        self.bind_context = bind_context

    def _context(self, handle: KeyHandle) -> Dict[str, str]:
        if not self.bind_context:
            return {}
        return {"EncryptionContext": {"purpose": handle.purpose.value}}

    @track_kms_call("encrypt")
    def encrypt(self, handle: KeyHandle, plaintext: bytes) -> str:
        """Encrypt plaintext with the handle's key

        Args:
            handle: Resolved key handle
            plaintext: Raw bytes to protect

        Returns:
            Base64 text of the KMS ciphertext blob

        Raises:
            EncryptionFailure: KMS call failed (network, auth, quota, key state)
        """
        try:
            response = handle.client.encrypt(
                KeyId=handle.key_path,
                Plaintext=plaintext,
                **self._context(handle),
            )
        except (ClientError, BotoCoreError) as e:
            record_kms_operation(handle.purpose.value, "encrypt", success=False)
            logger.error("KMS encrypt failed", purpose=handle.purpose.value, error=str(e))
            raise EncryptionFailure("Failed to encrypt data", details=str(e))

        record_kms_operation(handle.purpose.value, "encrypt", success=True)
        return encode_ciphertext(response["CiphertextBlob"])

    @track_kms_call("decrypt")
    def decrypt(self, handle: KeyHandle, encoded: str) -> bytes:
        """Decrypt base64 ciphertext with the handle's key

        Args:
            handle: Same handle (same key) used to encrypt
            encoded: Output of encrypt()

        Returns:
            Original plaintext bytes

        Raises:
            DecodingFailure: encoded is not valid base64
            DecryptionFailure: KMS call failed
        """
        ciphertext = decode_ciphertext(encoded)
        try:
            response = handle.client.decrypt(
                KeyId=handle.key_path,
                CiphertextBlob=ciphertext,
                **self._context(handle),
            )
        except (ClientError, BotoCoreError) as e:
            record_kms_operation(handle.purpose.value, "decrypt", success=False)
            logger.error("KMS decrypt failed", purpose=handle.purpose.value, error=str(e))
            raise DecryptionFailure("Failed to decrypt data", details=str(e))

        record_kms_operation(handle.purpose.value, "decrypt", success=True)
        return response["Plaintext"]
