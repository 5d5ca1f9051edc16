"""KMS Key Registry - One key handle per purpose

Self-Explanatory: Builds and holds the KMS clients the service encrypts with.
How: For each configured purpose, load its credential file, open a boto3 session
bound to it, and verify the key with DescribeKey before the service takes traffic.

Architecture:
- Master keys live in AWS KMS and never leave it
- Each purpose (phone_encryption, ...) has its own key, credential and client
- Handles are immutable; the registry is built once at startup and shared
  read-only by all requests

Credentials file (JSON):
    {"aws_access_key_id": "...", "aws_secret_access_key": "...",
     "aws_session_token": "...", "region": "ap-south-1"}
Only the first two are required. Without a file the default AWS chain is used.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

import boto3
import structlog
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from phonevault.config import KeySettings, Settings
from phonevault.errors import ConfigurationError, KeyNotRegistered, KeyServiceConnectionError
from phonevault.security.purposes import KeyPurpose

logger = structlog.get_logger()

DEFAULT_CREDENTIAL_SOURCE = "default"
REQUIRED_CREDENTIAL_FIELDS = ("aws_access_key_id", "aws_secret_access_key")


@dataclass(frozen=True)
class KeyHandle:
    """A purpose bound to one KMS key and the client allowed to use it"""
    purpose: KeyPurpose
    key_path: str
    client: Any = field(repr=False, compare=False)
    credential_source: str = DEFAULT_CREDENTIAL_SOURCE


def load_credentials(path: str, purpose: KeyPurpose) -> Dict[str, str]:
    """Read a JSON credentials file for one purpose

    Raises:
        ConfigurationError: file missing, unreadable, not JSON, or incomplete
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except OSError as e:
        raise ConfigurationError(f"Failed to read credentials file for {purpose.value}", details=str(e))
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Failed to load credentials for {purpose.value}", details=f"invalid JSON: {e}")

    if not isinstance(data, dict):
        raise ConfigurationError(f"Failed to load credentials for {purpose.value}", details="expected a JSON object")
    missing = [name for name in REQUIRED_CREDENTIAL_FIELDS if not data.get(name)]
    if missing:
        raise ConfigurationError(
            f"Failed to load credentials for {purpose.value}",
            details=f"missing {', '.join(missing)}",
        )
    return data


def build_kms_client(key_settings: KeySettings, settings: Settings):
    """Create a KMS client for one purpose

    Retries are disabled; transient failures surface to the caller.
    """
    session_kwargs = {"region_name": settings.aws_region}
    if key_settings.credentials_path:
        creds = load_credentials(key_settings.credentials_path, key_settings.purpose)
        session_kwargs.update(
            aws_access_key_id=creds["aws_access_key_id"],
            aws_secret_access_key=creds["aws_secret_access_key"],
            aws_session_token=creds.get("aws_session_token"),
            region_name=creds.get("region") or settings.aws_region,
        )

    session = boto3.session.Session(**session_kwargs)
    config = Config(
        connect_timeout=settings.kms_connect_timeout_seconds,
        read_timeout=settings.kms_read_timeout_seconds,
        retries={"total_max_attempts": 1, "mode": "standard"},
    )
    try:
        return session.client("kms", endpoint_url=settings.kms_endpoint_url, config=config)
    except BotoCoreError as e:
        raise KeyServiceConnectionError(f"Failed to create KMS client for {key_settings.purpose.value}", details=str(e))


def describe_key(handle: KeyHandle) -> Dict:
    """Fetch key metadata and check the key can encrypt/decrypt

    Returns:
        Subset of KeyMetadata (key_id, key_state, key_usage)

    Raises:
        KeyServiceConnectionError: call failed or key not usable
    """
    try:
        response = handle.client.describe_key(KeyId=handle.key_path)
    except (ClientError, BotoCoreError) as e:
        raise KeyServiceConnectionError(
            f"Failed to reach KMS key for {handle.purpose.value}",
            details=str(e),
        )

    metadata = response["KeyMetadata"]
    key_state = metadata.get("KeyState", "Enabled" if metadata.get("Enabled") else "Unknown")
    key_usage = metadata.get("KeyUsage", "ENCRYPT_DECRYPT")
    if key_state != "Enabled":
        raise KeyServiceConnectionError(
            f"KMS key for {handle.purpose.value} is not usable",
            details=f"key state is {key_state}",
        )
    if key_usage != "ENCRYPT_DECRYPT":
        raise KeyServiceConnectionError(
            f"KMS key for {handle.purpose.value} is not usable",
            details=f"key usage is {key_usage}",
        )
    return {"key_id": metadata.get("KeyId"), "key_state": key_state, "key_usage": key_usage}


class KeyClientRegistry:
    """Purpose -> KeyHandle lookup, built once at startup"""

    def __init__(self, handles: Iterable[KeyHandle] = ()):
        self._handles: Dict[KeyPurpose, KeyHandle] = {}
        for handle in handles:
            self.register(handle)

    def register(self, handle: KeyHandle) -> None:
        """Add a handle (startup only)

        Re-registering the same key path is a no-op; a different key path for an
        already registered purpose is a configuration error.
        """
        existing = self._handles.get(handle.purpose)
        if existing is not None:
            if existing.key_path == handle.key_path:
                return
            raise ConfigurationError(
                f"Conflicting key registration for {handle.purpose.value}",
                details=f"{existing.key_path} vs {handle.key_path}",
            )
        self._handles[handle.purpose] = handle
        logger.info(
            "KMS key registered",
            purpose=handle.purpose.value,
            key_path=handle.key_path,
            credential_source=handle.credential_source,
        )

    def resolve(self, purpose: KeyPurpose) -> KeyHandle:
        """Get the handle for a purpose

        Raises:
            TypeError: purpose is not a KeyPurpose member
            KeyNotRegistered: purpose was never registered
        """
        if not isinstance(purpose, KeyPurpose):
            raise TypeError(f"expected KeyPurpose, got {type(purpose).__name__}")
        try:
            return self._handles[purpose]
        except KeyError:
            raise KeyNotRegistered(purpose.value)

    @property
    def purposes(self) -> List[KeyPurpose]:
        return list(self._handles)

    def check(self) -> Dict[str, Dict]:
        """DescribeKey every registered key (readiness probe)"""
        results = {}
        for purpose, handle in self._handles.items():
            try:
                results[purpose.value] = {"status": "healthy", **describe_key(handle)}
            except KeyServiceConnectionError as e:
                logger.warning("KMS key check failed", purpose=purpose.value, error=str(e))
                results[purpose.value] = {"status": "unhealthy", "error": str(e)}
        return results

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        client_factory: Optional[Callable[[KeySettings, Settings], Any]] = None,
        verify: bool = True,
    ) -> "KeyClientRegistry":
        """Build and verify a handle for every configured purpose

        Args:
            settings: Loaded settings (settings.keys lists the purposes)
            client_factory: Builds the KMS client (default: boto3)
            verify: Call DescribeKey on each key before returning

        Raises:
            ConfigurationError: no keys configured, or a credential file is bad
            KeyServiceConnectionError: a key cannot be reached or is not usable
        """
        if not settings.keys:
            raise ConfigurationError("No encryption keys configured")

        factory = client_factory or build_kms_client
        registry = cls()
        for purpose, key_settings in settings.keys.items():
            handle = KeyHandle(
                purpose=purpose,
                key_path=key_settings.key_path,
                client=factory(key_settings, settings),
                credential_source=key_settings.credentials_path or DEFAULT_CREDENTIAL_SOURCE,
            )
            if verify:
                describe_key(handle)
            registry.register(handle)
        return registry
