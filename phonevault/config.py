"""Settings - Process configuration from the environment

Self-Explanatory: One pydantic model holding every knob the service reads.
How: python-dotenv loads an optional .env file, then values come from os.environ.

Per-purpose key settings are derived from the purpose name:
    PHONE_ENCRYPTION_KEY_PATH          (required)
    PHONE_ENCRYPTION_CREDENTIALS_PATH  (optional, default AWS chain when absent)
"""

import os
from typing import Dict, List, Mapping, Optional, Union
from urllib.parse import quote

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from phonevault.errors import ConfigurationError
from phonevault.security.purposes import KeyPurpose

DEFAULT_PORT = 8080
DEFAULT_AWS_REGION = "ap-south-1"


class KeySettings(BaseModel):
    """Where to find the key and credential for one purpose"""
    purpose: KeyPurpose
    key_path: str
    credentials_path: Optional[str] = None


class Settings(BaseModel):
    # Database
    database_url: Optional[str] = None
    db_host: str = "localhost"
    db_user: str = "postgres"
    db_password: str = ""
    db_name: str = "phonevault"
    db_port: int = 5432
    db_sslmode: str = "disable"

    # Key management
    keys: Dict[KeyPurpose, KeySettings] = Field(default_factory=dict)
    aws_region: str = DEFAULT_AWS_REGION
    kms_endpoint_url: Optional[str] = None
    kms_connect_timeout_seconds: float = 2.0
    kms_read_timeout_seconds: float = 5.0

    # HTTP
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    request_timeout_seconds: float = 10.0

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    @property
    def sqlalchemy_url(self) -> str:
        """Connection string for the record store

        DATABASE_URL wins; otherwise assembled from the DB_* parts.
        """
        if self.database_url:
            return self.database_url
        return (
            f"postgresql+psycopg2://{quote(self.db_user, safe='')}:{quote(self.db_password, safe='')}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}?sslmode={self.db_sslmode}"
        )


def _env_name(purpose: KeyPurpose, suffix: str) -> str:
    return f"{purpose.value.upper()}_{suffix}"


def _read_keys(env: Mapping[str, str], purposes: List[KeyPurpose]) -> Dict[KeyPurpose, KeySettings]:
    keys = {}
    missing = []
    for purpose in purposes:
        key_path = (env.get(_env_name(purpose, "KEY_PATH")) or "").strip()
        if not key_path:
            missing.append(_env_name(purpose, "KEY_PATH"))
            continue
        credentials_path = (env.get(_env_name(purpose, "CREDENTIALS_PATH")) or "").strip() or None
        keys[purpose] = KeySettings(purpose=purpose, key_path=key_path, credentials_path=credentials_path)
    if missing:
        raise ConfigurationError(
            "Missing required key configuration",
            details=f"set {', '.join(missing)}",
        )
    return keys


def _parse_purposes(purposes) -> List[KeyPurpose]:
    if purposes is None:
        return list(KeyPurpose)
    return [p if isinstance(p, KeyPurpose) else KeyPurpose.parse(p) for p in purposes]


def _number(env: Mapping[str, str], name: str, default, cast):
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ConfigurationError(f"Invalid value for {name}", details=repr(raw))


def load_settings(
    env: Optional[Mapping[str, str]] = None,
    purposes: Optional[List[Union[KeyPurpose, str]]] = None,
    dotenv: bool = True,
) -> Settings:
    """Build Settings from the environment

    Args:
        env: Mapping to read instead of os.environ (tests)
        purposes: Purposes or purpose names that must be configured
            (default: every KeyPurpose)
        dotenv: Load a local .env file first (only when reading os.environ)

    Returns:
        Validated Settings

    Raises:
        ConfigurationError: a required value is missing or malformed
    """
    if env is None:
        if dotenv:
            load_dotenv()
        env = os.environ

    return Settings(
        database_url=env.get("DATABASE_URL") or None,
        db_host=env.get("DB_HOST", "localhost"),
        db_user=env.get("DB_USER", "postgres"),
        db_password=env.get("DB_PASSWORD", ""),
        db_name=env.get("DB_NAME", "phonevault"),
        db_port=_number(env, "DB_PORT", 5432, int),
        db_sslmode=env.get("DB_SSLMODE", "disable"),
        keys=_read_keys(env, _parse_purposes(purposes)),
        aws_region=env.get("AWS_REGION", DEFAULT_AWS_REGION),
        kms_endpoint_url=env.get("KMS_ENDPOINT_URL") or None,
        kms_connect_timeout_seconds=_number(env, "KMS_CONNECT_TIMEOUT_SECONDS", 2.0, float),
        kms_read_timeout_seconds=_number(env, "KMS_READ_TIMEOUT_SECONDS", 5.0, float),
        host=env.get("HOST", "0.0.0.0"),
        port=_number(env, "PORT", DEFAULT_PORT, int),
        request_timeout_seconds=_number(env, "REQUEST_TIMEOUT_SECONDS", 10.0, float),
        log_level=env.get("LOG_LEVEL", "INFO").upper(),
        log_format=env.get("LOG_FORMAT", "json").lower(),
    )
