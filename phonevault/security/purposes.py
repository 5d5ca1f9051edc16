"""Key purposes known to the service"""

from enum import Enum

from phonevault.errors import ConfigurationError


class KeyPurpose(str, Enum):
    """Closed set of logical key purposes

    Each purpose gets its own KMS key and credential. Add a member here to
    register another field type; an unknown purpose string fails in parse().
    """
    PHONE_ENCRYPTION = "phone_encryption"

    @classmethod
    def parse(cls, value: str) -> "KeyPurpose":
        try:
            return cls(value)
        except ValueError:
            raise ConfigurationError(
                f"Unknown key purpose: {value}",
                details=f"expected one of {', '.join(p.value for p in cls)}",
            )
