"""
Data classification and redaction rules for AdminBase.
Decides which column names carry secrets and how values are masked
before they reach the audit trail or the application log.
"""

from enum import Enum
from typing import Any


class DataClassification(Enum):
    """Data sensitivity classification levels."""
    PUBLIC = "public"
    INTERNAL = "internal"
    CONFIDENTIAL = "confidential"
    RESTRICTED = "restricted"  # credentials, one-time codes, token material


# Any column whose name contains one of these is never written to the audit trail
SENSITIVE_FIELD_FRAGMENTS = (
    "password",
    "token",
    "secret",
    "otp",
    "verification",
    "refresh",
)

REDACTED = "[redacted]"

# Personal data that is kept in audit rows but masked in log lines
FIELD_CLASSIFICATIONS: dict[str, DataClassification] = {
    "email": DataClassification.CONFIDENTIAL,
    "identifier": DataClassification.CONFIDENTIAL,
    "ip_address": DataClassification.CONFIDENTIAL,
    "phone": DataClassification.CONFIDENTIAL,
    "device_fingerprint": DataClassification.CONFIDENTIAL,
}


def is_sensitive_field(field_name: str) -> bool:
    """True when a column name contains a secret-bearing fragment."""
    lowered = field_name.lower()
    return any(fragment in lowered for fragment in SENSITIVE_FIELD_FRAGMENTS)


def get_field_classification(field_name: str) -> DataClassification:
    """Get the classification level for a field."""
    if is_sensitive_field(field_name):
        return DataClassification.RESTRICTED
    return FIELD_CLASSIFICATIONS.get(field_name.lower(), DataClassification.INTERNAL)


def mask_value(value: str, classification: DataClassification) -> str:
    """Mask a value based on its classification."""
    if classification in (DataClassification.PUBLIC, DataClassification.INTERNAL):
        return value
    if classification == DataClassification.CONFIDENTIAL:
        # Show first and last characters
        if len(value) <= 4:
            return "*" * len(value)
        return f"{value[0]}{'*' * (len(value) - 2)}{value[-1]}"
    return REDACTED


def sanitize_for_logging(data: dict[str, Any]) -> dict[str, Any]:
    """Sanitize a dictionary for safe logging."""
    sanitized = {}

    for key, value in data.items():
        classification = get_field_classification(str(key))

        if classification == DataClassification.RESTRICTED:
            sanitized[key] = REDACTED
        elif value is None:
            sanitized[key] = None
        elif isinstance(value, str):
            sanitized[key] = mask_value(value, classification)
        elif isinstance(value, dict):
            sanitized[key] = sanitize_for_logging(value)
        elif isinstance(value, list):
            sanitized[key] = [
                sanitize_for_logging(item) if isinstance(item, dict) else item
                for item in value
            ]
        else:
            sanitized[key] = value

    return sanitized
