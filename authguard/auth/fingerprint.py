"""Device fingerprint derivation."""
import hashlib
from typing import Optional

FIELD_DELIMITER = "|"


def _escape(value: Optional[str]) -> str:
    value = value or ""
    return value.replace("\\", "\\\\").replace(FIELD_DELIMITER, "\\" + FIELD_DELIMITER)


def fingerprint(device_id: Optional[str], device_type: Optional[str], user_agent: Optional[str]) -> str:
    """Derive a stable SHA-256 hex identifier from device attributes.

    Missing fields become empty strings so every field keeps its position;
    delimiter characters inside a field are escaped so field boundaries
    cannot be shifted. Used for audit and lookup only, never as a credential.
    """
    fingerprint_data = FIELD_DELIMITER.join(
        _escape(field) for field in (device_id, device_type, user_agent)
    )
    return hashlib.sha256(fingerprint_data.encode("utf-8")).hexdigest()
