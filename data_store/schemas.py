"""Schema normalization for stored visit records.

Every record carries every column; channels the reading did not contain and
patient fields that were not supplied are filled with None (NaN in pandas).
"""

from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from vitals_engine.models import Channel

# DataFrame schema: column names and their types
VISIT_SCHEMA: Dict[str, type] = {
    "id": int,  # Sequential visit id, 1-based
    "saved_at": str,  # UTC ISO 8601, when the record was stored
    "reading_ts": str,  # UTC ISO 8601 of the reading, None for session vitals
    **{channel.key: float for channel in Channel},
    "raw": str,  # Raw device line, None for session vitals
    "first_name": str,
    "last_name": str,
    "date_of_birth": str,
    "insurance": str,
    "insurance_id": str,
    "symptoms": str,
}

# Intake form field -> record column
PATIENT_FIELDS: Dict[str, str] = {
    "firstName": "first_name",
    "lastName": "last_name",
    "dateOfBirth": "date_of_birth",
    "insurance": "insurance",
    "insuranceId": "insurance_id",
    "symptoms": "symptoms",
}


def visit_to_row(
    visit_id: int,
    values: Mapping[str, Any],
    reading_ts: Optional[datetime] = None,
    raw: Optional[str] = None,
    patient: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """Build a record dictionary with all VISIT_SCHEMA keys.

    Args:
        visit_id: Id assigned by the store
        values: Channel key -> value (reading values or committed vitals)
        reading_ts: Timestamp of the reading, if the record came from one
        raw: Raw device line, if any
        patient: Intake form fields, camelCase as posted by the kiosk

    Returns:
        Dictionary with all VISIT_SCHEMA keys, ready for DataFrame append
    """
    ts = None
    if reading_ts is not None:
        if reading_ts.tzinfo is None:
            reading_ts = reading_ts.replace(tzinfo=timezone.utc)
        ts = reading_ts.astimezone(timezone.utc).isoformat()

    row: Dict[str, Any] = {
        "id": visit_id,
        "saved_at": datetime.now(timezone.utc).isoformat(),
        "reading_ts": ts,
        "raw": raw,
    }

    for channel in Channel:
        row[channel.key] = values.get(channel.key)  # None if absent

    patient = patient or {}
    for field_name, column in PATIENT_FIELDS.items():
        row[column] = patient.get(field_name)

    return {column: row[column] for column in VISIT_SCHEMA}
