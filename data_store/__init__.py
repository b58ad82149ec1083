"""DataFrame persistence layer for kiosk visit records."""

from data_store.schemas import PATIENT_FIELDS, VISIT_SCHEMA, visit_to_row
from data_store.store import VisitStore

__all__ = ["VISIT_SCHEMA", "PATIENT_FIELDS", "visit_to_row", "VisitStore"]
