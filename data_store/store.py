"""Thread-safe DataFrame store for kiosk visit records.

Each saved visit is one row: the vitals (from a single reading or from a
capture session's committed values) plus the patient's intake fields. When
constructed with a path, the store rewrites that JSON file after every save so
records survive a restart.
"""

import logging
import math
import os
from pathlib import Path
from threading import RLock
from typing import Any, Dict, List, Mapping, Optional

import pandas as pd

from data_store.schemas import VISIT_SCHEMA, visit_to_row
from vitals_engine.models import Reading

logger = logging.getLogger(__name__)

COLUMNS = list(VISIT_SCHEMA.keys())


def _clean(record: Dict[str, Any]) -> Dict[str, Any]:
    """Replace pandas missing values with None so records serialize as JSON null."""
    cleaned = {}
    for key, value in record.items():
        if value is None or (isinstance(value, float) and math.isnan(value)):
            cleaned[key] = None
        elif hasattr(value, "item"):
            cleaned[key] = value.item()  # numpy scalar -> Python scalar
        else:
            cleaned[key] = value
    return cleaned


class VisitStore:
    """Thread-safe in-memory DataFrame of visit records with optional JSON persistence.

    Rows are kept in save order; ids are sequential and never reused within
    the store's lifetime (clear() restarts them at 1).
    """

    def __init__(self, path: Optional[str] = None) -> None:
        """Initialize store, loading existing records if path already exists.

        Args:
            path: JSON file to persist to. If None, records live in memory only.
        """
        self._lock = RLock()
        self._df = pd.DataFrame(columns=COLUMNS)
        self._next_id = 1
        self._path = Path(path) if path else None

        if self._path is not None and self._path.exists():
            self.load_json(str(self._path))

    @property
    def path(self) -> Optional[str]:
        return str(self._path) if self._path else None

    # ========================================================================
    # Saving
    # ========================================================================

    def save_reading(
        self, reading: Reading, patient: Optional[Mapping[str, Any]] = None
    ) -> Dict[str, Any]:
        """Store one device reading as a visit.

        Args:
            reading: Reading to store (values, timestamp and raw line)
            patient: Intake form fields (camelCase keys), optional

        Returns:
            Stored record with "saved_locally": True
        """
        with self._lock:
            row = visit_to_row(
                self._next_id,
                reading.values,
                reading_ts=reading.ts,
                raw=reading.raw,
                patient=patient,
            )
            return self._append(row)

    def save_vitals(
        self, vitals: Mapping[str, float], patient: Optional[Mapping[str, Any]] = None
    ) -> Dict[str, Any]:
        """Store committed session vitals as a visit.

        Args:
            vitals: Channel key -> committed value
            patient: Intake form fields (camelCase keys), optional

        Returns:
            Stored record with "saved_locally": True
        """
        with self._lock:
            row = visit_to_row(self._next_id, vitals, patient=patient)
            return self._append(row)

    def _append(self, row: Dict[str, Any]) -> Dict[str, Any]:
        new_df = pd.DataFrame([row], columns=COLUMNS)
        if self._df.empty:
            df = new_df
        else:
            df = pd.concat([self._df, new_df], ignore_index=True)

        # Nothing is kept in memory if the file write fails
        if self._path is not None:
            self._write_json(df, self._path)

        self._df = df
        self._next_id += 1

        logger.info(f"Saved visit {row['id']} ({len(self._df)} stored)")
        return {**row, "saved_locally": True}

    # ========================================================================
    # Queries
    # ========================================================================

    def get_latest(self) -> Optional[Dict[str, Any]]:
        """Most recently saved visit, or None if the store is empty."""
        with self._lock:
            if self._df.empty:
                return None
            return _clean(self._df.iloc[-1].to_dict())

    def list_visits(self, limit: int = 50, offset: int = 0) -> List[Dict[str, Any]]:
        """Stored visits, newest first.

        Args:
            limit: Maximum number of records to return
            offset: Number of newest records to skip

        Raises:
            ValueError: If limit or offset is negative
        """
        if limit < 0 or offset < 0:
            raise ValueError("limit and offset must be non-negative")

        with self._lock:
            newest_first = self._df.iloc[::-1]
            page = newest_first.iloc[offset:offset + limit]
            return [_clean(record) for record in page.to_dict(orient="records")]

    def count(self) -> int:
        with self._lock:
            return len(self._df)

    def get_dataframe(self) -> pd.DataFrame:
        """Copy of the underlying DataFrame."""
        with self._lock:
            return self._df.copy()

    # ========================================================================
    # Import / Export
    # ========================================================================

    def export_json(self, path: str) -> str:
        """Write all records to a JSON array file.

        Returns:
            Absolute path to exported file
        """
        with self._lock:
            target = Path(path)
            self._write_json(self._df, target)
            abs_path = str(target.resolve())
            logger.info(f"Exported {len(self._df)} visits to JSON: {abs_path}")
            return abs_path

    def export_csv(self, path: str) -> str:
        """Write all records to a CSV file.

        Returns:
            Absolute path to exported file
        """
        with self._lock:
            self._df.to_csv(path, index=False)
            abs_path = str(Path(path).resolve())
            logger.info(f"Exported {len(self._df)} visits to CSV: {abs_path}")
            return abs_path

    def load_json(self, path: str) -> int:
        """Replace the in-memory records with the contents of a JSON array file.

        Columns missing from the file are added empty; unknown columns are dropped.

        Returns:
            Number of records loaded
        """
        with self._lock:
            df = pd.read_json(path, orient="records", dtype=False, convert_dates=False)
            if df.empty:
                self._df = pd.DataFrame(columns=COLUMNS)
                self._next_id = 1
            else:
                self._df = df.reindex(columns=COLUMNS).reset_index(drop=True)
                ids = pd.to_numeric(self._df["id"], errors="coerce")
                self._next_id = int(ids.max()) + 1 if ids.notna().any() else len(self._df) + 1
            logger.info(f"Loaded {len(self._df)} visits from {path}")
            return len(self._df)

    def _write_json(self, df: pd.DataFrame, target: Path) -> None:
        # Write to a sibling temp file, then rename over the target
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_name(target.name + ".tmp")
        df.to_json(tmp, orient="records", indent=2)
        os.replace(tmp, target)

    def clear(self) -> None:
        """Drop all records. Does not touch the JSON file until the next save."""
        with self._lock:
            self._df = pd.DataFrame(columns=COLUMNS)
            self._next_id = 1
