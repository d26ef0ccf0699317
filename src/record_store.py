#!/usr/bin/env python3
"""
record_store.py – CSV-backed daily record repository
=====================================================
One ``daily_records.csv`` per subject under ``SUBJECTS_DIR/<subject>/``.

Write semantics
---------------
* ``upsert_daily_records``  – keyed on date; a new row fully replaces the
  stored row (no field-level merge, newer wins).
* ``merge_step_counts``     – steps-only import: read-merge-write in batches,
  a day's ``step_count`` is written only if that day already exists.

Storage failures raise ``RecordStoreError``; they are never swallowed.
"""

from __future__ import annotations

import datetime as dt
import json
import logging
import os
import re
import sys
from dataclasses import replace
from pathlib import Path
from typing import Iterable, Optional

# ── Project root on sys.path for config import ────────────────────────────────
_PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _PROJECT_ROOT not in sys.path:
    sys.path.insert(0, _PROJECT_ROOT)

import pandas as pd

from config.settings import SUBJECTS_DIR, CSV_DAILY_RECORDS, STEP_MERGE_BATCH_SIZE
from health_records import DailyRecord, NUMERIC_FIELDS

log = logging.getLogger(__name__)

_SUBJECT_RE = re.compile(r"^[A-Za-z0-9_-][A-Za-z0-9_.-]*$")
CSV_COLUMNS = ["date", *NUMERIC_FIELDS, "custom_metrics", "crash_flag"]


class RecordStoreError(RuntimeError):
    """The record CSV could not be read or written."""


def validate_subject_id(subject_id: str) -> str:
    if not subject_id or not _SUBJECT_RE.match(subject_id):
        raise ValueError(f"Invalid subject id: {subject_id!r}")
    return subject_id


class DailyRecordStore:
    """Repository of DailyRecords, one CSV file per subject."""

    def __init__(self, base_dir: Optional[Path] = None):
        self.base_dir = Path(base_dir) if base_dir is not None else SUBJECTS_DIR

    def csv_path(self, subject_id: str) -> Path:
        return self.base_dir / validate_subject_id(subject_id) / CSV_DAILY_RECORDS

    # ── raw CSV I/O ──────────────────────────────────────────────────────────
    def _load_frame(self, subject_id: str) -> pd.DataFrame:
        path = self.csv_path(subject_id)
        if not path.exists():
            return pd.DataFrame(columns=CSV_COLUMNS)
        try:
            df = pd.read_csv(path, dtype={"date": str, "custom_metrics": str, "crash_flag": str},
                             keep_default_na=True)
        except (OSError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
            log.error("Cannot read %s: %s", path, e)
            raise RecordStoreError(f"Cannot read {path}: {e}") from e
        return df.reindex(columns=CSV_COLUMNS)

    def _save_frame(self, subject_id: str, df: pd.DataFrame) -> None:
        path = self.csv_path(subject_id)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            df.to_csv(path, index=False, columns=CSV_COLUMNS)
        except OSError as e:
            log.error("Cannot write %s: %s", path, e)
            raise RecordStoreError(f"Cannot write {path}: {e}") from e

    @staticmethod
    def _frame_to_records(df: pd.DataFrame) -> list[DailyRecord]:
        records = []
        for row in df.to_dict(orient="records"):
            raw_custom = row.get("custom_metrics")
            try:
                row["custom_metrics"] = json.loads(raw_custom) if isinstance(raw_custom, str) and raw_custom else {}
            except json.JSONDecodeError as e:
                raise RecordStoreError(f"Corrupt custom_metrics for {row.get('date')}: {e}") from e
            records.append(DailyRecord.from_dict(row))
        return records

    @staticmethod
    def _records_to_frame(records: Iterable[DailyRecord]) -> pd.DataFrame:
        rows = []
        for rec in records:
            row = rec.to_dict()
            row["custom_metrics"] = json.dumps(row["custom_metrics"], sort_keys=True, ensure_ascii=False)
            rows.append(row)
        return pd.DataFrame(rows, columns=CSV_COLUMNS)

    # ── read ─────────────────────────────────────────────────────────────────
    def get_daily_records(
        self,
        subject_id: str,
        start: Optional[dt.date] = None,
        end: Optional[dt.date] = None,
        recent: Optional[int] = None,
    ) -> list[DailyRecord]:
        """
        Records ordered by date.

        ``start`` / ``end`` bound the range inclusively (either may be None
        for an open end); ``recent=N`` keeps only the last N stored days.
        """
        records = self._frame_to_records(self._load_frame(subject_id))
        records.sort(key=lambda r: r.date)
        if start is not None:
            records = [r for r in records if r.date >= start]
        if end is not None:
            records = [r for r in records if r.date <= end]
        if recent is not None:
            records = records[-recent:] if recent > 0 else []
        return records

    # ── write ────────────────────────────────────────────────────────────────
    def upsert_daily_records(self, subject_id: str, records: Iterable[DailyRecord]) -> int:
        """Insert or fully replace records keyed on date.  Returns rows written."""
        new = self._records_to_frame(records)
        if new.empty:
            return 0

        existing = self._load_frame(subject_id)
        merged = pd.concat([existing, new], ignore_index=True) if not existing.empty else new
        merged = merged.drop_duplicates(subset=["date"], keep="last")
        merged = merged.sort_values("date").reset_index(drop=True)
        self._save_frame(subject_id, merged)

        log.info("Subject %s: upserted %d days (%d stored)", subject_id, len(new), len(merged))
        return len(new)

    def merge_step_counts(
        self,
        subject_id: str,
        steps_by_day: dict[dt.date, float],
        batch_size: int = STEP_MERGE_BATCH_SIZE,
    ) -> dict:
        """
        Write step totals onto days that already have a record.

        Days without a stored record are skipped – steps alone never create
        a day.  Returns ``{"updated": n, "skipped": m}``.
        """
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")

        days = sorted(steps_by_day)
        updated = skipped = 0
        for i in range(0, len(days), batch_size):
            batch = days[i:i + batch_size]
            existing = {
                r.date: r
                for r in self.get_daily_records(subject_id, start=batch[0], end=batch[-1])
            }
            merged = [
                replace(existing[d], step_count=float(steps_by_day[d]))
                for d in batch if d in existing
            ]
            skipped += len(batch) - len(merged)
            if merged:
                self.upsert_daily_records(subject_id, merged)
                updated += len(merged)

        log.info("Subject %s: steps merged into %d days, %d days without record skipped",
                 subject_id, updated, skipped)
        return {"updated": updated, "skipped": skipped}

    def delete_daily_record(self, subject_id: str, day: dt.date) -> bool:
        df = self._load_frame(subject_id)
        if df.empty:
            return False
        keep = df["date"].str[:10] != day.isoformat()
        if keep.all():
            return False
        self._save_frame(subject_id, df.loc[keep])
        log.info("Subject %s: deleted %s", subject_id, day)
        return True

    def delete_all(self, subject_id: str) -> int:
        """Remove every stored day for the subject.  Returns the number removed."""
        path = self.csv_path(subject_id)
        if not path.exists():
            return 0
        count = len(self._load_frame(subject_id))
        try:
            path.unlink()
        except OSError as e:
            raise RecordStoreError(f"Cannot delete {path}: {e}") from e
        log.info("Subject %s: deleted all %d days", subject_id, count)
        return count
