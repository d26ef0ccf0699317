#!/usr/bin/env python3
"""
long_format_normalizer.py – CSV rows → one DailyRecord per calendar day
========================================================================
Two export layouts are supported:

* **Long format** – one row per measurement
  (``observation_date, tracker_name, tracker_category, observation_value``).
  Rows are pivoted per date; each metric is routed through
  ``classify_metric`` into a known field, the exertion sum, the symptom
  sum (→ ``composite_score``) and/or ``custom_metrics``.
* **Wide format** – one row per day with fixed columns
  (``Date, HRV, Symptom Severity (0-3), ...``) plus arbitrary numeric
  columns kept as custom metrics.

Malformed rows (no date, non-numeric value) are dropped, never fatal.
"""

from __future__ import annotations

import datetime as dt
import logging
import os
import sys
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Optional

# ── Project root on sys.path for config import ────────────────────────────────
_PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _PROJECT_ROOT not in sys.path:
    sys.path.insert(0, _PROJECT_ROOT)

import pandas as pd

from config.settings import (
    DATE_KEYS, NAME_KEYS, VALUE_KEYS, CATEGORY_KEYS, DEFAULT_CATEGORY,
    KNOWN_METRIC_FIELDS, EXERTION_METRICS, SYMPTOM_CATEGORIES,
    EXCLUDED_CATEGORY_PREFIX, CRASH_METRIC_NAMES,
)
from health_records import DailyRecord, RawMeasurementRow, is_crash_value, round_half_up

log = logging.getLogger(__name__)

_SYMPTOM_CATEGORIES_LC = {c.lower() for c in SYMPTOM_CATEGORIES}
_EXERTION_METRICS = set(EXERTION_METRICS)

# Wide-format header synonyms (first match wins)
WIDE_KEYS = {
    "date":               ["Date", "date", "Timestamp"],
    "symptom_score":      ["Symptom Severity (0-3)", "Symptom Severity", "Symptom Score", "symptom_severity"],
    "hrv":                ["Heart Rate Variability (ms)", "HRV", "hrv"],
    "resting_heart_rate": ["Resting Heart Rate (bpm)", "Resting Heart Rate", "RHR", "resting_heart_rate"],
    "exertion_score":     ["Exertion Score (0-10)", "Exertion", "exertion_score"],
}


class NoValidRecordsError(ValueError):
    """A non-empty import produced zero daily records."""


# ═══════════════════════════════════════════════════════════════════════════════
# METRIC CLASSIFIER
# ═══════════════════════════════════════════════════════════════════════════════
class MetricKind(Enum):
    KNOWN = "known"          # maps onto a DailyRecord field
    EXERTION = "exertion"    # summed into exertion_score
    SYMPTOM = "symptom"      # summed into composite_score
    CUSTOM = "custom"        # only kept in custom_metrics
    EXCLUDED = "excluded"    # funcap_* – dropped entirely


@dataclass(frozen=True)
class MetricClass:
    kind: MetricKind
    field: Optional[str] = None
    retain_custom: bool = False


def classify_metric(name: Optional[str], category: Optional[str]) -> MetricClass:
    """
    Route one (metric name, category) pair.

    Exertion and symptom values are additionally kept in ``custom_metrics``
    under their own name, unless the category starts with ``funcap_``
    (case-insensitive) or the row has no metric name.
    """
    if name in KNOWN_METRIC_FIELDS:
        return MetricClass(MetricKind.KNOWN, field=KNOWN_METRIC_FIELDS[name])

    category_lc = (category or "").lower()
    excluded = category_lc.startswith(EXCLUDED_CATEGORY_PREFIX)
    retain = bool(name) and not excluded

    if name in _EXERTION_METRICS:
        return MetricClass(MetricKind.EXERTION, retain_custom=retain)
    if category_lc in _SYMPTOM_CATEGORIES_LC:
        return MetricClass(MetricKind.SYMPTOM, retain_custom=retain)
    if excluded:
        return MetricClass(MetricKind.EXCLUDED)
    return MetricClass(MetricKind.CUSTOM, retain_custom=retain)


# ═══════════════════════════════════════════════════════════════════════════════
# PARSING HELPERS
# ═══════════════════════════════════════════════════════════════════════════════
def find_key(row: dict, candidates: Iterable[str]) -> Optional[str]:
    """Actual column name matching the first candidate (case-insensitive, trimmed)."""
    keys = list(row.keys())
    for candidate in candidates:
        for k in keys:
            if str(k).lower().strip() == candidate.lower():
                return k
    return None


def parse_number(value: Any) -> Optional[float]:
    """Float or None for empty / non-numeric / NaN values."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        out = float(value)
    except (TypeError, ValueError):
        return None
    return None if out != out else out


def parse_day(value: Any) -> Optional[dt.date]:
    if value is None:
        return None
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    text = str(value).strip()
    if not text:
        return None
    ts = pd.to_datetime(text, errors="coerce")
    if pd.isna(ts):
        return None
    return ts.date()


# ═══════════════════════════════════════════════════════════════════════════════
# LONG FORMAT
# ═══════════════════════════════════════════════════════════════════════════════
@dataclass
class _DayAccumulator:
    date: dt.date
    hrv: Optional[float] = None
    resting_heart_rate: Optional[float] = None
    exertion_score: Optional[float] = None
    custom_metrics: dict = field(default_factory=dict)
    # keyed by metric name → duplicates on one day: last one wins
    raw_symptoms: dict = field(default_factory=dict)
    raw_exertion: dict = field(default_factory=dict)
    # nameless rows have no key to collide on, every value counts
    unnamed_symptoms: list = field(default_factory=list)
    unnamed_exertion: list = field(default_factory=list)

    def add_symptom(self, name: Optional[str], value: float) -> None:
        if name is None:
            self.unnamed_symptoms.append(value)
        else:
            self.raw_symptoms[name] = value

    def add_exertion(self, name: Optional[str], value: float) -> None:
        if name is None:
            self.unnamed_exertion.append(value)
        else:
            self.raw_exertion[name] = value

    def finalize(self) -> DailyRecord:
        symptoms = [*self.raw_symptoms.values(), *self.unnamed_symptoms]
        composite = sum(symptoms) if symptoms else None
        exertion = self.exertion_score
        efforts = [*self.raw_exertion.values(), *self.unnamed_exertion]
        if exertion is None and efforts:
            exertion = sum(efforts)

        crash = None
        for name in CRASH_METRIC_NAMES:
            if name in self.custom_metrics:
                crash = bool(crash) or is_crash_value(self.custom_metrics[name])

        return DailyRecord(
            date=self.date,
            hrv=self.hrv,
            resting_heart_rate=self.resting_heart_rate,
            exertion_score=exertion,
            symptom_score=None,
            composite_score=composite,
            custom_metrics=self.custom_metrics,
            crash_flag=crash,
        )


def normalize_long_format(rows: Iterable[dict]) -> list[DailyRecord]:
    """
    Pivot long-format measurement rows into one DailyRecord per date.

    Parameters
    ----------
    rows : iterable of dict or RawMeasurementRow
        Column name → raw cell value.  Column names are resolved via the
        synonym lists in ``config.settings``.

    Returns
    -------
    list[DailyRecord] sorted by date; empty days are dropped.
    """
    days: dict[dt.date, _DayAccumulator] = {}
    dropped = 0

    for row in rows:
        if isinstance(row, RawMeasurementRow):
            row = {"date": row.date, "name": row.metric_name,
                   "value": row.value, "category": row.category}
        date_key = find_key(row, DATE_KEYS)
        name_key = find_key(row, NAME_KEYS)
        value_key = find_key(row, VALUE_KEYS)
        category_key = find_key(row, CATEGORY_KEYS)

        day = parse_day(row[date_key]) if date_key else None
        value = parse_number(row[value_key]) if value_key else None
        if day is None or value is None:
            dropped += 1
            continue

        name = row[name_key] if name_key else None
        name = str(name).strip() if name is not None and str(name).strip() else None
        category = row[category_key] if category_key else DEFAULT_CATEGORY
        category = str(category) if category is not None else ""

        acc = days.get(day)
        if acc is None:
            acc = days[day] = _DayAccumulator(date=day)

        cls = classify_metric(name, category)
        if cls.kind is MetricKind.KNOWN:
            if cls.field == "resting_heart_rate":
                value = float(round_half_up(value))
            setattr(acc, cls.field, value)
        elif cls.kind is MetricKind.EXERTION:
            acc.add_exertion(name, value)
        elif cls.kind is MetricKind.SYMPTOM:
            acc.add_symptom(name, value)

        if cls.retain_custom:
            acc.custom_metrics[name] = value

    records = [acc.finalize() for acc in days.values()]
    kept = [r for r in records if not r.is_empty()]
    kept.sort(key=lambda r: r.date)

    if dropped:
        log.debug("Long format: dropped %d malformed rows", dropped)
    log.info("Long format: %d days normalized", len(kept))
    return kept


# ═══════════════════════════════════════════════════════════════════════════════
# WIDE FORMAT
# ═══════════════════════════════════════════════════════════════════════════════
def _find_wide_key(row: dict, candidates: list[str]) -> Optional[str]:
    for key in candidates:
        if key in row:
            return key
        for k in row.keys():
            if str(k).lower() == key.lower():
                return k
    return None


def normalize_wide_row(row: dict) -> Optional[DailyRecord]:
    """One wide-format row → DailyRecord, or None when the row has no date."""
    used = {}
    for field_name, candidates in WIDE_KEYS.items():
        key = _find_wide_key(row, candidates)
        if key is not None:
            used[field_name] = key

    day = parse_day(row[used["date"]]) if "date" in used else None
    if day is None:
        return None

    values = {
        f: parse_number(row[key]) for f, key in used.items() if f != "date"
    }
    rhr = values.get("resting_heart_rate")
    if rhr is not None:
        values["resting_heart_rate"] = float(round_half_up(rhr))

    custom = {}
    for key, raw in row.items():
        if key in used.values():
            continue
        lowered = str(key).lower()
        if "date" in lowered or "time" in lowered:
            continue
        number = parse_number(raw)
        if number is not None:
            custom[str(key)] = number

    crash = None
    for name in CRASH_METRIC_NAMES:
        if name in custom:
            crash = bool(crash) or is_crash_value(custom[name])

    return DailyRecord(
        date=day,
        hrv=values.get("hrv"),
        resting_heart_rate=values.get("resting_heart_rate"),
        exertion_score=values.get("exertion_score"),
        symptom_score=values.get("symptom_score"),
        custom_metrics=custom,
        crash_flag=crash,
    )


def normalize_wide_format(rows: Iterable[dict]) -> list[DailyRecord]:
    """Wide-format rows → DailyRecords; a later row for the same date replaces the earlier one."""
    by_day: dict[dt.date, DailyRecord] = {}
    for row in rows:
        rec = normalize_wide_row(row)
        if rec is None or rec.is_empty():
            continue
        by_day[rec.date] = rec
    log.info("Wide format: %d days normalized", len(by_day))
    return sorted(by_day.values(), key=lambda r: r.date)


# ═══════════════════════════════════════════════════════════════════════════════
# CSV ENTRY POINT
# ═══════════════════════════════════════════════════════════════════════════════
def detect_layout(columns: Iterable[str]) -> str:
    """"long" when both a metric-name and a value column exist, else "wide"."""
    probe = {c: None for c in columns}
    if find_key(probe, NAME_KEYS) and find_key(probe, VALUE_KEYS):
        return "long"
    return "wide"


def read_csv_rows(path: str | Path) -> list[dict]:
    """All cells as strings; empty cells stay empty strings."""
    df = pd.read_csv(path, dtype=str, keep_default_na=False, skip_blank_lines=True)
    return df.to_dict(orient="records")


def normalize_csv(path: str | Path, layout: str = "auto") -> list[DailyRecord]:
    """
    Read and normalize one export file.

    Raises ``NoValidRecordsError`` when the file has rows but none survive
    normalization.
    """
    rows = read_csv_rows(path)
    if not rows:
        return []

    if layout == "auto":
        layout = detect_layout(rows[0].keys())
    log.info("Reading %s (%d rows, %s format)", Path(path).name, len(rows), layout)

    if layout == "long":
        records = normalize_long_format(rows)
    elif layout == "wide":
        records = normalize_wide_format(rows)
    else:
        raise ValueError(f"Unknown CSV layout: {layout!r}")

    if not records:
        raise NoValidRecordsError(f"No valid daily records found in {Path(path).name}")
    return records
