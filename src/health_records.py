#!/usr/bin/env python3
"""
health_records.py – Daily health record model
==============================================
Typed records shared by every stage of the lab:

* ``DailyRecord``        – one calendar day for one subject
* ``RawMeasurementRow``  – one line of a long-format import
* ``Episode``            – a run of consecutive crash days
* ``BaselineStat``       – mean / std reference for z-scoring
* ``EpochDay`` / ``Epoch`` / ``OffsetProfile`` – Superposed Epoch Analysis

``records_to_frame`` turns a list of records into the daily pandas frame
that all analytics operate on (sorted by date, positional index).
"""

from __future__ import annotations

import datetime as dt
import math
from dataclasses import dataclass, field
from typing import Any, Optional

import numpy as np
import pandas as pd

NUMERIC_FIELDS = (
    "hrv",
    "resting_heart_rate",
    "exertion_score",
    "symptom_score",
    "composite_score",
    "step_count",
)

CRASH_COLUMN = "crash"


# ═══════════════════════════════════════════════════════════════════════════════
# VALUE COERCION
# ═══════════════════════════════════════════════════════════════════════════════
def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return False


def coerce_metric_value(value: Any) -> Optional[float]:
    """Numbers pass through, boolean-like 1/"1"/True → 1, 0/"0"/False → 0, else None."""
    if _is_missing(value):
        return None
    if isinstance(value, (bool, np.bool_)):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float, np.integer, np.floating)):
        return float(value)
    if isinstance(value, str):
        if value.strip() == "1":
            return 1.0
        if value.strip() == "0":
            return 0.0
    return None


def is_crash_value(value: Any) -> bool:
    """True for the crash encodings 1, "1" and True."""
    if _is_missing(value):
        return False
    if isinstance(value, (bool, np.bool_)):
        return bool(value)
    if isinstance(value, str):
        return value.strip() == "1"
    if isinstance(value, (int, float, np.integer, np.floating)):
        return value == 1
    return False


def _to_optional_float(value: Any) -> Optional[float]:
    if _is_missing(value):
        return None
    try:
        out = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(out) else out


# ═══════════════════════════════════════════════════════════════════════════════
# RECORD TYPES
# ═══════════════════════════════════════════════════════════════════════════════
@dataclass
class DailyRecord:
    date: dt.date
    hrv: Optional[float] = None
    resting_heart_rate: Optional[float] = None
    exertion_score: Optional[float] = None
    symptom_score: Optional[float] = None   # legacy, always None on import
    composite_score: Optional[float] = None
    step_count: Optional[float] = None
    custom_metrics: dict[str, float] = field(default_factory=dict)
    crash_flag: Optional[bool] = None

    def is_empty(self) -> bool:
        """No numeric field set and no custom metrics."""
        return all(getattr(self, f) is None for f in NUMERIC_FIELDS) and not self.custom_metrics

    def is_crash(self) -> bool:
        if self.crash_flag is not None:
            return bool(self.crash_flag)
        return any(
            is_crash_value(self.custom_metrics.get(name)) for name in ("Crash", "crash")
        )

    def get(self, key: str) -> Any:
        """Known field first, then custom metric of the same name."""
        if key in NUMERIC_FIELDS:
            value = getattr(self, key)
            if value is not None:
                return value
        return self.custom_metrics.get(key)

    def to_dict(self) -> dict:
        return {
            "date": self.date.isoformat(),
            **{f: getattr(self, f) for f in NUMERIC_FIELDS},
            "custom_metrics": dict(self.custom_metrics),
            "crash_flag": self.crash_flag,
        }

    @classmethod
    def from_dict(cls, row: dict) -> "DailyRecord":
        raw_date = row["date"]
        if isinstance(raw_date, str):
            day = dt.date.fromisoformat(raw_date[:10])
        elif isinstance(raw_date, dt.datetime):
            day = raw_date.date()
        else:
            day = raw_date

        custom = row.get("custom_metrics") or {}
        crash = row.get("crash_flag")
        if _is_missing(crash):
            crash = None
        elif isinstance(crash, str):
            crash = crash.strip().lower() in ("true", "1")
        else:
            crash = bool(crash)

        return cls(
            date=day,
            **{f: _to_optional_float(row.get(f)) for f in NUMERIC_FIELDS},
            custom_metrics={k: v for k, v in custom.items() if not _is_missing(v)},
            crash_flag=crash,
        )


@dataclass
class RawMeasurementRow:
    date: str
    metric_name: str
    value: float
    category: str = "Other"


@dataclass
class Episode:
    start_index: int
    end_index: int              # inclusive
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None

    @property
    def length(self) -> int:
        return self.end_index - self.start_index + 1


@dataclass
class BaselineStat:
    mean: float
    std: float


@dataclass
class EpochDay:
    day_offset: int
    date: dt.date
    raw: dict[str, Optional[float]]
    z_scores: dict[str, Optional[float]] = field(default_factory=dict)


@dataclass
class Epoch:
    onset_index: int
    days: list[EpochDay]

    def at(self, offset: int) -> Optional[EpochDay]:
        for day in self.days:
            if day.day_offset == offset:
                return day
        return None


@dataclass
class MetricAggregate:
    mean: float
    std: float
    n: int


@dataclass
class OffsetProfile:
    day_offset: int
    metrics: dict[str, MetricAggregate]


# ═══════════════════════════════════════════════════════════════════════════════
# DAILY FRAME
# ═══════════════════════════════════════════════════════════════════════════════
def records_to_frame(records: list[DailyRecord]) -> pd.DataFrame:
    """
    Build the daily analysis frame.

    Columns: ``date`` (datetime64), the known numeric fields, the canonical
    ``crash`` column (1.0 / 0.0 / NaN) and one column per custom metric.
    A known field wins over a custom metric of the same name unless it is
    missing on that day.  Rows are sorted by date with a 0..n-1 index.
    """
    columns = ["date", *NUMERIC_FIELDS, CRASH_COLUMN]
    if not records:
        return pd.DataFrame(columns=columns)

    rows = []
    for rec in records:
        row: dict[str, Any] = dict(rec.custom_metrics)
        for f in NUMERIC_FIELDS:
            value = getattr(rec, f)
            if value is not None or f not in row:
                row[f] = value if value is not None else np.nan

        if rec.crash_flag is not None:
            row[CRASH_COLUMN] = 1.0 if rec.crash_flag else 0.0
        else:
            flags = [
                coerce_metric_value(rec.custom_metrics[name])
                for name in ("Crash", "crash") if name in rec.custom_metrics
            ]
            flags = [f for f in flags if f is not None]
            if flags:
                row[CRASH_COLUMN] = 1.0 if any(f == 1 for f in flags) else 0.0
            else:
                row[CRASH_COLUMN] = np.nan

        row["date"] = pd.Timestamp(rec.date)
        rows.append(row)

    df = pd.DataFrame(rows)
    ordered = columns + sorted(c for c in df.columns if c not in columns)
    df = df.reindex(columns=ordered)
    df = df.sort_values("date", kind="mergesort").reset_index(drop=True)
    return df


def custom_metric_names(df: pd.DataFrame) -> list[str]:
    """Columns that are neither a known field nor the canonical crash flag."""
    fixed = {"date", CRASH_COLUMN, *NUMERIC_FIELDS}
    return [c for c in df.columns if c not in fixed]


def metric_values(df: pd.DataFrame, key: str) -> pd.Series:
    """Numeric series for *key*; non-numeric entries and absent metrics become NaN."""
    if key not in df.columns:
        return pd.Series(np.nan, index=df.index, dtype=float)
    return pd.to_numeric(df[key], errors="coerce").astype(float)


def round_half_up(value: float) -> int:
    """Round .5 towards +inf (2.5 → 3, -2.5 → -2)."""
    return int(math.floor(value + 0.5))
