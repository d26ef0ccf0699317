#!/usr/bin/env python3
"""
composite_score.py – Composite Health Score & experiment comparison
====================================================================
Composite Health Score (0–100, higher = better)

    symptom part : clamp(symptom_score, 0, 3)  → (1 − s/3) · 100    weight 0.6
    HRV part     : clamp(hrv, 15, 100)         → (h − 15)/85 · 100   weight 0.4
                   (weight 1.0 when no symptom score is present)
    score        = round(Σ part·weight / Σ weight)

Experiment analysis compares the mean daily score of the treatment window
``[start, end]`` with an equally long baseline window ending the day
before ``start``.  ``is_significant`` is a fixed |Δ| > 5 % heuristic –
no variance or sample-size aware test is performed.
"""

from __future__ import annotations

import datetime as dt
import logging
import os
import sys
from dataclasses import dataclass
from typing import Iterable, Optional

# ── Project root on sys.path for config import ────────────────────────────────
_PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _PROJECT_ROOT not in sys.path:
    sys.path.insert(0, _PROJECT_ROOT)

import numpy as np

from config.settings import (
    SYMPTOM_MAX, HRV_MIN, HRV_MAX, SYMPTOM_WEIGHT, HRV_WEIGHT,
    EXPERIMENT_MIN_DAYS, EXPERIMENT_SIGNIFICANT_PCT, EXPERIMENT_CATEGORIES,
)
from health_records import DailyRecord, round_half_up

log = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# COMPOSITE HEALTH SCORE
# ═══════════════════════════════════════════════════════════════════════════════
def calculate_health_score(symptom_score: Optional[float] = None,
                           hrv: Optional[float] = None) -> Optional[int]:
    """Weighted 0–100 wellness index, or None when both inputs are missing."""
    if symptom_score is None and hrv is None:
        return None

    total = 0.0
    weights = 0.0

    if symptom_score is not None:
        clamped = min(max(symptom_score, 0.0), SYMPTOM_MAX)
        total += (1 - clamped / SYMPTOM_MAX) * 100 * SYMPTOM_WEIGHT
        weights += SYMPTOM_WEIGHT

    if hrv is not None:
        clamped = min(max(hrv, HRV_MIN), HRV_MAX)
        normalized = (clamped - HRV_MIN) / (HRV_MAX - HRV_MIN) * 100
        weight = HRV_WEIGHT if symptom_score is not None else 1.0
        total += normalized * weight
        weights += weight

    return round_half_up(total / weights)


def record_health_score(record: DailyRecord) -> Optional[int]:
    return calculate_health_score(record.symptom_score, record.hrv)


def calculate_trend(current: Optional[float], previous: Optional[float]) -> int:
    """Rounded % change; 0 when there is no (or a zero) previous value."""
    if not previous or current is None:
        return 0
    return round_half_up((current - previous) / previous * 100)


# ═══════════════════════════════════════════════════════════════════════════════
# EXPERIMENTS
# ═══════════════════════════════════════════════════════════════════════════════
@dataclass
class Experiment:
    name: str
    start_date: dt.date
    end_date: Optional[dt.date] = None
    category: str = "other"
    id: str = ""

    def __post_init__(self):
        if self.category not in EXPERIMENT_CATEGORIES:
            raise ValueError(f"Unknown experiment category: {self.category!r}")
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("Experiment end_date precedes start_date")

    def is_active(self, today: dt.date) -> bool:
        return self.end_date is None or self.end_date > today


@dataclass
class ExperimentResult:
    experiment_id: str
    metric_name: str
    baseline_mean: int
    treatment_mean: int
    change_percent: float
    is_significant: bool           # |Δ| > 5 % heuristic
    sample_size_baseline: int
    sample_size_treatment: int


def _window_scores(records: Iterable[DailyRecord], start: dt.date, end: dt.date) -> list[int]:
    scores = []
    for rec in records:
        if start <= rec.date <= end:
            score = record_health_score(rec)
            if score is not None:
                scores.append(score)
    return scores


def analyze_experiment(
    experiment: Experiment,
    records: list[DailyRecord],
    today: Optional[dt.date] = None,
) -> Optional[ExperimentResult]:
    """
    Compare the treatment window against the equally long preceding baseline.

    Returns None when either window has fewer than 3 scored days.
    """
    today = today or dt.date.today()
    start = experiment.start_date
    end = experiment.end_date or today
    duration = end - start
    baseline_start = start - duration
    baseline_end = start - dt.timedelta(days=1)

    baseline = _window_scores(records, baseline_start, baseline_end)
    treatment = _window_scores(records, start, end)

    if len(baseline) < EXPERIMENT_MIN_DAYS or len(treatment) < EXPERIMENT_MIN_DAYS:
        log.info("Experiment %r: insufficient data (baseline %d, treatment %d days)",
                 experiment.name, len(baseline), len(treatment))
        return None

    baseline_mean = float(np.mean(baseline))
    treatment_mean = float(np.mean(treatment))
    denom = baseline_mean if baseline_mean != 0 else 1.0
    change = (treatment_mean - baseline_mean) / denom * 100

    return ExperimentResult(
        experiment_id=experiment.id or experiment.name,
        metric_name="Composite Health Score",
        baseline_mean=round_half_up(baseline_mean),
        treatment_mean=round_half_up(treatment_mean),
        change_percent=round_half_up(change * 10) / 10,
        is_significant=abs(change) > EXPERIMENT_SIGNIFICANT_PCT,
        sample_size_baseline=len(baseline),
        sample_size_treatment=len(treatment),
    )


def partition_experiments(experiments: Iterable[Experiment],
                          today: Optional[dt.date] = None) -> tuple[list, list]:
    """(active, past): active = no end date or ending after today."""
    today = today or dt.date.today()
    active, past = [], []
    for exp in experiments:
        (active if exp.is_active(today) else past).append(exp)
    return active, past
