#!/usr/bin/env python3
"""
pem_cycle.py – PEM crash-cycle analysis (Superposed Epoch Analysis)
====================================================================
Pipeline
--------
1. Episode detection     – runs of consecutive crash days (single pass)
2. Active episodes       – episodes overlapping the optional date filter
3. Baseline statistics   – mean / population std per metric over days that
                           are outside every episode and outside the ±7-day
                           trigger / recovery buffers of active episodes
4. Epochs & z-scores     – offsets −7…+14 around each active onset
5. Aggregation (SEA)     – mean / std / n per offset and metric
6. Phase analyzers
   * Phase 1 – pre-crash trigger  (acute spike at −2/−1, cumulative load −5…−1)
   * Phase 2 – crash typing       (Type A dip / Type B burnout / Mixed)
   * Phase 3 – recovery           (symptom vs. HRV recovery → hysteresis)

Zero-variance baselines map any value above the mean to z = 2, anything
else to z = 0.  No active episode → ``no_crashes`` result.
"""

from __future__ import annotations

import datetime as dt
import logging
import os
import sys
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence, Union

# ── Project root on sys.path for config import ────────────────────────────────
_PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _PROJECT_ROOT not in sys.path:
    sys.path.insert(0, _PROJECT_ROOT)

import numpy as np
import pandas as pd

from config.settings import (
    EPOCH_PRE_DAYS, EPOCH_POST_DAYS, TRIGGER_BUFFER_DAYS, PEM_METRICS, ZERO_STD_Z,
    ACUTE_SPIKE_Z, ACUTE_SPIKE_WINDOW, CUMULATIVE_LOAD_Z, CUMULATIVE_LOAD_WINDOW,
    ACUTE_CONFIDENCE, CUMULATIVE_CONFIDENCE,
    CRASH_SEVERITY_Z, DIP_MAX_DURATION, DIP_MIN_PEAK_Z,
    SYMPTOM_RECOVERY_Z, HRV_RECOVERY_Z,
)
from health_records import (
    CRASH_COLUMN, BaselineStat, DailyRecord, Episode, Epoch, EpochDay,
    MetricAggregate, OffsetProfile, coerce_metric_value, is_crash_value,
    metric_values, records_to_frame,
)

log = logging.getLogger(__name__)

TYPE_A = "Type A (Dip)"
TYPE_B = "Type B (Burnout)"
MIXED = "Mixed"


# ═══════════════════════════════════════════════════════════════════════════════
# RESULT TYPES
# ═══════════════════════════════════════════════════════════════════════════════
@dataclass
class PreCrashFindings:
    delayed_trigger_detected: bool = False
    cumulative_load_detected: bool = False
    trigger_lag: int = 0
    confidence: float = 0.0


@dataclass
class CrashPhaseFindings:
    type: str = MIXED
    avg_duration: float = 0.0
    avg_peak_severity: float = 0.0
    severity_auc: float = 0.0


@dataclass
class RecoveryFindings:
    avg_recovery_days: int = EPOCH_POST_DAYS
    hrv_recovery_days: int = EPOCH_POST_DAYS
    hysteresis_detected: bool = False


@dataclass
class PEMCycleResult:
    no_crashes: bool
    filter_applied: bool
    episodes: list[Episode] = field(default_factory=list)
    active_episodes: list[Episode] = field(default_factory=list)
    baseline: dict[str, BaselineStat] = field(default_factory=dict)
    epochs: list[Epoch] = field(default_factory=list)
    profile: list[OffsetProfile] = field(default_factory=list)
    pre_crash: Optional[PreCrashFindings] = None
    crash_phase: Optional[CrashPhaseFindings] = None
    recovery: Optional[RecoveryFindings] = None


# ═══════════════════════════════════════════════════════════════════════════════
# 1. EPISODE DETECTION
# ═══════════════════════════════════════════════════════════════════════════════
def detect_episodes(crash_flags: Sequence, dates: Optional[Sequence] = None) -> list[Episode]:
    """
    Maximal runs of consecutive crash days, one left-to-right pass.

    ``crash_flags`` holds raw crash values (1 / "1" / True = crash).
    An episode still open at the last index is closed there.
    """
    def _date(i: int) -> Optional[dt.date]:
        if dates is None:
            return None
        return pd.Timestamp(dates[i]).date()

    episodes: list[Episode] = []
    current_start = -1
    for i, flag in enumerate(crash_flags):
        if is_crash_value(flag):
            if current_start == -1:
                current_start = i
        elif current_start != -1:
            episodes.append(Episode(current_start, i - 1, _date(current_start), _date(i - 1)))
            current_start = -1

    if current_start != -1:
        last = len(crash_flags) - 1
        episodes.append(Episode(current_start, last, _date(current_start), _date(last)))
    return episodes


def episodes_from_frame(df: pd.DataFrame) -> list[Episode]:
    if df.empty:
        return []
    return detect_episodes(df[CRASH_COLUMN].tolist(), df["date"].tolist())


def select_active_episodes(
    episodes: Iterable[Episode],
    start: Optional[dt.date] = None,
    end: Optional[dt.date] = None,
) -> list[Episode]:
    """Episodes whose date span overlaps [start, end] at all (open ends allowed)."""
    if start is None and end is None:
        return list(episodes)
    active = []
    for ep in episodes:
        if end is not None and ep.start_date > end:
            continue
        if start is not None and ep.end_date < start:
            continue
        active.append(ep)
    return active


def excluded_indices(
    episodes: Iterable[Episode],
    active: Iterable[Episode],
    n_days: int,
    buffer: int = TRIGGER_BUFFER_DAYS,
) -> set[int]:
    """Every episode day plus the trigger / recovery buffers around active episodes."""
    excluded: set[int] = set()
    for ep in episodes:
        excluded.update(range(ep.start_index, ep.end_index + 1))
    for ep in active:
        for i in range(1, buffer + 1):
            if ep.start_index - i >= 0:
                excluded.add(ep.start_index - i)
            if ep.end_index + i < n_days:
                excluded.add(ep.end_index + i)
    return excluded


# ═══════════════════════════════════════════════════════════════════════════════
# 2. BASELINE STATISTICS
# ═══════════════════════════════════════════════════════════════════════════════
def build_baseline_stats(
    df: pd.DataFrame,
    excluded: set[int],
    metrics: Iterable[str],
) -> dict[str, BaselineStat]:
    """
    Mean and population std per metric over the non-excluded days.

    Fewer than 2 numeric samples → {0, 0}; a metric named crash/Crash
    defaults to {0, 1} instead.
    """
    keep = [i for i in range(len(df)) if i not in excluded]
    baseline_rows = df.iloc[keep]

    stats: dict[str, BaselineStat] = {}
    for key in metrics:
        values = metric_values(baseline_rows, key).dropna().to_numpy()
        if len(values) > 1:
            stats[key] = BaselineStat(mean=float(values.mean()), std=float(values.std(ddof=0)))
        elif key.lower() == "crash":
            stats[key] = BaselineStat(mean=0.0, std=1.0)
        else:
            stats[key] = BaselineStat(mean=0.0, std=0.0)
    return stats


# ═══════════════════════════════════════════════════════════════════════════════
# 3. EPOCHS & Z-SCORES
# ═══════════════════════════════════════════════════════════════════════════════
def extract_epochs(df: pd.DataFrame, onset_indices: Iterable[int], metrics: Sequence[str]) -> list[Epoch]:
    """Offsets −7…+14 around each onset, clipped at the series edges (no padding)."""
    n = len(df)
    columns = {m: df[m].tolist() if m in df.columns else [None] * n for m in metrics}
    dates = [pd.Timestamp(d).date() for d in df["date"]] if n else []

    epochs = []
    for onset in onset_indices:
        days = []
        for offset in range(-EPOCH_PRE_DAYS, EPOCH_POST_DAYS + 1):
            idx = onset + offset
            if 0 <= idx < n:
                raw = {m: coerce_metric_value(columns[m][idx]) for m in metrics}
                days.append(EpochDay(day_offset=offset, date=dates[idx], raw=raw))
        if days:
            epochs.append(Epoch(onset_index=onset, days=days))
    return epochs


def z_score(value: Optional[float], stat: Optional[BaselineStat]) -> Optional[float]:
    if value is None or stat is None:
        return None
    if stat.std > 0:
        return (value - stat.mean) / stat.std
    return ZERO_STD_Z if value > stat.mean else 0.0


def calculate_z_scores(epochs: list[Epoch], baseline: dict[str, BaselineStat]) -> list[Epoch]:
    """Attach z-scores to every epoch day (missing raw value → None)."""
    for epoch in epochs:
        for day in epoch.days:
            day.z_scores = {k: z_score(v, baseline.get(k)) for k, v in day.raw.items()}
    return epochs


# ═══════════════════════════════════════════════════════════════════════════════
# 4. SUPERPOSED EPOCH AGGREGATION
# ═══════════════════════════════════════════════════════════════════════════════
def aggregate_epochs(epochs: Iterable[Epoch], metrics: Sequence[str]) -> list[OffsetProfile]:
    """
    Mean / std / n of the z-scores per day offset.

    std = sqrt(max(0, E[x²] − E[x]²)); offsets without samples get {0, 0, 0}.
    """
    offsets = range(-EPOCH_PRE_DAYS, EPOCH_POST_DAYS + 1)
    sums = {o: dict.fromkeys(metrics, 0.0) for o in offsets}
    sq_sums = {o: dict.fromkeys(metrics, 0.0) for o in offsets}
    counts = {o: dict.fromkeys(metrics, 0) for o in offsets}

    for epoch in epochs:
        for day in epoch.days:
            if day.day_offset not in sums:
                continue
            for m in metrics:
                z = day.z_scores.get(m)
                if z is None or np.isnan(z):
                    continue
                sums[day.day_offset][m] += z
                sq_sums[day.day_offset][m] += z * z
                counts[day.day_offset][m] += 1

    profile = []
    for o in offsets:
        agg = {}
        for m in metrics:
            n = counts[o][m]
            if n:
                mean = sums[o][m] / n
                variance = sq_sums[o][m] / n - mean * mean
                agg[m] = MetricAggregate(mean=mean, std=float(np.sqrt(max(0.0, variance))), n=n)
            else:
                agg[m] = MetricAggregate(mean=0.0, std=0.0, n=0)
        profile.append(OffsetProfile(day_offset=o, metrics=agg))
    return profile


def _profile_mean(entry: OffsetProfile, metric: str) -> float:
    agg = entry.metrics.get(metric)
    return agg.mean if agg is not None else 0.0


# ═══════════════════════════════════════════════════════════════════════════════
# 5. PHASE ANALYZERS
# ═══════════════════════════════════════════════════════════════════════════════
def analyze_pre_crash_phase(profile: list[OffsetProfile]) -> PreCrashFindings:
    """Acute exertion spike on day −2/−1 and/or elevated load over −5…−1."""
    pre = [(p.day_offset, _profile_mean(p, "exertion_score")) for p in profile if p.day_offset < 0]

    acute = next(((o, m) for o, m in pre if o >= ACUTE_SPIKE_WINDOW and m > ACUTE_SPIKE_Z), None)
    window = [m for o, m in pre if o >= CUMULATIVE_LOAD_WINDOW]
    cumulative_avg = sum(window) / (len(window) or 1)
    cumulative = cumulative_avg > CUMULATIVE_LOAD_Z

    if acute is not None:
        lag, confidence = acute[0], ACUTE_CONFIDENCE
    elif cumulative:
        lag, confidence = -1, CUMULATIVE_CONFIDENCE
    else:
        lag, confidence = 0, 0.0

    return PreCrashFindings(
        delayed_trigger_detected=acute is not None,
        cumulative_load_detected=cumulative,
        trigger_lag=lag,
        confidence=confidence,
    )


def _is_labeled(day: EpochDay) -> bool:
    return day.raw.get(CRASH_COLUMN) == 1 or day.raw.get("Crash") == 1


def analyze_crash_phase(epochs: list[Epoch]) -> CrashPhaseFindings:
    """
    Walk offsets 0…14 per epoch while the day is labelled crash or the
    composite-score z stays above 0.5.
    """
    crashes = []
    for epoch in epochs:
        duration = 0
        severity_sum = 0.0
        peak = 0.0
        for i in range(0, EPOCH_POST_DAYS + 1):
            day = epoch.at(i)
            if day is None:
                break
            labeled = _is_labeled(day)
            z = day.z_scores.get("composite_score") or 0.0

            if labeled:
                duration += 1
            if labeled or z > CRASH_SEVERITY_Z:
                severity_sum += z
                peak = max(peak, z)
            if i > 0 and not labeled and z <= CRASH_SEVERITY_Z:
                break
        crashes.append((duration, severity_sum, peak))

    if not crashes:
        return CrashPhaseFindings()

    avg_duration = sum(c[0] for c in crashes) / len(crashes)
    avg_peak = sum(c[2] for c in crashes) / len(crashes)
    if avg_duration < DIP_MAX_DURATION and avg_peak > DIP_MIN_PEAK_Z:
        crash_type = TYPE_A
    elif avg_duration >= DIP_MAX_DURATION:
        crash_type = TYPE_B
    else:
        crash_type = MIXED

    return CrashPhaseFindings(
        type=crash_type,
        avg_duration=avg_duration,
        avg_peak_severity=avg_peak,
        severity_auc=sum(c[1] for c in crashes) / len(crashes),
    )


def _recovery_day(profile: list[OffsetProfile], metric: str) -> int:
    for entry in profile:
        if entry.day_offset <= 0:
            continue
        agg = entry.metrics.get(metric)
        if agg is None or agg.n == 0:
            continue
        if metric == "hrv":
            if agg.mean > HRV_RECOVERY_Z:
                return entry.day_offset
        elif agg.mean < SYMPTOM_RECOVERY_Z:
            return entry.day_offset
    return EPOCH_POST_DAYS


def analyze_recovery_phase(profile: list[OffsetProfile]) -> RecoveryFindings:
    """HRV recovering strictly before symptoms → hysteresis."""
    symptom_day = _recovery_day(profile, "composite_score")
    hrv_day = _recovery_day(profile, "hrv")
    return RecoveryFindings(
        avg_recovery_days=symptom_day,
        hrv_recovery_days=hrv_day,
        hysteresis_detected=hrv_day < symptom_day,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# ORCHESTRATION
# ═══════════════════════════════════════════════════════════════════════════════
def analyze_pem_cycles(
    data: Union[pd.DataFrame, list[DailyRecord]],
    start: Optional[dt.date] = None,
    end: Optional[dt.date] = None,
    metrics: Sequence[str] = PEM_METRICS,
) -> PEMCycleResult:
    """
    Full crash-cycle analysis over the daily series.

    Parameters
    ----------
    data : daily frame (``records_to_frame``) or list of DailyRecord
    start, end : optional filter selecting the *active* episodes
    metrics : metrics to z-score and aggregate
    """
    df = records_to_frame(data) if isinstance(data, list) else data
    filter_applied = start is not None or end is not None

    episodes = episodes_from_frame(df)
    active = select_active_episodes(episodes, start, end)
    if not active:
        log.info("PEM: no crash episodes%s", " in the selected range" if filter_applied else "")
        return PEMCycleResult(no_crashes=True, filter_applied=filter_applied, episodes=episodes)

    excluded = excluded_indices(episodes, active, len(df))
    baseline = build_baseline_stats(df, excluded, metrics)
    log.info("PEM: %d episodes (%d active), %d baseline days",
             len(episodes), len(active), len(df) - len(excluded))

    epochs = calculate_z_scores(extract_epochs(df, [ep.start_index for ep in active], metrics), baseline)
    profile = aggregate_epochs(epochs, metrics)

    return PEMCycleResult(
        no_crashes=False,
        filter_applied=filter_applied,
        episodes=episodes,
        active_episodes=active,
        baseline=baseline,
        epochs=epochs,
        profile=profile,
        pre_crash=analyze_pre_crash_phase(profile),
        crash_phase=analyze_crash_phase(epochs),
        recovery=analyze_recovery_phase(profile),
    )
