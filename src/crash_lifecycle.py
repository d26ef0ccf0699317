#!/usr/bin/env python3
"""
crash_lifecycle.py – Crash lifecycle vs. baseline (trigger / during / recovery)
================================================================================
Simpler companion to the epoch analysis: raw metric averages around each
active crash episode are compared with the baseline average in percent.

Load features (per day, missing values count as 0)
--------------------------------------------------
* cumulative_steps_3d / cumulative_exertion_3d – 3-day rolling sums
* acwr_steps / acwr_exertion – 7-day sum / 7  ÷  mean of up to 28 days,
  only from the 8th day on and only when the chronic mean is > 0

Phases
------
* Triggers  – lags 1…7 before each episode start, strongest |Δ| per metric
* During    – all active-episode days
* Recovery  – the 7 days after each episode end

A metric is reported when |Δ| > 5 %.  Fewer than 10 days → None.
"""

from __future__ import annotations

import datetime as dt
import logging
import os
import sys
from dataclasses import dataclass, field
from typing import Optional, Union

# ── Project root on sys.path for config import ────────────────────────────────
_PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _PROJECT_ROOT not in sys.path:
    sys.path.insert(0, _PROJECT_ROOT)

import numpy as np
import pandas as pd

from config.settings import (
    LIFECYCLE_MIN_DAYS, LIFECYCLE_MAX_LAG, LIFECYCLE_RECOVERY_DAYS,
    LIFECYCLE_DELTA_PCT, LIFECYCLE_MIN_BASE, CUMULATIVE_LOAD_DAYS,
    ACWR_ACUTE_DAYS, ACWR_CHRONIC_DAYS, TRIGGER_BUFFER_DAYS,
)
from health_records import DailyRecord, metric_values, records_to_frame
from pem_cycle import episodes_from_frame, excluded_indices, select_active_episodes

log = logging.getLogger(__name__)

BASIC_METRICS = ["step_count", "exertion_score", "hrv", "resting_heart_rate"]
LOAD_FEATURES = ["cumulative_steps_3d", "cumulative_exertion_3d", "acwr_steps", "acwr_exertion"]

FEATURE_LABELS = {
    "step_count":             "Steps",
    "exertion_score":         "Exertion",
    "hrv":                    "HRV",
    "resting_heart_rate":     "Resting HR",
    "cumulative_steps_3d":    "3-Day Steps",
    "cumulative_exertion_3d": "3-Day Exertion",
    "acwr_steps":             "Step ACWR",
    "acwr_exertion":          "Exertion ACWR",
}

# Δ% beyond which a change is flagged as concerning (sign = direction)
CONCERN_THRESHOLDS = {
    "hrv":                -5.0,
    "resting_heart_rate":  5.0,
}
DEFAULT_CONCERN_PCT = 10.0


@dataclass
class LifecycleFinding:
    key: str
    label: str
    delta: float        # % vs. baseline
    value: float
    base: float
    lag: Optional[int] = None
    is_concerning: bool = False


@dataclass
class CrashLifecycleResult:
    no_crashes: bool
    filter_applied: bool
    triggers: list[LifecycleFinding] = field(default_factory=list)
    during: list[LifecycleFinding] = field(default_factory=list)
    recovery: list[LifecycleFinding] = field(default_factory=list)
    episode_count: int = 0
    avg_episode_len: float = 0.0
    baseline: dict[str, float] = field(default_factory=dict)


# ═══════════════════════════════════════════════════════════════════════════════
# LOAD FEATURES
# ═══════════════════════════════════════════════════════════════════════════════
def compute_load_features(df: pd.DataFrame) -> pd.DataFrame:
    """
    Add 3-day cumulative load and ACWR columns for steps and exertion.

    ACWR = 7d sum / 7  ÷  rolling mean over min(i+1, 28) days.  No clipping.
    """
    df = df.copy()
    position = pd.Series(np.arange(len(df)), index=df.index)

    for source, suffix in (("step_count", "steps"), ("exertion_score", "exertion")):
        load = metric_values(df, source).fillna(0.0)
        acute = load.rolling(ACWR_ACUTE_DAYS, min_periods=1).sum() / ACWR_ACUTE_DAYS
        chronic = load.rolling(ACWR_CHRONIC_DAYS, min_periods=1).mean()
        acwr = acute / chronic.replace(0, np.nan)
        acwr = acwr.where(position >= ACWR_ACUTE_DAYS)

        df.loc[:, f"cumulative_{suffix}_3d"] = load.rolling(CUMULATIVE_LOAD_DAYS, min_periods=1).sum()
        df.loc[:, f"acwr_{suffix}"] = acwr
    return df


def calc_delta(value: float, base: float) -> float:
    """% change vs. baseline; 0 when |base| < 0.01."""
    if abs(base) < LIFECYCLE_MIN_BASE:
        return 0.0
    return (value - base) / base * 100


def _is_concerning(key: str, delta: float) -> bool:
    threshold = CONCERN_THRESHOLDS.get(key, DEFAULT_CONCERN_PCT)
    return delta < threshold if threshold < 0 else delta > threshold


def _finding(key: str, value: float, base: float, lag: Optional[int] = None) -> LifecycleFinding:
    delta = calc_delta(value, base)
    return LifecycleFinding(
        key=key, label=FEATURE_LABELS.get(key, key), delta=delta,
        value=value, base=base, lag=lag, is_concerning=_is_concerning(key, delta),
    )


# ═══════════════════════════════════════════════════════════════════════════════
# ANALYSIS
# ═══════════════════════════════════════════════════════════════════════════════
def analyze_crash_lifecycle(
    data: Union[pd.DataFrame, list[DailyRecord]],
    start: Optional[dt.date] = None,
    end: Optional[dt.date] = None,
) -> Optional[CrashLifecycleResult]:
    """
    Trigger / during / recovery averages of active episodes vs. baseline.

    Returns None for fewer than 10 days; a ``no_crashes`` result when no
    episode overlaps the optional [start, end] filter.
    """
    df = records_to_frame(data) if isinstance(data, list) else data
    if len(df) < LIFECYCLE_MIN_DAYS:
        log.info("Lifecycle: %d days < %d – skipped", len(df), LIFECYCLE_MIN_DAYS)
        return None

    filter_applied = start is not None or end is not None
    df = compute_load_features(df)
    n = len(df)

    episodes = episodes_from_frame(df)
    active = select_active_episodes(episodes, start, end)
    if not active:
        return CrashLifecycleResult(no_crashes=True, filter_applied=filter_applied)

    excluded = excluded_indices(episodes, active, n, buffer=TRIGGER_BUFFER_DAYS)
    baseline_rows = df.iloc[[i for i in range(n) if i not in excluded]]

    values = {key: metric_values(df, key).to_numpy() for key in BASIC_METRICS + LOAD_FEATURES}
    baseline = {}
    for key in BASIC_METRICS + LOAD_FEATURES:
        vals = metric_values(baseline_rows, key).dropna()
        baseline[key] = float(vals.mean()) if not vals.empty else 0.0

    # A. triggers – strongest lag per metric
    triggers = []
    for key in BASIC_METRICS + LOAD_FEATURES:
        best_lag, best_delta, best_avg = -1, 0.0, 0.0
        for lag in range(1, LIFECYCLE_MAX_LAG + 1):
            lagged = [values[key][ep.start_index - lag] for ep in active if ep.start_index - lag >= 0]
            lagged = [v for v in lagged if not np.isnan(v)]
            if not lagged:
                continue
            avg = float(np.mean(lagged))
            delta = calc_delta(avg, baseline[key])
            if abs(delta) > abs(best_delta):
                best_lag, best_delta, best_avg = lag, delta, avg
        if best_lag != -1 and abs(best_delta) > LIFECYCLE_DELTA_PCT:
            triggers.append(_finding(key, best_avg, baseline[key], lag=best_lag))

    # B. during / C. recovery – basic metrics only
    def _phase(index_sets) -> list[LifecycleFinding]:
        found = []
        for key in BASIC_METRICS:
            vals = [values[key][i] for idx in index_sets for i in idx]
            vals = [v for v in vals if not np.isnan(v)]
            if not vals:
                continue
            avg = float(np.mean(vals))
            if abs(calc_delta(avg, baseline[key])) > LIFECYCLE_DELTA_PCT:
                found.append(_finding(key, avg, baseline[key]))
        return found

    during = _phase([range(ep.start_index, ep.end_index + 1) for ep in active])
    recovery = _phase([
        range(ep.end_index + 1, min(ep.end_index + LIFECYCLE_RECOVERY_DAYS, n - 1) + 1)
        for ep in active
    ])

    result = CrashLifecycleResult(
        no_crashes=False,
        filter_applied=filter_applied,
        triggers=triggers,
        during=during,
        recovery=recovery,
        episode_count=len(active),
        avg_episode_len=sum(ep.length for ep in active) / len(active),
        baseline=baseline,
    )
    log.info("Lifecycle: %d episodes, %d trigger / %d during / %d recovery findings",
             result.episode_count, len(triggers), len(during), len(recovery))
    return result
