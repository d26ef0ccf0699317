#!/usr/bin/env python3
"""
trend_stats.py – Dashboard statistics: averages, trends, comparisons
=====================================================================
Per selected metric over the current view:

* ``current_average``    – mean of the numeric values in the view
* ``period_trend_pct``   – OLS line over the view (x = 0..n−1),
                           (end − start) / start · 100, start floored at 0.01
* ``compare_trend_pct``  – view mean vs. the equally long preceding period
                           (``all``: last 30 days vs. the 30 before),
                           denominator max(|previous mean|, 1)

Status: ``stable`` when |pct| < 1 %, otherwise ``improving`` / ``worsening``
depending on whether the metric is inverted (higher = worse).

The step-adjusted score rescales steps into [0, 3] using the min/max of the
*current view*, so the same day scores differently across ranges.
"""

from __future__ import annotations

import datetime as dt
import logging
import os
import sys
from dataclasses import dataclass, field
from typing import Optional

# ── Project root on sys.path for config import ────────────────────────────────
_PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _PROJECT_ROOT not in sys.path:
    sys.path.insert(0, _PROJECT_ROOT)

import numpy as np
import pandas as pd

from config.settings import (
    TIME_RANGE_DAYS, TREND_STABLE_PCT, REGRESSION_MIN_DENOMINATOR,
    COMPARE_MIN_DENOMINATOR, ALL_TIME_COMPARE_DAYS, STEP_FACTOR_SCALE,
    DEFAULT_METRICS, INVERTED_METRICS, EXERTION_KEYWORDS,
)
from health_records import custom_metric_names, metric_values

log = logging.getLogger(__name__)

ADJUSTED_SCORE = "adjusted_score"
STEP_FACTOR = "step_factor"

METRIC_LABELS = {
    "adjusted_score":     "Step-Adjusted Score",
    "composite_score":    "Symptom Score",
    "hrv":                "Heart Rate Variability",
    "resting_heart_rate": "Resting HR",
    "step_count":         "Steps",
    "exertion_score":     "Exertion Score",
}

METRIC_UNITS = {"hrv": "ms", "resting_heart_rate": "bpm"}

STABLE, IMPROVING, WORSENING, INSUFFICIENT = "stable", "improving", "worsening", "insufficient_data"


@dataclass
class MetricStats:
    key: str
    label: str
    unit: str
    inverted: bool
    current_average: float
    period_trend_pct: float = 0.0
    period_trend_status: str = STABLE
    compare_trend_pct: float = 0.0
    compare_trend_status: str = INSUFFICIENT
    n_current: int = 0
    n_previous: int = 0

    def to_dict(self) -> dict:
        return dict(self.__dict__)


@dataclass
class DashboardView:
    time_range: str
    frame: pd.DataFrame
    stats: list[MetricStats] = field(default_factory=list)


# ═══════════════════════════════════════════════════════════════════════════════
# HELPERS
# ═══════════════════════════════════════════════════════════════════════════════
def linear_regression(x, y) -> tuple[float, float]:
    """Ordinary least squares ``y = m·x + b``.  Returns (m, b)."""
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    if np.ptp(x) == 0:
        return 0.0, float(y.mean())
    m, b = np.polyfit(x, y, 1)
    return float(m), float(b)


def trend_status(pct: float, inverted: bool) -> str:
    if abs(pct) < TREND_STABLE_PCT:
        return STABLE
    rising = pct > 0
    return WORSENING if rising == inverted else IMPROVING


def metric_is_inverted(key: str) -> bool:
    """True when a higher value is worse.  User metrics: exertion-like names are not inverted."""
    if key in INVERTED_METRICS:
        return INVERTED_METRICS[key]
    lower = key.lower()
    return not any(k in lower for k in EXERTION_KEYWORDS)


def metric_label(key: str) -> str:
    return METRIC_LABELS.get(key, key)


def available_metrics(df: pd.DataFrame) -> list[str]:
    """Default metrics followed by the custom metric keys, sorted."""
    custom = sorted(k for k in custom_metric_names(df) if k not in DEFAULT_METRICS)
    return [*DEFAULT_METRICS, *custom]


def _day(value) -> pd.Timestamp:
    return pd.Timestamp(value).normalize()


# ═══════════════════════════════════════════════════════════════════════════════
# VIEW SELECTION & STEP-ADJUSTED SCORE
# ═══════════════════════════════════════════════════════════════════════════════
def select_view(
    df: pd.DataFrame,
    time_range: str = "30d",
    today: Optional[dt.date] = None,
    start: Optional[dt.date] = None,
    end: Optional[dt.date] = None,
) -> pd.DataFrame:
    """
    Rows of the current view, sorted by date.

    Presets keep days strictly after ``today − N``; ``custom`` keeps
    ``[start, end]`` inclusive (``end`` defaults to ``start``).
    """
    if df.empty:
        return df.copy()

    dates = pd.to_datetime(df["date"]).dt.normalize()
    if time_range == "custom":
        if start is None:
            raise ValueError("custom range requires a start date")
        lo, hi = _day(start), _day(end or start)
        mask = (dates >= lo) & (dates <= hi)
    elif time_range == "all":
        mask = dates.notna()
    elif time_range in TIME_RANGE_DAYS:
        cutoff = _day(today or dt.date.today()) - pd.Timedelta(days=TIME_RANGE_DAYS[time_range])
        mask = dates > cutoff
    else:
        raise ValueError(f"Unknown time range: {time_range!r}")

    view = df.loc[mask].sort_values("date", kind="mergesort").reset_index(drop=True)
    return view


def step_factors(steps: pd.Series, min_steps: float, max_steps: float) -> pd.Series:
    """Steps rescaled into [0, 3]; 0 for missing steps or when min == max."""
    steps = pd.to_numeric(steps, errors="coerce")
    if max_steps == min_steps or np.isnan(min_steps) or np.isnan(max_steps):
        return pd.Series(0.0, index=steps.index)
    factor = (steps - min_steps) / (max_steps - min_steps) * STEP_FACTOR_SCALE
    return factor.fillna(0.0)


def adjusted_scores(rows: pd.DataFrame, min_steps: float, max_steps: float) -> pd.Series:
    base = metric_values(rows, "composite_score").fillna(0.0)
    factor = step_factors(metric_values(rows, "step_count"), min_steps, max_steps)
    return (base - factor).clip(lower=0.0)


def _step_range(view: pd.DataFrame) -> tuple[float, float]:
    steps = metric_values(view, "step_count").dropna()
    if steps.empty:
        return np.nan, np.nan
    return float(steps.min()), float(steps.max())


def add_adjusted_score(view: pd.DataFrame) -> pd.DataFrame:
    """Add ``step_factor`` and ``adjusted_score`` columns (view-local step min/max)."""
    lo, hi = _step_range(view)
    return view.assign(**{
        STEP_FACTOR: step_factors(metric_values(view, "step_count"), lo, hi),
        ADJUSTED_SCORE: adjusted_scores(view, lo, hi),
    })


def fit_trend_line(view: pd.DataFrame, metric: str) -> Optional[pd.Series]:
    """
    OLS line of *metric* against calendar time, evaluated on every view day.

    None when fewer than 2 numeric points exist.
    """
    values = metric_values(view, metric)
    valid = values.notna()
    if valid.sum() < 2:
        return None
    days = (pd.to_datetime(view["date"]) - pd.Timestamp("1970-01-01")).dt.days.astype(float)
    m, b = linear_regression(days[valid], values[valid])
    return (days * m + b).rename(f"trend_{metric}")


# ═══════════════════════════════════════════════════════════════════════════════
# METRIC STATISTICS
# ═══════════════════════════════════════════════════════════════════════════════
def period_trend(values: pd.Series) -> Optional[float]:
    """% change along the OLS line over positions 0..n−1; None below 2 points."""
    values = values.dropna()
    n = len(values)
    if n < 2:
        return None
    m, b = linear_regression(np.arange(n), values.to_numpy())
    start_val = b
    end_val = m * (n - 1) + b
    safe_start = REGRESSION_MIN_DENOMINATOR if abs(start_val) < REGRESSION_MIN_DENOMINATOR else start_val
    return (end_val - start_val) / safe_start * 100


def compare_windows(
    view: pd.DataFrame,
    time_range: str,
    today: Optional[dt.date] = None,
) -> tuple[pd.Timestamp, pd.Timestamp, pd.Timestamp, pd.Timestamp]:
    """
    (current_start, current_end, previous_start, previous_end), inclusive days.

    Ranges: equal-length period before the view.  ``all``: the most recent
    30 days of the view vs. the 30 days before them.
    """
    today_ts = _day(today or dt.date.today())
    if not view.empty:
        dates = pd.to_datetime(view["date"]).dt.normalize()
        c_start, c_end = dates.iloc[0], dates.iloc[-1]
    else:
        c_end = today_ts
        days = TIME_RANGE_DAYS.get(time_range) or ALL_TIME_COMPARE_DAYS
        c_start = today_ts - pd.Timedelta(days=days - 1)

    if time_range == "all":
        window = pd.Timedelta(days=ALL_TIME_COMPARE_DAYS)
        c_start = c_end - window + pd.Timedelta(days=1)
        return c_start, c_end, c_start - window, c_start - pd.Timedelta(days=1)

    duration = (c_end - c_start).days + 1
    return c_start, c_end, c_start - pd.Timedelta(days=duration), c_start - pd.Timedelta(days=1)


def _window(df: pd.DataFrame, lo: pd.Timestamp, hi: pd.Timestamp) -> pd.DataFrame:
    if df.empty:
        return df
    dates = pd.to_datetime(df["date"]).dt.normalize()
    return df.loc[(dates >= lo) & (dates <= hi)]


def calculate_metric_stats(
    view: pd.DataFrame,
    history: pd.DataFrame,
    metric: str,
    time_range: str = "30d",
    today: Optional[dt.date] = None,
) -> MetricStats:
    """
    Average, in-view trend and previous-period comparison for one metric.

    Parameters
    ----------
    view : DataFrame
        Current view (``select_view``), sorted by date.
    history : DataFrame
        Full unfiltered daily frame (source of the previous period).
    """
    inverted = metric_is_inverted(metric)
    lo, hi = _step_range(view)

    def values_of(rows: pd.DataFrame) -> pd.Series:
        if metric == ADJUSTED_SCORE:
            return adjusted_scores(rows, lo, hi)
        return metric_values(rows, metric)

    current = values_of(view).dropna()
    stats = MetricStats(
        key=metric,
        label=metric_label(metric),
        unit=METRIC_UNITS.get(metric, ""),
        inverted=inverted,
        current_average=float(current.mean()) if not current.empty else 0.0,
        n_current=len(current),
    )

    pct = period_trend(current)
    if pct is not None:
        stats.period_trend_pct = float(pct)
        stats.period_trend_status = trend_status(pct, inverted)

    c_start, c_end, p_start, p_end = compare_windows(view, time_range, today)
    if time_range == "all":
        compare_current = values_of(_window(view, c_start, c_end)).dropna()
    else:
        compare_current = current
    previous = values_of(_window(history, p_start, p_end)).dropna()
    stats.n_previous = len(previous)

    if not previous.empty:
        current_mean = float(compare_current.mean()) if not compare_current.empty else 0.0
        prev_mean = float(previous.mean())
        denom = max(abs(prev_mean), COMPARE_MIN_DENOMINATOR)
        stats.compare_trend_pct = (current_mean - prev_mean) / denom * 100
        stats.compare_trend_status = trend_status(stats.compare_trend_pct, inverted)
    else:
        log.debug("%s: no data in previous period %s – %s", metric, p_start.date(), p_end.date())

    return stats


def build_dashboard(
    history: pd.DataFrame,
    metrics: Optional[list[str]] = None,
    time_range: str = "30d",
    today: Optional[dt.date] = None,
    start: Optional[dt.date] = None,
    end: Optional[dt.date] = None,
) -> DashboardView:
    """Select the view, add the step-adjusted score and compute stats for each metric."""
    metrics = metrics or [ADJUSTED_SCORE]
    view = add_adjusted_score(select_view(history, time_range, today, start, end))
    stats = [calculate_metric_stats(view, history, m, time_range, today) for m in metrics]
    log.info("Dashboard %s: %d days in view, %d metrics", time_range, len(view), len(stats))
    return DashboardView(time_range=time_range, frame=view, stats=stats)
