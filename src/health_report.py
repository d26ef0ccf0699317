#!/usr/bin/env python3
"""
health_report.py – Console summaries & JSON report export
==========================================================
Box-style console output for the dashboard, PEM-cycle, lifecycle and
experiment results, plus a JSON dump of any result dataclass.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Optional

# ── Project root on sys.path for config import ────────────────────────────────
_PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _PROJECT_ROOT not in sys.path:
    sys.path.insert(0, _PROJECT_ROOT)

from composite_score import ExperimentResult
from crash_lifecycle import CrashLifecycleResult, LifecycleFinding
from pem_cycle import PEMCycleResult
from trend_stats import DashboardView

log = logging.getLogger(__name__)

_BOX_TOP = "╔══════════════════════════════════════════════════════════════╗"
_BOX_BOTTOM = "╚══════════════════════════════════════════════════════════════╝"

_STATUS_ICON = {"improving": "↑", "worsening": "↓", "stable": "→", "insufficient_data": "?"}


def to_jsonable(obj: Any) -> Any:
    """Dataclasses → dicts; dates → ISO strings; NaN → None."""
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: to_jsonable(getattr(obj, f.name)) for f in dataclasses.fields(obj)}
    if isinstance(obj, dict):
        return {str(k): to_jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [to_jsonable(v) for v in obj]
    if hasattr(obj, "isoformat"):
        return obj.isoformat()
    if isinstance(obj, float) and obj != obj:
        return None
    if hasattr(obj, "item"):        # numpy scalars
        return to_jsonable(obj.item())
    return obj


def save_json_report(payload: Any, path: str | Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(to_jsonable(payload), f, indent=2, ensure_ascii=False)
    log.info("Report saved: %s", path)
    return path


# ═══════════════════════════════════════════════════════════════════════════════
# CONSOLE SUMMARIES
# ═══════════════════════════════════════════════════════════════════════════════
def print_dashboard(dashboard: DashboardView) -> None:
    frame = dashboard.frame
    print()
    print(_BOX_TOP)
    if frame.empty:
        print(f"  Range {dashboard.time_range}: no data in view")
    else:
        first = frame["date"].iloc[0].date()
        last = frame["date"].iloc[-1].date()
        print(f"  Range {dashboard.time_range}: {first} → {last}  ({len(frame)} days)")
    for s in dashboard.stats:
        unit = f" {s.unit}" if s.unit else ""
        print(f"  {s.label:<24} avg {s.current_average:8.2f}{unit}")
        print(f"      in view   {_STATUS_ICON[s.period_trend_status]} {s.period_trend_pct:+7.1f} %  ({s.period_trend_status})")
        if s.compare_trend_status == "insufficient_data":
            print("      vs. prev  ? insufficient data")
        else:
            print(f"      vs. prev  {_STATUS_ICON[s.compare_trend_status]} {s.compare_trend_pct:+7.1f} %  ({s.compare_trend_status})")
    print(_BOX_BOTTOM)


def print_pem_cycles(result: PEMCycleResult) -> None:
    print()
    print(_BOX_TOP)
    if result.no_crashes:
        if result.filter_applied:
            print("  No crashes detected in the selected timeframe.")
        else:
            print("  No crash episodes recorded yet.")
        print(_BOX_BOTTOM)
        return

    print(f"  Episodes: {len(result.episodes)}  │  analysed: {len(result.active_episodes)}")
    pre, crash, rec = result.pre_crash, result.crash_phase, result.recovery
    if pre.delayed_trigger_detected:
        print(f"  Phase 1  acute exertion spike at day {pre.trigger_lag}  (confidence {pre.confidence:.1f})")
    elif pre.cumulative_load_detected:
        print(f"  Phase 1  cumulative load before crash  (confidence {pre.confidence:.1f})")
    else:
        print("  Phase 1  no clear trigger pattern")
    print(f"  Phase 2  {crash.type}  │  avg duration {crash.avg_duration:.1f} d  │  "
          f"peak z {crash.avg_peak_severity:.2f}  │  AUC {crash.severity_auc:.2f}")
    print(f"  Phase 3  symptoms recover after {rec.avg_recovery_days} d  │  HRV after {rec.hrv_recovery_days} d")
    if rec.hysteresis_detected:
        print("           ⚠ HRV normalises before symptoms – do not resume activity early")

    thin = [p.day_offset for p in result.profile
            if 0 < max((m.n for m in p.metrics.values()), default=0) < 2]
    if thin:
        print(f"  Low confidence (n < 2) at offsets: {', '.join(str(o) for o in thin)}")
    print(_BOX_BOTTOM)


def _print_findings(title: str, findings: list[LifecycleFinding]) -> None:
    print(f"  {title}")
    if not findings:
        print("      –")
    for f in findings:
        lag = f" (day −{f.lag})" if f.lag is not None else ""
        flag = " ⚠" if f.is_concerning else ""
        print(f"      {f.label:<16}{lag:<10} {f.delta:+7.1f} %  ({f.value:.1f} vs {f.base:.1f}){flag}")


def print_lifecycle(result: Optional[CrashLifecycleResult]) -> None:
    print()
    print(_BOX_TOP)
    if result is None:
        print("  Not enough data for a lifecycle analysis.")
    elif result.no_crashes:
        print("  No PEM clusters detected.")
    else:
        print(f"  Episodes: {result.episode_count}  │  avg length {result.avg_episode_len:.1f} d")
        _print_findings("Triggers", result.triggers)
        _print_findings("During crash", result.during)
        _print_findings("Recovery (7 d)", result.recovery)
    print(_BOX_BOTTOM)


def print_experiment(name: str, result: Optional[ExperimentResult]) -> None:
    print()
    print(_BOX_TOP)
    print(f"  Experiment: {name}")
    if result is None:
        print("  Insufficient data to analyze.")
    else:
        marker = "  (> 5 % change)" if result.is_significant else ""
        print(f"  {result.metric_name}: {result.baseline_mean} → {result.treatment_mean}  "
              f"({result.change_percent:+.1f} %){marker}")
        print(f"  Days: baseline {result.sample_size_baseline}  │  treatment {result.sample_size_treatment}")
    print(_BOX_BOTTOM)
