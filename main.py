#!/usr/bin/env python3
"""
main.py – PEM Cycle Lab · Central Entry Point
==============================================
Commands:

  1. IMPORT-CSV    – Long/wide CSV export → daily records   (long_format_normalizer)
  2. IMPORT-STEPS  – Apple Health export → step counts      (apple_health_steps)
  3. DASHBOARD     – Averages, in-view trends, comparisons   (trend_stats)
  4. PEM           – Crash-cycle epoch analysis              (pem_cycle)
  5. LIFECYCLE     – Trigger / during / recovery vs baseline (crash_lifecycle)
  6. EXPERIMENT    – Treatment vs. baseline health score     (composite_score)

Usage
-----
    python main.py import-csv visible_export.csv
    python main.py import-steps export.zip
    python main.py dashboard --range 3m --metric hrv --metric adjusted_score
    python main.py pem --start 2024-03-01 --end 2024-06-30
    python main.py lifecycle
    python main.py experiment --name "Pacing" --start 2024-05-01
    python main.py --subject alice --json reports/pem.json pem
"""

from __future__ import annotations

import argparse
import datetime as dt
import logging
import os
import sys
import time

# ── Project root on sys.path ─────────────────────────────────────────────────
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
SRC_DIR = os.path.join(PROJECT_ROOT, "src")
for _p in (PROJECT_ROOT, SRC_DIR):
    if _p not in sys.path:
        sys.path.insert(0, _p)

from config.settings import (
    DATA_DIR, SUBJECTS_DIR, REPORTS_DIR, LOGS_DIR, DEFAULT_SUBJECT, TIME_RANGE_DAYS,
)

from apple_health_steps import NoStepRecordsError, parse_step_counts
from composite_score import Experiment, analyze_experiment
from crash_lifecycle import analyze_crash_lifecycle
from health_records import records_to_frame
from health_report import (
    print_dashboard, print_experiment, print_lifecycle, print_pem_cycles, save_json_report,
)
from long_format_normalizer import NoValidRecordsError, normalize_csv
from pem_cycle import analyze_pem_cycles
from record_store import DailyRecordStore, RecordStoreError
from trend_stats import build_dashboard

log = logging.getLogger("main")


def setup_logging(verbose: bool = False) -> None:
    LOGS_DIR.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s  %(levelname)-8s  %(message)s",
        datefmt="%H:%M:%S",
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(LOGS_DIR / "main.log", encoding="utf-8"),
        ],
    )


def ensure_directories() -> None:
    """Create all required data directories if they don't exist."""
    for d in (DATA_DIR, SUBJECTS_DIR, REPORTS_DIR, LOGS_DIR):
        d.mkdir(parents=True, exist_ok=True)


def _date(text: str) -> dt.date:
    try:
        return dt.date.fromisoformat(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {text!r}")


# ═══════════════════════════════════════════════════════════════════════════════
# COMMANDS
# ═══════════════════════════════════════════════════════════════════════════════
def cmd_import_csv(args, store: DailyRecordStore):
    records = normalize_csv(args.file, layout=args.layout)
    if not records:
        log.warning("%s is empty – nothing imported.", args.file)
        return {"imported": 0}
    written = store.upsert_daily_records(args.subject, records)
    log.info("Imported %d days for subject %s", written, args.subject)
    return {"imported": written, "first": records[0].date, "last": records[-1].date}


def cmd_import_steps(args, store: DailyRecordStore):
    steps = parse_step_counts(args.file)
    return store.merge_step_counts(args.subject, steps)


def cmd_dashboard(args, store: DailyRecordStore):
    history = records_to_frame(store.get_daily_records(args.subject))
    time_range = "custom" if args.start else args.range
    dashboard = build_dashboard(
        history, metrics=args.metric, time_range=time_range,
        start=args.start, end=args.end,
    )
    print_dashboard(dashboard)
    return {"time_range": time_range, "days": len(dashboard.frame), "stats": dashboard.stats}


def cmd_pem(args, store: DailyRecordStore):
    result = analyze_pem_cycles(store.get_daily_records(args.subject), start=args.start, end=args.end)
    print_pem_cycles(result)
    return result


def cmd_lifecycle(args, store: DailyRecordStore):
    result = analyze_crash_lifecycle(store.get_daily_records(args.subject), start=args.start, end=args.end)
    print_lifecycle(result)
    return result


def cmd_experiment(args, store: DailyRecordStore):
    experiment = Experiment(
        name=args.name, start_date=args.start, end_date=args.end, category=args.category,
    )
    result = analyze_experiment(experiment, store.get_daily_records(args.subject))
    print_experiment(experiment.name, result)
    return result


COMMANDS = {
    "import-csv": cmd_import_csv,
    "import-steps": cmd_import_steps,
    "dashboard": cmd_dashboard,
    "pem": cmd_pem,
    "lifecycle": cmd_lifecycle,
    "experiment": cmd_experiment,
}


# ═══════════════════════════════════════════════════════════════════════════════
# MAIN
# ═══════════════════════════════════════════════════════════════════════════════
def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="PEM Cycle Lab – health time-series analytics")
    parser.add_argument("--subject", default=DEFAULT_SUBJECT, help="Subject id (default: %(default)s)")
    parser.add_argument("--json", metavar="PATH", help="Also write the result as JSON")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("import-csv", help="Import a long- or wide-format CSV export")
    p.add_argument("file")
    p.add_argument("--layout", choices=["auto", "long", "wide"], default="auto")

    p = sub.add_parser("import-steps", help="Merge Apple Health step counts into existing days")
    p.add_argument("file", help="export.xml or export.zip")

    p = sub.add_parser("dashboard", help="Metric averages and trends")
    p.add_argument("--range", choices=list(TIME_RANGE_DAYS), default="30d")
    p.add_argument("--start", type=_date, help="Custom range start (overrides --range)")
    p.add_argument("--end", type=_date)
    p.add_argument("--metric", action="append", help="Metric key, repeatable (default: adjusted_score)")

    for name, text in (("pem", "Crash-cycle epoch analysis"),
                       ("lifecycle", "Crash lifecycle vs. baseline")):
        p = sub.add_parser(name, help=text)
        p.add_argument("--start", type=_date, help="Only episodes overlapping this range")
        p.add_argument("--end", type=_date)

    p = sub.add_parser("experiment", help="Compare an intervention period with its baseline")
    p.add_argument("--name", default="Experiment")
    p.add_argument("--start", type=_date, required=True)
    p.add_argument("--end", type=_date)
    p.add_argument("--category", default="other",
                   choices=["medication", "supplement", "lifestyle", "other"])
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)
    ensure_directories()

    log.info("PEM Cycle Lab  ·  %s  ·  subject %s", args.command, args.subject)
    t0 = time.time()
    try:
        store = DailyRecordStore()
        result = COMMANDS[args.command](args, store)
    except (NoValidRecordsError, NoStepRecordsError) as e:
        log.error(str(e))
        return 1
    except (RecordStoreError, ValueError, OSError) as e:
        log.error("%s failed: %s", args.command, e)
        return 1

    if args.json:
        save_json_report(result, args.json)
    log.info("Finished in %.1f s", time.time() - t0)
    return 0


if __name__ == "__main__":
    sys.exit(main())
