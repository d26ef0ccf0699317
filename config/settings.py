"""
PEM Cycle Lab – Centralized Configuration
==========================================
All file paths, score weights, analysis windows and metric vocabularies
in one place. Edit this file (or the .env overrides) – never hardcode
values in individual scripts.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# Values from .env never override variables already exported in the shell
load_dotenv(override=False)

# ============================================================
# PROJECT PATHS (relative to project root)
# ============================================================
PROJECT_ROOT = Path(__file__).resolve().parent.parent

DATA_DIR        = Path(os.environ.get("PEM_DATA_DIR", PROJECT_ROOT / "data"))
SUBJECTS_DIR    = DATA_DIR / "subjects"
REPORTS_DIR     = Path(os.environ.get("PEM_REPORTS_DIR", PROJECT_ROOT / "reports"))
LOGS_DIR        = Path(os.environ.get("PEM_LOG_DIR", PROJECT_ROOT / "logs"))

DEFAULT_SUBJECT = os.environ.get("PEM_SUBJECT", "default")

# ============================================================
# CSV FILE NAMES (inside SUBJECTS_DIR/<subject>/)
# ============================================================
CSV_DAILY_RECORDS   = "daily_records.csv"

# ============================================================
# LONG-FORMAT IMPORT (column synonyms, matched case-insensitively)
# ============================================================
DATE_KEYS       = ["observation_date", "date", "day"]
NAME_KEYS       = ["tracker_name", "name", "metric", "type"]
VALUE_KEYS      = ["observation_value", "value", "score", "rating"]
CATEGORY_KEYS   = ["tracker_category", "category", "group"]
DEFAULT_CATEGORY = "Other"

# Metric names that map straight onto a DailyRecord field
KNOWN_METRIC_FIELDS = {
    "HRV":             "hrv",
    "Resting HR":      "resting_heart_rate",
    "Stability Score": "exertion_score",
}

EXERTION_METRICS = [
    "Cognitive Exertion",
    "Emotional Exertion",
    "Physical Exertion",
    "Social Exertion",
    "Mentally demanding",
    "Emotionally stressful",
    "Physically active",
    "Socially demanding",
]

SYMPTOM_CATEGORIES = [
    "Custom", "General", "Brain", "Heart and Lungs",
    "Pain", "Muscles", "Sensory", "Gastrointestinal",
]

EXCLUDED_CATEGORY_PREFIX = "funcap_"
CRASH_METRIC_NAMES       = ("Crash", "crash")

# ============================================================
# APPLE HEALTH EXPORT
# ============================================================
STEP_COUNT_TYPE         = "HKQuantityTypeIdentifierStepCount"
STEP_MERGE_BATCH_SIZE   = 20   # dates per read-merge-write round

# ============================================================
# COMPOSITE HEALTH SCORE (0–100)
# ============================================================
SYMPTOM_MAX     = 3.0          # symptom score clamp [0, 3]
HRV_MIN         = 15.0         # HRV clamp lower bound (ms)
HRV_MAX         = 100.0        # HRV clamp upper bound (ms)
SYMPTOM_WEIGHT  = 0.6
HRV_WEIGHT      = 0.4

# ============================================================
# DASHBOARD TRENDS
# ============================================================
TIME_RANGE_DAYS = {"7d": 7, "30d": 30, "3m": 90, "all": None}   # None = whole history
TREND_STABLE_PCT            = 1.0    # |change| below → stable
REGRESSION_MIN_DENOMINATOR  = 0.01   # regression start value floor
COMPARE_MIN_DENOMINATOR     = 1.0    # previous-period mean floor
ALL_TIME_COMPARE_DAYS       = 30     # "all": last 30 d vs preceding 30 d
STEP_FACTOR_SCALE           = 3.0    # steps rescaled into [0, 3]

DEFAULT_METRICS = [
    "adjusted_score", "composite_score", "hrv",
    "resting_heart_rate", "step_count", "exertion_score",
]

# True = higher raw value is worse
INVERTED_METRICS = {
    "adjusted_score":     True,
    "composite_score":    True,
    "hrv":                False,
    "resting_heart_rate": True,
    "step_count":         False,
    "exertion_score":     False,
}

# Custom metrics whose name contains one of these are "higher is better"
EXERTION_KEYWORDS = [
    "exertion", "demanding", "active", "activity", "walk", "run", "cycle",
    "sport", "gym", "train", "cook", "clean", "social", "work", "focus",
]

# ============================================================
# EXPERIMENTS
# ============================================================
EXPERIMENT_MIN_DAYS         = 3      # scored days per window
EXPERIMENT_SIGNIFICANT_PCT  = 5.0    # heuristic, not a statistical test
EXPERIMENT_CATEGORIES       = ["medication", "supplement", "lifestyle", "other"]

# ============================================================
# PEM CYCLE (Superposed Epoch Analysis)
# ============================================================
EPOCH_PRE_DAYS      = 7        # days before crash onset
EPOCH_POST_DAYS     = 14       # days after crash onset
TRIGGER_BUFFER_DAYS = 7        # excluded from baseline around episodes

PEM_METRICS = [
    "step_count", "exertion_score", "hrv",
    "resting_heart_rate", "composite_score", "crash",
]

ZERO_STD_Z          = 2.0      # z when baseline is constant and value exceeds it

# Phase 1 – trigger
ACUTE_SPIKE_Z           = 1.5
ACUTE_SPIKE_WINDOW      = -2   # offsets [-2, -1]
CUMULATIVE_LOAD_Z       = 0.5
CUMULATIVE_LOAD_WINDOW  = -5   # offsets [-5, -1]
ACUTE_CONFIDENCE        = 0.8
CUMULATIVE_CONFIDENCE   = 0.6

# Phase 2 – crash typing
CRASH_SEVERITY_Z    = 0.5
DIP_MAX_DURATION    = 3.0
DIP_MIN_PEAK_Z      = 1.5

# Phase 3 – recovery
SYMPTOM_RECOVERY_Z  = 0.5
HRV_RECOVERY_Z      = -0.5

# ============================================================
# CRASH LIFECYCLE (baseline delta view)
# ============================================================
LIFECYCLE_MIN_DAYS      = 10
LIFECYCLE_MAX_LAG       = 7     # trigger search, days before onset
LIFECYCLE_RECOVERY_DAYS = 7     # days after episode end
LIFECYCLE_DELTA_PCT     = 5.0   # |Δ| to report
LIFECYCLE_MIN_BASE      = 0.01  # |baseline| below → delta 0
CUMULATIVE_LOAD_DAYS    = 3

# ACWR (Acute : Chronic Workload Ratio)
ACWR_ACUTE_DAYS     = 7
ACWR_CHRONIC_DAYS   = 28
