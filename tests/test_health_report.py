"""
Console summaries & JSON report export
Run with: python3 -m pytest tests/
"""

import datetime as dt
import json
import os
import sys

import numpy as np

import health_report
from crash_lifecycle import CrashLifecycleResult
from health_records import Episode
from health_report import print_lifecycle, save_json_report, to_jsonable
from pem_cycle import PEMCycleResult


class TestModuleSetup:
    def test_project_root_on_path(self):
        root = os.path.dirname(os.path.dirname(os.path.abspath(health_report.__file__)))
        assert health_report._PROJECT_ROOT == root
        assert root in sys.path


class TestJson:
    def test_to_jsonable(self):
        result = PEMCycleResult(
            no_crashes=False, filter_applied=False,
            episodes=[Episode(2, 3, dt.date(2024, 1, 3), dt.date(2024, 1, 4))],
        )
        out = to_jsonable(result)
        assert out["episodes"][0]["start_date"] == "2024-01-03"
        assert out["pre_crash"] is None

    def test_nan_and_numpy_scalars(self):
        assert to_jsonable({"a": float("nan"), "b": np.float64(1.5), "c": np.int64(3)}) == {
            "a": None, "b": 1.5, "c": 3,
        }

    def test_save_json_report(self, tmp_path):
        path = save_json_report({"days": 3}, tmp_path / "out" / "report.json")
        assert json.loads(path.read_text(encoding="utf-8")) == {"days": 3}


class TestConsole:
    def test_lifecycle_without_data(self, capsys):
        print_lifecycle(None)
        assert "Not enough data" in capsys.readouterr().out

    def test_lifecycle_without_crashes(self, capsys):
        print_lifecycle(CrashLifecycleResult(no_crashes=True, filter_applied=False))
        assert "No PEM clusters" in capsys.readouterr().out
