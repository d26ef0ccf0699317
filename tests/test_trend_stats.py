"""
Dashboard trend statistics
Run with: python3 -m pytest tests/
"""

import datetime as dt

import pytest

from health_records import DailyRecord, records_to_frame
from trend_stats import (
    add_adjusted_score, available_metrics, build_dashboard, calculate_metric_stats,
    fit_trend_line, linear_regression, metric_is_inverted, period_trend,
    select_view, trend_status,
)

TODAY = dt.date(2024, 6, 30)


def day(offset):
    """Day relative to TODAY (0 = today, -1 = yesterday)."""
    return TODAY + dt.timedelta(days=offset)


def frame(rows):
    return records_to_frame([DailyRecord(date=d, **kw) for d, kw in rows])


class TestStatus:
    def test_thresholds(self):
        assert trend_status(0.9, inverted=False) == "stable"
        assert trend_status(-0.9, inverted=True) == "stable"
        assert trend_status(1.1, inverted=False) == "improving"
        assert trend_status(1.1, inverted=True) == "worsening"
        assert trend_status(-1.1, inverted=False) == "worsening"
        assert trend_status(-1.1, inverted=True) == "improving"

    def test_inversion_config(self):
        assert metric_is_inverted("resting_heart_rate")
        assert metric_is_inverted("composite_score")
        assert metric_is_inverted("adjusted_score")
        assert not metric_is_inverted("hrv")
        assert not metric_is_inverted("step_count")

    def test_custom_metric_inversion(self):
        assert not metric_is_inverted("Morning Walk")
        assert not metric_is_inverted("Physically active")
        assert metric_is_inverted("Headache")
        assert metric_is_inverted("Brain Fog")


class TestRegression:
    def test_linear_regression(self):
        m, b = linear_regression([0, 1, 2, 3], [1, 3, 5, 7])
        assert m == pytest.approx(2.0)
        assert b == pytest.approx(1.0)

    def test_linear_regression_noisy(self):
        m, b = linear_regression([0, 1, 2, 3], [1.0, 2.0, 2.0, 3.0])
        assert m == pytest.approx(0.6)
        assert b == pytest.approx(1.1)

    def test_linear_regression_constant_x(self):
        assert linear_regression([2, 2, 2], [1.0, 2.0, 6.0]) == (0.0, 3.0)

    def test_period_trend(self):
        import pandas as pd
        assert period_trend(pd.Series([10.0, 11.0, 12.0])) == pytest.approx(20.0)

    def test_period_trend_small_start(self):
        import pandas as pd
        assert period_trend(pd.Series([0.0, 1.0])) == pytest.approx(10000.0)

    def test_period_trend_needs_two_points(self):
        import pandas as pd
        assert period_trend(pd.Series([5.0])) is None

    def test_trend_line(self):
        df = frame([(day(-i), {"hrv": float(40 - i)}) for i in range(5)])
        line = fit_trend_line(df, "hrv")
        assert len(line) == 5
        assert line.iloc[-1] == pytest.approx(40.0)
        assert line.iloc[0] == pytest.approx(36.0)

    def test_trend_line_needs_two_points(self):
        df = frame([(day(0), {"hrv": 40.0}), (day(-1), {})])
        assert fit_trend_line(df, "hrv") is None


class TestView:
    def test_preset_is_strictly_after_cutoff(self):
        df = frame([(day(-i), {"hrv": 40.0}) for i in range(10)])
        view = select_view(df, "7d", today=TODAY)
        assert len(view) == 7
        assert view["date"].iloc[0].date() == day(-6)
        assert view["date"].iloc[-1].date() == TODAY

    def test_custom_is_inclusive(self):
        df = frame([(day(-i), {"hrv": 40.0}) for i in range(10)])
        view = select_view(df, "custom", start=day(-5), end=day(-3))
        assert [d.date() for d in view["date"]] == [day(-5), day(-4), day(-3)]

    def test_unknown_range(self):
        df = frame([(day(0), {"hrv": 40.0})])
        with pytest.raises(ValueError):
            select_view(df, "1y", today=TODAY)

    def test_available_metrics(self):
        df = frame([(day(0), {"hrv": 40.0, "custom_metrics": {"Nausea": 1.0, "Brain Fog": 2.0}})])
        metrics = available_metrics(df)
        assert metrics[:6] == [
            "adjusted_score", "composite_score", "hrv",
            "resting_heart_rate", "step_count", "exertion_score",
        ]
        assert metrics[6:] == ["Brain Fog", "Nausea"]


class TestAdjustedScore:
    def test_step_factor_scaling(self):
        df = frame([
            (day(-2), {"composite_score": 5.0, "step_count": 1000.0}),
            (day(-1), {"composite_score": 5.0, "step_count": 2000.0}),
            (day(0), {"composite_score": 5.0, "step_count": 3000.0}),
        ])
        view = add_adjusted_score(df)
        assert list(view["step_factor"]) == pytest.approx([0.0, 1.5, 3.0])
        assert list(view["adjusted_score"]) == pytest.approx([5.0, 3.5, 2.0])

    def test_identical_steps_give_zero_factor(self):
        df = frame([(day(-i), {"composite_score": 4.0, "step_count": 500.0}) for i in range(3)])
        view = add_adjusted_score(df)
        assert (view["step_factor"] == 0).all()
        assert (view["adjusted_score"] == 4.0).all()

    def test_missing_steps_and_floor_at_zero(self):
        df = frame([
            (day(-2), {"composite_score": 1.0, "step_count": 0.0}),
            (day(-1), {"composite_score": 1.0, "step_count": 10000.0}),
            (day(0), {"composite_score": 1.0}),
        ])
        view = add_adjusted_score(df)
        assert list(view["adjusted_score"]) == pytest.approx([1.0, 0.0, 1.0])

    def test_normalization_depends_on_view(self):
        df = frame([
            (day(-20), {"composite_score": 5.0, "step_count": 10000.0}),
            (day(-1), {"composite_score": 5.0, "step_count": 1000.0}),
            (day(0), {"composite_score": 5.0, "step_count": 2000.0}),
        ])
        wide = add_adjusted_score(select_view(df, "30d", today=TODAY))
        narrow = add_adjusted_score(select_view(df, "7d", today=TODAY))
        assert wide["adjusted_score"].iloc[-1] != narrow["adjusted_score"].iloc[-1]
        assert narrow["adjusted_score"].iloc[-1] == pytest.approx(2.0)


class TestMetricStats:
    def test_compare_with_preceding_period(self):
        rows = [(day(-13 + i), {"hrv": 50.0 if i < 7 else 60.0}) for i in range(14)]
        history = frame(rows)
        view = select_view(history, "7d", today=TODAY)
        stats = calculate_metric_stats(view, history, "hrv", "7d", today=TODAY)
        assert stats.current_average == pytest.approx(60.0)
        assert stats.compare_trend_pct == pytest.approx(20.0)
        assert stats.compare_trend_status == "improving"
        assert stats.period_trend_status == "stable"
        assert stats.n_previous == 7

    def test_compare_inverted_metric(self):
        rows = [(day(-13 + i), {"resting_heart_rate": 60.0 if i < 7 else 66.0}) for i in range(14)]
        history = frame(rows)
        view = select_view(history, "7d", today=TODAY)
        stats = calculate_metric_stats(view, history, "resting_heart_rate", "7d", today=TODAY)
        assert stats.compare_trend_status == "worsening"

    def test_insufficient_previous_data(self):
        history = frame([(day(-i), {"hrv": 50.0}) for i in range(7)])
        view = select_view(history, "7d", today=TODAY)
        stats = calculate_metric_stats(view, history, "hrv", "7d", today=TODAY)
        assert stats.compare_trend_status == "insufficient_data"
        assert stats.compare_trend_pct == 0.0

    def test_all_time_compares_last_30_days(self):
        rows = [(day(-59 + i), {"hrv": 50.0 if i < 30 else 55.0}) for i in range(60)]
        history = frame(rows)
        view = select_view(history, "all", today=TODAY)
        stats = calculate_metric_stats(view, history, "hrv", "all", today=TODAY)
        assert stats.compare_trend_pct == pytest.approx(10.0)
        assert stats.n_previous == 30

    def test_small_previous_mean_uses_floor(self):
        rows = [(day(-3 + i), {"custom_metrics": {"Nausea": 0.5 if i < 2 else 1.0}}) for i in range(4)]
        history = frame(rows)
        view = select_view(history, "custom", start=day(-1), end=day(0))
        stats = calculate_metric_stats(view, history, "Nausea", "custom", today=TODAY)
        assert stats.compare_trend_pct == pytest.approx(50.0)
        assert stats.compare_trend_status == "worsening"

    def test_period_trend_rising(self):
        history = frame([(day(-4 + i), {"hrv": 40.0 + i}) for i in range(5)])
        view = select_view(history, "7d", today=TODAY)
        stats = calculate_metric_stats(view, history, "hrv", "7d", today=TODAY)
        assert stats.period_trend_pct == pytest.approx(10.0)
        assert stats.period_trend_status == "improving"

    def test_single_point_is_stable(self):
        history = frame([(day(0), {"hrv": 40.0})])
        view = select_view(history, "7d", today=TODAY)
        stats = calculate_metric_stats(view, history, "hrv", "7d", today=TODAY)
        assert stats.period_trend_pct == 0.0
        assert stats.period_trend_status == "stable"

    def test_empty_view(self):
        history = frame([(day(-100), {"hrv": 40.0})])
        view = select_view(history, "7d", today=TODAY)
        stats = calculate_metric_stats(view, history, "hrv", "7d", today=TODAY)
        assert stats.current_average == 0.0
        assert stats.n_current == 0

    def test_build_dashboard_defaults_to_adjusted_score(self):
        history = frame([(day(-i), {"composite_score": 3.0, "step_count": 1000.0 * i}) for i in range(5)])
        dash = build_dashboard(history, time_range="7d", today=TODAY)
        assert [s.key for s in dash.stats] == ["adjusted_score"]
        assert "adjusted_score" in dash.frame.columns
