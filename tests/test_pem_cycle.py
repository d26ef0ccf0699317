"""
PEM crash-cycle analysis – episodes, baseline, epochs, SEA and phases
Run with: python3 -m pytest tests/
"""

import datetime as dt

import pytest

from health_records import (
    BaselineStat, DailyRecord, Epoch, EpochDay, Episode, MetricAggregate,
    OffsetProfile, records_to_frame,
)
from pem_cycle import (
    MIXED, TYPE_A, TYPE_B, aggregate_epochs, analyze_crash_phase, analyze_pem_cycles,
    analyze_pre_crash_phase, analyze_recovery_phase, build_baseline_stats,
    calculate_z_scores, detect_episodes, excluded_indices, extract_epochs,
    select_active_episodes, z_score,
)

D0 = dt.date(2024, 1, 1)


def day(i):
    return D0 + dt.timedelta(days=i)


def prof(offset, **means):
    return OffsetProfile(offset, {k: MetricAggregate(v, 0.0, 1) for k, v in means.items()})


def epoch_day(offset, crash=0.0, z=0.0, key="crash"):
    return EpochDay(day_offset=offset, date=day(offset), raw={key: crash},
                    z_scores={"composite_score": z})


def type_a_series():
    """60 days, single-day crashes on 25 and 45, exertion spikes two days before."""
    records = []
    for i in range(60):
        exertion = 5.0 if i in (23, 24, 43, 44) else (1.0 if i % 2 == 0 else 2.0)
        if i in (25, 45):
            composite = 10.0
        elif 26 <= i <= 32 or 46 <= i <= 52:
            composite = 2.0
        else:
            composite = 2.0 if i % 2 == 0 else 4.0
        records.append(DailyRecord(
            date=day(i), exertion_score=exertion, composite_score=composite,
            hrv=50.0, crash_flag=i in (25, 45),
        ))
    return records


class TestEpisodes:
    def test_runs(self):
        eps = detect_episodes([0, 0, 1, 1, 0, 1, 0])
        assert [(e.start_index, e.end_index) for e in eps] == [(2, 3), (5, 5)]

    def test_open_run_closed_at_end(self):
        eps = detect_episodes([1, 1, 1])
        assert [(e.start_index, e.end_index) for e in eps] == [(0, 2)]
        assert eps[0].length == 3

    def test_crash_encodings(self):
        eps = detect_episodes(["1", True, 1.0, "0", None, 0])
        assert [(e.start_index, e.end_index) for e in eps] == [(0, 2)]

    def test_no_crashes(self):
        assert detect_episodes([0, 0, None]) == []

    def test_dates_attached(self):
        eps = detect_episodes([0, 1, 1], [day(0), day(1), day(2)])
        assert eps[0].start_date == day(1)
        assert eps[0].end_date == day(2)

    def test_overlap_filter(self):
        ep = Episode(2, 4, day(2), day(4))
        assert select_active_episodes([ep], start=day(4)) == [ep]
        assert select_active_episodes([ep], start=day(5)) == []
        assert select_active_episodes([ep], end=day(2)) == [ep]
        assert select_active_episodes([ep], end=day(1)) == []
        assert select_active_episodes([ep]) == [ep]

    def test_excluded_indices(self):
        episodes = [Episode(2, 3), Episode(8, 8)]
        excluded = excluded_indices(episodes, [Episode(8, 8)], n_days=12, buffer=2)
        assert excluded == {2, 3, 6, 7, 8, 9, 10}

    def test_buffer_clipped_at_edges(self):
        assert excluded_indices([Episode(0, 0)], [Episode(0, 0)], n_days=3, buffer=5) == {0, 1, 2}


class TestBaseline:
    def test_population_std(self):
        values = [2, 4, 4, 4, 5, 5, 7, 9]
        df = records_to_frame([DailyRecord(date=day(i), hrv=float(v)) for i, v in enumerate(values)])
        stats = build_baseline_stats(df, set(), ["hrv"])
        assert stats["hrv"].mean == pytest.approx(5.0)
        assert stats["hrv"].std == pytest.approx(2.0)

    def test_excluded_days_ignored(self):
        df = records_to_frame([DailyRecord(date=day(i), hrv=float(v)) for i, v in enumerate([10, 20, 90])])
        stats = build_baseline_stats(df, {2}, ["hrv"])
        assert stats["hrv"].mean == pytest.approx(15.0)

    def test_defaults(self):
        df = records_to_frame([DailyRecord(date=day(0), hrv=40.0)])
        stats = build_baseline_stats(df, set(), ["hrv", "crash", "Crash", "step_count"])
        assert stats["hrv"] == BaselineStat(0.0, 0.0)
        assert stats["crash"] == BaselineStat(0.0, 1.0)
        assert stats["Crash"] == BaselineStat(0.0, 1.0)
        assert stats["step_count"] == BaselineStat(0.0, 0.0)


class TestEpochs:
    def test_z_score(self):
        assert z_score(7.0, BaselineStat(5.0, 2.0)) == pytest.approx(1.0)
        assert z_score(None, BaselineStat(5.0, 2.0)) is None
        assert z_score(1.0, None) is None

    def test_zero_variance(self):
        assert z_score(8.0, BaselineStat(5.0, 0.0)) == 2.0
        assert z_score(5.0, BaselineStat(5.0, 0.0)) == 0.0
        assert z_score(1.0, BaselineStat(5.0, 0.0)) == 0.0

    def test_clipped_at_series_edges(self):
        df = records_to_frame([DailyRecord(date=day(i), hrv=40.0) for i in range(10)])
        epochs = extract_epochs(df, [2], ["hrv"])
        offsets = [d.day_offset for d in epochs[0].days]
        assert offsets == list(range(-2, 8))

    def test_missing_raw_gives_none_z(self):
        df = records_to_frame([DailyRecord(date=day(0), hrv=40.0), DailyRecord(date=day(1), hrv=None, composite_score=1.0)])
        epochs = calculate_z_scores(extract_epochs(df, [0], ["hrv"]), {"hrv": BaselineStat(30.0, 5.0)})
        assert epochs[0].at(0).z_scores["hrv"] == pytest.approx(2.0)
        assert epochs[0].at(1).z_scores["hrv"] is None

    def test_aggregate(self):
        epochs = [
            Epoch(0, [EpochDay(0, day(0), {"hrv": 1.0}, {"hrv": 1.0})]),
            Epoch(5, [EpochDay(0, day(5), {"hrv": 3.0}, {"hrv": 3.0})]),
            Epoch(9, [EpochDay(0, day(9), {"hrv": None}, {"hrv": None})]),
        ]
        profile = aggregate_epochs(epochs, ["hrv"])
        assert len(profile) == 22
        onset = next(p for p in profile if p.day_offset == 0)
        assert onset.metrics["hrv"].mean == pytest.approx(2.0)
        assert onset.metrics["hrv"].std == pytest.approx(1.0)
        assert onset.metrics["hrv"].n == 2
        assert profile[0].metrics["hrv"] == MetricAggregate(0.0, 0.0, 0)


class TestPreCrash:
    def test_acute_spike(self):
        profile = [prof(o, exertion_score=0.0) for o in range(-7, -2)]
        profile += [prof(-2, exertion_score=0.0), prof(-1, exertion_score=2.0)]
        findings = analyze_pre_crash_phase(profile)
        assert findings.delayed_trigger_detected
        assert findings.trigger_lag == -1
        assert findings.confidence == 0.8

    def test_cumulative_only(self):
        profile = [prof(o, exertion_score=0.8) for o in range(-7, 0)]
        findings = analyze_pre_crash_phase(profile)
        assert not findings.delayed_trigger_detected
        assert findings.cumulative_load_detected
        assert findings.trigger_lag == -1
        assert findings.confidence == 0.6

    def test_spike_outside_window_ignored(self):
        profile = [prof(o, exertion_score=0.0) for o in range(-7, 0)]
        profile[0] = prof(-7, exertion_score=5.0)
        findings = analyze_pre_crash_phase(profile)
        assert not findings.delayed_trigger_detected
        assert not findings.cumulative_load_detected
        assert findings.trigger_lag == 0
        assert findings.confidence == 0.0


class TestCrashPhase:
    def test_type_b(self):
        days = [epoch_day(o, crash=1.0, z=1.0) for o in range(4)] + [epoch_day(4)]
        findings = analyze_crash_phase([Epoch(10, days)])
        assert findings.type == TYPE_B
        assert findings.avg_duration == 4

    def test_mixed(self):
        days = [epoch_day(0, crash=1.0, z=1.0), epoch_day(1)]
        findings = analyze_crash_phase([Epoch(10, days)])
        assert findings.type == MIXED
        assert findings.severity_auc == pytest.approx(1.0)

    def test_elevated_symptoms_extend_severity(self):
        days = [epoch_day(0, crash=1.0, z=2.0), epoch_day(1, z=1.0), epoch_day(2), epoch_day(3, crash=1.0, z=9.0)]
        findings = analyze_crash_phase([Epoch(10, days)])
        assert findings.type == TYPE_A
        assert findings.avg_duration == 1
        assert findings.avg_peak_severity == pytest.approx(2.0)
        assert findings.severity_auc == pytest.approx(3.0)

    def test_capitalized_crash_label(self):
        days = [epoch_day(o, crash=1.0, key="Crash") for o in range(3)] + [epoch_day(3, key="Crash")]
        assert analyze_crash_phase([Epoch(10, days)]).avg_duration == 3

    def test_no_epochs(self):
        assert analyze_crash_phase([]).type == MIXED


class TestRecovery:
    def test_hysteresis(self):
        profile = [prof(0, composite_score=3.0, hrv=-2.0)]
        profile += [prof(o, composite_score=1.0, hrv=-1.0 if o == 1 else 0.0) for o in range(1, 5)]
        profile += [prof(5, composite_score=0.2, hrv=0.0)]
        findings = analyze_recovery_phase(profile)
        assert findings.avg_recovery_days == 5
        assert findings.hrv_recovery_days == 2
        assert findings.hysteresis_detected

    def test_offsets_without_samples_skipped(self):
        profile = [
            OffsetProfile(1, {"composite_score": MetricAggregate(0.0, 0.0, 0)}),
            prof(2, composite_score=0.1),
        ]
        assert analyze_recovery_phase(profile).avg_recovery_days == 2

    def test_never_recovers(self):
        profile = [prof(o, composite_score=2.0, hrv=-2.0) for o in range(1, 15)]
        findings = analyze_recovery_phase(profile)
        assert findings.avg_recovery_days == 14
        assert findings.hrv_recovery_days == 14
        assert not findings.hysteresis_detected


class TestAnalyzePemCycles:
    def test_type_a_scenario(self):
        result = analyze_pem_cycles(type_a_series())
        assert not result.no_crashes
        assert [(e.start_index, e.end_index) for e in result.active_episodes] == [(25, 25), (45, 45)]
        assert len(result.epochs) == 2
        assert result.pre_crash.delayed_trigger_detected
        assert result.pre_crash.trigger_lag == -2
        assert result.pre_crash.confidence == 0.8
        assert result.crash_phase.type == TYPE_A
        assert result.crash_phase.avg_duration == 1
        assert result.recovery.avg_recovery_days == 1
        assert not result.recovery.hysteresis_detected

    def test_baseline_excludes_buffers(self):
        result = analyze_pem_cycles(type_a_series())
        assert result.baseline["exertion_score"].mean == pytest.approx(46 / 30)
        assert result.baseline["hrv"] == BaselineStat(50.0, 0.0)

    def test_date_filter(self):
        result = analyze_pem_cycles(type_a_series(), start=day(40))
        assert result.filter_applied
        assert [e.start_index for e in result.active_episodes] == [45]
        assert len(result.episodes) == 2

    def test_no_crashes_in_range(self):
        result = analyze_pem_cycles(type_a_series(), start=day(55), end=day(59))
        assert result.no_crashes
        assert result.filter_applied
        assert result.pre_crash is None

    def test_no_crashes(self):
        df = records_to_frame([DailyRecord(date=day(i), hrv=40.0) for i in range(20)])
        result = analyze_pem_cycles(df)
        assert result.no_crashes
        assert not result.filter_applied
        assert result.episodes == []
