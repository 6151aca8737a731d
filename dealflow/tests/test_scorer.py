"""Tests for the pure scoring engine (no database)."""
from __future__ import annotations

from datetime import UTC, date, datetime, timedelta

import pytest

from dealflow import scorer
from dealflow.models import AlertType, ScoreCategory, ScoreEvent, ScoreTrend, Urgency
from dealflow.schemas import CategoryScore, ScoreBreakdown

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=UTC)
RED_FLAG_TRIGGERS = frozenset({"metric_inconsistency", "team_departure", "runway_concern"})


def make_event(
    category: str = "traction", impact: float = 10.0, confidence: float = 1.0,
    age: timedelta = timedelta(0), signal: str = "Signal", signal_type: str | None = None,
    at: datetime | None = None,
) -> ScoreEvent:
    return ScoreEvent(
        startup_id=1, timestamp=at or NOW - age, source="manual", category=category,
        signal=signal, signal_type=signal_type, impact=impact, confidence=confidence,
        analyzed_by="user",
    )


def score_of(events, anchor=50.0, bases=None, as_of=NOW) -> int:
    return scorer.compute_score(scorer.fold_events(events, bases, as_of), anchor)


# =========================================================================
# Decay
# =========================================================================

class TestDecay:
    @pytest.mark.parametrize("age_days, weight", [
        (0, 1.0), (7, 1.0), (8, 0.9), (30, 0.9), (31, 0.75), (60, 0.75),
        (61, 0.6), (90, 0.6), (91, 0.5), (1000, 0.5),
    ])
    def test_step_weights(self, age_days, weight):
        assert scorer.decay(NOW - timedelta(days=age_days), NOW) == weight

    def test_fractional_age_past_boundary(self):
        assert scorer.decay(NOW - timedelta(days=7, seconds=1), NOW) == 0.9

    def test_never_zero(self):
        assert scorer.decay(NOW - timedelta(days=20_000), NOW) > 0

    def test_monotonic_in_age(self):
        weights = [scorer.decay(NOW - timedelta(days=d), NOW) for d in range(0, 200, 3)]
        assert weights == sorted(weights, reverse=True)

    def test_naive_timestamp_treated_as_utc(self):
        naive = (NOW - timedelta(days=10)).replace(tzinfo=None)
        assert scorer.decay(naive, NOW) == 0.9


# =========================================================================
# Aggregation
# =========================================================================

class TestFoldEvents:
    def test_single_event_scenario(self):
        breakdown = scorer.fold_events([make_event()], None, NOW)
        assert breakdown.traction.adjusted == 10
        assert scorer.compute_score(breakdown, 50.0) == 60

    def test_decayed_event_scenario(self):
        breakdown = scorer.fold_events([make_event(age=timedelta(days=100))], None, NOW)
        assert breakdown.traction.adjusted == 5
        assert scorer.compute_score(breakdown, 50.0) == 55

    def test_no_events_keeps_base(self):
        assert score_of([], anchor=60.0) == 60

    def test_impact_clamped(self):
        assert score_of([make_event(impact=15)]) == score_of([make_event(impact=10)])

    def test_confidence_clamped(self):
        assert score_of([make_event(confidence=-0.3)]) == score_of([make_event(confidence=0)])
        assert score_of([make_event(confidence=-0.3)]) == 50

    def test_red_flag_reported_as_magnitude(self):
        breakdown = scorer.fold_events(
            [make_event(category="red_flag", impact=-8, confidence=1.0)], None, NOW,
        )
        assert breakdown.red_flags == 8
        assert scorer.compute_score(breakdown, 60.0) == 52

    def test_positive_red_flag_still_penalizes(self):
        assert score_of([make_event(category="red_flag", impact=3)], anchor=60.0) == 57

    def test_scalars_bounded(self):
        events = [make_event(category="communication", impact=10) for _ in range(5)]
        events += [make_event(category="momentum", impact=-10) for _ in range(5)]
        breakdown = scorer.fold_events(events, None, NOW)
        assert breakdown.communication == 20
        assert breakdown.momentum == -20

    def test_red_flags_capped(self):
        events = [make_event(category="red_flag", impact=-10) for _ in range(5)]
        assert scorer.fold_events(events, None, NOW).red_flags == 30

    def test_score_bounded(self):
        assert score_of([make_event(impact=10) for _ in range(20)], anchor=95.0) == 100
        assert score_of([make_event(impact=-10) for _ in range(20)], anchor=5.0) == 0

    def test_routes_each_category(self):
        events = [make_event(category=c.value, impact=1) for c in ScoreCategory]
        breakdown = scorer.fold_events(events, None, NOW)
        for name, cat in breakdown.category_items():
            assert cat.adjusted == 1, name
        assert breakdown.communication == 1
        assert breakdown.momentum == 1
        assert breakdown.red_flags == 1

    def test_unknown_category_rejected(self):
        with pytest.raises(ValueError):
            scorer.fold_events([make_event(category="vibes")], None, NOW)

    def test_bases_kept_and_adjusted_recomputed(self):
        stale = ScoreBreakdown(
            team=CategoryScore(base=20, adjusted=99, subcriteria={"founders": 8}),
            market=CategoryScore(base=15), product=CategoryScore(base=10),
            traction=CategoryScore(base=10), deal=CategoryScore(base=5),
            communication=7, momentum=7, red_flags=7,
        )
        breakdown = scorer.fold_events([make_event(category="team", impact=2)], stale, NOW)
        assert breakdown.team.base == 20
        assert breakdown.team.adjusted == 2
        assert breakdown.team.subcriteria == {"founders": 8}
        assert breakdown.communication == 0
        assert stale.team.adjusted == 99
        assert scorer.compute_score(breakdown, None) == 62

    def test_anchor_overrides_category_bases(self):
        bases = ScoreBreakdown(team=CategoryScore(base=40))
        assert score_of([], anchor=None, bases=bases) == 40
        assert score_of([], anchor=70.0, bases=bases) == 70

    def test_future_events_not_visible(self):
        assert score_of([make_event(at=NOW + timedelta(hours=1))]) == 50

    def test_deterministic(self):
        events = [make_event(age=timedelta(days=d), impact=d % 7 - 3) for d in range(40)]
        first = scorer.fold_events(events, None, NOW)
        again = scorer.fold_events(events, None, NOW)
        shuffled = scorer.fold_events(list(reversed(events)), None, NOW)
        assert first == again
        assert shuffled.traction.adjusted == pytest.approx(first.traction.adjusted)
        assert scorer.compute_score(first, 50.0) == scorer.compute_score(shuffled, 50.0)

    def test_older_event_contributes_less(self):
        young = scorer.fold_events([make_event(age=timedelta(days=3))], None, NOW)
        old = scorer.fold_events([make_event(age=timedelta(days=45))], None, NOW)
        assert abs(old.traction.adjusted) <= abs(young.traction.adjusted)

    def test_round_half_up(self):
        assert scorer.round_half_up(50.5) == 51
        assert score_of([make_event(impact=0.5)]) == 51


# =========================================================================
# Trend
# =========================================================================

class TestComputeTrend:
    def test_up(self):
        assert scorer.compute_trend([make_event(impact=3)], NOW) == (ScoreTrend.UP, 3.0)

    def test_down(self):
        assert scorer.compute_trend([make_event(impact=-2.5)], NOW) == (ScoreTrend.DOWN, -2.5)

    def test_stable_at_threshold(self):
        assert scorer.compute_trend([make_event(impact=2)], NOW) == (ScoreTrend.STABLE, 2.0)

    def test_ignores_events_outside_window(self):
        events = [make_event(impact=9, age=timedelta(days=31))]
        assert scorer.compute_trend(events, NOW) == (ScoreTrend.STABLE, 0.0)

    def test_no_decay_inside_window(self):
        trend, delta = scorer.compute_trend([make_event(impact=4, age=timedelta(days=20))], NOW)
        assert delta == 4.0

    def test_red_flag_always_subtracts(self):
        events = [make_event(category="red_flag", impact=4), make_event(impact=1)]
        assert scorer.compute_trend(events, NOW) == (ScoreTrend.DOWN, -3.0)

    def test_delta_rounded_to_one_decimal(self):
        _, delta = scorer.compute_trend([make_event(impact=3, confidence=0.333)], NOW)
        assert delta == 1.0

    def test_delta_rounds_half_up(self):
        assert scorer.compute_trend([make_event(impact=0.25)], NOW)[1] == 0.3
        assert scorer.compute_trend([make_event(impact=-0.25)], NOW)[1] == -0.2


# =========================================================================
# Alerts
# =========================================================================

def _types(drafts):
    return [d.type for d in drafts]


class TestEvaluateAlerts:
    def test_single_milestone_without_major_increase(self):
        drafts = scorer.evaluate_alerts(68, 72, make_event(), RED_FLAG_TRIGGERS)
        assert _types(drafts) == [AlertType.MILESTONE]
        assert drafts[0].trigger == "Score crossed 70 threshold"
        assert drafts[0].urgency == Urgency.MEDIUM

    def test_large_jump_reports_every_milestone(self):
        drafts = scorer.evaluate_alerts(68, 95, make_event(signal="Big round"), RED_FLAG_TRIGGERS)
        assert _types(drafts).count(AlertType.MAJOR_INCREASE) == 1
        milestones = [d.trigger for d in drafts if d.type == AlertType.MILESTONE]
        assert milestones == [
            "Score crossed 90 threshold", "Score crossed 80 threshold", "Score crossed 70 threshold",
        ]
        assert drafts[0].trigger == "Big round"

    def test_major_decrease(self):
        drafts = scorer.evaluate_alerts(60, 55, None, RED_FLAG_TRIGGERS)
        assert _types(drafts) == [AlertType.MAJOR_DECREASE]
        assert drafts[0].urgency == Urgency.HIGH
        assert drafts[0].trigger == "Score decreased"

    def test_downward_milestone(self):
        drafts = scorer.evaluate_alerts(52, 49, None, RED_FLAG_TRIGGERS)
        assert _types(drafts) == [AlertType.MILESTONE]

    def test_reaching_threshold_counts_as_crossing(self):
        assert _types(scorer.evaluate_alerts(69, 70, None, RED_FLAG_TRIGGERS)) == [AlertType.MILESTONE]
        assert scorer.evaluate_alerts(70, 74, None, RED_FLAG_TRIGGERS) == []

    def test_red_flag_by_signal_type_regardless_of_delta(self):
        event = make_event(category="red_flag", signal="Only 3 months runway", signal_type="runway_concern")
        drafts = scorer.evaluate_alerts(60, 60, event, RED_FLAG_TRIGGERS)
        assert _types(drafts) == [AlertType.RED_FLAG]
        assert drafts[0].urgency == Urgency.HIGH
        assert drafts[0].trigger == "Only 3 months runway"

    def test_red_flag_category_alone_not_a_trigger_by_default(self):
        event = make_event(category="red_flag", impact=-1)
        assert scorer.evaluate_alerts(60, 59, event, RED_FLAG_TRIGGERS) == []

    def test_red_flag_triggers_configurable(self):
        event = make_event(category="red_flag", impact=-1)
        drafts = scorer.evaluate_alerts(60, 59, event, {"red_flag"})
        assert _types(drafts) == [AlertType.RED_FLAG]

    def test_no_change_no_alerts(self):
        assert scorer.evaluate_alerts(40, 40, make_event(), RED_FLAG_TRIGGERS) == []


# =========================================================================
# History
# =========================================================================

class TestReconstructHistory:
    def _events(self):
        return [
            make_event(category="traction", impact=10, at=datetime(2026, 3, 1, 9, 0, tzinfo=UTC)),
            make_event(category="team", impact=5, at=datetime(2026, 3, 14, 10, 0, tzinfo=UTC)),
        ]

    def test_sparse_series_with_first_day(self):
        points = scorer.reconstruct_history(self._events(), None, 50.0, NOW, 30)
        assert [(p.date, p.score, p.events) for p in points] == [
            (date(2026, 2, 13), 50, 0),
            (date(2026, 3, 1), 60, 1),
            (date(2026, 3, 14), 64, 1),
        ]

    def test_never_empty(self):
        points = scorer.reconstruct_history([], None, 42.0, NOW, 7)
        assert len(points) == 1
        assert points[0].score == 42

    def test_events_before_window_still_count(self):
        old = make_event(impact=10, at=NOW - timedelta(days=200))
        points = scorer.reconstruct_history([old], None, 50.0, NOW, 10)
        assert [p.score for p in points] == [55]

    def test_today_matches_live_score(self):
        events = self._events() + [
            make_event(category="momentum", impact=2, at=datetime(2026, 3, 15, 8, 0, tzinfo=UTC)),
        ]
        points = scorer.reconstruct_history(events, None, 50.0, NOW, 30)
        assert points[-1].date == NOW.date()
        assert points[-1].score == score_of(events) == 66
