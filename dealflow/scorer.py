"""Investibility scoring engine: a deterministic fold over a startup's event log.

Architecture
------------
Every observation about a startup is a ``ScoreEvent`` carrying a signed
``impact`` (-10..10) and a ``confidence`` (0..1).  The score is never updated
in place; it is re-derived from the full log each time:

- **Decay**: step weight on event age (1.0 up to a week, 0.5 floor after
  ninety days).  Nothing ever decays to zero.
- **Fold**: ``impact * confidence * decay`` routed by category into a
  ``ScoreBreakdown``.  Category bases are carried over untouched; every
  ``adjusted`` figure starts from zero.
- **Score**: ``round(clamp(base + adjustments, 0, 100))`` where red flags
  always subtract their magnitude.
- **Trend**: undecayed 30-day sum, a separate "is it improving lately" lens.
- **Alerts**: independent rules over (previous score, new score, trigger).
- **History**: the same fold replayed as of the end of each day.

All functions here are pure; they take an explicit ``as_of``/``now`` and do
no I/O.  Persistence lives in ``dealflow.services``.
"""
from __future__ import annotations

import math
from bisect import bisect_right
from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta
from typing import Protocol, assert_never

from dealflow.models import AlertType, ScoreCategory, ScoreTrend, Urgency
from dealflow.schemas import (
    CONFIDENCE_MAX, CONFIDENCE_MIN, IMPACT_MAX, IMPACT_MIN, ScoreBreakdown, clamp,
)

# ---------------------------------------------------------------------------
# Tunables
# ---------------------------------------------------------------------------

# (max age in days, weight); anything older gets DECAY_FLOOR
DECAY_TIERS: tuple[tuple[int, float], ...] = ((7, 1.0), (30, 0.9), (60, 0.75), (90, 0.6))
DECAY_FLOOR = 0.5

SCALAR_BOUND = 20.0  # communication and momentum
RED_FLAG_CAP = 30.0
SCORE_MIN, SCORE_MAX = 0, 100

TREND_WINDOW_DAYS = 30
TREND_THRESHOLD = 2.0

MAJOR_INCREASE_DELTA = 5
MAJOR_DECREASE_DELTA = -5
MILESTONES = (90, 80, 70, 50)


class EventLike(Protocol):
    timestamp: datetime
    category: str
    signal: str
    signal_type: str | None
    impact: float
    confidence: float


def as_utc(dt: datetime) -> datetime:
    """Treat naive datetimes (as SQLite returns them) as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


# ---------------------------------------------------------------------------
# Decay
# ---------------------------------------------------------------------------


def decay(event_timestamp: datetime, as_of: datetime) -> float:
    """Weight in (0, 1] for an event observed at *event_timestamp*, seen from *as_of*."""
    age_days = (as_utc(as_of) - as_utc(event_timestamp)).total_seconds() / 86400
    for max_age, weight in DECAY_TIERS:
        if age_days <= max_age:
            return weight
    return DECAY_FLOOR


def weighted_impact(event: EventLike, as_of: datetime) -> float:
    # Stored rows may predate input validation, so clamp again here.
    impact = clamp(event.impact, IMPACT_MIN, IMPACT_MAX)
    confidence = clamp(event.confidence, CONFIDENCE_MIN, CONFIDENCE_MAX)
    return impact * confidence * decay(event.timestamp, as_of)


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


def fold_events(
    events: Iterable[EventLike], bases: ScoreBreakdown | None, as_of: datetime,
) -> ScoreBreakdown:
    """Fold an event log into a fresh breakdown as of *as_of*.

    Events stamped after *as_of* are not yet visible and are skipped.
    """
    breakdown = (bases or ScoreBreakdown.empty()).with_bases_only()
    adjusted = {name: 0.0 for name, _ in breakdown.category_items()}
    communication = momentum = red_flags = 0.0
    cutoff = as_utc(as_of)

    for event in events:
        if as_utc(event.timestamp) > cutoff:
            continue
        weight = weighted_impact(event, cutoff)
        category = ScoreCategory(event.category)
        match category:
            case ScoreCategory.COMMUNICATION:
                communication += weight
            case ScoreCategory.MOMENTUM:
                momentum += weight
            case ScoreCategory.RED_FLAG:
                red_flags += weight
            case (ScoreCategory.TEAM | ScoreCategory.MARKET | ScoreCategory.PRODUCT
                  | ScoreCategory.TRACTION | ScoreCategory.DEAL):
                adjusted[category.value] += weight
            case _:
                assert_never(category)

    for name, cat in breakdown.category_items():
        cat.adjusted = adjusted[name]
    breakdown.communication = clamp(communication, -SCALAR_BOUND, SCALAR_BOUND)
    breakdown.momentum = clamp(momentum, -SCALAR_BOUND, SCALAR_BOUND)
    breakdown.red_flags = clamp(abs(red_flags), 0.0, RED_FLAG_CAP)
    return breakdown


def resolve_base(breakdown: ScoreBreakdown, anchor: float | None) -> float:
    return anchor if anchor is not None else breakdown.base_total


def compute_score(breakdown: ScoreBreakdown, anchor: float | None) -> int:
    """Bounded integer score from a folded breakdown and an optional fixed base."""
    adjustments = (
        breakdown.adjusted_total + breakdown.communication + breakdown.momentum
        - abs(breakdown.red_flags)
    )
    raw = resolve_base(breakdown, anchor) + adjustments
    return round_half_up(clamp(raw, SCORE_MIN, SCORE_MAX))


# ---------------------------------------------------------------------------
# Trend
# ---------------------------------------------------------------------------


def compute_trend(
    events: Iterable[EventLike], now: datetime, window_days: int = TREND_WINDOW_DAYS,
) -> tuple[ScoreTrend, float]:
    """Undecayed net impact over the trailing window, with its direction label."""
    now = as_utc(now)
    since = now - timedelta(days=window_days)
    total = 0.0
    for event in events:
        ts = as_utc(event.timestamp)
        if ts < since or ts > now:
            continue
        value = (clamp(event.impact, IMPACT_MIN, IMPACT_MAX)
                 * clamp(event.confidence, CONFIDENCE_MIN, CONFIDENCE_MAX))
        if event.category == ScoreCategory.RED_FLAG:
            total -= abs(value)
        else:
            total += value
    delta = round_half_up(total * 10) / 10
    if delta > TREND_THRESHOLD:
        return ScoreTrend.UP, delta
    if delta < -TREND_THRESHOLD:
        return ScoreTrend.DOWN, delta
    return ScoreTrend.STABLE, delta


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AlertDraft:
    """An alert decided on but not yet stored."""
    type: AlertType
    urgency: Urgency
    trigger: str


def _crossed(previous: int, new: int, threshold: int) -> bool:
    return previous < threshold <= new or new < threshold <= previous


def evaluate_alerts(
    previous: int,
    new: int,
    trigger_event: EventLike | None,
    red_flag_triggers: Iterable[str],
) -> list[AlertDraft]:
    """Apply every alert rule independently; one change may raise several alerts."""
    drafts: list[AlertDraft] = []
    delta = new - previous
    signal = trigger_event.signal if trigger_event is not None else None

    if delta >= MAJOR_INCREASE_DELTA:
        drafts.append(AlertDraft(AlertType.MAJOR_INCREASE, Urgency.MEDIUM, signal or "Score increased"))
    if delta <= MAJOR_DECREASE_DELTA:
        drafts.append(AlertDraft(AlertType.MAJOR_DECREASE, Urgency.HIGH, signal or "Score decreased"))

    if trigger_event is not None:
        labels = {str(trigger_event.category).lower()}
        if trigger_event.signal_type:
            labels.add(trigger_event.signal_type.strip().lower())
        if labels & set(red_flag_triggers):
            drafts.append(AlertDraft(AlertType.RED_FLAG, Urgency.HIGH, trigger_event.signal))

    for milestone in MILESTONES:
        if _crossed(previous, new, milestone):
            drafts.append(AlertDraft(
                AlertType.MILESTONE, Urgency.MEDIUM, f"Score crossed {milestone} threshold",
            ))
    return drafts


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------


@dataclass
class HistoryDay:
    date: date
    score: int
    events: int


def reconstruct_history(
    events: Sequence[EventLike],
    bases: ScoreBreakdown | None,
    anchor: float | None,
    now: datetime,
    days: int,
) -> list[HistoryDay]:
    """Replay the whole log as of the end of each day in ``[now - days, now]``.

    Only days with at least one event are reported, plus the first day of the
    window so the series is never empty.  Today is evaluated as of *now*, which
    keeps its point identical to a live recalculation.
    """
    now = as_utc(now)
    ordered = sorted(events, key=lambda e: as_utc(e.timestamp))
    stamps = [as_utc(e.timestamp) for e in ordered]
    per_day = Counter(ts.date() for ts in stamps)

    first_day = (now - timedelta(days=days)).date()
    last_day = now.date()
    points: list[HistoryDay] = []
    day = first_day
    while day <= last_day:
        if per_day[day] or day == first_day:
            as_of = min(datetime.combine(day, time.max, tzinfo=UTC), now)
            visible = ordered[:bisect_right(stamps, as_of)]
            breakdown = fold_events(visible, bases, as_of)
            points.append(HistoryDay(day, compute_score(breakdown, anchor), per_day[day]))
        day += timedelta(days=1)
    return points

