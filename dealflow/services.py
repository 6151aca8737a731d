"""Scoring service shared by the HTTP API and the MCP server.

Every event append triggers a synchronous full replay of the startup's log;
the stored score, breakdown and trend are a cache of that replay.
"""
from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from dealflow import scorer
from dealflow.config import Settings, get_settings
from dealflow.models import (
    AnalyzedBy, ScoreAlert, ScoreCategory, ScoreEvent, ScoreEventSource, Startup,
)
from dealflow.schemas import BatchAppendResult, ScoreBreakdown, ScoreEventInput, clamp
from dealflow.store import AlertStore, EventStore

log = logging.getLogger(__name__)


class ScoringError(Exception):
    """Base class for scoring engine failures."""


class StartupNotFound(ScoringError):
    def __init__(self, startup_id: int):
        super().__init__(f"Startup {startup_id} not found")
        self.startup_id = startup_id


# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def load_breakdown(startup: Startup) -> ScoreBreakdown | None:
    try:
        data = json.loads(startup.score_breakdown_json or "")
    except (json.JSONDecodeError, TypeError):
        return None
    if not data:
        return None
    return ScoreBreakdown.model_validate(data)


def dump_breakdown(breakdown: ScoreBreakdown) -> str:
    return breakdown.model_dump_json()


def event_dict(event: ScoreEvent) -> dict[str, Any]:
    return {
        "id": event.id, "startup_id": event.startup_id,
        "timestamp": scorer.as_utc(event.timestamp),
        "source": event.source, "source_id": event.source_id,
        "category": event.category, "signal_type": event.signal_type,
        "signal": event.signal, "impact": event.impact, "confidence": event.confidence,
        "evidence": event.evidence, "analyzed_by": event.analyzed_by, "user_id": event.user_id,
        "created_at": scorer.as_utc(event.created_at) if event.created_at else None,
    }


def alert_dict(alert: ScoreAlert) -> dict[str, Any]:
    return {
        "id": alert.id, "startup_id": alert.startup_id,
        "organization_id": alert.organization_id, "type": alert.type,
        "previous_score": alert.previous_score, "new_score": alert.new_score,
        "trigger": alert.trigger, "urgency": alert.urgency, "read": alert.read,
        "created_at": scorer.as_utc(alert.created_at) if alert.created_at else None,
    }


def startup_score(startup: Startup) -> dict[str, Any]:
    return {
        "id": startup.id, "name": startup.name, "organization_id": startup.organization_id,
        "base_score": startup.base_score, "current_score": startup.current_score,
        "score_breakdown": load_breakdown(startup),
        "score_trend": startup.score_trend, "score_trend_delta": startup.score_trend_delta,
        "score_updated_at": scorer.as_utc(startup.score_updated_at) if startup.score_updated_at else None,
    }


def _to_row(data: ScoreEventInput, now: datetime) -> ScoreEvent:
    return ScoreEvent(
        startup_id=data.startup_id,
        timestamp=scorer.as_utc(data.timestamp or now),
        source=data.source.value,
        source_id=data.source_id,
        category=data.category.value,
        signal_type=data.signal_type,
        signal=data.signal,
        impact=data.impact,
        confidence=data.confidence,
        evidence=data.evidence,
        analyzed_by=data.analyzed_by.value,
        user_id=data.user_id,
        created_at=now,
    )


def deck_events(
    startup_id: int, deck_id: str, strengths: Iterable[str], weaknesses: Iterable[str],
) -> list[ScoreEventInput]:
    """Events a deck analysis contributes: mild momentum per strength, mild red flag per weakness."""
    events = [
        ScoreEventInput(
            startup_id=startup_id, source=ScoreEventSource.DECK, source_id=deck_id,
            category=ScoreCategory.MOMENTUM, signal=f"Strength: {s}",
            impact=1, confidence=0.8, evidence=s, analyzed_by=AnalyzedBy.AI,
        )
        for s in strengths
    ]
    events += [
        ScoreEventInput(
            startup_id=startup_id, source=ScoreEventSource.DECK, source_id=deck_id,
            category=ScoreCategory.RED_FLAG, signal=f"Weakness: {w}",
            impact=-0.5, confidence=0.8, evidence=w, analyzed_by=AnalyzedBy.AI,
        )
        for w in weaknesses
    ]
    return events


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class ScoringService:
    """Event-sourced investibility scoring over an injected session.

    Methods flush but never commit, except ``append_events`` which commits
    each startup's recalculation as its own unit of work.
    """

    def __init__(self, session: Session, settings: Settings | None = None):
        self.session = session
        self.settings = settings or get_settings()
        self.events = EventStore(session)
        self.alerts = AlertStore(session)

    def _startup(self, startup_id: int) -> Startup:
        startup = self.session.execute(
            select(Startup).where(Startup.id == startup_id)
        ).scalars().first()
        if startup is None:
            raise StartupNotFound(startup_id)
        return startup

    # -- inbound ------------------------------------------------------------

    def append_event(self, data: ScoreEventInput, *, now: datetime | None = None) -> ScoreEvent:
        """Store one event and recalculate its startup before returning."""
        now = scorer.as_utc(now or datetime.now(UTC))
        self._startup(data.startup_id)
        event = self.events.add(_to_row(data, now))
        self.recalculate(data.startup_id, trigger=event, now=now)
        return event

    def append_events(
        self, batch: Sequence[ScoreEventInput], *, now: datetime | None = None,
    ) -> BatchAppendResult:
        """Store a batch, then recalculate once per distinct startup.

        Events for unknown startups are not stored. The remaining events are
        committed first, then each startup's recalculation is committed on its
        own; a failure is rolled back, logged and reported in ``failures``
        (keyed by startup id) without stopping the rest.
        """
        if not batch:
            return BatchAppendResult(appended=0)
        now = scorer.as_utc(now or datetime.now(UTC))

        failures: dict[int, str] = {}
        requested = {data.startup_id for data in batch}
        known = set(self.session.execute(
            select(Startup.id).where(Startup.id.in_(requested))
        ).scalars().all())
        for startup_id in sorted(requested - known):
            log.warning("Skipping batch events for unknown startup %s", startup_id)
            failures[startup_id] = str(StartupNotFound(startup_id))

        rows = [_to_row(data, now) for data in batch if data.startup_id in known]
        if rows:
            self.events.add_many(rows)
            self.session.commit()

        triggers: dict[int, ScoreEvent] = {}
        for row in rows:
            current = triggers.get(row.startup_id)
            if current is None or scorer.as_utc(row.timestamp) >= scorer.as_utc(current.timestamp):
                triggers[row.startup_id] = row

        for startup_id, trigger in triggers.items():
            try:
                self.recalculate(startup_id, trigger=trigger, now=now)
                self.session.commit()
            except Exception as exc:
                self.session.rollback()
                log.warning("Recalculation failed for startup %s: %s", startup_id, exc)
                failures[startup_id] = str(exc)
        return BatchAppendResult(appended=len(rows), failures=failures)

    def set_base_score(
        self, startup_id: int, breakdown: ScoreBreakdown, *, now: datetime | None = None,
    ) -> Startup:
        """Seed category bases (typically after deck analysis) and anchor the score on them."""
        now = scorer.as_utc(now or datetime.now(UTC))
        startup = self._startup(startup_id)
        seeded = breakdown.with_bases_only()
        startup.base_score = seeded.base_total
        startup.current_score = scorer.round_half_up(
            clamp(seeded.base_total, scorer.SCORE_MIN, scorer.SCORE_MAX)
        )
        startup.score_breakdown_json = dump_breakdown(seeded)
        startup.score_updated_at = now
        self.session.flush()
        log.info("Base score for startup %s set to %s", startup_id, startup.base_score)
        return startup

    # -- recalculation ------------------------------------------------------

    def recalculate(
        self, startup_id: int, *, trigger: ScoreEvent | None = None, now: datetime | None = None,
    ) -> dict[str, Any]:
        """Replay the full log, store the derived score, breakdown and trend, raise alerts.

        Alerts need a previously stored score. Without a *trigger* (reconcile,
        manual recalculation) only score movement can raise them, so a
        recalculation that leaves the score unchanged raises nothing.
        """
        now = scorer.as_utc(now or datetime.now(UTC))
        startup = self._startup(startup_id)
        log_events = self.events.for_startup(startup_id)
        recent = self.events.for_startup(
            startup_id, since=now - timedelta(days=scorer.TREND_WINDOW_DAYS), until=now,
        )

        breakdown = scorer.fold_events(log_events, load_breakdown(startup), now)
        current = scorer.compute_score(breakdown, startup.base_score)
        trend, delta = scorer.compute_trend(recent, now)

        previous = startup.current_score
        startup.current_score = current
        startup.score_breakdown_json = dump_breakdown(breakdown)
        startup.score_trend = trend.value
        startup.score_trend_delta = delta
        startup.score_updated_at = now

        if previous is not None and (trigger is not None or current != previous):
            self._raise_alerts(startup, previous, current, trigger)

        self.session.flush()
        log.info("Startup %s scored %s (was %s, trend %s %+.1f)",
                 startup_id, current, previous, trend.value, delta)
        return {"current_score": current, "breakdown": breakdown, "trend": trend, "trend_delta": delta}

    def _raise_alerts(
        self, startup: Startup, previous: int, current: int, trigger: ScoreEvent | None,
    ) -> list[ScoreAlert]:
        drafts = scorer.evaluate_alerts(previous, current, trigger, self.settings.red_flag_triggers)
        alerts = [
            ScoreAlert(
                startup_id=startup.id, organization_id=startup.organization_id,
                type=d.type.value, previous_score=previous, new_score=current,
                trigger=d.trigger, urgency=d.urgency.value,
            )
            for d in drafts
        ]
        self.alerts.add_many(alerts)
        if alerts:
            log.info("Raised %d alert(s) for startup %s: %s",
                     len(alerts), startup.id, ", ".join(a.type for a in alerts))
        return alerts

    def reconcile_all(self, *, now: datetime | None = None) -> dict[str, int]:
        """Rebuild every cached score from its log (repair job for stale caches)."""
        now = scorer.as_utc(now or datetime.now(UTC))
        ids = self.session.execute(select(Startup.id)).scalars().all()
        changed = 0
        for startup_id in ids:
            before = self._startup(startup_id).current_score
            result = self.recalculate(startup_id, now=now)
            if result["current_score"] != before:
                changed += 1
        return {"startups": len(ids), "changed": changed}

    # -- queries ------------------------------------------------------------

    def get_history(
        self, startup_id: int, days: int = 30, *, now: datetime | None = None,
    ) -> list[scorer.HistoryDay]:
        now = scorer.as_utc(now or datetime.now(UTC))
        days = max(1, min(days, self.settings.history_max_days))
        startup = self._startup(startup_id)
        return scorer.reconstruct_history(
            self.events.for_startup(startup_id), load_breakdown(startup),
            startup.base_score, now, days,
        )

    def get_events(
        self, startup_id: int, *, limit: int | None = None, offset: int = 0,
        category: ScoreCategory | None = None,
    ) -> dict[str, Any]:
        self._startup(startup_id)
        rows, total = self.events.page(
            startup_id, limit=limit or self.settings.events_page_limit,
            offset=offset, category=category,
        )
        return {"events": [event_dict(e) for e in rows], "total": total}

    def get_alerts(self, startup_id: int, *, unread_only: bool = False) -> list[dict[str, Any]]:
        self._startup(startup_id)
        return [alert_dict(a) for a in self.alerts.for_startup(startup_id, unread_only=unread_only)]

    def mark_alert_read(self, alert_id: int) -> bool:
        return self.alerts.mark_read(alert_id)
