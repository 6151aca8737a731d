"""Append-only event log and alert log over a SQLAlchemy session.

Neither store commits; the caller owns the unit of work.
"""
from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from dealflow.models import ScoreAlert, ScoreCategory, ScoreEvent


class EventStore:
    def __init__(self, session: Session):
        self.session = session

    def add(self, event: ScoreEvent) -> ScoreEvent:
        self.session.add(event)
        self.session.flush()
        return event

    def add_many(self, events: Sequence[ScoreEvent]) -> None:
        self.session.add_all(events)
        self.session.flush()

    def for_startup(
        self, startup_id: int, *, since: datetime | None = None, until: datetime | None = None,
    ) -> list[ScoreEvent]:
        """All events for a startup, oldest first, optionally bounded in time."""
        query = select(ScoreEvent).where(ScoreEvent.startup_id == startup_id)
        if since is not None:
            query = query.where(ScoreEvent.timestamp >= since)
        if until is not None:
            query = query.where(ScoreEvent.timestamp <= until)
        query = query.order_by(ScoreEvent.timestamp.asc(), ScoreEvent.id.asc())
        return list(self.session.execute(query).scalars().all())

    def page(
        self, startup_id: int, *, limit: int, offset: int = 0, category: ScoreCategory | None = None,
    ) -> tuple[list[ScoreEvent], int]:
        """Most-recent-first slice of the log plus the unsliced count."""
        conditions = [ScoreEvent.startup_id == startup_id]
        if category is not None:
            conditions.append(ScoreEvent.category == category.value)
        total = self.session.execute(
            select(func.count()).select_from(ScoreEvent).where(*conditions)
        ).scalar_one()
        rows = self.session.execute(
            select(ScoreEvent).where(*conditions)
            .order_by(ScoreEvent.timestamp.desc(), ScoreEvent.id.desc())
            .limit(limit).offset(offset)
        ).scalars().all()
        return list(rows), total


class AlertStore:
    def __init__(self, session: Session):
        self.session = session

    def add_many(self, alerts: Sequence[ScoreAlert]) -> None:
        if alerts:
            self.session.add_all(alerts)
            self.session.flush()

    def for_startup(self, startup_id: int, *, unread_only: bool = False) -> list[ScoreAlert]:
        query = select(ScoreAlert).where(ScoreAlert.startup_id == startup_id)
        if unread_only:
            query = query.where(ScoreAlert.read.is_(False))
        query = query.order_by(ScoreAlert.created_at.desc(), ScoreAlert.id.desc())
        return list(self.session.execute(query).scalars().all())

    def mark_read(self, alert_id: int) -> bool:
        result = self.session.execute(
            update(ScoreAlert).where(ScoreAlert.id == alert_id).values(read=True)
        )
        return result.rowcount > 0
