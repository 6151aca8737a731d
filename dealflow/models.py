from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# Closed vocabularies
# ---------------------------------------------------------------------------


class ScoreCategory(StrEnum):
    TEAM = "team"
    MARKET = "market"
    PRODUCT = "product"
    TRACTION = "traction"
    DEAL = "deal"
    COMMUNICATION = "communication"
    MOMENTUM = "momentum"
    RED_FLAG = "red_flag"


class ScoreEventSource(StrEnum):
    DECK = "deck"
    EMAIL = "email"
    MEETING = "meeting"
    RESEARCH = "research"
    MANUAL = "manual"
    SYSTEM = "system"


class AnalyzedBy(StrEnum):
    AI = "ai"
    USER = "user"


class ScoreTrend(StrEnum):
    UP = "up"
    DOWN = "down"
    STABLE = "stable"


class AlertType(StrEnum):
    MAJOR_INCREASE = "major_increase"
    MAJOR_DECREASE = "major_decrease"
    RED_FLAG = "red_flag"
    MILESTONE = "milestone"


class Urgency(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


def _utcnow() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Tables
# ---------------------------------------------------------------------------


class Startup(Base):
    __tablename__ = "startups"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    organization_id: Mapped[str] = mapped_column(String(100), default="")
    base_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    current_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    score_breakdown_json: Mapped[str] = mapped_column(Text, default="")
    score_trend: Mapped[str] = mapped_column(String(10), default=ScoreTrend.STABLE.value)
    score_trend_delta: Mapped[float] = mapped_column(Float, default=0.0)
    score_updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    events: Mapped[list[ScoreEvent]] = relationship(
        "ScoreEvent", back_populates="startup", cascade="all, delete-orphan",
    )
    alerts: Mapped[list[ScoreAlert]] = relationship(
        "ScoreAlert", back_populates="startup", cascade="all, delete-orphan",
    )


class ScoreEvent(Base):
    """Immutable observation about a startup. Rows are only ever inserted."""

    __tablename__ = "score_events"
    __table_args__ = (Index("ix_score_events_startup_timestamp", "startup_id", "timestamp"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    startup_id: Mapped[int] = mapped_column(Integer, ForeignKey("startups.id"), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    source: Mapped[str] = mapped_column(String(20), nullable=False)  # ScoreEventSource
    source_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    category: Mapped[str] = mapped_column(String(20), nullable=False)  # ScoreCategory
    signal_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    signal: Mapped[str] = mapped_column(Text, nullable=False)
    impact: Mapped[float] = mapped_column(Float, nullable=False)
    confidence: Mapped[float] = mapped_column(Float, default=1.0)
    evidence: Mapped[str | None] = mapped_column(Text, nullable=True)
    analyzed_by: Mapped[str] = mapped_column(String(10), default=AnalyzedBy.AI.value)
    user_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    startup: Mapped[Startup] = relationship("Startup", back_populates="events")


class ScoreAlert(Base):
    __tablename__ = "score_alerts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    startup_id: Mapped[int] = mapped_column(Integer, ForeignKey("startups.id"), nullable=False)
    organization_id: Mapped[str] = mapped_column(String(100), default="")
    type: Mapped[str] = mapped_column(String(20), nullable=False)  # AlertType
    previous_score: Mapped[int] = mapped_column(Integer, nullable=False)
    new_score: Mapped[int] = mapped_column(Integer, nullable=False)
    trigger: Mapped[str] = mapped_column(Text, default="")
    urgency: Mapped[str] = mapped_column(String(10), nullable=False)  # Urgency
    read: Mapped[bool] = mapped_column(default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    startup: Mapped[Startup] = relationship("Startup", back_populates="alerts")
