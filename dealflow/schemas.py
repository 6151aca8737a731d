"""Pydantic request/response schemas for the scoring engine and its API."""
from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from dealflow.models import (
    AlertType, AnalyzedBy, ScoreCategory, ScoreEventSource, ScoreTrend, Urgency,
)
from dealflow.signals import map_signal_type

log = logging.getLogger(__name__)

IMPACT_MIN, IMPACT_MAX = -10.0, 10.0
CONFIDENCE_MIN, CONFIDENCE_MAX = 0.0, 1.0


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


# ---------------------------------------------------------------------------
# Breakdown
# ---------------------------------------------------------------------------


class CategoryScore(BaseModel):
    base: float = 0.0
    adjusted: float = 0.0
    subcriteria: dict[str, float] = {}


class ScoreBreakdown(BaseModel):
    team: CategoryScore = Field(default_factory=CategoryScore)
    market: CategoryScore = Field(default_factory=CategoryScore)
    product: CategoryScore = Field(default_factory=CategoryScore)
    traction: CategoryScore = Field(default_factory=CategoryScore)
    deal: CategoryScore = Field(default_factory=CategoryScore)
    communication: float = 0.0
    momentum: float = 0.0
    red_flags: float = 0.0

    @classmethod
    def empty(cls) -> ScoreBreakdown:
        return cls()

    @property
    def base_total(self) -> float:
        return self.team.base + self.market.base + self.product.base + self.traction.base + self.deal.base

    @property
    def adjusted_total(self) -> float:
        return (
            self.team.adjusted + self.market.adjusted + self.product.adjusted
            + self.traction.adjusted + self.deal.adjusted
        )

    def with_bases_only(self) -> ScoreBreakdown:
        """Copy keeping bases and subcriteria; every derived figure reset to zero."""
        fresh = {
            name: CategoryScore(base=cat.base, adjusted=0.0, subcriteria=dict(cat.subcriteria))
            for name, cat in self.category_items()
        }
        return ScoreBreakdown(**fresh)

    def category_items(self) -> list[tuple[str, CategoryScore]]:
        return [
            ("team", self.team), ("market", self.market), ("product", self.product),
            ("traction", self.traction), ("deal", self.deal),
        ]


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class ScoreEventInput(BaseModel):
    """An observation as submitted by a caller, before it is stored.

    ``impact`` and ``confidence`` are clamped into range instead of rejected so
    that a miscalibrated upstream analyser never blocks an update.
    """
    startup_id: int
    source: ScoreEventSource
    source_id: str | None = None
    category: ScoreCategory
    signal_type: str | None = None
    signal: str
    impact: float
    confidence: float = 1.0
    evidence: str | None = None
    analyzed_by: AnalyzedBy = AnalyzedBy.AI
    user_id: str | None = None
    timestamp: datetime | None = None

    @model_validator(mode="before")
    @classmethod
    def _category_from_signal_type(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("category") and data.get("signal_type"):
            data = {**data, "category": map_signal_type(data["signal_type"])}
        return data

    @field_validator("impact")
    @classmethod
    def _clamp_impact(cls, v: float) -> float:
        clamped = clamp(v, IMPACT_MIN, IMPACT_MAX)
        if clamped != v:
            log.warning("Clamped impact %s to %s", v, clamped)
        return clamped

    @field_validator("confidence")
    @classmethod
    def _clamp_confidence(cls, v: float) -> float:
        clamped = clamp(v, CONFIDENCE_MIN, CONFIDENCE_MAX)
        if clamped != v:
            log.warning("Clamped confidence %s to %s", v, clamped)
        return clamped


class ManualEventCreate(BaseModel):
    category: ScoreCategory
    signal: str = Field(min_length=1)
    impact: float
    evidence: str | None = None
    user_id: str | None = None


class ScoreEventOut(BaseModel):
    id: int
    startup_id: int
    timestamp: datetime
    source: str
    source_id: str | None = None
    category: str
    signal_type: str | None = None
    signal: str
    impact: float
    confidence: float
    evidence: str | None = None
    analyzed_by: str
    user_id: str | None = None
    created_at: datetime | None = None


class EventPage(BaseModel):
    events: list[ScoreEventOut]
    total: int


class BatchAppendResult(BaseModel):
    appended: int
    failures: dict[int, str] = {}


# ---------------------------------------------------------------------------
# Scores, history, alerts
# ---------------------------------------------------------------------------


class StartupCreate(BaseModel):
    name: str = Field(min_length=1)
    organization_id: str = ""
    base_score: float | None = None


class StartupScoreOut(BaseModel):
    id: int
    name: str
    organization_id: str
    base_score: float | None = None
    current_score: int | None = None
    score_breakdown: ScoreBreakdown | None = None
    score_trend: ScoreTrend = ScoreTrend.STABLE
    score_trend_delta: float = 0.0
    score_updated_at: datetime | None = None


class RecalculationOut(BaseModel):
    current_score: int
    breakdown: ScoreBreakdown
    trend: ScoreTrend
    trend_delta: float


class HistoryPoint(BaseModel):
    date: date
    score: int
    events: int


class AlertOut(BaseModel):
    id: int
    startup_id: int
    organization_id: str
    type: AlertType
    previous_score: int
    new_score: int
    trigger: str
    urgency: Urgency
    read: bool
    created_at: datetime | None = None
