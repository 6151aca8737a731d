from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict

from mcp.server.fastmcp import FastMCP
from pydantic import ValidationError

from dealflow import services
from dealflow.db import init_db, session_scope
from dealflow.models import AnalyzedBy, ScoreCategory, ScoreEventSource, Startup
from dealflow.schemas import ScoreEventInput
from dealflow.services import ScoringService, StartupNotFound

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def dealflow_lifespan(server: FastMCP) -> AsyncIterator[None]:
    init_db()
    yield


mcp = FastMCP(
    "Dealflow",
    instructions=(
        "Dealflow tracks an investibility score (0-100) per startup, derived from a log "
        "of confidence-weighted observations. Use get_score(id) for the current state, "
        "list_score_events(id) for the evidence behind it, and get_score_history(id) "
        "for the trend over time."
    ),
    lifespan=dealflow_lifespan,
    json_response=True,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _not_found(startup_id: int) -> dict:
    return {"error": f"Startup {startup_id} not found"}


def _jsonable(payload: dict) -> dict:
    return json.loads(json.dumps(payload, default=str))


# ---------------------------------------------------------------------------
# Resource
# ---------------------------------------------------------------------------


@mcp.resource("dealflow://overview")
def dealflow_overview() -> str:
    """Overview of the scoring model: categories, decay, alerts."""
    return json.dumps({
        "system": "Dealflow: event-sourced investibility scoring",
        "score": "round(clamp(base + adjustments, 0, 100)); recomputed from the full event log.",
        "categories": [c.value for c in ScoreCategory],
        "sources": [s.value for s in ScoreEventSource],
        "event": "impact in [-10, 10], confidence in [0, 1]; out-of-range values are clamped.",
        "decay": {"<=7d": 1.0, "<=30d": 0.9, "<=60d": 0.75, "<=90d": 0.6, ">90d": 0.5},
        "alerts": {
            "major_increase": "score rose by 5 or more (medium)",
            "major_decrease": "score fell by 5 or more (high)",
            "red_flag": "triggering event carries a configured red-flag label (high)",
            "milestone": "score crossed 90, 80, 70 or 50 in either direction (medium)",
        },
    }, indent=2)


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


@mcp.tool()
def get_score(startup_id: int) -> dict:
    """Get a startup's cached score, category breakdown and 30-day trend."""
    with session_scope() as session:
        startup = session.get(Startup, startup_id)
        if startup is None:
            return _not_found(startup_id)
        data = services.startup_score(startup)
        if data["score_breakdown"] is not None:
            data["score_breakdown"] = data["score_breakdown"].model_dump()
        return _jsonable(data)


@mcp.tool()
def list_score_events(
    startup_id: int, category: str | None = None, limit: int = 50, offset: int = 0,
) -> dict:
    """List score events for a startup, most recent first.

    Args:
        startup_id: The startup to inspect.
        category: Optional filter, one of: team, market, product, traction, deal,
                  communication, momentum, red_flag.
        limit: Max results (default 50, max 100).
        offset: Number of events to skip.
    """
    try:
        cat = ScoreCategory(category) if category else None
    except ValueError:
        return {"error": f"Unknown category '{category}'"}
    with session_scope() as session:
        try:
            page = ScoringService(session).get_events(
                startup_id, limit=max(1, min(limit, 100)), offset=max(0, offset), category=cat,
            )
        except StartupNotFound:
            return _not_found(startup_id)
        return _jsonable(page)


@mcp.tool()
def get_score_history(startup_id: int, days: int = 30) -> list[dict] | dict:
    """Daily reconstructed score for the last N days (only days with events, plus the first)."""
    with session_scope() as session:
        try:
            points = ScoringService(session).get_history(startup_id, days)
        except StartupNotFound:
            return _not_found(startup_id)
        return [_jsonable(asdict(p)) for p in points]


@mcp.tool()
def list_alerts(startup_id: int, unread_only: bool = False) -> list[dict] | dict:
    """List alerts raised by score recalculations for a startup, newest first."""
    with session_scope() as session:
        try:
            alerts = ScoringService(session).get_alerts(startup_id, unread_only=unread_only)
        except StartupNotFound:
            return _not_found(startup_id)
        return [_jsonable(a) for a in alerts]


@mcp.tool()
def add_score_event(
    startup_id: int, category: str, signal: str, impact: float,
    confidence: float = 1.0, evidence: str | None = None,
) -> dict:
    """Record a manual observation about a startup and recalculate its score.

    Args:
        startup_id: The startup the observation concerns.
        category: team, market, product, traction, deal, communication, momentum or red_flag.
        signal: Short human-readable label, e.g. "Strength: strong retention".
        impact: Signed magnitude in [-10, 10] (clamped).
        confidence: Certainty in [0, 1] (clamped).
        evidence: Optional justification.
    """
    try:
        data = ScoreEventInput(
            startup_id=startup_id, source=ScoreEventSource.MANUAL, category=category,
            signal=signal, impact=impact, confidence=confidence, evidence=evidence,
            analyzed_by=AnalyzedBy.USER,
        )
    except ValidationError as exc:
        return {"error": str(exc)}
    with session_scope() as session:
        try:
            event = ScoringService(session).append_event(data)
            session.commit()
        except StartupNotFound:
            session.rollback()
            return _not_found(startup_id)
        log.info("Manual event %s recorded for startup %s via MCP", event.id, startup_id)
        startup = session.get(Startup, startup_id)
        return _jsonable({
            "event": services.event_dict(event),
            "current_score": startup.current_score,
            "score_trend": startup.score_trend,
        })


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main():
    """Run the Dealflow MCP server over stdio."""
    mcp.run()


if __name__ == "__main__":
    main()
