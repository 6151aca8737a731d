from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Generator

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from dealflow import services
from dealflow.db import init_db, session_generator
from dealflow.models import AnalyzedBy, ScoreCategory, ScoreEventSource, Startup
from dealflow.schemas import (
    AlertOut,
    BatchAppendResult,
    EventPage,
    HistoryPoint,
    ManualEventCreate,
    RecalculationOut,
    ScoreBreakdown,
    ScoreEventInput,
    ScoreEventOut,
    StartupCreate,
    StartupScoreOut,
)
from dealflow.services import ScoringService, StartupNotFound

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(
    title="Dealflow",
    version="0.1.0",
    description=(
        "Investibility scoring API for venture deal flow. "
        "Append confidence-weighted observations about a startup and read back "
        "its bounded score, category breakdown, trend, history and alerts. "
        "All endpoints return JSON. No authentication required."
    ),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Startups", "description": "Register startups and read their current score."},
        {"name": "Events", "description": "Append and browse the score event log."},
        {"name": "History", "description": "Day-by-day score replay for charting."},
        {"name": "Alerts", "description": "Threshold-crossing alerts raised by recalculation."},
        {"name": "Admin", "description": "Recalculation and cache repair."},
    ],
)


# ---------------------------------------------------------------------------
# Dependencies & Helpers
# ---------------------------------------------------------------------------


def db_session() -> Generator[Session, None, None]:
    yield from session_generator()


@app.exception_handler(StartupNotFound)
async def startup_not_found(request: Request, exc: StartupNotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


# ---------------------------------------------------------------------------
# Routes: Startups
# ---------------------------------------------------------------------------


@app.post("/api/startups", response_model=StartupScoreOut, status_code=201,
          tags=["Startups"], summary="Register a startup, optionally with a fixed base score")
async def create_startup(body: StartupCreate, session: Session = Depends(db_session)):
    startup = Startup(
        name=body.name, organization_id=body.organization_id, base_score=body.base_score,
    )
    session.add(startup)
    session.commit()
    session.refresh(startup)
    return services.startup_score(startup)


@app.get("/api/startups/{startup_id}/score", response_model=StartupScoreOut,
         tags=["Startups"], summary="Get the cached score, breakdown and trend")
async def get_score(startup_id: int, session: Session = Depends(db_session)):
    startup = session.get(Startup, startup_id)
    if startup is None:
        raise HTTPException(404, f"Startup {startup_id} not found")
    return services.startup_score(startup)


@app.post("/api/startups/{startup_id}/base-score", response_model=StartupScoreOut,
          tags=["Startups"], summary="Seed category bases and anchor the score on their sum")
async def set_base_score(startup_id: int, body: ScoreBreakdown, session: Session = Depends(db_session)):
    startup = ScoringService(session).set_base_score(startup_id, body)
    session.commit()
    return services.startup_score(startup)


# ---------------------------------------------------------------------------
# Routes: Events (batch before parameterized to avoid route shadowing)
# ---------------------------------------------------------------------------


@app.post("/api/score-events/batch", response_model=BatchAppendResult,
          tags=["Events"], summary="Append events for any number of startups")
async def append_batch(body: list[ScoreEventInput], session: Session = Depends(db_session)):
    return ScoringService(session).append_events(body)


@app.get("/api/startups/{startup_id}/score-events", response_model=EventPage,
         tags=["Events"], summary="List score events, most recent first")
async def list_score_events(
    startup_id: int,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    category: ScoreCategory | None = Query(None, description="Restrict to one score category"),
    session: Session = Depends(db_session),
):
    return ScoringService(session).get_events(startup_id, limit=limit, offset=offset, category=category)


@app.post("/api/startups/{startup_id}/score-events", response_model=ScoreEventOut, status_code=201,
          tags=["Events"], summary="Add a manual score event and recalculate")
async def add_score_event(startup_id: int, body: ManualEventCreate, session: Session = Depends(db_session)):
    event = ScoringService(session).append_event(ScoreEventInput(
        startup_id=startup_id,
        source=ScoreEventSource.MANUAL,
        category=body.category,
        signal=body.signal,
        impact=body.impact,
        evidence=body.evidence,
        analyzed_by=AnalyzedBy.USER,
        user_id=body.user_id,
    ))
    session.commit()
    return services.event_dict(event)


# ---------------------------------------------------------------------------
# Routes: History
# ---------------------------------------------------------------------------


@app.get("/api/startups/{startup_id}/score-history", response_model=list[HistoryPoint],
         tags=["History"], summary="Reconstructed daily score over the last N days")
async def score_history(
    startup_id: int,
    days: int = Query(30, ge=1, le=365),
    session: Session = Depends(db_session),
):
    return [asdict(point) for point in ScoringService(session).get_history(startup_id, days)]


# ---------------------------------------------------------------------------
# Routes: Alerts
# ---------------------------------------------------------------------------


@app.get("/api/startups/{startup_id}/alerts", response_model=list[AlertOut],
         tags=["Alerts"], summary="List alerts for a startup, newest first")
async def list_alerts(
    startup_id: int,
    unread_only: bool = Query(False),
    session: Session = Depends(db_session),
):
    return ScoringService(session).get_alerts(startup_id, unread_only=unread_only)


@app.post("/api/alerts/{alert_id}/read", tags=["Alerts"], summary="Mark an alert as read")
async def mark_alert_read(alert_id: int, session: Session = Depends(db_session)):
    if not ScoringService(session).mark_alert_read(alert_id):
        raise HTTPException(404, "Alert not found")
    session.commit()
    return {"ok": True}


# ---------------------------------------------------------------------------
# Routes: Admin
# ---------------------------------------------------------------------------


@app.post("/api/startups/{startup_id}/recalculate", response_model=RecalculationOut,
          tags=["Admin"], summary="Replay the event log and refresh the cached score")
async def recalculate(startup_id: int, session: Session = Depends(db_session)):
    result = ScoringService(session).recalculate(startup_id)
    session.commit()
    return result


@app.post("/api/reconcile", tags=["Admin"], summary="Rebuild every cached score from its event log")
async def reconcile(session: Session = Depends(db_session)):
    result = ScoringService(session).reconcile_all()
    session.commit()
    return result


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def main():
    import uvicorn
    uvicorn.run("dealflow.app:app", host="127.0.0.1", port=8001, reload=True)


if __name__ == "__main__":
    main()
