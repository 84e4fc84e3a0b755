"""FastAPI application for the ACLS code simulator."""
import json
import logging
import os
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import FastAPI, Depends, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from .db import ensure_schema, get_db
from .debrief import parse_debrief
from .engine import SessionStateError
from .generative import GenerativeClient, get_generative_client
from .metrics import compute_run_metrics
from .models import SimulationRun
from .registry import LiveSession, SessionRegistry, UnknownSessionError, get_registry
from .scenarios import H_AND_TS, SCENARIOS, TUTORIAL_SCENARIO, get_scenario
from .schemas import (
    ActionRequest,
    ActionResponse,
    ChatRequest,
    DebriefResponse,
    ExplainRequest,
    LaunchRequest,
    ReversibleCauseResponse,
    RhythmGuessRequest,
    RunSummaryResponse,
    ScenarioResponse,
    SessionStateResponse,
    TextResponse,
)
from .settings import CHAT_MODEL, EXPLAIN_MODEL
from .tutor import (
    CHAT_SYSTEM_INSTRUCTION,
    EXPLAIN_SYSTEM_INSTRUCTION,
    TUTOR_TEMPERATURE,
    build_chat_prompt,
    build_explain_prompt,
)

logger = logging.getLogger(__name__)

# Create or verify tables on startup
ensure_schema()

app = FastAPI(title="ACLS Code Simulator API", version="0.1.0")

# CORS configuration
_allowed_origins_env = os.getenv("ALLOWED_ORIGINS")
if _allowed_origins_env:
    allowed_origins = [origin.strip() for origin in _allowed_origins_env.split(",")]
else:
    allowed_origins = ["http://localhost:8501"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _state(live: LiveSession) -> SessionStateResponse:
    return SessionStateResponse(
        session_id=live.session_id,
        player_id=live.player_id,
        **live.engine.snapshot(),
    )


def _missing_session(session_id: str) -> HTTPException:
    return HTTPException(status_code=404, detail=f"No live session {session_id!r}")


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/scenarios", response_model=List[ScenarioResponse])
def list_scenarios():
    """Mission catalogue for the selection screen (tutorial excluded)."""
    return [
        ScenarioResponse(
            id=s.id,
            title=s.title,
            patient=s.patient,
            history=s.history,
            start_rhythm=s.start_rhythm,
            algorithm=s.algorithm,
            focus=s.focus,
            clue=s.clue,
            min_cycles=s.min_cycles,
            required_meds=[m.value for m in s.required_meds],
            correct_causes=list(s.correct_causes),
        )
        for s in SCENARIOS
    ]


@app.get("/reversible-causes", response_model=List[ReversibleCauseResponse])
def list_reversible_causes():
    """The H's and T's checklist offered during PEA and asystole."""
    return [ReversibleCauseResponse(id=c.id, label=c.label, hint=c.hint) for c in H_AND_TS]


# Simulator Endpoints

@app.post("/sessions", response_model=SessionStateResponse)
def create_session(body: LaunchRequest, registry: SessionRegistry = Depends(get_registry)):
    """Launch a mission, the guided tutorial, or a mission briefing."""
    if body.tutorial:
        scenario = TUTORIAL_SCENARIO
    else:
        try:
            scenario = get_scenario(body.scenario_id)
        except KeyError:
            raise HTTPException(status_code=404, detail=f"Unknown scenario {body.scenario_id}")

    live = registry.create(
        body.player_id,
        scenario,
        tutorial=scenario.is_tutorial,
        briefing=body.briefing,
    )
    return _state(live)


@app.get("/sessions/{session_id}", response_model=SessionStateResponse)
def get_session(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    """Current state, with timers run up to now."""
    try:
        with registry.locked(session_id) as live:
            return _state(live)
    except UnknownSessionError:
        raise _missing_session(session_id)


@app.post("/sessions/{session_id}/start", response_model=SessionStateResponse)
def start_session(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    """Launch (or relaunch) the session's scenario from a clean state."""
    try:
        with registry.locked(session_id) as live:
            engine = live.engine
            engine.launch(engine.session.scenario, is_tutorial=live.tutorial)
            return _state(live)
    except UnknownSessionError:
        raise _missing_session(session_id)


@app.post("/sessions/{session_id}/actions", response_model=ActionResponse)
def perform_action(
    session_id: str,
    body: ActionRequest,
    registry: SessionRegistry = Depends(get_registry),
):
    """Press an action button. Rejected actions still return 200 with accepted=false."""
    try:
        with registry.locked(session_id) as live:
            try:
                accepted = live.engine.perform(body.action)
            except SessionStateError as e:
                raise HTTPException(status_code=409, detail=str(e))
            return ActionResponse(accepted=accepted, state=_state(live))
    except UnknownSessionError:
        raise _missing_session(session_id)


@app.post("/sessions/{session_id}/rhythm-check", response_model=SessionStateResponse)
def submit_rhythm_check(
    session_id: str,
    body: RhythmGuessRequest,
    registry: SessionRegistry = Depends(get_registry),
):
    """Answer the open rhythm check."""
    try:
        with registry.locked(session_id) as live:
            try:
                live.engine.submit_rhythm_guess(body.guess)
            except SessionStateError as e:
                raise HTTPException(status_code=409, detail=str(e))
            return _state(live)
    except UnknownSessionError:
        raise _missing_session(session_id)


@app.post("/sessions/{session_id}/reset", response_model=SessionStateResponse)
def reset_session(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    """Return to mission select; any in-flight debrief is abandoned."""
    try:
        with registry.locked(session_id) as live:
            live.engine.return_to_mission_select()
            return _state(live)
    except UnknownSessionError:
        raise _missing_session(session_id)


@app.get("/sessions/{session_id}/debrief", response_model=DebriefResponse)
def get_debrief(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    """Debrief status, raw text, and display blocks once available."""
    try:
        with registry.locked(session_id) as live:
            status = live.engine.session.debrief_status
            text = live.engine.session.debrief_text
    except UnknownSessionError:
        raise _missing_session(session_id)

    return DebriefResponse(
        status=status,
        text=text,
        blocks=parse_debrief(text) if text else [],
    )


@app.post("/sessions/{session_id}/finalize", response_model=RunSummaryResponse)
def finalize_session(
    session_id: str,
    db: Session = Depends(get_db),
    registry: SessionRegistry = Depends(get_registry),
):
    """Compute and store the run summary for a finished code.

    Each launch of a session is its own run; finalizing the same launch
    again returns the stored row.
    """
    try:
        with registry.locked(session_id) as live:
            if not live.engine.is_terminal:
                raise HTTPException(status_code=409, detail="Code is still in progress")
            if live.engine.session.debrief_status == "loading":
                raise HTTPException(status_code=409, detail="Debrief is still being generated")
            run_id = f"{session_id}-{live.engine.session.generation}"
            snapshot = live.engine.snapshot()
            debrief_text = live.engine.session.debrief_text
            player_id = live.player_id
            tutorial = live.tutorial
    except UnknownSessionError:
        raise _missing_session(session_id)

    # Check if already finalized
    existing = db.query(SimulationRun).filter(SimulationRun.run_id == run_id).first()
    if existing:
        return existing

    metrics = compute_run_metrics(snapshot)

    run = SimulationRun(
        run_id=run_id,
        player_id=player_id,
        scenario_id=snapshot["scenario_id"],
        scenario_title=snapshot["scenario_title"],
        tutorial=tutorial,
        outcome=metrics["outcome"],
        cycles=metrics["cycles"],
        shocks=metrics["shocks"],
        epi=metrics["epi"],
        amio=metrics["amio"],
        lidocaine=metrics["lidocaine"],
        errors=metrics["errors"],
        final_viability=metrics["final_viability"],
        rosc_heart_rate=metrics["rosc_heart_rate"],
        score=metrics["score"],
        debrief_text=debrief_text,
        log_json=json.dumps(snapshot["log"]),
        created_ts_utc=datetime.now(timezone.utc).isoformat(),
    )
    db.add(run)
    db.commit()
    db.refresh(run)
    logger.info("Finalized run %s (%s, score %.1f)", run_id, run.outcome, run.score)
    return run


@app.get("/players/{player_id}/runs", response_model=List[RunSummaryResponse])
def get_player_runs(player_id: str, db: Session = Depends(get_db)):
    """Get all finalized runs for a player, ordered by created_ts_utc."""
    runs = (
        db.query(SimulationRun)
        .filter(SimulationRun.player_id == player_id)
        .order_by(SimulationRun.created_ts_utc)
        .all()
    )
    return runs


# Tutor Endpoints

@app.post("/api/chat", response_model=TextResponse)
def chat(body: ChatRequest, client: Optional[GenerativeClient] = Depends(get_generative_client)):
    """One Socratic instructor reply for the conversation so far."""
    if client is None:
        raise HTTPException(status_code=500, detail="Server misconfiguration: API Key missing.")

    messages = body.messages
    logger.info("Received chat request with %d messages", len(messages or []))
    if not messages:
        raise HTTPException(status_code=400, detail='Invalid request body. "messages" array required.')

    prompt = build_chat_prompt(messages)
    try:
        text = client.generate(
            prompt,
            model=CHAT_MODEL,
            system_instruction=CHAT_SYSTEM_INSTRUCTION,
            temperature=TUTOR_TEMPERATURE,
        )
    except Exception as e:
        logger.exception("Chat generation failed")
        raise HTTPException(
            status_code=500,
            detail={
                "error": str(e) or "An unexpected error occurred processing your request.",
                "details": repr(e),
            },
        )
    return TextResponse(text=text)


@app.post("/api/explain", response_model=TextResponse)
def explain(body: ExplainRequest, client: Optional[GenerativeClient] = Depends(get_generative_client)):
    """Clinical deep dive on a mnemonic."""
    if client is None:
        raise HTTPException(status_code=500, detail="API Key missing")

    prompt = build_explain_prompt(body.mnemonic, body.meaning, body.category)
    try:
        text = client.generate(
            prompt,
            model=EXPLAIN_MODEL,
            system_instruction=EXPLAIN_SYSTEM_INSTRUCTION,
            temperature=TUTOR_TEMPERATURE,
        )
    except Exception as e:
        logger.exception("Explain generation failed")
        raise HTTPException(status_code=500, detail=str(e) or "Failed to generate explanation.")
    return TextResponse(text=text)
