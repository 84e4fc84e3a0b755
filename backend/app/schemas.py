"""Pydantic schemas for request/response validation."""
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field

from .debrief import parse_debrief
from .scenarios import Action, Rhythm


class ScenarioResponse(BaseModel):
    """Mission card shown on the selection screen."""
    id: int
    title: str
    patient: str
    history: str
    start_rhythm: Rhythm
    algorithm: str
    focus: str
    clue: str
    min_cycles: int
    required_meds: List[str]
    correct_causes: List[str]


class ReversibleCauseResponse(BaseModel):
    """One of the H's and T's."""
    id: str
    label: str
    hint: str


class LaunchRequest(BaseModel):
    """Start a new code for a player."""
    player_id: str
    scenario_id: int = 1
    tutorial: bool = False
    briefing: bool = False  # open the briefing screen instead of starting the clock


class ActionRequest(BaseModel):
    action: Action


class RhythmGuessRequest(BaseModel):
    guess: Rhythm


class LogEntryResponse(BaseModel):
    id: str
    text: str
    type: Literal["info", "action", "alert", "success", "system", "hint"]
    time: str


class SessionStateResponse(BaseModel):
    """Full engine snapshot for one live session."""
    session_id: str
    player_id: str
    scenario_id: int
    scenario_title: str
    phase: str
    training_mode: bool
    tutorial_step_index: int
    expected_action: Optional[Action] = None
    rhythm: Rhythm
    pulse_present: bool
    viability: float = Field(..., ge=0, le=100)
    energy_charged: int
    is_shocking: bool
    pads_attached: bool
    airway_status: Literal["none", "bvm", "advanced"]
    access_established: bool
    current_cycle: int
    cycle_timer: int
    medication_history: Dict[str, List[int]]
    shocks_this_cycle: int
    total_shocks: int
    stats: Dict[str, int]
    rosc_heart_rate: Optional[int] = None
    celebrate: bool
    debrief_status: Literal["idle", "loading", "ready", "failed"]
    log: List[LogEntryResponse]


class ActionResponse(BaseModel):
    """Result of pressing an action button."""
    accepted: bool
    state: SessionStateResponse


class DebriefBlock(BaseModel):
    kind: Literal["heading", "item", "paragraph"]
    text: str


class DebriefResponse(BaseModel):
    status: Literal["idle", "loading", "ready", "failed"]
    text: Optional[str] = None
    blocks: List[DebriefBlock] = []


class RunSummaryResponse(BaseModel):
    """Response schema for a finalized simulation run."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    run_id: str
    player_id: str
    scenario_id: int
    scenario_title: str
    tutorial: bool
    outcome: str
    cycles: int
    shocks: int
    epi: int
    amio: int
    lidocaine: int
    errors: int
    final_viability: float
    rosc_heart_rate: Optional[int] = None
    score: float
    debrief_text: Optional[str] = None
    created_ts_utc: str

    @computed_field
    @property
    def debrief_blocks(self) -> List[DebriefBlock]:
        if not self.debrief_text:
            return []
        return [DebriefBlock(**block) for block in parse_debrief(self.debrief_text)]


class ChatMessage(BaseModel):
    role: Literal["user", "model", "assistant"]
    text: str


class ChatRequest(BaseModel):
    """Conversation so far; the last message is the current question."""
    messages: Optional[List[ChatMessage]] = None


class ExplainRequest(BaseModel):
    mnemonic: str
    meaning: str
    category: str = "General"


class TextResponse(BaseModel):
    text: str
