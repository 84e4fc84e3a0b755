"""Resuscitation session engine.

One ``ResuscitationSessionEngine`` owns the state of a single training code:
phase transitions, protocol validation of every user action, the decaying
viability score, cycle and medication timing, and the display timeline.

The engine keeps its own virtual clock. Background behavior (viability
ticker, idle-hint detector, delayed effects such as shock delivery) runs
only inside ``advance()``/``advance_to()``, so every mutation happens on the
caller's thread and tests can drive time deterministically.
"""
import heapq
import itertools
import logging
import random
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from functools import partial
from typing import Callable, Dict, List, Optional, Tuple

from .debrief import DebriefRequest, DeliverFn
from .scenarios import (
    ANTIARRHYTHMIC_RHYTHMS,
    INTERCHANGEABLE_MEDS,
    MEDICATION_ACTIONS,
    NO_SHOCK_RHYTHMS,
    PEA_SCENARIO_ID,
    PULSELESS_VT_SCENARIO_ID,
    SCENARIOS,
    SHOCKABLE_RHYTHMS,
    TUTORIAL_STEPS,
    Action,
    Medication,
    Rhythm,
    Scenario,
)
from .settings import IDLE_CHECK_SECONDS, IDLE_THRESHOLD_SECONDS, VIABILITY_TICK_SECONDS

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    MISSION_SELECT = "mission_select"
    BRIEFING = "briefing"
    ASSESSMENT = "assessment"
    INTERVENTION = "intervention"
    CPR = "cpr"
    RHYTHM_CHECK = "rhythm_check"
    ROSC = "rosc"
    FAILED = "failed"


class LogType(str, Enum):
    INFO = "info"
    ACTION = "action"
    ALERT = "alert"
    SUCCESS = "success"
    SYSTEM = "system"
    HINT = "hint"


class AirwayStatus(str, Enum):
    NONE = "none"
    BVM = "bvm"
    ADVANCED = "advanced"


TERMINAL_PHASES = frozenset({Phase.ROSC, Phase.FAILED})
# Phases in which the user may press action buttons
ACTION_PHASES = frozenset({Phase.ASSESSMENT, Phase.INTERVENTION, Phase.CPR})
# Phases in which the viability ticker is paused
TICKER_PAUSED_PHASES = frozenset({
    Phase.MISSION_SELECT, Phase.BRIEFING, Phase.ROSC, Phase.FAILED, Phase.RHYTHM_CHECK,
})
IDLE_HINT_PAUSED_PHASES = frozenset({
    Phase.MISSION_SELECT, Phase.BRIEFING, Phase.ROSC, Phase.FAILED,
})

# Tutorial steps whose cursor advance waits for the rhythm-check answer
DEFERRED_TUTORIAL_ACTIONS = frozenset({Action.ANALYZE, Action.CYCLE})

VIABILITY_MIN = 0.0
VIABILITY_MAX = 100.0
CPR_GAIN = 0.4
BASELINE_DECAY = -0.1
UNTREATED_SHOCKABLE_DECAY = -0.3
TRAINING_VIABILITY_FLOOR = 20.0
ERROR_PENALTY = 5.0
MEDICATION_BONUS = 15.0
RHYTHM_ID_BONUS = 5.0
RHYTHM_ID_PENALTY = 10.0
ASYSTOLE_DEGRADE_THRESHOLD = 20.0

DEFIB_ENERGY_JOULES = 200
EPI_MIN_CYCLE_GAP = 2
ANTIARRHYTHMIC_MIN_SHOCKS = 3
ROSC_HEART_RATE_RANGE = (60, 100)

SHOCK_DELAY_SECONDS = 0.8
PULSE_CHECK_DELAY_SECONDS = 1.5

# (first dose, subsequent doses); display only
DOSE_LABELS: Dict[Medication, Tuple[str, str]] = {
    Medication.EPINEPHRINE: ("1mg", "1mg"),
    Medication.AMIODARONE: ("300mg", "150mg"),
    Medication.LIDOCAINE: ("1mg/kg", "0.5mg/kg"),
}

STAT_KEYS: Dict[Medication, str] = {
    Medication.EPINEPHRINE: "epi",
    Medication.AMIODARONE: "amio",
    Medication.LIDOCAINE: "lidocaine",
}

RequesterFn = Callable[[DebriefRequest, DeliverFn], None]


class SessionStateError(ValueError):
    """An operation was requested in a phase that cannot accept it."""


@dataclass
class LogEntry:
    id: str
    text: str
    type: LogType
    time: str


@dataclass
class CodeStats:
    cpr_cycles: int = 0
    shocks: int = 0
    epi: int = 0
    amio: int = 0
    lidocaine: int = 0
    errors: int = 0

    def as_dict(self) -> Dict[str, int]:
        return {
            "cpr_cycles": self.cpr_cycles,
            "shocks": self.shocks,
            "epi": self.epi,
            "amio": self.amio,
            "lidocaine": self.lidocaine,
            "errors": self.errors,
        }


def _empty_medication_history() -> Dict[Medication, List[int]]:
    return {med: [] for med in Medication}


@dataclass
class Session:
    """State of one training run. Replaced wholesale on launch and reset."""
    scenario: Scenario = SCENARIOS[0]
    phase: Phase = Phase.MISSION_SELECT
    training_mode: bool = False
    tutorial_step_index: int = 0
    rhythm: Rhythm = Rhythm.NSR
    pulse_present: bool = True
    viability: float = VIABILITY_MAX
    energy_charged: int = 0
    is_shocking: bool = False
    pads_attached: bool = False
    airway_status: AirwayStatus = AirwayStatus.NONE
    access_established: bool = False
    current_cycle: int = 1
    cycle_timer: int = 0
    medication_history: Dict[Medication, List[int]] = field(default_factory=_empty_medication_history)
    shocks_this_cycle: int = 0
    total_shocks: int = 0
    stats: CodeStats = field(default_factory=CodeStats)
    log: List[LogEntry] = field(default_factory=list)
    manual_analysis: bool = False
    rosc_heart_rate: Optional[int] = None
    celebrate: bool = False
    last_action_at: float = 0.0
    debrief_status: str = "idle"
    debrief_text: Optional[str] = None
    generation: int = 0


class ResuscitationSessionEngine:
    def __init__(
        self,
        rng: Optional[random.Random] = None,
        debrief_requester: Optional[RequesterFn] = None,
        tick_seconds: float = VIABILITY_TICK_SECONDS,
        idle_check_seconds: float = IDLE_CHECK_SECONDS,
        idle_threshold_seconds: float = IDLE_THRESHOLD_SECONDS,
    ):
        self.rng = rng or random.Random()
        self.debrief_requester = debrief_requester
        self.tick_seconds = tick_seconds
        self.idle_check_seconds = idle_check_seconds
        self.idle_threshold_seconds = idle_threshold_seconds

        self.session = Session()
        self.now = 0.0
        self._pending: List[Tuple[float, int, int, Callable[[], None]]] = []
        self._seq = itertools.count()
        self._reset_timers()

    # --- Clock ---

    def _reset_timers(self) -> None:
        self._pending = []
        self._next_tick = self.now + self.tick_seconds
        self._next_idle_check = self.now + self.idle_check_seconds

    def _schedule(self, delay: float, callback: Callable[[], None]) -> None:
        entry = (self.now + delay, next(self._seq), self.session.generation, callback)
        heapq.heappush(self._pending, entry)

    def advance(self, seconds: float) -> None:
        """Let ``seconds`` of simulated time pass."""
        self.advance_to(self.now + seconds)

    def advance_to(self, t: float) -> None:
        """Run every timer and delayed effect due up to time ``t``, in order."""
        while True:
            pending_due = self._pending[0][0] if self._pending else float("inf")
            due = min(pending_due, self._next_tick, self._next_idle_check)
            if due > t:
                break
            self.now = due
            if pending_due == due:
                _, _, generation, callback = heapq.heappop(self._pending)
                if generation == self.session.generation:
                    callback()
            elif self._next_tick == due:
                self._next_tick += self.tick_seconds
                self.tick()
            else:
                self._next_idle_check += self.idle_check_seconds
                self.check_idle()
        self.now = max(self.now, t)

    # --- Timeline ---

    def _log(self, text: str, log_type: LogType = LogType.INFO) -> None:
        self.session.log.append(LogEntry(
            id=uuid.uuid4().hex[:9],
            text=text,
            type=log_type,
            time=datetime.now().strftime("%M:%S"),
        ))

    # --- Lifecycle ---

    def _new_session(self, scenario: Scenario, phase: Phase) -> Session:
        session = Session(
            scenario=scenario,
            phase=phase,
            generation=self.session.generation + 1,
            last_action_at=self.now,
        )
        self.session = session
        self._reset_timers()
        return session

    def select_mission(self, scenario: Scenario) -> None:
        """Open the briefing screen for a mission without starting the clock."""
        s = self._new_session(scenario, Phase.BRIEFING)
        s.rhythm = scenario.start_rhythm
        s.pulse_present = scenario.initial_pulse
        self._log(f"MISSION: {scenario.title}. Focus: {scenario.focus}.", LogType.SYSTEM)
        self._log(scenario.clue, LogType.INFO)

    def launch(self, scenario: Scenario, is_tutorial: bool = False) -> None:
        """Reset every field and start the code in assessment."""
        s = self._new_session(scenario, Phase.ASSESSMENT)
        s.training_mode = is_tutorial
        s.rhythm = scenario.start_rhythm
        s.pulse_present = scenario.initial_pulse

        if is_tutorial:
            self._log("TRAINING MODE: Guided Protocol Activated.", LogType.SYSTEM)
            self._log("INSTRUCTOR: Follow the highlighted cues.", LogType.INFO)
        else:
            self._log("CHALLENGE MODE READY.", LogType.SYSTEM)
            self._log(f"PATIENT: {scenario.patient}. HX: {scenario.history}", LogType.ALERT)
        logger.debug("Launched scenario %s (tutorial=%s)", scenario.id, is_tutorial)

    def return_to_mission_select(self) -> None:
        """Discard the current run; pending effects and debriefs are abandoned."""
        self._new_session(self.session.scenario, Phase.MISSION_SELECT)

    @property
    def is_terminal(self) -> bool:
        return self.session.phase in TERMINAL_PHASES

    @property
    def expected_action(self) -> Optional[Action]:
        s = self.session
        if not s.training_mode or s.tutorial_step_index >= len(TUTORIAL_STEPS):
            return None
        return TUTORIAL_STEPS[s.tutorial_step_index]

    # --- Viability ---

    def _set_viability(self, value: float) -> None:
        s = self.session
        s.viability = min(VIABILITY_MAX, max(VIABILITY_MIN, value))
        if s.viability <= VIABILITY_MIN and s.phase not in TERMINAL_PHASES \
                and s.phase not in (Phase.MISSION_SELECT, Phase.BRIEFING):
            self._finish(Phase.FAILED)

    def tick(self) -> None:
        """One step of the viability ticker."""
        s = self.session
        if s.phase in TICKER_PAUSED_PHASES:
            return
        in_cpr = s.phase == Phase.CPR
        if in_cpr:
            s.cycle_timer += 1

        change = CPR_GAIN if in_cpr else BASELINE_DECAY
        if s.rhythm in SHOCKABLE_RHYTHMS and not in_cpr:
            change = UNTREATED_SHOCKABLE_DECAY

        value = min(VIABILITY_MAX, max(VIABILITY_MIN, s.viability + change))
        if s.training_mode:
            value = max(value, TRAINING_VIABILITY_FLOOR)
        self._set_viability(value)

    # --- Idle hints ---

    def check_idle(self) -> None:
        """One pass of the idle-hint detector."""
        s = self.session
        if s.phase in IDLE_HINT_PAUSED_PHASES or s.training_mode:
            return
        if self.now - s.last_action_at > self.idle_threshold_seconds:
            self._provide_smart_hint()
            s.last_action_at = self.now

    def _provide_smart_hint(self) -> None:
        s = self.session
        if s.phase == Phase.CPR:
            return

        hint = ""
        if not s.pads_attached:
            hint = "INSTRUCTOR: Don't forget to attach the pads/monitor leads!"
        elif s.rhythm in (Rhythm.VFIB, Rhythm.VT):
            if s.energy_charged == 0:
                hint = "INSTRUCTOR: Shockable rhythm detected. Charge the defibrillator."
            elif s.energy_charged == DEFIB_ENERGY_JOULES:
                hint = "INSTRUCTOR: Defib charged. Clear and Shock!"
        elif s.rhythm == Rhythm.PEA:
            hint = "INSTRUCTOR: Monitor shows a rhythm, but no pulse? This is PEA. Think H's and T's."
        elif s.rhythm == Rhythm.ASYSTOLE:
            hint = "INSTRUCTOR: Flatline. Confirm in leads. Give Epinephrine ASAP."

        if hint:
            self._log(hint, LogType.HINT)

    # --- Validation gate ---

    def _clinical_error(self, action: Action) -> Optional[str]:
        """Return the protocol violation for ``action`` or None if it is allowed.

        When several rules fail the last one in table order is reported.
        """
        s = self.session
        error = None

        if action in MEDICATION_ACTIONS and not s.access_established:
            error = "Procedure Error: Establish IV/IO Access First!"

        if action == Action.SHOCK:
            if not s.pads_attached:
                error = "Safety Error: Attach Pads before shocking."
            elif s.energy_charged < DEFIB_ENERGY_JOULES:
                error = "Procedure Error: Defibrillator must be charged to 200J first."
            elif s.rhythm in NO_SHOCK_RHYTHMS:
                error = "CRITICAL ERROR: Never Shock Asystole/PEA. Resume CPR."

        if action == Action.CHARGE and not s.pads_attached:
            error = "Procedure Error: Attach Pads before charging."

        if action == Action.ANALYZE:
            if not s.pads_attached:
                error = "Procedure Error: Connect pads/leads to monitor first."
            if s.phase == Phase.CPR:
                error = "Procedure Error: Do not interrupt CPR for manual analysis. Wait for cycle end."

        if action in (Action.AMIODARONE, Action.LIDOCAINE):
            if s.rhythm not in ANTIARRHYTHMIC_RHYTHMS:
                error = "Medication Error: Antiarrhythmics are not indicated for non-shockable rhythms."
            elif s.total_shocks < ANTIARRHYTHMIC_MIN_SHOCKS:
                error = "Timing Error: Antiarrhythmics are indicated for Refractory VF/pVT (after 3rd shock)."

        if action == Action.EPINEPHRINE:
            history = s.medication_history[Medication.EPINEPHRINE]
            if history and s.current_cycle - history[-1] < EPI_MIN_CYCLE_GAP:
                error = "Medication Error: Epinephrine is given every 3-5 mins (Every other cycle)."

        return error

    def validate_and_execute(self, action: Action, effect: Callable[[], None]) -> bool:
        """Gate every user action. Returns True if ``effect`` ran."""
        s = self.session
        s.last_action_at = self.now

        if s.training_mode:
            if action == self.expected_action:
                if action == Action.CYCLE:
                    self._log("TRAINING: Cycle Complete. Initiating Rhythm Check.", LogType.SUCCESS)
                elif action == Action.ANALYZE:
                    self._log("TRAINING: Analyzing Rhythm...", LogType.SUCCESS)
                else:
                    self._log("TRAINING: Correct Action.", LogType.SUCCESS)
                if action not in DEFERRED_TUTORIAL_ACTIONS:
                    s.tutorial_step_index += 1
                effect()
                return True
            self._log(
                "TRAINING: Incorrect. Follow the highlighted step to build muscle memory.",
                LogType.HINT,
            )
            return False

        error = self._clinical_error(action)
        if error is None:
            effect()
            return True

        logger.debug("Rejected %s: %s", action.value, error)
        self._log(error, LogType.ALERT)
        s.stats.errors += 1
        self._set_viability(s.viability - ERROR_PENALTY)
        return False

    def perform(self, action: Action) -> bool:
        """Route an action tag to its effect through the validation gate."""
        if self.session.phase not in ACTION_PHASES:
            raise SessionStateError(
                f"Action {action.value!r} not available in phase {self.session.phase.value!r}"
            )
        effects: Dict[Action, Callable[[], None]] = {
            Action.PULSE_CHECK: self.check_pulse,
            Action.CPR: self.start_cpr,
            Action.AIRWAY: self.manage_airway,
            Action.ACCESS: self.establish_access,
            Action.ATTACH_PADS: self.attach_pads,
            Action.ANALYZE: self.analyze_rhythm,
            Action.CHARGE: self.charge_defibrillator,
            Action.SHOCK: self.deliver_shock,
            Action.CYCLE: self.trigger_cycle_advance,
        }
        if action in MEDICATION_ACTIONS:
            effect = partial(self.administer_medication, MEDICATION_ACTIONS[action])
        else:
            effect = effects[action]
        return self.validate_and_execute(action, effect)

    # --- Effects ---

    def _mark_intervention(self) -> None:
        if self.session.phase == Phase.ASSESSMENT:
            self.session.phase = Phase.INTERVENTION

    def check_pulse(self) -> None:
        s = self.session
        self._log("Action: Pulse Check (Hands off)...", LogType.ACTION)
        previous = s.phase
        s.phase = Phase.ASSESSMENT
        self._schedule(PULSE_CHECK_DELAY_SECONDS, partial(self._report_pulse, previous))

    def _report_pulse(self, previous: Phase) -> None:
        s = self.session
        if s.phase in TERMINAL_PHASES:
            return
        if not s.pulse_present:
            self._log(f"Assessment: NO PULSE. Rhythm is {s.rhythm.value}.", LogType.ALERT)
            if s.rhythm == Rhythm.PEA:
                self._log("Hint: Monitor shows rhythm but NO pulse = PEA.", LogType.HINT)
        else:
            self._log(f"Assessment: WEAK PULSE PRESENT. Rhythm is {s.rhythm.value}.", LogType.SUCCESS)
        if previous == Phase.CPR and not s.training_mode and s.phase == Phase.ASSESSMENT:
            s.phase = Phase.CPR

    def start_cpr(self) -> None:
        s = self.session
        if s.phase == Phase.CPR:
            return
        s.phase = Phase.CPR
        self._log(
            f"Action: Cycle {s.current_cycle} CPR Started. High Quality Compressions.",
            LogType.ACTION,
        )

    def manage_airway(self) -> None:
        s = self.session
        self._mark_intervention()
        if s.airway_status == AirwayStatus.NONE:
            s.airway_status = AirwayStatus.BVM
            self._log("Action: Bag-Mask Ventilation established with 100% O2.", LogType.ACTION)
        elif s.airway_status == AirwayStatus.BVM:
            s.airway_status = AirwayStatus.ADVANCED
            self._log(
                "Action: Endotracheal Tube inserted. Continuous compressions enabled.",
                LogType.SUCCESS,
            )
        else:
            self._log("Advanced airway already secured.", LogType.INFO)

    def establish_access(self) -> None:
        self._mark_intervention()
        self.session.access_established = True
        self._log("Action: IV/IO access established.", LogType.ACTION)

    def attach_pads(self) -> None:
        self._mark_intervention()
        self.session.pads_attached = True
        self._log("Action: Pads attached. Monitor leads connected.", LogType.ACTION)

    def analyze_rhythm(self) -> None:
        s = self.session
        s.manual_analysis = True
        s.phase = Phase.RHYTHM_CHECK
        self._log("Action: Hands off. Analyzing rhythm...", LogType.ACTION)

    def charge_defibrillator(self) -> None:
        self._mark_intervention()
        self.session.energy_charged = DEFIB_ENERGY_JOULES
        self._log("Action: Defibrillator Charging to 200J...", LogType.ACTION)

    def deliver_shock(self) -> None:
        s = self.session
        if s.is_shocking:
            return
        s.is_shocking = True
        self._log("Action: CLEAR! Shocking...", LogType.ACTION)
        self._schedule(SHOCK_DELAY_SECONDS, self._complete_shock)

    def _complete_shock(self) -> None:
        s = self.session
        s.is_shocking = False
        if s.phase in TERMINAL_PHASES:
            return
        s.energy_charged = 0
        s.stats.shocks += 1
        s.shocks_this_cycle += 1
        s.total_shocks += 1
        self._log(
            f"System: Shock {s.stats.shocks} Delivered. Resetting electrical activity.",
            LogType.SUCCESS,
        )
        s.phase = Phase.ASSESSMENT
        self._log("GUIDANCE: Resume CPR immediately! Do not check pulse yet.", LogType.ALERT)

    def administer_medication(self, drug: Medication) -> str:
        """Record a dose and return its display label."""
        s = self.session
        self._mark_intervention()
        history = s.medication_history[drug]
        first, repeat = DOSE_LABELS[drug]
        dose = first if not history else repeat
        history.append(s.current_cycle)
        stat_key = STAT_KEYS[drug]
        setattr(s.stats, stat_key, getattr(s.stats, stat_key) + 1)

        if drug == Medication.EPINEPHRINE:
            self._log(
                f"Action: Epinephrine {dose} IVP (Cycle {s.current_cycle}). "
                "Vasoconstriction taking effect.",
                LogType.SUCCESS,
            )
        elif drug == Medication.AMIODARONE:
            self._log(f"Action: Amiodarone {dose} IVP. Antiarrhythmic effect active.", LogType.SUCCESS)
        else:
            self._log(f"Action: Lidocaine {dose} IVP. Sodium channel blockade.", LogType.SUCCESS)

        self._set_viability(s.viability + MEDICATION_BONUS)
        return dose

    def trigger_cycle_advance(self) -> None:
        s = self.session
        s.manual_analysis = False
        s.phase = Phase.RHYTHM_CHECK
        self._log(f"Action: Cycle {s.current_cycle} complete. Pausing for rhythm check.", LogType.ACTION)

    # --- Rhythm check ---

    def submit_rhythm_guess(self, guess: Rhythm) -> bool:
        """Answer the open rhythm check. Returns whether the guess was right."""
        s = self.session
        if s.phase != Phase.RHYTHM_CHECK:
            raise SessionStateError("No rhythm check in progress")

        correct = guess == s.rhythm or (s.rhythm == Rhythm.VFIB and guess == Rhythm.VT)

        if s.training_mode:
            if not correct:
                self._log("TRAINING: Incorrect Rhythm. Look closer.", LogType.HINT)
                return False
            self._log("TRAINING: Correctly Identified.", LogType.SUCCESS)
            s.tutorial_step_index += 1
            if s.manual_analysis:
                s.phase = Phase.ASSESSMENT
            else:
                self.advance_cycle_logic()
            return True

        if correct:
            self._log(f"Assessment: Rhythm identified as {guess.value}.", LogType.SUCCESS)
            self._set_viability(s.viability + RHYTHM_ID_BONUS)
        else:
            self._log(f"Assessment: Incorrect identification. It was {s.rhythm.value}.", LogType.ALERT)
            self._set_viability(s.viability - RHYTHM_ID_PENALTY)
            if s.phase in TERMINAL_PHASES:
                return False

        if s.manual_analysis:
            s.phase = Phase.ASSESSMENT
        else:
            self.advance_cycle_logic()
        return correct

    # --- Cycle resolution ---

    def _required_meds_given(self) -> bool:
        s = self.session
        for required in s.scenario.required_meds:
            accepted = INTERCHANGEABLE_MEDS[required]
            if not any(s.medication_history[med] for med in accepted):
                return False
        return True

    def _antiarrhythmic_missing(self) -> bool:
        s = self.session
        if Medication.AMIODARONE not in s.scenario.required_meds:
            return False
        return not any(s.medication_history[med] for med in INTERCHANGEABLE_MEDS[Medication.AMIODARONE])

    def advance_cycle_logic(self) -> None:
        """Close the current CPR cycle and decide whether the code resolves.

        ROSC happens iff the cycle being closed has reached the scenario's
        minimum, every required medication has been given at least once,
        and viability is still above zero.
        """
        s = self.session
        completed = s.current_cycle
        self._log(f"--- END OF CYCLE {completed} ---", LogType.SYSTEM)
        s.stats.cpr_cycles += 1
        s.current_cycle += 1
        s.cycle_timer = 0
        s.shocks_this_cycle = 0
        s.phase = Phase.ASSESSMENT

        meds_met = self._required_meds_given()
        cycles_met = completed >= s.scenario.min_cycles

        if cycles_met and meds_met and s.viability > VIABILITY_MIN:
            self._finish(Phase.ROSC)
            return

        if self._antiarrhythmic_missing():
            self._log("GUIDANCE: Rhythm is refractory. Prepare Antiarrhythmic for next cycle.", LogType.ALERT)

        if s.viability < ASYSTOLE_DEGRADE_THRESHOLD and s.rhythm != Rhythm.ASYSTOLE and not s.training_mode:
            s.rhythm = Rhythm.ASYSTOLE
            self._log("Monitor: Rhythm degenerated to ASYSTOLE.", LogType.ALERT)

        if s.scenario.id == PEA_SCENARIO_ID and s.rhythm == Rhythm.PEA:
            self._log("Monitor: Rhythm appears organized (NSR-like).", LogType.INFO)
            self._log("INSTRUCTOR: Do not trust the monitor. Check Pulse!", LogType.HINT)
        elif s.scenario.id == PULSELESS_VT_SCENARIO_ID and s.rhythm == Rhythm.VT and completed > 1:
            if self.rng.random() > 0.6:
                self._log(
                    "INSTRUCTOR: Wide complex persists. Check electrolytes? (Hyperkalemia/Magnesium)",
                    LogType.HINT,
                )
            else:
                self._log(f"Monitor: Rhythm is {s.rhythm.value}. Pulse Check?", LogType.INFO)
        else:
            self._log(f"Monitor: Rhythm is {s.rhythm.value}. Pulse Check?", LogType.INFO)

    # --- Terminal transitions ---

    def _finish(self, outcome: Phase) -> None:
        s = self.session
        s.phase = outcome
        s.is_shocking = False
        if outcome == Phase.ROSC:
            s.rhythm = Rhythm.NSR
            s.pulse_present = True
            s.rosc_heart_rate = self.rng.randint(*ROSC_HEART_RATE_RANGE)
            s.celebrate = True
            self._log(f"Spontaneous pulse palpable! HR {s.rosc_heart_rate}, BP 110/70.", LogType.SUCCESS)
            self._log("SYSTEM: ROSC ACHIEVED. CODE ENDED.", LogType.SUCCESS)
        else:
            s.rhythm = Rhythm.ASYSTOLE
            s.pulse_present = False
            s.rosc_heart_rate = 0
            s.viability = VIABILITY_MIN
            self._log("No cardiac activity. Viability 0%.", LogType.ALERT)
            self._log("SYSTEM: PATIENT EXPIRED.", LogType.ALERT)
        logger.info(
            "Scenario %s ended with %s after %d cycles",
            s.scenario.id, outcome.value, s.stats.cpr_cycles,
        )
        self._request_debrief()

    def _request_debrief(self) -> None:
        s = self.session
        if self.debrief_requester is None:
            return
        request = DebriefRequest(
            scenario_id=s.scenario.id,
            scenario_title=s.scenario.title,
            patient=s.scenario.patient,
            history=s.scenario.history,
            start_rhythm=s.scenario.start_rhythm.value,
            focus=s.scenario.focus,
            outcome="survival" if s.phase == Phase.ROSC else "death",
            cycles=s.stats.cpr_cycles,
            stats=s.stats.as_dict(),
            transcript=[f"[{entry.time}] {entry.text}" for entry in s.log],
        )
        generation = s.generation
        s.debrief_status = "loading"

        def deliver(text: str, ok: bool) -> None:
            if self.session.generation != generation:
                return
            self.session.debrief_text = text
            self.session.debrief_status = "ready" if ok else "failed"

        self.debrief_requester(request, deliver)

    # --- Views ---

    def snapshot(self) -> Dict:
        """Plain-data view of the session for the HTTP layer."""
        s = self.session
        expected = self.expected_action
        return {
            "scenario_id": s.scenario.id,
            "scenario_title": s.scenario.title,
            "phase": s.phase.value,
            "training_mode": s.training_mode,
            "tutorial_step_index": s.tutorial_step_index,
            "expected_action": expected.value if expected else None,
            "rhythm": s.rhythm.value,
            "pulse_present": s.pulse_present,
            "viability": round(s.viability, 2),
            "energy_charged": s.energy_charged,
            "is_shocking": s.is_shocking,
            "pads_attached": s.pads_attached,
            "airway_status": s.airway_status.value,
            "access_established": s.access_established,
            "current_cycle": s.current_cycle,
            "cycle_timer": s.cycle_timer,
            "medication_history": {med.value: list(cycles) for med, cycles in s.medication_history.items()},
            "shocks_this_cycle": s.shocks_this_cycle,
            "total_shocks": s.total_shocks,
            "stats": s.stats.as_dict(),
            "rosc_heart_rate": s.rosc_heart_rate,
            "celebrate": s.celebrate,
            "debrief_status": s.debrief_status,
            "log": [
                {"id": e.id, "text": e.text, "type": e.type.value, "time": e.time}
                for e in s.log
            ],
        }
