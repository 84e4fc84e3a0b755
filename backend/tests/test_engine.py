"""Test the resuscitation session engine (no HTTP, virtual clock)."""
import random

import pytest

from backend.app.engine import (
    ERROR_PENALTY,
    PULSE_CHECK_DELAY_SECONDS,
    SHOCK_DELAY_SECONDS,
    AirwayStatus,
    LogType,
    Phase,
    ResuscitationSessionEngine,
    SessionStateError,
)
from backend.app.scenarios import (
    TUTORIAL_SCENARIO,
    TUTORIAL_STEPS,
    Action,
    Medication,
    Rhythm,
    get_scenario,
)


class RecordingRequester:
    """Captures debrief requests instead of calling a remote service."""

    def __init__(self):
        self.requests = []
        self.delivers = []

    def __call__(self, request, deliver):
        self.requests.append(request)
        self.delivers.append(deliver)


class FixedRandom(random.Random):
    def __init__(self, value):
        super().__init__(0)
        self.value = value

    def random(self):
        return self.value


@pytest.fixture
def requester():
    return RecordingRequester()


@pytest.fixture
def engine(requester):
    return ResuscitationSessionEngine(rng=random.Random(7), debrief_requester=requester)


def launch(engine, scenario_id, tutorial=False):
    engine.launch(get_scenario(scenario_id), is_tutorial=tutorial)
    return engine.session


def log_texts(engine, log_type=None):
    return [e.text for e in engine.session.log if log_type is None or e.type == log_type]


def shock(engine):
    """Attach pads, charge, shock, and wait for delivery."""
    if not engine.session.pads_attached:
        assert engine.perform(Action.ATTACH_PADS)
    assert engine.perform(Action.CHARGE)
    assert engine.perform(Action.SHOCK)
    engine.advance(SHOCK_DELAY_SECONDS + 0.01)


# --- Launch ---

def test_launch_resets_session_to_scenario_start(engine):
    s = launch(engine, 2)

    assert s.phase == Phase.ASSESSMENT
    assert s.rhythm == Rhythm.VT
    assert s.pulse_present is False
    assert s.viability == 100
    assert s.current_cycle == 1
    assert s.energy_charged == 0
    assert s.airway_status == AirwayStatus.NONE
    assert all(history == [] for history in s.medication_history.values())
    assert len(s.log) == 2
    assert s.log[0].type == LogType.SYSTEM


def test_relaunch_discards_previous_run(engine):
    s = launch(engine, 1)
    engine.perform(Action.ATTACH_PADS)
    engine.perform(Action.CHARGE)
    engine.perform(Action.SHOCK)

    s = launch(engine, 1)
    engine.advance(SHOCK_DELAY_SECONDS + 0.1)

    # Shock scheduled under the old run must not land on the new one
    assert s.total_shocks == 0
    assert s.pads_attached is False


def test_tutorial_launch_uses_training_wording(engine):
    s = launch(engine, TUTORIAL_SCENARIO.id, tutorial=True)

    assert s.training_mode is True
    assert engine.expected_action == Action.PULSE_CHECK
    assert "TRAINING MODE" in s.log[0].text


def test_select_mission_opens_briefing_without_clock(engine):
    engine.select_mission(get_scenario(3))
    engine.advance(10)

    assert engine.session.phase == Phase.BRIEFING
    assert engine.session.viability == 100
    with pytest.raises(SessionStateError):
        engine.perform(Action.CPR)


# --- Shock gate ---

def test_shock_without_pads_is_safety_error(engine):
    s = launch(engine, 1)

    assert engine.perform(Action.SHOCK) is False
    engine.advance(SHOCK_DELAY_SECONDS + 0.1)

    assert s.total_shocks == 0
    assert s.stats.shocks == 0
    assert s.stats.errors == 1
    assert "Safety Error" in log_texts(engine, LogType.ALERT)[-1]


def test_shock_uncharged_is_procedure_error(engine):
    s = launch(engine, 1)
    engine.perform(Action.ATTACH_PADS)

    assert engine.perform(Action.SHOCK) is False
    assert "Procedure Error" in log_texts(engine, LogType.ALERT)[-1]
    assert s.total_shocks == 0


def test_shock_non_shockable_rhythm_is_critical_error(engine):
    s = launch(engine, 3)  # asystole
    engine.perform(Action.ATTACH_PADS)
    engine.perform(Action.CHARGE)

    assert engine.perform(Action.SHOCK) is False
    engine.advance(SHOCK_DELAY_SECONDS + 0.1)

    assert "CRITICAL ERROR" in log_texts(engine, LogType.ALERT)[-1]
    assert s.total_shocks == 0
    assert s.energy_charged == 200


def test_rejected_action_costs_viability_and_counts_error(engine):
    s = launch(engine, 1)

    engine.perform(Action.EPINEPHRINE)  # no access

    assert s.viability == 100 - ERROR_PENALTY
    assert s.stats.errors == 1
    assert s.medication_history[Medication.EPINEPHRINE] == []


def test_successful_shock_sequence(engine):
    s = launch(engine, 1)

    assert engine.perform(Action.SHOCK) is False
    assert s.total_shocks == 0

    engine.perform(Action.ATTACH_PADS)
    engine.perform(Action.CHARGE)
    assert engine.perform(Action.SHOCK) is True
    assert s.is_shocking is True
    assert s.total_shocks == 0  # not delivered until the delay elapses

    engine.advance(SHOCK_DELAY_SECONDS + 0.01)

    assert s.total_shocks == 1
    assert s.shocks_this_cycle == 1
    assert s.stats.shocks == 1
    assert s.phase == Phase.ASSESSMENT
    assert s.energy_charged == 0
    assert s.is_shocking is False
    assert s.rhythm == Rhythm.VFIB
    assert "Resume CPR" in log_texts(engine, LogType.ALERT)[-1]


def test_second_shock_needs_recharge(engine):
    s = launch(engine, 1)
    shock(engine)

    assert engine.perform(Action.SHOCK) is False
    assert s.total_shocks == 1


def test_charge_requires_pads(engine):
    s = launch(engine, 1)

    assert engine.perform(Action.CHARGE) is False
    assert s.energy_charged == 0


# --- Analyze ---

def test_analyze_requires_pads(engine):
    launch(engine, 1)

    assert engine.perform(Action.ANALYZE) is False
    assert "Connect pads" in log_texts(engine, LogType.ALERT)[-1]


def test_analyze_rejected_during_cpr(engine):
    s = launch(engine, 1)
    engine.perform(Action.ATTACH_PADS)
    engine.perform(Action.CPR)

    assert engine.perform(Action.ANALYZE) is False
    assert "Do not interrupt CPR" in log_texts(engine, LogType.ALERT)[-1]
    assert s.phase == Phase.CPR


def test_manual_analysis_returns_to_assessment_without_new_cycle(engine):
    s = launch(engine, 1)
    engine.perform(Action.ATTACH_PADS)
    assert engine.perform(Action.ANALYZE) is True
    assert s.phase == Phase.RHYTHM_CHECK

    assert engine.submit_rhythm_guess(Rhythm.VFIB) is True

    assert s.phase == Phase.ASSESSMENT
    assert s.current_cycle == 1


# --- Medications ---

def test_epinephrine_redose_boundary(engine):
    s = launch(engine, 3)
    engine.perform(Action.ACCESS)
    assert engine.perform(Action.EPINEPHRINE) is True  # cycle 1

    engine.advance_cycle_logic()  # now cycle 2, gap 1
    assert engine.perform(Action.EPINEPHRINE) is False
    assert "Epinephrine is given every 3-5 mins" in log_texts(engine, LogType.ALERT)[-1]

    engine.advance_cycle_logic()  # now cycle 3, gap 2
    assert engine.perform(Action.EPINEPHRINE) is True

    assert s.medication_history[Medication.EPINEPHRINE] == [1, 3]
    assert s.stats.epi == 2


def test_antiarrhythmic_needs_three_shocks(engine):
    s = launch(engine, 1)
    engine.perform(Action.ACCESS)

    assert engine.perform(Action.AMIODARONE) is False
    assert "Timing Error" in log_texts(engine, LogType.ALERT)[-1]

    shock(engine)
    shock(engine)
    assert engine.perform(Action.LIDOCAINE) is False

    shock(engine)
    assert s.total_shocks == 3
    assert engine.perform(Action.AMIODARONE) is True
    assert s.stats.amio == 1


def test_antiarrhythmic_rejected_for_non_shockable_rhythm(engine):
    launch(engine, 4)  # PEA
    engine.perform(Action.ACCESS)

    assert engine.perform(Action.AMIODARONE) is False
    assert "not indicated for non-shockable" in log_texts(engine, LogType.ALERT)[-1]


def test_medication_requires_access(engine):
    launch(engine, 3)

    assert engine.perform(Action.EPINEPHRINE) is False
    assert "Establish IV/IO Access" in log_texts(engine, LogType.ALERT)[-1]


def test_dose_labels_escalate(engine):
    launch(engine, 1)

    assert engine.administer_medication(Medication.AMIODARONE) == "300mg"
    assert engine.administer_medication(Medication.AMIODARONE) == "150mg"
    assert engine.administer_medication(Medication.LIDOCAINE) == "1mg/kg"
    assert engine.administer_medication(Medication.LIDOCAINE) == "0.5mg/kg"
    assert engine.administer_medication(Medication.EPINEPHRINE) == "1mg"


def test_medication_bonus_is_capped(engine):
    s = launch(engine, 3)
    engine.perform(Action.ACCESS)
    engine.perform(Action.EPINEPHRINE)

    assert s.viability == 100


# --- Viability ---

def test_viability_stays_in_range_over_long_cpr(engine):
    s = launch(engine, 4)
    engine.perform(Action.CPR)

    engine.advance(60)

    assert s.phase == Phase.CPR
    assert s.viability == 100
    assert s.cycle_timer > 0


def test_repeated_errors_never_drive_viability_negative(engine):
    s = launch(engine, 1)
    s.viability = 7

    engine.perform(Action.EPINEPHRINE)
    engine.perform(Action.EPINEPHRINE)

    assert s.viability == 0
    assert s.phase == Phase.FAILED


def test_viability_decays_faster_with_untreated_shockable_rhythm():
    vfib = ResuscitationSessionEngine(rng=random.Random(1))
    pea = ResuscitationSessionEngine(rng=random.Random(1))
    launch(vfib, 1)
    launch(pea, 4)

    vfib.advance(5)
    pea.advance(5)

    assert vfib.session.viability < pea.session.viability < 100


def test_viability_reaching_zero_fails_the_code(engine, requester):
    s = launch(engine, 4)
    s.viability = 0.35

    engine.advance(1.0)

    assert s.phase == Phase.FAILED
    assert s.viability == 0
    assert s.rhythm == Rhythm.ASYSTOLE
    assert s.pulse_present is False
    assert s.rosc_heart_rate == 0
    assert "SYSTEM: PATIENT EXPIRED." in log_texts(engine)
    assert len(requester.requests) == 1
    assert requester.requests[0].outcome == "death"
    assert s.debrief_status == "loading"


def test_untreated_vfib_eventually_fails(engine):
    s = launch(engine, 1)

    engine.advance(30)

    assert s.phase == Phase.FAILED


def test_ticker_paused_during_rhythm_check(engine):
    s = launch(engine, 1)
    engine.perform(Action.ATTACH_PADS)
    engine.perform(Action.ANALYZE)
    before = s.viability

    engine.advance(10)

    assert s.viability == before


def test_training_mode_floors_viability(engine):
    s = launch(engine, TUTORIAL_SCENARIO.id, tutorial=True)

    engine.advance(60)

    assert s.phase == Phase.ASSESSMENT
    assert s.viability == 20


# --- Cycle resolution ---

def _ready_for_rosc(engine, scenario_id):
    s = launch(engine, scenario_id)
    s.access_established = True
    for med in s.scenario.required_meds:
        engine.administer_medication(med)
    return s


def test_cycle_advance_before_minimum_does_not_resolve(engine):
    s = _ready_for_rosc(engine, 3)
    for _ in range(s.scenario.min_cycles - 1):
        engine.advance_cycle_logic()

    assert s.phase == Phase.ASSESSMENT
    assert s.current_cycle == s.scenario.min_cycles
    assert s.stats.cpr_cycles == s.scenario.min_cycles - 1


def test_cycle_advance_at_minimum_resolves_to_rosc(engine, requester):
    s = _ready_for_rosc(engine, 3)
    for _ in range(s.scenario.min_cycles):
        engine.advance_cycle_logic()

    assert s.phase == Phase.ROSC
    assert s.rhythm == Rhythm.NSR
    assert s.pulse_present is True
    assert 60 <= s.rosc_heart_rate <= 100
    assert s.celebrate is True
    assert requester.requests[0].outcome == "survival"


def test_rosc_requires_required_medications(engine):
    s = launch(engine, 3)
    for _ in range(s.scenario.min_cycles + 2):
        engine.advance_cycle_logic()

    assert s.phase == Phase.ASSESSMENT


def test_rosc_requires_positive_viability(engine):
    s = _ready_for_rosc(engine, 3)
    s.current_cycle = s.scenario.min_cycles
    s.viability = 0

    engine.advance_cycle_logic()

    assert s.phase != Phase.ROSC


def test_refractory_vfib_resolves_at_viability_45(engine):
    s = launch(engine, 1)
    s.medication_history[Medication.EPINEPHRINE].append(1)
    s.medication_history[Medication.AMIODARONE].append(3)
    s.current_cycle = s.scenario.min_cycles
    s.viability = 45

    engine.advance_cycle_logic()

    assert s.phase == Phase.ROSC
    assert 60 <= s.rosc_heart_rate <= 100


def test_lidocaine_satisfies_amiodarone_requirement(engine):
    s = launch(engine, 2)
    s.medication_history[Medication.EPINEPHRINE].append(1)
    s.medication_history[Medication.LIDOCAINE].append(2)
    s.current_cycle = s.scenario.min_cycles

    engine.advance_cycle_logic()

    assert s.phase == Phase.ROSC


def test_missing_antiarrhythmic_emits_guidance(engine):
    launch(engine, 1)

    engine.advance_cycle_logic()

    assert any("Prepare Antiarrhythmic" in text for text in log_texts(engine, LogType.ALERT))


def test_low_viability_degrades_rhythm_to_asystole(engine):
    s = launch(engine, 1)
    s.viability = 15

    engine.advance_cycle_logic()

    assert s.rhythm == Rhythm.ASYSTOLE
    assert "Monitor: Rhythm degenerated to ASYSTOLE." in log_texts(engine)


def test_training_mode_never_degrades_rhythm(engine):
    s = launch(engine, TUTORIAL_SCENARIO.id, tutorial=True)
    s.viability = 15

    engine.advance_cycle_logic()

    assert s.rhythm == Rhythm.VFIB


def test_pea_case_adds_monitor_warning(engine):
    launch(engine, 4)

    engine.advance_cycle_logic()

    assert "INSTRUCTOR: Do not trust the monitor. Check Pulse!" in log_texts(engine, LogType.HINT)


def test_pulseless_vt_electrolyte_hint_uses_random_source():
    engine = ResuscitationSessionEngine(rng=FixedRandom(0.9))
    launch(engine, 2)

    engine.advance_cycle_logic()
    engine.advance_cycle_logic()

    assert any("Check electrolytes" in text for text in log_texts(engine, LogType.HINT))


def test_cycle_end_rhythm_check_advances_cycle(engine):
    s = launch(engine, 4)
    engine.perform(Action.CPR)
    engine.perform(Action.CYCLE)
    assert s.phase == Phase.RHYTHM_CHECK

    engine.submit_rhythm_guess(Rhythm.PEA)

    assert s.current_cycle == 2
    assert s.phase == Phase.ASSESSMENT


def test_wrong_rhythm_guess_costs_viability(engine):
    s = launch(engine, 4)
    engine.perform(Action.CYCLE)

    assert engine.submit_rhythm_guess(Rhythm.NSR) is False

    assert s.viability == 90
    assert "It was PEA" in log_texts(engine, LogType.ALERT)[-1]


def test_vt_guess_accepted_for_vfib(engine):
    launch(engine, 1)
    engine.perform(Action.ATTACH_PADS)
    engine.perform(Action.ANALYZE)

    assert engine.submit_rhythm_guess(Rhythm.VT) is True


def test_rhythm_guess_outside_check_is_rejected(engine):
    launch(engine, 1)

    with pytest.raises(SessionStateError):
        engine.submit_rhythm_guess(Rhythm.VFIB)


# --- Pulse check & CPR ---

def test_pulse_check_reports_after_delay(engine):
    launch(engine, 4)
    engine.perform(Action.PULSE_CHECK)

    assert not any(text.startswith("Assessment: NO PULSE") for text in log_texts(engine))

    engine.advance(PULSE_CHECK_DELAY_SECONDS + 0.01)

    assert "Assessment: NO PULSE. Rhythm is PEA." in log_texts(engine, LogType.ALERT)
    assert "Hint: Monitor shows rhythm but NO pulse = PEA." in log_texts(engine, LogType.HINT)


def test_pulse_check_during_cpr_resumes_compressions(engine):
    s = launch(engine, 4)
    engine.perform(Action.CPR)
    engine.perform(Action.PULSE_CHECK)
    assert s.phase == Phase.ASSESSMENT

    engine.advance(PULSE_CHECK_DELAY_SECONDS + 0.01)

    assert s.phase == Phase.CPR


def test_start_cpr_is_idempotent(engine):
    launch(engine, 4)
    engine.perform(Action.CPR)
    engine.perform(Action.CPR)

    started = [t for t in log_texts(engine, LogType.ACTION) if "CPR Started" in t]
    assert len(started) == 1


def test_airway_escalates_bvm_then_advanced(engine):
    s = launch(engine, 4)

    engine.perform(Action.AIRWAY)
    assert s.airway_status == AirwayStatus.BVM
    assert s.phase == Phase.INTERVENTION

    engine.perform(Action.AIRWAY)
    assert s.airway_status == AirwayStatus.ADVANCED


# --- Idle hints ---

def test_idle_hint_fires_after_threshold_and_resets(engine):
    launch(engine, 4)

    engine.advance_to(30)
    assert log_texts(engine, LogType.HINT) == []

    engine.advance_to(35)
    hints = log_texts(engine, LogType.HINT)
    assert hints == ["INSTRUCTOR: Don't forget to attach the pads/monitor leads!"]

    engine.advance_to(65)
    assert len(log_texts(engine, LogType.HINT)) == 1

    engine.advance_to(70)
    assert len(log_texts(engine, LogType.HINT)) == 2


def test_idle_hint_silent_during_cpr(engine):
    launch(engine, 4)
    engine.perform(Action.CPR)

    engine.advance(40)

    assert log_texts(engine, LogType.HINT) == []


def test_idle_hint_suggests_charge_for_shockable_rhythm(engine):
    s = launch(engine, 1)
    engine.perform(Action.ATTACH_PADS)
    s.viability = 100

    engine.advance(25)  # keep the patient alive while idling
    s.viability = 100
    engine.advance(11)

    assert "INSTRUCTOR: Shockable rhythm detected. Charge the defibrillator." in log_texts(engine, LogType.HINT)


def test_no_idle_hints_in_training_mode(engine):
    launch(engine, TUTORIAL_SCENARIO.id, tutorial=True)

    engine.advance(70)

    assert log_texts(engine, LogType.HINT) == []


def test_validated_action_resets_idle_clock(engine):
    launch(engine, 4)
    engine.advance_to(25)
    engine.perform(Action.AIRWAY)

    engine.advance_to(50)

    assert log_texts(engine, LogType.HINT) == []


# --- Training policy ---

def test_training_rejects_out_of_sequence_action(engine):
    s = launch(engine, TUTORIAL_SCENARIO.id, tutorial=True)

    assert engine.perform(Action.CPR) is False

    assert s.phase == Phase.ASSESSMENT
    assert s.tutorial_step_index == 0
    assert s.stats.errors == 0
    assert s.viability == 100
    assert "TRAINING: Incorrect" in log_texts(engine, LogType.HINT)[-1]


def test_training_defers_cursor_for_analyze(engine):
    s = launch(engine, TUTORIAL_SCENARIO.id, tutorial=True)
    for action in TUTORIAL_STEPS[:4]:
        assert engine.perform(action)

    assert engine.perform(Action.ANALYZE)
    assert s.tutorial_step_index == 4

    assert engine.submit_rhythm_guess(Rhythm.NSR) is False
    assert s.tutorial_step_index == 4
    assert s.phase == Phase.RHYTHM_CHECK

    assert engine.submit_rhythm_guess(Rhythm.VFIB) is True
    assert s.tutorial_step_index == 5
    assert s.phase == Phase.ASSESSMENT


def test_full_tutorial_sequence_reaches_rosc(engine, requester):
    s = launch(engine, TUTORIAL_SCENARIO.id, tutorial=True)

    for action in TUTORIAL_STEPS:
        assert engine.expected_action == action
        assert engine.perform(action) is True
        if action == Action.SHOCK:
            engine.advance(SHOCK_DELAY_SECONDS + 0.01)
        if action in (Action.ANALYZE, Action.CYCLE):
            assert engine.submit_rhythm_guess(Rhythm.VFIB) is True

    assert s.phase == Phase.ROSC
    assert s.tutorial_step_index == len(TUTORIAL_STEPS)
    assert s.total_shocks == 3
    assert s.stats.cpr_cycles == 3
    assert engine.expected_action is None
    assert len(requester.requests) == 1


# --- Reset and debrief plumbing ---

def test_reset_abandons_in_flight_debrief(engine, requester):
    s = launch(engine, 4)
    s.viability = 0.1
    engine.advance(0.2)
    assert s.phase == Phase.FAILED
    deliver = requester.delivers[0]

    engine.return_to_mission_select()
    deliver("late debrief", True)

    assert engine.session.phase == Phase.MISSION_SELECT
    assert engine.session.debrief_text is None
    assert engine.session.debrief_status == "idle"


def test_debrief_delivery_updates_session(engine, requester):
    s = launch(engine, 4)
    s.viability = 0.1
    engine.advance(0.2)

    requester.delivers[0]("CLINICAL VERDICT\nPatient expired.", True)

    assert s.debrief_status == "ready"
    assert s.debrief_text.startswith("CLINICAL VERDICT")


def test_debrief_request_carries_stats_and_transcript(engine, requester):
    s = launch(engine, 4)
    engine.perform(Action.EPINEPHRINE)  # error: no access
    s.viability = 0.1
    engine.advance(0.2)

    request = requester.requests[0]
    assert request.scenario_id == 4
    assert request.stats["errors"] == 1
    assert any("Establish IV/IO Access" in line for line in request.transcript)


def test_actions_rejected_after_terminal_state(engine):
    s = launch(engine, 4)
    s.viability = 0.1
    engine.advance(0.2)

    with pytest.raises(SessionStateError):
        engine.perform(Action.CPR)


def test_snapshot_is_plain_data(engine):
    launch(engine, 1)
    engine.perform(Action.ATTACH_PADS)

    snap = engine.snapshot()

    assert snap["phase"] == "intervention"
    assert snap["rhythm"] == "VFIB"
    assert snap["pads_attached"] is True
    assert snap["medication_history"] == {"epinephrine": [], "amiodarone": [], "lidocaine": []}
    assert snap["log"][-1]["type"] == "action"
