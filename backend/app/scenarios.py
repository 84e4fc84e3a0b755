"""Rhythms, action tags, and the ACLS mission catalogue."""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Tuple


class Rhythm(str, Enum):
    NSR = "NSR"
    VFIB = "VFIB"
    VT = "VT"
    TORSADES = "TORSADES"
    PEA = "PEA"
    ASYSTOLE = "ASYSTOLE"
    BRADYCARDIA = "BRADYCARDIA"


SHOCKABLE_RHYTHMS = frozenset({Rhythm.VFIB, Rhythm.VT, Rhythm.TORSADES})

# Rhythms the defibrillator must never be discharged into
NO_SHOCK_RHYTHMS = frozenset({Rhythm.ASYSTOLE, Rhythm.PEA})

# Antiarrhythmics are only indicated for refractory VF/pVT
ANTIARRHYTHMIC_RHYTHMS = frozenset({Rhythm.VFIB, Rhythm.VT})


class Action(str, Enum):
    """Every user-initiated action the engine accepts."""
    PULSE_CHECK = "pulse_check"
    CPR = "cpr"
    AIRWAY = "airway"
    ACCESS = "access"
    ATTACH_PADS = "attach_pads"
    ANALYZE = "analyze"
    CHARGE = "charge"
    SHOCK = "shock"
    EPINEPHRINE = "epinephrine"
    AMIODARONE = "amiodarone"
    LIDOCAINE = "lidocaine"
    CYCLE = "cycle"


class Medication(str, Enum):
    EPINEPHRINE = "epinephrine"
    AMIODARONE = "amiodarone"
    LIDOCAINE = "lidocaine"


MEDICATION_ACTIONS: Dict[Action, Medication] = {
    Action.EPINEPHRINE: Medication.EPINEPHRINE,
    Action.AMIODARONE: Medication.AMIODARONE,
    Action.LIDOCAINE: Medication.LIDOCAINE,
}

# Either antiarrhythmic satisfies a scenario that requires amiodarone
INTERCHANGEABLE_MEDS: Dict[Medication, Tuple[Medication, ...]] = {
    Medication.EPINEPHRINE: (Medication.EPINEPHRINE,),
    Medication.AMIODARONE: (Medication.AMIODARONE, Medication.LIDOCAINE),
    Medication.LIDOCAINE: (Medication.AMIODARONE, Medication.LIDOCAINE),
}


@dataclass(frozen=True)
class Scenario:
    id: int
    title: str
    patient: str
    history: str
    start_rhythm: Rhythm
    initial_pulse: bool
    min_cycles: int
    algorithm: str
    clue: str
    focus: str
    success_condition: str
    required_meds: Tuple[Medication, ...] = ()
    correct_causes: Tuple[str, ...] = ()
    is_tutorial: bool = False


@dataclass(frozen=True)
class ReversibleCause:
    id: str
    label: str
    hint: str


H_AND_TS: List[ReversibleCause] = [
    ReversibleCause("hypovolemia", "Hypovolemia", "Check fluid status/blood loss"),
    ReversibleCause("hypoxia", "Hypoxia", "Check airway/O2 sat"),
    ReversibleCause("hion", "Hydrogen Ion (Acidosis)", "Check ABGs/Diabetes"),
    ReversibleCause("hyperkalemia", "Hyper/Hypokalemia", "Check electrolytes/Renal"),
    ReversibleCause("hypothermia", "Hypothermia", "Check temperature"),
    ReversibleCause("tension", "Tension Pneumothorax", "Check lung sounds/trachea"),
    ReversibleCause("tamponade", "Tamponade (Cardiac)", "Check heart sounds/JVD"),
    ReversibleCause("toxins", "Toxins", "Check history/pill bottles"),
    ReversibleCause("thrombosis_p", "Thrombosis (Pulmonary)", "Check for PE signs"),
    ReversibleCause("thrombosis_c", "Thrombosis (Coronary)", "Check for MI signs"),
    ReversibleCause("hypoglycemia", "Hypoglycemia", "Check glucose levels"),
]


TUTORIAL_SCENARIO = Scenario(
    id=999,
    title="Basic Training",
    patient="Training Manikin",
    history=(
        "Standard VFib Cardiac Arrest. Follow the guided steps to learn the "
        "Shock -> CPR -> Drug sequence."
    ),
    start_rhythm=Rhythm.VFIB,
    initial_pulse=False,
    min_cycles=3,
    algorithm="shockable",
    clue="Training Mode Active. Perform the highlighted step.",
    focus="Algorithm Sequence",
    success_condition="Complete Sequence",
    is_tutorial=True,
)

# Strict AHA sequence for guided training
TUTORIAL_STEPS: Tuple[Action, ...] = (
    Action.PULSE_CHECK,
    Action.CPR,
    Action.AIRWAY,
    Action.ATTACH_PADS,
    Action.ANALYZE,       # initial manual rhythm check
    Action.CHARGE,
    Action.SHOCK,
    Action.CPR,           # resume immediately
    Action.ACCESS,
    Action.CYCLE,         # end of cycle 1
    Action.CHARGE,        # persistent VF
    Action.SHOCK,
    Action.CPR,
    Action.EPINEPHRINE,
    Action.AIRWAY,        # advanced airway
    Action.CYCLE,         # end of cycle 2
    Action.CHARGE,
    Action.SHOCK,
    Action.CPR,
    Action.AMIODARONE,    # refractory VF after third shock
    Action.CYCLE,
)

SCENARIOS: List[Scenario] = [
    Scenario(
        id=1,
        title="Refractory VFib",
        patient="55M, Post-MI",
        history=(
            "Collapsed in waiting room. No pulse. Monitor shows chaotic VFib. "
            "Refractory to initial defib."
        ),
        start_rhythm=Rhythm.VFIB,
        initial_pulse=False,
        min_cycles=4,
        algorithm="shockable",
        clue="SHOCKABLE. Needs Amiodarone/Lidocaine if shocks fail.",
        focus="Antiarrhythmic Timing",
        success_condition="ROSC after 3 shocks + antiarrhythmic",
        required_meds=(Medication.EPINEPHRINE, Medication.AMIODARONE),
        correct_causes=("thrombosis_c",),
    ),
    Scenario(
        id=2,
        title="Pulseless VT",
        patient="42F, Renal Failure",
        history="Found unresponsive during dialysis. Monitor shows Wide Complex Tachycardia.",
        start_rhythm=Rhythm.VT,
        initial_pulse=False,
        min_cycles=3,
        algorithm="shockable",
        clue="SHOCKABLE. Monomorphic Wide Complex. Suspect Hyperkalemia.",
        focus="Rhythm Recognition",
        success_condition="ROSC after shock + meds",
        required_meds=(Medication.EPINEPHRINE, Medication.AMIODARONE),
        correct_causes=("hyperkalemia",),
    ),
    Scenario(
        id=3,
        title="Asystole (Flatline)",
        patient="78M, Full Code",
        history="Unresponsive. Monitor shows flatline in 2 leads. No electrical activity.",
        start_rhythm=Rhythm.ASYSTOLE,
        initial_pulse=False,
        min_cycles=3,
        algorithm="nonshockable",
        clue="NON-SHOCKABLE. Do not shock. Epi ASAP.",
        focus="Epinephrine Urgency",
        success_condition="ROSC after Epi loading",
        required_meds=(Medication.EPINEPHRINE,),
        correct_causes=("hypoxia", "hypovolemia"),
    ),
    Scenario(
        id=4,
        title="PEA Arrest",
        patient="25M, Trauma",
        history="Car accident. Monitor shows Sinus Rhythm, but patient has NO PULSE.",
        start_rhythm=Rhythm.PEA,
        initial_pulse=False,
        min_cycles=3,
        algorithm="nonshockable",
        clue=(
            "NON-SHOCKABLE. Electrical activity present, mechanical failure. "
            "Check H's & T's."
        ),
        focus="Dissociation (Pulse vs Rhythm)",
        success_condition="ROSC after finding cause",
        required_meds=(Medication.EPINEPHRINE,),
        correct_causes=("hypovolemia", "tension"),
    ),
]

PEA_SCENARIO_ID = 4
PULSELESS_VT_SCENARIO_ID = 2


def get_scenario(scenario_id: int) -> Scenario:
    """Look up a mission (or the tutorial) by id. Raises KeyError if unknown."""
    if scenario_id == TUTORIAL_SCENARIO.id:
        return TUTORIAL_SCENARIO
    for scenario in SCENARIOS:
        if scenario.id == scenario_id:
            return scenario
    raise KeyError(scenario_id)
