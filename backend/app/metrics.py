"""Metrics computation for finalized simulation runs."""
from typing import Any, Dict

SURVIVAL_BASE_SCORE = 70.0
VIABILITY_SCORE_SHARE = 30.0
ERROR_SCORE_PENALTY = 5.0


def compute_run_metrics(snapshot: Dict[str, Any]) -> Dict[str, Any]:
    """
    Compute run-level metrics from a terminal engine snapshot.

    - outcome = "survival" if the code ended in ROSC else "death"
    - cycles, shocks, epi, amio, lidocaine, errors copied from the stats
    - score:
        - survival starts at 70, death at 0
        - plus final viability scaled to at most 30
        - minus 5 per protocol error
        - clamped to [0, 100]
    """
    stats = snapshot.get("stats", {})
    survived = snapshot.get("phase") == "rosc"
    viability = float(snapshot.get("viability", 0.0))
    errors = int(stats.get("errors", 0))

    score = SURVIVAL_BASE_SCORE if survived else 0.0
    score += VIABILITY_SCORE_SHARE * viability / 100.0
    score -= ERROR_SCORE_PENALTY * errors
    score = max(0.0, min(100.0, score))

    return {
        "outcome": "survival" if survived else "death",
        "cycles": int(stats.get("cpr_cycles", 0)),
        "shocks": int(stats.get("shocks", 0)),
        "epi": int(stats.get("epi", 0)),
        "amio": int(stats.get("amio", 0)),
        "lidocaine": int(stats.get("lidocaine", 0)),
        "errors": errors,
        "final_viability": viability,
        "rosc_heart_rate": snapshot.get("rosc_heart_rate") if survived else None,
        "score": round(score, 1),
    }
