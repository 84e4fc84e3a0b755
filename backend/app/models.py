"""SQLAlchemy ORM models."""
from sqlalchemy import Column, Integer, String, Boolean, Float, Text

from .db import Base


class SimulationRun(Base):
    """Stores the summary of one finalized code (live state is never stored)."""
    __tablename__ = "simulation_runs"

    id = Column(Integer, primary_key=True, index=True)
    run_id = Column(String, unique=True, nullable=False)
    player_id = Column(String, index=True, nullable=False)
    scenario_id = Column(Integer, nullable=False)
    scenario_title = Column(String, nullable=False)
    tutorial = Column(Boolean, nullable=False, default=False)
    outcome = Column(String, nullable=False)  # "survival" or "death"
    cycles = Column(Integer, nullable=False)
    shocks = Column(Integer, nullable=False)
    epi = Column(Integer, nullable=False)
    amio = Column(Integer, nullable=False)
    lidocaine = Column(Integer, nullable=False)
    errors = Column(Integer, nullable=False)
    final_viability = Column(Float, nullable=False)
    rosc_heart_rate = Column(Integer, nullable=True)
    score = Column(Float, nullable=False)
    debrief_text = Column(Text, nullable=True)
    log_json = Column(Text, nullable=True)  # JSON array of timeline entries
    created_ts_utc = Column(String, nullable=False)
