"""Application settings."""
import os
from pathlib import Path

# Database file lives at repo root unless DATABASE_URL says otherwise
REPO_ROOT = Path(__file__).resolve().parent.parent.parent
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{REPO_ROOT / 'acls_runs.db'}")

# Generative-language API (specific key first, generic API_KEY as fallback)
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY", "")
CHAT_MODEL = os.getenv("CHAT_MODEL", "gemini-2.5-flash")
EXPLAIN_MODEL = os.getenv("EXPLAIN_MODEL", "gemini-2.5-pro")
DEBRIEF_MODEL = os.getenv("DEBRIEF_MODEL", "gemini-2.5-flash")

# Simulator timing (20s real time = one 2-minute CPR cycle)
VIABILITY_TICK_SECONDS = float(os.getenv("VIABILITY_TICK_SECONDS", "0.083"))
IDLE_CHECK_SECONDS = float(os.getenv("IDLE_CHECK_SECONDS", "5"))
IDLE_THRESHOLD_SECONDS = float(os.getenv("IDLE_THRESHOLD_SECONDS", "30"))

# Live sessions untouched for this long are dropped from memory
SESSION_TTL_SECONDS = float(os.getenv("SESSION_TTL_SECONDS", "3600"))
