"""Streamlit dashboard for ACLS code simulator training records."""
import os
import time

import streamlit as st
import pandas as pd
import requests
import plotly.express as px

# Guided tutorial sequence; mirrors backend/app/scenarios.py TUTORIAL_STEPS
DEMO_STEPS = [
    "pulse_check", "cpr", "airway", "attach_pads", "analyze",
    "charge", "shock", "cpr", "access", "cycle",
    "charge", "shock", "cpr", "epinephrine", "airway", "cycle",
    "charge", "shock", "cpr", "amiodarone", "cycle",
]
SHOCK_SETTLE_SECONDS = 1.0
DEBRIEF_POLL_ATTEMPTS = 10


# Configuration: prioritize Streamlit secrets, then env var, then localhost fallback
def get_backend_url():
    """Get backend URL from secrets, env var, or fallback to localhost."""
    try:
        if hasattr(st, "secrets") and "BACKEND_URL" in st.secrets:
            return st.secrets["BACKEND_URL"].rstrip("/")
    except FileNotFoundError:
        # No secrets.toml outside Streamlit Cloud
        pass
    env_url = os.getenv("BACKEND_URL") or os.getenv("API_BASE")
    if env_url:
        return env_url.rstrip("/")
    return "http://127.0.0.1:8000"


API_BASE_URL = get_backend_url()

st.set_page_config(
    page_title="ACLS Code Simulator",
    page_icon="🫀",
    layout="wide",
)

st.title("🫀 ACLS Code Simulator - Training Records")


def check_backend_health():
    """Check if backend is running (longer timeout for cloud cold starts)."""
    try:
        response = requests.get(f"{API_BASE_URL}/health", timeout=10)
        return response.status_code == 200 and response.json().get("status") == "ok"
    except requests.exceptions.RequestException:
        return False


def get_player_runs(player_id: str):
    """Fetch finalized run summaries for a player."""
    try:
        response = requests.get(f"{API_BASE_URL}/players/{player_id}/runs", timeout=5)
        if response.status_code == 200:
            return response.json()
        return []
    except requests.exceptions.RequestException:
        return []


def get_scenarios():
    try:
        response = requests.get(f"{API_BASE_URL}/scenarios", timeout=5)
        if response.status_code == 200:
            return response.json()
        return []
    except requests.exceptions.RequestException:
        return []


def _post(path: str, payload=None):
    response = requests.post(f"{API_BASE_URL}{path}", json=payload, timeout=10)
    if response.status_code != 200:
        raise RuntimeError(f"POST {path} failed: HTTP {response.status_code} {response.text}")
    return response.json()


def run_demo_code(player_id: str):
    """
    Play the guided tutorial through the API and finalize it.
    Returns (success: bool, message: str).
    """
    try:
        state = _post("/sessions", {"player_id": player_id, "tutorial": True})
        session_id = state["session_id"]

        for action in DEMO_STEPS:
            body = _post(f"/sessions/{session_id}/actions", {"action": action})
            if not body["accepted"]:
                return False, f"Demo step '{action}' was rejected"
            if action == "shock":
                # Shock is delivered after a short delay on the backend clock
                time.sleep(SHOCK_SETTLE_SECONDS)
            if action in ("analyze", "cycle"):
                _post(f"/sessions/{session_id}/rhythm-check", {"guess": "VFIB"})

        # Give the debrief a moment before storing the run
        for _ in range(DEBRIEF_POLL_ATTEMPTS):
            debrief = requests.get(f"{API_BASE_URL}/sessions/{session_id}/debrief", timeout=5).json()
            if debrief["status"] != "loading":
                break
            time.sleep(0.5)

        run = _post(f"/sessions/{session_id}/finalize")
    except (requests.exceptions.RequestException, RuntimeError) as e:
        return False, str(e)

    return True, f"Demo code finished: {run['outcome']} (score {run['score']:.1f})"


def render_debrief(blocks):
    """Render the heading/item/paragraph blocks parsed by the backend."""
    for block in blocks:
        if block["kind"] == "heading":
            st.markdown(f"**{block['text']}**")
        elif block["kind"] == "item":
            st.markdown(f"- {block['text']}")
        else:
            st.write(block["text"])


# Sidebar
st.sidebar.header("Controls")

backend_ok = check_backend_health()
if backend_ok:
    st.sidebar.markdown("**Backend:** :green_circle: Connected")
else:
    st.sidebar.markdown("**Backend:** :red_circle: Unreachable")
    st.warning("Backend unreachable (may be waking up or misconfigured). Refresh the page to retry.")
st.sidebar.caption(f"`{API_BASE_URL}`")

query_params = st.query_params
url_player_id = query_params.get("player_id", None)

st.sidebar.subheader("Player Lookup")
player_id = st.sidebar.text_input(
    "Player ID",
    value=url_player_id if url_player_id else "trainee-001",
    help="Enter a player ID to view their finalized codes",
)

if url_player_id and "runs" not in st.session_state:
    runs = get_player_runs(url_player_id)
    if runs:
        st.session_state["runs"] = runs
        st.session_state["player_id"] = url_player_id

if st.sidebar.button("Load Runs"):
    if player_id:
        runs = get_player_runs(player_id)
        if runs:
            st.session_state["runs"] = runs
            st.session_state["player_id"] = player_id
        else:
            st.sidebar.warning("No finalized codes found for this player")
    else:
        st.sidebar.warning("Enter a player ID")

if st.sidebar.button("Run Demo Code"):
    if not player_id:
        st.sidebar.warning("Enter a player ID first")
    elif not backend_ok:
        st.sidebar.error("Backend is offline - cannot run the demo")
    else:
        with st.spinner("Running guided tutorial code..."):
            success, message = run_demo_code(player_id)
        if success:
            runs = get_player_runs(player_id)
            if runs:
                st.session_state["runs"] = runs
                st.session_state["player_id"] = player_id
            st.sidebar.success(message)
            st.rerun()
        else:
            st.error(message)

# Main content
if "runs" in st.session_state and st.session_state["runs"]:
    runs = st.session_state["runs"]
    player_id = st.session_state["player_id"]

    st.subheader(f"Codes for Player: `{player_id}`")

    df = pd.DataFrame(runs)
    df["created_ts_utc"] = pd.to_datetime(df["created_ts_utc"])
    df["survived"] = df["outcome"] == "survival"

    col1, col2, col3, col4 = st.columns(4)
    with col1:
        st.metric("Total Codes", len(df))
    with col2:
        st.metric("Survival Rate", f"{df['survived'].mean():.0%}")
    with col3:
        st.metric("Avg Score", f"{df['score'].mean():.1f}")
    with col4:
        st.metric("Avg Protocol Errors", f"{df['errors'].mean():.2f}")

    st.divider()

    col_left, col_right = st.columns(2)

    with col_left:
        st.subheader("Score Over Codes")
        fig_score = px.line(
            df,
            x="created_ts_utc",
            y="score",
            markers=True,
            title="Code Score Trend",
        )
        fig_score.update_yaxes(range=[0, 105])
        fig_score.update_layout(xaxis_title="Code Time", yaxis_title="Score")
        st.plotly_chart(fig_score, use_container_width=True)

    with col_right:
        st.subheader("Protocol Errors Over Codes")
        fig_errors = px.bar(
            df,
            x="created_ts_utc",
            y="errors",
            title="Protocol Violations per Code",
            color_discrete_sequence=["#ff7f0e"],
        )
        fig_errors.update_layout(xaxis_title="Code Time", yaxis_title="Errors")
        st.plotly_chart(fig_errors, use_container_width=True)

    st.subheader("Outcomes by Scenario")
    outcome_counts = df.groupby(["scenario_title", "outcome"]).size().reset_index(name="count")
    fig_outcomes = px.bar(
        outcome_counts,
        x="scenario_title",
        y="count",
        color="outcome",
        barmode="group",
        color_discrete_map={"survival": "#2ca02c", "death": "#d62728"},
        labels={"scenario_title": "Scenario", "count": "Codes"},
    )
    st.plotly_chart(fig_outcomes, use_container_width=True)

    st.subheader("Code Details")
    st.dataframe(
        df[[
            "run_id", "scenario_title", "tutorial", "outcome", "cycles", "shocks",
            "epi", "amio", "lidocaine", "errors", "final_viability", "score", "created_ts_utc",
        ]],
        use_container_width=True,
        hide_index=True,
    )

    st.divider()

    st.subheader("Instructor Debrief")
    labels = {
        run["run_id"]: f"{run['created_ts_utc']} - {run['scenario_title']} ({run['outcome']})"
        for run in runs
    }
    selected = st.selectbox(
        "Code",
        options=list(labels.keys())[::-1],
        format_func=lambda run_id: labels[run_id],
    )
    selected_run = next(run for run in runs if run["run_id"] == selected)
    if selected_run.get("debrief_blocks"):
        render_debrief(selected_run["debrief_blocks"])
    else:
        st.info("No debrief was recorded for this code.")

else:
    st.info("Enter a player ID in the sidebar and click 'Load Runs' to view training records.")

    st.subheader("Getting Started")
    if backend_ok:
        st.markdown("""
        **Quick Start:**
        1. Click **"Run Demo Code"** in the sidebar to play the guided tutorial end to end
        2. Or enter a known **Player ID** and click **"Load Runs"**
        """)
        scenarios = get_scenarios()
        if scenarios:
            st.subheader("Mission Catalogue")
            st.dataframe(
                pd.DataFrame(scenarios)[["id", "title", "patient", "start_rhythm", "focus", "min_cycles"]],
                use_container_width=True,
                hide_index=True,
            )
    else:
        st.markdown("""
        **Backend Unavailable**

        The backend API is currently unreachable. This could mean:
        - The backend is starting up (cloud services may take 30-60 seconds on first request)
        - There's a configuration issue with the backend URL

        **Try:** Refresh this page in a few seconds.
        """)

st.sidebar.divider()
st.sidebar.caption("ACLS Code Simulator v0.1.0")
