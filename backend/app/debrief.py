"""End-of-code debrief: prompt construction, dispatch, and display parsing."""
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

FALLBACK_DEBRIEF = "Could not connect to the debrief service."
EMPTY_DEBRIEF = "Analysis failed."

DEBRIEF_SECTIONS = ("CLINICAL VERDICT", "PERFORMANCE AUDIT", "INSTRUCTOR NOTE")

# deliver(text, ok) is called exactly once per submitted request
DeliverFn = Callable[[str, bool], None]


@dataclass
class DebriefRequest:
    """Everything the debrief prompt needs, captured at the terminal transition."""
    scenario_id: int
    scenario_title: str
    patient: str
    history: str
    start_rhythm: str
    focus: str
    outcome: str  # "survival" or "death"
    cycles: int
    stats: Dict[str, int]
    transcript: List[str] = field(default_factory=list)


def build_debrief_prompt(request: DebriefRequest) -> str:
    """Render the instructor prompt for a finished code."""
    stats = request.stats
    transcript = "\n".join(request.transcript)
    return f"""
Act as an expert ACLS Instructor reviewing a simulated code.

Scenario: {request.patient} - {request.history} ({request.start_rhythm})
Outcome: {request.outcome.upper()}
Cycles Run: {request.cycles}
Performance: Shocks {stats.get("shocks", 0)}, Epi {stats.get("epi", 0)}, Amio {stats.get("amio", 0)}, Lido {stats.get("lidocaine", 0)}.
Errors: {stats.get("errors", 0)} (Protocol Violations)

Logs:
{transcript}

Generate a professional Clinical Code Record strictly in this format (NO ASTERISKS, NO MARKDOWN BOLDING):

{DEBRIEF_SECTIONS[0]}
[One sentence summary]

{DEBRIEF_SECTIONS[1]}
- [Feedback on Medication Timing]
- [Feedback on Sequence]

{DEBRIEF_SECTIONS[2]}
[One high-yield tip for this specific case: {request.focus}]
"""


def parse_debrief(text: str) -> List[Dict[str, str]]:
    """Split free-form debrief text into display blocks.

    Upper-case lines become headings, lines starting with ``-`` or ``•``
    become list items, everything else is a paragraph. ``**`` markers are
    stripped and blank lines dropped. This is a display convention only;
    text that ignores it still renders as paragraphs.
    """
    blocks = []
    for line in text.split("\n"):
        trimmed = line.strip()
        if not trimmed:
            continue
        if trimmed == trimmed.upper() and len(trimmed) > 3 and not trimmed.startswith("-"):
            blocks.append({"kind": "heading", "text": trimmed.replace("*", "")})
        elif trimmed.startswith("-") or trimmed.startswith("•"):
            item = re.sub(r"^[-•]\s*", "", trimmed)
            blocks.append({"kind": "item", "text": item.replace("**", "")})
        else:
            blocks.append({"kind": "paragraph", "text": trimmed.replace("**", "")})
    return blocks


def generate_debrief(request: DebriefRequest, client, model: str) -> str:
    """Call the generative client; any failure becomes the fallback text."""
    prompt = build_debrief_prompt(request)
    try:
        text = client.generate(prompt, model=model)
    except Exception:
        logger.exception("Debrief generation failed for scenario %s", request.scenario_id)
        return FALLBACK_DEBRIEF
    return text or EMPTY_DEBRIEF


class InlineDebriefDispatcher:
    """Generates the debrief on the caller's thread."""

    def __init__(self, client_factory: Callable[[], object], model: str):
        self.client_factory = client_factory
        self.model = model

    def _run(self, request: DebriefRequest, deliver: DeliverFn) -> None:
        try:
            client = self.client_factory()
        except Exception:
            logger.exception("Debrief client unavailable")
            deliver(FALLBACK_DEBRIEF, False)
            return
        text = generate_debrief(request, client, self.model)
        deliver(text, text != FALLBACK_DEBRIEF)

    def submit(self, request: DebriefRequest, deliver: DeliverFn) -> None:
        self._run(request, deliver)


class DebriefDispatcher(InlineDebriefDispatcher):
    """Fire-and-forget debrief generation on a small worker pool."""

    def __init__(
        self,
        client_factory: Callable[[], object],
        model: str,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        super().__init__(client_factory, model)
        self.executor = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix="debrief")

    def submit(self, request: DebriefRequest, deliver: DeliverFn) -> None:
        logger.info(
            "Queueing debrief for scenario %s (%s, %d log lines)",
            request.scenario_id, request.outcome, len(request.transcript),
        )
        self.executor.submit(self._run, request, deliver)
