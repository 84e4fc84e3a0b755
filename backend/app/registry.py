"""In-memory registry of live simulator sessions.

Every engine mutation happens while holding the registry lock, so each
session has exactly one writer at a time even though FastAPI serves sync
endpoints from a thread pool. Before a request touches a session its engine
clock is brought up to the wall-clock time elapsed since the session was
created, which runs the viability ticker and idle-hint detector for the
interval in between.
"""
import logging
import random
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, Optional

from .debrief import FALLBACK_DEBRIEF, DebriefDispatcher, DebriefRequest, DeliverFn
from .engine import ResuscitationSessionEngine
from .generative import make_client
from .scenarios import Scenario
from .settings import DEBRIEF_MODEL, SESSION_TTL_SECONDS

logger = logging.getLogger(__name__)


class UnknownSessionError(KeyError):
    """No live session with the given id (never created, or evicted)."""


@dataclass
class LiveSession:
    session_id: str
    player_id: str
    engine: ResuscitationSessionEngine
    started_at: float
    last_seen: float
    tutorial: bool


class SessionRegistry:
    def __init__(
        self,
        dispatcher=None,
        clock: Callable[[], float] = time.monotonic,
        rng_factory: Callable[[], random.Random] = random.Random,
        ttl_seconds: float = SESSION_TTL_SECONDS,
        engine_options: Optional[Dict] = None,
    ):
        self.dispatcher = dispatcher
        self.clock = clock
        self.rng_factory = rng_factory
        self.ttl_seconds = ttl_seconds
        self.engine_options = engine_options or {}
        self._lock = threading.RLock()
        self._sessions: Dict[str, LiveSession] = {}

    def _request_debrief(self, request: DebriefRequest, deliver: DeliverFn) -> None:
        if self.dispatcher is None:
            deliver(FALLBACK_DEBRIEF, False)
            return

        def locked_deliver(text: str, ok: bool) -> None:
            with self._lock:
                deliver(text, ok)

        self.dispatcher.submit(request, locked_deliver)

    def _evict_stale(self, now: float) -> None:
        stale = [sid for sid, live in self._sessions.items() if now - live.last_seen > self.ttl_seconds]
        for sid in stale:
            logger.info("Evicting idle session %s", sid)
            del self._sessions[sid]

    def create(
        self,
        player_id: str,
        scenario: Scenario,
        tutorial: bool = False,
        briefing: bool = False,
    ) -> LiveSession:
        """Create a session and launch it (or open its briefing)."""
        engine = ResuscitationSessionEngine(
            rng=self.rng_factory(),
            debrief_requester=self._request_debrief,
            **self.engine_options,
        )
        with self._lock:
            now = self.clock()
            self._evict_stale(now)
            if briefing:
                engine.select_mission(scenario)
            else:
                engine.launch(scenario, is_tutorial=tutorial)
            live = LiveSession(
                session_id=uuid.uuid4().hex,
                player_id=player_id,
                engine=engine,
                started_at=now,
                last_seen=now,
                tutorial=tutorial,
            )
            self._sessions[live.session_id] = live
        logger.info("Created session %s for player %s (scenario %s)", live.session_id, player_id, scenario.id)
        return live

    @contextmanager
    def locked(self, session_id: str) -> Iterator[LiveSession]:
        """Hold the registry lock with the session's clock synced to now."""
        with self._lock:
            now = self.clock()
            self._evict_stale(now)
            live = self._sessions.get(session_id)
            if live is None:
                raise UnknownSessionError(session_id)
            live.engine.advance_to(now - live.started_at)
            live.last_seen = now
            yield live

    def discard(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    def __len__(self) -> int:
        return len(self._sessions)


_default_registry: Optional[SessionRegistry] = None


def get_registry() -> SessionRegistry:
    """Dependency that provides the process-wide registry."""
    global _default_registry
    if _default_registry is None:
        _default_registry = SessionRegistry(dispatcher=DebriefDispatcher(make_client, DEBRIEF_MODEL))
    return _default_registry
