"""
Session state - cache and dedup state scoped to one client's polygon searches.
"""
import logging
import time
from typing import Callable, Dict, Optional, Sequence, Tuple

from pano_discovery.config import PROBE_CACHE_TTL_SECONDS
from pano_discovery.core.dedup import DedupIndex
from pano_discovery.core.geometry import Vertex
from pano_discovery.core.probe_client import ProbeCache
from pano_discovery.models import DiscoveryState

logger = logging.getLogger(__name__)


class SearchSession:
    """
    Owns a DedupIndex and a reference to a ProbeCache.

    ``search_token`` changes on every new search and every reset. A search
    compares its token when probing finishes and discards its completions if
    the session moved on in the meantime.

    ``state`` is IDLE until a search starts, follows the current search, and
    is ABORTED when the last search failed validation.
    """

    def __init__(self, session_id: str = "default", cache: Optional[ProbeCache] = None):
        self.session_id = session_id
        self.cache = cache if cache is not None else ProbeCache()
        self.dedup = DedupIndex()
        self.polygon: Optional[Tuple[Vertex, ...]] = None
        self.search_token = 0
        self.state = DiscoveryState.IDLE

    def begin_search(self, polygon: Sequence[Vertex]) -> int:
        """Start a new search and return its token."""
        polygon = tuple(polygon)
        self.dedup.clear()
        if polygon != self.polygon:
            self.cache.clear()
            logger.info(f"Session {self.session_id}: new polygon, cache cleared")
        else:
            evicted = self.cache.evict_expired()
            logger.info(f"Session {self.session_id}: same polygon, evicted {evicted} expired cache entries")
        self.polygon = polygon
        self.search_token += 1
        return self.search_token

    def is_current(self, token: int) -> bool:
        return token == self.search_token

    def advance(self, token: int, state: DiscoveryState) -> None:
        """Record the lifecycle state of the search holding ``token``, if it is still current."""
        if self.is_current(token):
            self.state = state

    def reset(self) -> int:
        """Drop all state and invalidate any search in flight."""
        self.dedup.clear()
        self.cache.clear()
        self.polygon = None
        self.state = DiscoveryState.IDLE
        self.search_token += 1
        logger.info(f"Session {self.session_id} reset (token {self.search_token})")
        return self.search_token


class SessionStore:
    """
    Sessions keyed by client-chosen id.

    A reset discards the session. Sessions left untouched for longer than
    ``idle_seconds`` are dropped on the next lookup. A search already running
    keeps its own reference and finishes normally.
    """

    def __init__(self, idle_seconds: float = PROBE_CACHE_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.idle_seconds = idle_seconds
        self.clock = clock
        self._sessions: Dict[str, SearchSession] = {}
        self._last_used: Dict[str, float] = {}

    def get(self, session_id: str) -> SearchSession:
        self.evict_idle()
        if session_id not in self._sessions:
            self._sessions[session_id] = SearchSession(session_id)
        self._last_used[session_id] = self.clock()
        return self._sessions[session_id]

    def reset(self, session_id: str) -> Optional[SearchSession]:
        """Invalidate and discard a session. Returns it, or None if it did not exist."""
        session = self._sessions.pop(session_id, None)
        self._last_used.pop(session_id, None)
        if session is not None:
            session.reset()
        return session

    def evict_idle(self) -> int:
        now = self.clock()
        idle = [
            session_id for session_id, last_used in self._last_used.items()
            if now - last_used > self.idle_seconds
        ]
        for session_id in idle:
            del self._sessions[session_id]
            del self._last_used[session_id]
        if idle:
            logger.info(f"Dropped {len(idle)} idle sessions")
        return len(idle)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions
