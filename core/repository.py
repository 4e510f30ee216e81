"""In-memory session records and the repository that owns them.

The repository is an explicit object handed to the broker, never
module-level state.  Records are keyed by session id; ``list()`` returns
a snapshot so callers can iterate while sessions are created or
released.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .config import AdapterVariant, SessionConfig
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

ReleaseCallback = Callable[["Session"], Awaitable[Any]]


class SessionStatus(Enum):
    """Lifecycle state of a session.

    ``LIVE`` moves to ``RELEASED`` exactly once, after which the record
    is removed.  ``FAILED`` marks a connect that did not produce a
    handle; the record stays until released.
    """

    LIVE = "live"
    RELEASED = "released"
    FAILED = "failed"


def generate_session_id() -> str:
    return f"session_{uuid.uuid4().hex}"


@dataclass
class Session:
    """One logical remote browser session.

    Attributes:
        id: Unique id for the process lifetime.
        variant: Protocol variant used to connect.
        endpoint: Socket URL or hub URL.
        capabilities: Backend capability document.
        config: The options the session was created from.
        viewport: Effective viewport (jittered when randomised).
        user_agent: Session user-agent, fixed at creation.
        stealth: Stealth decisions (:class:`browser.stealth_hub.StealthProfile`).
        profile_id: Profile loaded on connect / saved on close.
        created_at: Unix timestamp of creation.
        timeout: Timeout budget in milliseconds.
        status: Lifecycle state.
        debug_url: Backend dashboard URL, if known.
        handle: Live connection handle.  Non-owning: the handle is
            closed by a release callback and never outlives the record.
    """

    id: str
    variant: AdapterVariant
    endpoint: str
    capabilities: Dict[str, Any]
    config: SessionConfig
    viewport: Dict[str, int]
    timeout: int
    user_agent: Optional[str] = None
    stealth: Any = None
    profile_id: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    status: SessionStatus = SessionStatus.LIVE
    debug_url: Optional[str] = None
    handle: Any = None
    _release_callbacks: List[ReleaseCallback] = field(
        default_factory=list, repr=False,
    )

    @property
    def stealth_config(self) -> Any:
        return self.config.stealth_config

    @property
    def headless(self) -> Optional[bool]:
        return self.config.headless

    @property
    def region(self) -> Optional[str]:
        return self.config.region

    @property
    def session_viewer_url(self) -> Optional[str]:
        return self.debug_url

    @property
    def is_connected(self) -> bool:
        return self.handle is not None

    def on_release(self, callback: ReleaseCallback) -> None:
        """Register *callback* to run, in registration order, on release.

        Each callback receives the session and is isolated: a failure is
        logged and the remaining callbacks still run.
        """
        self._release_callbacks.append(callback)

    @property
    def release_callbacks(self) -> List[ReleaseCallback]:
        return list(self._release_callbacks)

    def to_dict(self) -> Dict[str, Any]:
        """Summary without secrets (the endpoint may embed credentials)."""
        return {
            "id": self.id,
            "adapter": self.variant.value,
            "status": self.status.value,
            "createdAt": self.created_at,
            "timeout": self.timeout,
            "dimensions": dict(self.viewport),
            "userAgent": self.user_agent,
            "profileId": self.profile_id,
            "headless": self.headless,
            "region": self.region,
            "debugUrl": self.debug_url,
            "sessionViewerUrl": self.session_viewer_url,
        }


class SessionRepository:
    """Store of :class:`Session` records keyed by id.

    Mutations are serialised with an :class:`asyncio.Lock`; lookups are
    plain dict reads.
    """

    def __init__(self) -> None:
        self._sessions: Dict[str, Session] = {}
        self._lock = asyncio.Lock()

    async def create(self, session: Session) -> str:
        """Insert *session* and return its id.

        Raises:
            ConfigurationError: The id is already in use.
        """
        async with self._lock:
            if session.id in self._sessions:
                raise ConfigurationError(
                    "session id already in use", session_id=session.id,
                )
            self._sessions[session.id] = session
        logger.debug("Session %s stored", session.id)
        return session.id

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def list(self) -> List[Session]:
        """Snapshot of every stored session."""
        return list(self._sessions.values())

    async def delete(self, session_id: str) -> bool:
        """Remove a record.  Returns ``False`` if it was not present."""
        async with self._lock:
            removed = self._sessions.pop(session_id, None)
        if removed is not None:
            logger.debug("Session %s removed", session_id)
        return removed is not None

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions
