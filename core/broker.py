"""Session broker: the orchestration layer of the browser broker.

Composes the capability builder, the session repository, the protocol
adapters, the stealth engine and the profile store:

* :meth:`SessionBroker.create_session` validates the options, makes the
  once-per-session stealth decisions, builds capabilities and records a
  ``live`` session.  No network I/O happens here beyond an optional
  tunnel-name lookup.
* :meth:`SessionBroker.connect` resolves the session's protocol variant
  to an adapter and returns the live handle.  A failed connect leaves the
  record ``failed``, never ``live``.
* :meth:`SessionBroker.release` runs the session's release callbacks in
  order (closing the handle, which saves the profile), marks it
  ``released`` and removes it.

Usage::

    async with SessionBroker() as broker:
        session = await broker.create_session(
            SessionConfig(adapter="playwright", profile_id="shop"),
        )
        handle = await broker.connect(session.id)
        page = await handle.first_page()
        await page.goto("https://example.com")
"""

import logging
import random
from typing import Any, Dict, List, Optional, Union

from adapters import get_adapter_class
from adapters.base import BrowserHandle, ProtocolAdapter
from browser.context_codec import ContextCodec
from browser.pages import PageHandle
from browser.profile_store import ProfileStore
from browser.stealth_hub import StealthHub

from .capabilities import (
    Credentials,
    TunnelResolver,
    build_capabilities,
    validate_config,
)
from .config import AdapterVariant, BrokerSettings, SessionConfig
from .errors import ConfigurationError, SessionNotFoundError
from .repository import (
    Session,
    SessionRepository,
    SessionStatus,
    generate_session_id,
)

logger = logging.getLogger(__name__)


class SessionBroker:
    """Creates, connects and releases remote browser sessions.

    Args:
        settings: Process settings; loaded from the environment if omitted.
        repository: Session store; a fresh one if omitted.
        profile_store: Profile store used by adapters.
        codec: Context codec shared with adapters.
        tunnel_resolver: Collaborator asked for a tunnel name when a
            session wants a tunnel without naming one.
        adapters: Pre-built adapters by variant; others are created from
            the registry on first use.
        rng: Random source for stealth decisions.
    """

    def __init__(
        self,
        settings: Optional[BrokerSettings] = None,
        repository: Optional[SessionRepository] = None,
        profile_store: Optional[ProfileStore] = None,
        codec: Optional[ContextCodec] = None,
        tunnel_resolver: Optional[TunnelResolver] = None,
        adapters: Optional[Dict[AdapterVariant, ProtocolAdapter]] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.settings = settings or BrokerSettings()
        self.repository = repository or SessionRepository()
        self.codec = codec or ContextCodec()
        self.profile_store = profile_store or ProfileStore(
            self.settings.profiles_dir, codec=self.codec,
        )
        self.tunnel_resolver = tunnel_resolver
        self._adapters: Dict[AdapterVariant, ProtocolAdapter] = dict(
            adapters or {},
        )
        self._rng = rng

    async def __aenter__(self) -> "SessionBroker":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.release_all()

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_session(
        self,
        config: Union[SessionConfig, Dict[str, Any], None] = None,
    ) -> Session:
        """Record a new session and return it.

        Args:
            config: Session options (model or mapping with snake or
                camel case keys).

        Returns:
            The ``live`` :class:`~core.repository.Session`.

        Raises:
            ConfigurationError: Invalid options, duplicate id or missing
                credentials.
            CapabilityUnsupportedError: Stealth scripts requested on the
                WebDriver variant.
        """
        if config is None:
            config = SessionConfig()
        elif isinstance(config, dict):
            config = SessionConfig.model_validate(config)

        session_id = config.session_id or generate_session_id()
        if session_id in self.repository:
            raise ConfigurationError(
                "session id already in use", session_id=session_id,
            )
        validate_config(config, session_id)

        credentials = Credentials.from_environment(self.settings)
        tunnel_name = await self._resolve_tunnel(config, credentials)

        stealth = StealthHub.plan(
            config.stealth_config,
            config.dimensions.as_dict(),
            explicit_user_agent=config.user_agent,
            rng=self._rng,
        )
        document = build_capabilities(
            config,
            self.settings,
            credentials=credentials,
            tunnel_name=tunnel_name,
            user_agent=stealth.user_agent,
            viewport=stealth.viewport,
            session_id=session_id,
        )

        session = Session(
            id=session_id,
            variant=config.adapter,
            endpoint=document.endpoint,
            capabilities=document.payload,
            config=config,
            viewport=stealth.viewport,
            timeout=config.timeout or self.settings.timeout,
            user_agent=stealth.user_agent,
            stealth=stealth,
            profile_id=config.profile_id,
            debug_url=document.debug_url,
        )
        await self.repository.create(session)
        logger.info(
            "Session %s created (adapter=%s, viewport=%sx%s, profile=%s)",
            session.id, session.variant.value, session.viewport["width"],
            session.viewport["height"], session.profile_id or "-",
        )
        return session

    async def _resolve_tunnel(
        self,
        config: SessionConfig,
        credentials: Optional[Credentials],
    ) -> Optional[str]:
        if not config.tunnel or config.tunnel_name:
            return None
        if self.tunnel_resolver is None:
            logger.warning(
                "Tunnel requested but no tunnel resolver configured;"
                " sending the tunnel flag without a name",
            )
            return None
        name = await self.tunnel_resolver.resolve(credentials)
        logger.info("Using managed tunnel %s", name)
        return name

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, session_id: str) -> Optional[Session]:
        return self.repository.get(session_id)

    def list(self) -> List[Session]:
        return self.repository.list()

    def _require(self, session_id: str) -> Session:
        session = self.repository.get(session_id)
        if session is None or session.status is SessionStatus.RELEASED:
            raise SessionNotFoundError(session_id)
        return session

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    def adapter_for(self, variant: AdapterVariant) -> ProtocolAdapter:
        adapter = self._adapters.get(variant)
        if adapter is None:
            cls = get_adapter_class(variant)
            adapter = cls(profile_store=self.profile_store, codec=self.codec)
            self._adapters[variant] = adapter
        return adapter

    async def connect(self, session_id: str) -> BrowserHandle:
        """Connect a session through its protocol variant.

        Connecting an already connected session returns the existing
        handle.  A ``failed`` session may be connected again; the broker
        itself never retries.

        Raises:
            SessionNotFoundError: Unknown or released session.
            SessionConnectionError: The transport failed; the session is
                now ``failed``.
            CapabilityUnsupportedError: The variant cannot honour the
                session options; the session is now ``failed``.
        """
        session = self._require(session_id)
        if session.handle is not None and not session.handle.closed:
            return session.handle

        adapter = self.adapter_for(session.variant)
        try:
            handle = await adapter.connect(session)
        except BaseException as e:
            # Cancellation and caller-side timeouts land here too
            if session.status is not SessionStatus.RELEASED:
                session.status = SessionStatus.FAILED
            logger.error(
                "Session %s failed to connect: %r", session.id, e,
            )
            raise

        if session.status is SessionStatus.RELEASED:
            # Released while the connect was in flight
            await handle.close()
            raise SessionNotFoundError(session_id)

        session.handle = handle
        session.status = SessionStatus.LIVE

        async def close_handle(released: Session) -> None:
            await handle.close()

        session.on_release(close_handle)
        return handle

    async def page(self, session_id: str) -> PageHandle:
        """First page of a connected session, for downstream helpers."""
        session = self._require(session_id)
        if session.handle is None:
            raise SessionNotFoundError(session_id)
        return await session.handle.first_page()

    # ------------------------------------------------------------------
    # Release
    # ------------------------------------------------------------------

    async def release(self, session_id: str) -> bool:
        """Release a session.

        Runs release callbacks in registration order, each isolated, then
        removes the record.  Releasing a ``failed`` session just removes
        it.

        Returns:
            ``False`` if no such session exists (or it is already being
            released).
        """
        session = self.repository.get(session_id)
        if session is None or session.status is SessionStatus.RELEASED:
            logger.warning("Release of unknown session %s", session_id)
            return False

        logger.info("Releasing session %s", session_id)
        session.status = SessionStatus.RELEASED
        for callback in session.release_callbacks:
            try:
                await callback(session)
            except Exception as e:
                logger.warning(
                    "Release callback failed for session %s: %s",
                    session_id, e,
                )
        session.handle = None
        await self.repository.delete(session_id)
        logger.info("Session %s released", session_id)
        return True

    async def release_all(self) -> int:
        """Release every session.  Returns how many were released."""
        released = 0
        for session in self.repository.list():
            try:
                if await self.release(session.id):
                    released += 1
            except Exception as e:
                logger.error("Error releasing session %s: %s", session.id, e)
        logger.info("Released %d sessions", released)
        return released

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    async def live_details(self, session_id: str) -> Optional[Dict[str, Any]]:
        """Open pages and viewer URLs of a session, or ``None``."""
        session = self.repository.get(session_id)
        if session is None:
            return None

        pages: List[Dict[str, Any]] = []
        if session.handle is not None and not session.handle.closed:
            for page in await session.handle.pages():
                pages.append({
                    "id": page.page_id,
                    "url": await page.current_url(),
                    "title": await page.title(),
                    "sessionViewerUrl": session.session_viewer_url,
                })
        return {
            "sessionId": session.id,
            "status": session.status.value,
            "adapter": session.variant.value,
            "pages": pages,
            "debugUrl": session.debug_url,
            "sessionViewerUrl": session.session_viewer_url,
        }
