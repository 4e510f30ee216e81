"""Adapter contract shared by every protocol variant.

An adapter turns a :class:`~core.repository.Session` into a live
:class:`BrowserHandle`.  The transport work (connecting, first page,
stealth) is variant-specific and lives in :meth:`ProtocolAdapter._open`;
the post-connect steps are common and run here:

1. Inject ``session_context`` into the first page, if configured.
2. Load the session's profile into the first page, if configured.
3. Register a close hook that saves the profile back, if configured.

Steps 1-3 are best-effort: a failure is logged (and reported as a
:class:`~core.errors.PersistenceWarning`) and the connect goes on.
Transport failures are never retried here; they surface as
:class:`~core.errors.SessionConnectionError`.
"""

import asyncio
import logging
import warnings
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, List, Optional, Tuple, Type

from browser.context_codec import ContextCodec
from browser.humanize import HumanizedPage
from browser.pages import PageHandle
from browser.profile_store import ProfileStore
from browser.stealth_hub import StealthProfile
from core.config import AdapterVariant
from core.errors import BrokerError, PersistenceWarning, SessionConnectionError

logger = logging.getLogger(__name__)

CloseHook = Callable[[], Awaitable[Any]]


def report_persistence_failure(message: str, *args: Any) -> None:
    """Log a non-fatal profile failure and emit a PersistenceWarning."""
    text = message % args
    logger.warning(text)
    warnings.warn(text, PersistenceWarning, stacklevel=2)


class BrowserHandle(ABC):
    """Live connection to one remote browser.

    Exposes the minimum every variant supports: enumerate pages, create
    a page, close.  Pages are handed out as
    :class:`~browser.pages.PageHandle` objects, wrapped in
    :class:`~browser.humanize.HumanizedPage` when the session asked for
    humanised interactions.

    Close hooks run in registration order before the transport is torn
    down; each is isolated so one failing hook cannot stop the others or
    the disconnect.  :meth:`close` is idempotent.
    """

    def __init__(self, session_id: str, stealth: StealthProfile) -> None:
        self.session_id = session_id
        self.stealth = stealth
        self._close_hooks: List[CloseHook] = []
        self._closed = False

    # ------------------------------------------------------------------
    # Variant hooks
    # ------------------------------------------------------------------

    @property
    @abstractmethod
    def raw(self) -> Any:
        """The underlying library object (browser, context or client)."""

    @abstractmethod
    async def _list_pages(self) -> List[PageHandle]:
        ...

    @abstractmethod
    async def _create_page(self) -> PageHandle:
        ...

    @abstractmethod
    async def _disconnect(self) -> None:
        ...

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    def _wrap(self, page: PageHandle) -> PageHandle:
        if self.stealth.humanize and not isinstance(page, HumanizedPage):
            return HumanizedPage(page)
        return page

    async def pages(self) -> List[PageHandle]:
        """Every open page, in the order the browser reports them."""
        return [self._wrap(p) for p in await self._list_pages()]

    async def new_page(self) -> PageHandle:
        return self._wrap(await self._create_page())

    async def first_page(self) -> PageHandle:
        """The first open page, created if the browser has none."""
        pages = await self.pages()
        if pages:
            return pages[0]
        return await self.new_page()

    def add_close_hook(self, hook: CloseHook) -> None:
        self._close_hooks.append(hook)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for hook in self._close_hooks:
            try:
                await hook()
            except Exception as e:
                logger.warning(
                    "Close hook failed for session %s: %s",
                    self.session_id, e,
                )
        try:
            await self._disconnect()
        finally:
            logger.info("Session %s disconnected", self.session_id)


class ProtocolAdapter(ABC):
    """Strategy for connecting sessions over one wire protocol.

    Args:
        profile_store: Store used for load-on-connect / save-on-close.
        codec: Context codec used for ``session_context`` injection.
    """

    variant: AdapterVariant
    # Library exceptions that mean "the transport failed"
    transport_errors: Tuple[Type[BaseException], ...] = ()

    def __init__(
        self,
        profile_store: Optional[ProfileStore] = None,
        codec: Optional[ContextCodec] = None,
    ) -> None:
        self.profile_store = profile_store
        self.codec = codec or ContextCodec()

    @abstractmethod
    async def _open(self, session: Any) -> BrowserHandle:
        """Connect, prepare the first page and apply stealth."""

    async def connect(self, session: Any) -> BrowserHandle:
        """Return a live handle for *session*.

        Raises:
            SessionConnectionError: The transport failed or timed out.
            CapabilityUnsupportedError: The session asks for something
                this variant cannot do.
        """
        logger.info(
            "Connecting session %s via %s", session.id, self.variant.value,
        )
        errors = self.transport_errors + (asyncio.TimeoutError, OSError)
        try:
            handle = await self._open(session)
        except BrokerError:
            raise
        except errors as e:
            raise SessionConnectionError(
                f"{self.variant.value} connect failed: {e}",
                session_id=session.id,
            ) from e

        await self._after_connect(session, handle)
        logger.info("Session %s connected", session.id)
        return handle

    async def _after_connect(self, session: Any, handle: BrowserHandle) -> None:
        config = session.config
        needs_page = (
            config.session_context is not None or bool(session.profile_id)
        )
        if not needs_page:
            return
        try:
            page = await handle.first_page()
        except Exception as e:
            report_persistence_failure(
                "Session %s: no page for state injection: %s", session.id, e,
            )
            return

        if config.session_context is not None:
            try:
                await self.codec.inject(page, config.session_context)
                logger.debug("Session %s: context injected", session.id)
            except Exception as e:
                logger.warning(
                    "Session %s: context injection failed: %s",
                    session.id, e,
                )

        if session.profile_id and self.profile_store is not None:
            await self._load_profile(session, page)
            if config.persist_profile:
                handle.add_close_hook(self._save_hook(session, handle))

    async def _load_profile(self, session: Any, page: PageHandle) -> None:
        try:
            loaded = await self.profile_store.load_into_page(
                session.profile_id, page,
            )
            if not loaded:
                logger.info(
                    "Session %s: profile '%s' not found, starting fresh",
                    session.id, session.profile_id,
                )
        except Exception as e:
            report_persistence_failure(
                "Session %s: failed to load profile '%s': %s",
                session.id, session.profile_id, e,
            )

    def _save_hook(self, session: Any, handle: BrowserHandle) -> CloseHook:
        async def save_profile() -> None:
            try:
                pages = await handle.pages()
                if not pages:
                    logger.warning(
                        "Session %s: no pages open to save profile '%s'",
                        session.id, session.profile_id,
                    )
                    return
                await self.profile_store.save_from_page(
                    session.profile_id, pages[0],
                )
            except Exception as e:
                report_persistence_failure(
                    "Session %s: failed to save profile '%s' on close: %s",
                    session.id, session.profile_id, e,
                )

        return save_profile


def timeout_seconds(session: Any) -> float:
    return session.timeout / 1000.0


def stealth_of(session: Any) -> StealthProfile:
    """The session's stealth plan, or a no-op plan."""
    if session.stealth is not None:
        return session.stealth
    return StealthProfile(user_agent=session.user_agent,
                          viewport=dict(session.viewport))


