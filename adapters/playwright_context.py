"""Variant B: socket protocol with an explicit browsing context.

Connects with ``chromium.connect`` and obtains (or creates) a
``BrowserContext`` before touching any page.  Evasions are registered
once on the context with ``add_init_script``: they run before any page
script and are re-applied automatically to every page opened in the
context for the session's lifetime.

A freshly created context receives the session user-agent and viewport
natively.  When the backend hands over an existing context those are
applied afterwards: the UA through an init script plus the
``User-Agent`` request header, the viewport per page.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from browser import stealth_scripts
from browser.pages import PageHandle, PlaywrightPage
from browser.stealth_hub import StealthHub, StealthProfile
from core.config import AdapterVariant

from .base import BrowserHandle, ProtocolAdapter, stealth_of

logger = logging.getLogger(__name__)


class ContextBrowserHandle(BrowserHandle):
    """Handle over one ``BrowserContext`` of a remote browser."""

    def __init__(
        self,
        session_id: str,
        stealth: StealthProfile,
        playwright: Any,
        browser: Any,
        context: Any,
        resize_pages: bool,
    ) -> None:
        super().__init__(session_id, stealth)
        self._playwright = playwright
        self._browser = browser
        self._context = context
        self._resize_pages = resize_pages

    @property
    def raw(self) -> Any:
        return self._context

    @property
    def browser(self) -> Any:
        return self._browser

    async def resize(self, page: Any) -> None:
        if self._resize_pages:
            await page.set_viewport_size(self.stealth.viewport)

    async def _list_pages(self) -> List[PageHandle]:
        return [PlaywrightPage(p) for p in self._context.pages]

    async def _create_page(self) -> PageHandle:
        page = await self._context.new_page()
        await self.resize(page)
        return PlaywrightPage(page)

    async def _disconnect(self) -> None:
        try:
            await self._browser.close()
        finally:
            await self._playwright.stop()


class PlaywrightContextAdapter(ProtocolAdapter):
    """Connects sessions through an explicit browsing context.

    Args:
        playwright_factory: Returns an object with an async ``start()``;
            defaults to :func:`playwright.async_api.async_playwright`.
    """

    variant = AdapterVariant.PLAYWRIGHT
    transport_errors = (PlaywrightError,)

    def __init__(
        self,
        *args: Any,
        playwright_factory: Optional[Callable[[], Any]] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(*args, **kwargs)
        self._playwright_factory = playwright_factory or async_playwright

    @staticmethod
    def _context_options(
        stealth: StealthProfile, session: Any,
    ) -> Dict[str, Any]:
        options: Dict[str, Any] = {}
        if stealth.user_agent:
            options["user_agent"] = stealth.user_agent
        if session.stealth_config is not None:
            options["viewport"] = dict(stealth.viewport)
        return options

    async def _open(self, session: Any) -> BrowserHandle:
        stealth = stealth_of(session)
        playwright = await self._playwright_factory().start()
        try:
            browser = await playwright.chromium.connect(
                session.endpoint, timeout=session.timeout,
            )
        except BaseException:
            await playwright.stop()
            raise

        try:
            created = not browser.contexts
            if created:
                context = await browser.new_context(
                    **self._context_options(stealth, session),
                )
            else:
                context = browser.contexts[0]

            handle = ContextBrowserHandle(
                session.id,
                stealth,
                playwright,
                browser,
                context,
                resize_pages=(
                    not created and session.stealth_config is not None
                ),
            )
            await self._install(context, stealth, created)

            if context.pages:
                page = context.pages[0]
                await self._apply_to_loaded_page(page, stealth)
                await handle.resize(page)
            else:
                page = await context.new_page()
                await handle.resize(page)
            context.on("page", self._resize_listener(handle))
        except BaseException:
            await browser.close()
            await playwright.stop()
            raise
        return handle

    async def _install(
        self, context: Any, stealth: StealthProfile, created: bool,
    ) -> None:
        """Register pre-navigation scripts on *context*."""
        if stealth.user_agent and not created:
            await context.add_init_script(
                script=stealth_scripts.get_user_agent_script(
                    stealth.user_agent, stealth.platform,
                ),
            )
            await context.set_extra_http_headers(
                {"User-Agent": stealth.user_agent},
            )
        if stealth.inject_evasions:
            await context.add_init_script(
                script=StealthHub.get_stealth_script(stealth.languages),
            )
            logger.debug("Evasions registered as context init script")

    @staticmethod
    async def _apply_to_loaded_page(
        page: Any, stealth: StealthProfile,
    ) -> None:
        # Init scripts only reach documents created after registration
        if not stealth.inject_evasions:
            return
        for name, source in StealthHub.get_evasion_scripts(stealth.languages):
            try:
                await page.evaluate(source)
            except PlaywrightError as e:
                logger.debug("Evasion %s on current document: %s", name, e)

    @staticmethod
    def _resize_listener(handle: ContextBrowserHandle) -> Callable[[Any], Any]:
        async def on_page(page: Any) -> None:
            if handle.closed:
                return
            try:
                await handle.resize(page)
            except PlaywrightError as e:
                logger.warning(
                    "Session %s: viewport on new page failed: %s",
                    handle.session_id, e,
                )

        return on_page
