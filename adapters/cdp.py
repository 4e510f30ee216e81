"""Variant A: Chrome DevTools Protocol over a persistent socket.

Connects with ``chromium.connect_over_cdp`` and works on the page/target
tree directly.  Stealth is installed per page through a dedicated CDP
session:

* ``Network.setUserAgentOverride`` for the session user-agent,
* ``Page.addScriptToEvaluateOnNewDocument`` for each evasion, plus one
  evaluation on the already-loaded document,
* ``page.set_viewport_size`` for the session viewport.

A ``page`` listener on the default context gives every page opened
later (by the caller or by the site) the same treatment.  The CDP
sessions are kept referenced for the handle's lifetime; detaching one
drops its registered scripts.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from browser.pages import PageHandle, PlaywrightPage
from browser.stealth_hub import StealthHub, StealthProfile
from core.config import AdapterVariant

from .base import BrowserHandle, ProtocolAdapter, stealth_of, timeout_seconds

logger = logging.getLogger(__name__)


class CDPBrowserHandle(BrowserHandle):
    """Handle over a CDP-connected browser and its default context."""

    def __init__(
        self,
        session_id: str,
        stealth: StealthProfile,
        playwright: Any,
        browser: Any,
        context: Any,
        apply_viewport: bool,
    ) -> None:
        super().__init__(session_id, stealth)
        self._playwright = playwright
        self._browser = browser
        self._context = context
        self._apply_viewport = apply_viewport
        self._prepared: Dict[Any, "asyncio.Future[None]"] = {}

    @property
    def raw(self) -> Any:
        return self._browser

    @property
    def context(self) -> Any:
        return self._context

    # ------------------------------------------------------------------
    # Per-page preparation
    # ------------------------------------------------------------------

    async def prepare(self, page: Any) -> None:
        """Apply the session's stealth plan to *page* exactly once."""
        task = self._prepared.get(page)
        if task is None:
            task = asyncio.ensure_future(self._prepare(page))
            self._prepared[page] = task
            page.on("close", self._forget_page)
        await task

    def _forget_page(self, page: Any) -> None:
        self._prepared.pop(page, None)

    async def _prepare(self, page: Any) -> None:
        stealth = self.stealth
        if stealth.user_agent or stealth.inject_evasions:
            cdp = await self._context.new_cdp_session(page)
            if stealth.user_agent:
                await cdp.send("Network.setUserAgentOverride", {
                    "userAgent": stealth.user_agent,
                    "platform": stealth.platform,
                })
            if stealth.inject_evasions:
                evasions = StealthHub.get_evasion_scripts(stealth.languages)
                for _, source in evasions:
                    await cdp.send(
                        "Page.addScriptToEvaluateOnNewDocument",
                        {"source": source},
                    )
                # The current document was loaded before registration
                for name, source in evasions:
                    try:
                        await page.evaluate(source)
                    except PlaywrightError as e:
                        logger.debug("Evasion %s on current document: %s",
                                     name, e)
                logger.debug(
                    "Session %s: %d evasions installed",
                    self.session_id, len(evasions),
                )
        if self._apply_viewport:
            await page.set_viewport_size(stealth.viewport)

    def _on_page(self, page: Any) -> None:
        if self.closed:
            return
        task = asyncio.ensure_future(self.prepare(page))
        task.add_done_callback(self._log_prepare_failure)

    def _log_prepare_failure(self, task: "asyncio.Future[None]") -> None:
        if not task.cancelled() and task.exception() is not None:
            logger.warning(
                "Session %s: stealth setup on new page failed: %s",
                self.session_id, task.exception(),
            )

    # ------------------------------------------------------------------
    # BrowserHandle
    # ------------------------------------------------------------------

    async def _list_pages(self) -> List[PageHandle]:
        return [PlaywrightPage(p) for p in self._context.pages]

    async def _create_page(self) -> PageHandle:
        page = await self._context.new_page()
        await self.prepare(page)
        return PlaywrightPage(page)

    async def _disconnect(self) -> None:
        try:
            await self._browser.close()
        finally:
            await self._playwright.stop()


class CDPAdapter(ProtocolAdapter):
    """Connects sessions over CDP (page/target model).

    Args:
        playwright_factory: Returns an object with an async ``start()``;
            defaults to :func:`playwright.async_api.async_playwright`.
    """

    variant = AdapterVariant.CDP
    transport_errors = (PlaywrightError,)

    def __init__(
        self,
        *args: Any,
        playwright_factory: Optional[Callable[[], Any]] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(*args, **kwargs)
        self._playwright_factory = playwright_factory or async_playwright

    async def _open(self, session: Any) -> BrowserHandle:
        playwright = await self._playwright_factory().start()
        try:
            browser = await playwright.chromium.connect_over_cdp(
                session.endpoint, timeout=session.timeout,
            )
        except BaseException:
            await playwright.stop()
            raise

        try:
            if browser.contexts:
                context = browser.contexts[0]
            else:
                context = await browser.new_context()

            handle = CDPBrowserHandle(
                session.id,
                stealth_of(session),
                playwright,
                browser,
                context,
                apply_viewport=session.stealth_config is not None,
            )
            if context.pages:
                first = context.pages[0]
            else:
                first = await asyncio.wait_for(
                    context.new_page(), timeout_seconds(session),
                )
            await handle.prepare(first)
            context.on("page", handle._on_page)
        except BaseException:
            await browser.close()
            await playwright.stop()
            raise
        return handle
