"""Human-like interaction timing for page handles.

:class:`HumanizedPage` wraps any :class:`~browser.pages.PageHandle` and
inserts randomised delays around pointer and text-entry actions.  It is
composed around the base page when the adapter hands the page out, so
the library page object itself is never patched.

Typical usage::

    page = HumanizedPage(PlaywrightPage(raw_page))
    await page.click("#submit")      # waits 50-150 ms first
    await page.type("#q", "hello")   # 30-130 ms per character
"""

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from .pages import PageHandle

logger = logging.getLogger(__name__)

# Action-specific timing ranges (min, max in seconds)
TIMING_RANGES: Dict[str, Tuple[float, float]] = {
    "click": (0.05, 0.15),   # before pointer actions
    "type": (0.03, 0.13),    # per character
}


def get_action_delay(
    action_type: str = "click",
    rng: Optional[random.Random] = None,
) -> float:
    """Return a delay in seconds for *action_type*.

    Unknown action types fall back to the ``click`` range.
    """
    rng = rng or random
    low, high = TIMING_RANGES.get(action_type, TIMING_RANGES["click"])
    return rng.uniform(low, high)


class HumanizedPage(PageHandle):
    """Decorator adding human-like delays to a page's interactions.

    Navigation, evaluation and cookie access pass straight through.

    Args:
        inner: The page being wrapped.
        rng: Optional random source (seeded in tests).
        sleep: Awaitable sleep function, ``asyncio.sleep`` by default.
    """

    def __init__(
        self,
        inner: PageHandle,
        rng: Optional[random.Random] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ) -> None:
        self._inner = inner
        self._rng = rng or random.Random()
        self._sleep = sleep or asyncio.sleep

    @property
    def inner(self) -> PageHandle:
        return self._inner

    @property
    def raw(self) -> Any:
        return self._inner.raw

    @property
    def page_id(self) -> str:
        return self._inner.page_id

    async def current_url(self) -> str:
        return await self._inner.current_url()

    async def title(self) -> str:
        return await self._inner.title()

    async def goto(self, url: str, timeout: Optional[float] = None) -> None:
        await self._inner.goto(url, timeout=timeout)

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        return await self._inner.evaluate(script, arg)

    async def cookies(self) -> List[Dict[str, Any]]:
        return await self._inner.cookies()

    async def add_cookies(self, cookies: List[Dict[str, Any]]) -> None:
        await self._inner.add_cookies(cookies)

    async def clear_cookies(self) -> None:
        await self._inner.clear_cookies()

    async def click(self, selector: str, **kwargs: Any) -> None:
        await self._sleep(get_action_delay("click", self._rng))
        await self._inner.click(selector, **kwargs)

    def _char_delay_ms(self) -> float:
        return get_action_delay("type", self._rng) * 1000

    async def type(
        self,
        selector: str,
        text: str,
        delay: Optional[float] = None,
        **kwargs: Any,
    ) -> None:
        # An explicit caller delay wins
        if delay is None:
            delay = self._char_delay_ms()
        await self._inner.type(selector, text, delay=delay, **kwargs)

    async def fill(self, selector: str, value: str, **kwargs: Any) -> None:
        # fill() is instantaneous; replay it as keystrokes instead
        await self._sleep(get_action_delay("click", self._rng))
        await self._inner.fill(selector, "", **kwargs)
        if value:
            await self._inner.type(
                selector, value, delay=self._char_delay_ms(),
            )

    async def close(self) -> None:
        await self._inner.close()
