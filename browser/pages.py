"""Protocol-agnostic page handles.

Every adapter hands pages to callers through :class:`PageHandle`, so the
context codec, the humaniser and downstream collaborators (quick
actions, file and captcha helpers) never branch on the wire protocol.
The underlying library object stays reachable through ``raw``.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class PageHandle(ABC):
    """Minimal page interface shared by all protocol variants."""

    @property
    @abstractmethod
    def raw(self) -> Any:
        """The underlying library page object."""

    @property
    def page_id(self) -> str:
        return str(id(self.raw))

    @abstractmethod
    async def current_url(self) -> str:
        ...

    @abstractmethod
    async def title(self) -> str:
        ...

    @abstractmethod
    async def goto(self, url: str, timeout: Optional[float] = None) -> None:
        ...

    @abstractmethod
    async def evaluate(self, script: str, arg: Any = None) -> Any:
        """Run *script* (an expression or a one-argument function)."""

    @abstractmethod
    async def cookies(self) -> List[Dict[str, Any]]:
        """Return every cookie visible to the page's browsing context."""

    @abstractmethod
    async def add_cookies(self, cookies: List[Dict[str, Any]]) -> None:
        ...

    @abstractmethod
    async def clear_cookies(self) -> None:
        ...

    @abstractmethod
    async def click(self, selector: str, **kwargs: Any) -> None:
        ...

    @abstractmethod
    async def type(
        self,
        selector: str,
        text: str,
        delay: Optional[float] = None,
        **kwargs: Any,
    ) -> None:
        """Type *text* into *selector*; *delay* is ms per character."""

    @abstractmethod
    async def fill(self, selector: str, value: str, **kwargs: Any) -> None:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...


class PlaywrightPage(PageHandle):
    """:class:`PageHandle` over a ``playwright.async_api.Page``.

    Used by both socket variants: a page obtained over CDP and a page
    inside an explicit browsing context expose the same Playwright API.
    """

    def __init__(self, page: Any) -> None:
        self._page = page

    @property
    def raw(self) -> Any:
        return self._page

    @property
    def url(self) -> str:
        return self._page.url

    async def current_url(self) -> str:
        return self._page.url

    async def title(self) -> str:
        return await self._page.title()

    async def goto(self, url: str, timeout: Optional[float] = None) -> None:
        kwargs: Dict[str, Any] = {"wait_until": "domcontentloaded"}
        if timeout is not None:
            kwargs["timeout"] = timeout
        await self._page.goto(url, **kwargs)

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        if arg is None:
            return await self._page.evaluate(script)
        return await self._page.evaluate(script, arg)

    async def cookies(self) -> List[Dict[str, Any]]:
        return await self._page.context.cookies()

    async def add_cookies(self, cookies: List[Dict[str, Any]]) -> None:
        # Playwright needs either url or domain+path, and rejects
        # negative/None expiry and unknown sameSite values.
        url = self._page.url
        prepared = []
        for cookie in cookies:
            item = {k: v for k, v in cookie.items() if v is not None}
            if not item.get("domain"):
                item.pop("domain", None)
                item.pop("path", None)
                item["url"] = url
            expires = item.get("expires")
            if expires is not None and expires < 0:
                item.pop("expires")
            if item.get("sameSite") not in ("Strict", "Lax", "None"):
                item.pop("sameSite", None)
            prepared.append(item)
        await self._page.context.add_cookies(prepared)

    async def clear_cookies(self) -> None:
        await self._page.context.clear_cookies()

    async def click(self, selector: str, **kwargs: Any) -> None:
        await self._page.click(selector, **kwargs)

    async def type(
        self,
        selector: str,
        text: str,
        delay: Optional[float] = None,
        **kwargs: Any,
    ) -> None:
        if delay is not None:
            kwargs["delay"] = delay
        await self._page.type(selector, text, **kwargs)

    async def fill(self, selector: str, value: str, **kwargs: Any) -> None:
        await self._page.fill(selector, value, **kwargs)

    async def close(self) -> None:
        await self._page.close()
