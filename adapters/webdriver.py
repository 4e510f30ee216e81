"""Variant C: W3C WebDriver over plain HTTP.

Request/response protocol, negotiated by capabilities posted to a hub.
There is no pre-navigation script hook, so fingerprint evasion scripts
are rejected with :class:`~core.errors.CapabilityUnsupportedError`
rather than approximated; user-agent and window size are baked into the
browser launch arguments by the capability builder instead.

Each browser window is exposed as a :class:`WebDriverPage`.  WebDriver
addresses one window at a time, so every page operation switches to its
window first; a per-session lock keeps switch-and-act sequences in
issue order.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import unquote, urlsplit, urlunsplit

import aiohttp

from browser.context_codec import Cookie
from browser.pages import PageHandle
from browser.stealth_hub import StealthProfile
from core.capabilities import ensure_stealth_supported
from core.config import AdapterVariant

from .base import BrowserHandle, ProtocolAdapter, stealth_of, timeout_seconds

logger = logging.getLogger(__name__)

ELEMENT_KEY = "element-6066-11e4-a52e-4f735466cecf"
_SAME_SITE = ("Strict", "Lax", "None")


class WebDriverError(Exception):
    """Error response from a WebDriver endpoint."""

    def __init__(self, error: str, message: str = "", status: int = 0) -> None:
        self.error = error
        self.status = status
        super().__init__(f"{error}: {message}" if message else error)


def split_credentials(url: str) -> Tuple[str, Optional[aiohttp.BasicAuth]]:
    """Strip ``user:key@`` from *url* and return it as basic auth."""
    parts = urlsplit(url)
    if not parts.username:
        return url.rstrip("/"), None
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    bare = urlunsplit(
        (parts.scheme, host, parts.path, parts.query, parts.fragment),
    )
    auth = aiohttp.BasicAuth(
        unquote(parts.username), unquote(parts.password or ""),
    )
    return bare.rstrip("/"), auth


def wrap_script(script: str) -> str:
    """Turn an expression or one-argument function into a script body.

    WebDriver executes function bodies; page handles take expressions
    or functions, as Playwright does.
    """
    source = script.strip().rstrip(";")
    return (
        f"const __value = (\n{source}\n);\n"
        "return typeof __value === 'function'"
        " ? __value(arguments[0]) : __value;"
    )


class WebDriverClient:
    """Minimal async WebDriver client bound to one remote session.

    Args:
        hub_url: Hub base URL without credentials.
        http: An ``aiohttp.ClientSession`` (carrying auth and timeout).
    """

    def __init__(self, hub_url: str, http: Any) -> None:
        self.hub_url = hub_url
        self.http = http
        self.session_id: Optional[str] = None
        self.capabilities: Dict[str, Any] = {}
        self.lock = asyncio.Lock()
        self._current_window: Optional[str] = None

    async def _request(
        self,
        method: str,
        path: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Any:
        url = f"{self.hub_url}{path}"
        async with self.http.request(method, url, json=payload) as resp:
            try:
                data = await resp.json(content_type=None)
            except ValueError as e:
                raise WebDriverError(
                    "invalid response", str(e), status=resp.status,
                ) from e
            value = data.get("value") if isinstance(data, dict) else None
            if resp.status >= 400 or (
                isinstance(value, dict) and "error" in value
            ):
                value = value if isinstance(value, dict) else {}
                raise WebDriverError(
                    value.get("error", f"http {resp.status}"),
                    value.get("message", ""),
                    status=resp.status,
                )
            return value

    def _session_path(self, suffix: str = "") -> str:
        return f"/session/{self.session_id}{suffix}"

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    async def new_session(self, capabilities: Dict[str, Any]) -> str:
        value = await self._request(
            "POST", "/session",
            {"capabilities": {"alwaysMatch": capabilities}},
        )
        if not isinstance(value, dict) or not value.get("sessionId"):
            raise WebDriverError(
                "invalid response", "new session reply has no sessionId",
            )
        self.session_id = value["sessionId"]
        self.capabilities = value.get("capabilities") or {}
        logger.debug("WebDriver session %s opened", self.session_id)
        return self.session_id

    async def delete_session(self) -> None:
        if self.session_id is None:
            return
        await self._request("DELETE", self._session_path())
        self.session_id = None

    # ------------------------------------------------------------------
    # Windows
    # ------------------------------------------------------------------

    async def window_handles(self) -> List[str]:
        return await self._request("GET", self._session_path("/window/handles"))

    async def current_window(self) -> str:
        if self._current_window is None:
            self._current_window = await self._request(
                "GET", self._session_path("/window"),
            )
        return self._current_window

    async def new_window(self) -> str:
        value = await self._request(
            "POST", self._session_path("/window/new"), {"type": "tab"},
        )
        return value["handle"]

    async def switch_to(self, handle: str) -> None:
        if handle == self._current_window:
            return
        await self._request(
            "POST", self._session_path("/window"), {"handle": handle},
        )
        self._current_window = handle

    async def close_window(self) -> None:
        await self._request("DELETE", self._session_path("/window"))
        self._current_window = None

    # ------------------------------------------------------------------
    # Navigation, scripts, cookies, elements
    # ------------------------------------------------------------------

    async def get_url(self) -> str:
        return await self._request("GET", self._session_path("/url"))

    async def navigate(self, url: str) -> None:
        await self._request("POST", self._session_path("/url"), {"url": url})

    async def title(self) -> str:
        return await self._request("GET", self._session_path("/title"))

    async def execute(self, script: str, args: List[Any]) -> Any:
        return await self._request(
            "POST", self._session_path("/execute/sync"),
            {"script": script, "args": args},
        )

    async def get_cookies(self) -> List[Dict[str, Any]]:
        return await self._request("GET", self._session_path("/cookie"))

    async def add_cookie(self, cookie: Dict[str, Any]) -> None:
        await self._request(
            "POST", self._session_path("/cookie"), {"cookie": cookie},
        )

    async def delete_cookies(self) -> None:
        await self._request("DELETE", self._session_path("/cookie"))

    async def find_element(self, selector: str) -> str:
        value = await self._request(
            "POST", self._session_path("/element"),
            {"using": "css selector", "value": selector},
        )
        return value[ELEMENT_KEY]

    async def click(self, element_id: str) -> None:
        await self._request(
            "POST", self._session_path(f"/element/{element_id}/click"), {},
        )

    async def clear(self, element_id: str) -> None:
        await self._request(
            "POST", self._session_path(f"/element/{element_id}/clear"), {},
        )

    async def send_keys(self, element_id: str, text: str) -> None:
        await self._request(
            "POST", self._session_path(f"/element/{element_id}/value"),
            {"text": text},
        )


def _to_webdriver_cookie(cookie: Dict[str, Any]) -> Dict[str, Any]:
    item: Dict[str, Any] = {
        "name": cookie["name"],
        "value": cookie["value"],
        "path": cookie.get("path") or "/",
        "secure": bool(cookie.get("secure", False)),
        "httpOnly": bool(cookie.get("httpOnly", False)),
    }
    if cookie.get("domain"):
        item["domain"] = cookie["domain"]
    expires = cookie.get("expires")
    if expires is not None and expires >= 0:
        item["expiry"] = int(expires)
    if cookie.get("sameSite") in _SAME_SITE:
        item["sameSite"] = cookie["sameSite"]
    return item


class WebDriverPage(PageHandle):
    """:class:`PageHandle` over one WebDriver window."""

    def __init__(self, client: WebDriverClient, window: str) -> None:
        self._client = client
        self._window = window

    @property
    def raw(self) -> Any:
        return self._client

    @property
    def page_id(self) -> str:
        return self._window

    async def current_url(self) -> str:
        async with self._client.lock:
            await self._client.switch_to(self._window)
            return await self._client.get_url()

    async def title(self) -> str:
        async with self._client.lock:
            await self._client.switch_to(self._window)
            return await self._client.title()

    async def goto(self, url: str, timeout: Optional[float] = None) -> None:
        async with self._client.lock:
            await self._client.switch_to(self._window)
            if timeout is None:
                await self._client.navigate(url)
            else:
                await asyncio.wait_for(
                    self._client.navigate(url), timeout / 1000.0,
                )

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        async with self._client.lock:
            await self._client.switch_to(self._window)
            return await self._client.execute(wrap_script(script), [arg])

    async def cookies(self) -> List[Dict[str, Any]]:
        async with self._client.lock:
            await self._client.switch_to(self._window)
            raw = await self._client.get_cookies()
        return [Cookie.from_dict(c).to_dict() for c in raw or []]

    async def add_cookies(self, cookies: List[Dict[str, Any]]) -> None:
        # WebDriver only accepts cookies for the current document's domain
        async with self._client.lock:
            await self._client.switch_to(self._window)
            for cookie in cookies:
                try:
                    await self._client.add_cookie(_to_webdriver_cookie(cookie))
                except WebDriverError as e:
                    logger.debug(
                        "Cookie %s for %s rejected: %s",
                        cookie.get("name"), cookie.get("domain"), e,
                    )

    async def clear_cookies(self) -> None:
        async with self._client.lock:
            await self._client.switch_to(self._window)
            await self._client.delete_cookies()

    async def click(self, selector: str, **kwargs: Any) -> None:
        async with self._client.lock:
            await self._client.switch_to(self._window)
            element = await self._client.find_element(selector)
            await self._client.click(element)

    async def type(
        self,
        selector: str,
        text: str,
        delay: Optional[float] = None,
        **kwargs: Any,
    ) -> None:
        async with self._client.lock:
            await self._client.switch_to(self._window)
            element = await self._client.find_element(selector)
            if not delay:
                await self._client.send_keys(element, text)
                return
            for char in text:
                await self._client.send_keys(element, char)
                await asyncio.sleep(delay / 1000.0)

    async def fill(self, selector: str, value: str, **kwargs: Any) -> None:
        async with self._client.lock:
            await self._client.switch_to(self._window)
            element = await self._client.find_element(selector)
            await self._client.clear(element)
            if value:
                await self._client.send_keys(element, value)

    async def close(self) -> None:
        async with self._client.lock:
            await self._client.switch_to(self._window)
            await self._client.close_window()


class WebDriverBrowserHandle(BrowserHandle):
    """Handle over one remote WebDriver session."""

    def __init__(
        self,
        session_id: str,
        stealth: StealthProfile,
        client: WebDriverClient,
    ) -> None:
        super().__init__(session_id, stealth)
        self._client = client

    @property
    def raw(self) -> Any:
        return self._client

    @property
    def webdriver_session_id(self) -> Optional[str]:
        return self._client.session_id

    async def _list_pages(self) -> List[PageHandle]:
        async with self._client.lock:
            handles = await self._client.window_handles()
        return [WebDriverPage(self._client, h) for h in handles]

    async def _create_page(self) -> PageHandle:
        async with self._client.lock:
            window = await self._client.new_window()
        return WebDriverPage(self._client, window)

    async def _disconnect(self) -> None:
        try:
            await self._client.delete_session()
        finally:
            await self._client.http.close()


class WebDriverAdapter(ProtocolAdapter):
    """Connects sessions to a WebDriver hub over HTTP.

    Args:
        http_factory: Builds the HTTP client from ``auth`` and
            ``timeout`` keyword arguments; defaults to
            ``aiohttp.ClientSession``.
    """

    variant = AdapterVariant.WEBDRIVER
    transport_errors = (aiohttp.ClientError, WebDriverError)

    def __init__(
        self,
        *args: Any,
        http_factory: Optional[Callable[..., Any]] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(*args, **kwargs)
        self._http_factory = http_factory or aiohttp.ClientSession

    async def _open(self, session: Any) -> BrowserHandle:
        # Also enforced at capability-build time; sessions can be
        # constructed directly.
        ensure_stealth_supported(session.config, session.id)

        hub_url, auth = split_credentials(session.endpoint)
        http = self._http_factory(
            auth=auth,
            timeout=aiohttp.ClientTimeout(total=timeout_seconds(session)),
        )
        client = WebDriverClient(hub_url, http)
        try:
            await client.new_session(session.capabilities)
        except BaseException:
            await http.close()
            raise
        logger.info(
            "Session %s bound to WebDriver session %s",
            session.id, client.session_id,
        )
        return WebDriverBrowserHandle(session.id, stealth_of(session), client)
