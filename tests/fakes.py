"""In-memory stand-ins for Playwright objects and a WebDriver hub.

They model just enough browser behaviour for the broker's logic: pages
with a URL, per-origin storage, context-wide cookies, init scripts and
CDP new-document scripts.  ``navigator.webdriver`` reads ``False`` only
once the automation-flag evasion has run on the current document.
"""

import asyncio
import itertools
import json
from typing import Any, Callable, Dict, List, Optional

from browser import stealth_scripts
from browser.context_codec import (
    STORAGE_CLEAR_JS,
    STORAGE_SNAPSHOT_JS,
    STORAGE_WRITE_JS,
    normalize_origin,
)

_ids = itertools.count(1)


async def _maybe_await(value: Any) -> None:
    if asyncio.iscoroutine(value) or isinstance(value, asyncio.Future):
        await value


# ---------------------------------------------------------------------------
# Playwright
# ---------------------------------------------------------------------------

class FakeCDPSession:
    def __init__(self, page: "FakePage") -> None:
        self.page = page
        self.sent: List[tuple] = []

    async def send(self, method: str, params: Optional[Dict] = None) -> Dict:
        self.sent.append((method, params or {}))
        if method == "Page.addScriptToEvaluateOnNewDocument":
            self.page.new_document_scripts.append(params["source"])
        elif method == "Network.setUserAgentOverride":
            self.page.user_agent = params["userAgent"]
        return {}


class FakePage:
    def __init__(self, context: "FakeContext", url: str = "about:blank") -> None:
        self.context = context
        self.url = url
        self.page_title = ""
        self.new_document_scripts: List[str] = []
        self.evaluated: List[str] = []
        self.viewport: Optional[Dict[str, int]] = context.options.get("viewport")
        self.user_agent: Optional[str] = context.options.get("user_agent")
        self.local_storage: Dict[str, Dict[str, str]] = {}
        self.session_storage: Dict[str, Dict[str, str]] = {}
        self.actions: List[tuple] = []
        self.listeners: Dict[str, List[Callable]] = {}
        self.closed = False
        self._webdriver_hidden = False
        self._run_document_scripts()

    # -- document lifecycle -------------------------------------------------

    def _document_scripts(self) -> List[str]:
        return list(self.context.init_scripts) + list(self.new_document_scripts)

    def _run_document_scripts(self) -> None:
        self._webdriver_hidden = any(
            stealth_scripts.NAVIGATOR_WEBDRIVER.strip() in s
            for s in self._document_scripts()
        )

    @property
    def origin(self) -> Optional[str]:
        return normalize_origin(self.url)

    async def goto(self, url: str, **kwargs: Any) -> None:
        self.url = url
        self._run_document_scripts()

    async def title(self) -> str:
        return self.page_title

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        self.evaluated.append(script)
        if script == STORAGE_SNAPSHOT_JS:
            if self.origin is None:
                raise RuntimeError("SecurityError: opaque origin")
            return {
                "origin": self.origin,
                "localStorage": dict(self.local_storage.get(self.origin, {})),
                "sessionStorage": dict(
                    self.session_storage.get(self.origin, {}),
                ),
            }
        if script == STORAGE_WRITE_JS:
            area, entries = arg
            target = (
                self.session_storage if area == "sessionStorage"
                else self.local_storage
            )
            target.setdefault(self.origin, {}).update(entries)
            return len(entries)
        if script == STORAGE_CLEAR_JS:
            self.local_storage.pop(self.origin, None)
            self.session_storage.pop(self.origin, None)
            return None
        if script.strip() == stealth_scripts.NAVIGATOR_WEBDRIVER.strip():
            self._webdriver_hidden = True
            return None
        if script.strip() in ("navigator.webdriver", "() => navigator.webdriver"):
            return not self._webdriver_hidden
        if script.strip() in ("navigator.userAgent", "() => navigator.userAgent"):
            return self.user_agent
        return None

    async def set_viewport_size(self, viewport: Dict[str, int]) -> None:
        self.viewport = dict(viewport)

    async def click(self, selector: str, **kwargs: Any) -> None:
        self.actions.append(("click", selector, kwargs))

    async def type(self, selector: str, text: str, **kwargs: Any) -> None:
        self.actions.append(("type", selector, text, kwargs))

    async def fill(self, selector: str, value: str, **kwargs: Any) -> None:
        self.actions.append(("fill", selector, value, kwargs))

    def on(self, event: str, callback: Callable) -> None:
        self.listeners.setdefault(event, []).append(callback)

    async def close(self) -> None:
        self.closed = True
        if self in self.context.pages:
            self.context.pages.remove(self)
        for callback in self.listeners.get("close", []):
            await _maybe_await(callback(self))


class FakeContext:
    def __init__(self, options: Optional[Dict[str, Any]] = None) -> None:
        self.options = dict(options or {})
        self.pages: List[FakePage] = []
        self.init_scripts: List[str] = []
        self.extra_headers: Dict[str, str] = {}
        self.cdp_sessions: List[FakeCDPSession] = []
        self.listeners: Dict[str, List[Callable]] = {}
        self._cookies: List[Dict[str, Any]] = []

    def on(self, event: str, callback: Callable) -> None:
        self.listeners.setdefault(event, []).append(callback)

    async def new_page(self) -> FakePage:
        page = FakePage(self)
        self.pages.append(page)
        for callback in self.listeners.get("page", []):
            await _maybe_await(callback(page))
        return page

    def open_popup(self, url: str = "about:blank") -> FakePage:
        """A page opened by the site, not by the caller."""
        page = FakePage(self, url)
        self.pages.append(page)
        return page

    async def new_cdp_session(self, page: FakePage) -> FakeCDPSession:
        session = FakeCDPSession(page)
        self.cdp_sessions.append(session)
        return session

    async def add_init_script(self, script: Optional[str] = None, **kwargs: Any) -> None:
        self.init_scripts.append(script)

    async def set_extra_http_headers(self, headers: Dict[str, str]) -> None:
        self.extra_headers.update(headers)

    async def cookies(self) -> List[Dict[str, Any]]:
        return [dict(c) for c in self._cookies]

    async def add_cookies(self, cookies: List[Dict[str, Any]]) -> None:
        for cookie in cookies:
            item = dict(cookie)
            if "url" in item:
                item["domain"] = normalize_origin(item.pop("url")).split("://")[1]
                item.setdefault("path", "/")
            key = (item["name"], item.get("domain"), item.get("path", "/"))
            self._cookies = [
                c for c in self._cookies
                if (c["name"], c.get("domain"), c.get("path", "/")) != key
            ]
            self._cookies.append(item)

    async def clear_cookies(self) -> None:
        self._cookies = []


class FakeBrowser:
    def __init__(self, contexts: Optional[List[FakeContext]] = None) -> None:
        self.contexts: List[FakeContext] = list(contexts or [])
        self.closed = False

    async def new_context(self, **options: Any) -> FakeContext:
        context = FakeContext(options)
        self.contexts.append(context)
        return context

    async def close(self) -> None:
        self.closed = True


class FakeChromium:
    def __init__(self, browser: FakeBrowser, error: Optional[BaseException] = None) -> None:
        self.browser = browser
        self.error = error
        self.calls: List[tuple] = []

    async def connect_over_cdp(self, endpoint: str, timeout: Any = None) -> FakeBrowser:
        self.calls.append(("connect_over_cdp", endpoint, timeout))
        if self.error is not None:
            raise self.error
        return self.browser

    async def connect(self, endpoint: str, timeout: Any = None) -> FakeBrowser:
        self.calls.append(("connect", endpoint, timeout))
        if self.error is not None:
            raise self.error
        return self.browser


class FakePlaywright:
    """Stands in for both ``async_playwright()`` and its started object."""

    def __init__(
        self,
        browser: Optional[FakeBrowser] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        self.browser = browser or FakeBrowser()
        self.chromium = FakeChromium(self.browser, error)
        self.started = False
        self.stopped = False

    async def start(self) -> "FakePlaywright":
        self.started = True
        return self

    async def stop(self) -> None:
        self.stopped = True

    def factory(self) -> "FakePlaywright":
        return self


def browser_with_page(url: str = "about:blank") -> FakeBrowser:
    """A remote browser that already has one context with one page."""
    context = FakeContext()
    context.open_popup(url)
    return FakeBrowser([context])


# ---------------------------------------------------------------------------
# WebDriver hub
# ---------------------------------------------------------------------------

class FakeResponse:
    """A ``str`` body is parsed on :meth:`json`, like a raw reply."""

    def __init__(self, status: int, body: Any) -> None:
        self.status = status
        self._body = body

    async def __aenter__(self) -> "FakeResponse":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        return None

    async def json(self, content_type: Any = None) -> Any:
        if isinstance(self._body, str):
            return json.loads(self._body)
        return self._body


class FakeWebDriverHub:
    """Routes W3C WebDriver requests to in-memory windows.

    Use :meth:`factory` as the adapter's ``http_factory``.
    """

    def __init__(
        self,
        fail_new_session: bool = False,
        new_session_reply: Optional[tuple] = None,
    ) -> None:
        self.fail_new_session = fail_new_session
        # (status, body) returned verbatim for POST /session
        self.new_session_reply = new_session_reply
        self.requests: List[tuple] = []
        self.factory_kwargs: Dict[str, Any] = {}
        self.session_id: Optional[str] = None
        self.capabilities: Dict[str, Any] = {}
        self.windows: Dict[str, Dict[str, Any]] = {}
        self.current: Optional[str] = None
        self.cookies: List[Dict[str, Any]] = []
        self.keys: List[tuple] = []
        self.closed = False

    def factory(self, **kwargs: Any) -> "FakeWebDriverHub":
        self.factory_kwargs = kwargs
        return self

    async def close(self) -> None:
        self.closed = True

    def _new_window(self) -> str:
        handle = f"window-{next(_ids)}"
        self.windows[handle] = {"url": "about:blank", "title": ""}
        return handle

    def request(self, method: str, url: str, json: Any = None) -> FakeResponse:
        self.requests.append((method, url, json))
        path = url.split("/wd/hub", 1)[-1]
        if (
            self.new_session_reply is not None
            and method == "POST" and path == "/session"
        ):
            return FakeResponse(*self.new_session_reply)
        status, value = self._route(method, path, json or {})
        return FakeResponse(status, {"value": value})

    def _route(self, method: str, path: str, body: Dict[str, Any]) -> tuple:
        if method == "POST" and path == "/session":
            if self.fail_new_session:
                return 500, {
                    "error": "session not created",
                    "message": "no capacity",
                }
            self.session_id = f"wd-{next(_ids)}"
            self.capabilities = body["capabilities"]["alwaysMatch"]
            self.current = self._new_window()
            return 200, {
                "sessionId": self.session_id,
                "capabilities": self.capabilities,
            }

        prefix = f"/session/{self.session_id}"
        if not path.startswith(prefix):
            return 404, {"error": "invalid session id", "message": path}
        sub = path[len(prefix):]

        if method == "DELETE" and sub == "":
            self.session_id = None
            return 200, None
        if sub == "/window/handles":
            return 200, list(self.windows)
        if sub == "/window/new":
            return 200, {"handle": self._new_window(), "type": "tab"}
        if sub == "/window" and method == "GET":
            return 200, self.current
        if sub == "/window" and method == "POST":
            self.current = body["handle"]
            return 200, None
        if sub == "/window" and method == "DELETE":
            self.windows.pop(self.current, None)
            self.current = None
            return 200, list(self.windows)
        if sub == "/url" and method == "GET":
            return 200, self.windows[self.current]["url"]
        if sub == "/url" and method == "POST":
            self.windows[self.current]["url"] = body["url"]
            return 200, None
        if sub == "/title":
            return 200, self.windows[self.current]["title"]
        if sub == "/execute/sync":
            return 200, None
        if sub == "/cookie" and method == "GET":
            return 200, [dict(c) for c in self.cookies]
        if sub == "/cookie" and method == "POST":
            self.cookies.append(dict(body["cookie"]))
            return 200, None
        if sub == "/cookie" and method == "DELETE":
            self.cookies = []
            return 200, None
        if sub == "/element":
            return 200, {
                "element-6066-11e4-a52e-4f735466cecf": body["value"],
            }
        if sub.startswith("/element/"):
            _, _, element, action = sub.split("/")
            self.keys.append((action, element, body.get("text")))
            return 200, None
        return 404, {"error": "unknown command", "message": sub}
