"""Browser state extraction and injection.

Moves cookies and per-origin storage (``localStorage`` /
``sessionStorage``) between a live page and a portable
:class:`BrowserState`, for in-run transfer between sessions and for
cross-run persistence through :mod:`browser.profile_store`.

Storage can only be written for the origin the page currently has
loaded.  Entries for any other origin are skipped silently; injection
never queues work for a later navigation.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)

StorageMap = Dict[str, Dict[str, str]]
"""Origin -> flat key/value storage area."""

_DEFAULT_PORTS = {"http": 80, "https": 443, "ws": 80, "wss": 443}

# Reads both storage areas of the current document in one round trip.
STORAGE_SNAPSHOT_JS = """
() => {
    const dump = (area) => {
        const data = {};
        for (let i = 0; i < area.length; i++) {
            const key = area.key(i);
            if (key !== null) {
                data[key] = area.getItem(key) || '';
            }
        }
        return data;
    };
    return {
        origin: window.location.origin,
        localStorage: dump(window.localStorage),
        sessionStorage: dump(window.sessionStorage),
    };
}
"""

STORAGE_WRITE_JS = """
([areaName, entries]) => {
    const area = areaName === 'sessionStorage'
        ? window.sessionStorage : window.localStorage;
    for (const [key, value] of Object.entries(entries)) {
        area.setItem(key, value);
    }
    return Object.keys(entries).length;
}
"""

STORAGE_CLEAR_JS = """
() => {
    window.localStorage.clear();
    window.sessionStorage.clear();
}
"""


class Cookie(BaseModel):
    """A single browser cookie.

    Serialises with the camel-case keys used by Playwright and the
    profile file format (``httpOnly``, ``sameSite``).  WebDriver's
    ``expiry`` key is accepted on input.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    value: str
    domain: Optional[str] = None
    path: str = "/"
    expires: Optional[float] = None
    http_only: bool = Field(default=False, alias="httpOnly")
    secure: bool = False
    same_site: Optional[str] = Field(default=None, alias="sameSite")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Cookie":
        """Build a cookie from a Playwright, CDP or WebDriver record."""
        payload = dict(data)
        if "expires" not in payload and "expiry" in payload:
            payload["expires"] = payload.pop("expiry")
        if payload.get("path") is None:
            payload["path"] = "/"
        return cls.model_validate(payload)

    @property
    def key(self) -> Tuple[str, str, str]:
        """Identity used for de-duplication: ``(name, domain, path)``."""
        return (self.name, (self.domain or "").lower(), self.path)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


def dedupe_cookies(cookies: List[Cookie]) -> List[Cookie]:
    """Drop duplicate cookies, keeping the last record for each key.

    First-seen order of keys is preserved.
    """
    by_key: Dict[Tuple[str, str, str], Cookie] = {}
    for cookie in cookies:
        by_key[cookie.key] = cookie
    return list(by_key.values())


class BrowserState(BaseModel):
    """Cookies plus per-origin storage captured from a browser.

    Attributes:
        cookies: Cookie records, unique by ``(name, domain, path)``.
        local_storage: Origin -> ``localStorage`` contents.
        session_storage: Origin -> ``sessionStorage`` contents.
    """

    model_config = ConfigDict(populate_by_name=True)

    cookies: List[Cookie] = Field(default_factory=list)
    local_storage: StorageMap = Field(
        default_factory=dict, alias="localStorage",
    )
    session_storage: StorageMap = Field(
        default_factory=dict, alias="sessionStorage",
    )

    @field_validator("cookies", mode="before")
    @classmethod
    def _parse_cookies(cls, value: Any) -> Any:
        if not value:
            return []
        parsed = [
            c if isinstance(c, Cookie) else Cookie.from_dict(c)
            for c in value
        ]
        return dedupe_cookies(parsed)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)

    def is_empty(self) -> bool:
        return not (
            self.cookies or self.local_storage or self.session_storage
        )


def normalize_origin(url: str) -> Optional[str]:
    """Return ``scheme://host[:port]`` for *url*, or ``None``.

    Default ports are dropped and scheme/host are lower-cased so
    ``https://Example.com:443/path`` and ``https://example.com``
    compare equal.  Opaque origins (``about:blank``, ``data:``,
    ``"null"``) yield ``None``.
    """
    if not url or url == "null":
        return None
    try:
        parts = urlsplit(url)
        host = parts.hostname
        port = parts.port
    except ValueError:
        return None
    scheme = parts.scheme.lower()
    if not scheme or not host:
        return None
    if port and _DEFAULT_PORTS.get(scheme) != port:
        return f"{scheme}://{host}:{port}"
    return f"{scheme}://{host}"


class ContextCodec:
    """Extracts and injects :class:`BrowserState` through a page handle.

    The codec is stateless; one instance can serve every session.  All
    page access goes through the :class:`~browser.pages.PageHandle`
    interface so the same code works for every protocol variant.
    """

    async def extract(self, page: Any) -> BrowserState:
        """Capture cookies and current-origin storage from *page*.

        Storage read failures (opaque origins, navigations in flight,
        sandboxed frames) yield empty storage maps instead of raising.

        Args:
            page: A :class:`~browser.pages.PageHandle`.

        Returns:
            The captured state.
        """
        raw_cookies = await page.cookies()
        local_storage: StorageMap = {}
        session_storage: StorageMap = {}
        try:
            snapshot = await page.evaluate(STORAGE_SNAPSHOT_JS)
            origin = normalize_origin((snapshot or {}).get("origin", ""))
            if origin:
                local_storage[origin] = dict(
                    snapshot.get("localStorage") or {},
                )
                session_storage[origin] = dict(
                    snapshot.get("sessionStorage") or {},
                )
        except Exception as e:
            logger.debug("Storage read failed: %s", e)
            local_storage, session_storage = {}, {}

        return BrowserState(
            cookies=raw_cookies,
            local_storage=local_storage,
            session_storage=session_storage,
        )

    async def inject(self, page: Any, state: BrowserState) -> None:
        """Apply *state* to *page*.

        Cookies are applied unconditionally.  Storage maps are written
        only for the origin matching the page's current URL at the
        time of injection; other origins are skipped.

        Args:
            page: A :class:`~browser.pages.PageHandle`.
            state: State to apply.
        """
        if state.cookies:
            await page.add_cookies([c.to_dict() for c in state.cookies])
            logger.debug("Injected %d cookies", len(state.cookies))

        current = normalize_origin(await page.current_url())
        for area, maps in (
            ("localStorage", state.local_storage),
            ("sessionStorage", state.session_storage),
        ):
            for origin, entries in maps.items():
                if not entries:
                    continue
                if current is None or normalize_origin(origin) != current:
                    logger.debug(
                        "Skipping %s for %s (page is on %s)",
                        area, origin, current,
                    )
                    continue
                await page.evaluate(STORAGE_WRITE_JS, [area, entries])

    async def clear(self, page: Any) -> None:
        """Remove every cookie in the page's context and clear storage.

        Storage is cleared for the current origin only; pages on an
        opaque origin have no storage to clear.
        """
        await page.clear_cookies()
        try:
            await page.evaluate(STORAGE_CLEAR_JS)
        except Exception as e:
            logger.debug("Storage clear skipped: %s", e)

    # ------------------------------------------------------------------
    # Narrow helpers
    # ------------------------------------------------------------------

    async def get_cookies(self, page: Any) -> List[Cookie]:
        return dedupe_cookies(
            [Cookie.from_dict(c) for c in await page.cookies()]
        )

    async def set_cookies(self, page: Any, cookies: List[Cookie]) -> None:
        if cookies:
            await page.add_cookies([c.to_dict() for c in cookies])

    async def get_local_storage(self, page: Any) -> Dict[str, str]:
        """Return ``localStorage`` of the page's current origin."""
        state = await self.extract(page)
        origin = normalize_origin(await page.current_url())
        return state.local_storage.get(origin or "", {})

    async def set_local_storage(
        self, page: Any, data: Dict[str, str],
    ) -> None:
        """Write *data* into ``localStorage`` of the current origin."""
        if data:
            await page.evaluate(STORAGE_WRITE_JS, ["localStorage", data])
