"""Configuration for the remote browser session broker.

Central configuration module powered by Pydantic v2.  Process-wide
settings are loaded from environment variables (with ``.env`` file
support); per-session options are plain Pydantic models validated at
session creation time.

Key exports:
    BrokerSettings: Process-wide settings (backend endpoints, timeouts,
        profile directory, credentials).
    SessionConfig: Caller-facing options for one session.
    StealthConfig: Fingerprint-evasion switches embedded in a session.
    Viewport: Width/height pair.
    AdapterVariant: Protocol variant selector.
    BASE_DIR / LOGS_DIR: Canonical project paths.
"""

# pylint: disable=no-member

import logging
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from browser.context_codec import BrowserState

# ---------------------------------------------------------------------------
# Base Paths
# ---------------------------------------------------------------------------
BASE_DIR: Path = Path(__file__).parent.parent
"""Project root directory (parent of ``core/``)."""

LOGS_DIR: Path = BASE_DIR / "logs"
"""Directory for log output files."""

DEFAULT_PROFILES_DIR = ".profiles"
"""Profile directory, relative to the working directory."""

DEFAULT_WIDTH = 1920
DEFAULT_HEIGHT = 1080
DEFAULT_SESSION_TIMEOUT_MS = 300000

logger: logging.Logger = logging.getLogger(__name__)


class AdapterVariant(str, Enum):
    """Remote-control protocol used to drive a session.

    Members:
        CDP: Message-based protocol over a persistent socket with a
            page/target tree (Puppeteer-style).
        PLAYWRIGHT: Socket protocol with an explicit browsing context
            object above the page.
        WEBDRIVER: Request/response W3C WebDriver over plain HTTP.
    """

    CDP = "cdp"
    PLAYWRIGHT = "playwright"
    WEBDRIVER = "webdriver"

    @classmethod
    def _missing_(cls, value: object) -> Optional["AdapterVariant"]:
        aliases = {"puppeteer": cls.CDP, "selenium": cls.WEBDRIVER}
        if isinstance(value, str):
            lowered = value.lower()
            if lowered in aliases:
                return aliases[lowered]
            for member in cls:
                if member.value == lowered:
                    return member
        return None


class Viewport(BaseModel):
    """Viewport dimensions in CSS pixels.

    Positivity is checked by the capability builder so the failure
    surfaces as a :class:`~core.errors.ConfigurationError`.
    """

    width: int = DEFAULT_WIDTH
    height: int = DEFAULT_HEIGHT

    def as_dict(self) -> Dict[str, int]:
        return {"width": self.width, "height": self.height}


class StealthConfig(BaseModel):
    """Fingerprint-evasion switches for one session.

    The four switches are independent.  ``skip_fingerprint_injection``
    only suppresses the evasion scripts; user-agent and viewport
    randomisation and interaction humanisation still apply unless
    disabled separately.

    Attributes:
        humanize_interactions: Insert random delays around click/type.
        skip_fingerprint_injection: Do not inject evasion scripts.
        randomize_user_agent: Pick a UA from the pool once per session.
        randomize_viewport: Jitter the base viewport once per session.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    humanize_interactions: bool = Field(
        default=False, alias="humanizeInteractions",
    )
    skip_fingerprint_injection: bool = Field(
        default=False, alias="skipFingerprintInjection",
    )
    randomize_user_agent: bool = Field(
        default=True, alias="randomizeUserAgent",
    )
    randomize_viewport: bool = Field(
        default=True, alias="randomizeViewport",
    )


class SessionConfig(BaseModel):
    """Options for creating one remote browser session.

    Attributes:
        adapter: Protocol variant used to connect.
        session_id: Optional caller-chosen id (must be unique).
        dimensions: Base viewport.
        platform: Platform hint (e.g. ``Windows 10``).
        browser_name: Browser hint (e.g. ``Chrome``).
        browser_version: Browser version hint (e.g. ``latest``).
        proxy: Upstream proxy URL.
        proxy_url: Alias of ``proxy``; ``proxy`` wins when both are set.
        geo_location: Backend geolocation code (e.g. ``US``).
        region: Backend region.
        tunnel: Route traffic through a named tunnel.
        tunnel_name: Existing tunnel to use; resolved if omitted.
        extension_urls: Extensions to load into the browser.
        headless: Headless flag; ``None`` leaves the backend default.
        timeout: Session timeout budget in milliseconds.
        user_agent: Explicit user-agent; always beats randomisation.
        stealth_config: Fingerprint-evasion switches (``None`` = off).
        profile_id: Profile loaded on connect and saved on close.
        persist_profile: Save the profile on close (default ``True``
            whenever ``profile_id`` is set).
        custom_websocket_url: Connect to this endpoint directly
            (bring-your-own-browser); no credentials required.
        hub_url: Override the WebDriver hub URL.
        backend_options: Backend-specific capability overrides merged
            after computed defaults.
        session_context: Browser state injected into the first page on
            connect.
    """

    model_config = ConfigDict(populate_by_name=True)

    adapter: AdapterVariant = AdapterVariant.CDP
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    dimensions: Viewport = Field(default_factory=Viewport)
    platform: Optional[str] = None
    browser_name: Optional[str] = Field(default=None, alias="browserName")
    browser_version: Optional[str] = Field(
        default=None, alias="browserVersion",
    )
    proxy: Optional[str] = None
    proxy_url: Optional[str] = Field(default=None, alias="proxyUrl")
    geo_location: Optional[str] = Field(default=None, alias="geoLocation")
    region: Optional[str] = None
    tunnel: bool = False
    tunnel_name: Optional[str] = Field(default=None, alias="tunnelName")
    extension_urls: List[str] = Field(
        default_factory=list, alias="extensionUrls",
    )
    headless: Optional[bool] = None
    timeout: Optional[int] = None
    user_agent: Optional[str] = Field(default=None, alias="userAgent")
    stealth_config: Optional[StealthConfig] = Field(
        default=None, alias="stealthConfig",
    )
    profile_id: Optional[str] = Field(default=None, alias="profileId")
    persist_profile: bool = Field(default=True, alias="persistProfile")
    custom_websocket_url: Optional[str] = Field(
        default=None, alias="customWebSocketUrl",
    )
    hub_url: Optional[str] = Field(default=None, alias="hubUrl")
    backend_options: Dict[str, Any] = Field(
        default_factory=dict, alias="backendOptions",
    )
    session_context: Optional[BrowserState] = Field(
        default=None, alias="sessionContext",
    )

    @field_validator("adapter", mode="before")
    @classmethod
    def _coerce_adapter(cls, value: Any) -> Any:
        if isinstance(value, str):
            return AdapterVariant(value)
        return value

    @property
    def effective_proxy(self) -> Optional[str]:
        return self.proxy or self.proxy_url


class BrokerSettings(BaseSettings):
    """Process-wide settings for the session broker.

    All fields can be set via environment variables or a ``.env``
    file (``LT_USERNAME``, ``PROFILES_DIR``, ``TIMEOUT`` ...).

    Section overview:
        * **Core** -- log level, headless default, session timeout.
        * **Backend** -- CDP host, WebDriver hub, vendor options key and
          default platform/browser hints.
        * **Credentials** -- backend username / access key.
        * **Profiles** -- profile root directory.
    """

    # Core
    log_level: str = "INFO"
    log_file: str = str(LOGS_DIR / "browser_broker.log")
    headless: bool = True
    # Session timeout budget in ms, passed to transport calls
    timeout: int = DEFAULT_SESSION_TIMEOUT_MS

    # Backend
    cdp_host: str = "cdp.lambdatest.com"
    hub_url: str = "https://hub.lambdatest.com/wd/hub"
    vendor_options_key: str = "LT:Options"
    platform_name: str = "Windows 10"
    browser_name: str = "Chrome"
    browser_version: str = "latest"
    project: str = "browser-broker"
    debug_url: str = "https://automation.lambdatest.com/logs/"

    # Credentials (read again at capability-build time, see
    # core.capabilities.Credentials.from_environment)
    lt_username: Optional[str] = None
    lt_access_key: Optional[str] = None

    # Profiles
    profiles_dir: str = DEFAULT_PROFILES_DIR

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
