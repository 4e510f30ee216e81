"""Capability builder for remote browser backends.

Translates a :class:`~core.config.SessionConfig` into a backend capability
document plus the endpoint the chosen protocol variant connects to.  The
builder is a pure function over its inputs: credentials and the tunnel
name are resolved by the caller and passed in.

Capability shape (vendor options live under one extension key)::

    {
        "browserName": "Chrome",
        "browserVersion": "latest",
        "LT:Options": {
            "platformName": "Windows 10",
            "project": "browser-broker",
            "w3c": True,
            "plugin": "python-playwright",
            "resolution": "1920x1080",
            ...
        },
    }

Socket variants embed the document in the endpoint query string::

    wss://<user>:<key>@cdp.lambdatest.com/playwright?capabilities=<json>

The WebDriver variant posts it to the hub as ``alwaysMatch``.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol
from urllib.parse import quote

from .config import AdapterVariant, BrokerSettings, SessionConfig
from .errors import CapabilityUnsupportedError, ConfigurationError

logger = logging.getLogger(__name__)

USERNAME_ENV = "LT_USERNAME"
ACCESS_KEY_ENV = "LT_ACCESS_KEY"

# Endpoint path per socket variant
_SOCKET_PATHS = {
    AdapterVariant.CDP: "puppeteer",
    AdapterVariant.PLAYWRIGHT: "playwright",
}

_PLUGINS = {
    AdapterVariant.CDP: "python-cdp",
    AdapterVariant.PLAYWRIGHT: "python-playwright",
    AdapterVariant.WEBDRIVER: "python-selenium",
}

EXTENSIONS_KEY = "lambda:loadExtension"


# ---------------------------------------------------------------------------
# Credentials and tunnels
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Credentials:
    """Backend username / access-key pair."""

    username: str
    access_key: str = field(repr=False)

    @classmethod
    def from_environment(
        cls, settings: Optional[BrokerSettings] = None,
    ) -> Optional["Credentials"]:
        """Read credentials at call time.

        Looks at ``LT_USERNAME`` / ``LT_ACCESS_KEY`` in the process
        environment, then a ``.env`` file in the working directory, then
        the values captured in *settings*.

        Returns:
            The credentials, or ``None`` if either half is missing.
        """
        username = os.environ.get(USERNAME_ENV)
        access_key = os.environ.get(ACCESS_KEY_ENV)

        if not (username and access_key):
            # Try loading .env in case it wasn't loaded yet
            try:
                from dotenv import load_dotenv
                env_path = os.path.join(os.getcwd(), ".env")
                load_dotenv(env_path, override=False)
                username = os.environ.get(USERNAME_ENV)
                access_key = os.environ.get(ACCESS_KEY_ENV)
            except Exception as e:
                logger.debug("Auxiliary dotenv load failed: %s", e)

        if not (username and access_key) and settings is not None:
            username = username or settings.lt_username
            access_key = access_key or settings.lt_access_key

        if username and access_key:
            return cls(username=username, access_key=access_key)
        return None


class TunnelResolver(Protocol):
    """Collaborator that provides a managed tunnel name.

    Consulted only when a session asks for ``tunnel=True`` without a
    ``tunnel_name``; starting and stopping the tunnel process is its
    business.
    """

    async def resolve(self, credentials: Optional[Credentials]) -> str:
        ...


# ---------------------------------------------------------------------------
# Capability document
# ---------------------------------------------------------------------------

@dataclass
class CapabilityDocument:
    """Built capabilities plus where to send them.

    Attributes:
        variant: Protocol variant the document was built for.
        payload: The capability document.
        endpoint: Socket URL (variants A/B) or hub URL (variant C).
        debug_url: Backend dashboard URL for the session.
    """

    variant: AdapterVariant
    payload: Dict[str, Any]
    endpoint: str
    debug_url: Optional[str] = None

    @property
    def is_socket(self) -> bool:
        return self.variant in _SOCKET_PATHS


def merge_capabilities(
    defaults: Dict[str, Any], overrides: Dict[str, Any],
) -> Dict[str, Any]:
    """Merge caller overrides over computed defaults.

    Top-level keys are last-write-wins.  Where both sides hold a dict
    (the vendor options block), the nested dicts are merged key by key
    with the override again winning.
    """
    merged = dict(defaults)
    for key, value in (overrides or {}).items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = {**current, **value}
        else:
            merged[key] = value
    return merged


def ensure_stealth_supported(
    config: SessionConfig, session_id: Optional[str] = None,
) -> None:
    """Reject fingerprint injection on the WebDriver variant.

    WebDriver has no pre-navigation script hook, so evasions cannot be
    guaranteed to run before page scripts.

    Raises:
        CapabilityUnsupportedError: Stealth scripts were requested for
            :attr:`AdapterVariant.WEBDRIVER`.
    """
    stealth = config.stealth_config
    if (
        config.adapter == AdapterVariant.WEBDRIVER
        and stealth is not None
        and not stealth.skip_fingerprint_injection
    ):
        raise CapabilityUnsupportedError(
            "stealth fingerprint injection",
            config.adapter.value,
            session_id=session_id,
        )


def validate_config(
    config: SessionConfig, session_id: Optional[str] = None,
) -> None:
    """Check *config* without I/O.

    Raises:
        ConfigurationError: Non-positive dimensions or timeout, or an
            endpoint option that does not apply to the variant.
        CapabilityUnsupportedError: See :func:`ensure_stealth_supported`.
    """
    dims = config.dimensions
    if dims.width <= 0 or dims.height <= 0:
        raise ConfigurationError(
            f"dimensions must be positive, got {dims.width}x{dims.height}",
            session_id=session_id,
        )
    if config.timeout is not None and config.timeout <= 0:
        raise ConfigurationError(
            f"timeout must be positive, got {config.timeout}",
            session_id=session_id,
        )
    if (
        config.adapter == AdapterVariant.WEBDRIVER
        and config.custom_websocket_url
    ):
        raise ConfigurationError(
            "custom_websocket_url applies to socket adapters;"
            " use hub_url for webdriver",
            session_id=session_id,
        )
    ensure_stealth_supported(config, session_id)


def _vendor_options(
    config: SessionConfig,
    settings: BrokerSettings,
    tunnel_name: Optional[str],
) -> Dict[str, Any]:
    options: Dict[str, Any] = {
        "platformName": config.platform or settings.platform_name,
        "project": settings.project,
        "w3c": True,
        "plugin": _PLUGINS[config.adapter],
        "resolution": (
            f"{config.dimensions.width}x{config.dimensions.height}"
        ),
    }

    headless = config.headless
    if headless is None:
        headless = settings.headless
    options["headless"] = headless

    timeout_ms = config.timeout or settings.timeout
    options["idleTimeout"] = max(1, timeout_ms // 1000)

    if config.effective_proxy:
        options["proxy"] = config.effective_proxy

    if config.tunnel:
        options["tunnel"] = True
        name = config.tunnel_name or tunnel_name
        if name:
            options["tunnelName"] = name

    if config.geo_location:
        options["geoLocation"] = config.geo_location
    if config.region:
        options["region"] = config.region
    if config.extension_urls:
        options[EXTENSIONS_KEY] = list(config.extension_urls)
    return options


def _webdriver_launch_options(
    browser_name: str,
    user_agent: Optional[str],
    viewport: Dict[str, int],
) -> Dict[str, Any]:
    """UA and window size baked into browser launch options."""
    width, height = viewport["width"], viewport["height"]
    if browser_name.lower() == "firefox":
        opts: Dict[str, Any] = {
            "args": [f"-width={width}", f"-height={height}"],
        }
        if user_agent:
            opts["prefs"] = {"general.useragent.override": user_agent}
        return {"moz:firefoxOptions": opts}

    args = [f"--window-size={width},{height}"]
    if user_agent:
        args.append(f"--user-agent={user_agent}")
    return {"goog:chromeOptions": {"args": args}}


def _socket_endpoint(
    host: str,
    path: str,
    credentials: Credentials,
    payload: Dict[str, Any],
) -> str:
    encoded = quote(json.dumps(payload, separators=(",", ":")), safe="")
    return (
        f"wss://{quote(credentials.username, safe='')}:"
        f"{quote(credentials.access_key, safe='')}@{host}/{path}"
        f"?capabilities={encoded}"
    )


def _hub_with_credentials(hub_url: str, credentials: Credentials) -> str:
    scheme, sep, rest = hub_url.partition("://")
    if not sep:
        scheme, rest = "https", hub_url
    return (
        f"{scheme}://{quote(credentials.username, safe='')}:"
        f"{quote(credentials.access_key, safe='')}@{rest}"
    )


def build_capabilities(
    config: SessionConfig,
    settings: Optional[BrokerSettings] = None,
    credentials: Optional[Credentials] = None,
    tunnel_name: Optional[str] = None,
    user_agent: Optional[str] = None,
    viewport: Optional[Dict[str, int]] = None,
    session_id: Optional[str] = None,
) -> CapabilityDocument:
    """Build the capability document and endpoint for *config*.

    Validation happens first and performs no I/O, so every
    :class:`~core.errors.ConfigurationError` and
    :class:`~core.errors.CapabilityUnsupportedError` surfaces before a
    connection is attempted.

    Args:
        config: Session options.
        settings: Process settings; defaults are used when omitted.
        credentials: Backend credentials.  Required for cloud endpoints
            unless ``custom_websocket_url`` or ``hub_url`` is set.
        tunnel_name: Managed tunnel name resolved by the caller.
        user_agent: Session user-agent (WebDriver launch args).
        viewport: Session viewport (WebDriver window size); defaults to
            ``config.dimensions``.
        session_id: Id attached to raised errors.

    Returns:
        The :class:`CapabilityDocument`.

    Raises:
        ConfigurationError: Invalid dimensions or timeout, or
            credentials are missing for a cloud endpoint.
        CapabilityUnsupportedError: Stealth scripts requested on the
            WebDriver variant.
    """
    settings = settings or BrokerSettings()
    validate_config(config, session_id)

    defaults: Dict[str, Any] = {
        "browserName": config.browser_name or settings.browser_name,
        "browserVersion": config.browser_version or settings.browser_version,
        settings.vendor_options_key: _vendor_options(
            config, settings, tunnel_name,
        ),
    }
    variant = config.adapter

    if variant == AdapterVariant.WEBDRIVER:
        defaults.update(_webdriver_launch_options(
            defaults["browserName"],
            user_agent,
            viewport or config.dimensions.as_dict(),
        ))

    payload = merge_capabilities(defaults, config.backend_options)

    if variant in _SOCKET_PATHS and config.custom_websocket_url:
        logger.debug("Using caller-supplied endpoint for %s", variant.value)
        return CapabilityDocument(
            variant=variant,
            payload=payload,
            endpoint=config.custom_websocket_url,
        )

    if variant == AdapterVariant.WEBDRIVER and config.hub_url:
        hub = config.hub_url
        if credentials is not None and "@" not in hub:
            hub = _hub_with_credentials(hub, credentials)
        return CapabilityDocument(
            variant=variant,
            payload=payload,
            endpoint=hub,
        )

    if credentials is None:
        raise ConfigurationError(
            f"backend credentials missing: set {USERNAME_ENV} and"
            f" {ACCESS_KEY_ENV}",
            session_id=session_id,
        )

    if variant == AdapterVariant.WEBDRIVER:
        endpoint = _hub_with_credentials(settings.hub_url, credentials)
    else:
        endpoint = _socket_endpoint(
            settings.cdp_host, _SOCKET_PATHS[variant], credentials, payload,
        )
    return CapabilityDocument(
        variant=variant,
        payload=payload,
        endpoint=endpoint,
        debug_url=settings.debug_url,
    )
