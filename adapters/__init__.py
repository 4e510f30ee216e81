"""Protocol adapter registry.

Maps each :class:`~core.config.AdapterVariant` to the adapter class that
speaks its wire protocol.  Values are dotted-path strings resolved lazily,
so importing the registry does not pull in Playwright or aiohttp until a
variant is actually used.

Usage::

    from adapters import get_adapter_class

    cls = get_adapter_class(AdapterVariant.PLAYWRIGHT)
    handle = await cls(profile_store=store).connect(session)
"""

import importlib
from typing import Dict, Union

from core.config import AdapterVariant
from core.errors import ConfigurationError

# ---------------------------------------------------------------------------
# Central Registry
# ---------------------------------------------------------------------------
ADAPTER_REGISTRY: Dict[AdapterVariant, Union[type, str]] = {
    AdapterVariant.CDP: "adapters.cdp.CDPAdapter",
    AdapterVariant.PLAYWRIGHT:
        "adapters.playwright_context.PlaywrightContextAdapter",
    AdapterVariant.WEBDRIVER: "adapters.webdriver.WebDriverAdapter",
}


def get_adapter_class(variant: Union[AdapterVariant, str]) -> type:
    """Resolve the adapter class for *variant*.

    Args:
        variant: A variant member or its (case-insensitive) name,
            including the ``puppeteer`` / ``selenium`` aliases.

    Raises:
        ConfigurationError: *variant* is unknown.
    """
    try:
        key = AdapterVariant(variant)
    except ValueError:
        raise ConfigurationError(f"unknown adapter variant {variant!r}")

    cls_or_str = ADAPTER_REGISTRY.get(key)
    if cls_or_str is None:
        raise ConfigurationError(f"no adapter registered for {key.value}")

    if isinstance(cls_or_str, str):
        module_path, class_name = cls_or_str.rsplit('.', 1)
        module = importlib.import_module(module_path)
        cls_or_str = getattr(module, class_name)
        ADAPTER_REGISTRY[key] = cls_or_str
    return cls_or_str
