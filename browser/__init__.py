"""
Browser-side building blocks for the session broker.

Everything here works on a live page through the protocol-agnostic
:class:`~browser.pages.PageHandle` seam, so it is shared by all adapter
variants:

- **PageHandle / PlaywrightPage** -- the page interface and its
  Playwright implementation.
- **HumanizedPage** -- decorator adding human-like click/type timing.
- **StealthHub** -- fingerprint-evasion catalogue, user-agent pool and
  viewport jitter.
- **ContextCodec** -- cookie and per-origin storage extract/inject.
- **ProfileStore** -- durable, file-backed named browser states.

Submodules:
    pages: ``PageHandle`` and ``PlaywrightPage``.
    humanize: ``HumanizedPage`` and interaction timing ranges.
    stealth_hub: ``StealthHub`` and ``StealthProfile``.
    stealth_scripts: Raw JS payloads used by ``StealthHub``.
    context_codec: ``ContextCodec``, ``BrowserState`` and ``Cookie``.
    profile_store: ``ProfileStore`` and ``Profile``.

The package init stays import-free: :mod:`core.config` imports
:mod:`browser.context_codec`, and :mod:`browser.profile_store` imports
from :mod:`core`.
"""
