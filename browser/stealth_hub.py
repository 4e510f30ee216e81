"""Stealth and anti-detection hub for remote browser sessions.

Provides two main abstractions:

:class:`StealthProfile`
    The per-session decisions that must stay fixed for the session's
    lifetime: the selected user-agent, the jittered viewport, and
    whether evasion scripts and humanisation apply.  Computed once when
    the session is created, before any navigation.

:class:`StealthHub`
    The fixed, ordered catalogue of evasions expressed as
    protocol-agnostic JS payloads, plus the user-agent pool and viewport
    jitter.  Each adapter maps the catalogue onto its own injection
    mechanism (per-page CDP scripts, context init scripts); the
    WebDriver adapter has no page-script injection point and rejects it.
"""

import logging
import random
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from . import stealth_scripts

logger = logging.getLogger(__name__)

VIEWPORT_JITTER_PX = 20

_W = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
)
_M = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
)
_L = (
    "Mozilla/5.0 (X11; Linux x86_64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
)

# Desktop Chrome/Firefox across Windows/macOS/Linux
USER_AGENT_POOL: Tuple[str, ...] = (
    _W + "Chrome/134.0.0.0 Safari/537.36",
    _W + "Chrome/133.0.0.0 Safari/537.36",
    _M + "Chrome/134.0.0.0 Safari/537.36",
    _M + "Chrome/133.0.0.0 Safari/537.36",
    _L + "Chrome/134.0.0.0 Safari/537.36",
    (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64;"
        " rv:135.0) Gecko/20100101 Firefox/135.0"
    ),
    (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10.15;"
        " rv:135.0) Gecko/20100101 Firefox/135.0"
    ),
    (
        "Mozilla/5.0 (X11; Linux x86_64; rv:135.0)"
        " Gecko/20100101 Firefox/135.0"
    ),
)


@dataclass(frozen=True)
class Evasion:
    """One catalogue entry: a name and a JS payload builder."""

    name: str
    build: Callable[..., str]


@dataclass
class StealthProfile:
    """Per-session stealth decisions, fixed at session creation.

    Attributes:
        user_agent: UA to present, or ``None`` to keep the browser's.
        viewport: Viewport to apply (jittered or base).
        inject_evasions: Whether the evasion scripts run.
        humanize: Whether page interactions get human-like delays.
        randomize_viewport: Whether ``viewport`` was jittered.
        languages: ``navigator.languages`` value for the evasion script.
    """

    user_agent: Optional[str]
    viewport: Dict[str, int]
    inject_evasions: bool = False
    humanize: bool = False
    randomize_viewport: bool = False
    languages: List[str] = field(
        default_factory=lambda: list(stealth_scripts.DEFAULT_LANGUAGES),
    )

    @property
    def platform(self) -> str:
        return StealthHub.get_consistent_platform_for_ua(
            self.user_agent or "",
        )


class StealthHub:
    """Central hub for fingerprint evasion.

    All methods are ``@staticmethod`` -- no instance state is required.
    The catalogue order is stable; among the five script evasions order
    does not matter, user-agent and viewport selection happen in
    :meth:`plan` before the first navigation, and humanisation is a page
    decorator (:class:`browser.humanize.HumanizedPage`).
    """

    EVASIONS: Tuple[Evasion, ...] = (
        Evasion("navigator.webdriver",
                lambda **_: stealth_scripts.NAVIGATOR_WEBDRIVER),
        Evasion("navigator.plugins",
                lambda **_: stealth_scripts.NAVIGATOR_PLUGINS),
        Evasion("navigator.languages",
                lambda languages=None, **_: (
                    stealth_scripts.get_languages_script(languages)
                )),
        Evasion("permissions.notifications",
                lambda **_: stealth_scripts.PERMISSIONS_QUERY),
        Evasion("webgl.vendor",
                lambda **_: stealth_scripts.get_webgl_script()),
    )

    @staticmethod
    def get_evasion_scripts(
        languages: Optional[List[str]] = None,
    ) -> List[Tuple[str, str]]:
        """Return ``(name, source)`` pairs for every evasion, in order."""
        return [
            (evasion.name, evasion.build(languages=languages))
            for evasion in StealthHub.EVASIONS
        ]

    @staticmethod
    def get_stealth_script(languages: Optional[List[str]] = None) -> str:
        """Return all evasions joined into one pre-navigation script."""
        return "\n".join(
            source
            for _, source in StealthHub.get_evasion_scripts(languages)
        )

    @staticmethod
    def get_human_ua(
        pool: Optional[List[str]] = None,
        rng: Optional[random.Random] = None,
    ) -> str:
        """Return a user-agent drawn uniformly from *pool*.

        Args:
            pool: Optional custom UA pool; defaults to
                :data:`USER_AGENT_POOL`.
            rng: Optional random source.
        """
        rng = rng or random
        return rng.choice(list(pool or USER_AGENT_POOL))

    @staticmethod
    def get_jittered_viewport(
        width: int,
        height: int,
        rng: Optional[random.Random] = None,
        jitter: int = VIEWPORT_JITTER_PX,
    ) -> Dict[str, int]:
        """Return *width* x *height* with independent +/-*jitter* px noise.

        Avoids the exact ``1920x1080`` that automated browsers tend to
        report.
        """
        rng = rng or random
        return {
            "width": width + rng.randint(-jitter, jitter),
            "height": height + rng.randint(-jitter, jitter),
        }

    @staticmethod
    def get_consistent_platform_for_ua(ua: str) -> str:
        """Return the ``navigator.platform`` matching a User-Agent."""
        if "Windows" in ua:
            return "Win32"
        if "Macintosh" in ua or "Mac OS X" in ua:
            return "MacIntel"
        if "Linux" in ua or "X11" in ua:
            return "Linux x86_64"
        return "Win32"

    @staticmethod
    def plan(
        stealth_config: Any,
        base_viewport: Dict[str, int],
        explicit_user_agent: Optional[str] = None,
        rng: Optional[random.Random] = None,
    ) -> StealthProfile:
        """Make the once-per-session stealth decisions.

        An explicit user-agent always wins over randomisation.  Without
        a stealth config nothing is randomised and no evasions run.

        Args:
            stealth_config: A :class:`core.config.StealthConfig` or
                ``None``.
            base_viewport: ``{"width", "height"}`` from the session
                config.
            explicit_user_agent: Caller-supplied UA, if any.
            rng: Optional random source.

        Returns:
            The session's :class:`StealthProfile`.
        """
        if stealth_config is None:
            return StealthProfile(
                user_agent=explicit_user_agent,
                viewport=dict(base_viewport),
            )

        user_agent = explicit_user_agent
        if user_agent is None and stealth_config.randomize_user_agent:
            user_agent = StealthHub.get_human_ua(rng=rng)

        viewport = dict(base_viewport)
        if stealth_config.randomize_viewport:
            viewport = StealthHub.get_jittered_viewport(
                base_viewport["width"], base_viewport["height"], rng=rng,
            )

        profile = StealthProfile(
            user_agent=user_agent,
            viewport=viewport,
            inject_evasions=not stealth_config.skip_fingerprint_injection,
            humanize=stealth_config.humanize_interactions,
            randomize_viewport=stealth_config.randomize_viewport,
        )
        logger.debug(
            "Stealth plan: ua=%s viewport=%sx%s evasions=%s humanize=%s",
            (user_agent or "-")[:40], viewport["width"],
            viewport["height"], profile.inject_evasions,
            profile.humanize,
        )
        return profile
