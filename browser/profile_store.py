"""Durable, file-backed browser profiles.

A profile is a named :class:`~browser.context_codec.BrowserState` plus
metadata, stored as one JSON document per profile id::

    {id, name?, description?, cookies[], localStorage{}, sessionStorage{},
     createdAt, updatedAt, metadata?}

Storage maps are keyed by origin.  Files written by older releases kept a
single flat ``{key: value}`` map; those are read as belonging to the
page's current origin at load time.

Root directory, in order of priority:
    1. ``profiles_dir`` passed to :class:`ProfileStore`.
    2. ``PROFILES_DIR`` environment variable.
    3. ``.profiles`` under the current working directory.

Writes go to a temporary file that is atomically renamed over the target,
so a reader never sees a half-written profile.  There is no locking:
concurrent saves to one id from two processes resolve to the last
writer.
"""

import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, Field

from core.errors import ConfigurationError, ProfileNotFoundError
from core.utils import atomic_json_write, safe_json_read

from .context_codec import BrowserState, ContextCodec, Cookie, normalize_origin

logger = logging.getLogger(__name__)

PROFILES_DIR_ENV = "PROFILES_DIR"
DEFAULT_PROFILES_DIRNAME = ".profiles"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Profile(BaseModel):
    """One stored profile, in its on-disk shape."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    name: Optional[str] = None
    description: Optional[str] = None
    cookies: List[Cookie] = Field(default_factory=list)
    # Origin-keyed maps; legacy files hold a flat {key: value} map.
    local_storage: Dict[str, Any] = Field(
        default_factory=dict, alias="localStorage",
    )
    session_storage: Dict[str, Any] = Field(
        default_factory=dict, alias="sessionStorage",
    )
    created_at: str = Field(alias="createdAt")
    updated_at: str = Field(alias="updatedAt")
    metadata: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)

    def to_state(self, current_origin: Optional[str] = None) -> BrowserState:
        """Return the stored :class:`BrowserState`.

        Args:
            current_origin: Origin that legacy flat storage maps are
                attributed to.  Without one, flat maps are dropped.
        """
        return BrowserState(
            cookies=self.cookies,
            local_storage=_origin_keyed(self.local_storage, current_origin),
            session_storage=_origin_keyed(
                self.session_storage, current_origin,
            ),
        )


def _is_flat(storage: Dict[str, Any]) -> bool:
    return bool(storage) and all(
        isinstance(v, str) for v in storage.values()
    )


def _origin_keyed(
    storage: Dict[str, Any], current_origin: Optional[str],
) -> Dict[str, Dict[str, str]]:
    if not storage:
        return {}
    if _is_flat(storage):
        return {current_origin: dict(storage)} if current_origin else {}
    return {
        origin: dict(entries)
        for origin, entries in storage.items()
        if isinstance(entries, dict)
    }


class ProfileStore:
    """Create/read/update/delete of named profiles on disk.

    All operations replace whole records; there is no partial merge.
    Coroutines are used throughout so callers can await disk I/O the same
    way they await protocol calls.

    Args:
        profiles_dir: Root directory (see module docstring for the
            fallback order).
        clock: Returns the current time; injectable for tests.
        codec: Context codec used by the page helpers.
    """

    def __init__(
        self,
        profiles_dir: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None,
        codec: Optional[ContextCodec] = None,
    ) -> None:
        self.profiles_dir = (
            profiles_dir
            or os.environ.get(PROFILES_DIR_ENV)
            or os.path.join(os.getcwd(), DEFAULT_PROFILES_DIRNAME)
        )
        self._clock = clock or _utc_now
        self._codec = codec or ContextCodec()
        self._initialized = False

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def _ensure_dir(self) -> None:
        if not self._initialized:
            os.makedirs(self.profiles_dir, exist_ok=True)
            self._initialized = True
            logger.debug("Using profiles directory: %s", self.profiles_dir)

    def _get_profile_path(self, profile_id: str) -> str:
        """Get the JSON file path for a profile.

        Ids are percent-encoded, so every distinct id gets its own file
        and none can escape the profiles directory.

        Raises:
            ConfigurationError: The id is empty.
        """
        if not profile_id:
            raise ConfigurationError("profile id must not be empty")
        filename = quote(profile_id, safe="-_")
        return os.path.join(self.profiles_dir, f"{filename}.json")

    def _now(self) -> str:
        return self._clock().isoformat()

    def _read(self, profile_id: str) -> Optional[Profile]:
        data = safe_json_read(self._get_profile_path(profile_id))
        if data is None:
            return None
        return Profile.model_validate(data)

    def _write(self, profile: Profile) -> None:
        self._ensure_dir()
        atomic_json_write(
            self._get_profile_path(profile.id), profile.to_dict(),
        )

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    async def save(
        self,
        profile_id: str,
        state: BrowserState,
        name: Optional[str] = None,
        description: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Profile:
        """Create or replace a profile with *state*.

        An existing profile keeps its ``createdAt``; ``updatedAt`` is
        always set to now.  Everything else is replaced.

        Returns:
            The written profile.
        """
        self._get_profile_path(profile_id)
        now = self._now()
        created_at = now
        try:
            existing = self._read(profile_id)
        except ValueError as e:
            logger.warning(
                "Existing profile '%s' unreadable, recreating: %s",
                profile_id, e,
            )
            existing = None
        if existing is not None:
            created_at = existing.created_at

        profile = Profile(
            id=profile_id,
            name=name,
            description=description,
            cookies=state.cookies,
            local_storage=state.local_storage,
            session_storage=state.session_storage,
            created_at=created_at,
            updated_at=now,
            metadata=metadata,
        )
        self._write(profile)
        logger.info(
            "Saved profile '%s' (%d cookies)",
            profile_id, len(profile.cookies),
        )
        return profile

    async def load(
        self,
        profile_id: str,
        current_origin: Optional[str] = None,
    ) -> Optional[BrowserState]:
        """Return the stored state, or ``None`` if never saved.

        Absence is not an error; callers decide whether a first run
        without a profile is expected.
        """
        profile = await self.get(profile_id)
        if profile is None:
            logger.debug("Profile '%s' not found", profile_id)
            return None
        return profile.to_state(current_origin)

    async def get(self, profile_id: str) -> Optional[Profile]:
        return self._read(profile_id)

    async def list(self) -> List[Profile]:
        """Return every readable profile; invalid files are skipped."""
        if not os.path.isdir(self.profiles_dir):
            return []
        profiles: List[Profile] = []
        for filename in sorted(os.listdir(self.profiles_dir)):
            if not filename.endswith(".json"):
                continue
            data = safe_json_read(os.path.join(self.profiles_dir, filename))
            if data is None:
                continue
            try:
                profiles.append(Profile.model_validate(data))
            except ValueError as e:
                logger.warning("Skipping invalid profile %s: %s", filename, e)
        return profiles

    async def exists(self, profile_id: str) -> bool:
        return os.path.exists(self._get_profile_path(profile_id))

    async def delete(self, profile_id: str) -> bool:
        """Delete a profile.  Returns ``False`` if it did not exist."""
        path = self._get_profile_path(profile_id)
        if not os.path.exists(path):
            return False
        os.remove(path)
        logger.info("Deleted profile '%s'", profile_id)
        return True

    async def delete_all(self) -> int:
        profiles = await self.list()
        for profile in profiles:
            await self.delete(profile.id)
        logger.info("Deleted %d profiles", len(profiles))
        return len(profiles)

    async def create(
        self,
        profile_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Profile:
        """Write an empty profile (replacing any existing one)."""
        now = self._now()
        profile = Profile(
            id=profile_id,
            name=name,
            description=description,
            created_at=now,
            updated_at=now,
        )
        self._write(profile)
        logger.info("Created empty profile '%s'", profile_id)
        return profile

    async def duplicate(self, source_id: str, target_id: str) -> Profile:
        """Copy *source_id* to *target_id* with fresh timestamps.

        Raises:
            ProfileNotFoundError: *source_id* does not exist.
        """
        source = await self.get(source_id)
        if source is None:
            raise ProfileNotFoundError(source_id)
        now = self._now()
        copy = source.model_copy(update={
            "id": target_id,
            "name": f"{source.name} (copy)" if source.name else None,
            "created_at": now,
            "updated_at": now,
        })
        self._write(copy)
        logger.info("Duplicated profile '%s' to '%s'", source_id, target_id)
        return copy

    async def export(self, profile_id: str) -> str:
        """Return the profile as a portable JSON string."""
        profile = await self.get(profile_id)
        if profile is None:
            raise ProfileNotFoundError(profile_id)
        return json.dumps(profile.to_dict(), indent=2)

    async def import_profile(
        self, payload: str, overwrite: bool = False,
    ) -> Profile:
        """Store a profile from an :meth:`export` string.

        Raises:
            ConfigurationError: Missing id, or the profile exists and
                *overwrite* is false.
        """
        data = json.loads(payload)
        if not isinstance(data, dict) or not data.get("id"):
            raise ConfigurationError("invalid profile: missing id")
        if await self.exists(data["id"]) and not overwrite:
            raise ConfigurationError(
                f"profile '{data['id']}' already exists;"
                " pass overwrite=True to replace it",
            )
        now = self._now()
        data.setdefault("createdAt", now)
        data["updatedAt"] = now
        profile = Profile.model_validate(data)
        self._write(profile)
        logger.info("Imported profile '%s'", profile.id)
        return profile

    # ------------------------------------------------------------------
    # Page helpers
    # ------------------------------------------------------------------

    async def save_from_page(
        self,
        profile_id: str,
        page: Any,
        name: Optional[str] = None,
        description: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Profile:
        """Extract the page's state and save it under *profile_id*."""
        state = await self._codec.extract(page)
        return await self.save(
            profile_id, state,
            name=name, description=description, metadata=metadata,
        )

    async def load_into_page(
        self,
        profile_id: str,
        page: Any,
        cookies_only: bool = False,
        navigate_first: Optional[str] = None,
    ) -> bool:
        """Inject a stored profile into *page*.

        Args:
            profile_id: Profile to load.
            page: Target :class:`~browser.pages.PageHandle`.
            cookies_only: Skip storage injection.
            navigate_first: URL to open before injecting, so storage for
                that origin can be written.

        Returns:
            ``False`` if the profile does not exist, ``True`` otherwise.
        """
        if navigate_first:
            await page.goto(navigate_first)
        origin = normalize_origin(await page.current_url())
        state = await self.load(profile_id, current_origin=origin)
        if state is None:
            return False
        if cookies_only:
            await self._codec.set_cookies(page, state.cookies)
            logger.info(
                "Loaded cookies from profile '%s' (%d cookies)",
                profile_id, len(state.cookies),
            )
        else:
            await self._codec.inject(page, state)
            logger.info(
                "Loaded profile '%s' (%d cookies, storage for %s)",
                profile_id, len(state.cookies), origin or "no origin",
            )
        return True
