"""Shared utility functions for the broker.

JSON persistence helpers used by the profile store: writes never leave
a half-written file behind and reads can fall back to rotated copies.
"""

import json
import logging
import os
import tempfile
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


def safe_json_read(
    filepath: str, max_backups: int = 0,
) -> Optional[Dict[str, Any]]:
    """Load a JSON object, falling back to rotated copies.

    *filepath* is tried first, then ``<filepath>.backup.1`` up to
    ``<filepath>.backup.<max_backups>``. Files that are missing,
    unparsable or not a JSON object are skipped.

    Args:
        filepath: File to load.
        max_backups: How many rotated copies may be consulted.

    Returns:
        The first usable object, or ``None`` when no candidate
        yields one.
    """
    paths = [filepath] + [
        f"{filepath}.backup.{i}"
        for i in range(1, max_backups + 1)
    ]
    for path in paths:
        if not os.path.exists(path):
            continue
        try:
            with open(path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
            if isinstance(data, dict):
                return data
            logger.warning("Ignoring non-object JSON in %s", path)
        except (OSError, ValueError) as e:
            logger.warning("Unreadable JSON in %s: %s", path, e)
    return None


def atomic_json_write(
    filepath: str,
    data: Dict[str, Any],
    max_backups: int = 0,
) -> None:
    """Write *data* as JSON so readers only ever see a complete file.

    Steps:
        1. Rotate existing backups (``backup.2`` -> ``backup.3``, etc.)
           when *max_backups* is positive.
        2. Write new data to a temporary file in the same directory.
        3. Validate the temporary file by re-reading it.
        4. Atomically replace the target with the temporary file.

    Errors are raised to the caller rather than logged.

    Args:
        filepath: Target file; parent directories are created.
        data: Object to serialise.
        max_backups: Number of backup generations to keep.

    Raises:
        OSError: The file could not be written or replaced.
        TypeError: *data* is not JSON-serialisable.
    """
    dirpath = os.path.dirname(filepath) or "."
    os.makedirs(dirpath, exist_ok=True)

    if max_backups > 0 and os.path.exists(filepath):
        backup_base = filepath + ".backup"
        for i in range(max_backups - 1, 0, -1):
            old = f"{backup_base}.{i}"
            new = f"{backup_base}.{i + 1}"
            if os.path.exists(old):
                os.replace(old, new)
        with open(filepath, "rb") as src, open(
            f"{backup_base}.1", "wb",
        ) as dst:
            dst.write(src.read())

    fd, temp_file = tempfile.mkstemp(
        prefix=os.path.basename(filepath) + ".", suffix=".tmp",
        dir=dirpath,
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(data, fh, indent=2)

        # Parse the temp file back before it replaces the target
        with open(temp_file, "r", encoding="utf-8") as fh:
            json.load(fh)

        os.replace(temp_file, filepath)
    except BaseException:
        try:
            os.remove(temp_file)
        except OSError:
            pass
        raise
