"""Reader for Deno lockfiles (deno.lock, versions 3 to 5).

Only the pieces needed to pin ``jsr:`` constraints are read: the
``specifiers`` table mapping a requested constraint to the resolved version
and the ``jsr`` package table.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import semantic_version

from common.logging_utils import extra_context

from .errors import ResolutionError

logger = logging.getLogger(__name__)


def _split_name_version(key: str) -> tuple[str, Optional[str]]:
    """Split ``@scope/name@1.2.3`` (scope-aware) into name and version."""
    at = key.find("@", 1)
    if at == -1:
        return key, None
    return key[:at], key[at + 1:]


class Lockfile:
    """Parsed lockfile. Must be closed (or used as a context manager)."""

    def __init__(self, path: str, data: Dict[str, Any]):
        self.path = path
        self._data: Optional[Dict[str, Any]] = data
        self.version = str(data.get("version", "3"))

    @classmethod
    def from_text(cls, path: str, text: str) -> "Lockfile":
        """Parse lockfile JSON text.

        Raises:
            ResolutionError: If the text is not a JSON object.
        """
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ResolutionError(f"Failed to parse lockfile {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ResolutionError(f"Failed to parse lockfile {path}: expected a JSON object")
        return cls(path, data)

    @property
    def closed(self) -> bool:
        return self._data is None

    def close(self) -> None:
        """Release the parsed lockfile contents."""
        self._data = None

    def __enter__(self) -> "Lockfile":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _require_data(self) -> Dict[str, Any]:
        if self._data is None:
            raise ResolutionError(f"Lockfile {self.path} has already been closed")
        return self._data

    def _specifiers(self) -> Dict[str, str]:
        data = self._require_data()
        if self.version == "3":
            return data.get("packages", {}).get("specifiers", {}) or {}
        return data.get("specifiers", {}) or {}

    def _jsr_packages(self) -> List[str]:
        data = self._require_data()
        if self.version == "3":
            return list((data.get("packages", {}).get("jsr", {}) or {}).keys())
        return list((data.get("jsr", {}) or {}).keys())

    def package_version(self, package_id: str) -> Optional[str]:
        """Return the exact version pinned for ``jsr:{name}[@{constraint}]``.

        Args:
            package_id: Lookup key as written in import statements.

        Returns:
            The resolved version, or None if the lockfile has no entry.

        Raises:
            ResolutionError: If the pinned value is not an exact version.
        """
        specifiers = self._specifiers()
        resolved = specifiers.get(package_id)
        if resolved is None and package_id.count("@") == 1:
            # unconstrained request: deno records it as "@*"
            resolved = specifiers.get(f"{package_id}@*")
        if resolved is None and package_id.count("@") == 1:
            name = package_id[len("jsr:"):]
            versions = {v for n, v in map(_split_name_version, self._jsr_packages()) if n == name and v}
            if len(versions) == 1:
                resolved = versions.pop()
        if resolved is None:
            return None

        if resolved.startswith("jsr:"):
            _, resolved = _split_name_version(resolved[len("jsr:"):])
        if not resolved or not semantic_version.validate(resolved):
            raise ResolutionError(
                f"Lockfile {self.path} pins {package_id} to '{resolved}', which is not an exact version"
            )
        logger.debug(
            "Lockfile lookup",
            extra=extra_context(event="lockfile_hit", component="lockfile", target=package_id, version=resolved)
        )
        return resolved


def load_lockfile(path: str) -> Optional[Lockfile]:
    """Read a lockfile from disk; a missing file yields None."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            text = f.read()
    except FileNotFoundError:
        logger.debug("Lockfile not found: %s", path)
        return None
    return Lockfile.from_text(path, text)


async def read_lockfile(path: str) -> Optional[Lockfile]:
    """Async wrapper around :func:`load_lockfile` that keeps the loop free."""
    return await asyncio.to_thread(load_lockfile, path)
