"""Resolution of ``jsr:`` specifiers through a lockfile and package manifests."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Optional

from constants import Constants
from common.logging_utils import extra_context

from .errors import ResolutionError
from .fetch_cache import RemoteFetchCache
from .lockfile import Lockfile, read_lockfile
from .media_types import MediaType
from .specifiers import parse_jsr_specifier

logger = logging.getLogger(__name__)

_UNLOADED = object()


class JsrResolver:
    """Pins ``jsr:`` specifiers with a lockfile and maps them to registry URLs.

    The lockfile is read lazily on first use and released by :meth:`close`.
    There is no network fallback when the lockfile is missing.
    """

    def __init__(
        self,
        fetch_cache: RemoteFetchCache,
        lock_path: Optional[str] = None,
        jsr_url: str = Constants.JSR_URL,
    ):
        self._fetch_cache = fetch_cache
        self._lock_path = lock_path
        self._jsr_url = jsr_url.rstrip("/") + "/"
        self._lockfile: Any = _UNLOADED
        self._lockfile_lock = asyncio.Lock()

    async def _get_lockfile(self) -> Optional[Lockfile]:
        async with self._lockfile_lock:
            if self._lockfile is _UNLOADED:
                self._lockfile = await read_lockfile(self._lock_path) if self._lock_path else None
            return self._lockfile

    def close(self) -> None:
        """Release the lockfile, if one was loaded."""
        if isinstance(self._lockfile, Lockfile):
            self._lockfile.close()
        self._lockfile = _UNLOADED

    def manifest_url(self, name: str, version: str) -> str:
        return f"{self._jsr_url}{name}/{version}_meta.json"

    def module_url(self, name: str, version: str, export_path: str) -> str:
        if export_path.startswith("./"):
            export_path = export_path[2:]
        return f"{self._jsr_url}{name}/{version}/{export_path.lstrip('/')}"

    async def resolve(self, specifier: str) -> str:
        """Resolve ``jsr:@scope/name[@constraint][/path]`` to a module URL.

        Raises:
            SpecifierParseError: If the specifier is malformed.
            ResolutionError: If there is no lockfile, no lockfile entry, or the
                manifest has no matching export.
        """
        jsr_specifier = parse_jsr_specifier(specifier)

        lockfile = await self._get_lockfile()
        if lockfile is None:
            raise ResolutionError(
                "jsr: specifiers are not supported in the portable loader without a lockfile"
            )

        package_id = f"jsr:{jsr_specifier.name}"
        if jsr_specifier.version:
            package_id += f"@{jsr_specifier.version}"
        version = lockfile.package_version(package_id)
        if not version:
            raise ResolutionError(f"Specifier not found in lockfile: {package_id}")

        manifest_url = self.manifest_url(jsr_specifier.name, version)
        manifest = await self._fetch_cache.load_remote(manifest_url)
        if manifest.media_type != MediaType.JSON:
            raise ResolutionError(
                f"Expected JSON media type for JSR manifest, got: {manifest.media_type.value}"
            )
        try:
            manifest_json: Dict[str, Any] = json.loads(manifest.data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ResolutionError(
                f"Invalid manifest for 'jsr:{jsr_specifier.name}@{version}': {exc}"
            ) from exc
        if not isinstance(manifest_json, dict):
            raise ResolutionError(f"Invalid manifest at {manifest_url}: expected a JSON object")
        exports = manifest_json.get("exports") or {}
        if not isinstance(exports, dict):
            raise ResolutionError(f"Invalid manifest at {manifest_url}: 'exports' must be an object")

        export_entry = f".{jsr_specifier.path or ''}"
        export_path = exports.get(export_entry)
        if not isinstance(export_path, str) or not export_path:
            raise ResolutionError(
                f"Package 'jsr:{jsr_specifier.name}@{version}' has no export named '{export_entry}'"
            )

        resolved = self.module_url(jsr_specifier.name, version, export_path)
        logger.debug(
            "Resolved jsr specifier",
            extra=extra_context(event="resolve", component="jsr", target=specifier, outcome=resolved)
        )
        return resolved
