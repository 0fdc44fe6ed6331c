"""Loader that delegates module discovery and downloads to the Deno executable.

Module graphs come from ``deno info --json``; the files it reports are read
straight out of Deno's cache. npm packages are materialized as hardlinked
node_modules trees by :class:`NodeModulesMaterializer`.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from constants import Constants, NodeModulesDirMode

from .errors import LoaderError
from .fetch_cache import decode_data_url
from .media_types import MediaType, map_content_type, media_type_from_specifier, media_type_to_loader
from .models import EsmResolution, LoaderResolution, LoadResult, NodeResolution, NpmResolution
from .npm import NodeModulesMaterializer
from .npm_info import NpmPackageRegistry, RootInfo, root_info, root_info_from_options, run_deno_info
from .specifiers import file_url_to_path, parse_npm_specifier, url_scheme

logger = logging.getLogger(__name__)

InfoRunner = Callable[[str, Iterable[str], Optional[str]], Awaitable[Dict[str, Any]]]


def strip_cache_metadata(contents: bytes) -> bytes:
    """Drop the trailing ``// denoCacheMetadata=`` block Deno appends to cached files."""
    index = contents.rfind(Constants.DENO_CACHE_METADATA)
    if index == -1:
        return contents
    return contents[:index]


def _media_type(value: Optional[str]) -> MediaType:
    try:
        return MediaType(value)
    except ValueError:
        return MediaType.UNKNOWN


class InfoCache:
    """Per-specifier cache of ``deno info --json`` module entries.

    One ``deno info`` run reports a whole module graph, so every module and
    redirect it lists is cached, and the npm packages it mentions are merged
    into the shared :class:`NpmPackageRegistry`.
    """

    def __init__(
        self,
        packages: NpmPackageRegistry,
        executable: str = Constants.DENO_EXECUTABLE,
        cwd: Optional[str] = None,
        config: Optional[str] = None,
        import_map: Optional[str] = None,
        lock: Optional[str] = None,
        node_modules_dir: Optional[str] = None,
        runner: Optional[InfoRunner] = None,
    ):
        self._packages = packages
        self._executable = executable
        self._cwd = cwd
        self._runner = runner or run_deno_info
        self._modules: Dict[str, Dict[str, Any]] = {}
        self._redirects: Dict[str, str] = {}
        self._ongoing: Dict[str, asyncio.Future] = {}

        self._flags: List[str] = []
        if config:
            self._flags += ["--config", config]
        if import_map:
            self._flags += ["--import-map", import_map]
        if lock:
            self._flags += ["--lock", lock]
        if node_modules_dir:
            self._flags.append(f"--node-modules-dir={node_modules_dir}")

    def _lookup(self, specifier: str) -> Optional[Dict[str, Any]]:
        for _ in range(Constants.MAX_REDIRECTS + 1):
            target = self._redirects.get(specifier)
            if target is None:
                break
            specifier = target
        return self._modules.get(specifier)

    async def get(self, specifier: str) -> Dict[str, Any]:
        """Return the module entry for ``specifier``, running Deno at most once for it.

        Raises:
            LoaderError: If Deno fails or does not report the module.
        """
        entry = self._lookup(specifier)
        if entry is not None:
            return entry

        future = self._ongoing.get(specifier)
        if future is None:
            future = asyncio.ensure_future(self._load(specifier))
            self._ongoing[specifier] = future
            future.add_done_callback(lambda _: self._ongoing.pop(specifier, None))
        await asyncio.shield(future)

        entry = self._lookup(specifier)
        if entry is None:
            raise LoaderError(f"Module not found in deno info output: {specifier}")
        return entry

    async def _load(self, specifier: str) -> None:
        output = await self._runner(self._executable, [*self._flags, specifier], self._cwd)
        self._redirects.update(output.get("redirects") or {})
        for module in output.get("modules") or []:
            self._modules[module["specifier"]] = module
        self._packages.update_from_info(output)


class NativeLoader:
    """Resolve and load modules through ``deno info``."""

    def __init__(
        self,
        cwd: Optional[str] = None,
        deno_executable: str = Constants.DENO_EXECUTABLE,
        config_path: Optional[str] = None,
        import_map_url: Optional[str] = None,
        lock_path: Optional[str] = None,
        node_modules_dir: Optional[str] = None,
        deno_dir: Optional[str] = None,
        npm_cache_dir: Optional[str] = None,
        npm_registry_url: str = Constants.REGISTRY_URL_NPM,
        info_runner: Optional[InfoRunner] = None,
    ):
        self._node_modules_dir_manual = node_modules_dir == NodeModulesDirMode.MANUAL.value
        self._packages = NpmPackageRegistry()
        self._info_cache = InfoCache(
            self._packages,
            executable=deno_executable,
            cwd=cwd,
            config=config_path,
            import_map=import_map_url,
            lock=lock_path,
            node_modules_dir=node_modules_dir,
            runner=info_runner,
        )

        known_root: Optional[RootInfo] = None
        if deno_dir or npm_cache_dir:
            known_root = root_info_from_options(deno_dir, npm_cache_dir)

        async def _discover_root() -> RootInfo:
            return await root_info(deno_executable)

        self._materializer = NodeModulesMaterializer(
            self._packages,
            root_info=known_root,
            root_info_loader=_discover_root,
            default_registry_url=npm_registry_url,
        )

    @property
    def packages(self) -> NpmPackageRegistry:
        return self._packages

    async def __aenter__(self) -> "NativeLoader":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Nothing is held open; Deno runs once per query."""

    async def resolve(self, specifier: str) -> LoaderResolution:
        if self._node_modules_dir_manual and url_scheme(specifier) == "npm":
            parsed = parse_npm_specifier(specifier)
            return NpmResolution(package_id="", package_name=parsed.name, path=parsed.path or "")

        entry = await self._info_cache.get(specifier)
        if "error" in entry:
            if url_scheme(specifier) == "file" and media_type_from_specifier(specifier) == MediaType.UNKNOWN:
                return EsmResolution(entry["specifier"])
            raise LoaderError(entry["error"])

        kind = entry.get("kind")
        if kind == "npm":
            parsed = parse_npm_specifier(entry["specifier"])
            return NpmResolution(package_id=entry["npmPackage"], package_name=parsed.name, path=parsed.path or "")
        if kind == "node":
            return NodeResolution(entry["specifier"])
        return EsmResolution(entry["specifier"])

    async def load_esm(self, specifier: str) -> Optional[LoadResult]:
        """Read a module Deno has downloaded.

        Raises:
            LoaderError: If Deno reported an error or has no local copy.
        """
        scheme = url_scheme(specifier)
        if scheme == "data":
            content_type, data = decode_data_url(specifier)
            loader = media_type_to_loader(map_content_type(specifier, content_type))
            return None if loader is None else LoadResult(contents=data, loader=loader)

        entry = await self._info_cache.get(specifier)
        if "error" in entry and scheme != "file" and media_type_from_specifier(specifier) != MediaType.UNKNOWN:
            raise LoaderError(entry["error"])
        if "local" not in entry:
            raise LoaderError(f"Not an ESM module: {specifier}")
        if not entry["local"]:
            raise LoaderError(f"Module not downloaded yet: {specifier}")

        loader = media_type_to_loader(_media_type(entry.get("mediaType")))
        if loader is None:
            return None

        def _read() -> bytes:
            with open(entry["local"], "rb") as f:
                return f.read()

        contents = strip_cache_metadata(await asyncio.to_thread(_read))
        result = LoadResult(contents=contents, loader=loader)
        if scheme == "file":
            result.watch_files = [file_url_to_path(specifier)]
        return result

    async def node_modules_dir_for_package(self, package_id: str) -> str:
        return await self._materializer.node_modules_dir_for_package(package_id)

    def package_id_from_name_in_package(self, name: str, parent_package_id: str) -> Optional[str]:
        return self._packages.package_id_from_name_in_package(name, parent_package_id)
