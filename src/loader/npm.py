"""Materialization of npm packages as hardlinked node_modules trees.

Each package id gets its own ``{deno_dir}/deno_esbuild/{host}/{id}/node_modules/{name}``
directory whose files are hardlinks into Deno's npm cache. Trees are built in
a private temp directory and renamed into place, so a half-built tree is
never visible and concurrent builders converge on one result.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import os
import shutil
import tempfile
import urllib.parse
from typing import Awaitable, Callable, Dict, Optional

from constants import Constants
from common.logging_utils import extra_context, Timer

from .errors import ResolutionError
from .models import NpmPackage
from .npm_info import NpmPackageRegistry, RootInfo

logger = logging.getLogger(__name__)


def cache_dir_name(package_name: str) -> str:
    """Directory name for a package in a possibly case-insensitive cache.

    Names with uppercase characters are replaced by ``_`` + base32 of the
    UTF-8 name so ``Foo`` and ``foo`` never share a directory.
    """
    if package_name.lower() != package_name:
        return "_" + base64.b32encode(package_name.encode("utf-8")).decode("ascii")
    return package_name


def link_recursive(src: str, dst: str) -> None:
    """Recreate ``src``'s directory tree at ``dst``, hardlinking every file."""
    if os.path.isdir(src):
        os.makedirs(dst, exist_ok=True)
        with os.scandir(src) as entries:
            for entry in entries:
                link_recursive(os.path.join(src, entry.name), os.path.join(dst, entry.name))
    else:
        os.link(src, dst)


class NodeModulesMaterializer:
    """Builds, once per package id, the node_modules directory for a package."""

    def __init__(
        self,
        packages: NpmPackageRegistry,
        root_info: Optional[RootInfo] = None,
        root_info_loader: Optional[Callable[[], Awaitable[RootInfo]]] = None,
        default_registry_url: str = Constants.REGISTRY_URL_NPM,
    ):
        """Initialize the materializer.

        Args:
            packages: Package metadata keyed by package id.
            root_info: Cache locations, if already known.
            root_info_loader: Called once to discover cache locations otherwise.
            default_registry_url: Registry for packages that do not name one.
        """
        if root_info is None and root_info_loader is None:
            raise ValueError("either root_info or root_info_loader is required")
        self._packages = packages
        self._root_info = root_info
        self._root_info_loader = root_info_loader
        self._root_info_lock = asyncio.Lock()
        self._default_registry_url = default_registry_url
        self._link_dir_cache: Dict[str, str] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    @property
    def packages(self) -> NpmPackageRegistry:
        return self._packages

    async def _get_root_info(self) -> RootInfo:
        async with self._root_info_lock:
            if self._root_info is None:
                assert self._root_info_loader is not None
                self._root_info = await self._root_info_loader()
            return self._root_info

    async def node_modules_dir_for_package(self, package_id: str) -> str:
        """Return the linked package directory for ``package_id``, building it once.

        Raises:
            ResolutionError: If ``package_id`` is unknown.
            OSError: If linking fails for any reason other than a concurrent
                builder having already produced the directory.
        """
        package = self._packages.get(package_id)
        if package is None:
            raise ResolutionError(f"NPM package not found: {package_id}")

        link_dir = self._link_dir_cache.get(package_id)
        if link_dir is not None:
            return link_dir

        lock = self._locks.setdefault(package_id, asyncio.Lock())
        async with lock:
            link_dir = self._link_dir_cache.get(package_id)
            if link_dir is None:
                link_dir = await self._materialize(package_id, package)
                self._link_dir_cache[package_id] = link_dir
        return link_dir

    def link_paths(self, package_id: str, package: NpmPackage, root: RootInfo) -> tuple[str, str]:
        """Return ``(package_dir, link_dir)`` for a package."""
        name = cache_dir_name(package.name)
        registry_url = package.registry_url or self._default_registry_url
        host = urllib.parse.urlsplit(registry_url).hostname or ""
        package_dir = os.path.join(root.npm_cache, host, name, package.version)
        link_dir = os.path.join(root.deno_dir, Constants.LINK_DIR_NAME, host, package_id, "node_modules", name)
        return package_dir, link_dir

    async def _materialize(self, package_id: str, package: NpmPackage) -> str:
        root = await self._get_root_info()
        package_dir, link_dir = self.link_paths(package_id, package, root)

        if await asyncio.to_thread(os.path.exists, link_dir):
            logger.debug("node_modules dir already linked: %s", link_dir)
            return link_dir

        tmp_parent = os.path.join(root.deno_dir, Constants.LINK_TMP_DIR_NAME)
        with Timer() as t:
            await asyncio.to_thread(self._link_into_place, package_dir, link_dir, tmp_parent)
        logger.debug(
            "Linked npm package",
            extra=extra_context(
                event="link",
                component="materializer",
                target=package_id,
                duration_ms=t.duration_ms(),
            )
        )
        return link_dir

    @staticmethod
    def _link_into_place(package_dir: str, link_dir: str, tmp_parent: str) -> None:
        os.makedirs(tmp_parent, exist_ok=True)
        tmp_dir = tempfile.mkdtemp(dir=tmp_parent)
        try:
            link_recursive(package_dir, tmp_dir)
            os.makedirs(os.path.dirname(link_dir), exist_ok=True)
            os.rename(tmp_dir, link_dir)
        except OSError:
            shutil.rmtree(tmp_dir, ignore_errors=True)
            # another process may have won the rename race
            if os.path.exists(link_dir):
                return
            raise
