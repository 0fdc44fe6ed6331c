"""npm package metadata and Deno cache locations.

Package metadata comes from ``deno info --json`` output (its ``npmPackages``
table). Cache directories come from explicit options, ``DENO_DIR``, the
platform default, or ``deno info --json`` itself.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from constants import Constants

from .errors import LoaderError
from .models import NpmPackage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RootInfo:
    """Deno cache root and the npm package cache inside it."""

    deno_dir: str
    npm_cache: str


def default_deno_dir() -> str:
    """Return the platform default for DENO_DIR."""
    env = os.environ.get(Constants.ENV_DENO_DIR)
    if env:
        return env
    home = os.path.expanduser("~")
    if sys.platform == "darwin":
        return os.path.join(home, "Library", "Caches", "deno")
    if sys.platform == "win32":
        return os.path.join(os.environ.get("LOCALAPPDATA", home), "deno")
    return os.path.join(os.environ.get("XDG_CACHE_HOME", os.path.join(home, ".cache")), "deno")


def root_info_from_options(deno_dir: Optional[str], npm_cache_dir: Optional[str]) -> RootInfo:
    deno_dir = deno_dir or default_deno_dir()
    return RootInfo(
        deno_dir=deno_dir,
        npm_cache=npm_cache_dir or os.path.join(deno_dir, Constants.NPM_CACHE_DIR_NAME),
    )


async def run_deno_info(executable: str, args: Iterable[str], cwd: Optional[str] = None) -> Dict[str, Any]:
    """Run ``deno info --json`` and return its parsed output.

    Raises:
        LoaderError: If Deno exits non-zero or prints invalid JSON.
    """
    cmd = [executable, "info", "--json", *args]
    logger.debug("Running %s", " ".join(cmd))
    proc = await asyncio.create_subprocess_exec(
        *cmd,
        cwd=cwd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        env={**os.environ, "NO_COLOR": "1"},
    )
    stdout, stderr = await proc.communicate()
    if proc.returncode != 0:
        raise LoaderError(
            f"'{' '.join(cmd)}' failed with exit code {proc.returncode}: {stderr.decode(errors='replace').strip()}"
        )
    try:
        return json.loads(stdout)
    except json.JSONDecodeError as exc:
        raise LoaderError(f"Invalid JSON from '{' '.join(cmd)}': {exc}") from exc


async def root_info(executable: str = Constants.DENO_EXECUTABLE) -> RootInfo:
    """Ask the Deno executable where its caches live."""
    output = await run_deno_info(executable, [])
    return RootInfo(deno_dir=output["denoDir"], npm_cache=output["npmCache"])


class NpmPackageRegistry:
    """Lookup table of npm packages keyed by package id (``name@version``)."""

    def __init__(self, packages: Optional[Dict[str, NpmPackage]] = None):
        self._packages: Dict[str, NpmPackage] = dict(packages or {})

    def __contains__(self, package_id: str) -> bool:
        return package_id in self._packages

    def __len__(self) -> int:
        return len(self._packages)

    def get(self, package_id: str) -> Optional[NpmPackage]:
        return self._packages.get(package_id)

    def update_from_info(self, info: Dict[str, Any]) -> None:
        """Merge the ``npmPackages`` table of a ``deno info --json`` document."""
        for package_id, raw in (info.get("npmPackages") or {}).items():
            self._packages[package_id] = NpmPackage(
                name=raw["name"],
                version=raw["version"],
                dependencies=list(raw.get("dependencies") or []),
                registry_url=raw.get("registryUrl"),
            )

    @classmethod
    def from_info(cls, info: Dict[str, Any]) -> "NpmPackageRegistry":
        registry = cls()
        registry.update_from_info(info)
        return registry

    @classmethod
    def from_file(cls, path: str) -> "NpmPackageRegistry":
        with open(path, "r", encoding="utf-8") as f:
            return cls.from_info(json.load(f))

    def package_id_from_name_in_package(self, name: str, parent_package_id: str) -> Optional[str]:
        """Find which package id ``name`` refers to when imported from a package.

        Returns:
            The parent id when the names match, the dependency id with that
            name, or None when the parent does not depend on ``name``.

        Raises:
            LoaderError: If the parent or one of its dependencies is unknown.
        """
        parent = self._packages.get(parent_package_id)
        if parent is None:
            raise LoaderError(f"NPM package not found: {parent_package_id}")
        if parent.name == name:
            return parent_package_id
        for dep in parent.dependencies:
            dep_package = self._packages.get(dep)
            if dep_package is None:
                raise LoaderError(f"NPM package not found: {dep}")
            if dep_package.name == name:
                return dep
        return None

    def ids(self) -> List[str]:
        return sorted(self._packages)
