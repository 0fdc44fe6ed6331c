"""Data models shared by the resolvers, loaders and materializer."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Optional, Union

from constants import Constants, LoaderType

from .media_types import MediaType


@dataclass(frozen=True)
class Module:
    """A fetched module, keyed by its final (post-redirect) specifier."""

    specifier: str
    media_type: MediaType
    data: bytes


@dataclass(frozen=True)
class EsmResolution:
    """Resolution to a module the loader serves itself."""

    specifier: str


@dataclass(frozen=True)
class NpmResolution:
    """Resolution into an npm package; the bundler resolves it in node_modules."""

    package_id: str
    package_name: str
    path: str = ""


@dataclass(frozen=True)
class NodeResolution:
    """Resolution to a Node.js builtin; always left external."""

    path: str


LoaderResolution = Union[EsmResolution, NpmResolution, NodeResolution]


@dataclass
class NpmPackage:
    """Metadata of one resolved npm package, as reported by ``deno info``."""

    name: str
    version: str
    dependencies: List[str] = field(default_factory=list)
    registry_url: Optional[str] = None


@dataclass
class LoadResult:
    """Contents handed to the bundler for one module."""

    contents: bytes
    loader: str
    watch_files: List[str] = field(default_factory=list)


@dataclass
class LoaderOptions:
    """Every option recognized by the resolver and loader plugins.

    Attributes:
        loader: ``native`` (delegates to the Deno executable) or ``portable``.
        cwd: Working directory; entry points and config paths resolve against it.
        config_path: Explicit deno.json path; disables workspace discovery.
        import_map_url: Import map to use instead of the workspace's imports.
        lock_path: Lockfile path; required by the portable loader for ``jsr:``.
        node_modules_dir: ``none``/``auto``/``manual``; ``manual`` and ``auto``
            make npm packages resolve from ``{cwd}/node_modules``.
        external: Glob patterns (``*`` wildcard) of URLs never to load.
        jsr_url: Base URL of the JSR registry.
        npm_registry_url: Default npm registry when a package has none.
        deno_dir: Deno cache root; hardlinked node_modules trees live below it.
        npm_cache_dir: Deno's npm package cache; defaults to ``{deno_dir}/npm``.
        deno_executable: Deno binary used by the native loader.
        request_timeout: Total seconds allowed per remote fetch.
    """

    loader: str = LoaderType.PORTABLE.value
    cwd: str = field(default_factory=os.getcwd)
    config_path: Optional[str] = None
    import_map_url: Optional[str] = None
    lock_path: Optional[str] = None
    node_modules_dir: Optional[str] = None
    external: List[str] = field(default_factory=list)
    jsr_url: str = Constants.JSR_URL
    npm_registry_url: str = Constants.REGISTRY_URL_NPM
    deno_dir: Optional[str] = None
    npm_cache_dir: Optional[str] = None
    deno_executable: str = Constants.DENO_EXECUTABLE
    request_timeout: int = Constants.REQUEST_TIMEOUT

    @classmethod
    def from_env(cls, **overrides) -> "LoaderOptions":
        """Create options seeded from ``JSR_URL`` and ``DENO_DIR``.

        Args:
            **overrides: Explicit values; these win over the environment.

        Returns:
            LoaderOptions instance.
        """
        options = cls(**overrides)
        if "jsr_url" not in overrides and os.environ.get(Constants.ENV_JSR_URL):
            options.jsr_url = os.environ[Constants.ENV_JSR_URL]
        if "deno_dir" not in overrides and os.environ.get(Constants.ENV_DENO_DIR):
            options.deno_dir = os.environ[Constants.ENV_DENO_DIR]
        return options
