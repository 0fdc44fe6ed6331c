"""Bundler-facing resolver and loader plugins.

The bundler is abstracted as a :class:`BuildContext`: something that exposes
its initial options and can run its own resolution pipeline on a path. Two
plugins sit on top of it:

* :class:`DenoResolverPlugin` turns relative and bare specifiers into absolute
  URLs (import maps included), filters externals, and re-enters the pipeline
  with the absolute URL split into namespace and path.
* :class:`DenoLoaderPlugin` resolves those absolute URLs through a native or
  portable loader and serves module contents.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import shutil
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Pattern, Protocol, Union

from constants import Constants, LoaderType, NodeModulesDirMode
from common.logging_utils import extra_context

from .errors import LoaderError
from .models import EsmResolution, LoaderOptions, LoadResult, NodeResolution, NpmResolution
from .native import NativeLoader
from .portable import PortableLoader
from .specifiers import (
    EsbuildResolution,
    esbuild_resolution_to_url,
    is_in_node_modules,
    is_node_modules_resolution,
    path_to_file_url,
    url_to_esbuild_resolution,
)
from .workspace import EntryPoints, WorkspaceResolver, find_workspace, load_import_map

logger = logging.getLogger(__name__)


def default_loader() -> str:
    """``native`` when a Deno executable is on PATH, else ``portable``."""
    return LoaderType.NATIVE.value if shutil.which(Constants.DENO_EXECUTABLE) else LoaderType.PORTABLE.value


DEFAULT_LOADER = default_loader()

BUILTIN_NODE_MODULES = frozenset([
    "assert", "assert/strict", "async_hooks", "buffer", "child_process",
    "cluster", "console", "constants", "crypto", "dgram",
    "diagnostics_channel", "dns", "dns/promises", "domain", "events", "fs",
    "fs/promises", "http", "http2", "https", "module", "net", "os", "path",
    "path/posix", "path/win32", "perf_hooks", "process", "punycode",
    "querystring", "repl", "readline", "stream", "stream/consumers",
    "stream/promises", "stream/web", "string_decoder", "sys", "test",
    "timers", "timers/promises", "tls", "tty", "url", "util", "util/types",
    "v8", "vm", "worker_threads", "zlib",
])

RESOLVE_NAMESPACES = ("file", "http", "https", "data", "npm", "jsr", "node")
LOAD_NAMESPACES = ("file", "http", "https", "data")

NPM_WITHOUT_NODE_MODULES = (
    'To use "npm:" specifiers, you must specify \'nodeModulesDir: "manual"\', '
    "or use 'loader: \"native\"'."
)


@dataclass
class BuildOptions:
    """The subset of bundler options the plugins read."""

    abs_working_dir: Optional[str] = None
    entry_points: EntryPoints = None
    external: List[str] = field(default_factory=list)


@dataclass
class ResolveArgs:
    path: str
    importer: str = ""
    namespace: str = "file"
    resolve_dir: str = ""
    kind: str = "import-statement"


@dataclass
class ResolveOptions:
    kind: str
    namespace: Optional[str] = None
    resolve_dir: Optional[str] = None
    importer: Optional[str] = None


@dataclass
class OnResolveResult:
    path: str
    namespace: Optional[str] = None
    external: bool = False


@dataclass
class OnLoadArgs:
    path: str
    namespace: str = "file"


class BuildContext(Protocol):
    """What the plugins need from the bundler."""

    initial_options: BuildOptions

    async def resolve(self, path: str, options: ResolveOptions) -> Optional[OnResolveResult]:
        ...


def compile_external_patterns(patterns: List[str]) -> List[Pattern[str]]:
    """Compile ``*``-wildcard patterns into anchored regular expressions."""
    return [re.compile("^" + ".*".join(re.escape(part) for part in p.split("*")) + "$") for p in patterns]


class DenoResolverPlugin:
    """First-pass resolution (relative paths, import maps) plus externals."""

    name = "deno-resolver"

    def __init__(self, options: Optional[LoaderOptions] = None):
        self._options = options or LoaderOptions()
        self._build: Optional[BuildContext] = None
        self._externals: List[Pattern[str]] = []
        self._resolver: Optional[WorkspaceResolver] = None

    def setup(self, build: BuildContext) -> None:
        self._build = build
        self._externals = compile_external_patterns(list(build.initial_options.external or []))

    def _require_build(self) -> BuildContext:
        if self._build is None:
            raise LoaderError(f"Plugin {self.name} used before setup()")
        return self._build

    def close(self) -> None:
        if self._resolver is not None:
            self._resolver.close()
            self._resolver = None

    async def on_start(self) -> None:
        """Reload the workspace; called at the start of every build."""
        build = self._require_build()
        cwd = build.initial_options.abs_working_dir or self._options.cwd
        import_map_url = self._options.import_map_url
        with find_workspace(cwd, build.initial_options.entry_points, self._options.config_path) as workspace:
            import_map_value = None
            if import_map_url is not None:
                import_map_value = await asyncio.to_thread(load_import_map, import_map_url)
            self.close()
            self._resolver = workspace.resolver(import_map_url, import_map_value)

    async def on_resolve(self, args: ResolveArgs) -> Optional[OnResolveResult]:
        """Resolve ``args.path`` and hand the absolute URL back to the bundler.

        Returns:
            None when the bundler should resolve the request itself: requests
            inside node_modules, or requests with neither importer nor
            resolve_dir.
        """
        if is_node_modules_resolution(args.namespace, args.resolve_dir, args.path, args.importer):
            return None

        if args.importer:
            if not args.namespace:
                raise LoaderError(f"Importer {args.importer} has no namespace")
            referrer = esbuild_resolution_to_url(EsbuildResolution(args.importer, args.namespace))
        elif args.resolve_dir:
            referrer = path_to_file_url(args.resolve_dir) + "/"
        else:
            return None

        if self._resolver is None:
            raise LoaderError(f"Plugin {self.name} used before on_start()")
        resolved = self._resolver.resolve(args.path, referrer)

        for pattern in self._externals:
            if pattern.match(resolved):
                logger.debug("External: %s", resolved)
                return OnResolveResult(path=resolved, external=True)

        split = url_to_esbuild_resolution(resolved)
        return await self._require_build().resolve(
            split.path, ResolveOptions(kind=args.kind, namespace=split.namespace)
        )


class DenoLoaderPlugin:
    """Second-pass resolution and loading of absolute module URLs."""

    name = "deno-loader"

    def __init__(self, options: Optional[LoaderOptions] = None):
        self._options = options or LoaderOptions(loader=DEFAULT_LOADER)
        if self._options.loader not in Constants.SUPPORTED_LOADERS:
            raise LoaderError(f"Invalid loader: {self._options.loader}")
        self._build: Optional[BuildContext] = None
        self._cwd = self._options.cwd
        self._node_modules_dir: Optional[str] = None
        self._loader: Union[NativeLoader, PortableLoader, None] = None
        self._package_id_by_node_modules: Dict[str, str] = {}

    @property
    def loader(self) -> Union[NativeLoader, PortableLoader, None]:
        return self._loader

    def setup(self, build: BuildContext) -> None:
        self._build = build
        self._cwd = build.initial_options.abs_working_dir or self._options.cwd

    def _require_build(self) -> BuildContext:
        if self._build is None:
            raise LoaderError(f"Plugin {self.name} used before setup()")
        return self._build

    def _require_loader(self) -> Union[NativeLoader, PortableLoader]:
        if self._loader is None:
            raise LoaderError(f"Plugin {self.name} used before on_start()")
        return self._loader

    async def close(self) -> None:
        if self._loader is not None:
            loader, self._loader = self._loader, None
            await loader.close()

    async def on_start(self) -> None:
        """Dispose the previous loader and build a fresh one for this build."""
        build = self._require_build()
        await self.close()
        self._package_id_by_node_modules.clear()

        options = self._options
        node_modules_dir = options.node_modules_dir
        lock_path = options.lock_path
        portable = options.loader == LoaderType.PORTABLE.value
        if node_modules_dir is None or (portable and lock_path is None):
            with find_workspace(self._cwd, build.initial_options.entry_points, options.config_path) as workspace:
                if node_modules_dir is None:
                    node_modules_dir = workspace.node_modules_dir()
                if portable and lock_path is None:
                    lock_path = workspace.lock_path()

        self._node_modules_dir = None
        if node_modules_dir in (NodeModulesDirMode.AUTO.value, NodeModulesDirMode.MANUAL.value):
            self._node_modules_dir = os.path.join(self._cwd, "node_modules")

        if portable:
            self._loader = PortableLoader(
                lock_path=lock_path,
                jsr_url=options.jsr_url,
                request_timeout=options.request_timeout,
            )
        else:
            self._loader = NativeLoader(
                cwd=self._cwd,
                deno_executable=options.deno_executable,
                config_path=options.config_path,
                import_map_url=options.import_map_url,
                lock_path=options.lock_path,
                node_modules_dir=node_modules_dir,
                deno_dir=options.deno_dir,
                npm_cache_dir=options.npm_cache_dir,
                npm_registry_url=options.npm_registry_url,
            )
        logger.debug(
            "Loader started",
            extra=extra_context(event="start", component="loader_plugin", action=options.loader, target=self._cwd)
        )

    def _package_id_for_importer(self, importer: str) -> str:
        path = importer
        while True:
            package_id = self._package_id_by_node_modules.get(path)
            if package_id:
                return package_id
            parent = os.path.dirname(path)
            if parent == path:
                raise LoaderError(f"Could not find package ID for importer: {importer}")
            path = parent

    async def _resolve_in_package(self, loader: NativeLoader, args: ResolveArgs) -> Optional[OnResolveResult]:
        parent_package_id = self._package_id_for_importer(args.importer)
        if args.path.startswith("."):
            return None

        parts = args.path.split("/")
        if args.path.startswith("@"):
            package_name, rest = "/".join(parts[:2]), parts[2:]
        else:
            package_name, rest = parts[0], parts[1:]

        package_id = loader.package_id_from_name_in_package(package_name, parent_package_id) or parent_package_id
        resolve_dir = await loader.node_modules_dir_for_package(package_id)
        self._package_id_by_node_modules[resolve_dir] = package_id
        return await self._require_build().resolve(
            "/".join([package_name, *rest]),
            ResolveOptions(kind=args.kind, resolve_dir=resolve_dir, importer=args.importer),
        )

    async def on_resolve(self, args: ResolveArgs) -> Optional[OnResolveResult]:
        """Resolve an absolute, namespaced request.

        Raises:
            LoaderError: If npm packages are needed but no node_modules
                source is available, or the loader rejects the specifier.
        """
        if args.namespace not in RESOLVE_NAMESPACES:
            return None
        loader = self._require_loader()

        if is_node_modules_resolution(args.namespace, args.resolve_dir, args.path, args.importer):
            if args.path in BUILTIN_NODE_MODULES or args.path.removeprefix("node:") in BUILTIN_NODE_MODULES:
                return OnResolveResult(path=args.path, external=True)
            if self._node_modules_dir is not None:
                return None
            if isinstance(loader, NativeLoader):
                return await self._resolve_in_package(loader, args)
            raise LoaderError(NPM_WITHOUT_NODE_MODULES)

        specifier = esbuild_resolution_to_url(EsbuildResolution(args.path, args.namespace))
        resolution = await loader.resolve(specifier)

        if isinstance(resolution, EsmResolution):
            split = url_to_esbuild_resolution(resolution.specifier)
            return OnResolveResult(path=split.path, namespace=split.namespace)
        if isinstance(resolution, NodeResolution):
            return OnResolveResult(path=resolution.path, external=True)
        if isinstance(resolution, NpmResolution):
            if self._node_modules_dir is not None:
                resolve_dir = self._node_modules_dir
            elif isinstance(loader, NativeLoader):
                resolve_dir = await loader.node_modules_dir_for_package(resolution.package_id)
                self._package_id_by_node_modules[resolve_dir] = resolution.package_id
            else:
                raise LoaderError(NPM_WITHOUT_NODE_MODULES)
            return await self._require_build().resolve(
                f"{resolution.package_name}{resolution.path}",
                ResolveOptions(kind=args.kind, resolve_dir=resolve_dir, importer=args.importer),
            )
        raise LoaderError(f"Unknown resolution: {resolution!r}")

    async def on_load(self, args: OnLoadArgs) -> Optional[LoadResult]:
        """Load module contents; files inside node_modules are left to the bundler."""
        if args.namespace not in LOAD_NAMESPACES:
            return None
        if args.namespace == "file" and is_in_node_modules(args.path):
            return None
        specifier = esbuild_resolution_to_url(EsbuildResolution(args.path, args.namespace))
        return await self._require_loader().load_esm(specifier)
