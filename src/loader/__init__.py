"""Deno-style module resolution and loading for a bundler.

This package resolves ``file:``, ``http(s):``, ``data:``, ``npm:``, ``jsr:``
and ``node:`` specifiers, fetches remote modules once per session, pins
``jsr:`` packages through a lockfile and materializes npm packages as
hardlinked node_modules trees.
"""

from .errors import (
    FetchError,
    LoaderError,
    RedirectError,
    ResolutionError,
    SpecifierParseError,
    TooManyRedirectsError,
)
from .fetch_cache import RemoteFetchCache
from .jsr import JsrResolver
from .lockfile import Lockfile, load_lockfile, read_lockfile
from .media_types import MediaType, map_content_type, media_type_from_specifier, media_type_to_loader
from .models import EsmResolution, LoaderOptions, LoadResult, Module, NodeResolution, NpmPackage, NpmResolution
from .native import NativeLoader
from .npm import NodeModulesMaterializer
from .npm_info import NpmPackageRegistry, RootInfo
from .plugin import (
    DEFAULT_LOADER,
    BuildOptions,
    DenoLoaderPlugin,
    DenoResolverPlugin,
    OnLoadArgs,
    OnResolveResult,
    ResolveArgs,
    ResolveOptions,
)
from .portable import PortableLoader
from .specifiers import (
    EsbuildResolution,
    PackageSpecifier,
    classify_specifier,
    esbuild_resolution_to_url,
    parse_jsr_specifier,
    parse_npm_specifier,
    url_to_esbuild_resolution,
)
from .workspace import Workspace, WorkspaceResolver, find_workspace

__all__ = [
    "FetchError",
    "LoaderError",
    "RedirectError",
    "ResolutionError",
    "SpecifierParseError",
    "TooManyRedirectsError",
    "RemoteFetchCache",
    "JsrResolver",
    "Lockfile",
    "load_lockfile",
    "read_lockfile",
    "MediaType",
    "map_content_type",
    "media_type_from_specifier",
    "media_type_to_loader",
    "EsmResolution",
    "LoaderOptions",
    "LoadResult",
    "Module",
    "NodeResolution",
    "NpmPackage",
    "NpmResolution",
    "NativeLoader",
    "NodeModulesMaterializer",
    "NpmPackageRegistry",
    "RootInfo",
    "DEFAULT_LOADER",
    "BuildOptions",
    "DenoLoaderPlugin",
    "DenoResolverPlugin",
    "OnLoadArgs",
    "OnResolveResult",
    "ResolveArgs",
    "ResolveOptions",
    "PortableLoader",
    "EsbuildResolution",
    "PackageSpecifier",
    "classify_specifier",
    "esbuild_resolution_to_url",
    "parse_jsr_specifier",
    "parse_npm_specifier",
    "url_to_esbuild_resolution",
    "Workspace",
    "WorkspaceResolver",
    "find_workspace",
]
