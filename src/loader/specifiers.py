"""Specifier parsing for the supported module schemes.

Covers the ``npm:`` / ``jsr:`` package grammar, scheme classification into
the :data:`Specifier` union, and the conversions between URLs and the
bundler's ``(namespace, path)`` resolution pairs.
"""

from __future__ import annotations

import os
import pathlib
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Optional, Union

from .errors import ResolutionError, SpecifierParseError


@dataclass(frozen=True)
class PackageSpecifier:
    """Name, version constraint and sub-path of an ``npm:``/``jsr:`` specifier."""

    name: str
    version: Optional[str] = None
    path: Optional[str] = None


@dataclass(frozen=True)
class FileSpecifier:
    url: str


@dataclass(frozen=True)
class HttpSpecifier:
    url: str


@dataclass(frozen=True)
class DataSpecifier:
    url: str


@dataclass(frozen=True)
class NpmSpecifier:
    url: str
    package: PackageSpecifier


@dataclass(frozen=True)
class JsrSpecifier:
    url: str
    package: PackageSpecifier


@dataclass(frozen=True)
class NodeSpecifier:
    url: str
    path: str


Specifier = Union[FileSpecifier, HttpSpecifier, DataSpecifier, NpmSpecifier, JsrSpecifier, NodeSpecifier]


@dataclass(frozen=True)
class EsbuildResolution:
    """A module location split the way the bundler routes it."""

    path: str
    namespace: str


def url_scheme(url: str) -> str:
    """Return the lower-cased scheme of ``url`` without the trailing colon."""
    return urllib.parse.urlsplit(url).scheme.lower()


def _split_package_path(url: str, kind: str, require_scope: bool) -> PackageSpecifier:
    path = urllib.parse.urlsplit(url).path
    start = 1 if path.startswith("/") else 0

    if path[start:start + 1] == "@":
        first_slash = path.find("/", start)
        if first_slash == -1:
            raise SpecifierParseError(f"Invalid {kind} specifier: {url}")
        path_start = path.find("/", first_slash + 1)
        version_start = path.find("@", first_slash + 1)
    elif require_scope:
        raise SpecifierParseError(f"Invalid {kind} specifier: {url}")
    else:
        path_start = path.find("/", start)
        version_start = path.find("@", start)

    if path_start == -1:
        path_start = len(path)
    if version_start == -1:
        version_start = len(path)
    # a "@" inside the sub-path is not a version separator
    if version_start > path_start:
        version_start = path_start
    if version_start == start:
        raise SpecifierParseError(f"Invalid {kind} specifier: {url}")

    return PackageSpecifier(
        name=path[start:version_start],
        version=None if version_start == path_start else path[version_start + 1:path_start],
        path=None if path_start == len(path) else path[path_start:],
    )


def parse_npm_specifier(url: str) -> PackageSpecifier:
    """Parse ``npm:[@scope/]name[@version][/path]``.

    Raises:
        SpecifierParseError: If the scheme is not ``npm`` or the name is empty.
    """
    if url_scheme(url) != "npm":
        raise SpecifierParseError(f"Invalid npm specifier: {url}")
    return _split_package_path(url, "npm", require_scope=False)


def parse_jsr_specifier(url: str) -> PackageSpecifier:
    """Parse ``jsr:@scope/name[@version][/path]``; JSR names are always scoped."""
    if url_scheme(url) != "jsr":
        raise SpecifierParseError(f"Invalid jsr specifier: {url}")
    return _split_package_path(url, "jsr", require_scope=True)


def classify_specifier(url: str) -> Specifier:
    """Map an absolute specifier onto its scheme-specific variant.

    Raises:
        ResolutionError: For schemes outside file/http(s)/data/npm/jsr/node.
    """
    scheme = url_scheme(url)
    if scheme == "file":
        return FileSpecifier(url)
    if scheme in ("http", "https"):
        return HttpSpecifier(url)
    if scheme == "data":
        return DataSpecifier(url)
    if scheme == "npm":
        return NpmSpecifier(url, parse_npm_specifier(url))
    if scheme == "jsr":
        return JsrSpecifier(url, parse_jsr_specifier(url))
    if scheme == "node":
        return NodeSpecifier(url, urllib.parse.urlsplit(url).path)
    raise ResolutionError(f"Unsupported scheme: '{scheme}:'")


def file_url_to_path(url: str) -> str:
    """Convert a ``file:`` URL to a filesystem path."""
    parts = urllib.parse.urlsplit(url)
    if parts.scheme != "file":
        raise ValueError(f"Must be a file URL: {url}")
    return urllib.request.url2pathname(parts.path)


def path_to_file_url(path: str) -> str:
    """Convert an absolute filesystem path to a ``file:`` URL."""
    return pathlib.Path(os.path.abspath(path)).as_uri()


def url_to_esbuild_resolution(url: str) -> EsbuildResolution:
    """Split a URL into a bundler namespace and path.

    For file URLs the path returned is a filesystem path, not a URL path.
    """
    scheme = url_scheme(url)
    if scheme == "file":
        return EsbuildResolution(path=file_url_to_path(url), namespace="file")
    return EsbuildResolution(path=url[len(scheme) + 1:], namespace=scheme)


def esbuild_resolution_to_url(resolution: EsbuildResolution) -> str:
    """Join a bundler namespace and path back into a URL.

    For the ``file`` namespace the path is read as a filesystem path.
    """
    if resolution.namespace == "file":
        return path_to_file_url(resolution.path)
    return f"{resolution.namespace}:{resolution.path}"


_SLASH_NODE_MODULES_SLASH = f"{os.sep}node_modules{os.sep}"
_SLASH_NODE_MODULES = f"{os.sep}node_modules"


def is_in_node_modules(path: str) -> bool:
    """Return True if ``path`` lies inside (or is) a node_modules directory."""
    return _SLASH_NODE_MODULES_SLASH in path or path.endswith(_SLASH_NODE_MODULES)


def is_node_modules_resolution(namespace: str, resolve_dir: str, path: str, importer: str) -> bool:
    """Return True for requests the bundler should resolve natively inside node_modules."""
    return namespace in ("", "file") and (
        is_in_node_modules(resolve_dir) or is_in_node_modules(path) or is_in_node_modules(importer)
    )
