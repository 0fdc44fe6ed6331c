"""Media type classification for module specifiers and HTTP responses."""

from __future__ import annotations

import posixpath
import urllib.parse
from enum import Enum
from typing import Optional


class MediaType(Enum):
    """Source language of a module's contents."""

    JAVASCRIPT = "JavaScript"
    MJS = "Mjs"
    CJS = "Cjs"
    JSX = "JSX"
    TYPESCRIPT = "TypeScript"
    MTS = "Mts"
    CTS = "Cts"
    DTS = "Dts"
    DMTS = "Dmts"
    DCTS = "Dcts"
    TSX = "TSX"
    JSON = "Json"
    WASM = "Wasm"
    TS_BUILD_INFO = "TsBuildInfo"
    SOURCE_MAP = "SourceMap"
    UNKNOWN = "Unknown"


_TYPESCRIPT_MIME_TYPES = {
    "application/typescript",
    "text/typescript",
    "video/vnd.dlna.mpeg-tts",
    "video/mp2t",
    "application/x-typescript",
}

_JAVASCRIPT_MIME_TYPES = {
    "application/javascript",
    "text/javascript",
    "application/ecmascript",
    "text/ecmascript",
    "application/x-javascript",
    "application/node",
}

_FIXED_MIME_TYPES = {
    "text/jsx": MediaType.JSX,
    "text/tsx": MediaType.TSX,
    "application/json": MediaType.JSON,
    "text/json": MediaType.JSON,
    "application/wasm": MediaType.WASM,
}

# Generic types that say nothing about the payload; the extension decides.
_GENERIC_MIME_TYPES = {"text/plain", "application/octet-stream"}

_EXTENSION_MEDIA_TYPES = {
    ".tsx": MediaType.TSX,
    ".js": MediaType.JAVASCRIPT,
    ".jsx": MediaType.JSX,
    ".mjs": MediaType.MJS,
    ".cjs": MediaType.CJS,
    ".json": MediaType.JSON,
    ".wasm": MediaType.WASM,
    ".tsbuildinfo": MediaType.TS_BUILD_INFO,
    ".map": MediaType.SOURCE_MAP,
}

_LOADERS = {
    MediaType.JAVASCRIPT: "js",
    MediaType.MJS: "js",
    MediaType.JSX: "jsx",
    MediaType.TYPESCRIPT: "ts",
    MediaType.MTS: "ts",
    MediaType.TSX: "tsx",
    MediaType.JSON: "json",
}


def _pathname(specifier: str) -> str:
    return urllib.parse.urlsplit(specifier).path


def _extname(path: str) -> str:
    return posixpath.splitext(path)[1]


def media_type_from_specifier(specifier: str) -> MediaType:
    """Classify a specifier by the extension of its path alone."""
    path = _pathname(specifier)
    ext = _extname(path)
    if ext == "":
        if path.endswith("/.tsbuildinfo"):
            return MediaType.TS_BUILD_INFO
        return MediaType.UNKNOWN
    if ext == ".ts":
        return MediaType.DTS if path.endswith(".d.ts") else MediaType.TYPESCRIPT
    if ext == ".mts":
        return MediaType.DMTS if path.endswith(".d.mts") else MediaType.MTS
    if ext == ".cts":
        return MediaType.DCTS if path.endswith(".d.cts") else MediaType.CTS
    return _EXTENSION_MEDIA_TYPES.get(ext, MediaType.UNKNOWN)


def _map_js_like_extension(specifier: str, default: MediaType) -> MediaType:
    """Refine a JavaScript/TypeScript content type using the path extension."""
    path = _pathname(specifier)
    ext = _extname(path)
    if ext == ".jsx":
        return MediaType.JSX
    if ext == ".mjs":
        return MediaType.MJS
    if ext == ".cjs":
        return MediaType.CJS
    if ext == ".tsx":
        return MediaType.TSX
    if ext == ".ts":
        return MediaType.DTS if path.endswith(".d.ts") else default
    if ext == ".mts":
        if path.endswith(".d.mts"):
            return MediaType.DMTS
        return MediaType.MJS if default == MediaType.JAVASCRIPT else MediaType.MTS
    if ext == ".cts":
        if path.endswith(".d.cts"):
            return MediaType.DCTS
        return MediaType.CJS if default == MediaType.JAVASCRIPT else MediaType.CTS
    return default


def map_content_type(specifier: str, content_type: Optional[str]) -> MediaType:
    """Classify a module from its ``Content-Type`` header and URL.

    Args:
        specifier: Module URL the content was served for.
        content_type: Raw header value, or None for local files.

    Returns:
        The derived MediaType.
    """
    if content_type is None:
        return media_type_from_specifier(specifier)

    mime = content_type.split(";", 1)[0].strip().lower()
    if mime in _TYPESCRIPT_MIME_TYPES:
        return _map_js_like_extension(specifier, MediaType.TYPESCRIPT)
    if mime in _JAVASCRIPT_MIME_TYPES:
        return _map_js_like_extension(specifier, MediaType.JAVASCRIPT)
    if mime in _FIXED_MIME_TYPES:
        return _FIXED_MIME_TYPES[mime]
    if mime in _GENERIC_MIME_TYPES:
        return media_type_from_specifier(specifier)
    return MediaType.UNKNOWN


def media_type_to_loader(media_type: MediaType) -> Optional[str]:
    """Return the bundler loader id for a media type, or None if not bundleable."""
    return _LOADERS.get(media_type)
