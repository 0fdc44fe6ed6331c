"""Workspace discovery and first-pass (import map) specifier resolution.

A :class:`Workspace` is the deno.json / deno.jsonc that governs a build. It
knows the lockfile location and the ``nodeModulesDir`` mode, and produces a
:class:`WorkspaceResolver` that turns relative and bare specifiers into
absolute URLs using the workspace's import map. Both are explicit resources:
close them (or use them as context managers) when the build session ends.
"""

from __future__ import annotations

import json
import logging
import os
import urllib.parse
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from constants import Constants, NodeModulesDirMode
from common.http_client import get_json
from common.logging_utils import extra_context, safe_url

from .errors import ResolutionError
from .specifiers import file_url_to_path, path_to_file_url, url_scheme

logger = logging.getLogger(__name__)

EntryPoints = Union[None, List[Union[str, Dict[str, str]]], Dict[str, str]]


def strip_jsonc_comments(content: str) -> str:
    """Strip comments and trailing commas from JSONC content.

    String literals are left untouched, so URLs such as ``https://...`` inside
    values survive.
    """
    out: List[str] = []
    i = 0
    n = len(content)
    in_string = False
    while i < n:
        ch = content[i]
        if in_string:
            out.append(ch)
            if ch == "\\" and i + 1 < n:
                out.append(content[i + 1])
                i += 2
                continue
            if ch == '"':
                in_string = False
            i += 1
            continue
        if ch == '"':
            in_string = True
            out.append(ch)
            i += 1
        elif content.startswith("//", i):
            end = content.find("\n", i)
            i = n if end == -1 else end
        elif content.startswith("/*", i):
            end = content.find("*/", i + 2)
            i = n if end == -1 else end + 2
        elif ch == ",":
            j = i + 1
            while j < n and content[j] in " \t\r\n":
                j += 1
            if j < n and content[j] in "}]":
                i += 1  # trailing comma
            else:
                out.append(ch)
                i += 1
        else:
            out.append(ch)
            i += 1
    return "".join(out)


def _is_url_like(specifier: str) -> bool:
    return specifier.startswith(("/", "./", "../"))


def _parse_absolute(specifier: str) -> Optional[str]:
    """Return ``specifier`` if it already is an absolute URL, else None."""
    scheme = url_scheme(specifier)
    if len(scheme) < 2:
        # empty, or a Windows drive letter
        return None
    if not specifier[len(scheme)] == ":":
        return None
    return specifier


def _join(base: str, specifier: str) -> Optional[str]:
    joined = urllib.parse.urljoin(base, specifier)
    return joined if _parse_absolute(joined) else None


class ImportMap:
    """WHATWG import map with ``imports`` and ``scopes``."""

    def __init__(self, base_url: str, value: Optional[Dict[str, Any]] = None):
        value = value or {}
        self.base_url = base_url
        self.imports = self._normalize(value.get("imports") or {})
        self.scopes: List[Tuple[str, Dict[str, str]]] = []
        for scope, imports in (value.get("scopes") or {}).items():
            scope_url = _join(base_url, scope) or scope
            self.scopes.append((scope_url, self._normalize(imports or {})))
        # most specific scope first
        self.scopes.sort(key=lambda item: len(item[0]), reverse=True)

    def _normalize(self, imports: Dict[str, str]) -> Dict[str, str]:
        normalized: Dict[str, str] = {}
        for key, target in imports.items():
            if not isinstance(target, str):
                logger.warning("Ignoring import map entry %s: target is not a string", key)
                continue
            norm_key = (_join(self.base_url, key) if _is_url_like(key) else None) or key
            if _is_url_like(target):
                norm_target = _join(self.base_url, target) or target
            else:
                norm_target = _parse_absolute(target) or target
            normalized[norm_key] = norm_target
        # longest key first so the most specific prefix wins
        return dict(sorted(normalized.items(), key=lambda item: len(item[0]), reverse=True))

    @staticmethod
    def _match(specifier: str, imports: Dict[str, str]) -> Optional[str]:
        exact = imports.get(specifier)
        if exact is not None:
            return exact
        for key, target in imports.items():
            if key.endswith("/") and specifier.startswith(key):
                if not target.endswith("/"):
                    raise ResolutionError(
                        f"Import map target for '{key}' must end with '/' to resolve '{specifier}'"
                    )
                return target + specifier[len(key):]
        return None

    def resolve(self, specifier: str, referrer: str) -> Optional[str]:
        """Apply scopes then top-level imports; None if nothing matches."""
        for scope, imports in self.scopes:
            if referrer == scope or (scope.endswith("/") and referrer.startswith(scope)):
                resolved = self._match(specifier, imports)
                if resolved is not None:
                    return resolved
        return self._match(specifier, self.imports)


class WorkspaceResolver:
    """Synchronous relative-to-absolute and import map resolution."""

    def __init__(self, import_map: Optional[ImportMap]):
        self._import_map = import_map
        self._closed = False

    def close(self) -> None:
        self._import_map = None
        self._closed = True

    def __enter__(self) -> "WorkspaceResolver":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def resolve(self, specifier: str, referrer: str) -> str:
        """Resolve ``specifier`` imported from ``referrer`` to an absolute URL.

        Raises:
            ResolutionError: For bare specifiers the import map does not cover.
        """
        if self._closed:
            raise ResolutionError("Workspace resolver has been closed")

        as_url: Optional[str] = None
        if _is_url_like(specifier):
            as_url = _join(referrer, specifier)
        else:
            as_url = _parse_absolute(specifier)

        if self._import_map is not None:
            mapped = self._import_map.resolve(as_url or specifier, referrer)
            if mapped is not None:
                return mapped

        if as_url is None:
            raise ResolutionError(
                f'Relative import path "{specifier}" not prefixed with / or ./ or ../ '
                f"and not in import map from \"{referrer}\""
            )
        return as_url


def _read_json_file(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        text = f.read()
    try:
        data = json.loads(strip_jsonc_comments(text))
    except json.JSONDecodeError as exc:
        raise ResolutionError(f"Failed to parse {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ResolutionError(f"Failed to parse {path}: expected a JSON object")
    return data


def load_import_map(url: str) -> Dict[str, Any]:
    """Load an import map from a file path, ``file:`` URL or ``http(s)`` URL."""
    scheme = url_scheme(url)
    if scheme in ("http", "https"):
        status, data = get_json(url)
        if status != 200 or not isinstance(data, dict):
            raise ResolutionError(f"Failed to load import map from {safe_url(url)} (status {status})")
        return data
    path = file_url_to_path(url) if scheme == "file" else url
    return _read_json_file(path)


class Workspace:
    """The Deno configuration governing a build."""

    def __init__(self, root_dir: str, config_path: Optional[str] = None, config: Optional[Dict[str, Any]] = None):
        self.root_dir = root_dir
        self.config_path = config_path
        self._config: Optional[Dict[str, Any]] = config or {}

    def close(self) -> None:
        self._config = None

    def __enter__(self) -> "Workspace":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @property
    def config(self) -> Dict[str, Any]:
        if self._config is None:
            raise ResolutionError("Workspace has been closed")
        return self._config

    @property
    def config_dir(self) -> str:
        return os.path.dirname(self.config_path) if self.config_path else self.root_dir

    def node_modules_dir(self) -> Optional[str]:
        """The ``nodeModulesDir`` mode, normalized to none/auto/manual."""
        value = self.config.get("nodeModulesDir")
        if value is True:
            return NodeModulesDirMode.AUTO.value
        if value is False:
            return NodeModulesDirMode.NONE.value
        if isinstance(value, str) and value in {m.value for m in NodeModulesDirMode}:
            return value
        return None

    def lock_path(self) -> Optional[str]:
        """Path of the lockfile this workspace uses, or None if disabled."""
        if self.config_path is None:
            return None
        lock = self.config.get("lock", True)
        if lock is False:
            return None
        if isinstance(lock, str):
            return os.path.join(self.config_dir, lock)
        if isinstance(lock, dict) and isinstance(lock.get("path"), str):
            return os.path.join(self.config_dir, lock["path"])
        return os.path.join(self.config_dir, Constants.LOCK_FILE_NAME)

    def resolver(
        self,
        import_map_url: Optional[str] = None,
        import_map_value: Optional[Dict[str, Any]] = None,
    ) -> WorkspaceResolver:
        """Build a resolver from an explicit import map or the workspace config.

        Args:
            import_map_url: Base URL of an explicit import map.
            import_map_value: Its already-loaded JSON; loaded from the URL if None.
        """
        if import_map_url is not None:
            base = import_map_url if url_scheme(import_map_url) else path_to_file_url(import_map_url)
            value = import_map_value if import_map_value is not None else load_import_map(import_map_url)
            return WorkspaceResolver(ImportMap(base, value))

        config = self.config
        config_url = path_to_file_url(self.config_path) if self.config_path else path_to_file_url(self.root_dir) + "/"
        if isinstance(config.get("importMap"), str):
            map_url = urllib.parse.urljoin(config_url, config["importMap"])
            return WorkspaceResolver(ImportMap(map_url, load_import_map(map_url)))
        if "imports" in config or "scopes" in config:
            return WorkspaceResolver(ImportMap(config_url, config))
        return WorkspaceResolver(None)


def _entry_point_dirs(cwd: str, entry_points: EntryPoints) -> List[str]:
    cwd_url = path_to_file_url(cwd).rstrip("/") + "/"
    specifiers: Iterable[str]
    if isinstance(entry_points, list):
        specifiers = [ep if isinstance(ep, str) else ep["in"] for ep in entry_points]
    elif isinstance(entry_points, dict):
        specifiers = list(entry_points.values())
    else:
        specifiers = []
    dirs = []
    for specifier in specifiers:
        url = specifier if _parse_absolute(specifier) else urllib.parse.urljoin(cwd_url, specifier)
        if url_scheme(url) == "file":
            dirs.append(os.path.dirname(file_url_to_path(url)))
    return dirs or [cwd]


def _find_config(start_dir: str) -> Optional[str]:
    current = os.path.abspath(start_dir)
    while True:
        for name in Constants.CONFIG_FILE_NAMES:
            candidate = os.path.join(current, name)
            if os.path.isfile(candidate):
                return candidate
        parent = os.path.dirname(current)
        if parent == current:
            return None
        current = parent


def find_workspace(cwd: str, entry_points: EntryPoints = None, config_path: Optional[str] = None) -> Workspace:
    """Locate the workspace config for a build.

    Args:
        cwd: Build working directory.
        entry_points: Bundler entry points (list of paths / ``{"in": ...}`` or a
            name-to-path dict); their directories are searched upwards.
        config_path: Explicit config file; skips discovery.
    """
    if config_path is not None:
        path = os.path.join(cwd, config_path)
        return Workspace(os.path.dirname(path), path, _read_json_file(path))

    dirs = _entry_point_dirs(cwd, entry_points)
    for start in dirs:
        found = _find_config(start)
        if found:
            logger.debug(
                "Workspace config found",
                extra=extra_context(event="workspace", component="workspace", target=found)
            )
            return Workspace(os.path.dirname(found), found, _read_json_file(found))
    return Workspace(dirs[0])
