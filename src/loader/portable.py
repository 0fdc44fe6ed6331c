"""Loader that fetches remote modules itself, without a Deno executable.

Remote modules go through :class:`RemoteFetchCache`; ``jsr:`` specifiers are
pinned through a lockfile; ``npm:`` specifiers are left to a manual
node_modules directory.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from constants import Constants

from .errors import LoaderError, ResolutionError
from .fetch_cache import RemoteFetchCache
from .jsr import JsrResolver
from .media_types import map_content_type, media_type_to_loader
from .models import EsmResolution, LoaderResolution, LoadResult, Module, NodeResolution, NpmResolution
from .specifiers import (
    DataSpecifier,
    FileSpecifier,
    HttpSpecifier,
    JsrSpecifier,
    NodeSpecifier,
    NpmSpecifier,
    classify_specifier,
    file_url_to_path,
    url_scheme,
)

logger = logging.getLogger(__name__)


def _read_local(specifier: str) -> Module:
    path = file_url_to_path(specifier)
    with open(path, "rb") as f:
        data = f.read()
    return Module(specifier=specifier, media_type=map_content_type(specifier, None), data=data)


class PortableLoader:
    """Resolve and load modules using only HTTP and the local filesystem."""

    def __init__(
        self,
        lock_path: Optional[str] = None,
        jsr_url: str = Constants.JSR_URL,
        fetch_cache: Optional[RemoteFetchCache] = None,
        request_timeout: int = Constants.REQUEST_TIMEOUT,
    ):
        self._fetch_cache = fetch_cache or RemoteFetchCache(timeout=request_timeout)
        self._jsr = JsrResolver(self._fetch_cache, lock_path=lock_path, jsr_url=jsr_url)

    @property
    def fetch_cache(self) -> RemoteFetchCache:
        return self._fetch_cache

    async def __aenter__(self) -> "PortableLoader":
        await self._fetch_cache.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Release the lockfile and the HTTP session."""
        try:
            self._jsr.close()
        finally:
            await self._fetch_cache.stop()

    async def resolve(self, specifier: str) -> LoaderResolution:
        """Classify an absolute specifier into an esm, npm or node resolution.

        Raises:
            ResolutionError: For unsupported schemes or unresolvable ``jsr:``.
            FetchError: If a remote module cannot be fetched.
        """
        parsed = classify_specifier(specifier)
        if isinstance(parsed, FileSpecifier):
            return EsmResolution(parsed.url)
        if isinstance(parsed, (HttpSpecifier, DataSpecifier)):
            module = await self._fetch_cache.load_remote(parsed.url)
            return EsmResolution(module.specifier)
        if isinstance(parsed, NpmSpecifier):
            return NpmResolution(package_id="", package_name=parsed.package.name, path=parsed.package.path or "")
        if isinstance(parsed, NodeSpecifier):
            return NodeResolution(parsed.path)
        if isinstance(parsed, JsrSpecifier):
            return EsmResolution(await self._jsr.resolve(parsed.url))
        raise ResolutionError(f"Unsupported scheme: '{url_scheme(specifier)}:'")

    async def load_remote(self, specifier: str) -> Module:
        return await self._fetch_cache.load_remote(specifier)

    async def load_esm(self, specifier: str) -> Optional[LoadResult]:
        """Load the contents of an esm module.

        Returns:
            The contents and bundler loader id, or None when the media type
            has no loader (declaration files, source maps, unknown types).
        """
        scheme = url_scheme(specifier)
        if scheme == "file":
            module = await asyncio.to_thread(_read_local, specifier)
        elif scheme in ("http", "https", "data"):
            module = await self._fetch_cache.load_remote(specifier)
        else:
            raise LoaderError(f"Unsupported esm scheme: '{scheme}:'")

        loader = media_type_to_loader(module.media_type)
        if loader is None:
            logger.debug("No loader for %s (%s)", module.specifier, module.media_type.value)
            return None
        result = LoadResult(contents=module.data, loader=loader)
        if scheme == "file":
            result.watch_files = [file_url_to_path(module.specifier)]
        return result
