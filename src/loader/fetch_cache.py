"""In-memory cache for remote (http, https, data) modules.

Every specifier is fetched at most once per cache instance. Concurrent
callers asking for the same specifier share the single in-flight download,
and redirects are recorded one hop at a time so that every URL in a chain
resolves to the same cached module afterwards.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import urllib.parse
from typing import Any, Dict, Optional, Tuple

import aiohttp

from constants import Constants
from common.logging_utils import extra_context, is_debug_enabled, safe_url, Timer

from .errors import FetchError, RedirectError, TooManyRedirectsError
from .media_types import map_content_type
from .models import Module
from .specifiers import url_scheme

logger = logging.getLogger(__name__)


def _header(headers: Any, name: str) -> Optional[str]:
    """Case-insensitive header lookup that works for plain dicts too."""
    value = headers.get(name)
    if value is not None:
        return value
    lower = name.lower()
    for key, val in headers.items():
        if key.lower() == lower:
            return val
    return None


def decode_data_url(url: str) -> Tuple[str, bytes]:
    """Decode an RFC 2397 ``data:`` URL.

    Returns:
        Tuple of (content_type, body bytes).

    Raises:
        FetchError: If the URL has no ``,`` separator or bad base64.
    """
    header, sep, payload = url[len("data:"):].partition(",")
    if not sep:
        raise FetchError(f"Malformed data URL: {safe_url(url)}", specifier=url)
    params = header.split(";")
    is_base64 = params[-1].strip().lower() == "base64"
    if is_base64:
        params = params[:-1]
    content_type = ";".join(params).strip() or "text/plain;charset=US-ASCII"
    if is_base64:
        try:
            data = base64.b64decode(urllib.parse.unquote(payload), validate=False)
        except ValueError as exc:
            raise FetchError(f"Malformed base64 in data URL: {exc}", specifier=url) from exc
    else:
        data = urllib.parse.unquote_to_bytes(payload)
    return content_type, data


class RemoteFetchCache:
    """Deduplicating, redirect-following fetcher for remote modules."""

    def __init__(
        self,
        timeout: int = Constants.REQUEST_TIMEOUT,
        max_redirects: int = Constants.MAX_REDIRECTS,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """Initialize the cache.

        Args:
            timeout: Total request timeout in seconds for sessions created here.
            max_redirects: Redirect hops allowed before a load fails.
            session: Optional externally owned session (not closed by ``stop``).
        """
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._max_redirects = max_redirects
        self._session = session
        self._owns_session = session is None
        self._modules: Dict[str, Module] = {}
        self._redirects: Dict[str, str] = {}
        self._ongoing: Dict[str, asyncio.Future] = {}

    async def start(self) -> None:
        """Start the HTTP session."""
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=self._timeout,
                headers={"User-Agent": Constants.USER_AGENT},
            )
            self._owns_session = True

    async def stop(self) -> None:
        """Stop the HTTP session if this cache created it."""
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> "RemoteFetchCache":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()

    @property
    def modules(self) -> Dict[str, Module]:
        """Fetched modules by final specifier (read-only view by convention)."""
        return self._modules

    @property
    def redirects(self) -> Dict[str, str]:
        """One-hop redirect map recorded so far."""
        return self._redirects

    def get(self, specifier: str) -> Optional[Module]:
        """Return a cached module after following known redirects, without I/O."""
        seen = 0
        while specifier in self._redirects and seen <= self._max_redirects:
            specifier = self._redirects[specifier]
            seen += 1
        return self._modules.get(specifier)

    async def load_remote(self, specifier: str) -> Module:
        """Return the module for ``specifier``, fetching it at most once.

        Raises:
            TooManyRedirectsError: If more than ``max_redirects`` hops are needed.
            FetchError: For HTTP failures, transport errors and unusable redirects.
        """
        hops = 0
        while True:
            target = self._redirects.get(specifier)
            if target is not None:
                hops += 1
                if hops > self._max_redirects:
                    raise TooManyRedirectsError(
                        f"Too many redirects. Last one: {specifier}", specifier=specifier
                    )
                specifier = target
                continue

            module = self._modules.get(specifier)
            if module is not None:
                if is_debug_enabled(logger):
                    logger.debug(
                        "Fetch cache hit",
                        extra=extra_context(
                            event="cache_hit",
                            component="fetch_cache",
                            target=safe_url(specifier),
                        )
                    )
                return module

            future = self._ongoing.get(specifier)
            if future is None:
                future = asyncio.ensure_future(self._fetch(specifier))
                self._ongoing[specifier] = future
                future.add_done_callback(lambda done, key=specifier: self._forget(key, done))
            # shield so one cancelled caller does not abort the shared download
            await asyncio.shield(future)

    def _forget(self, specifier: str, future: asyncio.Future) -> None:
        if self._ongoing.get(specifier) is future:
            del self._ongoing[specifier]
        if not future.cancelled() and future.exception() is not None:
            logger.debug("Fetch of %s failed: %s", safe_url(specifier), future.exception())

    async def _fetch(self, specifier: str) -> None:
        """Perform one request and record either a module or a redirect."""
        if url_scheme(specifier) == "data":
            content_type, data = decode_data_url(specifier)
            self._store(specifier, content_type, data)
            return

        if self._session is None:
            await self.start()
        assert self._session is not None

        safe_target = safe_url(specifier)
        with Timer() as t:
            try:
                response = await self._session.request("GET", specifier, allow_redirects=False)
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                raise FetchError(f"Failed to fetch {safe_target}: {exc}", specifier=specifier) from exc
            try:
                status = response.status
                if is_debug_enabled(logger):
                    logger.debug(
                        "HTTP response",
                        extra=extra_context(
                            event="http_response",
                            component="fetch_cache",
                            action="GET",
                            status_code=status,
                            duration_ms=t.duration_ms(),
                            target=safe_target,
                        )
                    )
                if status < 200 or status >= 400:
                    raise FetchError(
                        f"Encountered status code {status} while fetching {safe_target}.",
                        specifier=specifier,
                        status=status,
                    )
                if 300 <= status < 400:
                    self._record_redirect(specifier, status, _header(response.headers, "Location"))
                    return
                try:
                    data = await response.read()
                except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                    raise FetchError(
                        f"Failed to read body of {safe_target}: {exc}", specifier=specifier, status=status
                    ) from exc
                self._store(specifier, _header(response.headers, "Content-Type"), data)
            finally:
                response.release()

    def _record_redirect(self, specifier: str, status: int, location: Optional[str]) -> None:
        if not location:
            raise RedirectError(
                f"Redirected without location header while fetching {safe_url(specifier)}.",
                specifier=specifier,
                status=status,
            )
        target = urllib.parse.urljoin(specifier, location)
        scheme = url_scheme(target)
        if scheme not in ("http", "https"):
            raise RedirectError(
                f"Redirected to unsupported protocol '{scheme}:' while fetching {safe_url(specifier)}.",
                specifier=specifier,
                status=status,
            )
        logger.debug(
            "Redirect recorded",
            extra=extra_context(
                event="redirect",
                component="fetch_cache",
                status_code=status,
                target=safe_url(target),
            )
        )
        self._redirects[specifier] = target

    def _store(self, specifier: str, content_type: Optional[str], data: bytes) -> None:
        media_type = map_content_type(specifier, content_type)
        self._modules[specifier] = Module(specifier=specifier, media_type=media_type, data=data)
