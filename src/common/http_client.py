"""Blocking HTTP reads for build-session setup.

Module downloads go through the async fetch cache. This module covers the few
reads that happen before the event loop is involved, such as fetching a remote
import map named on the command line or in deno.json.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Optional, Tuple

import requests

from constants import Constants
from common.logging_utils import extra_context, is_debug_enabled, safe_url, Timer

logger = logging.getLogger(__name__)


def get_text(url: str, timeout: Optional[float] = None) -> Tuple[int, str]:
    """GET ``url`` and return ``(status, body)``.

    A transport failure is reported as status 0 with the error text as body,
    so callers handle it like any other non-200 answer.
    """
    target = safe_url(url)
    limit = timeout or Constants.REQUEST_TIMEOUT
    with Timer() as t:
        try:
            response = requests.get(url, timeout=limit, headers={"User-Agent": Constants.USER_AGENT})
        except requests.Timeout:
            logger.error("GET %s timed out after %ss", target, limit)
            return 0, "timeout"
        except requests.RequestException as exc:
            logger.error("GET %s failed: %s", target, exc)
            return 0, str(exc)

    if is_debug_enabled(logger):
        logger.debug(
            "GET finished",
            extra=extra_context(
                event="http_get",
                component="http_client",
                target=target,
                status_code=response.status_code,
                duration_ms=t.duration_ms(),
            )
        )
    return response.status_code, response.text


def get_json(url: str, timeout: Optional[float] = None) -> Tuple[int, Optional[Any]]:
    """GET ``url`` and decode a JSON body.

    Returns:
        ``(status, document)``; the document is None unless the status is 200
        and the body parses.
    """
    status, body = get_text(url, timeout=timeout)
    if status != 200 or not body:
        return status, None
    try:
        return status, json.loads(body)
    except json.JSONDecodeError as exc:
        logger.warning("Response from %s is not JSON: %s", safe_url(url), exc)
        return status, None
