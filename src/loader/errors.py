"""Exception types raised by the resolver and loaders."""

from __future__ import annotations

from typing import Optional


class LoaderError(RuntimeError):
    """Base class for every fatal resolution or loading failure."""


class SpecifierParseError(LoaderError, ValueError):
    """A malformed ``npm:`` or ``jsr:`` specifier."""


class ResolutionError(LoaderError):
    """A specifier could not be mapped to a module."""


class FetchError(LoaderError):
    """A remote module could not be downloaded."""

    def __init__(self, message: str, specifier: str, status: Optional[int] = None):
        super().__init__(message)
        self.specifier = specifier
        self.status = status


class RedirectError(FetchError):
    """A redirect response was unusable."""


class TooManyRedirectsError(FetchError):
    """The redirect chain for a specifier did not settle."""
