"""Exceptions raised by the template source engine.

Every exception carries a stable ``reason`` which ends up as the reason of the
``Ready`` condition when a reconciliation pass fails.
"""

from __future__ import annotations

from typing import ClassVar


class ArenaError(Exception):
    """Base class for all template source errors."""

    reason: ClassVar[str] = "Error"


class ConfigurationError(ArenaError):
    """Source spec is invalid. Terminal until the spec changes."""

    reason: ClassVar[str] = "ConfigurationError"


class FetchError(ArenaError):
    """Retrieving content from the origin failed (network, auth, not found)."""

    reason: ClassVar[str] = "FetchError"


class SyncError(ArenaError):
    """Storing content or collecting old versions failed."""

    reason: ClassVar[str] = "SyncError"


class ParseError(ArenaError):
    """Fetched content could not be parsed into templates."""

    reason: ClassVar[str] = "ParseError"


class IndexWriteError(ArenaError):
    """Writing the template index failed."""

    reason: ClassVar[str] = "IndexWriteError"
