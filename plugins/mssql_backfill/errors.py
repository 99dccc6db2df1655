"""
Backfill Error Types

Errors raised by the key-range pagination engine. ConfigurationError and
NotFoundError also derive from the builtin ValueError / LookupError so code
that already catches those keeps working.
"""


class BackfillError(Exception):
    """Base class for all key-range backfill errors."""


class ConfigurationError(BackfillError, ValueError):
    """Invalid key columns, batch size, relation binding or projection settings."""


class NotFoundError(BackfillError, LookupError):
    """A column or table that should exist could not be found."""


class SchemaDriftError(BackfillError):
    """A fetched row no longer carries one of the expected key columns."""
