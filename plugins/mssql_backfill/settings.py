"""
Backfill Settings

Environment-driven configuration for the backfill engine:
- STRICT_CONSISTENCY=true: disable the default NOLOCK table hint
- BACKFILL_TABLE_HINT=...: override the default source table hint
- BACKFILL_BATCH_SIZE=N: default rows per batch
"""

from typing import Optional
import logging
import os

from mssql_backfill.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10000
DEFAULT_TABLE_HINT = 'NOLOCK'


def is_strict_consistency_mode() -> bool:
    """
    Check if strict consistency mode is enabled.

    When STRICT_CONSISTENCY=true, NOLOCK hints are not applied by default.
    NOLOCK can cause missing rows, duplicates, and inconsistent reads under concurrent writes.

    Returns:
        True if strict consistency mode is enabled
    """
    val = os.environ.get('STRICT_CONSISTENCY', '').lower()
    return val in ('true', '1', 'yes', 'on')


def get_default_table_hint() -> Optional[str]:
    """
    Get the table hint applied to source reads when a spec does not set one.

    Returns:
        Hint text without the WITH (...) wrapper, or None for no hint
    """
    override = os.environ.get('BACKFILL_TABLE_HINT')
    if override is not None:
        return override.strip() or None
    if is_strict_consistency_mode():
        return None
    return DEFAULT_TABLE_HINT


def get_batch_size(requested: Optional[int] = None) -> int:
    """
    Resolve the batch size from an explicit value or BACKFILL_BATCH_SIZE.

    Args:
        requested: Explicit batch size, wins over the environment

    Returns:
        Positive batch size

    Raises:
        ConfigurationError: If the value is not a positive integer
    """
    if requested is not None:
        raw = requested
    else:
        raw = os.environ.get('BACKFILL_BATCH_SIZE', str(DEFAULT_BATCH_SIZE))

    if isinstance(raw, (bool, float)):
        raise ConfigurationError(f"Invalid batch size: {raw!r}")
    try:
        batch_size = int(raw)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Invalid batch size: {raw!r}")

    if batch_size <= 0:
        raise ConfigurationError(f"Invalid batch size: {batch_size} (must be > 0)")
    return batch_size
