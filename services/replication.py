"""
Write-through policy for data kept in two stores.

The primary write is authoritative: its failure propagates. The secondary
write is a best-effort mirror: its failure is logged and swallowed, leaving
the stores divergent until the next successful write of the same record.
"""
from typing import Callable, Optional, TypeVar

from core.errors import DependencyError
from core.logger import logger

T = TypeVar("T")


def write_through(
    primary: Callable[[], T],
    secondary: Optional[Callable[[], object]] = None,
    description: str = "write",
) -> T:
    """
    Run the primary write, then mirror it to the secondary store.

    Args:
        primary: Callable performing the authoritative write
        secondary: Optional callable performing the mirror write
        description: Label used in log messages

    Returns:
        Whatever the primary write returned
    """
    result = primary()
    if secondary is not None:
        mirror_best_effort(secondary, description)
    return result


def mirror_best_effort(secondary: Callable[[], object], description: str = "write") -> bool:
    """Run a secondary write; log and swallow its failure. Returns True on success."""
    try:
        secondary()
        return True
    except Exception as e:
        error = DependencyError(f"Mirror {description} failed: {e}")
        logger.error(error.message, exc_info=True)
        return False
