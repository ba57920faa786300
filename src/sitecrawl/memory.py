"""Process memory check used by the dynamic rendering circuit breaker."""

import logging
from dataclasses import dataclass

import psutil

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MemoryStatus:
    """Snapshot of this process's memory use."""

    rss_mb: float
    percent: float


def get_memory_status() -> MemoryStatus:
    """Return current RSS (MB) and share of system memory (%)."""
    process = psutil.Process()
    return MemoryStatus(
        rss_mb=process.memory_info().rss / (1024 * 1024),
        percent=process.memory_percent(),
    )


def is_memory_constrained(limit_mb: float, critical_percent: float = 90.0) -> bool:
    """Return True when RSS exceeds limit_mb or system share passes critical_percent."""
    status = get_memory_status()
    if status.rss_mb > limit_mb or status.percent > critical_percent:
        logger.warning(
            f"[yellow]High memory usage:[/] {status.rss_mb:.1f}MB ({status.percent:.1f}%)"
        )
        return True
    return False
