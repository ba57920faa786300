"""Tests for the process memory check."""

from unittest.mock import Mock, patch

from sitecrawl.memory import get_memory_status, is_memory_constrained


def _process(rss_mb: float, percent: float) -> Mock:
    process = Mock()
    process.memory_info.return_value = Mock(rss=int(rss_mb * 1024 * 1024))
    process.memory_percent.return_value = percent
    return process


def test_memory_status_reads_current_process() -> None:
    """Verify the real process reports a positive RSS."""
    status = get_memory_status()

    assert status.rss_mb > 0
    assert 0.0 <= status.percent <= 100.0


def test_under_limit_is_not_constrained() -> None:
    """Test RSS below the limit passes."""
    with patch("sitecrawl.memory.psutil.Process", return_value=_process(200, 10.0)):
        assert not is_memory_constrained(1024)


def test_rss_over_limit_is_constrained() -> None:
    """Test RSS above the limit trips the check."""
    with patch("sitecrawl.memory.psutil.Process", return_value=_process(2048, 10.0)):
        assert is_memory_constrained(1024)


def test_system_share_over_critical_is_constrained() -> None:
    """Test a high share of system memory trips the check below the RSS limit."""
    with patch("sitecrawl.memory.psutil.Process", return_value=_process(100, 95.0)):
        assert is_memory_constrained(1024, critical_percent=90.0)
