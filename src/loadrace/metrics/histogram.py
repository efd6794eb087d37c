"""HDR histogram wrapper for latency percentiles.

Wraps ``hdrh.histogram.HdrHistogram`` with a millisecond API. Values are
stored internally as integer microseconds, as the HDR histogram only
records integers.
"""

from __future__ import annotations

from hdrh.histogram import HdrHistogram  # type: ignore[import-untyped]

# 1 microsecond to 10 minutes; slower responses are clamped.
_LOWEST_US = 1
_HIGHEST_US = 600_000_000
_SIGNIFICANT_DIGITS = 3


class LatencyHistogram:
    """Latency distribution in milliseconds backed by an HDR histogram.

    Not thread-safe on its own; the run aggregator serialises access.
    """

    def __init__(self) -> None:
        self._histogram = HdrHistogram(_LOWEST_US, _HIGHEST_US, _SIGNIFICANT_DIGITS)

    def record(self, latency_ms: float) -> None:
        """Record one latency, clamped to the trackable range."""
        value_us = max(_LOWEST_US, min(int(latency_ms * 1000), _HIGHEST_US))
        self._histogram.record_value(value_us)

    @property
    def count(self) -> int:
        return int(self._histogram.total_count)

    def percentile(self, percentile: float) -> float:
        """Latency at *percentile* (0-100) in ms, 0.0 when empty."""
        if self.count == 0:
            return 0.0
        return self._histogram.get_value_at_percentile(percentile) / 1000.0

    def min(self) -> float:
        if self.count == 0:
            return 0.0
        return self._histogram.get_min_value() / 1000.0

    def max(self) -> float:
        if self.count == 0:
            return 0.0
        return self._histogram.get_max_value() / 1000.0

    def mean(self) -> float:
        if self.count == 0:
            return 0.0
        return float(self._histogram.get_mean_value()) / 1000.0

    def reset(self) -> None:
        """Discard every recorded value."""
        self._histogram.reset()
