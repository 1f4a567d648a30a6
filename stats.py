"""Rolling RTT window, session counters and derived metrics.

Contains:
- SampleWindow: fixed-capacity ring buffer of RTT samples
- Counters: per-session packet counters
- QualityThresholds / Quality: network quality classification
- Metrics / compute_metrics: snapshot derived from counters and window
"""

from dataclasses import dataclass
from enum import Enum

import config


class SampleWindow:
    """Fixed-capacity FIFO of RTT samples in milliseconds.

    Pushing into a full window overwrites the oldest sample. Iteration
    yields samples oldest first; adjacency matters for jitter.
    """

    def __init__(self, capacity: int = config.SAMPLE_WINDOW_CAPACITY) -> None:
        if capacity <= 0:
            raise ValueError(f"Window capacity must be positive, got {capacity}")
        self._capacity = capacity
        self._buffer: list[float] = [0.0] * capacity
        self._start = 0
        self._size = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return self._size

    def __iter__(self):
        for i in range(self._size):
            yield self._buffer[(self._start + i) % self._capacity]

    def push(self, sample: float) -> float | None:
        """Append a sample. Returns the evicted sample when the window was full."""
        if self._size < self._capacity:
            self._buffer[(self._start + self._size) % self._capacity] = sample
            self._size += 1
            return None
        evicted = self._buffer[self._start]
        self._buffer[self._start] = sample
        self._start = (self._start + 1) % self._capacity
        return evicted

    def last(self) -> float | None:
        if self._size == 0:
            return None
        return self._buffer[(self._start + self._size - 1) % self._capacity]

    def clear(self) -> None:
        self._start = 0
        self._size = 0


@dataclass
class Counters:
    packets_sent: int = 0
    packets_received: int = 0
    lost_count: int = 0
    discarded_count: int = 0  # pending at disconnect, never counted as lost


class Quality(Enum):
    UNKNOWN = "Unknown"
    GOOD = "Good"
    MODERATE = "Moderate"
    POOR = "Poor"


@dataclass(frozen=True)
class QualityThresholds:
    """Upper bounds (exclusive) for each quality class."""

    good_latency_ms: float = config.GOOD_MAX_LATENCY_MS
    good_jitter_ms: float = config.GOOD_MAX_JITTER_MS
    good_loss_percent: float = config.GOOD_MAX_LOSS_PERCENT
    moderate_latency_ms: float = config.MODERATE_MAX_LATENCY_MS
    moderate_jitter_ms: float = config.MODERATE_MAX_JITTER_MS
    moderate_loss_percent: float = config.MODERATE_MAX_LOSS_PERCENT
    min_packets: int = config.MIN_PACKETS_FOR_QUALITY


DEFAULT_THRESHOLDS = QualityThresholds()


def average_latency(samples: list[float]) -> float:
    if not samples:
        return 0
    return round(sum(samples) / len(samples), 2)


def jitter(samples: list[float]) -> float:
    """Mean absolute difference between consecutive samples."""
    if len(samples) < 2:
        return 0
    diffs = [abs(samples[i] - samples[i - 1]) for i in range(1, len(samples))]
    return round(sum(diffs) / len(diffs), 2)


def packet_loss_percent(lost_count: int, packets_sent: int) -> float:
    return round(lost_count / max(packets_sent, 1) * 100, 2)


def classify_quality(
    avg_latency: float,
    jitter_ms: float,
    packet_loss: float,
    packets_sent: int,
    thresholds: QualityThresholds = DEFAULT_THRESHOLDS,
) -> Quality:
    if packets_sent < thresholds.min_packets:
        return Quality.UNKNOWN
    if (
        avg_latency < thresholds.good_latency_ms
        and jitter_ms < thresholds.good_jitter_ms
        and packet_loss < thresholds.good_loss_percent
    ):
        return Quality.GOOD
    if (
        avg_latency < thresholds.moderate_latency_ms
        and jitter_ms < thresholds.moderate_jitter_ms
        and packet_loss < thresholds.moderate_loss_percent
    ):
        return Quality.MODERATE
    return Quality.POOR


@dataclass(frozen=True)
class Metrics:
    """Snapshot of a session's live measurements. Latencies in milliseconds."""

    last_latency: float
    avg_latency: float
    jitter: float
    packet_loss: float
    packets_sent: int
    packets_received: int
    lost_count: int
    pending: int
    quality: Quality

    def summary(self) -> str:
        return (
            f"Quality: {self.quality.value} | Last: {self.last_latency}ms | "
            f"Avg: {self.avg_latency:.2f}ms | Jitter: {self.jitter:.2f}ms | "
            f"Sent: {self.packets_sent} Received: {self.packets_received} "
            f"Lost: {self.lost_count} ({self.packet_loss:.2f}%) Pending: {self.pending}"
        )


def compute_metrics(
    counters: Counters,
    window: SampleWindow,
    pending: int = 0,
    thresholds: QualityThresholds = DEFAULT_THRESHOLDS,
) -> Metrics:
    samples = list(window)
    last = window.last()
    avg = average_latency(samples)
    jit = jitter(samples)
    loss = packet_loss_percent(counters.lost_count, counters.packets_sent)
    return Metrics(
        last_latency=last if last is not None else 0,
        avg_latency=avg,
        jitter=jit,
        packet_loss=loss,
        packets_sent=counters.packets_sent,
        packets_received=counters.packets_received,
        lost_count=counters.lost_count,
        pending=pending,
        quality=classify_quality(avg, jit, loss, counters.packets_sent, thresholds),
    )
