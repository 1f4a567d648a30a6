"""In-flight probe bookkeeping and timeout-based loss detection.

Each pending entry carries the timeout that was in force when its probe was
sent, so changing the ping interval mid-flight does not move the deadline
of probes already on the wire.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class PendingProbe:
    sent_at: int
    timeout_ms: float

    def expired(self, now: int) -> bool:
        return now - self.sent_at > self.timeout_ms


class PendingProbeTable:
    """Maps sequence number -> PendingProbe.

    Not thread-safe on its own; the owning session serializes access.
    Every entry leaves the table exactly once, through match(), sweep()
    or clear().
    """

    def __init__(self) -> None:
        self._entries: dict[int, PendingProbe] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, sequence_number: int) -> bool:
        return sequence_number in self._entries

    def add(self, sequence_number: int, sent_at: int, timeout_ms: float) -> None:
        if sequence_number in self._entries:
            raise KeyError(f"Sequence number {sequence_number} is already pending")
        self._entries[sequence_number] = PendingProbe(sent_at, timeout_ms)

    def match(self, sequence_number: int) -> PendingProbe | None:
        """Remove and return the entry for an echoed probe, or None if absent."""
        return self._entries.pop(sequence_number, None)

    def sweep(self, now: int) -> list[int]:
        """Remove every expired entry and return their sequence numbers."""
        lost = [seq for seq, probe in self._entries.items() if probe.expired(now)]
        for seq in lost:
            del self._entries[seq]
        return lost

    def clear(self) -> int:
        """Drop all entries without classifying them. Returns how many."""
        count = len(self._entries)
        self._entries.clear()
        return count
