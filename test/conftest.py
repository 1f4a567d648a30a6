"""pytest configuration and fixtures for the latency meter tests.

Provides:
- ManualClock: epoch-ms clock advanced by hand
- ManualScheduler: runs scheduled tasks as the manual clock advances
- FakeChannel: records sent frames, connection toggled by the test
- Markers for unit vs integration tests
"""

import itertools

import pytest

import protocol
from session import LatencySession, SessionSettings


class ManualClock:
    """Clock returning a fixed epoch-ms value until advanced."""

    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class ManualTask:
    def __init__(self, action, every_ms: int, next_due: int, order: int, name: str | None) -> None:
        self.action = action
        self.every_ms = every_ms
        self.next_due = next_due
        self.order = order
        self.name = name
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Deterministic stand-in for AsyncioScheduler.

    Nothing runs until advance() is called; tasks then fire in deadline
    order with the clock set to each deadline.
    """

    def __init__(self, clock: ManualClock) -> None:
        self.clock = clock
        self.tasks: list[ManualTask] = []
        self._order = itertools.count()

    def schedule(self, action, every_ms, immediate=False, name=None) -> ManualTask:
        next_due = self.clock.now if immediate else self.clock.now + every_ms
        task = ManualTask(action, every_ms, next_due, next(self._order), name)
        self.tasks.append(task)
        return task

    @property
    def active_tasks(self) -> list[ManualTask]:
        return [t for t in self.tasks if not t.cancelled]

    def task_named(self, name: str) -> ManualTask:
        (task,) = [t for t in self.active_tasks if t.name == name]
        return task

    def advance(self, ms: int) -> None:
        target = self.clock.now + ms
        while True:
            due = [t for t in self.active_tasks if t.next_due <= target]
            if not due:
                break
            task = min(due, key=lambda t: (t.next_due, t.order))
            self.clock.now = max(self.clock.now, task.next_due)
            task.next_due += task.every_ms
            task.action()
        self.clock.now = target

    def run_due(self) -> None:
        self.advance(0)


class FakeChannel:
    """Message channel that records frames instead of transmitting them."""

    def __init__(self) -> None:
        self.connected = True
        self.sent: list[str] = []

    def send(self, message: str) -> bool:
        if not self.connected:
            return False
        self.sent.append(message)
        return True

    def probes(self) -> list[protocol.Probe]:
        return [protocol.decode(frame) for frame in self.sent]


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: mark test as unit test")
    config.addinivalue_line("markers", "integration: mark test as integration test (opens localhost sockets)")


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def scheduler(clock: ManualClock) -> ManualScheduler:
    return ManualScheduler(clock)


@pytest.fixture
def channel() -> FakeChannel:
    return FakeChannel()


@pytest.fixture
def make_session(channel: FakeChannel, scheduler: ManualScheduler, clock: ManualClock):
    """Factory building a LatencySession wired to the fakes."""

    def factory(**settings) -> LatencySession:
        return LatencySession(channel, SessionSettings(**settings), scheduler=scheduler, clock=clock)

    return factory


@pytest.fixture
def reply(clock: ManualClock):
    """Build the pong frame a server would send for a probe, stamped now."""

    def build(probe: protocol.Probe) -> str:
        return protocol.encode(protocol.make_echo(probe, clock(), clock()))

    return build
