#!/usr/bin/env python3

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum

import config
import protocol
from pending import PendingProbeTable
from scheduler import AsyncioScheduler
from stats import Counters, Metrics, QualityThresholds, SampleWindow, compute_metrics


class SessionState(Enum):
    DISCONNECTED = "Disconnected"
    CONNECTING = "Connecting"
    CONNECTED = "Connected"


@dataclass
class SessionSettings:
    ping_interval_ms: int = config.DEFAULT_PING_INTERVAL_MS
    sample_window_capacity: int = config.SAMPLE_WINDOW_CAPACITY
    loss_timeout_factor: float = config.LOSS_TIMEOUT_FACTOR
    sweep_floor_ms: int = config.SWEEP_FLOOR_MS
    thresholds: QualityThresholds = field(default_factory=QualityThresholds)

    def __post_init__(self):
        for name in ("ping_interval_ms", "sample_window_capacity", "loss_timeout_factor", "sweep_floor_ms"):
            value = getattr(self, name)
            if value <= 0:
                raise ValueError(f"{name} must be positive, got {value}")


class LatencySession:
    """Client side of the probe/echo measurement over one message channel.

    Owns the pending probe table, the counters, the RTT window and two
    timers (ping emitter, loss sweeper). Acts as the channel's listener:
    the channel reports on_connecting/on_connect/on_disconnect/on_error/
    on_message and the session drives its state machine from those.

    All mutations happen under one lock. Messages are handed to the channel
    and listeners are notified only after the lock is released, so a
    channel that delivers synchronously cannot deadlock the session.
    """

    def __init__(self, channel, settings=None, scheduler=None, clock=protocol.now_ms):
        self._channel = channel
        self._settings = settings or SessionSettings()
        self._scheduler = scheduler or AsyncioScheduler()
        self._clock = clock
        self._lock = threading.Lock()
        self._listeners = []

        self._state = SessionState.DISCONNECTED
        self._ping_interval_ms = self._settings.ping_interval_ms
        self._ping_task = None
        self._sweep_task = None
        self._reset()

    def _reset(self):
        self._sequence_number = 0
        self._pending = PendingProbeTable()
        self._counters = Counters()
        self._window = SampleWindow(self._settings.sample_window_capacity)

    # --- Observers ---

    def add_listener(self, callback):
        """Register callback(metrics) invoked after every state mutation."""
        self._listeners.append(callback)

    def remove_listener(self, callback):
        self._listeners.remove(callback)

    def _notify(self, metrics):
        for callback in list(self._listeners):
            try:
                callback(metrics)
            except Exception as e:
                logging.error(f"Metrics listener raised: {e}", exc_info=True)

    # --- Read-only views ---

    @property
    def state(self):
        return self._state

    @property
    def ping_interval_ms(self):
        return self._ping_interval_ms

    @property
    def loss_timeout_ms(self):
        return self._ping_interval_ms * self._settings.loss_timeout_factor

    @property
    def sweep_interval_ms(self):
        return max(self._ping_interval_ms, self._settings.sweep_floor_ms)

    @property
    def counters(self):
        with self._lock:
            return Counters(**vars(self._counters))

    @property
    def pending_count(self):
        with self._lock:
            return len(self._pending)

    @property
    def samples(self):
        with self._lock:
            return list(self._window)

    def metrics(self) -> Metrics:
        with self._lock:
            return self._metrics_locked()

    def _metrics_locked(self):
        return compute_metrics(
            self._counters, self._window, len(self._pending), self._settings.thresholds
        )

    # --- Channel events ---

    def on_connecting(self):
        with self._lock:
            was_connected = self._state == SessionState.CONNECTED
            discarded = self._teardown_locked() if was_connected else 0
            self._state = SessionState.CONNECTING
            metrics = self._metrics_locked()
        if was_connected:
            logging.warning(f"Channel reconnecting while connected ({discarded} pending probes discarded)")
            self._notify(metrics)
        logging.info("Connecting to server...")

    def on_connect(self):
        with self._lock:
            if self._state == SessionState.CONNECTED:
                logging.warning("Channel reported connect while already connected; ignoring.")
                return
            self._reset()
            self._state = SessionState.CONNECTED
            self._restart_timers_locked()
            metrics = self._metrics_locked()
        logging.info(f"Connected to server (ping interval {self._ping_interval_ms}ms)")
        self._notify(metrics)

    def on_disconnect(self):
        with self._lock:
            was_connected = self._state == SessionState.CONNECTED
            self._state = SessionState.DISCONNECTED
            discarded = self._teardown_locked()
            metrics = self._metrics_locked()
        if was_connected:
            logging.info(f"Disconnected from server ({discarded} pending probes discarded)")
        self._notify(metrics)

    def _teardown_locked(self):
        """Stop both timers, then drop pending probes without counting them lost."""
        self._cancel_timers_locked()
        discarded = self._pending.clear()
        self._counters.discarded_count += discarded
        return discarded

    def on_error(self, error):
        logging.warning(f"Connection error: {error}")

    def on_message(self, raw):
        try:
            message = protocol.decode(raw)
        except protocol.UnknownMessageError as e:
            logging.info(f"Ignoring message: {e}")
            return
        except protocol.ProtocolError as e:
            logging.warning(f"Dropping malformed message: {e}")
            return

        if isinstance(message, protocol.Echo):
            self.handle_echo(message)
        else:
            logging.info(f"Ignoring unexpected '{protocol.PING_TYPE}' message (seq {message.sequence_number})")

    # --- Schedules ---

    def set_ping_interval(self, interval_ms):
        """Change the ping interval, restarting both timers if connected."""
        if interval_ms <= 0:
            raise ValueError(f"Ping interval must be positive, got {interval_ms}")
        with self._lock:
            self._ping_interval_ms = interval_ms
            if self._state == SessionState.CONNECTED:
                self._restart_timers_locked()
        if interval_ms not in config.PING_INTERVAL_PRESETS_MS:
            logging.debug(f"Ping interval {interval_ms}ms is not one of the presets {config.PING_INTERVAL_PRESETS_MS}")
        logging.info(f"Ping interval changed to {interval_ms}ms")

    def _restart_timers_locked(self):
        self._cancel_timers_locked()
        self._ping_task = self._scheduler.schedule(
            self.send_ping, self._ping_interval_ms, immediate=True, name="ping"
        )
        self._sweep_task = self._scheduler.schedule(
            self.sweep, self.sweep_interval_ms, name="loss-sweep"
        )

    def _cancel_timers_locked(self):
        if self._ping_task is not None:
            self._ping_task.cancel()
            self._ping_task = None
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            self._sweep_task = None

    # --- Emitter / sweeper / response handler ---

    def send_ping(self):
        """Send the next probe. Returns the Probe, or None when not connected."""
        if not self._channel.connected:
            logging.debug("Skipping ping: channel not connected")
            return None
        with self._lock:
            if self._state != SessionState.CONNECTED:
                logging.debug(f"Skipping ping: session is {self._state.value}")
                return None
            self._sequence_number += 1
            sent_at = self._clock()
            probe = protocol.Probe(self._sequence_number, sent_at)
            self._pending.add(probe.sequence_number, sent_at, self.loss_timeout_ms)
            self._counters.packets_sent += 1
            metrics = self._metrics_locked()
        if self._channel.send(protocol.encode(probe)):
            logging.debug(f"Ping sent - Seq: {probe.sequence_number}")
        else:
            # stays pending; swept as lost or discarded at disconnect
            logging.debug(f"Ping {probe.sequence_number} not handed to the channel (connection dropped)")
        self._notify(metrics)
        return probe

    def sweep(self, now=None):
        """Mark expired pending probes as lost. Returns how many were lost."""
        with self._lock:
            lost = self._pending.sweep(self._clock() if now is None else now)
            if not lost:
                return 0
            self._counters.lost_count += len(lost)
            metrics = self._metrics_locked()
        for seq in lost:
            logging.debug(f"Ping {seq} considered lost (timeout)")
        self._notify(metrics)
        return len(lost)

    def handle_echo(self, echo):
        """Record an echo. Returns False when it matched no pending probe."""
        with self._lock:
            rtt = self._clock() - echo.client_sent_at
            if self._pending.match(echo.sequence_number) is None:
                logging.debug(f"Ignoring pong for seq {echo.sequence_number}: not pending (late, duplicate or unknown)")
                return False
            self._counters.packets_received += 1
            self._window.push(rtt)
            metrics = self._metrics_locked()
        logging.debug(f"Pong received - Seq: {echo.sequence_number}, RTT: {rtt}ms")
        self._notify(metrics)
        return True

    def check_conservation(self):
        """True when every sent probe is accounted for exactly once."""
        with self._lock:
            c = self._counters
            accounted = c.packets_received + c.lost_count + c.discarded_count + len(self._pending)
            return c.packets_sent == accounted
