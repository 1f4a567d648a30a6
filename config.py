"""
Configuration constants for the ping/pong latency meter.
"""

import os

# --- Network Configuration ---
SERVER_HOST = "0.0.0.0"
SERVER_PORT = 4000
SERVER_URL = f"ws://localhost:{SERVER_PORT}"
RECONNECT_DELAY_S = 2.0 # Wait before reconnecting after the channel drops

# --- Ping Configuration ---
DEFAULT_PING_INTERVAL_MS = 200
PING_INTERVAL_PRESETS_MS = (250, 500, 1000, 2000)
LOSS_TIMEOUT_FACTOR = 5 # A probe is lost after interval * factor without an echo
SWEEP_FLOOR_MS = 500 # Loss sweep never runs more often than this

# --- Statistics Configuration ---
SAMPLE_WINDOW_CAPACITY = 50 # RTT samples kept for average and jitter
MIN_PACKETS_FOR_QUALITY = 5

GOOD_MAX_LATENCY_MS = 120.0
GOOD_MAX_JITTER_MS = 30.0
GOOD_MAX_LOSS_PERCENT = 1.0
MODERATE_MAX_LATENCY_MS = 250.0
MODERATE_MAX_JITTER_MS = 80.0
MODERATE_MAX_LOSS_PERCENT = 3.0

# --- Reporting Configuration ---
REPORT_INTERVAL_S = 5.0
LOG_LEVEL = os.environ.get("PINGPONG_LOG_LEVEL", "INFO").upper()
LOG_FORMAT = '%(asctime)s %(levelname)s: %(message)s'
