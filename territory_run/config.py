"""Central configuration for the territory tracking core.

All values are constants imported by the rest of the package. Adjust as needed
for your environment. Secrets are read from environment variables (optionally
via a local `.env`).
"""

from __future__ import annotations

import importlib
import os


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _env_str(key: str, default: str) -> str:
    value = os.getenv(key)
    if value is None:
        return default
    return value.strip()


# Load .env variables when python-dotenv is available.
_load_dotenv = None
try:
    _dotenv_mod = importlib.import_module("dotenv")
    _load_dotenv = getattr(_dotenv_mod, "load_dotenv", None)
except Exception:
    _load_dotenv = None

if callable(_load_dotenv):
    # Load .env from the current directory or any parent folder.
    _load_dotenv()


# ---------------------------------------------------------------------------
# Map matching
# ---------------------------------------------------------------------------
# OSRM-compatible routing backend used for snapping fixes onto paths.
OSRM_BASE_URL = _env_str("OSRM_BASE_URL", "https://router.project-osrm.org")

# Preferred backend profile names tried before the generic fallbacks. Leave
# empty to rely on the built-in ladder only.
MATCH_CYCLE_PROFILE = _env_str("MATCH_CYCLE_PROFILE", "")
MATCH_WALK_PROFILE = _env_str("MATCH_WALK_PROFILE", "")

# Per-profile request timeout in seconds. A batch waits at most
# (number of profiles * timeout) before reporting snap failure.
MATCH_REQUEST_TIMEOUT = _env_float("MATCH_REQUEST_TIMEOUT", 10.0)

# Number of most recent fixes sent per snap request; a new batch is submitted
# each time the track grows by this many fixes.
SNAP_BATCH_SIZE = _env_int("SNAP_BATCH_SIZE", 5)

# Disable snapping entirely (tracks are evaluated on raw fixes).
SNAP_ENABLED = _env_bool("SNAP_ENABLED", True)


# ---------------------------------------------------------------------------
# Session buffering / live mode
# ---------------------------------------------------------------------------
# Interval for writing the in-memory track to the local store while tracking.
BUFFER_PERSIST_INTERVAL_SECONDS = _env_float("BUFFER_PERSIST_INTERVAL_SECONDS", 3.0)

# Minimum gap between two live-position publishes; calls in between are dropped.
LIVE_THROTTLE_SECONDS = _env_float("LIVE_THROTTLE_SECONDS", 2.0)

# Number of best-estimate points included in the published live trail.
LIVE_TRAIL_POINTS = _env_int("LIVE_TRAIL_POINTS", 50)

# How long going offline waits for live publishes already handed to the pool.
LIVE_OFFLINE_WAIT_SECONDS = _env_float("LIVE_OFFLINE_WAIT_SECONDS", 5.0)

# Stop a session automatically when no fix arrived for this many seconds.
# Set to 0 to disable (sessions then stay active until stopped explicitly).
SESSION_IDLE_TIMEOUT_SECONDS = _env_float("SESSION_IDLE_TIMEOUT_SECONDS", 0.0)

# Directory (absolute or relative) backing the file key-value store.
LOCAL_STATE_DIR = _env_str("LOCAL_STATE_DIR", ".territory_run")


# ---------------------------------------------------------------------------
# Claim rules
# ---------------------------------------------------------------------------
# Policy constants; the defaults are part of the game rules and should only be
# changed for testing or special events.
CLAIM_MIN_SECONDS = _env_float("CLAIM_MIN_SECONDS", 600.0)
CLAIM_MIN_POINTS = _env_int("CLAIM_MIN_POINTS", 50)
LOOP_CLOSE_DISTANCE_M = _env_float("LOOP_CLOSE_DISTANCE_M", 20.0)
WALK_MIN_PERIMETER_M = _env_float("WALK_MIN_PERIMETER_M", 200.0)
CYCLE_MIN_PERIMETER_M = _env_float("CYCLE_MIN_PERIMETER_M", 1000.0)


# ---------------------------------------------------------------------------
# Storage collaborator
# ---------------------------------------------------------------------------
# PostgREST-compatible endpoint (for example a Supabase project URL).
STORAGE_BASE_URL = _env_str("STORAGE_BASE_URL", "")
STORAGE_API_KEY = os.getenv("STORAGE_API_KEY", "")
STORAGE_ACCESS_TOKEN = os.getenv("STORAGE_ACCESS_TOKEN", "")


# ---------------------------------------------------------------------------
# Performance tuning
# ---------------------------------------------------------------------------
# Threads used for best-effort remote calls (snap, point upserts, live mode).
TASK_MAX_WORKERS = _env_int("TASK_MAX_WORKERS", 4)

# Bounded history of background task failures kept for diagnostics.
TASK_ERROR_HISTORY = _env_int("TASK_ERROR_HISTORY", 50)

# HTTP session pool sizes for concurrent requests.
HTTP_POOL_CONNECTIONS = 10
HTTP_POOL_MAXSIZE = 10

# Request timeout in seconds for storage calls.
REQUEST_TIMEOUT = _env_float("REQUEST_TIMEOUT", 15.0)


# ---------------------------------------------------------------------------
# HTTP API
# ---------------------------------------------------------------------------
API_HOST = _env_str("API_HOST", "127.0.0.1")
API_PORT = _env_int("API_PORT", 5000)
