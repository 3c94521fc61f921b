"""
config.py -- All tunable parameters for the dungeon encounter harness.

Every value here is loaded from environment variables so you can point the
harness at a different service (or a local .env file) without touching code.

HOW TO READ THIS FILE:
  Each config value has a comment explaining:
    1. What it controls
    2. What happens if you raise/lower it
    3. The default and why it was chosen
"""

import os
import logging

# ---------------------------------------------------------------------------
# Helper: read an env var with a typed default
# ---------------------------------------------------------------------------

def _env(name, default, cast=str):
    """
    Read an environment variable and cast it to the right type.
    If the var is missing or empty, return *default* (already the right type).
    """
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        # Special handling for booleans -- "true"/"1"/"yes" are all truthy
        if cast is bool:
            return raw.strip().lower() in ("true", "1", "yes")
        return cast(raw)
    except (ValueError, TypeError):
        return default


# ---------------------------------------------------------------------------
# Service endpoint and credentials  (NEVER hard-code keys -- use env vars)
# ---------------------------------------------------------------------------

# JSON-RPC endpoint of the service that hosts players, monsters, encounters
# and the fee-currency ledger.  A local dev chain listens on 8545.
SERVICE_URL: str = _env("SERVICE_URL", "http://127.0.0.1:8545")

# Optional request signing.  When the secret is set every call carries
# API-Key / API-Sign headers.  Leave empty for an unauthenticated dev node.
SERVICE_API_KEY: str = _env("SERVICE_API_KEY", "")
SERVICE_API_SECRET: str = _env("SERVICE_API_SECRET", "")

# Identity of the combat service as a spender of fee-currency.
# Empty = ask the service for its own address at startup.
SERVICE_ADDRESS: str = _env("SERVICE_ADDRESS", "")

# Randomness provider key every round request is routed to.
PROVIDER_KEY: str = _env("PROVIDER_KEY", "")

# Per-call HTTP timeout.  The transport is assumed reliable, so a timeout
# here is fatal rather than retried.
REQUEST_TIMEOUT_SEC: float = _env("REQUEST_TIMEOUT_SEC", 15.0, float)

# ---------------------------------------------------------------------------
# Participants
# ---------------------------------------------------------------------------

# Index (into the service's account list) of the identity that owns the
# roster and funds every paid action.
FUNDER_INDEX: int = _env("FUNDER_INDEX", 0, int)

# Index of the first player account.  Index 1 is the randomness provider on
# a dev chain, so players start at 2.
FIRST_PLAYER_INDEX: int = _env("FIRST_PLAYER_INDEX", 2, int)

# How many players take part in every simulation round.
# Raising it: more encounters per round, linearly longer runs.
NUM_PLAYERS: int = _env("NUM_PLAYERS", 15, int)

# ---------------------------------------------------------------------------
# Simulation shape
# ---------------------------------------------------------------------------

# Number of simulation rounds.  Each round runs one encounter per player.
NUM_SIMULATIONS: int = _env("NUM_SIMULATIONS", 20, int)

# Player HP at or below this triggers a healing potion before the next round
# request (if the player owns one).
LOW_HEALTH_THRESHOLD: int = _env("LOW_HEALTH_THRESHOLD", 10, int)

# Allowance the funder grants the combat service for oracle fees at startup.
# Large on purpose: it is spent down one round at a time.
ORACLE_ALLOWANCE: int = _env("ORACLE_ALLOWANCE", 10 ** 26, int)

# JSON list overriding the monster roster, e.g.
#   [{"name": "goblin", "ac": 12, "hp": 12, "str": 0, "atk": 4, "dmg": 0}]
# Empty = built-in nine-tier roster.
MONSTER_ROSTER: str = _env("MONSTER_ROSTER", "")

# ---------------------------------------------------------------------------
# Polling
# ---------------------------------------------------------------------------

# Delay between reads of the encounter while a round is in flight.
# Lowering it: faster turnaround, more read calls against the service.
POLL_INTERVAL_MS: int = _env("POLL_INTERVAL_MS", 50, int)

# Pause after an encounter resolves before fetching its events, so the last
# round's events are visible in the log.
EVENT_SETTLE_SEC: float = _env("EVENT_SETTLE_SEC", 0.5, float)

# Longest a single round may stay in flight before the encounter is
# abandoned and the player skipped for this simulation round.
# 0 = wait forever.
ROUND_TIMEOUT_SEC: float = _env("ROUND_TIMEOUT_SEC", 120.0, float)

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

# DEBUG shows every poll; INFO shows encounter milestones.
LOG_LEVEL: str = _env("LOG_LEVEL", "INFO")


# ---------------------------------------------------------------------------
# Startup banner -- printed when the harness launches
# ---------------------------------------------------------------------------

def print_banner():
    """Print a clear summary of all active settings so you know what's running."""
    timeout = f"{ROUND_TIMEOUT_SEC:.0f}s" if ROUND_TIMEOUT_SEC > 0 else "none"
    lines = [
        "",
        "=" * 60,
        "  DUNGEON ENCOUNTER HARNESS",
        "=" * 60,
        f"  Service:         {SERVICE_URL}",
        f"  Signing:         {'configured' if SERVICE_API_SECRET else 'NOT SET'}",
        f"  Provider key:    {PROVIDER_KEY or 'NOT SET'}",
        f"  Players:         {NUM_PLAYERS} (accounts {FIRST_PLAYER_INDEX}..{FIRST_PLAYER_INDEX + NUM_PLAYERS - 1})",
        f"  Simulations:     {NUM_SIMULATIONS}",
        f"  Roster:          {'custom' if MONSTER_ROSTER else 'built-in'}",
        f"  Heal at HP:      <= {LOW_HEALTH_THRESHOLD}",
        f"  Poll interval:   {POLL_INTERVAL_MS}ms",
        f"  Round timeout:   {timeout}",
        f"  Log level:       {LOG_LEVEL}",
        "=" * 60,
        "",
    ]
    if not PROVIDER_KEY:
        logging.getLogger(__name__).warning("PROVIDER_KEY is empty -- round requests will be rejected")
    print("\n".join(lines))
