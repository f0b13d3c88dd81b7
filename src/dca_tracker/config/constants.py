"""Global configuration constants for DCA Tracker.

These values are intentionally free of any presentation concerns so they
can be reused by services, the CLI, and tests.
"""

from __future__ import annotations

import os
from pathlib import Path

# Base directory for data files (defaults to the user's home, overridable for tests/scripts)
BASE_DIR = Path(os.environ.get("DCA_TRACKER_HOME") or Path.home() / ".dca_tracker")

# --- File paths ---
LEDGER_FILE = str(BASE_DIR / "ledger.json")
PREFERENCES_FILE = str(BASE_DIR / "preferences.json")

# --- Storage keys ---
# Ledger document key (device-only; never synced)
LEDGER_KEY = "dca_entries_json_device_only"
PREF_CURRENCY = "currency"
PREF_SATS_MODE = "sats_mode"
PREF_PRO_MODE = "pro_mode"
PREF_SATS_GOAL = "sats_goal_sats"

# API endpoints
COINGECKO_BASE_URL = "https://api.coingecko.com/api/v3"
COINGECKO_SIMPLE_PRICE_URL = f"{COINGECKO_BASE_URL}/simple/price"
COINGECKO_MARKET_CHART_URL = f"{COINGECKO_BASE_URL}/coins/bitcoin/market_chart"
COINGECKO_API_KEY_HEADER = "x-cg-demo-api-key"
# Empty disables the header
COINGECKO_API_KEY = os.environ.get("COINGECKO_DEMO_API_KEY", "")

# --- Price source behaviour ---
PRICE_TIMEOUT_SECONDS = 10.0
PRICE_REFRESH_SECONDS = 60.0
RETRY_AFTER_DEFAULT_SECONDS = 2
RETRY_AFTER_MIN_SECONDS = 1
RETRY_AFTER_MAX_SECONDS = 10
HISTORY_DAYS = 2
HISTORY_WINDOW_MS = 24 * 60 * 60 * 1000

# --- Units ---
SATS_PER_BTC = 100_000_000

# Stacking goal in sats (max = total supply of 21M BTC)
DEFAULT_GOAL_SATS = 1_000_000
MIN_GOAL_SATS = 100_000
MAX_GOAL_SATS = 2_100_000_000_000_000
GOAL_STEP_SATS = 100_000

# Allocation bucket width in USD
DEFAULT_BUCKET_SIZE_USD = 10_000.0

# Display currencies (toggle order)
SUPPORTED_CURRENCIES = ["USD", "EUR"]
DEFAULT_CURRENCY = "USD"

# Export/import formats
EXPORT_FORMATS = ["json", "csv"]
CSV_HEADER = "id,amount_btc,price_usd,timestamp"
