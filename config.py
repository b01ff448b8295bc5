"""Configuration for Focus Gamble."""

import logging
import os

APP_NAME = "FocusGamble"

# Overrides the per-platform data directory when set
DATA_DIR_ENV = "FOCUS_GAMBLE_HOME"

# Storage partitions and keys
SYNC = "sync"
LOCAL = "local"
SETTINGS_KEY = "settings"
TEMP_UNBLOCKS_KEY = "temporary_unblocks"
REROLL_STATE_KEY = "card_gamble_reroll_state"
ALARMS_KEY = "alarms"

# Named wake timers
BOUNDARY_ALARM = "schedule-boundary"
CLEANUP_ALARM = "cleanup-unblocks"
REROLL_RESET_ALARM = "reroll-reset"
SELECTION_EXPIRY_ALARM = "selection-expiry"

CLEANUP_PERIOD_MINUTES = 1

# How often the alarm ticker wakes up to look for due alarms (seconds)
ALARM_CHECK_INTERVAL = 1.0

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS
DAY_MS = 24 * HOUR_MS

# Re-check interval while the focus timer is paused
FOCUS_PAUSED_RECHECK_MS = MINUTE_MS
# Re-check interval when nothing else is scheduled
FALLBACK_RECHECK_MS = DAY_MS

# Delay before retrying a failed enforcement pass (seconds)
ENFORCE_RETRY_DELAY = 0.1

# Modes
MODE_SCHEDULED = "scheduled"
MODE_FOCUS = "focus"

# Card gamble
CARD_COUNT = 3
INITIAL_REROLLS = 3
MAX_AVAILABLE_REROLLS = 10
BONUS_CARD_PROBABILITY = 0.1
BONUS_REROLL_AMOUNT = 1
DEFAULT_MIN_UNBLOCK_MINUTES = 5
DEFAULT_MAX_UNBLOCK_MINUTES = 120
REROLL_COUNTDOWN_MIN_MINUTES = 30
REROLL_COUNTDOWN_MAX_MINUTES = 60

# Duration given to a newly added host
DEFAULT_HOST_DURATION_MINUTES = 10

# Default settings
DEFAULT_BLOCKED_HOSTS = [
    "tiktok.com",
    "netflix.com",
    "facebook.com",
    "instagram.com",
    "youtube.com",
    "twitter.com",
    "primevideo.com",
]

# 0 = Sunday .. 6 = Saturday
DEFAULT_WINDOWS = [
    {"day": day, "start": "09:00", "end": "17:00"} for day in range(1, 6)
]

DEFAULT_DURATIONS = [10, 15, 20, 25, 30]

DEFAULT_MODE = MODE_FOCUS
DEFAULT_FOCUS_HOURS = 2

# Upstream DNS server for non-blocked queries
UPSTREAM_DNS = "8.8.8.8"
UPSTREAM_DNS_PORT = 53

# Local DNS server settings
DNS_HOST = "127.0.0.1"  # Listen on localhost only
DNS_PORT = 53

# Block response - returns this IP for blocked domains
BLOCK_IP = "0.0.0.0"

# Block response for IPv6 (AAAA)
# "::" is the IPv6 "unspecified" address; connections to it will fail.
BLOCK_IPV6 = "::"

# Logging
LOG_LEVEL = os.environ.get("FOCUS_GAMBLE_LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

if not isinstance(logging.getLevelName(LOG_LEVEL), int):
    LOG_LEVEL = "INFO"
