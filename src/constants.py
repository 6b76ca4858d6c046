"""Shared constants for the Night Watch dashboard core."""

CONFIG_FILE_NAME = "night-watch.config.json"
REGISTRY_FILE_NAME = "projects.json"
PRD_STATES_FILE_NAME = "prd-states.json"

DEFAULT_PRD_DIR = "docs/PRDs/night-watch"
DEFAULT_LOCK_DIR = ".night-watch/locks"
DEFAULT_LOG_DIR = "logs"

CLAIM_FILE_EXTENSION = ".claim"
LOCK_FILE_EXTENSION = ".lock"
DONE_DIR_NAME = "done"
SUMMARY_FILE_NAME = "NIGHT-WATCH-SUMMARY.md"

CRONTAB_MARKER_PREFIX = "# night-watch-cli:"

# SSE event names
EVENT_STATUS_CHANGED = "status_changed"

LOG_NAMES = ("executor", "reviewer", "qa")
