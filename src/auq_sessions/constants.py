"""Constants shared across the session coordination SDK.

File names and sentinel strings are part of the on-disk protocol shared with
consumer processes; changing them breaks compatibility with existing
session directories.
"""

import re

# --- Session directory layout ---
REQUEST_FILE = "request.json"
STATUS_FILE = "status.json"
ANSWERS_FILE = "answers.json"
SESSION_FILES: tuple[str, ...] = (REQUEST_FILE, STATUS_FILE, ANSWERS_FILE)

LOCK_SUFFIX = ".lock"
TEMP_SUFFIX = ".tmp"

# Application directory name used under the platform data directory.
APP_DIR_NAME = "auq"
SESSIONS_DIR_NAME = "sessions"

# UUID v4 in its canonical hyphenated form.  Every store method checks ids
# against this before touching the filesystem.
SESSION_ID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

# --- Transcript format ---
RESPONSE_HEADER = "Here are the user's answers:"
ANSWER_ARROW = "→"
REJECTION_MESSAGE = (
    "User rejected this question set and chose not to provide answers."
)

# Custom text starting with one of these is an out-of-band request to the
# producer rather than a literal answer; it is passed through verbatim.
ELABORATE_SENTINEL = "[ELABORATE_REQUEST]"
REPHRASE_SENTINEL = "[REPHRASE_REQUEST]"
SPECIAL_REQUEST_SENTINELS: tuple[str, ...] = (ELABORATE_SENTINEL, REPHRASE_SENTINEL)

# --- Question payload limits ---
# Hard bounds; the configurable limits in SessionSettings must stay inside them.
MIN_OPTIONS = 2
MAX_OPTIONS_LIMIT = 10
MAX_QUESTIONS_LIMIT = 10

# --- Lock protocol ---
LOCK_RETRY_INTERVAL = 0.05
# A lock file without a readable PID may belong to a writer that has created
# but not yet filled it; only reclaim it once it is older than this.
UNREADABLE_LOCK_GRACE = 1.0
