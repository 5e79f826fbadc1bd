"""Internal constants shared across the library."""

#: Outbound event name carrying a command payload to an agent.
ORDER_EVENT = "order"
#: Event sent to an agent right after its connection is accepted.
WELCOME_EVENT = "welcome"

DEFAULT_PORT = 22222
DOWNLOADS_FOLDER = "client_downloads"
#: SQLite file created under ``data_dir`` when no database URL is configured.
DATABASE_FILE = "agenthub.db"

# ------------------------------------------------------------------
# Poll scheduling
# ------------------------------------------------------------------

#: Smallest accepted nonzero location polling interval in seconds.
MIN_POLL_INTERVAL_SECONDS = 30

# ------------------------------------------------------------------
# Binary downloads
# ------------------------------------------------------------------

UNKNOWN_EXTENSION = ".unknown"
DOWNLOAD_TYPE_FILE = "download"
DOWNLOAD_TYPE_VOICE = "voiceRecord"

# Sub-tags carried by ``files`` telemetry messages.
FILES_TYPE_LIST = "list"
FILES_TYPE_DOWNLOAD = "download"
FILES_TYPE_ERROR = "error"

# ------------------------------------------------------------------
# Page filters
# ------------------------------------------------------------------

#: Number of trailing digits compared when filtering by phone number.
PHONE_SUFFIX_LENGTH = 6
