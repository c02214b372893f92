import os

SECRET_KEY = os.environ.get("BOARD_SECRET_KEY", "your-secret-key-change-this")
DB_PATH = os.environ.get("BOARD_DB_PATH", "board.db")
UPLOAD_DIR = os.environ.get("BOARD_UPLOAD_DIR", "uploads")
MODERATOR_PASSWORD = os.environ.get("BOARD_MODERATOR_PASSWORD", "admin123")
LOG_LEVEL = os.environ.get("BOARD_LOG_LEVEL", "INFO")

# Locked threads still accept replies from a logged-in moderator
MODERATOR_LOCK_BYPASS = os.environ.get("BOARD_MODERATOR_LOCK_BYPASS", "1").lower() in ("1", "true", "yes", "on")

# Server Configuration
DEFAULT_HOST = os.environ.get("BOARD_HOST", "0.0.0.0")
DEFAULT_PORT = int(os.environ.get("BOARD_PORT", "8000"))

# Validation Constants
THREAD_TITLE_MIN_LENGTH = 1
THREAD_TITLE_MAX_LENGTH = 100
POST_BODY_MIN_LENGTH = 1
POST_BODY_MAX_LENGTH = 100000
AUTHOR_NAME_MAX_LENGTH = 35
DEFAULT_AUTHOR_NAME = "Anonymous"

# Pagination Defaults
THREADS_PER_PAGE = 10
REPLIES_PER_PAGE = 10
PREVIEW_REPLIES = 5
MODERATOR_PAGE_SIZE = 50

# Media Settings
MAX_UPLOAD_SIZE = 30 * 1024 * 1024  # 30 MB
ALLOWED_MEDIA_TYPES = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "video/webm": "webm",
    "video/mp4": "mp4",
}
MEDIA_NAME_BYTES = 8
MEDIA_COLLISION_RETRIES = 100

# Store Settings
DB_BUSY_TIMEOUT = 5.0  # seconds a writer waits for the lock

# Session Settings
SESSION_EXPIRE_HOURS = 24
SESSION_TOKEN_BYTES = 64
MODERATOR_TOKEN_EXPIRE_MINUTES = 12 * 60

# Security Settings
MAX_REQUEST_SIZE_MB = 31
FINGERPRINT_LENGTH = 16

# Time Constants (in seconds)
SECONDS_PER_HOUR = 3600

# HTTP Status Codes
HTTP_BAD_REQUEST = 400
HTTP_REQUEST_ENTITY_TOO_LARGE = 413
HTTP_INTERNAL_SERVER_ERROR = 500

# CSRF Token Settings
CSRF_TOKEN_BYTES = 32

# Cookie names
SESSION_COOKIE = "session_id"
MODERATOR_COOKIE = "mod_token"
CSRF_HEADER = "X-CSRF-Token"

# Cache Control Settings
CACHE_MAX_AGE_24H = 86400  # 24 hours for media files
