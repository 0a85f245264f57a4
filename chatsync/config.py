import os


MONGODB_URL = os.getenv("MONGODB_URL", "mongodb://localhost:27017")
MONGODB_DB = os.getenv("MONGODB_DB", "chatsync")

# Empty REDIS_URL keeps fan-out inside the process (LocalBus)
REDIS_URL = os.getenv("REDIS_URL", "")

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

SIGNED_URL_TTL_SECONDS = int(os.getenv("SIGNED_URL_TTL_SECONDS", "3600"))
ATTACHMENTS_BUCKET = os.getenv("ATTACHMENTS_BUCKET", "attachments")

PRESENCE_CHANNEL = os.getenv("PRESENCE_CHANNEL", "global_presence")
PRESENCE_TTL_SECONDS = int(os.getenv("PRESENCE_TTL_SECONDS", "60"))
PRESENCE_HEARTBEAT_SECONDS = int(os.getenv("PRESENCE_HEARTBEAT_SECONDS", "30"))

SEARCH_LIMIT = int(os.getenv("SEARCH_LIMIT", "10"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
