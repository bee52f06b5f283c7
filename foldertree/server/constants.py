"""Constants shared across the hierarchy services."""

ROOT_ID = 0
"""Parent id stored for nodes that live at the top of a user's tree."""

ROOT_LABEL = "Root"
TRASH_LABEL = "Trash"

CONFIG_FILE_NAME = "config.yaml"
ENV_PREFIX = "FOLDERTREE_"

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./foldertree.db"
DEFAULT_CONFLICT_RETRIES = 3

# SQLite caps the number of bound parameters per statement.
QUERY_CHUNK_SIZE = 500
