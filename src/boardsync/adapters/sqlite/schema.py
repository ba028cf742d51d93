"""
Board database schema.

Matches the layout of the board's own database so boardsync can open an
existing ``data.db``; every statement is idempotent.
"""

CREATE_FEATURES_TABLE = """
CREATE TABLE IF NOT EXISTS features (
    id TEXT PRIMARY KEY,
    code TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    story_counter INTEGER NOT NULL DEFAULT 0,
    extensions TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_features_code ON features(code);
"""

CREATE_STORIES_TABLE = """
CREATE TABLE IF NOT EXISTS stories (
    id TEXT PRIMARY KEY,
    code TEXT NOT NULL UNIQUE,
    feature_id TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    why TEXT NOT NULL DEFAULT '',
    status TEXT NOT NULL DEFAULT 'draft',
    priority TEXT NOT NULL DEFAULT 'P2',
    assigned_to TEXT,
    estimated_complexity TEXT,
    extensions TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now')),
    FOREIGN KEY (feature_id) REFERENCES features(id) ON DELETE CASCADE
);
CREATE INDEX IF NOT EXISTS idx_stories_feature_id ON stories(feature_id);
CREATE INDEX IF NOT EXISTS idx_stories_status ON stories(status);
CREATE INDEX IF NOT EXISTS idx_stories_code ON stories(code);
"""

SCHEMA = CREATE_FEATURES_TABLE + CREATE_STORIES_TABLE

# Columns added after the first release: (table, column, definition)
ADDED_COLUMNS = [
    ("stories", "estimated_complexity", "TEXT"),
]

# Remote id may live under the current key or the legacy ADO key.
# Malformed blobs read as unlinked instead of failing the whole query.
REMOTE_ID_EXPR = (
    "CASE WHEN json_valid(extensions) THEN "
    "COALESCE(json_extract(extensions, '$.remoteId'), "
    "json_extract(extensions, '$.adoWorkItemId')) END"
)
LAST_PUSHED_EXPR = (
    "CASE WHEN json_valid(extensions) THEN json_extract(extensions, '$.lastPushedAt') END"
)
