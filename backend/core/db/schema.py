"""
SQLite schema for the tracking store
"""

CREATE_PROJECTS_TABLE = """
CREATE TABLE IF NOT EXISTS projects (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    client_name TEXT,
    hourly_rate REAL,
    color TEXT,
    is_archived INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
)
"""

CREATE_RULES_TABLE = """
CREATE TABLE IF NOT EXISTS rules (
    id TEXT PRIMARY KEY,
    project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    rule_type TEXT NOT NULL CHECK (rule_type IN ('app_name', 'window_title', 'url', 'keyword')),
    pattern TEXT NOT NULL,
    priority INTEGER NOT NULL DEFAULT 0,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
)
"""

CREATE_ENTRIES_TABLE = """
CREATE TABLE IF NOT EXISTS entries (
    id TEXT PRIMARY KEY,
    project_id TEXT REFERENCES projects(id) ON DELETE SET NULL,
    start_time TEXT NOT NULL,
    end_time TEXT,
    confidence INTEGER NOT NULL DEFAULT 0,
    reasoning TEXT,
    subtask TEXT,
    is_manual INTEGER NOT NULL DEFAULT 0,
    is_work INTEGER NOT NULL DEFAULT 1
)
"""

CREATE_AI_USAGE_TABLE = """
CREATE TABLE IF NOT EXISTS ai_usage_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    model TEXT NOT NULL,
    tokens_in INTEGER NOT NULL,
    tokens_out INTEGER NOT NULL,
    cost REAL NOT NULL,
    request_type TEXT,
    created_at TEXT NOT NULL
)
"""

ALL_TABLES = [
    CREATE_PROJECTS_TABLE,
    CREATE_RULES_TABLE,
    CREATE_ENTRIES_TABLE,
    CREATE_AI_USAGE_TABLE,
]

ALL_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_rules_priority ON rules(priority DESC)",
    "CREATE INDEX IF NOT EXISTS idx_rules_project ON rules(project_id)",
    "CREATE INDEX IF NOT EXISTS idx_entries_start ON entries(start_time)",
    "CREATE INDEX IF NOT EXISTS idx_ai_usage_created ON ai_usage_logs(created_at)",
]

# Tables reported by `autotracker status`
TRACKED_TABLES = ("projects", "rules", "entries", "ai_usage_logs")
