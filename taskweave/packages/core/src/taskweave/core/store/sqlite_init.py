"""缓存数据库初始化

PRAGMA 配置 + 缓存表 DDL + 索引创建，使用 aiosqlite 异步操作。
缓存库中的所有内容都可从事件完整重建，从不作为事实来源。
"""

import aiosqlite

# 缓存结构版本，不一致时视为需要全量重建
CACHE_SCHEMA_VERSION = 1

# 元数据（缓存结构版本、最近构建时间）
_META_DDL = """
CREATE TABLE IF NOT EXISTS cache_meta (
    key    TEXT PRIMARY KEY,
    value  TEXT NOT NULL
);
"""

# 索引条目
_INDEX_DDL = """
CREATE TABLE IF NOT EXISTS index_entries (
    task_id     TEXT PRIMARY KEY,
    status      TEXT NOT NULL,
    created     TEXT NOT NULL,
    updated     TEXT NOT NULL,
    completed   TEXT,
    archived    TEXT
);
"""

# 实体 -> 贡献文件（含孤儿事件与 Stream，用于定位受影响实体）
_ENTITY_FILES_DDL = """
CREATE TABLE IF NOT EXISTS entity_files (
    entity_id  TEXT NOT NULL,
    file       TEXT NOT NULL,
    PRIMARY KEY (entity_id, file)
);
"""

# 构建时观察到的文件标记
_SOURCE_FILES_DDL = """
CREATE TABLE IF NOT EXISTS source_files (
    file      TEXT PRIMARY KEY,
    size      INTEGER NOT NULL,
    mtime_ns  INTEGER NOT NULL
);
"""

# 物化快照
_SNAPSHOT_DDL = """
CREATE TABLE IF NOT EXISTS task_snapshots (
    task_id  TEXT PRIMARY KEY,
    data     TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS stream_snapshots (
    stream_id  TEXT PRIMARY KEY,
    data       TEXT NOT NULL
);
"""

_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_index_entries_status ON index_entries(status);",
    "CREATE INDEX IF NOT EXISTS idx_entity_files_file ON entity_files(file);",
]


async def init_db(conn: aiosqlite.Connection) -> None:
    """初始化缓存数据库：设置 PRAGMA + 创建表 + 创建索引

    Args:
        conn: aiosqlite 数据库连接
    """
    await conn.execute("PRAGMA journal_mode = WAL;")
    await conn.execute("PRAGMA busy_timeout = 5000;")

    await conn.execute(_META_DDL)
    await conn.execute(_INDEX_DDL)
    await conn.execute(_ENTITY_FILES_DDL)
    await conn.execute(_SOURCE_FILES_DDL)
    await conn.executescript(_SNAPSHOT_DDL)

    for idx_sql in _INDEXES:
        await conn.execute(idx_sql)

    await conn.commit()


async def verify_wal_mode(conn: aiosqlite.Connection) -> bool:
    """验证 WAL 模式是否生效

    Returns:
        True 如果 WAL 模式已启用
    """
    cursor = await conn.execute("PRAGMA journal_mode;")
    row = await cursor.fetchone()
    return row is not None and row[0].lower() == "wal"
