"""Taskweave Core Store -- JSONL 事件日志 + SQLite 派生缓存

提供工作区初始化与打开函数，返回共享的 Store 实例组。
"""

from pathlib import Path

import aiosqlite
import structlog

from ..config import (
    ARCHIVE_DIRNAME,
    CACHE_DB_FILENAME,
    EVENTS_DIRNAME,
    GITIGNORE_CONTENT,
)
from ..exceptions import StoreIOError
from .cache_store import CacheSnapshot, SqliteCacheStore
from .event_log import (
    EventSelector,
    FileMarker,
    FileScan,
    JsonlEventLog,
    LineSource,
    RawLine,
    ScanResult,
    decode_raw_line,
)
from .protocols import EventLog, IdentityProvider, StaticIdentity, WriteContext
from .sqlite_init import init_db
from .transaction import replace_cache, replace_entities

log = structlog.get_logger()


class StoreGroup:
    """Store 实例组 -- 事件日志 + 缓存数据库连接"""

    def __init__(
        self,
        root: Path,
        conn: aiosqlite.Connection,
        read_concurrency: int = 8,
    ) -> None:
        self.root = root
        self.conn = conn
        self.event_log = JsonlEventLog(root, read_concurrency=read_concurrency)
        self.cache_store = SqliteCacheStore(conn)

    async def close(self) -> None:
        await self.conn.close()


def init_workspace(root: str | Path) -> Path:
    """创建工作区目录结构：events/、archive/、.gitignore

    已存在的目录保持不变。

    Raises:
        StoreIOError: 根路径被文件占用或无法创建
    """
    root_path = Path(root)
    try:
        if root_path.exists() and not root_path.is_dir():
            raise FileExistsError(f"路径已存在且不是目录: {root_path}")
        (root_path / EVENTS_DIRNAME).mkdir(parents=True, exist_ok=True)
        (root_path / ARCHIVE_DIRNAME).mkdir(parents=True, exist_ok=True)
        gitignore = root_path / ".gitignore"
        if not gitignore.exists():
            gitignore.write_text(GITIGNORE_CONTENT, encoding="utf-8")
    except OSError as e:
        raise StoreIOError(root_path, e) from e
    log.info("workspace_initialized", root=str(root_path))
    return root_path


async def open_workspace(
    root: str | Path,
    read_concurrency: int = 8,
) -> StoreGroup:
    """打开已存在的工作区

    不创建 events/ 目录；目录缺失时写入会以 StoreIOError 失败。

    Args:
        root: 工作区根目录
        read_concurrency: 并行读取文件数上限

    Returns:
        StoreGroup 实例
    """
    root_path = Path(root)
    if not root_path.is_dir():
        raise StoreIOError(root_path, FileNotFoundError(f"工作区不存在: {root_path}"))

    conn = await aiosqlite.connect(str(root_path / CACHE_DB_FILENAME))
    await init_db(conn)

    return StoreGroup(root=root_path, conn=conn, read_concurrency=read_concurrency)


__all__ = [
    "StoreGroup",
    "init_workspace",
    "open_workspace",
    "EventLog",
    "JsonlEventLog",
    "EventSelector",
    "FileMarker",
    "FileScan",
    "LineSource",
    "RawLine",
    "ScanResult",
    "decode_raw_line",
    "SqliteCacheStore",
    "CacheSnapshot",
    "IdentityProvider",
    "StaticIdentity",
    "WriteContext",
    "init_db",
    "replace_cache",
    "replace_entities",
]
