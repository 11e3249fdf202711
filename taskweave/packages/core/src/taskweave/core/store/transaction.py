"""缓存替换事务封装

索引与物化快照在同一 SQLite 事务内原子替换：
扫描完成后才开启写入，任何失败都回滚，旧缓存保持不变。
"""

from collections.abc import Iterable

import aiosqlite

from .cache_store import CacheSnapshot, SqliteCacheStore


async def replace_cache(
    conn: aiosqlite.Connection,
    cache_store: SqliteCacheStore,
    snapshot: CacheSnapshot,
    rebuilt_at: str,
) -> None:
    """全量替换缓存内容

    Args:
        conn: 数据库连接（需在同一连接上操作以保证事务性）
        cache_store: CacheStore 实例
        snapshot: 全量扫描得到的缓存内容
        rebuilt_at: 构建时间（ISO 8601）

    Raises:
        Exception: 如果事务提交失败，自动回滚
    """
    try:
        await cache_store.clear()
        await cache_store.write_snapshot(snapshot)
        await cache_store.write_markers(snapshot.markers, rebuilt_at)
        await conn.commit()
    except Exception:
        await conn.rollback()
        raise


async def replace_entities(
    conn: aiosqlite.Connection,
    cache_store: SqliteCacheStore,
    entity_ids: Iterable[str],
    snapshot: CacheSnapshot,
    rebuilt_at: str,
) -> None:
    """增量替换指定实体的缓存行，并整体更新文件标记

    Args:
        conn: 数据库连接
        cache_store: CacheStore 实例
        entity_ids: 受影响的实体（其旧行全部删除）
        snapshot: 受影响实体重新物化后的内容 + 当前全部文件标记
        rebuilt_at: 刷新时间（ISO 8601）
    """
    try:
        await cache_store.delete_entities(entity_ids)
        await cache_store.write_snapshot(snapshot)
        await cache_store.write_markers(snapshot.markers, rebuilt_at)
        await conn.commit()
    except Exception:
        await conn.rollback()
        raise
