"""CacheStore SQLite 实现

缓存库保存两份派生产物：索引（task_id -> 元数据）和完整物化快照。
此处仅提供数据库读写，不负责提交事务；提交与回滚由 transaction 模块管理。
"""

from collections import defaultdict
from collections.abc import Iterable
from datetime import datetime

import aiosqlite
from pydantic import BaseModel, Field

from ..models.task import Index, IndexEntry, State, Stream, Task
from .event_log import FileMarker
from .sqlite_init import CACHE_SCHEMA_VERSION


class CacheSnapshot(BaseModel):
    """一次构建/刷新要写入缓存的内容

    entity_files 覆盖所有出现过的实体（含孤儿事件与 Stream），
    index 只包含成功物化的任务。
    """

    index: dict[str, IndexEntry] = Field(default_factory=dict)
    entity_files: dict[str, list[str]] = Field(default_factory=dict)
    state: State = Field(default_factory=State)
    markers: dict[str, FileMarker] = Field(default_factory=dict)


def _chunks(items: list[str], size: int = 500) -> Iterable[list[str]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


class SqliteCacheStore:
    """CacheStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    # ---- 元数据 ----

    async def get_meta(self, key: str) -> str | None:
        cursor = await self._conn.execute(
            "SELECT value FROM cache_meta WHERE key = ?",
            (key,),
        )
        row = await cursor.fetchone()
        return row[0] if row else None

    async def has_cache(self) -> bool:
        """缓存是否至少成功构建过一次且结构版本一致"""
        version = await self.get_meta("cache_schema_version")
        return version == str(CACHE_SCHEMA_VERSION)

    async def rebuilt_at(self) -> datetime | None:
        value = await self.get_meta("rebuilt_at")
        return datetime.fromisoformat(value) if value else None

    # ---- 读取 ----

    async def load_markers(self) -> dict[str, FileMarker]:
        cursor = await self._conn.execute("SELECT file, size, mtime_ns FROM source_files")
        rows = await cursor.fetchall()
        return {row[0]: FileMarker(size=row[1], mtime_ns=row[2]) for row in rows}

    async def load_entity_files(
        self,
        entity_ids: Iterable[str] | None = None,
    ) -> dict[str, set[str]]:
        """实体 -> 贡献文件集合"""
        result: dict[str, set[str]] = defaultdict(set)
        if entity_ids is None:
            cursor = await self._conn.execute("SELECT entity_id, file FROM entity_files")
            rows = list(await cursor.fetchall())
        else:
            rows = []
            for chunk in _chunks(sorted(set(entity_ids))):
                placeholders = ",".join("?" for _ in chunk)
                cursor = await self._conn.execute(
                    f"SELECT entity_id, file FROM entity_files WHERE entity_id IN ({placeholders})",
                    chunk,
                )
                rows.extend(await cursor.fetchall())
        for entity_id, file in rows:
            result[entity_id].add(file)
        return dict(result)

    async def entities_touching(self, files: Iterable[str]) -> set[str]:
        """贡献文件集合与给定文件相交的实体"""
        found: set[str] = set()
        for chunk in _chunks(sorted(set(files))):
            placeholders = ",".join("?" for _ in chunk)
            cursor = await self._conn.execute(
                f"SELECT DISTINCT entity_id FROM entity_files WHERE file IN ({placeholders})",
                chunk,
            )
            found.update(row[0] for row in await cursor.fetchall())
        return found

    async def list_entries(self, status: str | None = None) -> dict[str, IndexEntry]:
        """查询索引条目，支持按状态筛选，按 task_id 排序"""
        if status:
            cursor = await self._conn.execute(
                "SELECT * FROM index_entries WHERE status = ? ORDER BY task_id",
                (status,),
            )
        else:
            cursor = await self._conn.execute("SELECT * FROM index_entries ORDER BY task_id")
        rows = await cursor.fetchall()
        files = await self.load_entity_files(row[0] for row in rows)
        return {row[0]: self._row_to_entry(row, files.get(row[0], set())) for row in rows}

    async def load_index(self) -> Index:
        return Index(tasks=await self.list_entries(), rebuilt_at=await self.rebuilt_at())

    async def load_state(self) -> State:
        """读取物化快照（按 ID 排序）"""
        cursor = await self._conn.execute("SELECT data FROM task_snapshots ORDER BY task_id")
        tasks = [Task.model_validate_json(row[0]) for row in await cursor.fetchall()]
        cursor = await self._conn.execute("SELECT data FROM stream_snapshots ORDER BY stream_id")
        streams = [Stream.model_validate_json(row[0]) for row in await cursor.fetchall()]
        return State(
            tasks={task.id: task for task in tasks},
            streams={stream.id: stream for stream in streams},
        )

    # ---- 写入（不提交） ----

    async def clear(self) -> None:
        for table in (
            "index_entries",
            "entity_files",
            "source_files",
            "task_snapshots",
            "stream_snapshots",
        ):
            await self._conn.execute(f"DELETE FROM {table}")

    async def delete_entities(self, entity_ids: Iterable[str]) -> None:
        for chunk in _chunks(sorted(set(entity_ids))):
            placeholders = ",".join("?" for _ in chunk)
            await self._conn.execute(
                f"DELETE FROM index_entries WHERE task_id IN ({placeholders})", chunk
            )
            await self._conn.execute(
                f"DELETE FROM entity_files WHERE entity_id IN ({placeholders})", chunk
            )
            await self._conn.execute(
                f"DELETE FROM task_snapshots WHERE task_id IN ({placeholders})", chunk
            )
            await self._conn.execute(
                f"DELETE FROM stream_snapshots WHERE stream_id IN ({placeholders})", chunk
            )

    async def write_snapshot(self, snapshot: CacheSnapshot) -> None:
        """写入快照内容（实体行先由调用方清理）"""
        await self._conn.executemany(
            """
            INSERT INTO index_entries (task_id, status, created, updated, completed, archived)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    task_id,
                    entry.status.value,
                    entry.created,
                    entry.updated,
                    entry.completed,
                    entry.archived,
                )
                for task_id, entry in snapshot.index.items()
            ],
        )
        await self._conn.executemany(
            "INSERT INTO entity_files (entity_id, file) VALUES (?, ?)",
            [
                (entity_id, file)
                for entity_id, files in snapshot.entity_files.items()
                for file in files
            ],
        )
        await self._conn.executemany(
            "INSERT INTO task_snapshots (task_id, data) VALUES (?, ?)",
            [(task.id, task.model_dump_json()) for task in snapshot.state.tasks.values()],
        )
        await self._conn.executemany(
            "INSERT INTO stream_snapshots (stream_id, data) VALUES (?, ?)",
            [
                (stream.id, stream.model_dump_json())
                for stream in snapshot.state.streams.values()
            ],
        )

    async def write_markers(self, markers: dict[str, FileMarker], rebuilt_at: str) -> None:
        """整体替换文件标记并记录构建时间"""
        await self._conn.execute("DELETE FROM source_files")
        await self._conn.executemany(
            "INSERT INTO source_files (file, size, mtime_ns) VALUES (?, ?, ?)",
            [(file, marker.size, marker.mtime_ns) for file, marker in sorted(markers.items())],
        )
        await self._conn.executemany(
            "INSERT OR REPLACE INTO cache_meta (key, value) VALUES (?, ?)",
            [
                ("cache_schema_version", str(CACHE_SCHEMA_VERSION)),
                ("rebuilt_at", rebuilt_at),
            ],
        )

    @staticmethod
    def _row_to_entry(row: aiosqlite.Row, files: set[str]) -> IndexEntry:
        """将数据库行转换为 IndexEntry 模型"""
        return IndexEntry(
            status=row[1],
            created=row[2],
            updated=row[3],
            completed=row[4],
            files=sorted(files),
            archived=row[5],
        )

