"""Index Cache -- 可重建的 task_id -> 元数据投影

缓存记录构建时观察到的文件集合与修改标记 (size, mtime_ns)。
新增、删除或标记变化的文件会使相关实体失效：
- 已知贡献文件集合与变化文件相交的实体
- 首次出现在新增/变化文件中的实体
历史文件同样可能变化（分支合并会改写旧日期的文件），不假设只有最新文件会变。

缓存本身不支持并发写入；一次重建是时间点快照，重建期间追加的事件
在下一次刷新时可见。
"""

import time
from collections import defaultdict
from datetime import UTC, datetime

import structlog
from pydantic import BaseModel, Field

from .exceptions import StoreIOError
from .models.report import Issue
from .models.task import Index, IndexEntry, State
from .projection import materialize
from .store import StoreGroup
from .store.cache_store import CacheSnapshot
from .store.event_log import EventSelector, FileMarker, ScanResult
from .store.transaction import replace_cache, replace_entities

log = structlog.get_logger()


class StalenessReport(BaseModel):
    """缓存过期检测结果"""

    has_cache: bool = Field(description="缓存是否存在且结构版本一致")
    added: list[str] = Field(default_factory=list, description="新增文件")
    removed: list[str] = Field(default_factory=list, description="已删除文件")
    changed: list[str] = Field(default_factory=list, description="标记变化的文件")
    affected_ids: list[str] = Field(default_factory=list, description="需要重新物化的实体")

    @property
    def stale(self) -> bool:
        return not self.has_cache or bool(self.added or self.removed or self.changed)

    @property
    def full_rebuild_required(self) -> bool:
        return not self.has_cache


def collect_entity_files(scan: ScanResult) -> dict[str, list[str]]:
    """实体 -> 贡献文件（排序）"""
    files: dict[str, set[str]] = defaultdict(set)
    for file_scan in scan.files:
        for event in file_scan.events:
            files[event.entity_id].add(file_scan.file)
    return {entity_id: sorted(names) for entity_id, names in sorted(files.items())}


def build_index_entries(
    state: State,
    entity_files: dict[str, list[str]],
) -> dict[str, IndexEntry]:
    """从物化快照派生索引条目"""
    entries: dict[str, IndexEntry] = {}
    for task_id, task in state.tasks.items():
        entries[task_id] = IndexEntry(
            status=task.status,
            created=task.created_at.strftime("%Y-%m-%d"),
            updated=task.updated_at.strftime("%Y-%m-%d"),
            completed=task.completed_at.strftime("%Y-%m-%d") if task.completed_at else None,
            files=entity_files.get(task_id, []),
            archived=task.archived,
        )
    return entries


def diff_markers(
    stored: dict[str, FileMarker],
    current: dict[str, FileMarker],
) -> tuple[list[str], list[str], list[str]]:
    """返回 (新增, 删除, 变化) 文件列表"""
    added = sorted(set(current) - set(stored))
    removed = sorted(set(stored) - set(current))
    changed = sorted(name for name in set(current) & set(stored) if current[name] != stored[name])
    return added, removed, changed


class IndexCache:
    """索引缓存 -- 版本化、可重建的投影，经 get-or-rebuild 访问"""

    def __init__(self, store_group: StoreGroup) -> None:
        self._stores = store_group
        self.last_issues: list[Issue] = []

    async def rebuild_index(self) -> Index:
        """全量扫描 + 重放，仅在成功时原子替换缓存

        扫描失败（如读取中途 I/O 错误）时旧缓存保持不变。

        Raises:
            StoreIOError: 扫描失败
        """
        start_time = time.monotonic()
        event_log = self._stores.event_log
        markers = event_log.file_markers()

        await log.ainfo("index_rebuild_started", file_count=len(markers))
        try:
            scan = await event_log.scan(EventSelector())
        except StoreIOError as e:
            await log.aerror("index_rebuild_failed", error=str(e))
            raise

        result = materialize(scan.events)
        entity_files = collect_entity_files(scan)
        snapshot = CacheSnapshot(
            index=build_index_entries(result.state, entity_files),
            entity_files=entity_files,
            state=result.state,
            markers=markers,
        )
        rebuilt_at = datetime.now(UTC)
        await replace_cache(
            self._stores.conn,
            self._stores.cache_store,
            snapshot,
            rebuilt_at.isoformat(),
        )
        self.last_issues = scan.issues + result.issues

        elapsed_ms = int((time.monotonic() - start_time) * 1000)
        await log.ainfo(
            "index_rebuild_completed",
            event_count=result.event_count,
            task_count=len(snapshot.index),
            stream_count=len(result.state.streams),
            issue_count=len(self.last_issues),
            elapsed_ms=elapsed_ms,
        )
        return Index(tasks=snapshot.index, rebuilt_at=rebuilt_at)

    async def check_staleness(
        self,
        current: dict[str, FileMarker] | None = None,
    ) -> StalenessReport:
        """比较缓存记录的文件标记与当前文件，计算受影响实体

        新增与变化的文件需要读取一次，以发现首次出现在其中的实体。
        """
        cache_store = self._stores.cache_store
        event_log = self._stores.event_log
        if current is None:
            current = event_log.file_markers()

        if not await cache_store.has_cache():
            return StalenessReport(has_cache=False, added=sorted(current))

        stored = await cache_store.load_markers()
        added, removed, changed = diff_markers(stored, current)
        if not (added or removed or changed):
            return StalenessReport(has_cache=True)

        affected = await cache_store.entities_touching(removed + changed)
        fresh_files = [name for name in event_log.list_files() if name in set(added + changed)]
        if fresh_files:
            scan = await event_log.scan(EventSelector(files=tuple(fresh_files)))
            affected.update(event.entity_id for event in scan.events)

        return StalenessReport(
            has_cache=True,
            added=added,
            removed=removed,
            changed=changed,
            affected_ids=sorted(affected),
        )

    async def refresh(self) -> Index:
        """get-or-rebuild 访问器

        - 无缓存：全量重建
        - 已过期：只重新物化受影响实体，原子提交
        - 未过期：直接读取缓存
        """
        event_log = self._stores.event_log
        current = event_log.file_markers()
        report = await self.check_staleness(current)

        if report.full_rebuild_required:
            return await self.rebuild_index()
        if not report.stale:
            return await self._stores.cache_store.load_index()

        await self._refresh_entities(report, current)
        return await self._stores.cache_store.load_index()

    async def _refresh_entities(
        self,
        report: StalenessReport,
        markers: dict[str, FileMarker],
    ) -> None:
        start_time = time.monotonic()
        cache_store = self._stores.cache_store
        event_log = self._stores.event_log
        affected = frozenset(report.affected_ids)

        stored_files = await cache_store.load_entity_files(affected)
        wanted = set(report.added) | set(report.changed)
        for names in stored_files.values():
            wanted.update(names)
        wanted -= set(report.removed)
        ordered = [name for name in event_log.list_files() if name in wanted]

        scan = await event_log.scan(EventSelector(files=tuple(ordered), entity_ids=affected))
        result = materialize(scan.events)
        entity_files = collect_entity_files(scan)
        snapshot = CacheSnapshot(
            index=build_index_entries(result.state, entity_files),
            entity_files=entity_files,
            state=result.state,
            markers=markers,
        )
        await replace_entities(
            self._stores.conn,
            cache_store,
            affected,
            snapshot,
            datetime.now(UTC).isoformat(),
        )
        self.last_issues = scan.issues + result.issues

        elapsed_ms = int((time.monotonic() - start_time) * 1000)
        await log.ainfo(
            "index_refresh_completed",
            added=len(report.added),
            removed=len(report.removed),
            changed=len(report.changed),
            affected_count=len(affected),
            file_count=len(ordered),
            elapsed_ms=elapsed_ms,
        )

    async def get_state(self) -> State:
        """刷新后读取物化快照"""
        await self.refresh()
        return await self._stores.cache_store.load_state()

    async def list_entries(self, status: str | None = None) -> dict[str, IndexEntry]:
        """刷新后按状态筛选索引条目"""
        await self.refresh()
        return await self._stores.cache_store.list_entries(status)
