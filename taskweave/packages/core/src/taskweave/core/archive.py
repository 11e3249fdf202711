"""Archiver -- 将已完成任务的完整历史迁移到月度归档文件

归档只追加，不重写历史日文件：
1. 任务的全部事件追加到 archive/{完成月份}.jsonl（已存在的指纹跳过）
2. 第 1 步完全成功后，才向当天日文件追加 archive 标记事件

两步之间崩溃时任务仍是候选，重试安全。日文件与归档文件中的同一事件
指纹相同，物化时去重，因此归档前后任务内容一致，只多出归档引用。
"""

from collections import defaultdict
from collections.abc import Iterable
from datetime import datetime, timedelta

import structlog

from .config import CURRENT_SCHEMA_VERSION
from .exceptions import TaskweaveError
from .models.enums import Operation, TaskStatus
from .models.event import Event
from .models.payloads import ArchivePayload
from .models.report import ArchiveOutcome, ArchiveReport
from .models.task import State, Task
from .projection import dedupe_events, materialize, materialize_from_log
from .store import StoreGroup
from .store.event_log import EventSelector
from .store.protocols import IdentityProvider, WriteContext

log = structlog.get_logger()


def select_candidates(state: State, threshold_days: int, now: datetime) -> list[str]:
    """已完成、未归档、完成时间早于 now - threshold_days 的任务

    按完成时间、ID 排序；纯函数，可用于 dry-run 预览。
    """
    if threshold_days < 0:
        raise ValueError(f"归档阈值不能为负数: {threshold_days}")
    cutoff = now - timedelta(days=threshold_days)
    candidates = [
        task
        for task in state.tasks.values()
        if task.status == TaskStatus.COMPLETE
        and task.completed_at is not None
        and task.completed_at < cutoff
        and task.archived is None
    ]
    candidates.sort(key=lambda t: (t.completed_at, t.id))
    return [task.id for task in candidates]


def archive_month(task: Task) -> str:
    """归档文件月份：任务完成时间的 UTC 月份

    Raises:
        ValueError: 任务尚未完成
    """
    if task.completed_at is None:
        raise ValueError(f"任务 {task.id} 尚未完成，没有归档月份")
    return task.completed_at.strftime("%Y-%m")


class Archiver:
    """归档器 -- 失败按任务隔离，不影响其他任务"""

    def __init__(self, store_group: StoreGroup, identity: IdentityProvider) -> None:
        self._stores = store_group
        self._identity = identity

    async def list_candidates(self, threshold_days: int, now: datetime) -> list[str]:
        """列出归档候选（只读）"""
        result = await materialize_from_log(self._stores.event_log)
        return select_candidates(result.state, threshold_days, now)

    async def archive(self, task_ids: Iterable[str]) -> ArchiveReport:
        """逐个归档任务

        已归档（存在 archive 事件）的任务是 no-op；未完成或不存在的任务跳过。

        Raises:
            StoreIOError: 归档前的全量读取失败
        """
        event_log = self._stores.event_log
        scan = await event_log.scan(EventSelector())
        result = materialize(scan.events)

        history: dict[str, list[Event]] = defaultdict(list)
        for event in dedupe_events(scan.events):
            if not event.is_stream_event:
                history[event.entity_id].append(event)

        ctx = self._identity.write_context()
        report = ArchiveReport()
        for task_id in dict.fromkeys(task_ids):
            outcome = await self._archive_one(task_id, result.state, history[task_id], ctx)
            report.outcomes.append(outcome)

        await log.ainfo(
            "archive_completed",
            archived=len(report.archived),
            skipped=len(report.skipped),
            failed=len(report.failed),
        )
        return report

    async def _archive_one(
        self,
        task_id: str,
        state: State,
        events: list[Event],
        ctx: WriteContext,
    ) -> ArchiveOutcome:
        task = state.tasks.get(task_id)
        if task is None:
            return ArchiveOutcome(task_id=task_id, status="skipped", reason="unknown task")
        if task.archived is not None:
            return ArchiveOutcome(
                task_id=task_id,
                status="skipped",
                month=task.archived,
                reason="already archived",
            )
        if task.status != TaskStatus.COMPLETE or task.completed_at is None:
            return ArchiveOutcome(task_id=task_id, status="skipped", reason="not complete")

        month = archive_month(task)
        try:
            written = await self._stores.event_log.append_to_archive(month, events)
            marker = Event(
                schema_version=CURRENT_SCHEMA_VERSION,
                op=Operation.ARCHIVE,
                entity_id=task_id,
                ts=ctx.now,
                author=ctx.author,
                branch=ctx.branch,
                payload=ArchivePayload(ref=month),
            )
            await self._stores.event_log.append_event(marker)
        except (TaskweaveError, OSError) as e:
            await log.awarning("archive_task_failed", task_id=task_id, month=month, error=str(e))
            return ArchiveOutcome(task_id=task_id, status="failed", month=month, reason=str(e))

        await log.ainfo("task_archived", task_id=task_id, month=month, events_written=written)
        return ArchiveOutcome(
            task_id=task_id,
            status="archived",
            month=month,
            events_written=written,
        )
