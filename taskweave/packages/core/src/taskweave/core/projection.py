"""Projection 物化模块

把任意顺序、来自任意文件（日文件/归档）的事件多重集折叠为唯一确定的
Task / Stream 快照。materialize 是事件多重集的纯函数：无论物理顺序如何，
相同输入得到逐字节一致的输出，这让各分支独立合并的历史无需协调即可收敛。

折叠规则：
1. 指纹相同的事件视为同一事件，先去重（归档复制历史、重试写入不会重复生效）
2. 按 (实体族, ID) 分组，组内按全序键 (ts, 创建优先, author, branch, op, fingerprint) 排序
3. 最早的 create 为规范创建，之后的 create 记为重复并忽略；没有 create 的实体不输出
4. 标量字段逐字段 last-write-wins：每个字段记录最后写入它的事件顺序键，
   顺序更早的写入不会覆盖
5. blocks / blocked_by 按成员记录顺序键，link 加入、unlink 移除
6. comment 总是追加，按顺序键排列
7. complete / reopen 作为一个整体（状态 + 完成时间 + 原因）更新
8. archive 只设置归档引用，不改动其他内容
"""

import time
from collections import defaultdict
from collections.abc import Iterable
from datetime import datetime
from typing import Any

import structlog
from pydantic import BaseModel, Field

from .config import DEFAULT_RESOLUTION
from .models.enums import IssueKind, Operation, Relation, Severity, TaskStatus
from .models.event import Event, format_timestamp
from .models.payloads import (
    ArchivePayload,
    AssignPayload,
    CommentPayload,
    CompletePayload,
    CreatePayload,
    CreateStreamPayload,
    LinkPayload,
    SetStreamPayload,
    UnlinkPayload,
    UpdatePayload,
    UpdateStreamPayload,
)
from .models.report import Issue
from .models.task import Comment, State, Stream, Task
from .store.event_log import EventSelector, JsonlEventLog

log = structlog.get_logger()

OrderKey = tuple[datetime, int, str, str, str, str]

TASK_FAMILY = "task"
STREAM_FAMILY = "stream"


class MaterializeResult(BaseModel):
    """物化结果：快照 + 累积的问题（解析/完整性/冲突说明）"""

    state: State = Field(default_factory=State)
    issues: list[Issue] = Field(default_factory=list)
    event_count: int = Field(default=0, description="去重后参与折叠的事件数")


def dedupe_events(events: Iterable[Event]) -> list[Event]:
    """按指纹去重并按全序键排序"""
    unique: dict[str, Event] = {}
    for event in events:
        unique.setdefault(event.fingerprint, event)
    return sorted(unique.values(), key=lambda e: e.order_key)


def group_events(events: Iterable[Event]) -> dict[tuple[str, str], list[Event]]:
    """按 (实体族, ID) 分组；调用方需保证输入已排序"""
    groups: dict[tuple[str, str], list[Event]] = defaultdict(list)
    for event in events:
        family = STREAM_FAMILY if event.is_stream_event else TASK_FAMILY
        groups[(family, event.entity_id)].append(event)
    return groups


def _integrity(entity_id: str, message: str) -> Issue:
    return Issue(
        location=entity_id,
        severity=Severity.WARNING,
        kind=IssueKind.INTEGRITY,
        message=message,
        entity_id=entity_id,
    )


class _FieldClock:
    """逐字段 last-write-wins 记账"""

    def __init__(self, seed: Event, fields: Iterable[str]) -> None:
        self.values: dict[str, Any] = {}
        self.keys: dict[str, OrderKey] = {name: seed.order_key for name in fields}
        self.setters: dict[str, Event] = {name: seed for name in fields}
        self.seed = seed
        self.notes: list[Issue] = []

    def set(self, name: str, value: Any, event: Event) -> bool:
        if event.order_key < self.keys[name]:
            return False
        previous = self.setters[name]
        old = self.values.get(name)
        if (
            previous is not self.seed
            and previous.branch != event.branch
            and old != value
        ):
            self.notes.append(
                Issue(
                    location=event.entity_id,
                    severity=Severity.INFO,
                    kind=IssueKind.CONFLICT,
                    message=(
                        f"字段 {name} 由 {event.branch}@{format_timestamp(event.ts)} "
                        f"覆盖 {previous.branch}@{format_timestamp(previous.ts)} 的写入"
                    ),
                    entity_id=event.entity_id,
                )
            )
        self.values[name] = value
        self.keys[name] = event.order_key
        self.setters[name] = event
        return True


_TASK_SCALARS = (
    "title",
    "description",
    "priority",
    "tags",
    "assignee",
    "stream",
    "parent",
    "status",
    "archived",
)


class _TaskBuilder:
    """单个任务的折叠状态"""

    def __init__(self, create: Event) -> None:
        payload: CreatePayload = create.payload  # type: ignore[assignment]
        self.create = create
        self.fields = _FieldClock(create, _TASK_SCALARS)
        self.fields.values.update(
            {
                "title": payload.title,
                "description": payload.description,
                "priority": payload.priority,
                "tags": sorted(set(payload.tags)),
                "assignee": payload.assignee,
                "stream": payload.stream,
                "parent": payload.parent,
                "status": (TaskStatus.OPEN, None, None),
                "archived": None,
            }
        )
        # (rel, target) -> (顺序键, 是否存在)
        self.members: dict[tuple[Relation, str], tuple[OrderKey, bool]] = {}
        for rel, targets in (
            (Relation.BLOCKS, payload.blocks),
            (Relation.BLOCKED_BY, payload.blocked_by),
        ):
            for target in targets:
                self.members[(rel, target)] = (create.order_key, True)
        self.comments: list[tuple[OrderKey, Comment]] = []
        self.updated_at = create.ts

    def apply(self, event: Event) -> None:
        payload = event.payload
        if event.op != Operation.ARCHIVE and event.ts > self.updated_at:
            self.updated_at = event.ts

        if isinstance(payload, UpdatePayload):
            for name in sorted(payload.model_fields_set):
                value = getattr(payload, name)
                if name == "tags":
                    value = sorted(set(value or []))
                self.fields.set(name, value, event)
        elif isinstance(payload, AssignPayload):
            self.fields.set("assignee", payload.to, event)
        elif isinstance(payload, SetStreamPayload):
            self.fields.set("stream", payload.stream, event)
        elif isinstance(payload, CommentPayload):
            comment = Comment(ts=event.ts, author=event.author, body=payload.body, ref=payload.ref)
            self.comments.append((event.order_key, comment))
        elif isinstance(payload, LinkPayload):
            self._link(event, payload.rel, payload.target, present=True)
        elif isinstance(payload, UnlinkPayload):
            self._link(event, payload.rel, payload.target, present=False)
        elif isinstance(payload, CompletePayload):
            resolution = payload.resolution or DEFAULT_RESOLUTION
            self.fields.set("status", (TaskStatus.COMPLETE, event.ts, resolution), event)
        elif event.op == Operation.REOPEN:
            self.fields.set("status", (TaskStatus.OPEN, None, None), event)
        elif isinstance(payload, ArchivePayload):
            self.fields.set("archived", payload.ref, event)

    def _link(self, event: Event, rel: Relation, target: str, present: bool) -> None:
        if rel == Relation.PARENT:
            if present:
                self.fields.set("parent", target, event)
            elif self.fields.values.get("parent") == target:
                self.fields.set("parent", None, event)
            return
        current = self.members.get((rel, target))
        if current is None or event.order_key >= current[0]:
            self.members[(rel, target)] = (event.order_key, present)

    def _members(self, rel: Relation) -> list[str]:
        return sorted(
            target
            for (member_rel, target), (_, present) in self.members.items()
            if member_rel == rel and present
        )

    def build(self) -> Task:
        values = self.fields.values
        status, completed_at, resolution = values["status"]
        return Task(
            id=self.create.entity_id,
            title=values["title"] or "",
            description=values["description"],
            status=status,
            priority=values["priority"],
            tags=values["tags"],
            assignee=values["assignee"],
            stream=values["stream"],
            created_at=self.create.ts,
            created_by=self.create.author,
            created_branch=self.create.branch,
            updated_at=self.updated_at,
            completed_at=completed_at,
            resolution=resolution,
            parent=values["parent"],
            blocks=self._members(Relation.BLOCKS),
            blocked_by=self._members(Relation.BLOCKED_BY),
            comments=[comment for _, comment in sorted(self.comments, key=lambda c: c[0])],
            archived=values["archived"],
        )


class _StreamBuilder:
    """单个 Stream 的折叠状态"""

    def __init__(self, create: Event) -> None:
        payload: CreateStreamPayload = create.payload  # type: ignore[assignment]
        self.create = create
        self.fields = _FieldClock(create, ("name", "description", "deleted"))
        self.fields.values.update(
            {"name": payload.name, "description": payload.description, "deleted": False}
        )
        self.updated_at = create.ts

    def apply(self, event: Event) -> None:
        if event.ts > self.updated_at:
            self.updated_at = event.ts
        payload = event.payload
        if isinstance(payload, UpdateStreamPayload):
            for name in sorted(payload.model_fields_set):
                self.fields.set(name, getattr(payload, name), event)
        elif event.op == Operation.DELETE_STREAM:
            self.fields.set("deleted", True, event)

    def build(self) -> Stream | None:
        values = self.fields.values
        if values["deleted"]:
            return None
        return Stream(
            id=self.create.entity_id,
            name=values["name"] or "",
            description=values["description"],
            created_at=self.create.ts,
            created_by=self.create.author,
            updated_at=self.updated_at,
        )


def materialize(events: Iterable[Event]) -> MaterializeResult:
    """将事件多重集折叠为确定性快照

    缺少 create 的实体记录完整性警告并从结果中扣除，
    不影响其他实体的处理。

    Args:
        events: 任意物理顺序的事件（可包含重复）

    Returns:
        MaterializeResult（tasks/streams 按 ID 排序）
    """
    ordered = dedupe_events(events)
    groups = group_events(ordered)

    tasks: dict[str, Task] = {}
    streams: dict[str, Stream] = {}
    issues: list[Issue] = []

    for family, entity_id in sorted(groups):
        group = groups[(family, entity_id)]
        create_op = Operation.CREATE_STREAM if family == STREAM_FAMILY else Operation.CREATE
        creates = [event for event in group if event.op == create_op]
        if not creates:
            issues.append(
                _integrity(
                    entity_id,
                    f"{family} {entity_id} 有 {len(group)} 个事件但没有 {create_op} 事件",
                )
            )
            continue

        canonical = creates[0]
        for duplicate in creates[1:]:
            issues.append(
                _integrity(
                    entity_id,
                    f"{family} {entity_id} 重复的 {create_op} "
                    f"({format_timestamp(duplicate.ts)})，以 "
                    f"{format_timestamp(canonical.ts)} 的为准",
                )
            )

        builder: _TaskBuilder | _StreamBuilder
        if family == STREAM_FAMILY:
            builder = _StreamBuilder(canonical)
        else:
            builder = _TaskBuilder(canonical)
        for event in group:
            if event.op != create_op:
                builder.apply(event)
        issues.extend(builder.fields.notes)

        if isinstance(builder, _StreamBuilder):
            stream = builder.build()
            if stream is not None:
                streams[entity_id] = stream
        else:
            tasks[entity_id] = builder.build()

    return MaterializeResult(
        state=State(tasks=tasks, streams=streams),
        issues=issues,
        event_count=len(ordered),
    )


async def materialize_from_log(
    event_log: JsonlEventLog,
    selector: EventSelector | None = None,
) -> MaterializeResult:
    """读取选中的文件并物化

    文件并行读取，折叠单遍顺序完成；解析问题在前，完整性问题在后。

    Raises:
        StoreIOError: 文件读取失败
    """
    start_time = time.monotonic()
    scan = await event_log.scan(selector)
    result = materialize(scan.events)
    result.issues = scan.issues + result.issues

    elapsed_ms = int((time.monotonic() - start_time) * 1000)
    await log.ainfo(
        "materialize_completed",
        file_count=len(scan.files),
        event_count=result.event_count,
        task_count=len(result.state.tasks),
        stream_count=len(result.state.streams),
        issue_count=len(result.issues),
        elapsed_ms=elapsed_ms,
    )
    return result
