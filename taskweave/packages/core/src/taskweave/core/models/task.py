"""Task / Stream Domain Model

Task 与 Stream 只是事件的投影（projection），没有独立于重放之外的持久身份，
所有变更必须通过追加事件完成。
"""

import json
from datetime import datetime

from pydantic import BaseModel, Field, field_serializer

from .enums import TaskStatus
from .event import format_timestamp


class Comment(BaseModel):
    """任务评论，按事件顺序追加，不合并也不删除"""

    ts: datetime = Field(description="评论时间")
    author: str = Field(description="评论者")
    body: str = Field(description="正文")
    ref: str | None = Field(default=None, description="可选引用")

    @field_serializer("ts")
    def _serialize_ts(self, ts: datetime) -> str:
        return format_timestamp(ts)


class Task(BaseModel):
    """Task 数据模型

    集合字段（tags / blocks / blocked_by）以排序后的列表输出，
    保证同一事件集合的投影逐字节一致。
    """

    id: str = Field(description="任务 ID，创建后不可变")
    title: str = Field(description="标题")
    description: str | None = Field(default=None, description="描述")
    status: TaskStatus = Field(default=TaskStatus.OPEN, description="当前状态")
    priority: str | None = Field(default=None, description="优先级")
    tags: list[str] = Field(default_factory=list, description="标签（排序）")
    assignee: str | None = Field(default=None, description="负责人")
    stream: str | None = Field(default=None, description="所属 Stream ID")
    created_at: datetime = Field(description="创建时间")
    created_by: str = Field(description="创建者")
    created_branch: str = Field(description="创建分支")
    updated_at: datetime = Field(description="最后更新时间")
    completed_at: datetime | None = Field(default=None, description="完成时间")
    resolution: str | None = Field(default=None, description="完成原因")
    parent: str | None = Field(default=None, description="父任务 ID")
    blocks: list[str] = Field(default_factory=list, description="被本任务阻塞的任务（排序）")
    blocked_by: list[str] = Field(default_factory=list, description="阻塞本任务的任务（排序）")
    comments: list[Comment] = Field(default_factory=list, description="评论列表")
    archived: str | None = Field(default=None, description="归档月份 YYYY-MM")

    @field_serializer("created_at", "updated_at", "completed_at")
    def _serialize_dt(self, ts: datetime | None) -> str | None:
        return format_timestamp(ts) if ts is not None else None

    def content_view(self) -> dict:
        """去掉归档引用后的内容视图，用于归档前后一致性比较"""
        return self.model_dump(mode="json", exclude={"archived"})


class Stream(BaseModel):
    """Stream 数据模型 -- 任务的命名分组，名称唯一"""

    id: str = Field(description="Stream ID")
    name: str = Field(description="名称")
    description: str | None = Field(default=None, description="描述")
    created_at: datetime = Field(description="创建时间")
    created_by: str = Field(description="创建者")
    updated_at: datetime = Field(description="最后更新时间")

    @field_serializer("created_at", "updated_at")
    def _serialize_dt(self, ts: datetime) -> str:
        return format_timestamp(ts)


class State(BaseModel):
    """物化快照：task_id -> Task，stream_id -> Stream（均按 ID 排序）"""

    tasks: dict[str, Task] = Field(default_factory=dict)
    streams: dict[str, Stream] = Field(default_factory=dict)

    def canonical_json(self) -> str:
        """规范化 JSON，同一事件集合得到逐字节一致的输出"""
        return json.dumps(
            self.model_dump(mode="json"),
            ensure_ascii=False,
            sort_keys=True,
            separators=(",", ":"),
        )

    def stream_by_name(self, name: str) -> Stream | None:
        for stream in self.streams.values():
            if stream.name == name:
                return stream
        return None

    def tasks_in_stream(self, stream_id: str) -> list[str]:
        """引用指定 Stream 的任务 ID（排序）"""
        return sorted(task.id for task in self.tasks.values() if task.stream == stream_id)


class IndexEntry(BaseModel):
    """索引条目：task_id -> 状态、日期、贡献文件、归档引用

    完全可从事件重建，永远不是事实来源。
    """

    status: TaskStatus
    created: str = Field(description="创建日期 YYYY-MM-DD")
    updated: str = Field(description="最后更新日期 YYYY-MM-DD")
    completed: str | None = Field(default=None, description="完成日期 YYYY-MM-DD")
    files: list[str] = Field(default_factory=list, description="包含该任务事件的文件（排序）")
    archived: str | None = Field(default=None, description="归档月份 YYYY-MM")


class Index(BaseModel):
    """索引缓存内容"""

    tasks: dict[str, IndexEntry] = Field(default_factory=dict)
    rebuilt_at: datetime | None = Field(default=None, description="最近一次构建时间")
