"""EventWriter -- 写侧命令

把 payload 构造、写入前置条件和 append_event 组合在一起。
每个命令只追加一个事件，从不修改已有行。前置条件基于
get-or-rebuild 缓存中的物化快照检查。
"""

from collections.abc import Iterable
from datetime import datetime, timedelta

import structlog
from pydantic import BaseModel

from .config import CURRENT_SCHEMA_VERSION
from .exceptions import StreamInUseError, StreamNameConflictError, UnknownEntityError
from .ids import generate_id
from .index import IndexCache
from .models.enums import Operation, Relation
from .models.event import Event, parse_timestamp
from .models.payloads import (
    AssignPayload,
    CommentPayload,
    CompletePayload,
    CreatePayload,
    CreateStreamPayload,
    DeleteStreamPayload,
    LinkPayload,
    ReopenPayload,
    SetStreamPayload,
    UnlinkPayload,
    UpdatePayload,
    UpdateStreamPayload,
)
from .models.task import State
from .store import StoreGroup
from .store.protocols import IdentityProvider, WriteContext

log = structlog.get_logger()

_UNSET = object()

# 同一实体的连续写入至少相隔 1 毫秒
_TICK = timedelta(milliseconds=1)


class EventWriter:
    """事件写入器"""

    def __init__(self, store_group: StoreGroup, identity: IdentityProvider) -> None:
        self._stores = store_group
        self._identity = identity
        self._index = IndexCache(store_group)

    async def _append(
        self,
        op: Operation,
        entity_id: str,
        payload: BaseModel,
        ctx: WriteContext | None = None,
        after: datetime | None = None,
    ) -> Event:
        """追加一个事件

        after 为该实体已知的最后事件时间；新事件时间不早于 after + 1ms，
        保证同一写入方的连续命令在重放时保持因果顺序。
        """
        ctx = ctx or self._identity.write_context()
        ts = parse_timestamp(ctx.now)
        if after is not None and ts <= after:
            ts = after + _TICK
        event = Event(
            schema_version=CURRENT_SCHEMA_VERSION,
            op=op,
            entity_id=entity_id,
            ts=ts,
            author=ctx.author,
            branch=ctx.branch,
            payload=payload,
        )
        file = await self._stores.event_log.append_event(event)
        await log.ainfo(
            "event_appended",
            op=op.value,
            entity_id=entity_id,
            branch=ctx.branch,
            file=file,
        )
        return event

    async def _state(self) -> State:
        return await self._index.get_state()

    async def _require_task(self, task_id: str) -> State:
        state = await self._state()
        if task_id not in state.tasks:
            raise UnknownEntityError("task", task_id)
        return state

    async def _require_stream(self, stream_id: str) -> State:
        state = await self._state()
        if stream_id not in state.streams:
            raise UnknownEntityError("stream", stream_id)
        return state

    async def _append_to_task(self, op: Operation, task_id: str, payload: BaseModel) -> Event:
        state = await self._require_task(task_id)
        return await self._append(op, task_id, payload, after=state.tasks[task_id].updated_at)

    # ---- 任务 ----

    async def create_task(
        self,
        title: str,
        description: str | None = None,
        priority: str | None = None,
        tags: Iterable[str] = (),
        assignee: str | None = None,
        parent: str | None = None,
        blocks: Iterable[str] = (),
        blocked_by: Iterable[str] = (),
        stream: str | None = None,
    ) -> Event:
        """创建任务，ID 由创建时刻生成

        parent / blocks / blocked_by 不检查目标是否存在（跨分支的前向引用合法），
        stream 必须已存在。
        """
        if stream is not None:
            await self._require_stream(stream)
        ctx = self._identity.write_context()
        payload = CreatePayload(
            title=title,
            description=description,
            priority=priority,
            tags=list(tags),
            assignee=assignee,
            parent=parent,
            blocks=list(blocks),
            blocked_by=list(blocked_by),
            stream=stream,
        )
        return await self._append(Operation.CREATE, generate_id(ctx.now), payload, ctx)

    async def update_task(self, task_id: str, **fields) -> Event:
        """更新任意标量字段；传入 None 表示清空

        Raises:
            ValueError: 没有任何字段，或字段不可通过 update 修改
        """
        if not fields:
            raise ValueError("没有要更新的字段")
        unknown = set(fields) - set(UpdatePayload.model_fields)
        if unknown:
            raise ValueError(f"不支持更新的字段: {', '.join(sorted(unknown))}")
        return await self._append_to_task(Operation.UPDATE, task_id, UpdatePayload(**fields))

    async def assign_task(self, task_id: str, assignee: str | None) -> Event:
        return await self._append_to_task(Operation.ASSIGN, task_id, AssignPayload(to=assignee))

    async def comment_task(self, task_id: str, body: str, ref: str | None = None) -> Event:
        payload = CommentPayload(body=body, ref=ref)
        return await self._append_to_task(Operation.COMMENT, task_id, payload)

    async def link_tasks(self, task_id: str, rel: Relation | str, target: str) -> Event:
        payload = LinkPayload(rel=Relation(rel), target=target)
        return await self._append_to_task(Operation.LINK, task_id, payload)

    async def unlink_tasks(self, task_id: str, rel: Relation | str, target: str) -> Event:
        payload = UnlinkPayload(rel=Relation(rel), target=target)
        return await self._append_to_task(Operation.UNLINK, task_id, payload)

    async def complete_task(self, task_id: str, resolution: str | None = None) -> Event:
        payload = CompletePayload(resolution=resolution)
        return await self._append_to_task(Operation.COMPLETE, task_id, payload)

    async def reopen_task(self, task_id: str) -> Event:
        return await self._append_to_task(Operation.REOPEN, task_id, ReopenPayload())

    async def set_stream(self, task_id: str, stream_id: str | None) -> Event:
        """将任务移入 Stream；stream_id 为 None 表示移出"""
        state = await self._require_task(task_id)
        if stream_id is not None and stream_id not in state.streams:
            raise UnknownEntityError("stream", stream_id)
        return await self._append(
            Operation.SET_STREAM,
            task_id,
            SetStreamPayload(stream=stream_id),
            after=state.tasks[task_id].updated_at,
        )

    # ---- Stream ----

    async def create_stream(self, name: str, description: str | None = None) -> Event:
        """创建 Stream，名称在存活的 Stream 中唯一

        Raises:
            StreamNameConflictError: 名称已被占用
        """
        state = await self._state()
        existing = state.stream_by_name(name)
        if existing is not None:
            raise StreamNameConflictError(name, existing.id)
        ctx = self._identity.write_context()
        payload = CreateStreamPayload(name=name, description=description)
        return await self._append(Operation.CREATE_STREAM, generate_id(ctx.now), payload, ctx)

    async def update_stream(
        self,
        stream_id: str,
        name: str | None | object = _UNSET,
        description: str | None | object = _UNSET,
    ) -> Event:
        """重命名 / 修改描述；未传入的字段保持不变"""
        fields = {
            key: value
            for key, value in (("name", name), ("description", description))
            if value is not _UNSET
        }
        if not fields:
            raise ValueError("没有要更新的字段")
        state = await self._require_stream(stream_id)
        new_name = fields.get("name")
        if new_name is not None:
            existing = state.stream_by_name(new_name)
            if existing is not None and existing.id != stream_id:
                raise StreamNameConflictError(new_name, existing.id)
        return await self._append(
            Operation.UPDATE_STREAM,
            stream_id,
            UpdateStreamPayload(**fields),
            after=state.streams[stream_id].updated_at,
        )

    async def delete_stream(self, stream_id: str) -> Event:
        """删除 Stream；仍有任务引用时拒绝

        Raises:
            StreamInUseError: 有任务引用该 Stream
        """
        state = await self._require_stream(stream_id)
        referencing = state.tasks_in_stream(stream_id)
        if referencing:
            raise StreamInUseError(stream_id, referencing)
        return await self._append(
            Operation.DELETE_STREAM,
            stream_id,
            DeleteStreamPayload(),
            after=state.streams[stream_id].updated_at,
        )
