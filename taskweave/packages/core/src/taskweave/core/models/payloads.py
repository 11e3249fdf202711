"""Event Payload 子类型

每种操作对应一个结构化 payload（闭合的变体集合），
在读取边界按 op 选择并校验，不以无类型 dict 穿过 fold。
未知键忽略，以兼容后续版本新增的可选字段。
"""

from pydantic import BaseModel, Field

from .enums import Operation, Relation


class CreatePayload(BaseModel):
    """create 事件 payload"""

    title: str = Field(default="", description="任务标题")
    description: str | None = Field(default=None, description="任务描述")
    priority: str | None = Field(default=None, description="优先级")
    tags: list[str] = Field(default_factory=list, description="标签")
    assignee: str | None = Field(default=None, description="负责人")
    parent: str | None = Field(default=None, description="父任务 ID")
    blocks: list[str] = Field(default_factory=list, description="被本任务阻塞的任务")
    blocked_by: list[str] = Field(default_factory=list, description="阻塞本任务的任务")
    stream: str | None = Field(default=None, description="所属 Stream ID")


class UpdatePayload(BaseModel):
    """update 事件 payload

    仅出现在 payload 中的字段参与更新（见 model_fields_set），
    显式的 null 表示清空该字段。
    """

    title: str | None = None
    description: str | None = None
    priority: str | None = None
    tags: list[str] | None = None
    assignee: str | None = None


class AssignPayload(BaseModel):
    """assign 事件 payload"""

    to: str | None = Field(default=None, description="新负责人，null 表示取消指派")


class CommentPayload(BaseModel):
    """comment 事件 payload"""

    body: str = Field(default="", description="评论正文")
    ref: str | None = Field(default=None, description="可选引用（提交、链接等）")


class LinkPayload(BaseModel):
    """link 事件 payload"""

    rel: Relation
    target: str


class UnlinkPayload(BaseModel):
    """unlink 事件 payload"""

    rel: Relation
    target: str


class CompletePayload(BaseModel):
    """complete 事件 payload"""

    resolution: str | None = Field(default=None, description="完成原因，缺省为 done")


class ReopenPayload(BaseModel):
    """reopen 事件 payload（无字段）"""


class ArchivePayload(BaseModel):
    """archive 事件 payload"""

    ref: str = Field(description="归档文件月份 YYYY-MM")


class SetStreamPayload(BaseModel):
    """set_stream 事件 payload"""

    stream: str | None = Field(default=None, description="Stream ID，null 表示移出")


class CreateStreamPayload(BaseModel):
    """create_stream 事件 payload"""

    name: str = Field(default="", description="Stream 名称（唯一）")
    description: str | None = Field(default=None, description="Stream 描述")


class UpdateStreamPayload(BaseModel):
    """update_stream 事件 payload，语义同 UpdatePayload"""

    name: str | None = None
    description: str | None = None


class DeleteStreamPayload(BaseModel):
    """delete_stream 事件 payload（无字段）"""


EventPayload = (
    CreatePayload
    | UpdatePayload
    | AssignPayload
    | CommentPayload
    | LinkPayload
    | UnlinkPayload
    | CompletePayload
    | ReopenPayload
    | ArchivePayload
    | SetStreamPayload
    | CreateStreamPayload
    | UpdateStreamPayload
    | DeleteStreamPayload
)

PAYLOAD_TYPES: dict[Operation, type[BaseModel]] = {
    Operation.CREATE: CreatePayload,
    Operation.UPDATE: UpdatePayload,
    Operation.ASSIGN: AssignPayload,
    Operation.COMMENT: CommentPayload,
    Operation.LINK: LinkPayload,
    Operation.UNLINK: UnlinkPayload,
    Operation.COMPLETE: CompletePayload,
    Operation.REOPEN: ReopenPayload,
    Operation.ARCHIVE: ArchivePayload,
    Operation.SET_STREAM: SetStreamPayload,
    Operation.CREATE_STREAM: CreateStreamPayload,
    Operation.UPDATE_STREAM: UpdateStreamPayload,
    Operation.DELETE_STREAM: DeleteStreamPayload,
}


def payload_to_wire(payload: BaseModel) -> dict:
    """payload 转线上格式

    UpdatePayload / UpdateStreamPayload 只输出显式设置的字段，
    其余变体输出非 None 字段（空列表也省略）。
    """
    if isinstance(payload, UpdatePayload | UpdateStreamPayload):
        return payload.model_dump(mode="json", include=payload.model_fields_set)
    data = payload.model_dump(mode="json", exclude_none=True)
    return {key: value for key, value in data.items() if value != []}
