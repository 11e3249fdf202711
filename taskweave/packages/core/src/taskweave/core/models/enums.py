"""枚举定义

包含事件操作类型 Operation、任务状态 TaskStatus、关系类型 Relation，
以及报告使用的 Severity / IssueKind / ValidationMode。
"""

from enum import StrEnum


class Operation(StrEnum):
    """事件操作类型 -- 线上格式中的 op 字段"""

    # 任务
    CREATE = "create"
    UPDATE = "update"
    ASSIGN = "assign"
    COMMENT = "comment"
    LINK = "link"
    UNLINK = "unlink"
    COMPLETE = "complete"
    REOPEN = "reopen"
    ARCHIVE = "archive"
    SET_STREAM = "set_stream"

    # Stream
    CREATE_STREAM = "create_stream"
    UPDATE_STREAM = "update_stream"
    DELETE_STREAM = "delete_stream"


STREAM_OPERATIONS: frozenset[Operation] = frozenset(
    {
        Operation.CREATE_STREAM,
        Operation.UPDATE_STREAM,
        Operation.DELETE_STREAM,
    }
)

# 每个实体族的"创建"操作
CREATE_OPERATIONS: frozenset[Operation] = frozenset(
    {Operation.CREATE, Operation.CREATE_STREAM}
)


def is_stream_operation(op: Operation) -> bool:
    """该操作是否作用于 Stream 而非任务"""
    return op in STREAM_OPERATIONS


class TaskStatus(StrEnum):
    """任务状态"""

    OPEN = "open"
    COMPLETE = "complete"


class Relation(StrEnum):
    """link/unlink 关系类型"""

    BLOCKS = "blocks"
    BLOCKED_BY = "blocked_by"
    PARENT = "parent"


class Severity(StrEnum):
    """报告条目严重级别"""

    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class IssueKind(StrEnum):
    """报告条目分类"""

    PARSE = "parse"
    SCHEMA = "schema"
    INTEGRITY = "integrity"
    CONFLICT = "conflict"


class ValidationMode(StrEnum):
    """校验模式：normal 仅错误判失败，strict 警告也判失败"""

    NORMAL = "normal"
    STRICT = "strict"
