"""Taskweave Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .enums import (
    CREATE_OPERATIONS,
    STREAM_OPERATIONS,
    IssueKind,
    Operation,
    Relation,
    Severity,
    TaskStatus,
    ValidationMode,
    is_stream_operation,
)
from .event import (
    REQUIRED_KEYS,
    Event,
    decode_event_line,
    format_timestamp,
    parse_timestamp,
)
from .payloads import (
    PAYLOAD_TYPES,
    ArchivePayload,
    AssignPayload,
    CommentPayload,
    CompletePayload,
    CreatePayload,
    CreateStreamPayload,
    DeleteStreamPayload,
    EventPayload,
    LinkPayload,
    ReopenPayload,
    SetStreamPayload,
    UnlinkPayload,
    UpdatePayload,
    UpdateStreamPayload,
)
from .report import ArchiveOutcome, ArchiveReport, Issue, ValidationReport
from .task import Comment, Index, IndexEntry, State, Stream, Task

__all__ = [
    # 枚举
    "Operation",
    "TaskStatus",
    "Relation",
    "Severity",
    "IssueKind",
    "ValidationMode",
    "STREAM_OPERATIONS",
    "CREATE_OPERATIONS",
    "is_stream_operation",
    # Event
    "Event",
    "REQUIRED_KEYS",
    "decode_event_line",
    "parse_timestamp",
    "format_timestamp",
    # Payloads
    "EventPayload",
    "PAYLOAD_TYPES",
    "CreatePayload",
    "UpdatePayload",
    "AssignPayload",
    "CommentPayload",
    "LinkPayload",
    "UnlinkPayload",
    "CompletePayload",
    "ReopenPayload",
    "ArchivePayload",
    "SetStreamPayload",
    "CreateStreamPayload",
    "UpdateStreamPayload",
    "DeleteStreamPayload",
    # Task / Stream
    "Task",
    "Comment",
    "Stream",
    "State",
    "Index",
    "IndexEntry",
    # 报告
    "Issue",
    "ValidationReport",
    "ArchiveOutcome",
    "ArchiveReport",
]
