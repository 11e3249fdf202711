"""Taskweave 异常体系

I/O 失败对触发它的操作是致命的；单行解析/schema 失败只在
读取边界抛出，由扫描流程收集为 Issue，不会中断整次扫描。
"""


class TaskweaveError(Exception):
    """Taskweave 基础异常"""

    def __init__(self, message: str, recoverable: bool = False) -> None:
        """
        Args:
            message: 错误描述
            recoverable: 是否可通过重试恢复
        """
        super().__init__(message)
        self.recoverable = recoverable


class StoreIOError(TaskweaveError):
    """文件系统不可用或不可写"""

    def __init__(self, path: object, original_error: OSError) -> None:
        super().__init__(f"文件系统操作失败: {path} -- {original_error}", recoverable=True)
        self.path = path
        self.original_error = original_error


class EventParseError(TaskweaveError):
    """事件行格式错误（非 JSON、非对象、字段类型错误）"""


class EventSchemaError(TaskweaveError):
    """缺少必填字段或 schema 版本不受支持"""


class UnknownEntityError(TaskweaveError):
    """写入目标在当前投影中不存在"""

    def __init__(self, kind: str, entity_id: str) -> None:
        super().__init__(f"{kind} 不存在: {entity_id}")
        self.kind = kind
        self.entity_id = entity_id


class StreamInUseError(TaskweaveError):
    """Stream 仍被任务引用，不能删除"""

    def __init__(self, stream_id: str, task_ids: list[str]) -> None:
        super().__init__(
            f"Stream {stream_id} 仍被 {len(task_ids)} 个任务引用: {', '.join(task_ids)}"
        )
        self.stream_id = stream_id
        self.task_ids = task_ids


class StreamNameConflictError(TaskweaveError):
    """Stream 名称已被其他 stream 占用"""

    def __init__(self, name: str, existing_id: str) -> None:
        super().__init__(f"Stream 名称已存在: {name} ({existing_id})")
        self.name = name
        self.existing_id = existing_id


class ValidationFailedError(TaskweaveError):
    """校验未通过（仅 ensure_valid 抛出）"""

    def __init__(self, error_count: int, warning_count: int, strict: bool) -> None:
        mode = "strict" if strict else "normal"
        super().__init__(
            f"校验失败（{mode}）: {error_count} 个错误, {warning_count} 个警告"
        )
        self.error_count = error_count
        self.warning_count = warning_count
        self.strict = strict
