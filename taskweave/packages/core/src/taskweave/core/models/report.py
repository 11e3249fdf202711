"""报告模型 -- 扫描/物化/校验/归档的结构化结果

单行失败与完整性问题累积为 Issue 返回给调用方，不中断整次扫描。
"""

from pydantic import BaseModel, Field

from .enums import IssueKind, Severity, ValidationMode


class Issue(BaseModel):
    """报告条目：(位置, 严重级别, 消息)"""

    location: str = Field(description="文件:行号，或语料级检查时的实体 ID")
    severity: Severity
    kind: IssueKind
    message: str
    entity_id: str | None = Field(default=None, description="相关任务/Stream ID")


class ValidationReport(BaseModel):
    """校验报告，条目按文件顺序、行号、实体 ID 排列"""

    mode: ValidationMode = ValidationMode.NORMAL
    entries: list[Issue] = Field(default_factory=list)
    files_checked: int = 0
    lines_checked: int = 0

    @property
    def errors(self) -> list[Issue]:
        return [e for e in self.entries if e.severity == Severity.ERROR]

    @property
    def warnings(self) -> list[Issue]:
        return [e for e in self.entries if e.severity == Severity.WARNING]

    @property
    def passed(self) -> bool:
        """normal 模式仅错误判失败；strict 模式警告也判失败"""
        if self.errors:
            return False
        if self.mode == ValidationMode.STRICT and self.warnings:
            return False
        return True


class ArchiveOutcome(BaseModel):
    """单个任务的归档结果"""

    task_id: str
    status: str = Field(description="archived / skipped / failed")
    month: str | None = Field(default=None, description="归档月份 YYYY-MM")
    events_written: int = Field(default=0, description="新写入归档文件的事件数")
    reason: str = Field(default="", description="跳过或失败原因")


class ArchiveReport(BaseModel):
    """归档报告，失败按任务隔离"""

    outcomes: list[ArchiveOutcome] = Field(default_factory=list)

    def _with_status(self, status: str) -> list[str]:
        return [o.task_id for o in self.outcomes if o.status == status]

    @property
    def archived(self) -> list[str]:
        return self._with_status("archived")

    @property
    def skipped(self) -> list[str]:
        return self._with_status("skipped")

    @property
    def failed(self) -> list[str]:
        return self._with_status("failed")
