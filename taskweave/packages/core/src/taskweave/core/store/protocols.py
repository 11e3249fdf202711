"""Store / 协作方 Protocol 接口定义

使用 Python Protocol 实现结构化子类型（duck typing）。
核心只依赖这些接口：事件日志、身份上下文提供方。
"""

from datetime import UTC, datetime
from typing import Protocol

from pydantic import BaseModel, Field

from ..models.event import Event
from .event_log import EventSelector, FileMarker, LineSource, ScanResult


class WriteContext(BaseModel):
    """单次写入的身份上下文 (branch, author, now)"""

    branch: str = Field(description="当前分支")
    author: str = Field(description="作者标识")
    now: datetime = Field(description="写入时刻")


class IdentityProvider(Protocol):
    """身份上下文提供方 -- 由前端（CLI/TUI/agent）实现

    核心不自行探测版本控制信息，只需要这个三元组。
    """

    def write_context(self) -> WriteContext:
        """返回本次写入的 (branch, author, now)"""
        ...


class StaticIdentity:
    """固定分支/作者的身份提供方，now 每次取当前时间或固定值"""

    def __init__(self, branch: str, author: str, now: datetime | None = None) -> None:
        self.branch = branch
        self.author = author
        self.now = now

    def write_context(self) -> WriteContext:
        return WriteContext(
            branch=self.branch,
            author=self.author,
            now=self.now or datetime.now(UTC),
        )


class EventLog(Protocol):
    """事件日志接口

    日志 append-only：只允许整行追加，不允许修改或删除。
    """

    async def append_event(self, event: Event) -> str:
        """追加事件到其日期所属的日文件，返回文件相对路径"""
        ...

    async def append_to_archive(self, month: str, events: list[Event]) -> int:
        """追加事件到月度归档文件，返回新写入行数"""
        ...

    def read_lines(self, selector: EventSelector | None = None) -> LineSource:
        """惰性读取原始行"""
        ...

    async def scan(self, selector: EventSelector | None = None) -> ScanResult:
        """读取并解析选中的文件"""
        ...

    def list_files(self) -> list[str]:
        """全部日志文件（日文件在前，归档在后）"""
        ...

    def file_markers(self) -> dict[str, FileMarker]:
        """当前所有日志文件的修改标记"""
        ...
