"""EventLog JSONL 文件实现

日志 append-only：只允许整行追加，不重写、不重排已有行。
- 日文件 events/{YYYY-MM-DD}.jsonl，日期取事件自身时间戳的 UTC 日期
- 归档文件 archive/{YYYY-MM}.jsonl，与日文件行格式相同，可互换读取

文件内的行序不代表逻辑时间，逻辑顺序完全由 projection 负责。
中断写入只可能留下一条未以换行结尾的残缺末行，读取时视为不存在。
"""

import asyncio
import os
from collections.abc import Iterator
from pathlib import Path
from typing import NamedTuple

import structlog
from pydantic import BaseModel, ConfigDict, Field

from ..config import ARCHIVE_DIRNAME, EVENTS_DIRNAME, LOG_FILE_SUFFIX
from ..exceptions import EventParseError, EventSchemaError, StoreIOError
from ..models.enums import IssueKind, Severity
from ..models.event import Event, decode_event_line
from ..models.report import Issue

log = structlog.get_logger()


class RawLine(NamedTuple):
    """日志中的一行原始文本

    非 UTF-8 字节以替换字符显示，encoding_error 记录解码失败原因。
    """

    file: str
    line_no: int
    text: str
    terminated: bool
    encoding_error: str | None = None


class FileMarker(NamedTuple):
    """文件修改标记，用于缓存过期检测"""

    size: int
    mtime_ns: int


class EventSelector(BaseModel):
    """读取范围选择器

    files 非空时只读取列出的文件（相对工作区根目录的路径），
    否则按 daily / archive 开关选择目录；entity_ids 非空时只保留相关事件。
    """

    model_config = ConfigDict(frozen=True)

    daily: bool = True
    archive: bool = True
    files: tuple[str, ...] | None = None
    entity_ids: frozenset[str] | None = None


class FileScan(BaseModel):
    """单个文件的解析结果"""

    file: str
    events: list[Event] = Field(default_factory=list)
    issues: list[Issue] = Field(default_factory=list)
    lines: int = 0


class ScanResult(BaseModel):
    """一次扫描的结果，files 保持文件遍历顺序"""

    files: list[FileScan] = Field(default_factory=list)

    @property
    def events(self) -> list[Event]:
        return [event for scan in self.files for event in scan.events]

    @property
    def issues(self) -> list[Issue]:
        return [issue for scan in self.files for issue in scan.issues]


def decode_raw_line(raw: RawLine) -> tuple[Event | None, Issue | None]:
    """解析一行；残缺末行解析失败时两者皆为 None（视为不存在）"""
    try:
        if raw.encoding_error is not None:
            raise EventParseError(f"非法 UTF-8: {raw.encoding_error}")
        return decode_event_line(raw.text), None
    except (EventParseError, EventSchemaError) as e:
        if not raw.terminated:
            log.debug("trailing_partial_line_ignored", file=raw.file, line=raw.line_no)
            return None, None
        kind = IssueKind.SCHEMA if isinstance(e, EventSchemaError) else IssueKind.PARSE
        return None, Issue(
            location=f"{raw.file}:{raw.line_no}",
            severity=Severity.ERROR,
            kind=kind,
            message=str(e),
        )


class LineSource:
    """惰性、有限、可重复遍历的原始行序列（文件顺序 + 行顺序）"""

    def __init__(self, event_log: "JsonlEventLog", selector: EventSelector) -> None:
        self._event_log = event_log
        self._selector = selector

    def __iter__(self) -> Iterator[RawLine]:
        for name in self._event_log.resolve_files(self._selector):
            yield from self._event_log.iter_file_lines(name)


class JsonlEventLog:
    """EventLog 的 JSONL 文件实现"""

    def __init__(self, root: Path, read_concurrency: int = 8) -> None:
        self.root = Path(root)
        self.events_dir = self.root / EVENTS_DIRNAME
        self.archive_dir = self.root / ARCHIVE_DIRNAME
        self._read_concurrency = read_concurrency

    # ---- 写入 ----

    def daily_file(self, day: str) -> str:
        return f"{EVENTS_DIRNAME}/{day}{LOG_FILE_SUFFIX}"

    def archive_file(self, month: str) -> str:
        return f"{ARCHIVE_DIRNAME}/{month}{LOG_FILE_SUFFIX}"

    async def append_event(self, event: Event) -> str:
        """追加事件到其时间戳所属日期的日文件（append-only）

        目标目录不存在时不自动创建。

        Returns:
            写入的文件（相对路径）

        Raises:
            StoreIOError: 目录缺失或写入失败
        """
        name = self.daily_file(event.day)
        await asyncio.to_thread(self._append_lines, name, [event.to_line()], False)
        return name

    async def append_to_archive(self, month: str, events: list[Event]) -> int:
        """将事件追加到月度归档文件，已存在的事件（按指纹）跳过

        Returns:
            实际新写入的行数
        """
        return await asyncio.to_thread(self._append_archive_sync, month, events)

    def _append_archive_sync(self, month: str, events: list[Event]) -> int:
        name = self.archive_file(month)
        try:
            self.archive_dir.mkdir(exist_ok=True)
        except OSError as e:
            raise StoreIOError(self.archive_dir, e) from e
        present: set[str] = set()
        if (self.root / name).exists():
            present = {event.fingerprint for event in self._parse_file(name).events}
        missing: list[str] = []
        for event in events:
            if event.fingerprint not in present:
                present.add(event.fingerprint)
                missing.append(event.to_line())
        if missing:
            self._append_lines(name, missing, True)
        return len(missing)

    def _append_lines(self, name: str, lines: list[str], create_parent: bool) -> None:
        path = self.root / name
        if not create_parent and not path.parent.is_dir():
            raise StoreIOError(path, FileNotFoundError(f"目录不存在: {path.parent}"))
        try:
            # 上次写入被中断时末尾可能缺换行，先补齐，避免新行与残缺行粘连
            needs_newline = False
            if path.exists() and path.stat().st_size > 0:
                with path.open("rb") as handle:
                    handle.seek(-1, os.SEEK_END)
                    needs_newline = handle.read(1) != b"\n"
            payload = ("\n" if needs_newline else "") + "".join(f"{line}\n" for line in lines)
            with path.open("a", encoding="utf-8") as handle:
                handle.write(payload)
                handle.flush()
        except OSError as e:
            raise StoreIOError(path, e) from e

    # ---- 读取 ----

    def list_event_files(self) -> list[str]:
        return self._list_dir(self.events_dir, EVENTS_DIRNAME)

    def list_archive_files(self) -> list[str]:
        return self._list_dir(self.archive_dir, ARCHIVE_DIRNAME)

    def list_files(self) -> list[str]:
        """全部日志文件：先日文件后归档文件，各自按名称排序"""
        return self.list_event_files() + self.list_archive_files()

    def _list_dir(self, directory: Path, prefix: str) -> list[str]:
        if not directory.is_dir():
            return []
        try:
            names = sorted(p.name for p in directory.glob(f"*{LOG_FILE_SUFFIX}") if p.is_file())
        except OSError as e:
            raise StoreIOError(directory, e) from e
        return [f"{prefix}/{name}" for name in names]

    def resolve_files(self, selector: EventSelector) -> list[str]:
        if selector.files is not None:
            return list(selector.files)
        files: list[str] = []
        if selector.daily:
            files.extend(self.list_event_files())
        if selector.archive:
            files.extend(self.list_archive_files())
        return files

    def file_markers(self) -> dict[str, FileMarker]:
        """当前所有日志文件的 (size, mtime_ns) 标记"""
        markers: dict[str, FileMarker] = {}
        for name in self.list_files():
            try:
                st = (self.root / name).stat()
            except OSError as e:
                raise StoreIOError(self.root / name, e) from e
            markers[name] = FileMarker(size=st.st_size, mtime_ns=st.st_mtime_ns)
        return markers

    def iter_file_lines(self, name: str) -> Iterator[RawLine]:
        """流式读取单个文件的非空行

        按字节读取、逐行严格解码，单行编码错误不影响其他行。
        """
        path = self.root / name
        try:
            with path.open("rb") as handle:
                for line_no, data in enumerate(handle, start=1):
                    terminated = data.endswith(b"\n")
                    data = data.rstrip(b"\r\n")
                    error = None
                    try:
                        text = data.decode("utf-8")
                    except UnicodeDecodeError as e:
                        text = data.decode("utf-8", errors="replace")
                        error = f"{e.reason} (字节 {e.start})"
                    if not text.strip():
                        continue
                    yield RawLine(
                        file=name,
                        line_no=line_no,
                        text=text,
                        terminated=terminated,
                        encoding_error=error,
                    )
        except OSError as e:
            raise StoreIOError(path, e) from e

    def read_lines(self, selector: EventSelector | None = None) -> LineSource:
        """惰性读取原始行（文件顺序 + 行顺序，不代表逻辑时间）"""
        return LineSource(self, selector or EventSelector())

    def _parse_file(self, name: str, entity_ids: frozenset[str] | None = None) -> FileScan:
        scan = FileScan(file=name)
        for raw in self.iter_file_lines(name):
            scan.lines += 1
            event, issue = decode_raw_line(raw)
            if issue is not None:
                scan.issues.append(issue)
                log.warning("event_line_skipped", location=issue.location, reason=issue.message)
            if event is not None and (entity_ids is None or event.entity_id in entity_ids):
                scan.events.append(event)
        return scan

    async def scan(self, selector: EventSelector | None = None) -> ScanResult:
        """并行读取并解析选中的文件

        各文件只读且互相独立，可并行读取；结果按文件遍历顺序返回，
        后续的确定性合并由 projection 单遍完成。

        Raises:
            StoreIOError: 任一文件读取失败（整次扫描失败）
        """
        selector = selector or EventSelector()
        files = self.resolve_files(selector)
        semaphore = asyncio.Semaphore(self._read_concurrency)

        async def _scan_one(name: str) -> FileScan:
            async with semaphore:
                return await asyncio.to_thread(self._parse_file, name, selector.entity_ids)

        scans = await asyncio.gather(*(_scan_one(name) for name in files))
        return ScanResult(files=list(scans))
