"""Validator -- 全语料只读一致性检查

行级检查（JSON、必填字段、schema 版本、时间戳）在扫描时完成；
语料级检查（规范 create、悬空引用、Stream 重名）基于物化结果。
"""

import time
from collections import defaultdict

import structlog

from .exceptions import ValidationFailedError
from .models.enums import IssueKind, Severity, ValidationMode
from .models.report import Issue, ValidationReport
from .models.task import State
from .projection import materialize
from .store import StoreGroup
from .store.event_log import EventSelector

log = structlog.get_logger()


def _warning(entity_id: str, message: str) -> Issue:
    return Issue(
        location=entity_id,
        severity=Severity.WARNING,
        kind=IssueKind.INTEGRITY,
        message=message,
        entity_id=entity_id,
    )


def check_references(state: State) -> list[Issue]:
    """悬空的 blocks / blocked_by / parent / stream 引用，以及 Stream 重名"""
    issues: list[Issue] = []
    for task_id, task in state.tasks.items():
        for rel, targets in (("blocks", task.blocks), ("blocked_by", task.blocked_by)):
            for target in targets:
                if target not in state.tasks:
                    issues.append(_warning(task_id, f"任务 {task_id} 的 {rel} 引用不存在的任务 {target}"))
        if task.parent is not None and task.parent not in state.tasks:
            issues.append(_warning(task_id, f"任务 {task_id} 的 parent 引用不存在的任务 {task.parent}"))
        if task.stream is not None and task.stream not in state.streams:
            issues.append(_warning(task_id, f"任务 {task_id} 引用不存在的 Stream {task.stream}"))

    by_name: dict[str, list[str]] = defaultdict(list)
    for stream_id, stream in state.streams.items():
        by_name[stream.name].append(stream_id)
    for name, stream_ids in sorted(by_name.items()):
        for stream_id in stream_ids[1:]:
            issues.append(
                _warning(stream_id, f"Stream 名称 {name!r} 重复: {', '.join(stream_ids)}")
            )
    return issues


class Validator:
    """校验器 -- 返回结构化报告，从不修改日志或缓存"""

    def __init__(self, store_group: StoreGroup) -> None:
        self._stores = store_group

    async def validate(self, mode: ValidationMode | str = ValidationMode.NORMAL) -> ValidationReport:
        """校验全部日文件与归档文件

        条目顺序：行级问题按文件、行号；语料级问题按实体 ID。

        Raises:
            StoreIOError: 文件读取失败
        """
        start_time = time.monotonic()
        mode = ValidationMode(mode)
        scan = await self._stores.event_log.scan(EventSelector())
        result = materialize(scan.events)

        corpus = [issue for issue in result.issues if issue.kind == IssueKind.INTEGRITY]
        corpus.extend(check_references(result.state))
        corpus.sort(key=lambda issue: issue.entity_id or issue.location)

        report = ValidationReport(
            mode=mode,
            entries=scan.issues + corpus,
            files_checked=len(scan.files),
            lines_checked=sum(file_scan.lines for file_scan in scan.files),
        )

        elapsed_ms = int((time.monotonic() - start_time) * 1000)
        await log.ainfo(
            "validation_completed",
            mode=mode.value,
            errors=len(report.errors),
            warnings=len(report.warnings),
            passed=report.passed,
            elapsed_ms=elapsed_ms,
        )
        return report


def ensure_valid(report: ValidationReport) -> ValidationReport:
    """报告未通过时抛出 ValidationFailedError，否则原样返回"""
    if not report.passed:
        raise ValidationFailedError(
            error_count=len(report.errors),
            warning_count=len(report.warnings),
            strict=report.mode == ValidationMode.STRICT,
        )
    return report
