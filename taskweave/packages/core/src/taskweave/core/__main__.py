"""维护入口 -- python -m taskweave.core <command>

支持的命令：
  rebuild              全量扫描事件并重建索引缓存
  validate [--strict]  校验全部事件文件

工作区路径取 TASKWEAVE_DIR（默认 .taskweave）。
"""

import asyncio
import sys

from .config import load_config
from .exceptions import TaskweaveError
from .index import IndexCache
from .logging_config import setup_logging
from .models.enums import ValidationMode
from .store import open_workspace
from .validation import Validator

USAGE = """用法: python -m taskweave.core <command>
命令:
  rebuild              全量扫描事件并重建索引缓存
  validate [--strict]  校验全部事件文件"""


def main(argv: list[str] | None = None) -> int:
    """CLI 主入口，返回退出码"""
    args = sys.argv[1:] if argv is None else argv
    if not args:
        print(USAGE)
        return 1

    setup_logging()
    command, options = args[0], args[1:]

    try:
        if command == "rebuild":
            return asyncio.run(rebuild())
        if command == "validate":
            return asyncio.run(validate(strict="--strict" in options))
    except TaskweaveError as e:
        print(f"错误: {e}", file=sys.stderr)
        return 2

    print(f"未知命令: {command}")
    print(USAGE)
    return 1


async def rebuild() -> int:
    """执行索引重建"""
    config = load_config()
    print(f"工作区: {config.root}")
    print("开始重建索引...")

    store_group = await open_workspace(config.root, read_concurrency=config.read_concurrency)
    try:
        cache = IndexCache(store_group)
        index = await cache.rebuild_index()
        print(f"重建完成，{len(index.tasks)} 个任务，{len(cache.last_issues)} 个问题")
        for issue in cache.last_issues:
            print(f"  [{issue.severity}] {issue.location}: {issue.message}")
    finally:
        await store_group.close()
    return 0


async def validate(strict: bool = False) -> int:
    """执行校验，未通过时返回非零退出码"""
    config = load_config()
    mode = ValidationMode.STRICT if strict or config.strict_validation else ValidationMode.NORMAL

    store_group = await open_workspace(config.root, read_concurrency=config.read_concurrency)
    try:
        report = await Validator(store_group).validate(mode)
    finally:
        await store_group.close()

    for entry in report.entries:
        print(f"  [{entry.severity}] {entry.location}: {entry.message}")
    print(
        f"校验{'通过' if report.passed else '失败'}（{mode}）: "
        f"{len(report.errors)} 个错误, {len(report.warnings)} 个警告, "
        f"{report.files_checked} 个文件, {report.lines_checked} 行"
    )
    return 0 if report.passed else 1


if __name__ == "__main__":
    sys.exit(main())
