"""集成测试共享 fixture -- 多分支克隆与合并"""

import shutil
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
import pytest_asyncio
from taskweave.core.config import CACHE_DB_FILENAME
from taskweave.core.store import StoreGroup, init_workspace, open_workspace
from taskweave.core.store.protocols import WriteContext
from taskweave.core.writer import EventWriter

T0 = datetime(2026, 1, 5, 9, 0, tzinfo=UTC)


def clone_workspace(source: Path, target: Path) -> Path:
    """复制工作区（不含派生缓存），模拟版本库克隆"""
    shutil.copytree(
        source,
        target,
        ignore=shutil.ignore_patterns(f"{CACHE_DB_FILENAME}*"),
    )
    return target


def merge_workspaces(target: Path, *sources: Path) -> Path:
    """按给定顺序合并各分支的日志文件，模拟 append-only 文件的版本库合并

    共同祖先中的行只保留一份；各分支新增的行依次拼接。
    """
    init_workspace(target)
    merged: dict[str, list[str]] = {}
    for source in sources:
        for path in sorted(source.glob("*/*.jsonl")):
            name = path.relative_to(source).as_posix()
            lines = merged.setdefault(name, [])
            for line in path.read_text(encoding="utf-8").splitlines():
                if line not in lines:
                    lines.append(line)
    for name, lines in merged.items():
        (target / name).write_text("".join(f"{line}\n" for line in lines), encoding="utf-8")
    return target


class Clock:
    """可控时钟身份：每次写入推进 1 秒"""

    def __init__(self, branch: str, author: str, start: datetime = T0) -> None:
        self.branch = branch
        self.author = author
        self.current = start

    def write_context(self) -> WriteContext:
        ctx = WriteContext(branch=self.branch, author=self.author, now=self.current)
        self.current += timedelta(seconds=1)
        return ctx


@pytest.fixture
def clone() -> Callable[[Path, Path], Path]:
    return clone_workspace


@pytest.fixture
def merge() -> Callable[..., Path]:
    return merge_workspaces


@pytest_asyncio.fixture
async def open_writer():
    """打开工作区并返回 (StoreGroup, EventWriter)；测试结束统一关闭"""
    opened: list[StoreGroup] = []

    async def _open(root: Path, identity) -> tuple[StoreGroup, EventWriter]:
        store_group = await open_workspace(root)
        opened.append(store_group)
        return store_group, EventWriter(store_group, identity)

    yield _open

    for store_group in opened:
        await store_group.close()


@pytest.fixture
def clock() -> Callable[..., Clock]:
    """可控时钟身份工厂"""
    return Clock
