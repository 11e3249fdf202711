"""全局 pytest 配置 -- 临时工作区、StoreGroup 与事件构造 fixture"""

from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
import pytest_asyncio
from taskweave.core.models.enums import Operation
from taskweave.core.models.event import Event
from taskweave.core.models.payloads import PAYLOAD_TYPES
from taskweave.core.store import StoreGroup, init_workspace, open_workspace
from taskweave.core.store.protocols import StaticIdentity

BASE_TS = datetime(2026, 1, 1, tzinfo=UTC)


def make_event(
    op: Operation | str,
    entity_id: str = "t1",
    t: float = 0,
    by: str = "@alice",
    branch: str = "main",
    **payload,
) -> Event:
    """构造事件；t 为相对 2026-01-01T00:00:00Z 的秒数"""
    op = Operation(op)
    return Event(
        schema_version=1,
        op=op,
        entity_id=entity_id,
        ts=BASE_TS + timedelta(seconds=t),
        author=by,
        branch=branch,
        payload=PAYLOAD_TYPES[op](**payload),
    )


def write_lines(root: Path, name: str, lines: list[str], terminate: bool = True) -> Path:
    """直接写入日志文件（绕过 append_event，用于构造任意物理顺序）"""
    path = root / name
    path.parent.mkdir(parents=True, exist_ok=True)
    text = "\n".join(lines)
    if terminate and lines:
        text += "\n"
    with path.open("a", encoding="utf-8") as handle:
        handle.write(text)
    return path


@pytest.fixture
def ev():
    """事件构造函数"""
    return make_event


@pytest.fixture
def lines_writer():
    """原始行写入函数"""
    return write_lines


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """提供已初始化的临时工作区（events/、archive/）"""
    return init_workspace(tmp_path / "ws")


@pytest_asyncio.fixture
async def store_group(workspace: Path) -> AsyncGenerator[StoreGroup, None]:
    """提供打开的 StoreGroup，测试结束后关闭缓存连接"""
    sg = await open_workspace(workspace)
    yield sg
    await sg.close()


@pytest.fixture
def identity() -> StaticIdentity:
    """main 分支上的固定身份，时间取当前时刻"""
    return StaticIdentity(branch="main", author="@alice")
