"""packages/core 测试配置 -- 核心层 fixture"""

import pytest
from taskweave.core.index import IndexCache
from taskweave.core.store import JsonlEventLog, StoreGroup


@pytest.fixture
def event_log(store_group: StoreGroup) -> JsonlEventLog:
    """工作区事件日志"""
    return store_group.event_log


@pytest.fixture
def index_cache(store_group: StoreGroup) -> IndexCache:
    """工作区索引缓存"""
    return IndexCache(store_group)
