"""配置模块 -- 可通过环境变量覆盖

包含工作区路径、归档阈值、并行读取上限等可配置项，
以及事件格式相关的常量。
"""

import os
from pathlib import Path

import structlog
from pydantic import BaseModel, Field

log = structlog.get_logger()

# 事件 schema 版本
CURRENT_SCHEMA_VERSION: int = 1
SUPPORTED_SCHEMA_VERSIONS: frozenset[int] = frozenset({1})

# complete 事件未携带 resolution 时的默认值
DEFAULT_RESOLUTION: str = "done"

# 系统自身写入事件时的作者标识
SYSTEM_AUTHOR: str = "@taskweave"

# 工作区目录布局
EVENTS_DIRNAME: str = "events"
ARCHIVE_DIRNAME: str = "archive"
CACHE_DB_FILENAME: str = ".cache.db"
LOG_FILE_SUFFIX: str = ".jsonl"

# 派生缓存不入版本库
GITIGNORE_CONTENT: str = """# 派生缓存 -- 可随时从事件重建，不是事实来源
.cache.db
.cache.db-journal
.cache.db-wal
.cache.db-shm
*.tmp
"""


class TaskweaveConfig(BaseModel):
    """核心配置 -- 从环境变量加载

    环境变量:
        TASKWEAVE_DIR: 工作区根目录（默认 .taskweave）
        TASKWEAVE_ARCHIVE_DAYS: 完成多少天后可归档（默认 30）
        TASKWEAVE_READ_CONCURRENCY: 并行读取文件数上限（默认 8）
        TASKWEAVE_STRICT_VALIDATION: 默认以 strict 模式校验（默认 false）
    """

    root: Path = Field(default=Path(".taskweave"), description="工作区根目录")
    archive_days: int = Field(default=30, ge=0, description="归档年龄阈值（天）")
    read_concurrency: int = Field(default=8, ge=1, description="并行读取文件数上限")
    strict_validation: bool = Field(default=False, description="默认校验模式是否为 strict")

    @property
    def events_dir(self) -> Path:
        return self.root / EVENTS_DIRNAME

    @property
    def archive_dir(self) -> Path:
        return self.root / ARCHIVE_DIRNAME

    @property
    def cache_db_path(self) -> Path:
        return self.root / CACHE_DB_FILENAME


def _int_from_env(env_var: str, fallback: int, minimum: int) -> int | None:
    """读取整数环境变量，非法值记录告警并返回 None（使用默认值）"""
    val = os.environ.get(env_var)
    if not val:
        return None
    try:
        parsed = int(val)
    except ValueError:
        parsed = None
    if parsed is None or parsed < minimum:
        log.warning(
            "invalid_int_config",
            env_var=env_var,
            value=val,
            fallback=fallback,
        )
        return None
    return parsed


def load_config() -> TaskweaveConfig:
    """从环境变量加载配置

    非法数值不阻塞启动，记录告警后回落到默认值。

    Returns:
        TaskweaveConfig 实例
    """
    kwargs: dict = {}

    if val := os.environ.get("TASKWEAVE_DIR"):
        kwargs["root"] = Path(val)

    if (days := _int_from_env("TASKWEAVE_ARCHIVE_DAYS", 30, 0)) is not None:
        kwargs["archive_days"] = days

    if (limit := _int_from_env("TASKWEAVE_READ_CONCURRENCY", 8, 1)) is not None:
        kwargs["read_concurrency"] = limit

    if val := os.environ.get("TASKWEAVE_STRICT_VALIDATION"):
        kwargs["strict_validation"] = val.lower() in ("1", "true", "yes")

    return TaskweaveConfig(**kwargs)
