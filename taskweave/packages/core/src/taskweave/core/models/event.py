"""Event Domain Model 与线上编码

事件 append-only：一旦写入不再修改或删除，只追加新事件。
线上格式每行一个 JSON 对象，键顺序固定：
    {"v":1,"op":"create","id":"...","ts":"2026-01-01T00:00:00.000Z","by":"@alice","branch":"main","d":{...}}
时间戳在构造时归一到 UTC 并截断到毫秒，保证解码后再编码逐字节一致。
"""

import hashlib
import json
from datetime import UTC, datetime
from functools import cached_property
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_serializer,
    field_validator,
    model_validator,
)

from ..config import SUPPORTED_SCHEMA_VERSIONS
from ..exceptions import EventParseError, EventSchemaError
from .enums import CREATE_OPERATIONS, Operation, is_stream_operation
from .payloads import PAYLOAD_TYPES, EventPayload, payload_to_wire

# 线上格式必填键（同时也是输出顺序）
REQUIRED_KEYS: tuple[str, ...] = ("v", "op", "id", "ts", "by", "branch", "d")


def parse_timestamp(value: Any) -> datetime:
    """解析 ISO 8601 时间戳，归一到 UTC 并截断到毫秒

    Raises:
        ValueError: 不是字符串/datetime 或无法解析
    """
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value)
    elif isinstance(value, datetime):
        parsed = value
    else:
        raise ValueError(f"时间戳必须是 ISO 8601 字符串: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    try:
        parsed = parsed.astimezone(UTC)
    except OverflowError as e:
        raise ValueError(f"时间戳超出可表示范围: {value!r}") from e
    return parsed.replace(microsecond=parsed.microsecond // 1000 * 1000)


def format_timestamp(ts: datetime) -> str:
    """UTC 毫秒精度 ISO 8601，Z 后缀"""
    ts = ts.astimezone(UTC)
    return ts.strftime("%Y-%m-%dT%H:%M:%S.") + f"{ts.microsecond // 1000:03d}Z"


class Event(BaseModel):
    """Event 数据模型

    事件 append-only，不允许更新或删除。
    payload 是按 op 选择的闭合变体，读取边界即完成校验。
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    schema_version: int = Field(alias="v", description="Schema 版本号")
    op: Operation = Field(description="操作类型")
    entity_id: str = Field(alias="id", min_length=1, description="任务或 Stream ID")
    ts: datetime = Field(description="事件时间戳（UTC，毫秒精度）")
    author: str = Field(alias="by", description="作者标识")
    branch: str = Field(description="来源分支")
    payload: EventPayload = Field(alias="d", description="结构化 payload")

    @field_validator("ts", mode="before")
    @classmethod
    def _normalize_ts(cls, value: Any) -> datetime:
        return parse_timestamp(value)

    @model_validator(mode="before")
    @classmethod
    def _select_payload(cls, data: Any) -> Any:
        """按 op 将原始 payload dict 校验为对应变体"""
        if not isinstance(data, dict):
            return data
        op_raw = data.get("op")
        key = "d" if "d" in data else "payload"
        raw = data.get(key)
        if isinstance(raw, dict) and op_raw is not None:
            payload_type = PAYLOAD_TYPES[Operation(op_raw)]
            data = {**data, key: payload_type.model_validate(raw)}
        return data

    @model_validator(mode="after")
    def _check_payload_variant(self) -> "Event":
        expected = PAYLOAD_TYPES[self.op]
        if type(self.payload) is not expected:
            raise ValueError(
                f"payload 类型 {type(self.payload).__name__} 与操作 {self.op} 不匹配"
            )
        return self

    @field_serializer("ts")
    def _serialize_ts(self, ts: datetime) -> str:
        return format_timestamp(ts)

    def to_wire(self) -> dict[str, Any]:
        """线上格式 dict（键顺序固定）"""
        return {
            "v": self.schema_version,
            "op": self.op.value,
            "id": self.entity_id,
            "ts": format_timestamp(self.ts),
            "by": self.author,
            "branch": self.branch,
            "d": payload_to_wire(self.payload),
        }

    def to_line(self) -> str:
        """编码为单行 JSON（不含换行符）"""
        return json.dumps(self.to_wire(), ensure_ascii=False, separators=(",", ":"))

    @cached_property
    def fingerprint(self) -> str:
        """规范编码的 SHA-256，逐字节相同的事件视为同一事件"""
        return hashlib.sha256(self.to_line().encode("utf-8")).hexdigest()

    @cached_property
    def order_key(self) -> tuple[datetime, int, str, str, str, str]:
        """全序键：时间戳、创建优先级、作者、分支、操作、指纹

        同一毫秒内 create / create_stream 总排在其他操作之前；
        其余事件依作者、分支决出稳定顺序。
        """
        rank = 0 if self.op in CREATE_OPERATIONS else 1
        return (self.ts, rank, self.author, self.branch, self.op.value, self.fingerprint)

    @property
    def is_stream_event(self) -> bool:
        return is_stream_operation(self.op)

    @property
    def day(self) -> str:
        """事件所属日志文件日期 YYYY-MM-DD（UTC）"""
        return self.ts.strftime("%Y-%m-%d")


def decode_event_line(line: str) -> Event:
    """解析单行事件

    Raises:
        EventParseError: 非 JSON / 非对象 / 字段类型或时间戳非法
        EventSchemaError: 缺少必填键、schema 版本或操作类型不受支持
    """
    try:
        data = json.loads(line)
    except json.JSONDecodeError as e:
        raise EventParseError(f"非法 JSON: {e.msg} (列 {e.colno})") from e
    except (ValueError, RecursionError) as e:
        # 嵌套过深或数值超限
        raise EventParseError(f"非法 JSON: {type(e).__name__}") from e

    if not isinstance(data, dict):
        raise EventParseError(f"事件必须是 JSON 对象，实际为 {type(data).__name__}")

    missing = [key for key in REQUIRED_KEYS if key not in data]
    if missing:
        raise EventSchemaError(f"缺少必填字段: {', '.join(missing)}")

    version = data["v"]
    if isinstance(version, bool) or not isinstance(version, int):
        raise EventParseError(f"schema 版本必须是整数: {version!r}")
    if version not in SUPPORTED_SCHEMA_VERSIONS:
        raise EventSchemaError(f"不支持的 schema 版本: {version}")

    try:
        Operation(data["op"])
    except ValueError as e:
        raise EventSchemaError(f"未知操作类型: {data['op']!r}") from e

    try:
        parse_timestamp(data["ts"])
    except ValueError as e:
        raise EventParseError(f"非法时间戳: {data['ts']!r}") from e

    if not isinstance(data["d"], dict):
        raise EventParseError(f"payload 必须是 JSON 对象: {data['d']!r}")

    try:
        event = Event.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        raise EventParseError(f"字段校验失败 {location}: {first['msg']}") from e

    try:
        _ = event.fingerprint
    except UnicodeEncodeError as e:
        # JSON 转义出的孤立代理字符无法编码为 UTF-8
        raise EventParseError(f"字符串包含无法编码的字符: {e.reason}") from e
    return event
