"""Domain Models 与线上编码单元测试

测试内容：
1. 枚举取值
2. 事件编码：键顺序、时间戳格式、payload 省略规则
3. 解码：按 op 选择 payload 变体、时间戳归一、错误分类
4. 指纹与全序键
5. Task / State 规范化输出
"""

import json
from datetime import UTC, datetime

import pytest
from taskweave.core.exceptions import EventParseError, EventSchemaError
from taskweave.core.models import (
    REQUIRED_KEYS,
    CompletePayload,
    CreatePayload,
    Event,
    LinkPayload,
    Operation,
    Relation,
    ReopenPayload,
    State,
    Stream,
    Task,
    TaskStatus,
    UpdatePayload,
    decode_event_line,
    format_timestamp,
    is_stream_operation,
    parse_timestamp,
)
from taskweave.core.models.report import ArchiveOutcome, ArchiveReport, Issue, ValidationReport


def _line(**overrides) -> str:
    data = {
        "v": 1,
        "op": "create",
        "id": "t1",
        "ts": "2026-01-01T00:00:00.000Z",
        "by": "@alice",
        "branch": "main",
        "d": {"title": "Fix"},
    }
    data.update(overrides)
    return json.dumps(data, ensure_ascii=False)


class TestEnums:
    """枚举取值测试"""

    def test_operation_values(self):
        """Operation 覆盖全部 13 种操作"""
        assert len(Operation) == 13
        assert Operation("set_stream") == Operation.SET_STREAM
        assert Operation.DELETE_STREAM == "delete_stream"

    def test_stream_operations(self):
        """Stream 操作与任务操作分属不同实体族"""
        assert is_stream_operation(Operation.CREATE_STREAM)
        assert is_stream_operation(Operation.DELETE_STREAM)
        assert not is_stream_operation(Operation.SET_STREAM)
        assert not is_stream_operation(Operation.CREATE)

    def test_task_status_values(self):
        """TaskStatus 只有 open / complete"""
        assert [s.value for s in TaskStatus] == ["open", "complete"]


class TestTimestamps:
    """时间戳解析与格式化"""

    def test_format_has_millis_and_z(self):
        """输出三位毫秒 + Z 后缀"""
        ts = datetime(2026, 1, 2, 3, 4, 5, 678900, tzinfo=UTC)
        assert format_timestamp(ts) == "2026-01-02T03:04:05.678Z"

    def test_parse_normalizes_offset(self):
        """带时区偏移的时间归一到 UTC"""
        ts = parse_timestamp("2026-01-01T01:30:00.250+02:00")
        assert ts == datetime(2025, 12, 31, 23, 30, 0, 250000, tzinfo=UTC)

    def test_parse_truncates_to_millis(self):
        """微秒截断到毫秒"""
        ts = parse_timestamp("2026-01-01T00:00:00.123456Z")
        assert ts.microsecond == 123000

    def test_naive_treated_as_utc(self):
        """无时区信息视为 UTC"""
        ts = parse_timestamp("2026-01-01T00:00:00")
        assert ts.tzinfo == UTC

    def test_parse_rejects_garbage(self):
        with pytest.raises(ValueError):
            parse_timestamp("yesterday")
        with pytest.raises(ValueError):
            parse_timestamp(12345)


class TestEncoding:
    """事件编码测试"""

    def test_key_order_and_compact(self, ev):
        """键顺序固定，紧凑 JSON，空字段省略"""
        event = ev("create", "t1", 0, title="Fix")
        assert event.to_line() == (
            '{"v":1,"op":"create","id":"t1","ts":"2026-01-01T00:00:00.000Z",'
            '"by":"@alice","branch":"main","d":{"title":"Fix"}}'
        )

    def test_required_keys_match_wire(self, ev):
        assert tuple(ev("reopen").to_wire().keys()) == REQUIRED_KEYS

    def test_non_ascii_kept(self, ev):
        """非 ASCII 字符原样输出"""
        event = ev("comment", body="完成了 ✓")
        assert "完成了 ✓" in event.to_line()

    def test_update_only_emits_set_fields(self, ev):
        """update 只输出显式设置的字段，显式 null 保留"""
        event = ev("update", priority="high", assignee=None)
        assert event.to_wire()["d"] == {"priority": "high", "assignee": None}

    def test_empty_payload(self, ev):
        assert ev("reopen").to_wire()["d"] == {}

    def test_decode_encode_byte_identical(self, ev):
        """解码后再编码逐字节一致"""
        event = ev("link", t=1.5, rel="blocks", target="t2")
        line = event.to_line()
        assert decode_event_line(line).to_line() == line

    def test_payload_variant_mismatch_rejected(self):
        """payload 类型必须与 op 匹配"""
        with pytest.raises(ValueError):
            Event(
                schema_version=1,
                op=Operation.COMPLETE,
                entity_id="t1",
                ts=datetime(2026, 1, 1, tzinfo=UTC),
                author="@a",
                branch="main",
                payload=ReopenPayload(),
            )


class TestDecoding:
    """事件解码测试"""

    def test_selects_payload_by_op(self):
        event = decode_event_line(_line(op="link", d={"rel": "blocked_by", "target": "t9"}))
        assert isinstance(event.payload, LinkPayload)
        assert event.payload.rel == Relation.BLOCKED_BY

    def test_unknown_payload_keys_ignored(self):
        event = decode_event_line(_line(d={"title": "x", "future_field": 1}))
        assert isinstance(event.payload, CreatePayload)
        assert event.payload.title == "x"

    def test_update_fields_set(self):
        """update 区分“未出现”与“设置为 null”"""
        event = decode_event_line(_line(op="update", d={"assignee": None}))
        assert isinstance(event.payload, UpdatePayload)
        assert event.payload.model_fields_set == {"assignee"}

    def test_complete_without_resolution(self):
        event = decode_event_line(_line(op="complete", d={}))
        assert isinstance(event.payload, CompletePayload)
        assert event.payload.resolution is None

    def test_timestamp_normalized(self):
        event = decode_event_line(_line(ts="2026-01-01T08:00:00.000+08:00"))
        assert format_timestamp(event.ts) == "2026-01-01T00:00:00.000Z"

    def test_invalid_json(self):
        with pytest.raises(EventParseError):
            decode_event_line('{"v":1,"op":')

    def test_not_an_object(self):
        with pytest.raises(EventParseError):
            decode_event_line("[1, 2]")

    def test_missing_required_key(self):
        data = json.loads(_line())
        del data["branch"]
        with pytest.raises(EventSchemaError, match="branch"):
            decode_event_line(json.dumps(data))

    def test_unsupported_version(self):
        with pytest.raises(EventSchemaError):
            decode_event_line(_line(v=2))

    def test_unknown_op(self):
        with pytest.raises(EventSchemaError):
            decode_event_line(_line(op="explode"))

    def test_bad_timestamp(self):
        with pytest.raises(EventParseError):
            decode_event_line(_line(ts="not a time"))

    def test_bad_payload_field(self):
        """非法关系类型属于解析错误"""
        with pytest.raises(EventParseError):
            decode_event_line(_line(op="link", d={"rel": "sibling", "target": "t2"}))

    def test_empty_id_rejected(self):
        with pytest.raises(EventParseError):
            decode_event_line(_line(id=""))

    def test_timestamp_out_of_range(self):
        """偏移换算到 UTC 后超出日期范围"""
        with pytest.raises(EventParseError):
            decode_event_line(_line(ts="0001-01-01T00:00:00.000+05:00"))
        with pytest.raises(EventParseError):
            decode_event_line(_line(ts="9999-12-31T23:59:59.999-05:00"))

    def test_deeply_nested_json(self):
        with pytest.raises(EventParseError):
            decode_event_line("[" * 100_000)

    def test_oversized_integer(self):
        with pytest.raises(EventParseError):
            decode_event_line(_line().replace('"v": 1', '"v": ' + "9" * 5000))

    def test_lone_surrogate_rejected(self):
        with pytest.raises(EventParseError):
            decode_event_line(_line().replace('"Fix"', r'"\ud800"'))


class TestFingerprintAndOrder:
    """指纹与全序键测试"""

    def test_identical_events_same_fingerprint(self, ev):
        assert ev("reopen").fingerprint == ev("reopen").fingerprint

    def test_branch_changes_fingerprint(self, ev):
        assert ev("reopen").fingerprint != ev("reopen", branch="dev").fingerprint

    def test_order_by_timestamp_first(self, ev):
        early = ev("update", t=1, by="@zed", title="a")
        late = ev("update", t=2, by="@amy", title="b")
        assert early.order_key < late.order_key

    def test_tie_break_author_then_branch(self, ev):
        """同一毫秒：先比作者，再比分支"""
        a = ev("update", t=1, by="@a", branch="z", title="x")
        b = ev("update", t=1, by="@b", branch="a", title="x")
        c = ev("update", t=1, by="@b", branch="b", title="x")
        assert sorted([c, b, a], key=lambda e: e.order_key) == [a, b, c]

    def test_create_sorts_first_within_millisecond(self, ev):
        """同一毫秒内 create 排在任何操作之前，不论操作名称"""
        create = ev("create", t=1, by="@zed", title="x")
        others = [
            ev("archive", t=1, by="@amy", ref="2026-01"),
            ev("assign", t=1, to="@bob"),
            ev("complete", t=1),
        ]
        ordered = sorted(others + [create], key=lambda e: e.order_key)
        assert ordered[0] is create

    def test_day_uses_utc_date(self, ev):
        assert ev("reopen", t=86399).day == "2026-01-01"
        assert ev("reopen", t=86400).day == "2026-01-02"


class TestTaskModels:
    """Task / State 模型测试"""

    def _task(self, **overrides) -> Task:
        ts = datetime(2026, 1, 1, tzinfo=UTC)
        data = {
            "id": "t1",
            "title": "Fix",
            "created_at": ts,
            "created_by": "@alice",
            "created_branch": "main",
            "updated_at": ts,
        }
        data.update(overrides)
        return Task(**data)

    def test_defaults(self):
        task = self._task()
        assert task.status == TaskStatus.OPEN
        assert task.tags == []
        assert task.comments == []
        assert task.archived is None

    def test_timestamps_serialized_with_z(self):
        dumped = self._task().model_dump(mode="json")
        assert dumped["created_at"] == "2026-01-01T00:00:00.000Z"
        assert dumped["completed_at"] is None

    def test_content_view_excludes_archive_ref(self):
        assert self._task().content_view() == self._task(archived="2026-01").content_view()

    def test_state_helpers(self):
        ts = datetime(2026, 1, 1, tzinfo=UTC)
        stream = Stream(id="s1", name="backend", created_at=ts, created_by="@a", updated_at=ts)
        state = State(
            tasks={"t1": self._task(stream="s1"), "t2": self._task(id="t2")},
            streams={"s1": stream},
        )
        assert state.stream_by_name("backend") == stream
        assert state.stream_by_name("frontend") is None
        assert state.tasks_in_stream("s1") == ["t1"]

    def test_canonical_json_stable(self):
        state = State(tasks={"t1": self._task()})
        assert state.canonical_json() == State(tasks={"t1": self._task()}).canonical_json()


class TestReports:
    """报告模型测试"""

    def _issue(self, severity: str) -> Issue:
        return Issue(location="events/2026-01-01.jsonl:1", severity=severity, kind="parse", message="x")

    def test_normal_mode_passes_with_warnings(self):
        report = ValidationReport(entries=[self._issue("warning")])
        assert report.passed
        assert len(report.warnings) == 1

    def test_strict_mode_fails_on_warnings(self):
        report = ValidationReport(mode="strict", entries=[self._issue("warning")])
        assert not report.passed

    def test_errors_always_fail(self):
        assert not ValidationReport(entries=[self._issue("error")]).passed

    def test_archive_report_partitions(self):
        report = ArchiveReport(
            outcomes=[
                ArchiveOutcome(task_id="a", status="archived", month="2026-01"),
                ArchiveOutcome(task_id="b", status="skipped"),
                ArchiveOutcome(task_id="c", status="failed", reason="disk full"),
            ]
        )
        assert report.archived == ["a"]
        assert report.skipped == ["b"]
        assert report.failed == ["c"]
