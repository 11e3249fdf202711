"""Index Cache 测试

测试内容：
1. 全量重建生成索引与快照
2. 过期检测：新增/删除/变化文件与受影响实体
3. 增量刷新结果与全量重建一致
4. 扫描失败时旧缓存保持不变
"""

import pytest
from taskweave.core.exceptions import StoreIOError
from taskweave.core.index import IndexCache
from taskweave.core.models.enums import TaskStatus
from taskweave.core.projection import materialize_from_log
from taskweave.core.store import JsonlEventLog, StoreGroup, open_workspace


async def _seed(event_log: JsonlEventLog, ev) -> None:
    await event_log.append_event(ev("create", "t1", 0, title="first", priority="low"))
    await event_log.append_event(ev("create", "t2", 86400, title="second"))
    await event_log.append_event(ev("complete", "t2", 86400 + 60))


async def _full_rebuild_tasks(store_group: StoreGroup):
    """在独立连接上全量重建，作为增量刷新的对照"""
    other = await open_workspace(store_group.root)
    try:
        return (await IndexCache(other).rebuild_index()).tasks
    finally:
        await other.close()


class TestRebuild:
    """全量重建测试"""

    async def test_rebuild_index_entries(self, index_cache: IndexCache, event_log, ev):
        await _seed(event_log, ev)
        index = await index_cache.rebuild_index()

        assert list(index.tasks) == ["t1", "t2"]
        t1, t2 = index.tasks["t1"], index.tasks["t2"]
        assert t1.status == TaskStatus.OPEN
        assert t1.created == "2026-01-01"
        assert t1.files == ["events/2026-01-01.jsonl"]
        assert t2.status == TaskStatus.COMPLETE
        assert t2.completed == "2026-01-02"
        assert index.rebuilt_at is not None

    async def test_rebuild_twice_same_index(self, index_cache: IndexCache, event_log, ev):
        await _seed(event_log, ev)
        first = await index_cache.rebuild_index()
        second = await index_cache.rebuild_index()
        assert first.tasks == second.tasks

    async def test_snapshot_matches_materialize(self, index_cache: IndexCache, event_log, ev):
        """缓存的物化快照与直接重放一致"""
        await _seed(event_log, ev)
        await event_log.append_event(ev("comment", "t1", 5, body="注释"))
        await index_cache.rebuild_index()
        cached = await index_cache.get_state()
        direct = await materialize_from_log(event_log)
        assert cached.canonical_json() == direct.state.canonical_json()

    async def test_issues_collected(self, index_cache: IndexCache, event_log, ev, lines_writer):
        await _seed(event_log, ev)
        lines_writer(event_log.root, "events/2026-01-03.jsonl", ["{bad"])
        await index_cache.rebuild_index()
        assert len(index_cache.last_issues) == 1

    async def test_malformed_lines_do_not_abort_rebuild(
        self, index_cache: IndexCache, event_log, ev, lines_writer
    ):
        await _seed(event_log, ev)
        lines_writer(
            event_log.root,
            "events/2026-01-03.jsonl",
            [
                "[" * 100_000,
                '{"v":1,"op":"create","id":"t9","ts":"0001-01-01T00:00:00.000+05:00",'
                '"by":"@a","branch":"main","d":{"title":"x"}}',
            ],
        )
        index = await index_cache.rebuild_index()
        assert list(index.tasks) == ["t1", "t2"]
        assert len(index_cache.last_issues) == 2

    async def test_failed_scan_keeps_previous_cache(
        self,
        index_cache: IndexCache,
        store_group: StoreGroup,
        event_log,
        ev,
        monkeypatch: pytest.MonkeyPatch,
    ):
        await _seed(event_log, ev)
        before = await index_cache.rebuild_index()

        async def _failing_scan(selector=None):
            raise StoreIOError(event_log.root, OSError("disk gone"))

        await event_log.append_event(ev("create", "t3", 5, title="third"))
        monkeypatch.setattr(event_log, "scan", _failing_scan)
        with pytest.raises(StoreIOError):
            await index_cache.rebuild_index()

        assert (await store_group.cache_store.load_index()).tasks == before.tasks

    async def test_list_entries_by_status(self, index_cache: IndexCache, event_log, ev):
        await _seed(event_log, ev)
        assert list(await index_cache.list_entries("complete")) == ["t2"]
        assert list(await index_cache.list_entries()) == ["t1", "t2"]


class TestStaleness:
    """过期检测测试"""

    async def test_no_cache(self, index_cache: IndexCache, event_log, ev):
        await _seed(event_log, ev)
        report = await index_cache.check_staleness()
        assert report.full_rebuild_required
        assert report.stale

    async def test_fresh_after_rebuild(self, index_cache: IndexCache, event_log, ev):
        await _seed(event_log, ev)
        await index_cache.rebuild_index()
        report = await index_cache.check_staleness()
        assert not report.stale
        assert report.affected_ids == []

    async def test_changed_historical_file(self, index_cache: IndexCache, event_log, ev):
        """旧日期文件变化（如分支合并）同样使相关任务失效"""
        await _seed(event_log, ev)
        await index_cache.rebuild_index()
        await event_log.append_event(ev("update", "t1", 30, branch="feature", title="merged"))

        report = await index_cache.check_staleness()
        assert report.changed == ["events/2026-01-01.jsonl"]
        assert report.added == []
        assert report.affected_ids == ["t1"]

    async def test_new_file_new_entity(self, index_cache: IndexCache, event_log, ev):
        await _seed(event_log, ev)
        await index_cache.rebuild_index()
        await event_log.append_event(ev("create", "t3", 3 * 86400, title="third"))

        report = await index_cache.check_staleness()
        assert report.added == ["events/2026-01-04.jsonl"]
        assert report.affected_ids == ["t3"]

    async def test_removed_file(self, index_cache: IndexCache, event_log, ev):
        await _seed(event_log, ev)
        await index_cache.rebuild_index()
        (event_log.root / "events/2026-01-02.jsonl").unlink()

        report = await index_cache.check_staleness()
        assert report.removed == ["events/2026-01-02.jsonl"]
        assert report.affected_ids == ["t2"]


class TestRefresh:
    """get-or-rebuild 与增量刷新测试"""

    async def test_refresh_builds_when_missing(self, index_cache: IndexCache, event_log, ev):
        await _seed(event_log, ev)
        index = await index_cache.refresh()
        assert list(index.tasks) == ["t1", "t2"]

    async def test_refresh_picks_up_appends(
        self, index_cache: IndexCache, store_group: StoreGroup, event_log, ev
    ):
        await _seed(event_log, ev)
        await index_cache.refresh()
        await event_log.append_event(ev("complete", "t1", 40))
        await event_log.append_event(ev("create", "t3", 2 * 86400, title="third"))

        index = await index_cache.refresh()
        assert index.tasks["t1"].status == TaskStatus.COMPLETE
        assert "t3" in index.tasks
        assert index.tasks == await _full_rebuild_tasks(store_group)

    async def test_refresh_removed_file(
        self, index_cache: IndexCache, store_group: StoreGroup, event_log, ev
    ):
        await _seed(event_log, ev)
        await index_cache.refresh()
        (event_log.root / "events/2026-01-02.jsonl").unlink()

        index = await index_cache.refresh()
        assert list(index.tasks) == ["t1"]
        state = await store_group.cache_store.load_state()
        assert list(state.tasks) == ["t1"]

    async def test_refresh_keeps_entity_file_sets(
        self, index_cache: IndexCache, store_group: StoreGroup, event_log, ev
    ):
        """增量刷新读取受影响实体的全部贡献文件，而不仅是变化文件"""
        await _seed(event_log, ev)
        await event_log.append_event(ev("comment", "t1", 86400 + 5, body="day two"))
        await index_cache.refresh()
        await event_log.append_event(ev("update", "t1", 10, assignee="@bob"))

        index = await index_cache.refresh()
        assert index.tasks["t1"].files == ["events/2026-01-01.jsonl", "events/2026-01-02.jsonl"]
        task = (await store_group.cache_store.load_state()).tasks["t1"]
        assert task.assignee == "@bob"
        assert [c.body for c in task.comments] == ["day two"]
        assert index.tasks == await _full_rebuild_tasks(store_group)

    async def test_refresh_without_changes_reads_cache(self, index_cache: IndexCache, event_log, ev):
        await _seed(event_log, ev)
        first = await index_cache.refresh()
        second = await index_cache.refresh()
        assert first.tasks == second.tasks
