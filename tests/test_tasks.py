"""
Tests for task marker parsing and the persisted task store.
"""

import pytest

from branchcore.core.exceptions import TaskNotFoundError, ValidationError
from branchcore.core.models import Task, TaskStatus, TaskType, Thought
from branchcore.core.persistence import JsonFileStore, MemoryStore
from branchcore.core.tasks import TaskStore, parse_task_markers, task_id_for
from tests.mocks import BrokenStore


def _thought(content: str, thought_id: str = "t1", branch_id: str = "b1") -> Thought:
    return Thought(id=thought_id, content=content, branch_id=branch_id)


class TestParseTaskMarkers:
    def test_assignee_and_due_date(self):
        [marker] = parse_task_markers("TODO(alice): write the docs by 2025-01-31")
        assert marker.type == TaskType.TODO
        assert marker.assignee == "alice"
        assert marker.due == "2025-01-31"
        assert marker.description == "write the docs"
        assert marker.offset == 0

    def test_offsets_are_relative_to_the_whole_text(self):
        markers = parse_task_markers("intro line\nFIXME: broken import\n  ACTION ship it")
        assert [(m.type, m.offset) for m in markers] == [(TaskType.FIXME, 11), (TaskType.ACTION, 34)]
        assert markers[1].description == "ship it"

    def test_first_marker_on_a_line_wins(self):
        [marker] = parse_task_markers("TODO: check TASK ordering")
        assert marker.type == TaskType.TODO
        assert marker.description == "check TASK ordering"

    def test_keyword_is_case_insensitive(self):
        [marker] = parse_task_markers("remember: task: water the plants")
        assert marker.type == TaskType.TASK
        assert marker.description == "water the plants"

    def test_empty_description_is_not_a_task(self):
        assert parse_task_markers("TODO:   ") == []
        assert parse_task_markers("FIXME") == []

    def test_whole_word_only(self):
        assert parse_task_markers("TODOS are piling up") == []
        assert parse_task_markers("the MULTITASKING problem") == []

    def test_no_assignee_without_parentheses(self):
        [marker] = parse_task_markers("TODO bob should review")
        assert marker.assignee is None
        assert marker.description == "bob should review"


class TestExtraction:
    @pytest.mark.asyncio
    async def test_extraction_is_idempotent(self):
        store = TaskStore(MemoryStore())
        thought = _thought("TODO: first\nFIXME(carol): second by 2030-05-01")

        first = await store.extract([("b1", thought)])
        second = await store.extract([("b1", thought)])

        assert [t.id for t in first] == [task_id_for("b1", "t1", 0), "task-b1-t1-12"]
        assert [t.id for t in second] == [t.id for t in first]
        assert len(await store.all()) == 2
        assert first[1].assignee == "carol"
        assert first[1].due == "2030-05-01"
        assert first[0].status == TaskStatus.OPEN
        assert first[0].priority == 3

    @pytest.mark.asyncio
    async def test_existing_task_keeps_its_status(self):
        store = TaskStore(MemoryStore())
        thought = _thought("TODO: keep me")
        [task] = await store.extract([("b1", thought)])
        await store.update_status(task.id, "closed", user="dana")

        [again] = await store.extract([("b1", thought)])
        assert again.status == TaskStatus.CLOSED
        assert len(again.audit_trail) == 1

    @pytest.mark.asyncio
    async def test_removed_markers_leave_tasks_in_place(self):
        store = TaskStore(MemoryStore())
        await store.extract([("b1", _thought("TODO: transient"))])
        found = await store.extract([("b1", _thought("nothing actionable"))])
        assert found == []
        assert len(await store.all("b1")) == 1

    @pytest.mark.asyncio
    async def test_creator_comes_from_profile(self):
        store = TaskStore(MemoryStore())
        thought = _thought("ACTION: call the vendor")
        thought.profile_id = "profile-1"
        [task] = await store.extract([("b1", thought)])
        assert task.creator == "profile-1"


class TestMutations:
    @pytest.mark.asyncio
    async def test_update_status_appends_audit_entry(self):
        store = TaskStore(MemoryStore())
        [task] = await store.extract([("b1", _thought("TODO: audit"))])

        updated = await store.update_status(task.id, TaskStatus.IN_PROGRESS, user="erin")

        assert updated.status == TaskStatus.IN_PROGRESS
        assert updated.last_editor == "erin"
        assert updated.audit_trail[-1].action == "Status changed from open to in_progress"
        assert updated.audit_trail[-1].user == "erin"

    @pytest.mark.asyncio
    async def test_update_status_errors(self):
        store = TaskStore(MemoryStore())
        [task] = await store.extract([("b1", _thought("TODO: x"))])
        with pytest.raises(ValidationError):
            await store.update_status(task.id, "done")
        with pytest.raises(ValidationError):
            await store.update_status("task-missing", "closed")

    @pytest.mark.asyncio
    async def test_assign(self):
        store = TaskStore(MemoryStore())
        [task] = await store.extract([("b1", _thought("TASK: assign me"))])

        assigned = await store.assign(task.id, "frank")

        assert assigned.assignee == "frank"
        assert assigned.audit_trail[-1].action == "Assigned to frank"
        with pytest.raises(TaskNotFoundError):
            await store.assign("task-missing", "frank")
        with pytest.raises(ValidationError):
            await store.assign(task.id, "")


class TestPersistence:
    @pytest.mark.asyncio
    async def test_reload_from_disk(self, tmp_path):
        store = TaskStore(JsonFileStore(tmp_path))
        [task] = await store.extract([("b1", _thought("TODO: survive restart"))])
        await store.update_status(task.id, "in_progress", user="gil")

        reloaded = TaskStore(JsonFileStore(tmp_path))
        [restored] = await reloaded.all()

        assert restored.id == task.id
        assert restored.status == TaskStatus.IN_PROGRESS
        assert restored.audit_trail[0].user == "gil"

    @pytest.mark.asyncio
    async def test_malformed_records_are_skipped(self):
        kv = MemoryStore()
        good = Task(id="task-1", branch_id="b", thought_id="t", type=TaskType.TODO, content="ok")
        await kv.save("tasks", {"tasks": [good.to_dict(), {"content": "no id"}, {"id": "x", "status": "weird"}]})

        tasks = await TaskStore(kv).all()

        assert [t.id for t in tasks] == ["task-1"]

    @pytest.mark.asyncio
    async def test_broken_store_degrades(self):
        store = TaskStore(BrokenStore())
        found = await store.extract([("b1", _thought("TODO: in memory only"))])
        assert len(found) == 1
        assert len(await store.all()) == 1


class TestQueries:
    @pytest.mark.asyncio
    async def test_sorted_by_priority_then_due_undated_first(self):
        store = TaskStore(MemoryStore())
        await store.extract([
            ("b1", _thought("TODO: later by 2030-01-01\nTODO: undated\nFIXME: sooner by 2029-01-01")),
        ])
        ordered = await store.query(branch_id="b1")
        assert [t.content for t in ordered] == ["undated", "sooner", "later"]

    @pytest.mark.asyncio
    async def test_filters(self):
        store = TaskStore(MemoryStore())
        await store.extract([
            ("b1", _thought("TODO(ann): one\nFIXME(bo): two by 2029-01-01", "t1")),
            ("b2", _thought("ACTION(ann): three", "t2", "b2")),
        ])
        assert {t.content for t in await store.query(assignee="ann")} == {"one", "three"}
        assert [t.content for t in await store.query(due="2029-01-01")] == ["two"]
        assert [t.content for t in await store.query(branch_id="b2", status="open")] == ["three"]
        assert await store.query(priority=1) == []
        with pytest.raises(ValidationError):
            await store.query(status="finished")

    @pytest.mark.asyncio
    async def test_summarize(self):
        store = TaskStore(MemoryStore())
        tasks = await store.extract([("b1", _thought("TODO: a\nTODO: b\nTODO: c"))])
        await store.update_status(tasks[0].id, "closed")
        await store.update_status(tasks[1].id, "in_progress")

        summary = await store.summarize("b1")

        assert summary.splitlines() == [
            "Total tasks: 3",
            "Open: 1",
            "In Progress: 1",
            "Closed: 1",
            "Stale: 0",
        ]

    @pytest.mark.asyncio
    async def test_next_task_is_oldest_open(self):
        kv = MemoryStore()
        await kv.save("tasks", {"tasks": [
            Task(id="task-new", branch_id="b", thought_id="t", type=TaskType.TODO, content="new",
                 created_at="2024-02-01T00:00:00+00:00").to_dict(),
            Task(id="task-old", branch_id="b", thought_id="t", type=TaskType.TODO, content="old",
                 created_at="2024-01-01T00:00:00+00:00").to_dict(),
            Task(id="task-closed", branch_id="b", thought_id="t", type=TaskType.TODO, content="closed",
                 status=TaskStatus.CLOSED, created_at="2023-01-01T00:00:00+00:00").to_dict(),
        ]})
        store = TaskStore(kv)

        assert (await store.next_task()).id == "task-old"
        assert await store.next_task("other") is None
