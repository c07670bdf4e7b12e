# tests/test_task_store.py

from __future__ import annotations

import sqlite3
import time

import pytest

from persona_tasks.tasks.task_models import (
    ChatTask,
    Classification,
    ServiceStatus,
    ServiceTask,
    TaskStatus,
    TaskType,
)
from persona_tasks.tasks.task_store import TaskStore

from .fakes import make_task


def test_save_and_get_service_task_roundtrip(task_store: TaskStore) -> None:
    task_store.save_task(make_task(task_id="img-1"))

    loaded = task_store.get_task("img-1")
    assert isinstance(loaded, ServiceTask)
    assert loaded.task_type == TaskType.API_CALL
    assert loaded.is_image_generation
    assert loaded.external_service.request_data == {"prompt": "Draw a neon dragon"}
    assert loaded.external_service.api_key == "sk-test-key"
    assert loaded.external_service.status == ServiceStatus.PENDING
    assert loaded.status == TaskStatus.PENDING
    assert loaded.notified is None


def test_chat_task_has_no_external_service(task_store: TaskStore) -> None:
    task_store.save_task(make_task(task_id="c1", command="Tell me about cats", classification=Classification.chat()))

    loaded = task_store.get_task("c1")
    assert isinstance(loaded, ChatTask)
    assert not hasattr(loaded, "external_service")


def test_duplicate_task_id_is_rejected(task_store: TaskStore) -> None:
    task_store.save_task(make_task(task_id="dup"))
    with pytest.raises(sqlite3.IntegrityError):
        task_store.save_task(make_task(task_id="dup"))


def test_runnable_tasks_respect_retry_at(task_store: TaskStore) -> None:
    now = time.time()
    task_store.save_task(make_task(task_id="ready"))
    task_store.save_task(make_task(task_id="later"))
    task_store.update_task("later", retry_at=now + 60)

    ids = [t.task_id for t in task_store.list_runnable_tasks(now_ts=now)]
    assert ids == ["ready"]

    ids = [t.task_id for t in task_store.list_runnable_tasks(now_ts=now + 61)]
    assert sorted(ids) == ["later", "ready"]


def test_claim_is_atomic(task_store: TaskStore) -> None:
    task_store.save_task(make_task(task_id="t1"))

    assert task_store.try_claim_task("t1", expected=[TaskStatus.PENDING]) is True
    assert task_store.try_claim_task("t1", expected=[TaskStatus.PENDING]) is False
    assert task_store.get_task("t1").status == TaskStatus.IN_PROGRESS


def test_mark_notified_only_once_and_only_when_terminal(task_store: TaskStore) -> None:
    task_store.save_task(make_task(task_id="t1"))

    assert task_store.mark_notified("t1") is False

    task_store.update_task("t1", status=TaskStatus.COMPLETED, result="https://x/a.png", notified=False)
    assert task_store.mark_notified("t1") is True
    assert task_store.mark_notified("t1") is False
    assert task_store.get_task("t1").notified is True


def test_fail_if_active_skips_terminal_tasks(task_store: TaskStore) -> None:
    task_store.save_task(make_task(task_id="active"))
    task_store.save_task(make_task(task_id="done"))
    task_store.update_task("done", status=TaskStatus.COMPLETED)

    assert task_store.fail_if_active("active", result="Task timed out") is True
    assert task_store.fail_if_active("done", result="Task timed out") is False

    active = task_store.get_task("active")
    assert active.status == TaskStatus.FAILED
    assert active.result == "Task timed out"
    assert active.notified is False
    assert task_store.get_task("done").status == TaskStatus.COMPLETED


def test_monitored_tasks_exclude_notified(task_store: TaskStore) -> None:
    task_store.save_task(make_task(task_id="active"))
    task_store.save_task(make_task(task_id="done-pending-notify"))
    task_store.save_task(make_task(task_id="done-notified"))
    task_store.update_task("done-pending-notify", status=TaskStatus.COMPLETED, notified=False)
    task_store.update_task("done-notified", status=TaskStatus.FAILED, notified=True)

    ids = sorted(t.task_id for t in task_store.list_monitored_tasks())
    assert ids == ["active", "done-pending-notify"]


def test_recent_tasks_newest_first_by_identity(task_store: TaskStore) -> None:
    base = time.time() - 100
    for i in range(4):
        task_store.save_task(make_task(task_id=f"t{i}", created_at=base + i))
    task_store.save_task(make_task(task_id="other", channel_user_id="someone-else", created_at=base + 10))

    recent = task_store.get_recent_tasks(channel_user_id="u-42", limit=3)
    assert [t.task_id for t in recent] == ["t3", "t2", "t1"]
    assert task_store.get_recent_tasks(limit=3) == []


def test_update_task_rejects_unknown_fields(task_store: TaskStore) -> None:
    task_store.save_task(make_task(task_id="t1"))
    with pytest.raises(ValueError):
        task_store.update_task("t1", command="rewritten")


def test_migration_adds_missing_columns(tmp_path) -> None:
    db = tmp_path / "old.sqlite3"
    conn = sqlite3.connect(db)
    conn.execute(
        """
        CREATE TABLE tasks (
            task_id TEXT PRIMARY KEY,
            agent_id TEXT NOT NULL,
            channel_id TEXT NOT NULL,
            channel_user_id TEXT NOT NULL,
            command TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending',
            created_at REAL NOT NULL
        )
        """
    )
    conn.execute(
        "INSERT INTO tasks(task_id, agent_id, channel_id, channel_user_id, command, status, created_at) "
        "VALUES ('legacy', 'a', 'web', 'u', 'hello world', 'pending', ?)",
        (time.time(),),
    )
    conn.commit()
    conn.close()

    store = TaskStore(db)
    legacy = store.get_task("legacy")
    assert isinstance(legacy, ChatTask)
    assert legacy.retries == 0
    assert legacy.max_retries == 3
    assert legacy.retry_at is None
