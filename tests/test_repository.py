from datetime import datetime, timedelta

import pytest

from defi_agent.store.db import Database, TaskRecord
from defi_agent.store.repository import Repository, TaskStore
from defi_agent.tasks import (
    TaskState,
    create_error_task,
    create_success_task,
    create_transaction_artifact,
)


async def _database(tmp_path, name: str) -> Database:
    db = Database(f"sqlite+aiosqlite:///{tmp_path / name}")
    db.connect()
    await db.init_models()
    return db


@pytest.mark.asyncio
async def test_save_and_get_task(tmp_path):
    """Test task persistence with artifacts and history."""
    db = await _database(tmp_path, "tasks.db")
    task = create_success_task(
        "Ready to sign.",
        [create_transaction_artifact({"action": "swap"}, [])],
        context_id="ctx-1",
    )
    task.history = [{"role": "user", "content": "swap 1 USDC to WETH"}]

    async with db.session() as session:
        repo = Repository(session)
        await repo.save_task(task)

        record = await repo.get_task(task.id)
        assert record.context_id == "ctx-1"
        assert record.state == "completed"
        assert record.message == "Ready to sign."
        assert "transaction-plan" in record.artifacts
        assert "swap 1 USDC to WETH" in record.history

    await db.dispose()


@pytest.mark.asyncio
async def test_save_task_updates_existing_record(tmp_path):
    """Saving the same task twice keeps a single row with the latest state."""
    db = await _database(tmp_path, "update.db")
    task = create_success_task("first", context_id="ctx-1")

    async with db.session() as session:
        repo = Repository(session)
        await repo.save_task(task)
        task.status.state = TaskState.FAILED
        await repo.save_task(task)

        records = await repo.list_tasks_for_context("ctx-1")
        assert len(records) == 1
        assert records[0].state == "failed"

    await db.dispose()


@pytest.mark.asyncio
async def test_list_tasks_for_context_is_oldest_first(tmp_path):
    db = await _database(tmp_path, "list.db")
    first = create_success_task("one", context_id="ctx-2")
    second = create_error_task("two", context_id="ctx-2")
    other = create_success_task("other", context_id="ctx-3")

    async with db.session() as session:
        repo = Repository(session)
        for task in (first, second, other):
            await repo.save_task(task)
        record = await session.get(TaskRecord, first.id)
        record.created_at = datetime.utcnow() - timedelta(minutes=5)
        await session.commit()

        records = await repo.list_tasks_for_context("ctx-2")
        assert [r.id for r in records] == [first.id, second.id]

    await db.dispose()


@pytest.mark.asyncio
async def test_task_store_round_trip(tmp_path):
    db = await _database(tmp_path, "store.db")
    store = TaskStore(db)
    task = create_error_task("Insufficient USDC balance.")

    await store.save_task(task)
    record = await store.get_task(task.id)

    assert record.state == "failed"
    assert await store.get_task("task-missing") is None

    await db.dispose()
