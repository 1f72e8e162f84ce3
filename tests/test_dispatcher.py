"""Background dispatcher tests.

Tests focus on failure handling of fire-and-forget calls:
- A failed call moves its task to error with the failure message
- Failures are isolated per task
- Caller setup failure marks every task of the batch as failed
- A failing status write is logged and does not propagate
- Shutdown skips calls that have not started and waits for in-flight work
"""

import asyncio

import pytest
from conftest import TEST_USER, FakeCaller, caller_factory_for
from structlog.testing import capture_logs

from imagegen.models.async_task import AsyncTask, AsyncTaskStatus
from imagegen.models.generation import Generation, GenerationBatch
from imagegen.services.exceptions import AsyncCallError, AsyncCallerConfigError
from imagegen.services.image_generation.dispatcher import (
    DISPATCH_FAILED_MESSAGE,
    UNKNOWN_ERROR_MESSAGE,
    BackgroundDispatcher,
    DispatchItem,
)


async def create_pending_items(uow_factory, count: int) -> list[DispatchItem]:
    """Persist a batch with ``count`` generations and pending tasks."""
    items = []
    async with await uow_factory() as uow:
        batch = await uow.generation_batches.add(
            GenerationBatch(
                user_id=TEST_USER,
                generation_topic_id="topic_1",
                provider="replicate",
                model="black-forest-labs/flux-schnell",
                prompt="A koi pond",
                config={"prompt": "A koi pond"},
            )
        )
        generations = await uow.generations.add_many(
            [Generation(user_id=TEST_USER, generation_batch_id=batch.id) for _ in range(count)]
        )
        for generation in generations:
            task = await uow.async_tasks.add(AsyncTask(user_id=TEST_USER))
            await uow.generations.set_async_task_id(generation, task.id)
            items.append(DispatchItem(generation_id=generation.id, async_task_id=task.id))
    return items


async def load_tasks(uow_factory, items: list[DispatchItem]) -> list[AsyncTask]:
    async with await uow_factory() as uow:
        tasks = await uow.async_tasks.get_many(item.async_task_id for item in items)
    return [tasks[item.async_task_id] for item in items]


async def dispatch(dispatcher: BackgroundDispatcher, items: list[DispatchItem]) -> None:
    await dispatcher.dispatch(
        user_id=TEST_USER,
        provider="replicate",
        model="black-forest-labs/flux-schnell",
        params={"prompt": "A koi pond"},
        items=items,
    )


@pytest.mark.asyncio
async def test_failed_call_marks_task_error_with_message(uow_factory):
    items = await create_pending_items(uow_factory, 1)
    caller = FakeCaller(failures={0: AsyncCallError("provider unreachable", status_code=502)})
    dispatcher = BackgroundDispatcher(uow_factory, caller_factory_for(caller))

    await dispatch(dispatcher, items)
    assert await dispatcher.drain(timeout=5) is True

    [task] = await load_tasks(uow_factory, items)
    assert task.status == AsyncTaskStatus.ERROR
    assert task.error == {"name": "ServerError", "body": {"detail": "provider unreachable"}}


@pytest.mark.asyncio
async def test_failure_without_message_uses_unknown_error(uow_factory):
    items = await create_pending_items(uow_factory, 1)
    caller = FakeCaller(failures={0: RuntimeError()})
    dispatcher = BackgroundDispatcher(uow_factory, caller_factory_for(caller))

    await dispatch(dispatcher, items)
    await dispatcher.drain(timeout=5)

    [task] = await load_tasks(uow_factory, items)
    assert task.status == AsyncTaskStatus.ERROR
    assert task.error["body"]["detail"] == UNKNOWN_ERROR_MESSAGE


@pytest.mark.asyncio
async def test_failures_are_isolated_per_task(uow_factory):
    """Only the failing call's task moves to error; the others stay pending."""
    items = await create_pending_items(uow_factory, 3)
    caller = FakeCaller(failures={1: AsyncCallError("boom")})
    dispatcher = BackgroundDispatcher(uow_factory, caller_factory_for(caller))

    await dispatch(dispatcher, items)
    await dispatcher.drain(timeout=5)

    tasks = await load_tasks(uow_factory, items)
    assert [t.status for t in tasks] == [
        AsyncTaskStatus.PENDING,
        AsyncTaskStatus.ERROR,
        AsyncTaskStatus.PENDING,
    ]
    assert len(caller.calls) == 3


@pytest.mark.asyncio
async def test_successful_call_leaves_status_to_async_service(uow_factory):
    items = await create_pending_items(uow_factory, 2)
    caller = FakeCaller()
    dispatcher = BackgroundDispatcher(uow_factory, caller_factory_for(caller))

    with capture_logs() as logs:
        await dispatch(dispatcher, items)
        await dispatcher.drain(timeout=5)

    tasks = await load_tasks(uow_factory, items)
    assert all(t.status == AsyncTaskStatus.PENDING for t in tasks)
    completed = [e for e in logs if e["event"] == "dispatch.task.completed"]
    assert len(completed) == 2


@pytest.mark.asyncio
async def test_caller_setup_failure_marks_all_tasks_error(uow_factory):
    items = await create_pending_items(uow_factory, 3)

    async def broken_factory(user_id: str):
        raise AsyncCallerConfigError("ASYNC_SERVICE_SECRET not configured")

    dispatcher = BackgroundDispatcher(uow_factory, broken_factory)

    with capture_logs() as logs:
        await dispatch(dispatcher, items)

    tasks = await load_tasks(uow_factory, items)
    assert all(t.status == AsyncTaskStatus.ERROR for t in tasks)
    assert all(
        t.error["body"]["detail"] == "ASYNC_SERVICE_SECRET not configured" for t in tasks
    )
    assert any(e["event"] == "dispatch.setup_failed" for e in logs)
    assert dispatcher.in_flight == 0


@pytest.mark.asyncio
async def test_caller_setup_failure_without_message_uses_fallback(uow_factory):
    items = await create_pending_items(uow_factory, 2)

    async def broken_factory(user_id: str):
        raise RuntimeError()

    dispatcher = BackgroundDispatcher(uow_factory, broken_factory)
    await dispatch(dispatcher, items)

    tasks = await load_tasks(uow_factory, items)
    assert [t.error["body"]["detail"] for t in tasks] == [DISPATCH_FAILED_MESSAGE] * 2


@pytest.mark.asyncio
async def test_status_write_failure_is_logged_not_raised(uow_factory):
    items = await create_pending_items(uow_factory, 1)
    caller = FakeCaller(failures={0: AsyncCallError("provider down")})

    async def failing_uow_factory():
        raise ConnectionError("database unavailable")

    dispatcher = BackgroundDispatcher(failing_uow_factory, caller_factory_for(caller))

    with capture_logs() as logs:
        await dispatch(dispatcher, items)
        assert await dispatcher.drain(timeout=5) is True

    failures = [e for e in logs if e["event"] == "dispatch.task.status_write_failed"]
    assert len(failures) == 1
    assert failures[0]["error"] == "database unavailable"

    # Task remains pending; no reconciliation happens
    [task] = await load_tasks(uow_factory, items)
    assert task.status == AsyncTaskStatus.PENDING


@pytest.mark.asyncio
async def test_fallback_status_write_failure_is_logged(uow_factory):
    items = await create_pending_items(uow_factory, 2)

    async def broken_factory(user_id: str):
        raise AsyncCallerConfigError("missing url")

    async def failing_uow_factory():
        raise ConnectionError("database unavailable")

    dispatcher = BackgroundDispatcher(failing_uow_factory, broken_factory)

    with capture_logs() as logs:
        await dispatch(dispatcher, items)

    failures = [e for e in logs if e["event"] == "dispatch.fallback.status_write_failed"]
    assert len(failures) == 2


@pytest.mark.asyncio
async def test_mark_task_error_does_not_override_terminal_status(uow_factory):
    items = await create_pending_items(uow_factory, 1)
    task_id = items[0].async_task_id
    async with await uow_factory() as uow:
        await uow.async_tasks.update_status(task_id, AsyncTaskStatus.SUCCESS, user_id=TEST_USER)

    dispatcher = BackgroundDispatcher(uow_factory, caller_factory_for(FakeCaller()))
    updated = await dispatcher.mark_task_error(task_id, TEST_USER, "late failure")

    assert updated is False
    [task] = await load_tasks(uow_factory, items)
    assert task.status == AsyncTaskStatus.SUCCESS
    assert task.error is None


@pytest.mark.asyncio
async def test_dispatch_after_close_skips_calls_and_marks_error(uow_factory):
    items = await create_pending_items(uow_factory, 2)
    caller = FakeCaller()
    dispatcher = BackgroundDispatcher(uow_factory, caller_factory_for(caller))

    await dispatcher.aclose(timeout=1)
    await dispatch(dispatcher, items)
    await dispatcher.drain(timeout=5)

    tasks = await load_tasks(uow_factory, items)
    assert all(t.status == AsyncTaskStatus.ERROR for t in tasks)


@pytest.mark.asyncio
async def test_aclose_waits_for_in_flight_calls(uow_factory):
    items = await create_pending_items(uow_factory, 2)
    gate = asyncio.Event()
    caller = FakeCaller(gate=gate)
    dispatcher = BackgroundDispatcher(uow_factory, caller_factory_for(caller))

    await dispatch(dispatcher, items)
    await asyncio.sleep(0)
    assert dispatcher.in_flight == 2

    asyncio.get_running_loop().call_later(0.05, gate.set)
    await dispatcher.aclose(timeout=5)

    assert dispatcher.in_flight == 0
    tasks = await load_tasks(uow_factory, items)
    assert all(t.status == AsyncTaskStatus.PENDING for t in tasks)


@pytest.mark.asyncio
async def test_aclose_cancels_calls_still_running_after_timeout(uow_factory):
    items = await create_pending_items(uow_factory, 1)
    caller = FakeCaller(gate=asyncio.Event())  # never released
    dispatcher = BackgroundDispatcher(uow_factory, caller_factory_for(caller))

    await dispatch(dispatcher, items)
    # Let the call start before shutdown begins
    await asyncio.sleep(0)
    await dispatcher.aclose(timeout=0.1)
    await dispatcher.drain(timeout=5)

    assert dispatcher.in_flight == 0
    [task] = await load_tasks(uow_factory, items)
    assert task.status == AsyncTaskStatus.ERROR
    assert task.error["body"]["detail"] == "Dispatch cancelled during shutdown"


@pytest.mark.asyncio
async def test_drain_times_out_while_work_is_pending(uow_factory):
    items = await create_pending_items(uow_factory, 1)
    gate = asyncio.Event()
    dispatcher = BackgroundDispatcher(uow_factory, caller_factory_for(FakeCaller(gate=gate)))

    await dispatch(dispatcher, items)
    assert await dispatcher.drain(timeout=0.05) is False

    gate.set()
    assert await dispatcher.drain(timeout=5) is True
