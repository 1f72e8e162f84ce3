"""Integration tests for image API endpoints.

Tests image batch endpoints including:
- POST /api/image/create - Create batch, respond before generation finishes
- GET /api/image/batches - List batches with task status
- DELETE /api/image/batches/{id} - Delete batch
- GET /api/image/tasks/{id} - Read task
- POST /api/async/image/create - Provider call behind the shared secret
"""

import pytest
import pytest_asyncio
from conftest import TEST_USER
from httpx import ASGITransport, AsyncClient

from imagegen.api.routes import async_image
from imagegen.models.async_task import (
    AsyncTask,
    AsyncTaskErrorType,
    AsyncTaskStatus,
    build_task_error,
)
from imagegen.models.generation import Generation, GenerationBatch
from imagegen.app import create_app, init_app_state
from imagegen.services.image_generation.replicate_client import ContentPolicyError

USER_HEADERS = {"X-User-Id": TEST_USER}


def create_body(image_num: int = 2, **params) -> dict:
    params.setdefault("prompt", "A lantern festival over a river")
    return {
        "generationTopicId": "topic_1",
        "provider": "replicate",
        "model": "black-forest-labs/flux-schnell",
        "imageNum": image_num,
        "params": params,
    }


@pytest.fixture
def fake_provider(monkeypatch):
    """Replace the Replicate call of the async endpoint.

    Set ``fake_provider["error"]`` to make the call fail.
    """
    state = {"calls": [], "error": None}

    async def fake_generate_image(model_input, api_token, model=None):
        state["calls"].append({"input": model_input, "token": api_token, "model": model})
        if state["error"] is not None:
            raise state["error"]
        return f"https://replicate.delivery/{len(state['calls'])}.webp"

    monkeypatch.setattr(async_image, "generate_image", fake_generate_image)
    return state


@pytest_asyncio.fixture
async def app(settings, session_factory):
    """App whose dispatch calls are routed back into the same app in-process."""
    app = create_app(settings)
    init_app_state(app, settings, session_factory, caller_transport=ASGITransport(app=app))
    yield app
    await app.state.dispatcher.aclose(timeout=5)


@pytest_asyncio.fixture
async def test_client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.mark.asyncio
class TestCreateImageEndpoint:
    """Test POST /api/image/create."""

    async def test_create_returns_batch_and_generations(self, app, test_client, fake_provider):
        response = await test_client.post(
            "/api/image/create", json=create_body(image_num=3), headers=USER_HEADERS
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        batch = body["data"]["batch"]
        generations = body["data"]["generations"]
        assert batch["generationTopicId"] == "topic_1"
        assert batch["prompt"] == "A lantern festival over a river"
        assert len(generations) == 3
        assert all(g["generationBatchId"] == batch["id"] for g in generations)
        assert len({g["asyncTaskId"] for g in generations}) == 3

        await app.state.dispatcher.drain(timeout=5)

    async def test_generations_complete_through_async_endpoint(
        self, app, test_client, fake_provider
    ):
        response = await test_client.post(
            "/api/image/create",
            json=create_body(image_num=2, seed=None, width=512, height=512),
            headers=USER_HEADERS,
        )
        assert response.status_code == 200
        assert await app.state.dispatcher.drain(timeout=5) is True

        listing = await test_client.get(
            "/api/image/batches", params={"topicId": "topic_1"}, headers=USER_HEADERS
        )
        [batch] = listing.json()["batches"]
        statuses = [g["task"]["status"] for g in batch["generations"]]
        assert statuses == ["success", "success"]
        assert all(
            g["asset"]["url"].startswith("https://replicate.delivery/")
            for g in batch["generations"]
        )
        assert all(g["task"]["durationMs"] is not None for g in batch["generations"])

        # Each provider call received its generation's seed and the server-side token
        seeds = sorted(g["seed"] for g in batch["generations"])
        assert sorted(call["input"]["seed"] for call in fake_provider["calls"]) == seeds
        assert all(call["token"] == "r8_test" for call in fake_provider["calls"])

    async def test_provider_failure_marks_task_error(self, app, test_client, fake_provider):
        fake_provider["error"] = ContentPolicyError("NSFW content detected")

        response = await test_client.post(
            "/api/image/create", json=create_body(image_num=1), headers=USER_HEADERS
        )
        assert response.status_code == 200
        await app.state.dispatcher.drain(timeout=5)

        task_id = response.json()["data"]["generations"][0]["asyncTaskId"]
        task = (await test_client.get(f"/api/image/tasks/{task_id}", headers=USER_HEADERS)).json()
        assert task["status"] == "error"
        # The async endpoint's classified error wins; the dispatcher's later write is a no-op
        assert task["error"] == {
            "name": "ContentPolicyViolation",
            "body": {"detail": "NSFW content detected"},
        }

    async def test_missing_prompt_returns_422(self, test_client):
        body = create_body()
        del body["params"]["prompt"]

        response = await test_client.post("/api/image/create", json=body, headers=USER_HEADERS)

        assert response.status_code == 422

    async def test_blank_prompt_returns_400(self, test_client):
        response = await test_client.post(
            "/api/image/create", json=create_body(prompt="   "), headers=USER_HEADERS
        )
        assert response.status_code == 400

    async def test_too_many_images_returns_400(self, test_client):
        response = await test_client.post(
            "/api/image/create", json=create_body(image_num=9), headers=USER_HEADERS
        )
        assert response.status_code == 400
        assert "imageNum" in response.json()["detail"]

    async def test_missing_user_returns_401(self, test_client):
        response = await test_client.post("/api/image/create", json=create_body())
        assert response.status_code == 401


@pytest.mark.asyncio
class TestBatchEndpoints:
    """Test batch listing, deletion and task reads."""

    async def test_batches_are_scoped_to_topic_and_user(self, app, test_client, fake_provider):
        await test_client.post("/api/image/create", json=create_body(), headers=USER_HEADERS)
        await test_client.post(
            "/api/image/create", json=create_body(), headers={"X-User-Id": "someone_else"}
        )
        await app.state.dispatcher.drain(timeout=5)

        mine = await test_client.get(
            "/api/image/batches", params={"topicId": "topic_1"}, headers=USER_HEADERS
        )
        other_topic = await test_client.get(
            "/api/image/batches", params={"topicId": "topic_2"}, headers=USER_HEADERS
        )

        assert len(mine.json()["batches"]) == 1
        assert other_topic.json()["batches"] == []

    async def test_delete_batch_removes_generations_and_tasks(
        self, app, test_client, fake_provider
    ):
        created = await test_client.post(
            "/api/image/create", json=create_body(), headers=USER_HEADERS
        )
        await app.state.dispatcher.drain(timeout=5)
        data = created.json()["data"]
        batch_id = data["batch"]["id"]
        task_id = data["generations"][0]["asyncTaskId"]

        response = await test_client.delete(f"/api/image/batches/{batch_id}", headers=USER_HEADERS)
        assert response.status_code == 204

        listing = await test_client.get(
            "/api/image/batches", params={"topicId": "topic_1"}, headers=USER_HEADERS
        )
        assert listing.json()["batches"] == []
        task = await test_client.get(f"/api/image/tasks/{task_id}", headers=USER_HEADERS)
        assert task.status_code == 404

    async def test_delete_unknown_batch_returns_404(self, test_client):
        response = await test_client.delete(
            "/api/image/batches/00000000-0000-0000-0000-000000000000", headers=USER_HEADERS
        )
        assert response.status_code == 404

    async def test_task_of_other_user_is_not_found(self, app, test_client, fake_provider):
        created = await test_client.post(
            "/api/image/create", json=create_body(image_num=1), headers=USER_HEADERS
        )
        await app.state.dispatcher.drain(timeout=5)
        task_id = created.json()["data"]["generations"][0]["asyncTaskId"]

        response = await test_client.get(
            f"/api/image/tasks/{task_id}", headers={"X-User-Id": "someone_else"}
        )
        assert response.status_code == 404


@pytest.mark.asyncio
class TestAsyncImageEndpoint:
    """Test POST /api/async/image/create authentication and lookups."""

    def async_body(self) -> dict:
        return {
            "taskId": "00000000-0000-0000-0000-000000000001",
            "generationId": "00000000-0000-0000-0000-000000000002",
            "provider": "replicate",
            "model": "black-forest-labs/flux-schnell",
            "params": {"prompt": "p"},
        }

    async def test_missing_secret_returns_401(self, test_client):
        response = await test_client.post(
            "/api/async/image/create", json=self.async_body(), headers=USER_HEADERS
        )
        assert response.status_code == 401

    async def test_wrong_secret_returns_401(self, test_client):
        response = await test_client.post(
            "/api/async/image/create",
            json=self.async_body(),
            headers={**USER_HEADERS, "X-Async-Secret": "wrong"},
        )
        assert response.status_code == 401

    async def test_unknown_task_returns_404(self, test_client):
        response = await test_client.post(
            "/api/async/image/create",
            json=self.async_body(),
            headers={**USER_HEADERS, "X-Async-Secret": "test-secret"},
        )
        assert response.status_code == 404

    async def test_task_failed_during_provider_call_keeps_error(
        self, test_client, uow_factory, monkeypatch
    ):
        """A task marked error while the provider runs is not overwritten by a late image."""
        async with await uow_factory() as uow:
            batch = await uow.generation_batches.add(
                GenerationBatch(
                    user_id=TEST_USER,
                    generation_topic_id="topic_1",
                    provider="replicate",
                    model="black-forest-labs/flux-schnell",
                    prompt="p",
                )
            )
            (generation,) = await uow.generations.add_many(
                [Generation(user_id=TEST_USER, generation_batch_id=batch.id)]
            )
            task = await uow.async_tasks.add(AsyncTask(user_id=TEST_USER))
            await uow.generations.set_async_task_id(generation, task.id)
            task_id, generation_id = task.id, generation.id

        async def slow_generate_image(model_input, api_token, model=None):
            # The dispatcher gives up on the task before the provider answers
            async with await uow_factory() as uow:
                await uow.async_tasks.update_status(
                    task_id,
                    AsyncTaskStatus.ERROR,
                    error=build_task_error(
                        AsyncTaskErrorType.SERVER_ERROR, "Async service timeout"
                    ),
                )
            return "https://replicate.delivery/late.webp"

        monkeypatch.setattr(async_image, "generate_image", slow_generate_image)

        response = await test_client.post(
            "/api/async/image/create",
            json={
                **self.async_body(),
                "taskId": str(task_id),
                "generationId": str(generation_id),
            },
            headers={**USER_HEADERS, "X-Async-Secret": "test-secret"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is False
        assert data["status"] == "error"
        assert data.get("imageUrl") is None

        async with await uow_factory() as uow:
            stored_task = await uow.async_tasks.get_by_id(task_id)
            stored_generation = await uow.generations.get_by_id(generation_id)
        assert stored_task.status == AsyncTaskStatus.ERROR
        assert stored_task.error["body"]["detail"] == "Async service timeout"
        assert stored_generation.asset is None
