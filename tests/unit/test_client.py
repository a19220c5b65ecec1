"""Backend client tests against a mocked HTTP transport."""

import json

import httpx
import pytest

from orchestrai.client import BackendClient
from orchestrai.context import ContextConfig
from orchestrai.contracts import WorkflowRequest, WorkflowStatus
from orchestrai.errors import BackendError, ParseError, SubmissionError


def _client(handler) -> BackendClient:
    return BackendClient(
        "http://backend.test", api_key="k-1", transport=httpx.MockTransport(handler)
    )


REQUEST = WorkflowRequest(source_url="https://github.com/acme/widget")


@pytest.mark.asyncio
async def test_create_workflow_posts_request_and_returns_id():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["key"] = request.headers.get("X-API-Key")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"workflow_id": "wf-1", "status": "started"})

    async with _client(handler) as client:
        workflow_id = await client.create_workflow(REQUEST)

    assert workflow_id == "wf-1"
    assert seen["path"] == "/api/workflow"
    assert seen["key"] == "k-1"
    assert seen["body"]["repository_url"] == "https://github.com/acme/widget"


@pytest.mark.asyncio
async def test_create_workflow_reads_id_from_envelope():
    def handler(request):
        return httpx.Response(200, json={"success": True, "data": {"workflowId": 12}})

    async with _client(handler) as client:
        assert await client.create_workflow(REQUEST) == "12"


@pytest.mark.asyncio
async def test_create_workflow_rejected():
    def handler(request):
        return httpx.Response(422, json={"detail": "Repository not accessible"})

    async with _client(handler) as client:
        with pytest.raises(SubmissionError) as exc_info:
            await client.create_workflow(REQUEST)

    assert exc_info.value.status_code == 422
    assert "Repository not accessible" in str(exc_info.value)


@pytest.mark.asyncio
async def test_create_workflow_without_id():
    def handler(request):
        return httpx.Response(200, json={"status": "started"})

    async with _client(handler) as client:
        with pytest.raises(SubmissionError):
            await client.create_workflow(REQUEST)


@pytest.mark.asyncio
async def test_create_workflow_unreachable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async with _client(handler) as client:
        with pytest.raises(SubmissionError):
            await client.create_workflow(REQUEST)


@pytest.mark.asyncio
async def test_get_status_fills_workflow_id():
    def handler(request):
        assert request.url.path == "/api/workflows/wf-1"
        return httpx.Response(
            200, json={"success": True, "data": {"status": "running", "progress": 35}}
        )

    async with _client(handler) as client:
        update = await client.get_status("wf-1")

    assert update.workflow_id == "wf-1"
    assert update.status is WorkflowStatus.RUNNING
    assert update.progress == 35


@pytest.mark.asyncio
async def test_get_status_errors():
    def failing(request):
        return httpx.Response(500, text="boom")

    async with _client(failing) as client:
        with pytest.raises(BackendError) as exc_info:
            await client.get_status("wf-1")
    assert exc_info.value.status_code == 500

    def garbled(request):
        return httpx.Response(200, json={"status": "sideways"})

    async with _client(garbled) as client:
        with pytest.raises(ParseError):
            await client.get_status("wf-1")


@pytest.mark.asyncio
async def test_success_false_is_an_error():
    def handler(request):
        return httpx.Response(200, json={"success": False, "error": "Not allowed"})

    async with _client(handler) as client:
        with pytest.raises(BackendError, match="Not allowed"):
            await client.get_status("wf-1")


@pytest.mark.asyncio
async def test_list_workflows_skips_malformed_rows():
    def handler(request):
        return httpx.Response(
            200,
            json={
                "success": True,
                "data": [
                    {"id": "wf-1", "status": "completed"},
                    {"status": "running"},
                    {"id": "wf-2", "status": "running", "progress": 20},
                ],
            },
        )

    async with _client(handler) as client:
        rows = await client.list_workflows()

    assert [row.id for row in rows] == ["wf-1", "wf-2"]


@pytest.mark.asyncio
async def test_health_never_raises():
    def healthy(request):
        assert request.url.path == "/health"
        return httpx.Response(200, json={"status": "ok"})

    def down(request):
        raise httpx.ConnectError("refused", request=request)

    async with _client(healthy) as client:
        assert (await client.health())["status"] == "healthy"
    async with _client(down) as client:
        assert (await client.health())["status"] == "unhealthy"


@pytest.mark.asyncio
async def test_search_context_ranks_results():
    def handler(request):
        assert json.loads(request.content) == {"query": "deploy", "limit": 5}
        return httpx.Response(
            200,
            json={
                "success": True,
                "data": [
                    {"chunk_id": 1, "document_id": 1, "content": "a", "similarity": 0.4},
                    {"chunk_id": 2, "document_id": 1, "content": "b", "similarity": 0.9},
                ],
            },
        )

    async with _client(handler) as client:
        results = await client.search_context("deploy", limit=5)

    assert [r.chunk_id for r in results] == [2, 1]


@pytest.mark.asyncio
async def test_context_config_round_trip():
    stored = {}

    def handler(request):
        if request.method == "POST":
            stored.update(json.loads(request.content))
            return httpx.Response(200, json={"success": True, "data": stored})
        return httpx.Response(
            200,
            json={
                "success": True,
                "data": {
                    "chunk_size": 1000,
                    "chunk_overlap": 200,
                    "similarity_threshold": 0.7,
                    "max_results": 10,
                },
            },
        )

    async with _client(handler) as client:
        current = await client.get_context_config()
        assert current == ContextConfig()
        updated = await client.update_context_config(
            current.model_copy(update={"max_results": 5})
        )

    assert updated.max_results == 5
    assert stored["max_results"] == 5
