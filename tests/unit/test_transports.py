"""Status source tests."""

import asyncio
import json

import pytest

from orchestrai.contracts import ProgressUpdate, WorkflowStatus
from orchestrai.errors import BackendError, ParseError, TransportDegraded
from orchestrai.transports import (
    BaseStatusSource,
    InMemoryStatusSource,
    PollingStatusSource,
    StatusSourceAdapter,
    WebSocketStatusSource,
)
from orchestrai.transports.adapter import POLLING_FALLBACK_NOTICE, PUSH_LOST_NOTICE
from orchestrai.transports.push import CONNECTED_NOTICE, RECONNECTED_NOTICE


def _update(status=None, progress=None, workflow_id="wf-1", **fields):
    return ProgressUpdate(
        workflow_id=workflow_id, status=status, progress=progress, **fields
    )


def _frame(**fields) -> str:
    fields.setdefault("workflowId", "wf-1")
    return json.dumps(fields)


class FakeStatusClient:
    """Returns (or raises) the queued responses, repeating the last one."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = 0

    async def get_status(self, workflow_id):
        self.calls += 1
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


class FakeWebSocket:
    def __init__(self, frames=(), error=None):
        self.frames = list(frames)
        self.error = error
        self.closed = False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for frame in self.frames:
            yield frame
        if self.error is not None:
            raise self.error

    async def close(self):
        self.closed = True


def make_connector(*results):
    """Connector returning the queued sockets or raising the queued errors."""
    queue = list(results)
    calls = []

    async def connector(url, additional_headers=None):
        calls.append((url, additional_headers))
        result = queue.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    connector.calls = calls
    return connector


async def _collect(source):
    return [update async for update in source.updates()]


def _messages(updates):
    return [u.message for u in updates]


# ----------------------------------------------------------------------
# In-memory


@pytest.mark.asyncio
async def test_inmemory_source_stops_after_terminal():
    source = InMemoryStatusSource("wf-1")
    await source.connect()
    assert source.connected

    await source.publish(_update("running", 10))
    await source.publish(_update("running", 20, workflow_id="wf-2"))
    await source.publish(_update("completed", 100))
    await source.publish(_update("running", 30))

    updates = await _collect(source)
    assert [u.progress for u in updates] == [10, 100]

    await source.close()
    assert not source.connected
    assert source.closed


@pytest.mark.asyncio
async def test_inmemory_source_cancel_ends_iteration():
    source = InMemoryStatusSource("wf-1")
    task = asyncio.create_task(_collect(source))
    await asyncio.sleep(0)

    source.cancel()
    source.cancel()

    assert await asyncio.wait_for(task, timeout=1) == []


# ----------------------------------------------------------------------
# Polling


@pytest.mark.asyncio
async def test_poll_source_reports_degraded_once_and_recovers():
    notices = []
    client = FakeStatusClient(
        BackendError("down"),
        BackendError("down"),
        BackendError("down"),
        _update("running", 10),
        _update("completed", 100),
    )
    source = PollingStatusSource(
        "wf-1", client, interval=0, failure_budget=1, on_degraded=notices.append
    )

    updates = await _collect(source)

    assert [u.status for u in updates] == [
        WorkflowStatus.RUNNING,
        WorkflowStatus.COMPLETED,
    ]
    assert len(notices) == 1
    assert client.calls == 5


@pytest.mark.asyncio
async def test_poll_source_drops_unparsable_status():
    client = FakeStatusClient(ParseError("bad"), _update("failed", error="boom"))
    source = PollingStatusSource("wf-1", client, interval=0)

    updates = await _collect(source)

    assert len(updates) == 1
    assert updates[0].error == "boom"


@pytest.mark.asyncio
async def test_poll_source_stops_on_cancel():
    client = FakeStatusClient(_update("running", 10))
    source = PollingStatusSource("wf-1", client, interval=60)

    received = []
    async for update in source.updates():
        received.append(update)
        source.cancel()

    assert len(received) == 1
    assert client.calls == 1


# ----------------------------------------------------------------------
# WebSocket


@pytest.mark.asyncio
async def test_push_source_decodes_frames_and_skips_bad_ones():
    ws = FakeWebSocket(
        [
            _frame(status="running", progress=10, message="Cloning"),
            "{garbage",
            _frame(workflowId="wf-2", status="running"),
            _frame(status="completed", progress=100),
            _frame(status="running", progress=5),
        ]
    )
    connector = make_connector(ws)
    source = WebSocketStatusSource(
        "wf-1",
        "ws://backend.test/ws/workflows/wf-1",
        headers={"X-API-Key": "k-1"},
        connector=connector,
    )

    await source.connect()
    updates = await _collect(source)
    await source.close()

    assert _messages(updates) == [CONNECTED_NOTICE, "Cloning", None]
    assert updates[0].synthetic
    assert updates[-1].status is WorkflowStatus.COMPLETED
    assert connector.calls == [
        ("ws://backend.test/ws/workflows/wf-1", {"X-API-Key": "k-1"})
    ]
    assert ws.closed


@pytest.mark.asyncio
async def test_push_source_keeps_channel_after_badly_typed_frames():
    ws = FakeWebSocket(
        [
            _frame(logs=5),
            _frame(progress=[10]),
            '{"workflowId": "wf-1", "progress": Infinity}',
            _frame(status="running", progress=20),
            _frame(status="completed"),
        ]
    )
    source = WebSocketStatusSource(
        "wf-1", "ws://backend.test", connector=make_connector(ws)
    )

    updates = await _collect(source)

    delivered = [u for u in updates if not u.synthetic]
    assert [u.status for u in delivered] == [
        WorkflowStatus.RUNNING,
        WorkflowStatus.COMPLETED,
    ]
    assert delivered[0].progress == 20


@pytest.mark.parametrize("error", [OSError("refused"), asyncio.TimeoutError()])
@pytest.mark.asyncio
async def test_push_source_connect_failure_raises_degraded(error):
    source = WebSocketStatusSource(
        "wf-1", "ws://backend.test", connector=make_connector(error)
    )
    with pytest.raises(TransportDegraded):
        await source.connect()


@pytest.mark.asyncio
async def test_push_source_reconnects_with_gap_notice():
    first = FakeWebSocket([_frame(status="running", progress=10)], error=OSError("reset"))
    second = FakeWebSocket([_frame(status="completed")])
    source = WebSocketStatusSource(
        "wf-1",
        "ws://backend.test",
        reconnect_delay=0,
        connector=make_connector(first, second),
    )

    updates = await _collect(source)

    assert _messages(updates) == [
        CONNECTED_NOTICE,
        None,
        "Connection closed - reconnecting in 0s",
        RECONNECTED_NOTICE,
        None,
    ]
    assert updates[-1].is_terminal
    assert first.closed


@pytest.mark.asyncio
async def test_push_source_exhausts_reconnect_budget():
    source = WebSocketStatusSource(
        "wf-1",
        "ws://backend.test",
        reconnect_delay=0,
        reconnect_budget=1,
        connector=make_connector(
            FakeWebSocket([_frame(status="running")]), OSError("a"), OSError("b")
        ),
    )

    received = []
    with pytest.raises(TransportDegraded):
        async for update in source.updates():
            received.append(update)

    assert len(received) == 3


# ----------------------------------------------------------------------
# Adapter


class ScriptedSource(BaseStatusSource):
    """Yields a fixed list of updates without filtering."""

    def __init__(self, workflow_id, updates):
        super().__init__(workflow_id)
        self.script = list(updates)

    async def updates(self):
        for update in self.script:
            yield update


def test_adapter_requires_a_source():
    with pytest.raises(ValueError):
        StatusSourceAdapter("wf-1")


@pytest.mark.asyncio
async def test_adapter_falls_back_to_polling_when_push_unavailable():
    adapter = StatusSourceAdapter(
        "wf-1",
        push_factory=lambda: WebSocketStatusSource(
            "wf-1", "ws://backend.test", connector=make_connector(OSError("refused"))
        ),
        poll_factory=lambda: PollingStatusSource(
            "wf-1", FakeStatusClient(_update("completed", 100)), interval=0
        ),
    )

    updates = await _collect(adapter)

    assert _messages(updates) == [POLLING_FALLBACK_NOTICE, None]
    assert updates[-1].status is WorkflowStatus.COMPLETED
    assert adapter.strategy is None


@pytest.mark.asyncio
async def test_adapter_falls_back_to_polling_on_handshake_timeout():
    adapter = StatusSourceAdapter(
        "wf-1",
        push_factory=lambda: WebSocketStatusSource(
            "wf-1",
            "ws://backend.test",
            connector=make_connector(asyncio.TimeoutError()),
        ),
        poll_factory=lambda: PollingStatusSource(
            "wf-1", FakeStatusClient(_update("completed", 100)), interval=0
        ),
    )

    updates = await _collect(adapter)

    assert _messages(updates) == [POLLING_FALLBACK_NOTICE, None]
    assert updates[-1].status is WorkflowStatus.COMPLETED


@pytest.mark.asyncio
async def test_push_source_reconnects_after_read_timeout():
    first = FakeWebSocket([_frame(status="running", progress=10)], error=asyncio.TimeoutError())
    second = FakeWebSocket([_frame(status="completed")])
    source = WebSocketStatusSource(
        "wf-1",
        "ws://backend.test",
        reconnect_delay=0,
        connector=make_connector(first, second),
    )

    updates = await _collect(source)

    assert RECONNECTED_NOTICE in _messages(updates)
    assert updates[-1].status is WorkflowStatus.COMPLETED


@pytest.mark.asyncio
async def test_adapter_falls_back_when_push_budget_exhausted():
    adapter = StatusSourceAdapter(
        "wf-1",
        push_factory=lambda: WebSocketStatusSource(
            "wf-1",
            "ws://backend.test",
            reconnect_delay=0,
            reconnect_budget=0,
            connector=make_connector(FakeWebSocket(), OSError("gone")),
        ),
        poll_factory=lambda: PollingStatusSource(
            "wf-1", FakeStatusClient(_update("completed", 90)), interval=0
        ),
    )

    updates = await _collect(adapter)

    assert _messages(updates) == [
        CONNECTED_NOTICE,
        "Connection closed - reconnecting in 0s",
        PUSH_LOST_NOTICE,
        None,
    ]


@pytest.mark.asyncio
async def test_push_only_adapter_reports_degraded():
    notices = []
    adapter = StatusSourceAdapter(
        "wf-1",
        push_factory=lambda: WebSocketStatusSource(
            "wf-1", "ws://backend.test", connector=make_connector(OSError("refused"))
        ),
        on_degraded=notices.append,
    )

    assert await _collect(adapter) == []
    assert len(notices) == 1


@pytest.mark.asyncio
async def test_adapter_delivers_single_terminal_for_its_workflow():
    script = [
        _update("running", 10),
        _update("running", 50, workflow_id="wf-2"),
        _update("completed", 100),
        _update("failed", error="late"),
    ]
    adapter = StatusSourceAdapter(
        "wf-1", poll_factory=lambda: ScriptedSource("wf-1", script)
    )

    updates = await _collect(adapter)

    assert [u.status for u in updates] == [
        WorkflowStatus.RUNNING,
        WorkflowStatus.COMPLETED,
    ]


@pytest.mark.asyncio
async def test_adapter_delivers_nothing_after_cancel():
    source = InMemoryStatusSource("wf-1")
    adapter = StatusSourceAdapter("wf-1", poll_factory=lambda: source)
    received = []
    first = asyncio.Event()

    async def consume():
        async for update in adapter.updates():
            received.append(update)
            first.set()

    task = asyncio.create_task(consume())
    await source.publish(_update("running", 10))
    await asyncio.wait_for(first.wait(), timeout=1)

    adapter.cancel()
    await source.publish(_update("running", 20))
    await asyncio.wait_for(task, timeout=1)
    await adapter.close()

    assert [u.progress for u in received] == [10]
    assert adapter.closed
    assert source.closed
