import asyncio
import json

import pytest

from conftest import ACK, PROGRAM_ID, FakeConnector, FakeWebSocket, make_frame, wait_until
from errors import ConnectError
from stream_connection import ConnectionState, StreamConnection, build_subscribe_request


def make_connection(connector, events=None, **kwargs):
    async def on_event(event):
        if events is not None:
            events.append(event.mint_address)

    kwargs.setdefault('reconnect_delay', 0.01)
    kwargs.setdefault('connect_timeout', 0.5)
    return StreamConnection(on_event, program_id=PROGRAM_ID, ws_url="wss://rpc.test",
                            connector=connector, **kwargs)


def test_subscribe_request_shape():
    assert build_subscribe_request(PROGRAM_ID) == {
        "jsonrpc": "2.0",
        "id": 1,
        "method": "programSubscribe",
        "params": [PROGRAM_ID, {"encoding": "jsonParsed", "commitment": "confirmed"}],
    }


@pytest.mark.asyncio
async def test_open_subscribes_and_waits_for_ack():
    ws = FakeWebSocket()
    conn = make_connection(FakeConnector([ws]))

    await conn.open()

    assert ws.sent == [build_subscribe_request(PROGRAM_ID)]
    assert conn.state is ConnectionState.SUBSCRIBED
    assert conn.subscription_id == 42

    await conn.close()
    assert ws.closed
    assert conn.state is ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_connect_timeout_is_a_connect_error():
    conn = make_connection(FakeConnector(hang=True), connect_timeout=0.05)

    with pytest.raises(ConnectError):
        await conn.open()


@pytest.mark.asyncio
async def test_rejected_subscribe_is_a_connect_error():
    rejection = json.dumps({"jsonrpc": "2.0", "error": {"code": -32602, "message": "Invalid param"}, "id": 1})
    conn = make_connection(FakeConnector([FakeWebSocket(ack=rejection)]))

    with pytest.raises(ConnectError):
        await conn.open()
    await conn.close()


@pytest.mark.asyncio
async def test_missing_ack_is_a_connect_error():
    conn = make_connection(FakeConnector([FakeWebSocket(ack=None)]), connect_timeout=0.05)

    with pytest.raises(ConnectError):
        await conn.open()
    await conn.close()


def test_malformed_frame_is_dropped_not_raised():
    conn = make_connection(FakeConnector())

    assert conn.on_frame("{broken") is None
    assert conn.on_frame(make_frame(accounts=[PROGRAM_ID])) is None
    assert conn.dropped_frames == 2
    assert conn.on_frame(make_frame()).mint_address == "MintAddrXYZ"


@pytest.mark.asyncio
async def test_events_are_delivered_in_arrival_order():
    events = []
    ws = FakeWebSocket(frames=[
        make_frame("Mint1"),
        "garbage",
        make_frame("Mint2", logs=["Program log: Instruction: Buy"]),
        make_frame("Mint3"),
    ])
    conn = make_connection(FakeConnector([ws]), events)
    task = asyncio.create_task(conn.run())

    await wait_until(lambda: len(events) == 2)
    await conn.stop()
    await asyncio.wait_for(task, 1)

    assert events == ["Mint1", "Mint3"]
    assert conn.dropped_frames == 1
    assert conn.reconnect_count == 0
    assert ws.closed
    assert conn.state is ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_notifications_before_ack_are_not_lost():
    events = []
    ws = FakeWebSocket(ack=None, frames=[make_frame("Early"), ACK, make_frame("Late")])
    conn = make_connection(FakeConnector([ws]), events)
    task = asyncio.create_task(conn.run())

    await wait_until(lambda: len(events) == 2)
    await conn.stop()
    await asyncio.wait_for(task, 1)

    assert events == ["Early", "Late"]


@pytest.mark.asyncio
async def test_heartbeat_pings_while_idle_without_reconnecting():
    ws = FakeWebSocket()
    conn = make_connection(FakeConnector([ws]), heartbeat_interval=0.02)
    task = asyncio.create_task(conn.run())

    await wait_until(lambda: ws.pings >= 3)
    await conn.stop()
    await asyncio.wait_for(task, 1)

    assert conn.heartbeats_sent >= 3
    assert conn.reconnect_count == 0


@pytest.mark.asyncio
async def test_reconnects_after_transport_close_and_resumes():
    events = []
    first = FakeWebSocket()
    second = FakeWebSocket(frames=[make_frame("AfterReconnect")])
    connector = FakeConnector([first, second])
    conn = make_connection(connector, events, reconnect_delay=0.05)
    task = asyncio.create_task(conn.run())

    await wait_until(lambda: conn.state is ConnectionState.RECEIVING)
    loop = asyncio.get_running_loop()
    dropped_at = loop.time()
    first.drop()

    await wait_until(lambda: len(connector.opened) == 2)
    reconnected_after = loop.time() - dropped_at
    await wait_until(lambda: events == ["AfterReconnect"])
    await conn.stop()
    await asyncio.wait_for(task, 1)

    assert reconnected_after >= 0.04
    assert conn.reconnect_count == 1
    assert first.closed
    assert second.sent == [build_subscribe_request(PROGRAM_ID)]


@pytest.mark.asyncio
async def test_three_connect_failures_then_success():
    events = []
    ws = FakeWebSocket(frames=[make_frame("Eventually")])
    connector = FakeConnector([ws], failures=3)
    conn = make_connection(connector, events)
    task = asyncio.create_task(conn.run())

    await wait_until(lambda: events == ["Eventually"])
    await conn.stop()
    await asyncio.wait_for(task, 1)

    assert connector.calls == 4
    assert conn.connect_attempts == 4
    assert conn.reconnect_count == 3


@pytest.mark.asyncio
async def test_stop_during_reconnect_wait_ends_run_promptly():
    connector = FakeConnector(failures=100)
    conn = make_connection(connector, reconnect_delay=30)
    task = asyncio.create_task(conn.run())

    await wait_until(lambda: conn.state is ConnectionState.RECONNECTING)
    await conn.stop()
    await asyncio.wait_for(task, 1)

    assert connector.calls == 1
    assert conn.state is ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_cancellation_closes_the_transport():
    ws = FakeWebSocket()
    conn = make_connection(FakeConnector([ws]))
    task = asyncio.create_task(conn.run())

    await wait_until(lambda: conn.state is ConnectionState.RECEIVING)
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)

    assert ws.closed
    assert conn.state is ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_no_event_after_stop_even_if_frame_is_queued():
    events = []
    ws = FakeWebSocket()
    conn = make_connection(FakeConnector([ws]), events)
    task = asyncio.create_task(conn.run())

    await wait_until(lambda: conn.state is ConnectionState.RECEIVING)
    await conn.stop()
    ws.feed(make_frame("TooLate"))
    await asyncio.wait_for(task, 1)

    assert events == []


@pytest.mark.asyncio
async def test_mistyped_fields_do_not_end_the_monitoring_task():
    events = []
    ws = FakeWebSocket(frames=[
        make_frame("NumericSig", signature=12345),
        make_frame("NumericKey", accounts=[PROGRAM_ID, 12345]),
        make_frame("GoodMint"),
    ])
    conn = make_connection(FakeConnector([ws]), events)
    task = asyncio.create_task(conn.run())

    await wait_until(lambda: len(events) == 2)

    assert events == ["NumericSig", "GoodMint"]
    assert conn.dropped_frames == 1
    assert not task.done()
    assert conn.state is ConnectionState.RECEIVING

    await conn.stop()
    await asyncio.wait_for(task, 1)


@pytest.mark.asyncio
async def test_handler_error_reconnects_instead_of_crashing():
    events = []

    async def on_event(event):
        if not events:
            events.append(None)
            raise RuntimeError("handler blew up")
        events.append(event.mint_address)

    first = FakeWebSocket(frames=[make_frame("Boom")])
    second = FakeWebSocket(frames=[make_frame("Recovered")])
    connector = FakeConnector([first, second])
    conn = StreamConnection(on_event, program_id=PROGRAM_ID, ws_url="wss://rpc.test",
                            connector=connector, reconnect_delay=0.01, connect_timeout=0.5)
    task = asyncio.create_task(conn.run())

    await wait_until(lambda: "Recovered" in events)

    assert not task.done()
    assert first.closed
    assert conn.reconnect_count == 1

    await conn.stop()
    await asyncio.wait_for(task, 1)
