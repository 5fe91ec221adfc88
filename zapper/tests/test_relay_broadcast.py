"""Tests for concurrent relay publishing (relay_broadcast.py).

Uses aiohttp's TestServer to run fake websocket relays on a local port.
The path picks the relay's behaviour:
  /ok      NOTICE, an OK for some other event, then OK true
  /reject  OK false with a reason
  /silent  reads the EVENT and never answers
  /close   closes the socket after the EVENT

Run: cd zapper && python -m pytest tests/test_relay_broadcast.py -v
"""

from __future__ import annotations

import json
import time

import pytest
import pytest_asyncio
from aiohttp import WSMsgType, web
from aiohttp.test_utils import TestServer

from relay_broadcast import RelayBroadcaster, RelayOutcome
from zap_receipt import ZapReceipt

RECEIPT = ZapReceipt(
    id="ab" * 32,
    pubkey="cd" * 32,
    created_at=1700000000,
    kind=9735,
    content="gm",
    tags=(("p", "aa" * 32), ("bolt11", "lnbc1fake")),
    sig="ef" * 64,
)

_received_key = web.AppKey("received", list)


async def _relay_handler(request: web.Request) -> web.WebSocketResponse:
    mode = request.match_info["mode"]
    ws = web.WebSocketResponse()
    await ws.prepare(request)

    async for msg in ws:
        if msg.type != WSMsgType.TEXT:
            continue
        data = json.loads(msg.data)
        request.app[_received_key].append((mode, data))
        if data[0] != "EVENT":
            continue
        event_id = data[1]["id"]

        if mode == "ok":
            await ws.send_str(json.dumps(["NOTICE", "welcome"]))
            await ws.send_str(json.dumps(["OK", "00" * 32, False, "not yours"]))
            await ws.send_str(json.dumps(["OK", event_id, True, ""]))
        elif mode == "reject":
            await ws.send_str(json.dumps(["OK", event_id, False, "blocked: spam"]))
        elif mode == "close":
            await ws.close()
    return ws


@pytest_asyncio.fixture
async def relay_server() -> TestServer:
    """Yield a running fake relay server."""
    app = web.Application()
    app[_received_key] = []
    app.router.add_get("/{mode}", _relay_handler)
    server = TestServer(app)
    await server.start_server()
    yield server
    await server.close()


def _url(server: TestServer, mode: str) -> str:
    return f"ws://{server.host}:{server.port}/{mode}"


# -- Acknowledgments -----------------------------------------------------------


@pytest.mark.asyncio
async def test_single_relay_accepts(relay_server: TestServer) -> None:
    url = _url(relay_server, "ok")
    outcomes = await RelayBroadcaster().broadcast([url], RECEIPT)
    assert outcomes == [RelayOutcome(url=url, ok=True, message="")]


@pytest.mark.asyncio
async def test_relay_receives_event_message(relay_server: TestServer) -> None:
    await RelayBroadcaster().broadcast([_url(relay_server, "ok")], RECEIPT)
    received = relay_server.app[_received_key]
    assert len(received) == 1
    mode, data = received[0]
    assert data == ["EVENT", RECEIPT.to_dict()]


@pytest.mark.asyncio
async def test_relay_rejects(relay_server: TestServer) -> None:
    url = _url(relay_server, "reject")
    outcomes = await RelayBroadcaster().broadcast([url], RECEIPT)
    assert outcomes == [RelayOutcome(url=url, ok=False, message="blocked: spam")]


@pytest.mark.asyncio
async def test_relay_closes_before_ok(relay_server: TestServer) -> None:
    outcomes = await RelayBroadcaster().broadcast([_url(relay_server, "close")], RECEIPT)
    assert outcomes[0].ok is False
    assert outcomes[0].timed_out is False
    assert "closed" in outcomes[0].message


# -- Timeouts and isolation ----------------------------------------------------


@pytest.mark.asyncio
async def test_silent_relay_times_out(relay_server: TestServer) -> None:
    outcomes = await RelayBroadcaster().broadcast(
        [_url(relay_server, "silent")], RECEIPT, timeout_ms=200
    )
    assert outcomes[0].ok is False
    assert outcomes[0].timed_out is True


@pytest.mark.asyncio
async def test_one_silent_relay_does_not_block_others(relay_server: TestServer) -> None:
    """N relays, one never answers: N-1 successes + 1 timeout, bounded by the timeout."""
    urls = [
        _url(relay_server, "ok"),
        _url(relay_server, "silent"),
        _url(relay_server, "ok") + "?second",
    ]
    started = time.monotonic()
    outcomes = await RelayBroadcaster(timeout_ms=300).broadcast(urls, RECEIPT)
    elapsed = time.monotonic() - started

    assert [o.url for o in outcomes] == urls
    assert [o.ok for o in outcomes] == [True, False, True]
    assert outcomes[1].timed_out is True
    assert elapsed < 2.0


@pytest.mark.asyncio
async def test_mixed_outcomes(relay_server: TestServer) -> None:
    urls = [_url(relay_server, m) for m in ("ok", "reject", "silent", "close")]
    outcomes = await RelayBroadcaster().broadcast(urls, RECEIPT, timeout_ms=300)
    assert [o.ok for o in outcomes] == [True, False, False, False]
    assert [o.timed_out for o in outcomes] == [False, False, True, False]


@pytest.mark.asyncio
async def test_unreachable_relay_is_isolated(relay_server: TestServer) -> None:
    good = _url(relay_server, "ok")
    bad = "ws://127.0.0.1:1/"
    outcomes = await RelayBroadcaster(timeout_ms=2000).broadcast([bad, good], RECEIPT)
    assert outcomes[0].url == bad
    assert outcomes[0].ok is False
    assert outcomes[1] == RelayOutcome(url=good, ok=True, message="")


@pytest.mark.asyncio
async def test_unexpected_error_becomes_outcome(
    relay_server: TestServer, monkeypatch: pytest.MonkeyPatch
) -> None:
    async def boom(self, ws, url, message, event_id):
        raise RuntimeError("relay exploded")

    monkeypatch.setattr(RelayBroadcaster, "_publish", boom)
    outcomes = await RelayBroadcaster().broadcast([_url(relay_server, "ok")], RECEIPT)
    assert outcomes[0].ok is False
    assert "relay exploded" in outcomes[0].message


@pytest.mark.asyncio
async def test_no_relays() -> None:
    assert await RelayBroadcaster().broadcast([], RECEIPT) == []
