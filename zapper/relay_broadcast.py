"""Concurrent zap receipt publishing to Nostr relays.

Each relay gets its own websocket and its own timer:
  1. the timer covers the websocket handshake
  2. once open, the timer restarts and ["EVENT", receipt] is sent
  3. the relay's ["OK", id, accepted, message] resolves that relay

Relays run in parallel and never affect each other. broadcast() returns
one RelayOutcome per relay and never raises: a partial broadcast is a
normal result, logged per URL.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass

import aiohttp
from aiohttp import ClientWSTimeout, WSMsgType

from config import DEFAULT_RELAY_TIMEOUT_MS
from zap_receipt import ZapReceipt

log = logging.getLogger(__name__)

# How long closing a socket may wait for the relay's close frame.
_CLOSE_TIMEOUT_SECONDS = 1.0


@dataclass(frozen=True)
class RelayOutcome:
    url: str
    ok: bool
    message: str
    timed_out: bool = False


class RelayBroadcaster:
    """Publishes signed events to a set of relays with per-relay timeouts."""

    def __init__(self, timeout_ms: int = DEFAULT_RELAY_TIMEOUT_MS) -> None:
        self._timeout_ms = timeout_ms

    async def broadcast(
        self,
        urls: list[str] | tuple[str, ...],
        receipt: ZapReceipt,
        timeout_ms: int | None = None,
    ) -> list[RelayOutcome]:
        """Send receipt to every relay and wait for all of them to resolve."""
        if not urls:
            log.info("Receipt %s: no relays to publish to", receipt.id[:16])
            return []

        timeout = (timeout_ms if timeout_ms is not None else self._timeout_ms) / 1000
        message = json.dumps(["EVENT", receipt.to_dict()], ensure_ascii=False)

        async with aiohttp.ClientSession() as session:
            results = await asyncio.gather(
                *(self._send_one(session, url, message, receipt.id, timeout) for url in urls),
                return_exceptions=True,
            )

        outcomes: list[RelayOutcome] = []
        for url, result in zip(urls, results):
            if isinstance(result, BaseException):
                log.error(
                    "Receipt %s: unexpected error publishing to %s",
                    receipt.id[:16], url, exc_info=result,
                )
                result = RelayOutcome(url=url, ok=False, message=f"error: {result}")
            outcomes.append(result)

        accepted = sum(1 for o in outcomes if o.ok)
        log.info(
            "Receipt %s: accepted by %d/%d relay(s)",
            receipt.id[:16], accepted, len(outcomes),
        )
        return outcomes

    async def _send_one(
        self,
        session: aiohttp.ClientSession,
        url: str,
        message: str,
        event_id: str,
        timeout: float,
    ) -> RelayOutcome:
        """Connect, publish and await the OK for a single relay."""
        try:
            ws = await asyncio.wait_for(
                session.ws_connect(
                    url,
                    timeout=ClientWSTimeout(ws_receive=None, ws_close=_CLOSE_TIMEOUT_SECONDS),
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            log.warning("Relay %s: timed out connecting", url)
            return RelayOutcome(url=url, ok=False, message="timeout connecting", timed_out=True)
        except (aiohttp.ClientError, OSError, ValueError) as exc:
            log.warning("Relay %s: connection failed: %s", url, exc)
            return RelayOutcome(url=url, ok=False, message=f"connection failed: {exc}")

        try:
            outcome = await asyncio.wait_for(
                self._publish(ws, url, message, event_id), timeout=timeout
            )
        except asyncio.TimeoutError:
            log.warning("Relay %s: no OK for %s within %.1fs", url, event_id[:16], timeout)
            outcome = RelayOutcome(url=url, ok=False, message="timeout waiting for OK", timed_out=True)
        except (aiohttp.ClientError, OSError) as exc:
            outcome = RelayOutcome(url=url, ok=False, message=f"send failed: {exc}")
        finally:
            await ws.close()

        if outcome.ok:
            log.info("Relay %s: accepted %s", url, event_id[:16])
        elif not outcome.timed_out:
            log.warning("Relay %s: rejected %s: %s", url, event_id[:16], outcome.message)
        return outcome

    async def _publish(
        self,
        ws: aiohttp.ClientWebSocketResponse,
        url: str,
        message: str,
        event_id: str,
    ) -> RelayOutcome:
        await ws.send_str(message)

        async for msg in ws:
            if msg.type != WSMsgType.TEXT:
                if msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSED, WSMsgType.ERROR):
                    break
                continue
            try:
                data = json.loads(msg.data)
            except ValueError:
                log.debug("Relay %s: ignoring non-JSON frame", url)
                continue
            if not isinstance(data, list) or not data:
                continue

            if data[0] == "OK" and len(data) >= 3 and data[1] == event_id:
                reason = data[3] if len(data) > 3 and isinstance(data[3], str) else ""
                return RelayOutcome(url=url, ok=data[2] is True, message=reason)
            if data[0] == "NOTICE" and len(data) >= 2:
                log.debug("Relay %s: NOTICE %s", url, data[1])

        return RelayOutcome(url=url, ok=False, message="connection closed before OK")
