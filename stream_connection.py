"""
Stream Connection - one websocket programSubscribe session per subscription
Explicit receive loop: connect, subscribe, heartbeat, receive, reconnect.
"""

import asyncio
import json
import logging
from collections import deque
from enum import Enum
from typing import Awaitable, Callable, Optional

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from config import (
    RPC_WS_URL, PUMP_FUN_PROGRAM_ID, SUBSCRIBE_COMMITMENT,
    RECONNECT_DELAY_SECONDS, HEARTBEAT_INTERVAL_SECONDS,
    CONNECT_TIMEOUT_SECONDS, CLOSE_TIMEOUT_SECONDS,
)
from errors import ConnectError, ProtocolError, TransportClosed
from log_event_extractor import TokenEvent, decode_frame, extract_token_event, is_subscription_ack

logger = logging.getLogger(__name__)

SUBSCRIBE_REQUEST_ID = 1


class ConnectionState(Enum):
    DISCONNECTED = 'disconnected'
    CONNECTING = 'connecting'
    SUBSCRIBED = 'subscribed'
    RECEIVING = 'receiving'
    HEARTBEAT_DUE = 'heartbeat_due'
    CLOSING = 'closing'
    RECONNECTING = 'reconnecting'


def build_subscribe_request(program_id) -> dict:
    return {
        "jsonrpc": "2.0",
        "id": SUBSCRIBE_REQUEST_ID,
        "method": "programSubscribe",
        "params": [
            str(program_id),
            {"encoding": "jsonParsed", "commitment": SUBSCRIBE_COMMITMENT}
        ]
    }


class StreamConnection:
    """Owns one transport handle; only its monitoring task touches it"""

    def __init__(self, on_event: Callable[[TokenEvent], Awaitable[None]],
                 program_id=PUMP_FUN_PROGRAM_ID,
                 ws_url: str = RPC_WS_URL,
                 connector: Optional[Callable] = None,
                 reconnect_delay: float = RECONNECT_DELAY_SECONDS,
                 heartbeat_interval: float = HEARTBEAT_INTERVAL_SECONDS,
                 connect_timeout: float = CONNECT_TIMEOUT_SECONDS,
                 name: str = "stream"):
        self.on_event = on_event
        self.program_id = str(program_id)
        self.ws_url = ws_url
        self._connect = connector or websockets.connect
        self.reconnect_delay = reconnect_delay
        self.heartbeat_interval = heartbeat_interval
        self.connect_timeout = connect_timeout
        self.name = name

        self.state = ConnectionState.DISCONNECTED
        self.subscription_id = None
        self._ws = None
        self._pending = deque()  # notifications that arrived before the ack
        self._next_heartbeat = 0.0
        self._stopped = asyncio.Event()

        # Statistics
        self.connect_attempts = 0
        self.reconnect_count = 0
        self.frames_received = 0
        self.dropped_frames = 0
        self.heartbeats_sent = 0

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    async def open(self):
        """Connect and subscribe; raises ConnectError on any failure"""
        self.state = ConnectionState.CONNECTING
        self.connect_attempts += 1
        logger.info(f"🔍 [{self.name}] Connecting to websocket (attempt #{self.connect_attempts})...")

        try:
            self._ws = await asyncio.wait_for(self._dial(), timeout=self.connect_timeout)
        except asyncio.TimeoutError as e:
            raise ConnectError(f"connect timed out after {self.connect_timeout}s") from e
        except (OSError, WebSocketException) as e:
            raise ConnectError(f"connect failed: {e}") from e

        try:
            await self._ws.send(json.dumps(build_subscribe_request(self.program_id)))
            self.subscription_id = await asyncio.wait_for(self._await_ack(), timeout=self.connect_timeout)
        except asyncio.TimeoutError as e:
            raise ConnectError(f"no subscribe ack within {self.connect_timeout}s") from e
        except ConnectionClosed as e:
            raise ConnectError(f"closed during subscribe: {e}") from e

        self.state = ConnectionState.SUBSCRIBED
        self._next_heartbeat = asyncio.get_running_loop().time() + self.heartbeat_interval
        logger.info(f"📡 [{self.name}] Subscribed to program {self.program_id[:8]}... "
                    f"(subscription id: {self.subscription_id})")

    async def _dial(self):
        return await self._connect(
            self.ws_url,
            ping_interval=None,
            close_timeout=CLOSE_TIMEOUT_SECONDS,
        )

    async def _await_ack(self):
        while True:
            raw = await self._ws.recv()
            try:
                message = decode_frame(raw)
            except ProtocolError as e:
                self.dropped_frames += 1
                logger.warning(f"[{self.name}] Dropping frame before ack: {e}")
                continue

            if is_subscription_ack(message) and message.get('id') == SUBSCRIBE_REQUEST_ID:
                if 'error' in message:
                    raise ConnectError(f"subscribe rejected: {message['error']}")
                return message.get('result')

            self._pending.append(message)

    async def heartbeat(self):
        """Keep-alive ping; a missing pong is not a failure"""
        self.state = ConnectionState.HEARTBEAT_DUE
        try:
            await self._ws.ping()
        except ConnectionClosed as e:
            raise TransportClosed(f"closed during heartbeat: {e}") from e
        self.heartbeats_sent += 1
        self._next_heartbeat = asyncio.get_running_loop().time() + self.heartbeat_interval
        logger.debug(f"[{self.name}] ping sent")
        self.state = ConnectionState.RECEIVING

    def on_frame(self, raw) -> Optional[TokenEvent]:
        self.frames_received += 1
        try:
            return extract_token_event(raw)
        except ProtocolError as e:
            self.dropped_frames += 1
            logger.warning(f"[{self.name}] Dropping malformed frame: {e}")
            return None

    async def _next_frame(self):
        loop = asyncio.get_running_loop()
        while True:
            if self._pending:
                return self._pending.popleft()

            timeout = self._next_heartbeat - loop.time()
            if timeout <= 0:
                await self.heartbeat()
                continue

            self.state = ConnectionState.RECEIVING
            try:
                return await asyncio.wait_for(self._ws.recv(), timeout=timeout)
            except asyncio.TimeoutError:
                await self.heartbeat()
            except ConnectionClosed as e:
                rcvd = getattr(e, 'rcvd', None)
                raise TransportClosed(
                    f"websocket closed: {e}",
                    code=getattr(rcvd, 'code', None),
                    reason=getattr(rcvd, 'reason', ''),
                ) from e

    async def _receive_loop(self):
        while not self.stopped:
            try:
                raw = await self._next_frame()
            except TransportClosed:
                if self.stopped:
                    return
                raise

            event = self.on_frame(raw)
            if event is None or self.stopped:
                continue

            logger.info(f"🚀 [{self.name}] New mint detected: {event.mint_address} "
                        f"(sig: {(event.signature or '?')[:20]}...)")
            await self.on_event(event)

    async def close(self):
        """Release the transport handle; safe to call repeatedly"""
        ws, self._ws = self._ws, None
        self._pending.clear()
        if ws is None:
            return
        self.state = ConnectionState.CLOSING
        try:
            await ws.close()
        except Exception as e:
            logger.debug(f"[{self.name}] Error while closing websocket: {e}")
        finally:
            self.state = ConnectionState.DISCONNECTED

    async def stop(self):
        """Cooperative cancel: no reconnect after this, unblocks a pending recv"""
        if self.stopped:
            return
        self._stopped.set()
        logger.info(f"🛑 [{self.name}] Stop requested")
        if self._ws is not None:
            try:
                await self._ws.close()
            except Exception as e:
                logger.debug(f"[{self.name}] Error while closing websocket: {e}")

    async def run(self):
        """Monitoring loop; returns only after stop()"""
        try:
            while not self.stopped:
                try:
                    await self.open()
                    await self._receive_loop()
                except ConnectError as e:
                    logger.warning(f"⚠️ [{self.name}] {e}")
                except TransportClosed as e:
                    logger.info(f"[{self.name}] Websocket closed ({e})")
                except (OSError, WebSocketException) as e:
                    logger.error(f"[{self.name}] Websocket error: {e}")
                except Exception as e:
                    logger.exception(f"❌ [{self.name}] Unexpected error in monitoring loop: {e}")
                finally:
                    await self.close()

                if self.stopped:
                    break

                self.reconnect_count += 1
                self.state = ConnectionState.RECONNECTING
                logger.info(f"[{self.name}] Reconnecting in {self.reconnect_delay}s... "
                            f"(attempt #{self.reconnect_count})")
                try:
                    await asyncio.wait_for(self._stopped.wait(), timeout=self.reconnect_delay)
                except asyncio.TimeoutError:
                    pass
        finally:
            await self.close()
            self.state = ConnectionState.DISCONNECTED
            logger.info(f"[{self.name}] Connection terminated")

    def get_stats(self) -> dict:
        return {
            'state': self.state.value,
            'connect_attempts': self.connect_attempts,
            'reconnects': self.reconnect_count,
            'frames': self.frames_received,
            'dropped_frames': self.dropped_frames,
            'heartbeats': self.heartbeats_sent,
        }
