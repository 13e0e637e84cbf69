import asyncio
import json
import os
import sys

import pytest
from websockets.exceptions import ConnectionClosedError

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, ROOT)

from errors import DeliveryError  # noqa: E402

PROGRAM_ID = "6EF8rrecthR5Dkzon8Nwu78hRvfCKubJ14M5uBEwF6P"
MINT_LOG = "Program log: Instruction: InitializeMint2"
ACK = json.dumps({"jsonrpc": "2.0", "result": 42, "id": 1})

_CLOSE = object()


def make_frame(mint="MintAddrXYZ", logs=None, signature="5igSig", accounts=None):
    if logs is None:
        logs = [
            f"Program {PROGRAM_ID} invoke [1]",
            MINT_LOG,
            f"Program {PROGRAM_ID} success",
        ]
    if accounts is None:
        accounts = [PROGRAM_ID, mint, "CreatorWallet111"]
    return json.dumps({
        "jsonrpc": "2.0",
        "method": "programNotification",
        "params": {
            "subscription": 42,
            "result": {
                "context": {"slot": 123},
                "value": {
                    "signature": signature,
                    "transaction": {
                        "meta": {"logMessages": logs},
                        "transaction": {
                            "message": {"accountKeys": [{"pubkey": a} for a in accounts]}
                        },
                    },
                },
            },
        },
    })


class FakeWebSocket:
    """In-memory stand-in for a websockets client connection"""

    def __init__(self, frames=(), ack=ACK):
        self.sent = []
        self.pings = 0
        self.closed = False
        self._queue = asyncio.Queue()
        if ack is not None:
            self._queue.put_nowait(ack)
        for frame in frames:
            self._queue.put_nowait(frame)

    def feed(self, frame):
        self._queue.put_nowait(frame)

    def drop(self):
        """Simulate the server closing the connection"""
        self._queue.put_nowait(_CLOSE)

    async def send(self, data):
        self.sent.append(json.loads(data))

    async def recv(self):
        if self.closed:
            raise ConnectionClosedError(None, None)
        item = await self._queue.get()
        if item is _CLOSE:
            self.closed = True
            raise ConnectionClosedError(None, None)
        return item

    async def ping(self):
        self.pings += 1

    async def close(self):
        if not self.closed:
            self.closed = True
            self._queue.put_nowait(_CLOSE)


class FakeConnector:
    """Replaces websockets.connect; fails the first `failures` attempts"""

    def __init__(self, sockets=(), failures=0, hang=False):
        self.sockets = list(sockets)
        self.failures = failures
        self.hang = hang
        self.calls = 0
        self.opened = []

    async def __call__(self, url, **kwargs):
        self.calls += 1
        if self.hang:
            await asyncio.sleep(3600)
        if self.failures > 0:
            self.failures -= 1
            raise OSError("connection refused")
        ws = self.sockets.pop(0) if self.sockets else FakeWebSocket()
        self.opened.append(ws)
        return ws


class FakeNotifier:
    def __init__(self, fail=False):
        self.fail = fail
        self.messages = []

    async def send_message(self, chat_id, text, reply_markup=None, parse_mode="HTML"):
        if self.fail:
            raise DeliveryError("chat not found", status=400)
        self.messages.append((chat_id, text, reply_markup))
        return {"ok": True}

    async def answer_callback_query(self, callback_query_id):
        return {"ok": True}

    async def get_updates(self, offset, timeout):
        return []


class FakeEnricher:
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    async def enrich(self, mint):
        from token_enricher import TokenInfo
        self.calls.append(mint)
        if self.fail:
            raise RuntimeError("birdeye down")
        return TokenInfo(mint=mint, name="Doge Killer", symbol="DK", price=0.000012,
                         liquidity=1500.0, market_cap=42000.0)


async def wait_until(predicate, timeout=2.0, interval=0.005):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def enricher():
    return FakeEnricher()
