"""
Log Event Extractor - turn a programSubscribe notification into a TokenEvent
Pure: no I/O, no state. Matches the mint-initialization log line like the
old log monitors did, then reads the mint from its fixed account slot.
"""

import json
import time
from dataclasses import dataclass, field
from typing import Optional, Tuple, Union

from config import MINT_INIT_LOG, MINT_ACCOUNT_INDEX
from errors import MalformedFrame


@dataclass(frozen=True)
class TokenEvent:
    mint_address: str
    involved_accounts: Tuple[str, ...]
    signature: Optional[str] = None
    observed_at: float = field(default_factory=time.time)


def _require(container, key: str, path: str):
    if not isinstance(container, dict) or key not in container or container[key] is None:
        raise MalformedFrame(f"missing field: {path}")
    return container[key]


def _account_key(entry) -> str:
    # jsonParsed gives {"pubkey": ..., "signer": ..., "writable": ...}
    if isinstance(entry, dict):
        pubkey = entry.get('pubkey')
    else:
        pubkey = entry
    if not isinstance(pubkey, str) or not pubkey:
        raise MalformedFrame(f"bad account key entry: {entry!r}")
    return pubkey


def decode_frame(raw: Union[str, bytes, dict]) -> dict:
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode('utf-8')
        except UnicodeDecodeError as e:
            raise MalformedFrame(f"frame is not utf-8: {e}") from e
    try:
        message = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedFrame(f"frame is not JSON: {e}") from e
    if not isinstance(message, dict):
        raise MalformedFrame("frame is not a JSON object")
    return message


def is_subscription_ack(message: dict) -> bool:
    return 'id' in message and ('result' in message or 'error' in message) and 'params' not in message


def extract_token_event(raw, pattern: str = MINT_INIT_LOG,
                        observed_at: Optional[float] = None) -> Optional[TokenEvent]:
    """
    Classify one stream frame.

    Returns a TokenEvent when any log line contains the mint-initialization
    pattern, None for anything else (acks, other instructions). Raises
    MalformedFrame if a notification lacks the fields needed to decide.
    """
    message = decode_frame(raw)

    params = message.get('params')
    if params is None:
        return None

    result = _require(params, 'result', 'params.result')
    value = _require(result, 'value', 'params.result.value')
    transaction = _require(value, 'transaction', 'value.transaction')
    meta = _require(transaction, 'meta', 'value.transaction.meta')
    logs = _require(meta, 'logMessages', 'value.transaction.meta.logMessages')
    if not isinstance(logs, list):
        raise MalformedFrame("logMessages is not a list")

    if not any(isinstance(line, str) and pattern in line for line in logs):
        return None

    inner = _require(transaction, 'transaction', 'value.transaction.transaction')
    msg = _require(inner, 'message', 'value.transaction.transaction.message')
    account_keys = _require(msg, 'accountKeys', 'value.transaction.transaction.message.accountKeys')
    if not isinstance(account_keys, list):
        raise MalformedFrame("accountKeys is not a list")

    accounts = tuple(_account_key(entry) for entry in account_keys)
    if len(accounts) <= MINT_ACCOUNT_INDEX:
        raise MalformedFrame(f"expected at least {MINT_ACCOUNT_INDEX + 1} account keys, got {len(accounts)}")

    signature = value.get('signature') or result.get('signature') or message.get('signature')
    if not isinstance(signature, str):
        signature = None

    return TokenEvent(
        mint_address=accounts[MINT_ACCOUNT_INDEX],
        involved_accounts=accounts,
        signature=signature,
        observed_at=observed_at if observed_at is not None else time.time(),
    )
