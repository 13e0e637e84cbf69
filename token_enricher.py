"""
Token Enricher - display data for a freshly minted token
Name/symbol from the mint account (jsonParsed), price/liquidity/market cap
from Birdeye. Never raises: any failure leaves the defaults in place.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

import aiohttp
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solders.pubkey import Pubkey

from config import (
    RPC_HTTP_URL, BIRDEYE_API_KEY, BIRDEYE_PRICE_URL, ENRICH_TIMEOUT_SECONDS,
)
from errors import EnrichmentError

logger = logging.getLogger(__name__)

DEFAULT_NAME = "Unknown"
DEFAULT_SYMBOL = "?"


@dataclass
class TokenInfo:
    mint: str
    name: str = DEFAULT_NAME
    symbol: str = DEFAULT_SYMBOL
    price: float = 0.0
    liquidity: float = 0.0
    market_cap: float = 0.0
    socials: Dict[str, str] = field(default_factory=dict)


def _get(obj, key):
    if isinstance(obj, dict):
        return obj.get(key)
    return getattr(obj, key, None)


def _to_float(value, default: float) -> float:
    try:
        return float(value) if value is not None else default
    except (TypeError, ValueError):
        return default


def parse_mint_metadata(parsed) -> Dict[str, str]:
    """Pull name/symbol (and any social links) out of a jsonParsed mint account"""
    info = _get(parsed, 'info') or {}
    metadata = _get(info, 'metadata')

    # Token-2022 mints carry metadata as an extension
    if not metadata:
        for extension in _get(info, 'extensions') or []:
            if _get(extension, 'extension') == 'tokenMetadata':
                metadata = _get(extension, 'state')
                break

    if not metadata:
        return {}

    result = {}
    for key in ('name', 'symbol'):
        value = _get(metadata, key)
        if value:
            result[key] = str(value)

    # additionalMetadata is a list of [key, value] pairs
    for pair in _get(metadata, 'additionalMetadata') or []:
        if isinstance(pair, (list, tuple)) and len(pair) == 2 and pair[0] in ('twitter', 'telegram', 'website'):
            result[pair[0]] = str(pair[1])
    return result


class TokenEnricher:
    """Wraps the RPC and Birdeye lookups behind a never-failing enrich()"""

    def __init__(self, rpc_url: str = RPC_HTTP_URL, birdeye_api_key: str = BIRDEYE_API_KEY,
                 timeout: float = ENRICH_TIMEOUT_SECONDS):
        self.rpc_url = rpc_url
        self.birdeye_api_key = birdeye_api_key
        self.timeout = timeout
        self.failures = 0

    async def enrich(self, mint: str) -> TokenInfo:
        token_info = TokenInfo(mint=mint)
        try:
            metadata = await asyncio.wait_for(self.fetch_metadata(mint), timeout=self.timeout)
            token_info.name = metadata.get('name') or token_info.name
            token_info.symbol = metadata.get('symbol') or token_info.symbol
            token_info.socials = {k: metadata[k] for k in ('twitter', 'telegram', 'website') if k in metadata}
        except Exception as e:
            self.failures += 1
            logger.error(f"Metadata lookup failed for {mint[:8]}...: {e}")

        try:
            market = await self.fetch_market_data(mint)
            if market:
                token_info.price = _to_float(market.get('value'), token_info.price)
                token_info.liquidity = _to_float(market.get('liquidity'), token_info.liquidity)
                token_info.market_cap = _to_float(
                    market.get('marketCap', market.get('mc')), token_info.market_cap
                )
        except Exception as e:
            self.failures += 1
            logger.error(f"Price lookup failed for {mint[:8]}...: {e}")

        return token_info

    async def fetch_metadata(self, mint: str) -> Dict[str, str]:
        client = AsyncClient(self.rpc_url, commitment=Confirmed)
        try:
            resp = await client.get_account_info_json_parsed(Pubkey.from_string(mint))
        finally:
            await client.close()

        account = getattr(resp, 'value', None)
        if account is None:
            raise EnrichmentError(f"mint account {mint} not found")

        parsed = _get(_get(account, 'data'), 'parsed')
        return parse_mint_metadata(parsed) if parsed else {}

    async def fetch_market_data(self, mint: str) -> Optional[dict]:
        headers = {'X-API-KEY': self.birdeye_api_key or '', 'Accept': 'application/json'}
        async with aiohttp.ClientSession() as session:
            async with session.get(
                BIRDEYE_PRICE_URL,
                params={'address': mint},
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            ) as resp:
                if resp.status != 200:
                    logger.warning(f"Birdeye price lookup failed ({resp.status}) for {mint[:8]}...")
                    return None
                data = await resp.json()
                return data.get('data') or None
