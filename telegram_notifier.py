"""
Telegram Notifier - thin Bot API client used for delivery and command replies
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

import aiohttp

from config import TELEGRAM_BOT_TOKEN, TELEGRAM_API_URL
from errors import DeliveryError

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 4096


class TelegramNotifier:
    """Bot API calls over a shared aiohttp session"""

    def __init__(self, token: Optional[str] = TELEGRAM_BOT_TOKEN, api_url: str = TELEGRAM_API_URL,
                 session: Optional[aiohttp.ClientSession] = None):
        self.token = token
        self.base_url = f"{api_url}/bot{token}"
        self.session = session
        self._owns_session = session is None
        self.last_message_time = 0
        self.sent = 0

    async def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession()
            self._owns_session = True
        return self.session

    async def close(self):
        if self._owns_session and self.session and not self.session.closed:
            await self.session.close()

    async def _call(self, method: str, payload: Dict[str, Any], timeout: float = 10) -> Dict[str, Any]:
        session = await self._get_session()
        url = f"{self.base_url}/{method}"

        try:
            async with session.post(url, json=payload, timeout=aiohttp.ClientTimeout(total=timeout)) as resp:
                if resp.status == 429:
                    data = await resp.json(content_type=None)
                    retry_after = int(data.get('parameters', {}).get('retry_after', 5))
                    logger.warning(f"Rate limited, waiting {retry_after} seconds")
                    await asyncio.sleep(retry_after)
                    # Retry once
                    async with session.post(url, json=payload,
                                            timeout=aiohttp.ClientTimeout(total=timeout)) as retry_resp:
                        return await self._check(method, retry_resp)
                return await self._check(method, resp)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise DeliveryError(f"{method} failed: {e}") from e

    @staticmethod
    async def _check(method: str, resp) -> Dict[str, Any]:
        if resp.status != 200:
            error_text = await resp.text()
            raise DeliveryError(f"{method} failed ({resp.status}): {error_text[:200]}", status=resp.status)
        return await resp.json(content_type=None)

    async def send_message(self, chat_id, text: str, reply_markup: Optional[dict] = None,
                           parse_mode: str = "HTML") -> Dict[str, Any]:
        """Send one message; raises DeliveryError if Telegram does not accept it"""
        if not self.token:
            raise DeliveryError("TELEGRAM_BOT_TOKEN is not configured")

        # Rate limiting
        time_since_last = time.time() - self.last_message_time
        if time_since_last < 0.05:
            await asyncio.sleep(0.05 - time_since_last)

        payload = {
            'chat_id': chat_id,
            'text': text[:MAX_MESSAGE_LENGTH],
            'parse_mode': parse_mode,
            'disable_web_page_preview': True,
        }
        if reply_markup:
            payload['reply_markup'] = reply_markup

        result = await self._call('sendMessage', payload)
        self.last_message_time = time.time()
        self.sent += 1
        return result

    async def answer_callback_query(self, callback_query_id: str):
        return await self._call('answerCallbackQuery', {'callback_query_id': callback_query_id})

    async def get_updates(self, offset: int, timeout: int) -> List[dict]:
        data = await self._call(
            'getUpdates',
            {'offset': offset, 'timeout': timeout, 'allowed_updates': ['message', 'callback_query']},
            timeout=timeout + 10,
        )
        return data.get('result', [])
