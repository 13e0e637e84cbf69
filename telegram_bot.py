
"""
Telegram Bot - inline keyboard that turns taps into watch/stop/status calls
"""

import asyncio
import logging
import time
from typing import Dict

from config import TELEGRAM_POLL_TIMEOUT, TELEGRAM_MAX_MESSAGE_AGE
from errors import DeliveryError
from message_formatter import format_status_message

logger = logging.getLogger(__name__)

CALLBACK_WATCH = 'select_pumpfun'
CALLBACK_STOP = 'stop_monitoring'
CALLBACK_STATUS = 'system_status'

MAIN_KEYBOARD = {
    'inline_keyboard': [
        [{'text': '🚀 Watch Pump.fun', 'callback_data': CALLBACK_WATCH}],
        [{'text': '❌ Stop monitoring', 'callback_data': CALLBACK_STOP}],
        [{'text': '🔄 System status', 'callback_data': CALLBACK_STATUS}],
    ]
}


class TelegramBot:
    """Long-polls getUpdates and routes commands to the watcher"""

    def __init__(self, watcher, notifier, poll_timeout: int = TELEGRAM_POLL_TIMEOUT):
        self.watcher = watcher
        self.notifier = notifier
        self.poll_timeout = poll_timeout
        self.last_update_id = 0
        self.running = False

        # Command handlers
        self.commands = {
            '/start': self.cmd_start,
            '/stop': self.cmd_stop,
            '/status': self.cmd_status,
        }
        self.callbacks = {
            CALLBACK_WATCH: self.cmd_watch,
            CALLBACK_STOP: self.cmd_stop,
            CALLBACK_STATUS: self.cmd_status,
        }

    async def reply(self, user_id: int, text: str, **kwargs):
        try:
            await self.notifier.send_message(user_id, text, **kwargs)
        except DeliveryError as e:
            logger.error(f"Failed to reply to {user_id}: {e}")

    async def start_polling(self):
        """Poll for commands"""
        self.running = True
        logger.info("📱 Telegram polling started")

        while self.running:
            try:
                await self.get_updates()
            except DeliveryError as e:
                logger.error(f"Polling error: {e}")
                await asyncio.sleep(5)
            except Exception as e:
                logger.exception(f"Failed to process update: {e}")
                await asyncio.sleep(1)

    def stop(self):
        self.running = False

    async def get_updates(self):
        """Get and process updates"""
        updates = await self.notifier.get_updates(self.last_update_id + 1, self.poll_timeout)
        for update in updates:
            self.last_update_id = update['update_id']
            await self.process_update(update)

    async def process_update(self, update: Dict):
        """Process a Telegram update"""
        if 'callback_query' in update:
            query = update['callback_query']
            user_id = query['from']['id']
            try:
                await self.notifier.answer_callback_query(query['id'])
            except DeliveryError as e:
                logger.debug(f"answerCallbackQuery failed: {e}")

            handler = self.callbacks.get(query.get('data'))
            if handler:
                logger.info(f"📱 Callback from {user_id}: {query.get('data')}")
                await handler(user_id)
            return

        message = update.get('message', {})
        text = message.get('text', '')
        if not text:
            return

        # Skip old messages
        if message.get('date') and time.time() - message['date'] > TELEGRAM_MAX_MESSAGE_AGE:
            logger.debug("Skipping old message")
            return

        user_id = message.get('from', {}).get('id') or message['chat']['id']
        command = text.split()[0].lower().split('@')[0]
        handler = self.commands.get(command)
        if handler:
            logger.info(f"📱 Telegram command from {user_id}: {command}")
            await handler(user_id)
        elif text.startswith('/'):
            await self.reply(user_id, "❌ Unknown command. Type /start to see the menu.")

    # ============================================
    # COMMAND HANDLERS (HTML formatted)
    # ============================================

    async def cmd_start(self, user_id: int):
        await self.reply(user_id, "Welcome! Choose a service to watch for new Pump.fun tokens:",
                         reply_markup=MAIN_KEYBOARD)

    async def cmd_watch(self, user_id: int):
        await self.watcher.start_watch(user_id)
        await self.reply(user_id, "✅ <b>Pump.fun monitoring enabled! Looking for a new token...</b>")

    async def cmd_stop(self, user_id: int):
        await self.watcher.stop_watch(user_id)
        await self.reply(user_id, "🛑 <b>Monitoring stopped!</b>")

    async def cmd_status(self, user_id: int):
        state = await self.watcher.registry.status(user_id)
        active = await self.watcher.registry.count_active()
        await self.reply(user_id, format_status_message(state, active))
