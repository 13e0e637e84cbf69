"""
config
"""

import os
from solders.pubkey import Pubkey
from dotenv import load_dotenv

load_dotenv()

# Names of settings whose values could not be parsed; reported by validate_config()
INVALID_SETTINGS = []


def _number(name, default, cast=float):
    try:
        return cast(os.getenv(name, default))
    except ValueError:
        INVALID_SETTINGS.append(name)
        return cast(default)


def _pubkey(name, default):
    try:
        return Pubkey.from_string(os.getenv(name, default))
    except ValueError:
        INVALID_SETTINGS.append(name)
        return Pubkey.from_string(default)


# ============================================
# TELEGRAM
# ============================================
TELEGRAM_BOT_TOKEN = os.getenv('TELEGRAM_BOT_TOKEN') or os.getenv('BOT_TOKEN')
TELEGRAM_API_URL = os.getenv('TELEGRAM_API_URL', 'https://api.telegram.org')
TELEGRAM_POLL_TIMEOUT = _number('TELEGRAM_POLL_TIMEOUT', '30', int)
TELEGRAM_MAX_MESSAGE_AGE = _number('TELEGRAM_MAX_MESSAGE_AGE', '60', int)  # Skip stale commands

# ============================================
# RPC CONFIGURATION
# ============================================
HELIUS_API_KEY = os.getenv('HELIUS_API') or os.getenv('HELIUS_API_KEY', '')
RPC_HTTP_URL = (
    os.getenv('RPC_HTTP_URL')
    or os.getenv('QUICKNODE_HTTP_URL')
    or (f'https://mainnet.helius-rpc.com/?api-key={HELIUS_API_KEY}' if HELIUS_API_KEY else '')
)
RPC_WS_URL = (
    os.getenv('RPC_WS_URL')
    or os.getenv('QUICKNODE_WS_URL')
    or RPC_HTTP_URL.replace('https://', 'wss://').replace('http://', 'ws://')
)

# ============================================
# ENRICHMENT
# ============================================
BIRDEYE_API_KEY = os.getenv('BIRDEYE_API_KEY', '')
BIRDEYE_PRICE_URL = 'https://public-api.birdeye.so/public/price'
ENRICH_TIMEOUT_SECONDS = _number('ENRICH_TIMEOUT_SECONDS', '10')

# ============================================
# PUMPFUN CONFIG
# ============================================
PUMP_FUN_PROGRAM_ID = _pubkey('PUMP_FUN_PROGRAM_ID', '6EF8rrecthR5Dkzon8Nwu78hRvfCKubJ14M5uBEwF6P')
MINT_INIT_LOG = "Program log: Instruction: InitializeMint2"
MINT_ACCOUNT_INDEX = 1  # Pump.fun create: [program/payer, mint, ...]
PUMP_FUN_TOKEN_URL = 'https://pump.fun'

# ============================================
# STREAM / RECONNECT
# ============================================
SUBSCRIBE_COMMITMENT = 'confirmed'
RECONNECT_DELAY_SECONDS = _number('RECONNECT_DELAY_SECONDS', '5')
HEARTBEAT_INTERVAL_SECONDS = _number('HEARTBEAT_INTERVAL_SECONDS', '30')
CONNECT_TIMEOUT_SECONDS = _number('CONNECT_TIMEOUT_SECONDS', '10')
CLOSE_TIMEOUT_SECONDS = _number('CLOSE_TIMEOUT_SECONDS', '5')

# ============================================
# DEDUP
# ============================================
TOKEN_CACHE_TTL_SECONDS = _number('TOKEN_CACHE_TTL_SECONDS', '300')
CACHE_SWEEP_INTERVAL_SECONDS = _number('CACHE_SWEEP_INTERVAL_SECONDS', '60')

# ============================================
# HEALTH SERVER
# ============================================
PORT = _number('PORT', '3000', int)

# ============================================
# LOGGING
# ============================================
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_FILE = os.getenv('LOG_FILE', 'combined.log')
ERROR_LOG_FILE = os.getenv('ERROR_LOG_FILE', 'error.log')


def validate_config() -> list:
    """Return the names of required settings that are missing or unparseable."""
    missing = []
    if not TELEGRAM_BOT_TOKEN:
        missing.append('TELEGRAM_BOT_TOKEN')
    if not RPC_HTTP_URL:
        missing.append('RPC_HTTP_URL')
    if not RPC_WS_URL:
        missing.append('RPC_WS_URL')
    return missing + INVALID_SETTINGS
